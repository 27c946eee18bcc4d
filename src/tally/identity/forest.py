"""Pointer-based merge forest.

Rows of an entity family carry an optional ``merged_into_id``. Restricted to
non-null edges the relation is a forest; resolution follows edges to the
root. Nothing here is cached between calls, callers rebuild a forest from a
fresh snapshot of the row store each time.
"""

from __future__ import annotations

from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional

from shared.logging import get_logger

logger = get_logger("identity.forest")

_NO_PARENT = -1


def build_pointer_map(rows: Iterable[Mapping[str, Any]]) -> Dict[str, str]:
    """Adjacency map ``id -> merged_into_id`` over rows that carry a pointer."""
    pointers: Dict[str, str] = {}
    for row in rows:
        parent = row.get("merged_into_id")
        if parent:
            pointers[str(row["id"])] = str(parent)
    return pointers


def resolve(pointers: Mapping[str, str], entity_id: str) -> str:
    """Follow ``pointers`` from ``entity_id`` to its final id.

    A node revisited during the walk ends it and is returned as the final id.
    """
    current = entity_id
    seen: set[str] = set()
    while current in pointers and current not in seen:
        seen.add(current)
        current = pointers[current]
    return current


class MergeForest:
    """Arena of entity ids with index-based parent pointers."""

    __slots__ = ("_ids", "_index", "_parent")

    def __init__(self) -> None:
        self._ids: List[str] = []
        self._index: Dict[str, int] = {}
        self._parent: List[int] = []

    @classmethod
    def from_rows(cls, rows: Iterable[Mapping[str, Any]]) -> "MergeForest":
        forest = cls()
        for row in rows:
            forest.add(str(row["id"]), row.get("merged_into_id"))
        return forest

    @classmethod
    def from_pointer_map(cls, pointers: Mapping[str, str]) -> "MergeForest":
        forest = cls()
        for child, parent in pointers.items():
            forest.add(child, parent)
        return forest

    def _slot(self, entity_id: str) -> int:
        slot = self._index.get(entity_id)
        if slot is None:
            slot = len(self._ids)
            self._ids.append(entity_id)
            self._parent.append(_NO_PARENT)
            self._index[entity_id] = slot
        return slot

    def add(self, entity_id: str, merged_into_id: Optional[str] = None) -> None:
        slot = self._slot(entity_id)
        if merged_into_id:
            self._parent[slot] = self._slot(str(merged_into_id))

    def __contains__(self, entity_id: object) -> bool:
        return entity_id in self._index

    def __len__(self) -> int:
        return len(self._ids)

    def __iter__(self) -> Iterator[str]:
        return iter(self._ids)

    def parent_of(self, entity_id: str) -> Optional[str]:
        slot = self._index.get(entity_id)
        if slot is None or self._parent[slot] == _NO_PARENT:
            return None
        return self._ids[self._parent[slot]]

    def pointer_map(self) -> Dict[str, str]:
        return {
            self._ids[slot]: self._ids[parent]
            for slot, parent in enumerate(self._parent)
            if parent != _NO_PARENT
        }

    def resolve(self, entity_id: str) -> str:
        slot = self._index.get(entity_id)
        if slot is None:
            return entity_id
        visited: set[int] = set()
        while self._parent[slot] != _NO_PARENT and slot not in visited:
            visited.add(slot)
            slot = self._parent[slot]
        if slot in visited:
            logger.warning("merge_cycle_detected", entity_id=entity_id, stopped_at=self._ids[slot])
        return self._ids[slot]

    def resolve_many(self, entity_ids: Iterable[str]) -> Dict[str, str]:
        return {entity_id: self.resolve(entity_id) for entity_id in entity_ids}

    def is_root(self, entity_id: str) -> bool:
        return self.parent_of(entity_id) is None

    def roots(self) -> List[str]:
        return [self._ids[slot] for slot, parent in enumerate(self._parent) if parent == _NO_PARENT]

    def groups(self) -> Dict[str, List[str]]:
        """Final id -> ids (other than itself) that resolve to it."""
        grouped: Dict[str, List[str]] = {}
        for entity_id in self._ids:
            final = self.resolve(entity_id)
            if final != entity_id:
                grouped.setdefault(final, []).append(entity_id)
        return grouped

    def members_resolving_to(self, final_id: str) -> List[str]:
        """All known ids, ``final_id`` included, whose final id is ``final_id``."""
        members = [entity_id for entity_id in self._ids if self.resolve(entity_id) == final_id]
        if final_id not in self._index:
            members.insert(0, final_id)
        return members

    def children_of(self, entity_id: str) -> List[str]:
        slot = self._index.get(entity_id)
        if slot is None:
            return []
        return [self._ids[child] for child, parent in enumerate(self._parent) if parent == slot]


__all__ = ["MergeForest", "build_pointer_map", "resolve"]
