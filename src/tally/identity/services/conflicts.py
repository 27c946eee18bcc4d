"""Duplicate-name detection across a namespace group.

A name collides when some row in the group normalizes to the same strict
key and resolves to a different canonical entity than the one being edited.
Families with discriminator columns (a SKU's unit) only collide with rows
sharing the same discriminator values.
Customers and suppliers form one group: partner rows take part only when
they carry the cross-listing flag for this family.
"""

from __future__ import annotations

import asyncio
from typing import Any, List, Mapping, Optional, Tuple

from shared.logging import get_logger

from ..forest import MergeForest
from ..models import Conflict, EntityRef, Family
from ..normalize import normalize_name
from ..store.base import Filter, Row
from .base import FamilyScope

logger = get_logger("identity.conflicts")


async def _load_member(scope: FamilyScope, cross_flag: Optional[str]) -> Tuple[FamilyScope, List[Row], MergeForest]:
    filters = [Filter.eq(cross_flag, True)] if cross_flag else []
    rows, forest = await asyncio.gather(scope.load_rows(filters, order_by=()), scope.load_forest())
    return scope, rows, forest


async def load_namespace(scope: FamilyScope) -> List[Tuple[FamilyScope, List[Row], MergeForest]]:
    """Rows and forests for every family sharing names with ``scope``."""
    members = [_load_member(scope, None)]
    partner = scope.descriptor.partner
    if partner is not None:
        partner_scope = scope.sibling(partner)
        # Partner rows join the group when flagged to act as this family.
        members.append(_load_member(partner_scope, partner_scope.descriptor.cross_flag))
    return list(await asyncio.gather(*members))


def _wanted_discriminators(
    scope: FamilyScope,
    own_rows: List[Row],
    current: Optional[EntityRef],
    attributes: Optional[Mapping[str, Any]],
) -> Tuple[Any, ...]:
    base: Mapping[str, Any] = {}
    if current is not None and current.family == scope.family:
        base = next((row for row in own_rows if str(row["id"]) == current.id), {})
    return scope.descriptor.discriminator_values({**base, **(attributes or {})}, scope.settings)


async def find_conflict(
    scope: FamilyScope,
    new_name: str,
    current: Optional[EntityRef] = None,
    attributes: Optional[Mapping[str, Any]] = None,
) -> Optional[Conflict]:
    key = normalize_name(new_name)
    if not key:
        return None

    namespace = await load_namespace(scope)
    forests = {member.family: forest for member, _, forest in namespace}
    # load_namespace puts the scope's own family first.
    wanted = _wanted_discriminators(scope, namespace[0][1], current, attributes)

    current_final: Optional[Tuple[Family, str]] = None
    if current is not None:
        forest = forests.get(current.family)
        resolved = forest.resolve(current.id) if forest is not None else current.id
        current_final = (current.family, resolved)

    for member, rows, forest in namespace:
        for row in rows:
            if normalize_name(row.get("name")) != key:
                continue
            if member.family == scope.family:
                if scope.descriptor.discriminator_values(row, scope.settings) != wanted:
                    continue
            target = (member.family, forest.resolve(str(row["id"])))
            if target == current_final:
                continue
            conflict = Conflict(
                family=scope.family,
                duplicate_name=new_name.strip(),
                target_id=target[1],
                target_family=target[0],
            )
            logger.info(
                "name_conflict_detected",
                tenant_id=scope.tenant_id,
                family=scope.family.value,
                duplicate_name=conflict.duplicate_name,
                target_id=conflict.target_id,
                target_family=conflict.target_family.value,
            )
            return conflict
    return None


async def check_rename(
    scope: FamilyScope,
    entity_id: str,
    new_name: str,
    attributes: Optional[Mapping[str, Any]] = None,
) -> Optional[Conflict]:
    """Conflict raised by renaming ``entity_id`` to ``new_name``, if any.

    ``attributes`` carries discriminator changes made in the same edit.
    """
    current = EntityRef(family=scope.family, id=entity_id)
    return await find_conflict(scope, new_name, current, attributes)


async def check_attach(
    scope: FamilyScope,
    new_name: str,
    current: Optional[EntityRef] = None,
    attributes: Optional[Mapping[str, Any]] = None,
) -> Optional[Conflict]:
    """Conflict raised by attaching a document currently on ``current`` to ``new_name``.

    ``current`` may belong to the partner family, e.g. a receipt whose
    counterparty is a customer flagged as supplier.
    """
    return await find_conflict(scope, new_name, current, attributes)


__all__ = ["load_namespace", "find_conflict", "check_rename", "check_attach"]
