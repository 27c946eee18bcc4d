from __future__ import annotations

from dataclasses import dataclass
from typing import Any, List, Mapping, Optional, Sequence, Tuple

from ..config import IdentitySettings
from ..errors import NotFoundError, ValidationError
from ..families import FamilyDescriptor, get_family
from ..forest import MergeForest
from ..models import EntityRecord, Family
from ..store.base import Filter, Order, Row, RowStore, Scope


@dataclass(slots=True)
class FamilyScope:
    """One entity family bound to a store and a tenant (or warehouse) scope."""

    descriptor: FamilyDescriptor
    store: RowStore
    scope: Scope
    tenant_id: str
    settings: IdentitySettings

    @property
    def family(self) -> Family:
        return self.descriptor.family

    @property
    def table(self) -> str:
        return self.descriptor.table

    @property
    def protected_columns(self) -> Tuple[str, ...]:
        """Columns the engine owns; callers never set them directly."""
        return ("id", "merged_into_id", self.descriptor.scope_column)

    def sibling(self, family: Family) -> "FamilyScope":
        descriptor = get_family(family)
        return FamilyScope(
            descriptor=descriptor,
            store=self.store,
            scope=Scope(descriptor.scope_column, self.scope.value),
            tenant_id=self.tenant_id,
            settings=self.settings,
        )

    async def load_rows(
        self,
        filters: Sequence[Filter] = (),
        order_by: Optional[Sequence[Order]] = None,
    ) -> List[Row]:
        order = self.descriptor.match_order if order_by is None else order_by
        return await self.store.select(self.table, self.scope, filters, order)

    async def load_forest(self) -> MergeForest:
        rows = await self.store.select(
            self.table,
            self.scope,
            [Filter.not_null("merged_into_id")],
            columns=("id", "merged_into_id"),
        )
        return MergeForest.from_rows(rows)

    async def get_row(self, entity_id: str) -> Row:
        rows = await self.store.select(self.table, self.scope, [Filter.eq("id", entity_id)], limit=1)
        if not rows:
            raise NotFoundError(self.table, entity_id)
        return rows[0]

    async def update(self, entity_id: str, patch: Row) -> None:
        await self.store.update(self.table, self.scope, entity_id, patch)

    def record(self, row: Mapping[str, Any]) -> EntityRecord:
        attributes = {
            key: value
            for key, value in row.items()
            if key not in ("id", "name", "merged_into_id", self.descriptor.scope_column)
        }
        merged_into = row.get("merged_into_id")
        scope_value = row.get(self.descriptor.scope_column)
        return EntityRecord(
            id=str(row["id"]),
            family=self.family,
            name=row.get("name") or "",
            merged_into_id=str(merged_into) if merged_into else None,
            scope_id=str(scope_value) if scope_value is not None else None,
            attributes=attributes,
        )


def clean_attributes(
    attributes: Optional[Mapping[str, Any]],
    protected: Sequence[str] = (),
) -> dict[str, Any]:
    """Trim string values and drop empties so they never overwrite real data.

    Raises ``ValidationError`` when a caller tries to set one of ``protected``.
    """
    cleaned: dict[str, Any] = {}
    for key, value in (attributes or {}).items():
        if key in protected:
            raise ValidationError(f"{key} cannot be set through attributes")
        if isinstance(value, str):
            value = value.strip()
        if value is None or value == "":
            continue
        cleaned[key] = value
    return cleaned


__all__ = ["FamilyScope", "clean_attributes"]
