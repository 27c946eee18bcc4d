"""Two-level forest: warehouses merge per tenant, locations per warehouse."""

from __future__ import annotations

import asyncio
from typing import List, Sequence

from ..errors import NotFoundError, ValidationError
from ..families import get_family
from ..models import EntityRecord, Family, MergeReport
from ..normalize import normalize_name
from ..store.base import Filter, Scope
from .base import FamilyScope
from .merge import merge


def location_scope(warehouses: FamilyScope, warehouse_id: str) -> FamilyScope:
    descriptor = get_family(Family.LOCATION)
    return FamilyScope(
        descriptor=descriptor,
        store=warehouses.store,
        scope=Scope(descriptor.scope_column, str(warehouse_id)),
        tenant_id=warehouses.tenant_id,
        settings=warehouses.settings,
    )


async def ensure_warehouse(warehouses: FamilyScope, warehouse_id: str) -> None:
    try:
        await warehouses.get_row(str(warehouse_id))
    except NotFoundError:
        raise ValidationError(f"warehouse {warehouse_id} does not belong to this tenant") from None


async def warehouse_ids_resolving_to(warehouses: FamilyScope, warehouse_id: str) -> List[str]:
    """The final warehouse of ``warehouse_id`` first, then every id merged into it."""
    forest = await warehouses.load_forest()
    final_id = forest.resolve(str(warehouse_id))
    others = [member for member in forest.members_resolving_to(final_id) if member != final_id]
    return [final_id] + others


async def list_locations(
    warehouses: FamilyScope,
    warehouse_id: str,
    include_merged: bool = False,
) -> List[EntityRecord]:
    """Locations of a warehouse including those under warehouses merged into it.

    The final warehouse's own locations win name collisions; a location from
    a merged-away warehouse is listed only when its name is new.
    """
    await ensure_warehouse(warehouses, warehouse_id)
    warehouse_ids = await warehouse_ids_resolving_to(warehouses, warehouse_id)
    filters = [] if include_merged else [Filter.is_null("merged_into_id")]
    scopes = [location_scope(warehouses, member) for member in warehouse_ids]
    per_warehouse = await asyncio.gather(
        *(scope.load_rows(filters, order_by=scope.descriptor.list_order) for scope in scopes)
    )

    listed: List[EntityRecord] = []
    seen: set[str] = set()
    for position, (scope, rows) in enumerate(zip(scopes, per_warehouse)):
        for row in rows:
            key = normalize_name(row.get("name"))
            if position > 0 and key in seen:
                continue
            seen.add(key)
            listed.append(scope.record(row))
    return listed


async def locations_warehouse(warehouses: FamilyScope, location_ids: Sequence[str]) -> str:
    """The single warehouse owning every id in ``location_ids``."""
    ids = [str(location_id) for location_id in dict.fromkeys(location_ids)]
    descriptor = get_family(Family.LOCATION)
    rows = await warehouses.store.select(
        descriptor.table,
        Scope.unscoped(),
        [Filter.in_("id", ids)],
        columns=("id", "warehouse_id"),
    )
    if len(rows) != len(ids):
        found = {str(row["id"]) for row in rows}
        missing = [location_id for location_id in ids if location_id not in found]
        raise ValidationError(f"location ids not found: {', '.join(missing)}")
    owners = {str(row["warehouse_id"]) for row in rows}
    if len(owners) != 1:
        raise ValidationError("locations from different warehouses cannot be merged")
    warehouse_id = owners.pop()
    await ensure_warehouse(warehouses, warehouse_id)
    return warehouse_id


async def merge_locations(warehouses: FamilyScope, source_ids: Sequence[str], target_id: str) -> MergeReport:
    warehouse_id = await locations_warehouse(warehouses, [*source_ids, target_id])
    return await merge(location_scope(warehouses, warehouse_id), source_ids, target_id)


__all__ = [
    "location_scope",
    "ensure_warehouse",
    "warehouse_ids_resolving_to",
    "list_locations",
    "locations_warehouse",
    "merge_locations",
]
