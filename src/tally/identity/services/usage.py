"""Document usage per entity, grouped by the raw foreign key on each document."""

from __future__ import annotations

import asyncio
from collections import Counter
from typing import List, Sequence

from shared.logging import get_logger

from ..errors import ValidationError
from ..families import Reference
from ..forest import MergeForest
from ..models import RootUsage, UsageReport
from ..store.base import Filter, Row, Scope
from .base import FamilyScope

logger = get_logger("identity.usage")


def _reference_scope(scope: FamilyScope, reference: Reference) -> Scope:
    if reference.scope_column is None:
        return Scope.unscoped()
    return Scope(reference.scope_column, scope.tenant_id)


async def _load_reference(scope: FamilyScope, reference: Reference, ids: Sequence[str]) -> List[Row]:
    # Item tables carry no tenant column; restrict them to this tenant's ids instead.
    if reference.scope_column is None:
        filters = [Filter.in_(reference.column, list(ids))]
    else:
        filters = [Filter.not_null(reference.column)]
    return await scope.store.select(
        reference.table,
        _reference_scope(scope, reference),
        filters,
        columns=(reference.column,),
    )


async def usage_counts(scope: FamilyScope) -> UsageReport:
    rows = await scope.load_rows(order_by=scope.descriptor.list_order)
    ids = [str(row["id"]) for row in rows]
    forest = MergeForest.from_rows(rows)

    references = scope.descriptor.references
    loaded = await asyncio.gather(*(_load_reference(scope, ref, ids) for ref in references))

    known = set(ids)
    by_raw_id: Counter[str] = Counter()
    for reference, ref_rows in zip(references, loaded):
        for ref_row in ref_rows:
            raw = ref_row.get(reference.column)
            if raw is not None and str(raw) in known:
                by_raw_id[str(raw)] += 1

    report = UsageReport(family=scope.family, by_raw_id=dict(by_raw_id))
    usage_by_root = {}
    for row in rows:
        if not row.get("merged_into_id"):
            root_id = str(row["id"])
            usage_by_root[root_id] = RootUsage(
                root_id=root_id,
                name=row.get("name") or "",
                direct_count=by_raw_id.get(root_id, 0),
            )
            report.roots.append(usage_by_root[root_id])
    for entity_id in ids:
        final_id = forest.resolve(entity_id)
        if final_id == entity_id or final_id not in usage_by_root:
            continue
        count = by_raw_id.get(entity_id, 0)
        usage = usage_by_root[final_id]
        usage.children[entity_id] = count
        usage.merged_count += count
    return report


async def is_orphan(scope: FamilyScope, entity_id: str) -> bool:
    """True when no document and no other entity points at ``entity_id``."""
    checks = [
        scope.store.select(
            reference.table,
            _reference_scope(scope, reference),
            [Filter.eq(reference.column, entity_id)],
            limit=1,
            columns=(reference.column,),
        )
        for reference in scope.descriptor.references
    ]
    checks.append(
        scope.store.select(
            scope.table,
            scope.scope,
            [Filter.eq("merged_into_id", entity_id)],
            limit=1,
            columns=("id",),
        )
    )
    results = await asyncio.gather(*checks)
    return not any(results)


async def delete_entity(scope: FamilyScope, entity_id: str) -> None:
    await scope.get_row(entity_id)
    if not await is_orphan(scope, entity_id):
        raise ValidationError(f"{scope.family.value} {entity_id} is still referenced")
    await scope.store.delete(scope.table, scope.scope, entity_id)
    logger.info("orphan_deleted", tenant_id=scope.tenant_id, family=scope.family.value, entity_id=entity_id)


async def delete_if_orphan(scope: FamilyScope, entity_id: str) -> bool:
    """Cleanup after a document is deleted; leaves referenced entities alone."""
    if not await is_orphan(scope, entity_id):
        return False
    await scope.store.delete(scope.table, scope.scope, entity_id)
    logger.info("orphan_deleted", tenant_id=scope.tenant_id, family=scope.family.value, entity_id=entity_id)
    return True


__all__ = ["usage_counts", "is_orphan", "delete_entity", "delete_if_orphan"]
