from __future__ import annotations

import asyncio
from typing import Dict, List, Sequence, Tuple

from shared.logging import get_logger

from ..errors import IdentityError, PartialMergeError, ValidationError
from ..forest import MergeForest
from ..models import DuplicateGroup, MergeFailure, MergeHistory, MergeReport, UnmergeReport
from ..normalize import normalize_name
from ..store.base import Filter
from .base import FamilyScope

logger = get_logger("identity.merge")


def _dedupe(ids: Sequence[str]) -> List[str]:
    seen: Dict[str, None] = {}
    for entity_id in ids:
        seen.setdefault(str(entity_id), None)
    return list(seen)


async def merge(scope: FamilyScope, source_ids: Sequence[str], target_id: str) -> MergeReport:
    """Point every source at the final entity of ``target_id``.

    Existing children of a source are re-pointed first so chains stay one
    hop deep. Sources are applied independently; if any fails the applied
    ones stay applied and ``PartialMergeError`` carries the report.
    """
    sources = _dedupe(source_ids)
    target_id = str(target_id)
    if not sources:
        raise ValidationError("merge needs at least one source")
    if target_id in sources:
        raise ValidationError("merge target cannot also be a source")

    expected = sources + [target_id]
    rows, forest = await asyncio.gather(
        scope.store.select(scope.table, scope.scope, [Filter.in_("id", expected)], columns=("id",)),
        scope.load_forest(),
    )
    if len(rows) != len(expected):
        found = {str(row["id"]) for row in rows}
        missing = [entity_id for entity_id in expected if entity_id not in found]
        raise ValidationError(f"{scope.family.value} ids not found in this scope: {', '.join(missing)}")

    final_id = forest.resolve(target_id)
    if final_id in sources:
        raise ValidationError(f"merge target {target_id} already resolves to source {final_id}")

    report = MergeReport(family=scope.family, target_id=target_id, final_target_id=final_id)
    for source_id in sources:
        try:
            repointed = await scope.store.update_where(
                scope.table,
                scope.scope,
                [Filter.eq("merged_into_id", source_id)],
                {"merged_into_id": final_id},
            )
            await scope.update(source_id, {"merged_into_id": final_id})
        except IdentityError as exc:
            logger.warning(
                "merge_source_failed",
                tenant_id=scope.tenant_id,
                family=scope.family.value,
                source_id=source_id,
                target_id=final_id,
                error=str(exc),
            )
            report.failed.append(MergeFailure(source_id=source_id, error=str(exc)))
            continue
        report.merged.append(source_id)
        report.repointed[source_id] = repointed
        logger.info(
            "entity_merged",
            tenant_id=scope.tenant_id,
            family=scope.family.value,
            source_id=source_id,
            target_id=final_id,
            repointed=repointed,
        )

    if report.failed:
        logger.error(
            "merge_partially_applied",
            tenant_id=scope.tenant_id,
            family=scope.family.value,
            target_id=final_id,
            merged=report.merged,
            failed=[item.source_id for item in report.failed],
        )
        raise PartialMergeError(report)
    return report


async def unmerge(scope: FamilyScope, entity_id: str) -> UnmergeReport:
    """Make ``entity_id`` a root again.

    Entities that pointed at it keep resolving to the same final entity as
    before: they are re-pointed there before its own pointer is cleared.
    """
    entity_id = str(entity_id)
    row, forest = await asyncio.gather(scope.get_row(entity_id), scope.load_forest())
    previous = row.get("merged_into_id")
    if not previous:
        return UnmergeReport(family=scope.family, entity_id=entity_id)

    final_id = forest.resolve(entity_id)
    repointed = 0
    if final_id != entity_id:
        repointed = await scope.store.update_where(
            scope.table,
            scope.scope,
            [Filter.eq("merged_into_id", entity_id)],
            {"merged_into_id": final_id},
        )
    await scope.update(entity_id, {"merged_into_id": None})
    logger.info(
        "entity_unmerged",
        tenant_id=scope.tenant_id,
        family=scope.family.value,
        entity_id=entity_id,
        previous_target_id=str(previous),
        repointed=repointed,
    )
    return UnmergeReport(
        family=scope.family,
        entity_id=entity_id,
        previous_target_id=str(previous),
        repointed=repointed,
    )


async def merge_history(scope: FamilyScope) -> MergeHistory:
    rows = await scope.load_rows(order_by=scope.descriptor.list_order)
    forest = MergeForest.from_rows(rows)
    history = MergeHistory(family=scope.family)
    by_id = {str(row["id"]): row for row in rows}
    for row in rows:
        record = scope.record(row)
        if record.is_root:
            history.roots.append(record)
            continue
        final_id = forest.resolve(record.id)
        if final_id in by_id:
            history.children_by_root.setdefault(final_id, []).append(record)
    return history


async def find_duplicate_groups(scope: FamilyScope) -> List[DuplicateGroup]:
    """Roots whose strict names collide, candidates for an operator merge."""
    rows = await scope.load_rows([Filter.is_null("merged_into_id")], order_by=scope.descriptor.list_order)
    grouped: Dict[Tuple[str, tuple], List[dict]] = {}
    for row in rows:
        key = normalize_name(row.get("name"))
        if not key:
            continue
        kind = scope.descriptor.discriminator_values(row, scope.settings)
        grouped.setdefault((key, kind), []).append(row)
    return [
        DuplicateGroup(family=scope.family, key=key, entities=[scope.record(row) for row in members])
        for (key, _), members in sorted(grouped.items(), key=lambda item: item[0][0])
        if len(members) > 1
    ]


__all__ = ["merge", "unmerge", "merge_history", "find_duplicate_groups"]
