"""Find-or-create for every entity family.

Resolution order, first hit wins:

1. merge history: a merged-away row whose match key equals the new name
   sends the name to that row's final entity;
2. name match: strict key first, then the family's looser match key;
3. secondary key: card suffix, tax number or SKU code;
4. create, re-reading the winner when a concurrent insert took the name.

The returned record is always the canonical (root) entity of the hit.
"""

from __future__ import annotations

from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from shared.logging import get_logger

from ..errors import InvalidNameError, UniqueConstraintError
from ..forest import MergeForest
from ..models import EntityRecord
from ..normalize import is_placeholder_name, normalize_name
from ..store.base import Filter, Row
from .base import FamilyScope, clean_attributes
from .conflicts import check_rename

logger = get_logger("identity.resolver")


def _first(rows: List[Row], predicate: Callable[[Row], bool]) -> Optional[Row]:
    for row in rows:
        if predicate(row):
            return row
    return None


def validate_name(scope: FamilyScope, raw_name: Optional[str]) -> str:
    name = (raw_name or "").strip()
    if is_placeholder_name(name, scope.settings.extra_placeholder_names):
        raise InvalidNameError(raw_name)
    return name


def _match(
    scope: FamilyScope,
    rows: List[Row],
    name: str,
    attributes: Mapping[str, Any],
) -> Tuple[Optional[Row], Optional[str]]:
    descriptor = scope.descriptor
    settings = scope.settings
    wanted = descriptor.discriminator_values(attributes, settings)
    same_kind = [row for row in rows if descriptor.discriminator_values(row, settings) == wanted]

    key = descriptor.match_key(name)
    strict = normalize_name(name)

    hit = _first(same_kind, lambda row: bool(row.get("merged_into_id")) and descriptor.match_key(row.get("name") or "") == key)
    if hit is not None:
        return hit, "merge_history"

    hit = _first(same_kind, lambda row: normalize_name(row.get("name")) == strict)
    if hit is None:
        hit = _first(same_kind, lambda row: descriptor.match_key(row.get("name") or "") == key)
    if hit is not None:
        return hit, "name"

    if descriptor.secondary_key is not None:
        secondary = descriptor.secondary_key(name, attributes, settings)
        if secondary:
            hit = _first(
                rows,
                lambda row: descriptor.secondary_key(row.get("name") or "", row, settings) == secondary,
            )
            if hit is not None:
                return hit, "secondary_key"
    return None, None


async def _apply_observation(
    scope: FamilyScope,
    target: Row,
    name: str,
    attributes: Mapping[str, Any],
    via: str,
) -> Row:
    descriptor = scope.descriptor
    patch: Dict[str, Any] = {
        column: attributes[column]
        for column in descriptor.backfill_columns
        if attributes.get(column) and not target.get(column)
    }

    current_name = target.get("name") or ""
    if (
        via == "secondary_key"
        and descriptor.widen_on_secondary
        and len(name) > len(current_name)
        and normalize_name(name) != normalize_name(current_name)
    ):
        conflict = await check_rename(scope, str(target["id"]), name)
        if conflict is None:
            patch["name"] = name
        else:
            logger.info(
                "name_widening_skipped",
                tenant_id=scope.tenant_id,
                family=scope.family.value,
                entity_id=str(target["id"]),
                target_id=conflict.target_id,
            )

    if not patch:
        return target
    await scope.update(str(target["id"]), patch)
    logger.info(
        "entity_backfilled",
        tenant_id=scope.tenant_id,
        family=scope.family.value,
        entity_id=str(target["id"]),
        columns=sorted(patch),
    )
    return {**target, **patch}


async def _create(scope: FamilyScope, name: str, attributes: Mapping[str, Any]) -> Tuple[Row, bool]:
    descriptor = scope.descriptor
    row: Dict[str, Any] = {descriptor.scope_column: scope.scope.value, "name": name}
    row.update(descriptor.defaults(scope.settings))
    row.update(attributes)
    try:
        created = await scope.store.insert(scope.table, row)
    except UniqueConstraintError:
        # A concurrent caller created the same name between our read and insert.
        filters = [Filter.eq("name", name)]
        filters.extend(Filter.eq(column, row.get(column)) for column in descriptor.discriminators)
        existing = await scope.store.select(scope.table, scope.scope, filters, limit=1)
        if not existing:
            raise
        logger.info(
            "entity_create_race_recovered",
            tenant_id=scope.tenant_id,
            family=scope.family.value,
            entity_id=str(existing[0]["id"]),
        )
        return existing[0], False
    logger.info(
        "entity_created",
        tenant_id=scope.tenant_id,
        family=scope.family.value,
        entity_id=str(created["id"]),
    )
    return created, True


async def resolve_or_create(
    scope: FamilyScope,
    raw_name: Optional[str],
    attributes: Optional[Mapping[str, Any]] = None,
) -> Tuple[EntityRecord, bool]:
    """Like ``find_or_create`` but also reports whether a row was inserted."""
    name = validate_name(scope, raw_name)
    observed = clean_attributes(attributes, (*scope.protected_columns, "name"))

    rows = await scope.load_rows()
    forest = MergeForest.from_rows(rows)
    by_id = {str(row["id"]): row for row in rows}

    hit, via = _match(scope, rows, name, observed)
    if hit is None:
        created, inserted = await _create(scope, name, observed)
        if created.get("merged_into_id"):
            # The race winner may already have been merged elsewhere.
            created = await scope.get_row((await scope.load_forest()).resolve(str(created["id"])))
        return scope.record(created), inserted

    final_id = forest.resolve(str(hit["id"]))
    target = by_id.get(final_id, hit)
    logger.debug(
        "entity_matched",
        tenant_id=scope.tenant_id,
        family=scope.family.value,
        via=via,
        matched_id=str(hit["id"]),
        entity_id=str(target["id"]),
    )
    target = await _apply_observation(scope, target, name, observed, via or "name")
    return scope.record(target), False


async def find_or_create(
    scope: FamilyScope,
    raw_name: Optional[str],
    attributes: Optional[Mapping[str, Any]] = None,
) -> EntityRecord:
    record, _ = await resolve_or_create(scope, raw_name, attributes)
    return record


__all__ = ["find_or_create", "resolve_or_create", "validate_name"]
