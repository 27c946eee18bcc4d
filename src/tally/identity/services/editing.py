"""Explicit create, update and document attach with conflict handling.

In ``ConflictMode.INTERACTIVE`` a collision raises ``NameExistsError`` so a
person can choose keep-both, rename-anyway or merge. In
``ConflictMode.AUTO_RESOLVE`` the existing target is adopted instead and no
attributes are copied onto it.
"""

from __future__ import annotations

from typing import Any, Dict, Mapping, Optional

from shared.logging import get_logger

from ..errors import NameExistsError, UniqueConstraintError, ValidationError
from ..models import AttachResult, Conflict, ConflictMode, EntityRecord, EntityRef
from ..normalize import is_placeholder_name
from ..store.base import Filter
from .base import FamilyScope, clean_attributes
from .conflicts import check_attach, check_rename, find_conflict
from .resolver import resolve_or_create, validate_name

logger = get_logger("identity.editing")

async def _conflict_after_unique_violation(
    scope: FamilyScope,
    name: str,
    attempted: Mapping[str, Any],
) -> Optional[Conflict]:
    descriptor = scope.descriptor
    values = descriptor.discriminator_values(attempted, scope.settings)
    filters = [Filter.eq("name", name)]
    filters.extend(Filter.eq(column, value) for column, value in zip(descriptor.discriminators, values))
    rows = await scope.store.select(scope.table, scope.scope, filters, limit=1)
    if not rows:
        return None
    forest = await scope.load_forest()
    return Conflict(
        family=scope.family,
        duplicate_name=name,
        target_id=forest.resolve(str(rows[0]["id"])),
        target_family=scope.family,
    )


async def _target_record(scope: FamilyScope, conflict: Conflict) -> EntityRecord:
    target_scope = scope if conflict.target_family == scope.family else scope.sibling(conflict.target_family)
    return target_scope.record(await target_scope.get_row(conflict.target_id))


def _log_adoption(scope: FamilyScope, conflict: Conflict) -> None:
    logger.info(
        "name_conflict_adopted",
        tenant_id=scope.tenant_id,
        family=scope.family.value,
        target_id=conflict.target_id,
        target_family=conflict.target_family.value,
    )


def _adopt(scope: FamilyScope, conflict: Conflict) -> AttachResult:
    _log_adoption(scope, conflict)
    return AttachResult(
        family=conflict.target_family,
        entity_id=conflict.target_id,
        action="adopted",
        conflict=conflict,
    )


async def create_entity(
    scope: FamilyScope,
    raw_name: Optional[str],
    attributes: Optional[Mapping[str, Any]] = None,
    mode: ConflictMode = ConflictMode.INTERACTIVE,
) -> EntityRecord:
    name = validate_name(scope, raw_name)
    observed = clean_attributes(attributes, (*scope.protected_columns, "name"))
    conflict = await find_conflict(scope, name, attributes=observed)
    if conflict is None:
        row: Dict[str, Any] = {scope.descriptor.scope_column: scope.scope.value, "name": name}
        row.update(scope.descriptor.defaults(scope.settings))
        row.update(observed)
        try:
            created = await scope.store.insert(scope.table, row)
        except UniqueConstraintError:
            conflict = await _conflict_after_unique_violation(scope, name, row)
            if conflict is None:
                raise
        else:
            logger.info(
                "entity_created",
                tenant_id=scope.tenant_id,
                family=scope.family.value,
                entity_id=str(created["id"]),
            )
            return scope.record(created)

    if mode is ConflictMode.AUTO_RESOLVE:
        _log_adoption(scope, conflict)
        return await _target_record(scope, conflict)
    raise NameExistsError(conflict)


def _clean_patch(scope: FamilyScope, patch: Mapping[str, Any]) -> Dict[str, Any]:
    cleaned: Dict[str, Any] = {}
    for column, value in patch.items():
        if column in scope.protected_columns:
            raise ValidationError(f"{column} cannot be changed through an update")
        cleaned[column] = value.strip() if isinstance(value, str) else value
    if "name" in cleaned:
        validate_name(scope, cleaned["name"])
    return cleaned


async def update_entity(
    scope: FamilyScope,
    entity_id: str,
    patch: Mapping[str, Any],
    mode: ConflictMode = ConflictMode.INTERACTIVE,
) -> AttachResult:
    """Apply ``patch`` to one entity, checking a name change for collisions.

    Returns the entity now holding the data: ``entity_id`` itself, or the
    adopted target when an auto-resolved rename collided.
    """
    changes = _clean_patch(scope, patch)
    if not changes:
        return AttachResult(family=scope.family, entity_id=entity_id, action="unchanged")

    conflict: Optional[Conflict] = None
    if "name" in changes:
        conflict = await check_rename(scope, entity_id, changes["name"], changes)
        if conflict is not None:
            if mode is ConflictMode.INTERACTIVE:
                raise NameExistsError(conflict)
            changes.pop("name")

    if changes:
        try:
            await scope.update(entity_id, changes)
        except UniqueConstraintError:
            if "name" not in changes:
                raise
            attempted = {**await scope.get_row(entity_id), **changes}
            conflict = await _conflict_after_unique_violation(scope, changes["name"], attempted)
            if conflict is None:
                raise
            if mode is ConflictMode.INTERACTIVE:
                raise NameExistsError(conflict) from None
            changes.pop("name")
            if changes:
                await scope.update(entity_id, changes)

    if conflict is not None:
        return _adopt(scope, conflict)
    action = "renamed" if "name" in changes else "updated"
    logger.info(
        "entity_updated",
        tenant_id=scope.tenant_id,
        family=scope.family.value,
        entity_id=entity_id,
        columns=sorted(changes),
    )
    return AttachResult(family=scope.family, entity_id=entity_id, action=action)


async def attach(
    scope: FamilyScope,
    raw_name: Optional[str],
    current: Optional[EntityRef] = None,
    mode: ConflictMode = ConflictMode.INTERACTIVE,
    attributes: Optional[Mapping[str, Any]] = None,
) -> AttachResult:
    """Point a document's counterparty (or account, SKU...) at ``raw_name``.

    ``current`` is the raw reference the document holds today. The result
    names the reference the document should hold afterwards.
    """
    name = (raw_name or "").strip()
    if is_placeholder_name(name, scope.settings.extra_placeholder_names):
        if current is None:
            return AttachResult(family=scope.family, action="unchanged")
        return AttachResult(family=current.family, entity_id=current.id, action="unchanged")

    conflict = await check_attach(scope, name, current, attributes)
    if conflict is not None:
        if current is None:
            return AttachResult(
                family=conflict.target_family,
                entity_id=conflict.target_id,
                action="matched",
            )
        if mode is ConflictMode.AUTO_RESOLVE:
            return _adopt(scope, conflict)
        raise NameExistsError(conflict)

    if current is None:
        record, inserted = await resolve_or_create(scope, name, attributes)
        return AttachResult(
            family=record.family,
            entity_id=record.id,
            action="created" if inserted else "matched",
        )

    owner = scope if current.family == scope.family else scope.sibling(current.family)
    final_id = (await owner.load_forest()).resolve(current.id)
    final_row = await owner.get_row(final_id)
    if final_row.get("name") == name:
        return AttachResult(family=current.family, entity_id=current.id, action="unchanged")

    try:
        await update_entity(owner, final_id, {"name": name}, ConflictMode.INTERACTIVE)
    except NameExistsError as exc:
        if mode is ConflictMode.INTERACTIVE:
            raise
        logger.info(
            "attach_rename_skipped",
            tenant_id=scope.tenant_id,
            family=current.family.value,
            entity_id=final_id,
            target_id=exc.conflict.target_id,
        )
        return AttachResult(family=current.family, entity_id=current.id, action="unchanged")
    return AttachResult(family=current.family, entity_id=current.id, action="renamed")


__all__ = ["create_entity", "update_entity", "attach"]
