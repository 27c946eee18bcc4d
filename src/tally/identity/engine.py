"""Public entry point: one engine for every entity family.

Every call takes an explicit ``TenantContext``; nothing is read from ambient
session state. Merge pointers are never cached, each call rebuilds the
forest it needs from the row store.
"""

from __future__ import annotations

import asyncio
from typing import Any, Dict, List, Mapping, Optional, Sequence

from .config import IdentitySettings, get_settings
from .context import SessionProvider, TenantContext, require_tenant
from .errors import ValidationError
from .families import get_family
from .models import (
    AttachResult,
    Conflict,
    ConflictMode,
    CounterpartyOption,
    DuplicateGroup,
    EntityRecord,
    EntityRef,
    Family,
    MergeHistory,
    MergeReport,
    UnmergeReport,
    UsageReport,
)
from .normalize import normalize_name
from .services import conflicts, editing, locations, merge, resolver, usage
from .services.base import FamilyScope
from .store.base import Filter, RowStore, Scope

_COUNTERPARTIES = (Family.CUSTOMER, Family.SUPPLIER)


class IdentityEngine:
    """Identity and merge resolution over a tenant-scoped row store."""

    def __init__(self, store: RowStore, settings: IdentitySettings | None = None) -> None:
        self.store = store
        self.settings = settings or get_settings()

    async def context(self, session: SessionProvider) -> TenantContext:
        return await require_tenant(session)

    # -- scopes -----------------------------------------------------------

    def _tenant_scope(self, ctx: TenantContext, family: Family | str) -> FamilyScope:
        descriptor = get_family(family)
        if descriptor.family is Family.LOCATION:
            raise ValidationError("locations are scoped by warehouse; pass warehouse_id")
        return FamilyScope(
            descriptor=descriptor,
            store=self.store,
            scope=Scope(descriptor.scope_column, ctx.tenant_id),
            tenant_id=ctx.tenant_id,
            settings=self.settings,
        )

    async def _scope(
        self,
        ctx: TenantContext,
        family: Family | str,
        warehouse_id: Optional[str] = None,
        entity_ids: Sequence[str] = (),
    ) -> FamilyScope:
        if Family(family) is not Family.LOCATION:
            return self._tenant_scope(ctx, family)
        warehouses = self._tenant_scope(ctx, Family.WAREHOUSE)
        if warehouse_id is None:
            if not entity_ids:
                raise ValidationError("locations are scoped by warehouse; pass warehouse_id")
            warehouse_id = await locations.locations_warehouse(warehouses, entity_ids)
        else:
            await locations.ensure_warehouse(warehouses, warehouse_id)
        return locations.location_scope(warehouses, warehouse_id)

    # -- resolution and reads ----------------------------------------------

    async def find_or_create(
        self,
        ctx: TenantContext,
        family: Family | str,
        name: Optional[str],
        attributes: Optional[Mapping[str, Any]] = None,
        warehouse_id: Optional[str] = None,
    ) -> EntityRecord:
        scope = await self._scope(ctx, family, warehouse_id)
        return await resolver.find_or_create(scope, name, attributes)

    async def get_entity(
        self,
        ctx: TenantContext,
        family: Family | str,
        entity_id: str,
        warehouse_id: Optional[str] = None,
    ) -> EntityRecord:
        scope = await self._scope(ctx, family, warehouse_id, [entity_id])
        return scope.record(await scope.get_row(entity_id))

    async def resolve_id(
        self,
        ctx: TenantContext,
        family: Family | str,
        entity_id: str,
        warehouse_id: Optional[str] = None,
    ) -> str:
        scope = await self._scope(ctx, family, warehouse_id, [entity_id])
        forest = await scope.load_forest()
        return forest.resolve(str(entity_id))

    async def resolve_many(
        self,
        ctx: TenantContext,
        family: Family | str,
        entity_ids: Sequence[str],
        warehouse_id: Optional[str] = None,
    ) -> Dict[str, EntityRecord]:
        """Canonical record for each raw id, e.g. for a page of documents."""
        raw_ids = [str(entity_id) for entity_id in dict.fromkeys(entity_ids) if entity_id]
        if not raw_ids:
            return {}
        scope = await self._scope(ctx, family, warehouse_id, raw_ids)
        forest = await scope.load_forest()
        finals = forest.resolve_many(raw_ids)
        rows = await scope.store.select(
            scope.table,
            scope.scope,
            [Filter.in_("id", sorted(set(finals.values())))],
        )
        by_id = {str(row["id"]): scope.record(row) for row in rows}
        return {raw: by_id[final] for raw, final in finals.items() if final in by_id}

    async def list_roots(self, ctx: TenantContext, family: Family | str, warehouse_id: Optional[str] = None) -> List[EntityRecord]:
        scope = await self._scope(ctx, family, warehouse_id)
        rows = await scope.load_rows([Filter.is_null("merged_into_id")], order_by=scope.descriptor.list_order)
        return [scope.record(row) for row in rows]

    async def list_for_options(
        self,
        ctx: TenantContext,
        family: Family | str,
        warehouse_id: Optional[str] = None,
    ) -> List[EntityRecord]:
        """Every row, merged ones included, for pickers and extraction prompts."""
        scope = await self._scope(ctx, family, warehouse_id)
        rows = await scope.load_rows(order_by=scope.descriptor.list_order)
        return [scope.record(row) for row in rows]

    async def _counterparties(self, ctx: TenantContext, family: Family | str, roots_only: bool) -> List[CounterpartyOption]:
        if Family(family) not in _COUNTERPARTIES:
            raise ValidationError(f"{Family(family).value} is not a counterparty family")
        own = self._tenant_scope(ctx, family)
        partner = own.sibling(own.descriptor.partner)
        base = [Filter.is_null("merged_into_id")] if roots_only else []
        own_rows, partner_rows = await asyncio.gather(
            own.load_rows(base, order_by=()),
            partner.load_rows(base + [Filter.eq(partner.descriptor.cross_flag, True)], order_by=()),
        )
        options = [CounterpartyOption(id=str(row["id"]), name=row.get("name") or "", family=own.family) for row in own_rows]
        options.extend(
            CounterpartyOption(id=str(row["id"]), name=row.get("name") or "", family=partner.family, cross_listed=True)
            for row in partner_rows
        )
        return sorted(options, key=lambda option: normalize_name(option.name))

    async def counterparty_list(self, ctx: TenantContext, family: Family | str) -> List[CounterpartyOption]:
        """Roots of ``family`` plus partner roots flagged to act as ``family``."""
        return await self._counterparties(ctx, family, roots_only=True)

    async def counterparty_options_for_duplicate_check(
        self,
        ctx: TenantContext,
        family: Family | str,
    ) -> List[CounterpartyOption]:
        return await self._counterparties(ctx, family, roots_only=False)

    # -- conflicts and edits -----------------------------------------------

    async def check_rename(
        self,
        ctx: TenantContext,
        family: Family | str,
        entity_id: str,
        new_name: str,
        warehouse_id: Optional[str] = None,
        attributes: Optional[Mapping[str, Any]] = None,
    ) -> Optional[Conflict]:
        scope = await self._scope(ctx, family, warehouse_id, [entity_id])
        return await conflicts.check_rename(scope, entity_id, new_name, attributes)

    async def check_attach(
        self,
        ctx: TenantContext,
        family: Family | str,
        new_name: str,
        current: Optional[EntityRef] = None,
        attributes: Optional[Mapping[str, Any]] = None,
    ) -> Optional[Conflict]:
        return await conflicts.check_attach(self._tenant_scope(ctx, family), new_name, current, attributes)

    async def create_entity(
        self,
        ctx: TenantContext,
        family: Family | str,
        name: Optional[str],
        attributes: Optional[Mapping[str, Any]] = None,
        mode: ConflictMode = ConflictMode.INTERACTIVE,
        warehouse_id: Optional[str] = None,
    ) -> EntityRecord:
        scope = await self._scope(ctx, family, warehouse_id)
        return await editing.create_entity(scope, name, attributes, mode)

    async def update_entity(
        self,
        ctx: TenantContext,
        family: Family | str,
        entity_id: str,
        patch: Mapping[str, Any],
        mode: ConflictMode = ConflictMode.INTERACTIVE,
        warehouse_id: Optional[str] = None,
    ) -> AttachResult:
        scope = await self._scope(ctx, family, warehouse_id, [entity_id])
        return await editing.update_entity(scope, entity_id, patch, mode)

    async def attach(
        self,
        ctx: TenantContext,
        family: Family | str,
        name: Optional[str],
        current: Optional[EntityRef] = None,
        mode: ConflictMode = ConflictMode.INTERACTIVE,
        attributes: Optional[Mapping[str, Any]] = None,
    ) -> AttachResult:
        scope = self._tenant_scope(ctx, family)
        return await editing.attach(scope, name, current, mode, attributes)

    # -- merge administration ----------------------------------------------

    async def merge(
        self,
        ctx: TenantContext,
        family: Family | str,
        source_ids: Sequence[str],
        target_id: str,
    ) -> MergeReport:
        if Family(family) is Family.LOCATION:
            return await locations.merge_locations(self._tenant_scope(ctx, Family.WAREHOUSE), source_ids, target_id)
        return await merge.merge(self._tenant_scope(ctx, family), source_ids, target_id)

    async def unmerge(
        self,
        ctx: TenantContext,
        family: Family | str,
        entity_id: str,
        warehouse_id: Optional[str] = None,
    ) -> UnmergeReport:
        scope = await self._scope(ctx, family, warehouse_id, [entity_id])
        return await merge.unmerge(scope, entity_id)

    async def merge_history(self, ctx: TenantContext, family: Family | str, warehouse_id: Optional[str] = None) -> MergeHistory:
        scope = await self._scope(ctx, family, warehouse_id)
        return await merge.merge_history(scope)

    async def find_duplicate_groups(
        self,
        ctx: TenantContext,
        family: Family | str,
        warehouse_id: Optional[str] = None,
    ) -> List[DuplicateGroup]:
        scope = await self._scope(ctx, family, warehouse_id)
        return await merge.find_duplicate_groups(scope)

    async def usage_counts(self, ctx: TenantContext, family: Family | str, warehouse_id: Optional[str] = None) -> UsageReport:
        scope = await self._scope(ctx, family, warehouse_id)
        return await usage.usage_counts(scope)

    # -- deletion ----------------------------------------------------------

    async def is_orphan(
        self,
        ctx: TenantContext,
        family: Family | str,
        entity_id: str,
        warehouse_id: Optional[str] = None,
    ) -> bool:
        scope = await self._scope(ctx, family, warehouse_id, [entity_id])
        return await usage.is_orphan(scope, entity_id)

    async def delete_entity(
        self,
        ctx: TenantContext,
        family: Family | str,
        entity_id: str,
        warehouse_id: Optional[str] = None,
    ) -> None:
        scope = await self._scope(ctx, family, warehouse_id, [entity_id])
        await usage.delete_entity(scope, entity_id)

    async def delete_if_orphan(
        self,
        ctx: TenantContext,
        family: Family | str,
        entity_id: str,
        warehouse_id: Optional[str] = None,
    ) -> bool:
        scope = await self._scope(ctx, family, warehouse_id, [entity_id])
        return await usage.delete_if_orphan(scope, entity_id)

    # -- warehouses and locations ------------------------------------------

    async def warehouse_ids_resolving_to(self, ctx: TenantContext, warehouse_id: str) -> List[str]:
        return await locations.warehouse_ids_resolving_to(self._tenant_scope(ctx, Family.WAREHOUSE), warehouse_id)

    async def list_locations(
        self,
        ctx: TenantContext,
        warehouse_id: str,
        include_merged: bool = False,
    ) -> List[EntityRecord]:
        return await locations.list_locations(self._tenant_scope(ctx, Family.WAREHOUSE), warehouse_id, include_merged)


__all__ = ["IdentityEngine"]
