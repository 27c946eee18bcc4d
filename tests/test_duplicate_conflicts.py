"""
Tests for duplicate-name detection and the two conflict modes.

Tests cover:
- Rename collisions in interactive and auto-resolve mode
- Renaming to a name already owned by the same canonical entity
- Customer/supplier cross-namespace checks
- Attaching documents to counterparties by name
- Explicit create and update
- SKU units as part of identity
"""

import pytest

from fakes import TENANT
from tally.identity import (
    ConflictMode,
    EntityRef,
    Family,
    InvalidNameError,
    NameExistsError,
    ValidationError,
)


@pytest.fixture
def two_suppliers(store):
    x = store.seed("suppliers", space_id=TENANT, name="Northwind")
    y = store.seed("suppliers", space_id=TENANT, name="Contoso")
    return x, y


@pytest.mark.asyncio
async def test_rename_collision_raises_in_interactive_mode(engine, ctx, store, two_suppliers):
    x, y = two_suppliers

    with pytest.raises(NameExistsError) as excinfo:
        await engine.update_entity(ctx, Family.SUPPLIER, x, {"name": "  CONTOSO "})

    conflict = excinfo.value.conflict
    assert conflict.target_id == y
    assert conflict.target_family is Family.SUPPLIER
    assert conflict.duplicate_name == "CONTOSO"
    assert conflict.model_dump(by_alias=True, mode="json") == {
        "code": "NAME_EXISTS",
        "family": "supplier",
        "duplicateName": "CONTOSO",
        "targetId": y,
        "targetFamily": "supplier",
    }
    assert store.row("suppliers", x)["name"] == "Northwind"


@pytest.mark.asyncio
async def test_rename_collision_adopts_target_in_auto_mode(engine, ctx, store, two_suppliers):
    x, y = two_suppliers

    result = await engine.update_entity(
        ctx,
        Family.SUPPLIER,
        x,
        {"name": "contoso", "phone": "555-0199"},
        mode=ConflictMode.AUTO_RESOLVE,
    )

    assert result.action == "adopted"
    assert result.entity_id == y
    assert result.conflict is not None
    assert store.row("suppliers", x)["name"] == "Northwind"
    assert store.row("suppliers", x)["phone"] == "555-0199"
    # Adoption never copies attributes onto the target.
    assert "phone" not in store.row("suppliers", y)


@pytest.mark.asyncio
async def test_rename_to_own_merged_alias_is_not_a_conflict(engine, ctx, store):
    root = store.seed("suppliers", space_id=TENANT, name="Fabrikam Ltd")
    store.seed("suppliers", space_id=TENANT, name="Fabrikam", merged_into_id=root)

    assert await engine.check_rename(ctx, Family.SUPPLIER, root, "fabrikam") is None


@pytest.mark.asyncio
async def test_rename_to_same_name_is_not_a_conflict(engine, ctx, store, two_suppliers):
    x, _ = two_suppliers
    result = await engine.update_entity(ctx, Family.SUPPLIER, x, {"name": "NORTHWIND"})
    assert result.action == "renamed"
    assert store.row("suppliers", x)["name"] == "NORTHWIND"


@pytest.mark.asyncio
async def test_rename_collision_resolves_target_to_root(engine, ctx, store, two_suppliers):
    x, y = two_suppliers
    store.seed("suppliers", space_id=TENANT, name="Contoso Old", merged_into_id=y)

    conflict = await engine.check_rename(ctx, Family.SUPPLIER, x, "contoso old")

    assert conflict is not None
    assert conflict.target_id == y


@pytest.mark.asyncio
async def test_flagged_customer_conflicts_with_supplier_rename(engine, ctx, store, two_suppliers):
    x, _ = two_suppliers
    customer = store.seed("customers", space_id=TENANT, name="Litware", is_supplier=True)
    store.seed("customers", space_id=TENANT, name="Proseware", is_supplier=False)

    conflict = await engine.check_rename(ctx, Family.SUPPLIER, x, "litware")
    assert conflict is not None
    assert conflict.target_family is Family.CUSTOMER
    assert conflict.target_id == customer

    assert await engine.check_rename(ctx, Family.SUPPLIER, x, "Proseware") is None


@pytest.mark.asyncio
async def test_update_rejects_pointer_and_placeholder_names(engine, ctx, store, two_suppliers):
    x, y = two_suppliers
    with pytest.raises(ValidationError):
        await engine.update_entity(ctx, Family.SUPPLIER, x, {"merged_into_id": y})
    with pytest.raises(InvalidNameError):
        await engine.update_entity(ctx, Family.SUPPLIER, x, {"name": "   "})
    with pytest.raises(InvalidNameError):
        await engine.update_entity(ctx, Family.SUPPLIER, x, {"name": "processing…"})
    with pytest.raises(ValidationError):
        await engine.update_entity(ctx, Family.SUPPLIER, x, {"space_id": "space-2"})
    assert store.row("suppliers", x)["name"] == "Northwind"


@pytest.mark.asyncio
async def test_create_entity_conflict_modes(engine, ctx, store, two_suppliers):
    _, y = two_suppliers

    with pytest.raises(NameExistsError):
        await engine.create_entity(ctx, Family.SUPPLIER, "contoso")

    adopted = await engine.create_entity(ctx, Family.SUPPLIER, "contoso", mode=ConflictMode.AUTO_RESOLVE)
    assert adopted.id == y
    assert len(store.tables["suppliers"]) == 2

    created = await engine.create_entity(ctx, Family.SUPPLIER, "Adventure Works", {"is_customer": True})
    assert created.attributes["is_customer"] is True


@pytest.mark.asyncio
async def test_create_entity_unique_violation_becomes_conflict(engine, ctx, store):
    async def competitor(table, row):
        store.before_insert = None
        store.seed(table, space_id=row["space_id"], name=row["name"])

    store.before_insert = competitor

    with pytest.raises(NameExistsError) as excinfo:
        await engine.create_entity(ctx, Family.WAREHOUSE, "Overflow")
    assert excinfo.value.conflict.target_family is Family.WAREHOUSE


class TestAttach:
    """Document save/update paths that point a receipt at a counterparty name."""

    @pytest.mark.asyncio
    async def test_attach_without_current_matches_flagged_customer(self, engine, ctx, store):
        customer = store.seed("customers", space_id=TENANT, name="Tailspin Toys", is_supplier=True)

        result = await engine.attach(ctx, Family.SUPPLIER, "tailspin toys")

        assert result.action == "matched"
        assert result.family is Family.CUSTOMER
        assert result.entity_id == customer

    @pytest.mark.asyncio
    async def test_attach_without_current_creates(self, engine, ctx, store):
        result = await engine.attach(ctx, Family.SUPPLIER, "Wide World Importers", attributes={"tax_number": "WW1"})
        assert result.action == "created"
        assert store.row("suppliers", result.entity_id)["tax_number"] == "WW1"

    @pytest.mark.asyncio
    async def test_attach_conflict_interactive_raises(self, engine, ctx, two_suppliers):
        x, y = two_suppliers
        with pytest.raises(NameExistsError) as excinfo:
            await engine.attach(ctx, Family.SUPPLIER, "Contoso", current=EntityRef(family=Family.SUPPLIER, id=x))
        assert excinfo.value.conflict.target_id == y

    @pytest.mark.asyncio
    async def test_attach_conflict_auto_resolve_adopts(self, engine, ctx, store, two_suppliers):
        x, y = two_suppliers
        result = await engine.attach(
            ctx,
            Family.SUPPLIER,
            "Contoso",
            current=EntityRef(family=Family.SUPPLIER, id=x),
            mode=ConflictMode.AUTO_RESOLVE,
        )
        assert result.action == "adopted"
        assert result.entity_id == y
        assert store.row("suppliers", x)["name"] == "Northwind"

    @pytest.mark.asyncio
    async def test_attach_renames_canonical_of_current(self, engine, ctx, store):
        root = store.seed("suppliers", space_id=TENANT, name="Graphic Design Inst")
        alias = store.seed("suppliers", space_id=TENANT, name="GDI", merged_into_id=root)

        result = await engine.attach(
            ctx,
            Family.SUPPLIER,
            "Graphic Design Institute",
            current=EntityRef(family=Family.SUPPLIER, id=alias),
        )

        assert result.action == "renamed"
        assert result.entity_id == alias
        assert store.row("suppliers", root)["name"] == "Graphic Design Institute"
        assert store.row("suppliers", alias)["name"] == "GDI"

    @pytest.mark.asyncio
    async def test_attach_same_canonical_is_unchanged(self, engine, ctx, two_suppliers):
        x, _ = two_suppliers
        result = await engine.attach(ctx, Family.SUPPLIER, "Northwind", current=EntityRef(family=Family.SUPPLIER, id=x))
        assert result.action == "unchanged"
        assert result.entity_id == x

    @pytest.mark.asyncio
    async def test_attach_placeholder_keeps_current(self, engine, ctx, two_suppliers):
        x, _ = two_suppliers
        result = await engine.attach(ctx, Family.SUPPLIER, "识别中", current=EntityRef(family=Family.SUPPLIER, id=x))
        assert result.action == "unchanged"
        assert result.entity_id == x

    @pytest.mark.asyncio
    async def test_attach_current_customer_rename_checks_customer_namespace(self, engine, ctx, store):
        customer = store.seed("customers", space_id=TENANT, name="Coho Winery", is_supplier=True)
        store.seed("customers", space_id=TENANT, name="Coho Vineyard")

        with pytest.raises(NameExistsError):
            await engine.attach(
                ctx,
                Family.SUPPLIER,
                "Coho Vineyard",
                current=EntityRef(family=Family.CUSTOMER, id=customer),
            )

        result = await engine.attach(
            ctx,
            Family.SUPPLIER,
            "Coho Vineyard",
            current=EntityRef(family=Family.CUSTOMER, id=customer),
            mode=ConflictMode.AUTO_RESOLVE,
        )
        assert result.action == "unchanged"
        assert store.row("customers", customer)["name"] == "Coho Winery"


@pytest.mark.asyncio
async def test_counterparty_lists_include_flagged_partners(engine, ctx, store):
    supplier = store.seed("suppliers", space_id=TENANT, name="Zeta Parts")
    merged = store.seed("suppliers", space_id=TENANT, name="Zeta", merged_into_id=supplier)
    flagged = store.seed("customers", space_id=TENANT, name="Alpha Retail", is_supplier=True)
    store.seed("customers", space_id=TENANT, name="Beta Retail", is_supplier=False)

    options = await engine.counterparty_list(ctx, Family.SUPPLIER)

    assert [(option.id, option.family, option.cross_listed) for option in options] == [
        (flagged, Family.CUSTOMER, True),
        (supplier, Family.SUPPLIER, False),
    ]

    everything = await engine.counterparty_options_for_duplicate_check(ctx, Family.SUPPLIER)
    assert merged in {option.id for option in everything}

    with pytest.raises(ValidationError):
        await engine.counterparty_list(ctx, Family.ACCOUNT)


@pytest.mark.asyncio
async def test_list_for_options_includes_merged_rows(engine, ctx, store):
    root = store.seed("accounts", space_id=TENANT, name="Checking")
    store.seed("accounts", space_id=TENANT, name="Chk", merged_into_id=root)

    roots = await engine.list_roots(ctx, Family.ACCOUNT)
    options = await engine.list_for_options(ctx, Family.ACCOUNT)

    assert [record.name for record in roots] == ["Checking"]
    assert sorted(record.name for record in options) == ["Checking", "Chk"]
    assert (await engine.get_entity(ctx, Family.ACCOUNT, root)).name == "Checking"


@pytest.mark.asyncio
async def test_create_rejects_engine_columns_in_attributes(engine, ctx, other_ctx, store):
    foreign = await engine.find_or_create(other_ctx, Family.SUPPLIER, "Elsewhere")

    with pytest.raises(ValidationError):
        await engine.create_entity(ctx, Family.SUPPLIER, "Mine", {"merged_into_id": foreign.id})
    with pytest.raises(ValidationError):
        await engine.create_entity(ctx, Family.SUPPLIER, "Mine", {"name": "processing"})
    with pytest.raises(ValidationError):
        await engine.create_entity(ctx, Family.SUPPLIER, "Mine", {"space_id": "space-2"})

    assert [row["name"] for row in store.tables["suppliers"]] == ["Elsewhere"]


@pytest.mark.asyncio
async def test_sku_conflicts_respect_unit(engine, ctx, store):
    boxed = store.seed("skus", space_id=TENANT, name="Green Tea", unit="盒")
    loose = await engine.find_or_create(ctx, Family.SKU, "Green Tea", {"unit": "件"})
    assert loose.id != boxed

    adopted = await engine.create_entity(ctx, Family.SKU, "green tea", {"unit": "件"}, ConflictMode.AUTO_RESOLVE)
    assert adopted.id == loose.id
    assert adopted.attributes["unit"] == "件"

    with pytest.raises(NameExistsError) as excinfo:
        await engine.create_entity(ctx, Family.SKU, "Green Tea", {"unit": "盒"})
    assert excinfo.value.conflict.target_id == boxed

    bottled = await engine.create_entity(ctx, Family.SKU, "Green Tea", {"unit": "瓶"})
    assert bottled.id not in (boxed, loose.id)
    assert len(store.tables["skus"]) == 3


@pytest.mark.asyncio
async def test_sku_rename_checks_the_entity_unit(engine, ctx, store):
    boxed = store.seed("skus", space_id=TENANT, name="Green Tea", unit="盒")
    loose = store.seed("skus", space_id=TENANT, name="Jasmine Tea", unit="件")

    assert await engine.check_rename(ctx, Family.SKU, loose, "GREEN TEA") is None
    conflict = await engine.check_rename(ctx, Family.SKU, loose, "GREEN TEA", attributes={"unit": "盒"})
    assert conflict is not None
    assert conflict.target_id == boxed

    with pytest.raises(NameExistsError):
        await engine.update_entity(ctx, Family.SKU, loose, {"name": "Green Tea", "unit": "盒"})
    result = await engine.update_entity(ctx, Family.SKU, loose, {"name": "Green Tea"})
    assert result.action == "renamed"
    assert store.row("skus", loose)["name"] == "Green Tea"
