"""
Tests for the warehouse/location two-level forest.
"""

import pytest

from fakes import OTHER_TENANT, TENANT
from tally.identity import Family, ValidationError


@pytest.fixture
def warehouses(store):
    main = store.seed("warehouse", space_id=TENANT, name="Main")
    annex = store.seed("warehouse", space_id=TENANT, name="Annex")
    return main, annex


@pytest.mark.asyncio
async def test_location_merge_within_one_warehouse(engine, ctx, store, warehouses):
    main, _ = warehouses
    a1 = store.seed("location", warehouse_id=main, name="A1")
    a2 = store.seed("location", warehouse_id=main, name="A2")

    report = await engine.merge(ctx, Family.LOCATION, [a2], a1)

    assert report.final_target_id == a1
    assert store.pointer("location", a2) == a1


@pytest.mark.asyncio
async def test_cross_warehouse_location_merge_rejected(engine, ctx, store, warehouses):
    main, annex = warehouses
    a1 = store.seed("location", warehouse_id=main, name="A1")
    a2 = store.seed("location", warehouse_id=annex, name="A2")

    with pytest.raises(ValidationError):
        await engine.merge(ctx, Family.LOCATION, [a2], a1)
    assert store.pointer("location", a2) is None


@pytest.mark.asyncio
async def test_location_merge_in_foreign_warehouse_rejected(engine, ctx, store):
    foreign = store.seed("warehouse", space_id=OTHER_TENANT, name="Theirs")
    l1 = store.seed("location", warehouse_id=foreign, name="L1")
    l2 = store.seed("location", warehouse_id=foreign, name="L2")

    with pytest.raises(ValidationError):
        await engine.merge(ctx, Family.LOCATION, [l2], l1)


@pytest.mark.asyncio
async def test_location_find_or_create_is_scoped_by_warehouse(engine, ctx, store, warehouses):
    main, annex = warehouses
    in_main = await engine.find_or_create(ctx, Family.LOCATION, "Shelf 1", warehouse_id=main)
    in_annex = await engine.find_or_create(ctx, Family.LOCATION, "shelf 1", warehouse_id=annex)
    again = await engine.find_or_create(ctx, Family.LOCATION, "SHELF 1", warehouse_id=main)

    assert in_main.id != in_annex.id
    assert again.id == in_main.id
    assert in_main.scope_id == main

    with pytest.raises(ValidationError):
        await engine.find_or_create(ctx, Family.LOCATION, "Shelf 2")


@pytest.mark.asyncio
async def test_listing_includes_merged_warehouse_locations_with_dedup(engine, ctx, store, warehouses):
    main, annex = warehouses
    store.seed("location", warehouse_id=main, name="A1")
    store.seed("location", warehouse_id=main, name="Cold Room")
    store.seed("location", warehouse_id=annex, name="a1 ")
    only_annex = store.seed("location", warehouse_id=annex, name="Dock")

    await engine.merge(ctx, Family.WAREHOUSE, [annex], main)

    assert await engine.warehouse_ids_resolving_to(ctx, annex) == [main, annex]

    listed = await engine.list_locations(ctx, main)
    names = [record.name for record in listed]
    assert names == ["A1", "Cold Room", "Dock"]
    assert listed[-1].id == only_annex
    assert listed[-1].scope_id == annex

    via_alias = await engine.list_locations(ctx, annex)
    assert [record.name for record in via_alias] == names


@pytest.mark.asyncio
async def test_listing_hides_merged_locations_unless_requested(engine, ctx, store, warehouses):
    main, _ = warehouses
    a1 = store.seed("location", warehouse_id=main, name="A1")
    store.seed("location", warehouse_id=main, name="A1-old", merged_into_id=a1)

    assert [record.name for record in await engine.list_locations(ctx, main)] == ["A1"]
    with_merged = await engine.list_locations(ctx, main, include_merged=True)
    assert sorted(record.name for record in with_merged) == ["A1", "A1-old"]


@pytest.mark.asyncio
async def test_location_unmerge_derives_warehouse(engine, ctx, store, warehouses):
    main, _ = warehouses
    a1 = store.seed("location", warehouse_id=main, name="A1")
    a2 = store.seed("location", warehouse_id=main, name="A2", merged_into_id=a1)

    report = await engine.unmerge(ctx, Family.LOCATION, a2)

    assert report.previous_target_id == a1
    assert store.pointer("location", a2) is None


@pytest.mark.asyncio
async def test_listing_unknown_warehouse_rejected(engine, ctx):
    with pytest.raises(ValidationError):
        await engine.list_locations(ctx, "no-such-warehouse")


@pytest.mark.asyncio
async def test_location_attributes_cannot_change_warehouse(engine, ctx, store, warehouses):
    main, annex = warehouses

    with pytest.raises(ValidationError):
        await engine.find_or_create(ctx, Family.LOCATION, "B7", {"warehouse_id": annex}, warehouse_id=main)
    with pytest.raises(ValidationError):
        await engine.create_entity(ctx, Family.LOCATION, "B7", {"warehouse_id": annex}, warehouse_id=main)

    assert store.tables.get("location", []) == []
