import pytest
from sqlalchemy import select

from catalog_sync.models import MasterRecord, ProviderVendorMapping
from catalog_sync.services.merge import BatchWriteError, merge_items
from catalog_sync.services.policy import ReplaceOptions
from catalog_sync.services.priority import PriorityTable
from catalog_sync.stores.postgres import get_session

VERTICAL = 1
PRIORITIES = PriorityTable(priorities={"p1": 1, "p2": 2, "p3": 3})
UPC = "000381201669"


async def _merge(provider, items, options=None, mode="incremental", priorities=PRIORITIES, vertical=VERTICAL):
    async with get_session() as session:
        return await merge_items(
            session,
            provider,
            items,
            options or ReplaceOptions(),
            priorities,
            vertical,
            mode,
        )


async def _record(natural_key: str, vertical: int = VERTICAL) -> MasterRecord | None:
    async with get_session() as session:
        result = await session.execute(
            select(MasterRecord).where(
                MasterRecord.retail_vertical_id == vertical,
                MasterRecord.natural_key == natural_key,
            )
        )
        return result.scalar_one_or_none()


async def _catalog(vertical: int = VERTICAL) -> dict[str, tuple]:
    async with get_session() as session:
        result = await session.execute(
            select(MasterRecord).where(MasterRecord.retail_vertical_id == vertical)
        )
        return {
            r.natural_key: (r.name, r.brand, r.specifications_json, r.source_provider, r.source_locked)
            for r in result.scalars()
        }


def _stats_add_up(stats) -> bool:
    return stats.processed == stats.added + stats.updated + stats.skipped + stats.failed


@pytest.mark.asyncio
async def test_inserts_new_records(db) -> None:
    stats = await _merge(
        "p3",
        [
            {"natural_key": UPC, "name": "Drill", "brand": "Acme", "specifications": {"volts": 18}},
            {"natural_key": "111", "name": "Hammer"},
        ],
    )
    assert (stats.processed, stats.added, stats.updated, stats.skipped, stats.failed) == (2, 2, 0, 0, 0)

    record = await _record(UPC)
    assert record.name == "Drill"
    assert record.source_provider == "p3"
    assert record.source_locked is False
    assert record.version == 1
    assert record.specifications_json == '{"volts":18}'


@pytest.mark.asyncio
async def test_higher_priority_provider_takes_over_and_lower_is_ignored(db) -> None:
    await _merge("p3", [{"upc": UPC, "name": "Drill (P3 name)"}])

    stats = await _merge("p1", [{"upc": UPC, "name": "Cordless Drill 18V"}])
    assert stats.updated == 1
    record = await _record(UPC)
    assert record.name == "Cordless Drill 18V"
    assert record.source_provider == "p1"
    assert record.version == 2

    stats = await _merge("p3", [{"upc": UPC, "name": "Drill (P3 rename)"}])
    assert stats.updated == 0
    assert stats.skipped == 1
    assert stats.skip_reasons == {"LOWER_PRIORITY": 1}
    record = await _record(UPC)
    assert record.name == "Cordless Drill 18V"
    assert record.source_provider == "p1"


@pytest.mark.asyncio
async def test_equal_priority_keeps_incumbent(db) -> None:
    priorities = PriorityTable(priorities={"p3": 3, "p3b": 3})
    await _merge("p3", [{"upc": UPC, "name": "First"}], priorities=priorities)
    stats = await _merge("p3b", [{"upc": UPC, "name": "Second"}], priorities=priorities)

    assert stats.skip_reasons == {"EQUAL_PRIORITY": 1}
    assert (await _record(UPC)).name == "First"


@pytest.mark.asyncio
async def test_rerun_of_same_feed_skips_everything(db) -> None:
    items = [{"natural_key": "111", "name": "Hammer", "brand": "Acme"}, {"natural_key": "222", "name": "Saw"}]
    await _merge("p2", items)

    stats = await _merge("p2", items)
    assert (stats.added, stats.updated, stats.skipped) == (0, 0, 2)
    assert stats.skip_reasons == {"UNCHANGED": 2}
    assert (await _record("111")).version == 1


@pytest.mark.asyncio
async def test_blank_and_missing_values_are_not_changes(db) -> None:
    await _merge("p2", [{"natural_key": "111", "name": "Hammer", "brand": None}])
    stats = await _merge("p2", [{"natural_key": "111", "name": " Hammer ", "brand": "  "}])
    assert stats.skip_reasons == {"UNCHANGED": 1}


@pytest.mark.asyncio
async def test_same_provider_refresh_updates_fields(db) -> None:
    await _merge("p2", [{"natural_key": "111", "name": "Hammer", "brand": "Acme"}])
    stats = await _merge("p2", [{"natural_key": "111", "name": "Hammer", "brand": "Stanley"}])

    assert stats.updated == 1
    record = await _record("111")
    assert record.brand == "Stanley"
    assert record.version == 2


@pytest.mark.asyncio
async def test_malformed_items_are_isolated(db) -> None:
    stats = await _merge(
        "p2",
        [
            {"natural_key": "111", "name": "Hammer"},
            {"natural_key": "0", "name": "Placeholder"},
            {"natural_key": "222"},
            {"natural_key": "333", "name": "Saw", "cost": "n/a"},
            {"natural_key": "444", "name": "Level"},
        ],
    )
    assert (stats.processed, stats.added, stats.failed) == (5, 2, 3)
    assert _stats_add_up(stats)
    assert len(stats.errors) == 3
    assert any(e.startswith("222:") for e in stats.errors)
    assert set(await _catalog()) == {"111", "444"}


@pytest.mark.asyncio
async def test_duplicate_keys_last_occurrence_wins(db) -> None:
    stats = await _merge(
        "p2",
        [
            {"natural_key": "111", "name": "Old name"},
            {"natural_key": "111", "name": "New name"},
        ],
    )
    assert (stats.processed, stats.added, stats.skipped) == (2, 1, 1)
    assert stats.skip_reasons == {"DUPLICATE_IN_FEED": 1}
    assert stats.warnings
    assert (await _record("111")).name == "New name"


@pytest.mark.asyncio
async def test_locked_record_is_kept_unless_manual_override(db) -> None:
    await _merge("p3", [{"upc": UPC, "name": "Pinned"}], options=ReplaceOptions(source_locked=True))
    assert (await _record(UPC)).source_locked is True

    stats = await _merge("p1", [{"upc": UPC, "name": "P1 name"}])
    assert stats.skip_reasons == {"SOURCE_LOCKED": 1}
    assert (await _record(UPC)).name == "Pinned"

    # The owner can still refresh its own locked record; the lock stays
    await _merge("p3", [{"upc": UPC, "name": "Pinned v2"}])
    record = await _record(UPC)
    assert (record.name, record.source_locked) == ("Pinned v2", True)

    stats = await _merge("p1", [{"upc": UPC, "name": "Admin fix"}], options=ReplaceOptions(manual_override=True))
    assert stats.updated == 1
    record = await _record(UPC)
    assert (record.name, record.source_provider, record.source_locked) == ("Admin fix", "p1", True)


@pytest.mark.asyncio
async def test_run_can_unlock_records(db) -> None:
    await _merge("p2", [{"upc": UPC, "name": "Drill"}], options=ReplaceOptions(source_locked=True))
    stats = await _merge("p2", [{"upc": UPC, "name": "Drill"}], options=ReplaceOptions(source_locked=False))
    assert stats.updated == 1
    assert (await _record(UPC)).source_locked is False


@pytest.mark.asyncio
async def test_verticals_are_independent(db) -> None:
    await _merge("p3", [{"upc": UPC, "name": "Vertical 1"}], vertical=1)
    stats = await _merge("p3", [{"upc": UPC, "name": "Vertical 2"}], vertical=2)

    assert stats.added == 1
    assert (await _record(UPC, 1)).name == "Vertical 1"
    assert (await _record(UPC, 2)).name == "Vertical 2"


@pytest.mark.asyncio
async def test_full_and_incremental_modes_agree(db) -> None:
    seed = [{"natural_key": str(n), "name": f"Item {n}"} for n in range(1, 6)]
    feed = [{"natural_key": str(n), "name": f"Better item {n}"} for n in range(3, 9)]

    results = []
    for vertical, mode in ((1, "full"), (2, "incremental")):
        await _merge("p3", seed, vertical=vertical)
        results.append(await _merge("p1", feed, mode=mode, vertical=vertical))

    assert [(s.added, s.updated, s.skipped) for s in results] == [(3, 3, 0), (3, 3, 0)]
    catalog = await _catalog(1)
    assert catalog == await _catalog(2)
    assert catalog["1"][0] == "Item 1"
    assert catalog["5"][0] == "Better item 5"
    assert catalog["8"][3] == "p1"


@pytest.mark.asyncio
async def test_bulk_merge_matches_one_at_a_time(db, monkeypatch: pytest.MonkeyPatch) -> None:
    from catalog_sync.settings import get_settings

    # Small batches so chunking is exercised
    monkeypatch.setattr(get_settings(), "merge_batch_size", 2)
    monkeypatch.setattr(get_settings(), "merge_lookup_chunk_size", 3)

    runs = [
        ("p3", [{"natural_key": str(n), "name": f"P3 {n}", "brand": "Acme"} for n in range(1, 8)], ReplaceOptions()),
        ("p1", [{"natural_key": str(n), "name": f"P1 {n}"} for n in range(4, 10)], ReplaceOptions()),
        ("p2", [{"natural_key": str(n), "name": f"P2 {n}"} for n in (1, 5, 9, 10)], ReplaceOptions()),
        ("p3", [{"natural_key": "5", "name": "P3 pinned"}], ReplaceOptions(manual_override=True, source_locked=True)),
        ("p1", [{"natural_key": "5", "name": "P1 again"}, {"natural_key": "11", "name": "P1 11"}], ReplaceOptions()),
    ]

    for provider, items, options in runs:
        await _merge(provider, items, options=options, vertical=1)
    for provider, items, options in runs:
        for item in items:
            await _merge(provider, [item], options=options, vertical=2)

    assert await _catalog(1) == await _catalog(2)
    assert (await _catalog(1))["5"][:1] == ("P3 pinned",)


@pytest.mark.asyncio
async def test_vendor_mappings_follow_each_provider(db) -> None:
    await _merge("p3", [{"upc": UPC, "name": "Drill", "vendor_sku": "P3-DR", "cost": "10.00", "quantity_available": 4}])
    # p3 loses ownership but keeps its own price / stock current
    stats = await _merge("p1", [{"upc": UPC, "name": "Drill 18V", "vendor_sku": "P1-DR", "cost": 9.5}])
    assert stats.mappings_added == 1

    stats = await _merge("p3", [{"upc": UPC, "name": "Drill", "vendor_sku": "P3-DR", "cost": "11.25", "quantity_available": 0}])
    assert stats.skip_reasons == {"LOWER_PRIORITY": 1}
    assert stats.mappings_updated == 1

    stats = await _merge("p3", [{"upc": UPC, "name": "Drill", "vendor_sku": "P3-DR", "cost": "11.25", "quantity_available": 0}])
    assert (stats.mappings_added, stats.mappings_updated) == (0, 0)

    record = await _record(UPC)
    async with get_session() as session:
        result = await session.execute(
            select(ProviderVendorMapping)
            .where(ProviderVendorMapping.record_id == record.id)
            .order_by(ProviderVendorMapping.provider_slug)
        )
        mappings = [(m.provider_slug, m.vendor_sku, m.cost, m.quantity_available) for m in result.scalars()]

    assert mappings == [("p1", "P1-DR", 9.5, None), ("p3", "P3-DR", 11.25, 0)]


@pytest.mark.asyncio
async def test_empty_feed_is_a_noop(db) -> None:
    stats = await _merge("p1", [])
    assert (stats.processed, stats.added, stats.updated, stats.skipped, stats.failed) == (0, 0, 0, 0, 0)


@pytest.mark.asyncio
async def test_batch_write_failure_raises_with_partial_stats(db, monkeypatch: pytest.MonkeyPatch) -> None:
    from sqlalchemy.exc import OperationalError

    from catalog_sync.services import merge as merge_service

    async def broken_update(session, planned, batch_size, stats):
        raise OperationalError("UPDATE master_records", {}, Exception("disk I/O error"))

    await _merge("p3", [{"upc": UPC, "name": "Drill"}])
    monkeypatch.setattr(merge_service, "_update_records", broken_update)

    with pytest.raises(BatchWriteError) as exc_info:
        await _merge("p1", [{"upc": UPC, "name": "Drill 18V"}, {"natural_key": "111", "name": "Hammer"}])

    assert exc_info.value.stats.processed == 2
    assert exc_info.value.stats.added == 1
    # Transaction rolled back
    assert await _record("111") is None
    assert (await _record(UPC)).source_provider == "p3"


@pytest.mark.asyncio
async def test_upc_000381201669_scenario(db) -> None:
    await _merge("p1", [{"upc": UPC, "name": "Cordless Drill"}])

    stats = await _merge("p3", [{"upc": UPC, "name": "Drill, cordless (P3)"}])
    assert (stats.skipped, stats.updated) == (1, 0)
    assert (await _record(UPC)).name == "Cordless Drill"

    stats = await _merge("p1", [{"upc": UPC, "name": "Cordless Drill 18V"}])
    assert (stats.updated, stats.skipped) == (1, 0)
    assert (await _record(UPC)).name == "Cordless Drill 18V"

    stats = await _merge("p3", [{"upc": "000381209999", "name": "Brand new item"}])
    assert stats.added == 1
    assert (await _record("000381209999")).source_provider == "p3"


@pytest.mark.asyncio
async def test_concurrent_version_bump_is_left_untouched(db, monkeypatch: pytest.MonkeyPatch) -> None:
    from sqlalchemy import update

    from catalog_sync.services import merge as merge_service

    await _merge("p3", [{"upc": UPC, "name": "Drill"}, {"natural_key": "111", "name": "Hammer"}])
    load = merge_service.load_existing_records

    async def load_then_bump(session, retail_vertical_id, natural_keys=None, chunk_size=None):
        existing = await load(session, retail_vertical_id, natural_keys, chunk_size)
        # Another writer updates the drill after it was loaded
        await session.execute(
            update(MasterRecord)
            .where(MasterRecord.natural_key == UPC)
            .values(name="Drill (edited)", version=MasterRecord.version + 1)
            .execution_options(synchronize_session=False)
        )
        return existing

    monkeypatch.setattr(merge_service, "load_existing_records", load_then_bump)
    stats = await _merge("p1", [{"upc": UPC, "name": "Drill 18V"}, {"natural_key": "111", "name": "Claw Hammer"}])

    assert (stats.updated, stats.skipped, stats.conflicts) == (1, 1, 1)
    assert stats.skip_reasons == {"VERSION_CONFLICT": 1}
    assert stats.warnings
    assert _stats_add_up(stats)

    drill = await _record(UPC)
    assert (drill.name, drill.source_provider, drill.version) == ("Drill (edited)", "p3", 2)
    hammer = await _record("111")
    assert (hammer.name, hammer.source_provider) == ("Claw Hammer", "p1")
