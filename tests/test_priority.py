import pytest

from catalog_sync.models import Provider
from catalog_sync.services import priority as priority_service
from catalog_sync.services.priority import (
    DEFAULT_PRIORITY,
    PriorityTable,
    ProviderPriorityResolver,
    load_priority_table,
)
from catalog_sync.stores.postgres import get_session


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


def test_priority_table_defaults() -> None:
    table = PriorityTable(priorities={"p1": 1})
    assert table.priority("p1") == 1
    assert table.priority(" P1 ") == 1
    assert table.priority("nope") == DEFAULT_PRIORITY
    assert table.priority("") == DEFAULT_PRIORITY
    assert table.priority(None) == DEFAULT_PRIORITY


@pytest.mark.asyncio
async def test_load_priority_table_by_slug_and_name(add_provider) -> None:
    await add_provider("p1", 1, name="Primary Feed")
    await add_provider("p3", 3, name="Bulk Wholesale")

    async with get_session() as session:
        table = await load_priority_table(session)

    assert table.priority("p1") == 1
    assert table.priority("PRIMARY FEED") == 1
    assert table.priority("bulk wholesale") == 3
    assert table.priority("p2") == DEFAULT_PRIORITY


@pytest.mark.asyncio
async def test_invalid_or_missing_priority_resolves_to_default(db) -> None:
    async with get_session() as session:
        session.add_all(
            [
                Provider(slug="zero", name="Zero", priority=0),
                Provider(slug="negative", name="Negative", priority=-5),
                Provider(slug="unranked", name="Unranked", priority=None),
            ]
        )

    async with get_session() as session:
        table = await load_priority_table(session)

    assert table.priority("zero") == DEFAULT_PRIORITY
    assert table.priority("negative") == DEFAULT_PRIORITY
    assert table.priority("unranked") == DEFAULT_PRIORITY


@pytest.mark.asyncio
async def test_vertical_override_beats_global_priority(add_provider) -> None:
    await add_provider("p1", 1)
    await add_provider("p3", 3, vertical_priorities={7: 1})

    async with get_session() as session:
        global_table = await load_priority_table(session)
        vertical_table = await load_priority_table(session, 7)
        other_vertical = await load_priority_table(session, 8)

    assert global_table.priority("p3") == 3
    assert vertical_table.priority("p3") == 1
    assert vertical_table.priority("p1") == 1
    assert other_vertical.priority("p3") == 3


@pytest.mark.asyncio
async def test_inactive_provider_ranks_last(add_provider) -> None:
    await add_provider("p1", 1, vertical_priorities={7: 1}, is_active=False)
    await add_provider("p3", 3)

    async with get_session() as session:
        global_table = await load_priority_table(session)
        vertical_table = await load_priority_table(session, 7)

    assert global_table.priority("p1") == DEFAULT_PRIORITY
    assert vertical_table.priority("p1") == DEFAULT_PRIORITY
    assert global_table.priority("p3") == 3


@pytest.mark.asyncio
async def test_name_never_shadows_slug(add_provider) -> None:
    await add_provider("p1", 1, name="p2")
    await add_provider("p2", 2)

    async with get_session() as session:
        table = await load_priority_table(session)

    assert table.priority("p2") == 2


@pytest.mark.asyncio
async def test_resolver_caches_until_ttl(monkeypatch: pytest.MonkeyPatch) -> None:
    loads: list[int | None] = []

    async def fake_load(session, retail_vertical_id=None):
        loads.append(retail_vertical_id)
        return PriorityTable(priorities={"p1": len(loads)})

    monkeypatch.setattr(priority_service, "load_priority_table", fake_load)
    clock = FakeClock()
    resolver = ProviderPriorityResolver(ttl_seconds=300, clock=clock)

    assert await resolver.priority(None, "p1") == 1
    clock.now += 299
    assert await resolver.priority(None, "p1") == 1
    assert loads == [None]

    clock.now += 2
    assert await resolver.priority(None, "p1") == 2
    assert loads == [None, None]

    # Verticals are cached separately
    await resolver.snapshot(None, 5)
    assert loads == [None, None, 5]


@pytest.mark.asyncio
async def test_resolver_invalidate_forces_reload(monkeypatch: pytest.MonkeyPatch) -> None:
    loads = 0

    async def fake_load(session, retail_vertical_id=None):
        nonlocal loads
        loads += 1
        return PriorityTable(priorities={"p1": 1})

    monkeypatch.setattr(priority_service, "load_priority_table", fake_load)
    resolver = ProviderPriorityResolver(ttl_seconds=300, clock=FakeClock())

    await resolver.snapshot(None)
    await resolver.snapshot(None)
    assert loads == 1

    await resolver.invalidate()
    assert resolver.cache_stats()["tables"] == []
    await resolver.snapshot(None)
    assert loads == 2


@pytest.mark.asyncio
async def test_resolver_unknown_provider_skips_lookup(monkeypatch: pytest.MonkeyPatch) -> None:
    async def fail_load(session, retail_vertical_id=None):
        raise AssertionError("should not load")

    monkeypatch.setattr(priority_service, "load_priority_table", fail_load)
    resolver = ProviderPriorityResolver(ttl_seconds=300)

    assert await resolver.priority(None, "") == DEFAULT_PRIORITY
    assert await resolver.priority(None, None) == DEFAULT_PRIORITY


@pytest.mark.asyncio
async def test_priority_change_visible_after_invalidate(add_provider) -> None:
    await add_provider("p3", 3)
    resolver = priority_service.get_priority_resolver()

    async with get_session() as session:
        assert await resolver.priority(session, "p3") == 3

    await add_provider("p3", 1)
    async with get_session() as session:
        assert await resolver.priority(session, "p3") == 3

    await resolver.invalidate()
    async with get_session() as session:
        assert await resolver.priority(session, "p3") == 1
