"""Shared fixtures.

Engine tests run against a temporary SQLite file (aiosqlite) so no Postgres or
Redis server is needed. Redis stays uninitialized: the priority resolver then
only uses its in-process cache.
"""

import pytest

from catalog_sync.services import priority as priority_service
from catalog_sync.services import sync_tracker as tracker_service
from catalog_sync.services.providers import upsert_provider
from catalog_sync.stores.postgres import close_db, create_tables, get_session, init_db


@pytest.fixture(autouse=True)
def _fresh_singletons():
    """Each test gets its own priority cache and tracker."""
    priority_service._resolver = None
    tracker_service._tracker = None
    yield
    priority_service._resolver = None
    tracker_service._tracker = None


@pytest.fixture
async def db(tmp_path):
    """Initialize an empty catalog database."""
    await init_db(f"sqlite+aiosqlite:///{tmp_path / 'catalog.db'}")
    await create_tables()
    yield
    await close_db()


@pytest.fixture
def add_provider(db):
    """Register a provider (priority config + idle sync state)."""

    async def _add(
        slug: str,
        priority: int | None,
        name: str | None = None,
        vertical_priorities: dict[int, int] | None = None,
        is_active: bool = True,
    ) -> None:
        async with get_session() as session:
            await upsert_provider(
                session,
                slug=slug,
                name=name,
                priority=priority,
                vertical_priorities=vertical_priorities,
                is_active=is_active,
            )
        await tracker_service.get_sync_tracker().register(slug)

    return _add
