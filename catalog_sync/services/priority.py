"""Provider priority resolver backed by Postgres + in-memory/Redis cache.

Priority: lower number = higher priority (1 wins over 3). Unknown providers,
empty identifiers and providers without a valid priority resolve to
DEFAULT_PRIORITY so callers always get two comparable integers.

The whole priority table of a vertical is loaded with one query and cached:
- in process memory for PRIORITY_CACHE_TTL_SECONDS
- in Redis for the same TTL, so every worker shares it

If Redis is unavailable (e.g. tests / local minimal env), the resolver still
works but skips the shared cache.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field

from sqlalchemy import and_, null, select
from sqlalchemy.ext.asyncio import AsyncSession

from catalog_sync.models import Provider, ProviderVerticalPriority
from catalog_sync.settings import get_settings
from catalog_sync.stores.redis import (
    clear_priority_table_cache,
    get_priority_table_cache,
    set_priority_table_cache,
)

logger = logging.getLogger("uvicorn.error")

DEFAULT_PRIORITY = 999
MIN_PRIORITY = 1


def _normalize_provider(provider: str | None) -> str:
    return (provider or "").strip().lower()


@dataclass(frozen=True)
class PriorityTable:
    """Snapshot of provider priorities for one vertical (sync lookups)."""

    priorities: dict[str, int] = field(default_factory=dict)
    default: int = DEFAULT_PRIORITY

    def priority(self, provider: str | None) -> int:
        key = _normalize_provider(provider)
        if not key:
            return self.default
        return self.priorities.get(key, self.default)

    __call__ = priority


@dataclass
class _CacheEntry:
    table: PriorityTable
    loaded_at: float


class ProviderPriorityResolver:
    """Resolves provider priorities with a TTL cache and explicit invalidation.

    Lookups need a DB session for cache misses, so the plain
    `priority(provider) -> int` lookup lives on the PriorityTable returned by
    `snapshot()`. Sync runs take one snapshot per run and pass it to the merge;
    `priority()` here is a convenience for single lookups.
    """

    def __init__(
        self,
        ttl_seconds: int | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl_seconds = get_settings().priority_cache_ttl_seconds if ttl_seconds is None else ttl_seconds
        self._clock = clock
        self._cache: dict[int | None, _CacheEntry] = {}

    async def snapshot(
        self,
        session: AsyncSession,
        retail_vertical_id: int | None = None,
    ) -> PriorityTable:
        """Get the priority table for a vertical, loading it if the cache is stale."""
        now = self._clock()
        entry = self._cache.get(retail_vertical_id)
        if entry is not None and (now - entry.loaded_at) < self.ttl_seconds:
            return entry.table

        table = await self._try_get_shared(retail_vertical_id)
        if table is None:
            table = await load_priority_table(session, retail_vertical_id)
            await self._try_set_shared(retail_vertical_id, table)
            logger.info(
                f"[priority] loaded {len(table.priorities)} priorities for vertical={retail_vertical_id}"
            )

        self._cache[retail_vertical_id] = _CacheEntry(table=table, loaded_at=now)
        return table

    async def priority(
        self,
        session: AsyncSession,
        provider: str | None,
        retail_vertical_id: int | None = None,
    ) -> int:
        """Priority of a single provider (DEFAULT_PRIORITY when unknown)."""
        if not _normalize_provider(provider):
            return DEFAULT_PRIORITY
        table = await self.snapshot(session, retail_vertical_id)
        return table.priority(provider)

    async def invalidate(self) -> None:
        """Drop cached priorities (in-memory and shared)."""
        removed = len(self._cache)
        self._cache.clear()
        try:
            await clear_priority_table_cache()
        except RuntimeError:
            # Redis may be unavailable in tests/local minimal env.
            pass
        logger.info(f"[priority] cache invalidated ({removed} tables dropped)")

    def cache_stats(self) -> dict[str, object]:
        now = self._clock()
        return {
            "ttl_seconds": self.ttl_seconds,
            "tables": [
                {
                    "retail_vertical_id": vertical,
                    "providers": len(entry.table.priorities),
                    "age_seconds": round(now - entry.loaded_at, 1),
                }
                for vertical, entry in self._cache.items()
            ],
        }

    async def _try_get_shared(self, retail_vertical_id: int | None) -> PriorityTable | None:
        if self.ttl_seconds <= 0:
            return None
        try:
            payload = await get_priority_table_cache(retail_vertical_id)
        except RuntimeError:
            return None
        if not payload:
            return None
        try:
            priorities = {str(k): int(v) for k, v in payload.items()}
        except (TypeError, ValueError):
            return None
        return PriorityTable(priorities=priorities)

    async def _try_set_shared(self, retail_vertical_id: int | None, table: PriorityTable) -> None:
        if self.ttl_seconds <= 0:
            return
        try:
            await set_priority_table_cache(retail_vertical_id, table.priorities, self.ttl_seconds)
        except RuntimeError:
            return


def _valid_priority(value: int | None) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    if not isinstance(value, int) or value < MIN_PRIORITY:
        return None
    return value


async def load_priority_table(
    session: AsyncSession,
    retail_vertical_id: int | None = None,
) -> PriorityTable:
    """Read provider priorities from the DB in one query.

    A per-vertical override beats the provider's global priority. Inactive
    providers rank last (DEFAULT_PRIORITY). Providers are addressable by slug
    and by display name.
    """
    if retail_vertical_id is None:
        stmt = select(Provider.slug, Provider.name, Provider.is_active, Provider.priority, null())
    else:
        stmt = select(
            Provider.slug,
            Provider.name,
            Provider.is_active,
            Provider.priority,
            ProviderVerticalPriority.priority,
        ).outerjoin(
            ProviderVerticalPriority,
            and_(
                ProviderVerticalPriority.provider_id == Provider.id,
                ProviderVerticalPriority.retail_vertical_id == retail_vertical_id,
            ),
        )

    result = await session.execute(stmt.order_by(Provider.id))

    priorities: dict[str, int] = {}
    for slug, name, is_active, global_priority, vertical_priority in result.all():
        priority = _valid_priority(vertical_priority) or _valid_priority(global_priority)
        if not is_active:
            priority = DEFAULT_PRIORITY
        elif priority is None:
            logger.warning(
                f"[priority] provider {slug!r} has no valid priority, using default {DEFAULT_PRIORITY}"
            )
            priority = DEFAULT_PRIORITY
        # Names never shadow a slug
        name_key = _normalize_provider(name)
        if name_key and name_key not in priorities:
            priorities[name_key] = priority
        priorities[_normalize_provider(slug)] = priority

    return PriorityTable(priorities=priorities)


# Singleton resolver instance
_resolver: ProviderPriorityResolver | None = None


def get_priority_resolver() -> ProviderPriorityResolver:
    """Get priority resolver singleton."""
    global _resolver
    if _resolver is None:
        _resolver = ProviderPriorityResolver()
    return _resolver
