"""Redis store for shared caching.

Handles:
- Caching with TTL policies
- Shared provider priority tables (so every API worker and cron job sees the
  same priorities and an invalidation reaches all of them)

TTL policies:
- Provider priority table: PRIORITY_CACHE_TTL_SECONDS (default 5 minutes)
"""

import json
import logging
from typing import Any

import redis.asyncio as redis

from catalog_sync.settings import get_settings

# Key prefixes
PREFIX_PRIORITY_TABLE = "priority:table:"

# Redis client (initialized on startup)
_redis: redis.Redis | None = None
logger = logging.getLogger("uvicorn.error")


async def init_redis() -> None:
    """Initialize Redis connection."""
    global _redis
    settings = get_settings()
    _redis = redis.from_url(
        settings.redis_url,
        encoding="utf-8",
        decode_responses=True,
        socket_connect_timeout=5,
        socket_timeout=5,
    )
    # Validate connectivity early (especially for `rediss://` in production).
    await _redis.ping()
    logger.info("Redis connected")


async def close_redis() -> None:
    """Close Redis connection."""
    global _redis
    if _redis:
        await _redis.aclose()
        _redis = None


def _get_redis() -> redis.Redis:
    """Get Redis client instance."""
    if _redis is None:
        raise RuntimeError("Redis not initialized. Call init_redis() first.")
    return _redis


# ============================================================
# Generic cache operations
# ============================================================


async def cache_get(key: str) -> str | None:
    """Get value from cache.

    Args:
        key: Cache key.

    Returns:
        Cached value or None if not found.
    """
    return await _get_redis().get(key)


async def cache_set(key: str, value: str, ttl: int) -> None:
    """Set value in cache with TTL.

    Args:
        key: Cache key.
        value: Value to cache.
        ttl: Time-to-live in seconds.
    """
    await _get_redis().setex(key, ttl, value)


async def cache_delete_prefix(prefix: str) -> int:
    """Delete every key starting with `prefix`.

    Returns:
        Number of keys removed.
    """
    client = _get_redis()
    removed = 0
    async for key in client.scan_iter(match=f"{prefix}*"):
        removed += await client.delete(key)
    return removed


async def cache_get_json(key: str) -> dict[str, Any] | None:
    """Get JSON value from cache.

    Args:
        key: Cache key.

    Returns:
        Parsed JSON dict or None if not found.
    """
    value = await cache_get(key)
    if value:
        return json.loads(value)
    return None


async def cache_set_json(key: str, value: dict[str, Any], ttl: int) -> None:
    """Set JSON value in cache.

    Args:
        key: Cache key.
        value: Dict to cache as JSON.
        ttl: Time-to-live in seconds.
    """
    await cache_set(key, json.dumps(value), ttl)


# ============================================================
# Provider priority tables
# ============================================================


def _priority_table_key(retail_vertical_id: int | None) -> str:
    scope = "global" if retail_vertical_id is None else str(retail_vertical_id)
    return f"{PREFIX_PRIORITY_TABLE}{scope}"


async def get_priority_table_cache(retail_vertical_id: int | None) -> dict[str, Any] | None:
    """Get cached provider -> priority mapping for a vertical."""
    return await cache_get_json(_priority_table_key(retail_vertical_id))


async def set_priority_table_cache(
    retail_vertical_id: int | None,
    priorities: dict[str, int],
    ttl: int,
) -> None:
    """Cache provider -> priority mapping for a vertical."""
    await cache_set_json(_priority_table_key(retail_vertical_id), priorities, ttl)


async def clear_priority_table_cache() -> int:
    """Drop every cached priority table (all verticals)."""
    return await cache_delete_prefix(PREFIX_PRIORITY_TABLE)
