"""Provider configuration: registration and priority changes.

Priorities are owned by the configuration side (admin endpoints / seed
scripts). Every change here must be followed by a priority cache invalidation;
the callers do that once the transaction is committed.
"""

import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from catalog_sync.models import Provider, ProviderVerticalPriority

logger = logging.getLogger("uvicorn.error")


class ProviderConfigError(RuntimeError):
    pass


class ProviderNotFoundError(ProviderConfigError):
    pass


def normalize_slug(slug: str) -> str:
    normalized = (slug or "").strip().lower()
    if not normalized:
        raise ProviderConfigError("Provider slug must not be empty")
    return normalized


def _check_priority(priority: int | None) -> None:
    if priority is not None and priority < 1:
        raise ProviderConfigError(f"Priority must be >= 1, got {priority}")


async def find_provider(session: AsyncSession, slug: str) -> Provider | None:
    """Find provider by slug."""
    result = await session.execute(select(Provider).where(Provider.slug == normalize_slug(slug)))
    return result.scalar_one_or_none()


async def upsert_provider(
    session: AsyncSession,
    slug: str,
    name: str | None = None,
    priority: int | None = None,
    vertical_priorities: dict[int, int] | None = None,
    is_active: bool = True,
) -> Provider:
    """Create or update a provider and its per-vertical priorities."""
    _check_priority(priority)
    for vertical_priority in (vertical_priorities or {}).values():
        _check_priority(vertical_priority)

    provider = await find_provider(session, slug)
    if provider is None:
        provider = Provider(slug=normalize_slug(slug), name=(name or slug).strip())
        session.add(provider)
        logger.info(f"[providers] created provider={provider.slug}")

    if name:
        provider.name = name.strip()
    provider.priority = priority
    provider.is_active = is_active
    await session.flush()

    for retail_vertical_id, vertical_priority in (vertical_priorities or {}).items():
        await set_vertical_priority(session, provider, retail_vertical_id, vertical_priority)

    return provider


async def set_vertical_priority(
    session: AsyncSession,
    provider: Provider,
    retail_vertical_id: int,
    priority: int | None,
) -> None:
    """Set (or clear with None) a provider's priority override for one vertical."""
    _check_priority(priority)
    result = await session.execute(
        select(ProviderVerticalPriority).where(
            ProviderVerticalPriority.provider_id == provider.id,
            ProviderVerticalPriority.retail_vertical_id == retail_vertical_id,
        )
    )
    override = result.scalar_one_or_none()

    if priority is None:
        if override is not None:
            await session.delete(override)
        return

    if override is None:
        session.add(
            ProviderVerticalPriority(
                provider_id=provider.id,
                retail_vertical_id=retail_vertical_id,
                priority=priority,
            )
        )
    else:
        override.priority = priority
    await session.flush()


async def set_provider_priority(
    session: AsyncSession,
    slug: str,
    priority: int | None,
    retail_vertical_id: int | None = None,
) -> Provider:
    """Change a provider's global priority, or its override for one vertical."""
    provider = await find_provider(session, slug)
    if provider is None:
        raise ProviderNotFoundError(f"Unknown provider: {slug}")

    if retail_vertical_id is None:
        _check_priority(priority)
        provider.priority = priority
        await session.flush()
    else:
        await set_vertical_priority(session, provider, retail_vertical_id, priority)

    logger.info(
        f"[providers] provider={provider.slug} priority={priority} vertical={retail_vertical_id}"
    )
    return provider
