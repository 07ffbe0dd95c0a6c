"""Sync run tracker: per-provider run state and run lock.

Every provider has exactly one sync_runs row. The row's status is the lock:
`begin()` flips it to `running` with a single conditional UPDATE committed in
its own transaction, so two workers can never both start a run for the same
provider. Runs for different providers don't interact.

A crashed worker leaves its row `running`. Nothing here resets it
automatically: `find_stuck()` reports such rows and `reset()` (admin endpoint /
scripts/reset_stuck_syncs.py) moves them to `error`. Catalog data is never
touched by the tracker.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Protocol

from sqlalchemy import select, update

from catalog_sync.models import Provider, SyncMode, SyncRunState, SyncStatus
from catalog_sync.settings import get_settings
from catalog_sync.stores.postgres import get_session

logger = logging.getLogger("uvicorn.error")

RESET_MESSAGE = "Sync was stuck in progress - manually reset"


class SyncAlreadyRunningError(RuntimeError):
    """A run for this provider is already in progress."""

    def __init__(self, provider_slug: str):
        super().__init__(f"Sync already running for provider {provider_slug!r}")
        self.provider_slug = provider_slug


class ProviderNotRegisteredError(RuntimeError):
    """The provider has no sync state (never registered)."""

    def __init__(self, provider_slug: str):
        super().__init__(f"Provider {provider_slug!r} is not registered")
        self.provider_slug = provider_slug


class ProviderInactiveError(RuntimeError):
    """The provider is disabled (`is_active = false`) and may not start runs."""

    def __init__(self, provider_slug: str):
        super().__init__(f"Provider {provider_slug!r} is inactive")
        self.provider_slug = provider_slug


class RunCounters(Protocol):
    processed: int
    added: int
    updated: int
    skipped: int
    failed: int
    errors: list[str]
    warnings: list[str]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime | None) -> datetime | None:
    # SQLite hands back naive datetimes
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


def _normalize_slug(provider_slug: str) -> str:
    return provider_slug.strip().lower()


def _counter_values(stats: RunCounters | None) -> dict[str, Any]:
    if stats is None:
        return {}
    return {
        "records_processed": stats.processed,
        "records_added": stats.added,
        "records_updated": stats.updated,
        "records_skipped": stats.skipped,
        "records_failed": stats.failed,
        "errors_json": json.dumps(list(stats.errors)) if stats.errors else None,
        "warnings_json": json.dumps(list(stats.warnings)) if stats.warnings else None,
    }


def is_stuck(state: SyncRunState, max_age_seconds: int | None = None, now: datetime | None = None) -> bool:
    """True when the run has been `running` for longer than the allowed duration."""
    if state.status != SyncStatus.RUNNING.value:
        return False
    started = _as_utc(state.last_run_at)
    if started is None:
        return True
    max_age = get_settings().sync_max_run_seconds if max_age_seconds is None else max_age_seconds
    return (now or _utcnow()) - started > timedelta(seconds=max_age)


class SyncRunTracker:
    """Reads and transitions SyncRunState rows."""

    async def register(self, provider_slug: str) -> SyncRunState:
        """Create the provider's idle sync state (no-op when it already exists)."""
        slug = _normalize_slug(provider_slug)
        async with get_session() as session:
            provider_id = await session.scalar(select(Provider.id).where(Provider.slug == slug))
            if provider_id is None:
                raise ProviderNotRegisteredError(slug)

            state = await session.scalar(select(SyncRunState).where(SyncRunState.provider_slug == slug))
            if state is None:
                state = SyncRunState(
                    provider_slug=slug,
                    status=SyncStatus.IDLE.value,
                    mode=SyncMode.INCREMENTAL.value,
                )
                session.add(state)
                await session.flush()
                logger.info(f"[tracker] registered provider={slug}")
            return state

    async def begin(self, provider_slug: str, mode: SyncMode | str) -> datetime:
        """Atomically mark a run as started.

        Returns:
            The run start time.

        Raises:
            SyncAlreadyRunningError: another run holds the provider.
            ProviderNotRegisteredError: the provider has no sync state.
            ProviderInactiveError: the provider is disabled.
        """
        slug = _normalize_slug(provider_slug)
        mode = SyncMode(mode)
        started_at = _utcnow()

        async with get_session() as session:
            is_active = await session.scalar(select(Provider.is_active).where(Provider.slug == slug))
            if is_active is False:
                logger.warning(f"[tracker] provider={slug} is inactive, begin rejected")
                raise ProviderInactiveError(slug)

            result = await session.execute(
                update(SyncRunState)
                .where(
                    SyncRunState.provider_slug == slug,
                    SyncRunState.status != SyncStatus.RUNNING.value,
                )
                .values(
                    status=SyncStatus.RUNNING.value,
                    mode=mode.value,
                    last_run_at=started_at,
                    records_processed=0,
                    records_added=0,
                    records_updated=0,
                    records_skipped=0,
                    records_failed=0,
                    last_error=None,
                    errors_json=None,
                    warnings_json=None,
                )
                .execution_options(synchronize_session=False)
            )
            acquired = result.rowcount == 1
            exists = acquired or (
                await session.scalar(select(SyncRunState.id).where(SyncRunState.provider_slug == slug))
            ) is not None

        if not exists:
            raise ProviderNotRegisteredError(slug)
        if not acquired:
            logger.warning(f"[tracker] provider={slug} already running, begin rejected")
            raise SyncAlreadyRunningError(slug)

        logger.info(f"[tracker] provider={slug} mode={mode.value} started")
        return started_at

    async def complete(
        self,
        provider_slug: str,
        stats: RunCounters,
        feed_hash: str | None = None,
    ) -> bool:
        """Mark the running run as successful and persist its counters.

        Returns:
            False when the row was no longer `running` (e.g. reset meanwhile).
        """
        slug = _normalize_slug(provider_slug)
        now = _utcnow()
        values: dict[str, Any] = {
            "status": SyncStatus.SUCCESS.value,
            "last_finished_at": now,
            "last_success_at": now,
            **_counter_values(stats),
        }
        if feed_hash is not None:
            values["last_feed_hash"] = feed_hash

        updated = await self._finish(slug, values)
        if not updated:
            logger.warning(f"[tracker] provider={slug} was not running at completion, state left as is")
        return updated

    async def fail(
        self,
        provider_slug: str,
        error: str,
        stats: RunCounters | None = None,
    ) -> bool:
        """Mark the running run as failed, keeping partial counters if any."""
        slug = _normalize_slug(provider_slug)
        values: dict[str, Any] = {
            "status": SyncStatus.ERROR.value,
            "last_finished_at": _utcnow(),
            "last_error": error,
            **_counter_values(stats),
        }
        updated = await self._finish(slug, values)
        logger.error(f"[tracker] provider={slug} failed: {error}")
        return updated

    async def reset(self, provider_slug: str, message: str = RESET_MESSAGE) -> bool:
        """Force a `running` run to `error`.

        Returns:
            True when a running row was reset, False when it wasn't running.

        Raises:
            ProviderNotRegisteredError: the provider has no sync state.
        """
        slug = _normalize_slug(provider_slug)
        updated = await self._finish(
            slug,
            {
                "status": SyncStatus.ERROR.value,
                "last_finished_at": _utcnow(),
                "last_error": message,
            },
        )
        if updated:
            logger.warning(f"[tracker] provider={slug} reset: {message}")
            return True
        if await self.current_state(slug) is None:
            raise ProviderNotRegisteredError(slug)
        return False

    async def current_state(self, provider_slug: str) -> SyncRunState | None:
        slug = _normalize_slug(provider_slug)
        async with get_session() as session:
            return await session.scalar(select(SyncRunState).where(SyncRunState.provider_slug == slug))

    async def list_states(self) -> list[SyncRunState]:
        async with get_session() as session:
            result = await session.scalars(select(SyncRunState).order_by(SyncRunState.provider_slug))
            return list(result.all())

    async def find_stuck(self, max_age_seconds: int | None = None) -> list[SyncRunState]:
        """Runs still `running` after `max_age_seconds` (default SYNC_MAX_RUN_SECONDS)."""
        now = _utcnow()
        async with get_session() as session:
            result = await session.scalars(
                select(SyncRunState)
                .where(SyncRunState.status == SyncStatus.RUNNING.value)
                .order_by(SyncRunState.provider_slug)
            )
            running = list(result.all())
        return [state for state in running if is_stuck(state, max_age_seconds, now)]

    async def _finish(self, slug: str, values: dict[str, Any]) -> bool:
        async with get_session() as session:
            result = await session.execute(
                update(SyncRunState)
                .where(
                    SyncRunState.provider_slug == slug,
                    SyncRunState.status == SyncStatus.RUNNING.value,
                )
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            return result.rowcount == 1


# Singleton tracker instance
_tracker: SyncRunTracker | None = None


def get_sync_tracker() -> SyncRunTracker:
    """Get sync tracker singleton."""
    global _tracker
    if _tracker is None:
        _tracker = SyncRunTracker()
    return _tracker
