"""Sync orchestration: one provider feed -> master catalog.

Flow of `run_sync()`:
1. Take the provider's run lock (SyncRunTracker.begin)
2. Fingerprint the feed together with vertical / mode / lock stamping;
   identical to the last successful run -> done
3. Snapshot provider priorities for the vertical
4. Bulk merge in a single transaction
5. Record success (with the feed fingerprint) or failure on the run state

The run lock is always released: any error after begin() marks the run as
`error` and is re-raised as SyncRunError.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from catalog_sync.models import SyncMode
from catalog_sync.services.change_detection import compute_feed_fingerprint
from catalog_sync.services.items import ProviderItem
from catalog_sync.services.merge import BatchWriteError, MergeStats, merge_items
from catalog_sync.services.policy import ReplaceOptions
from catalog_sync.services.priority import ProviderPriorityResolver, get_priority_resolver
from catalog_sync.services.sync_tracker import SyncRunTracker, get_sync_tracker
from catalog_sync.settings import get_settings
from catalog_sync.stores.postgres import get_session

logger = logging.getLogger("uvicorn.error")

SKIP_UNCHANGED_FEED = "UNCHANGED_FEED"


@dataclass
class RunResult:
    provider: str
    mode: str
    retail_vertical_id: int
    processed: int = 0
    added: int = 0
    updated: int = 0
    skipped: int = 0
    failed: int = 0
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    skip_reasons: dict[str, int] = field(default_factory=dict)
    mappings_added: int = 0
    mappings_updated: int = 0
    feed_hash: str | None = None
    feed_unchanged: bool = False
    started_at: datetime | None = None
    finished_at: datetime | None = None

    @classmethod
    def from_stats(cls, stats: MergeStats, **kwargs: Any) -> RunResult:
        return cls(
            processed=stats.processed,
            added=stats.added,
            updated=stats.updated,
            skipped=stats.skipped,
            failed=stats.failed,
            errors=list(stats.errors),
            warnings=list(stats.warnings),
            skip_reasons=dict(stats.skip_reasons),
            mappings_added=stats.mappings_added,
            mappings_updated=stats.mappings_updated,
            **kwargs,
        )


class SyncRunError(RuntimeError):
    """A sync run failed after it started; `result` holds the partial counters."""

    def __init__(self, message: str, result: RunResult):
        super().__init__(message)
        self.result = result


async def run_sync(
    provider: str,
    mode: SyncMode | str,
    items: Sequence[ProviderItem | Mapping[str, Any]],
    *,
    retail_vertical_id: int | None = None,
    options: ReplaceOptions | None = None,
    force: bool = False,
    raw_feed: bytes | str | None = None,
    tracker: SyncRunTracker | None = None,
    resolver: ProviderPriorityResolver | None = None,
) -> RunResult:
    """Run one sync for `provider`.

    Args:
        provider: Provider slug.
        mode: `full` or `incremental`.
        items: Normalized feed records.
        retail_vertical_id: Target vertical (DEFAULT_RETAIL_VERTICAL_ID when None).
        options: Manual override / lock stamping.
        force: Merge even if the feed is identical to the last successful run.
        raw_feed: Original feed bytes; fingerprinted instead of the items.

    Returns:
        RunResult with processed == added + updated + skipped + failed.

    Raises:
        SyncAlreadyRunningError: another run holds the provider (state untouched).
        ProviderNotRegisteredError: unknown provider.
        ProviderInactiveError: the provider is disabled.
        SyncRunError: the run started and failed (state set to `error`).
    """
    slug = provider.strip().lower()
    mode = SyncMode(mode)
    options = options or ReplaceOptions()
    vertical = retail_vertical_id or get_settings().default_retail_vertical_id
    tracker = tracker or get_sync_tracker()
    resolver = resolver or get_priority_resolver()
    items = list(items)

    started_at = await tracker.begin(slug, mode)
    result = RunResult(provider=slug, mode=mode.value, retail_vertical_id=vertical, started_at=started_at)

    try:
        result.feed_hash = compute_feed_fingerprint(
            items,
            raw_feed=raw_feed,
            context={
                "retail_vertical_id": vertical,
                "mode": mode.value,
                "source_locked": options.source_locked,
            },
        )

        state = await tracker.current_state(slug)
        previous_hash = state.last_feed_hash if state is not None else None
        if not force and not options.manual_override and previous_hash == result.feed_hash:
            result.processed = result.skipped = len(items)
            if items:
                result.skip_reasons = {SKIP_UNCHANGED_FEED: len(items)}
            result.feed_unchanged = True
            result.finished_at = datetime.now(timezone.utc)
            await tracker.complete(slug, result, result.feed_hash)
            logger.info(f"[sync] provider={slug} feed unchanged, {len(items)} records skipped")
            return result

        async with get_session() as session:
            priorities = await resolver.snapshot(session, vertical)
            stats = await merge_items(session, slug, items, options, priorities, vertical, mode)

        merged = RunResult.from_stats(
            stats,
            provider=slug,
            mode=mode.value,
            retail_vertical_id=vertical,
            feed_hash=result.feed_hash,
            started_at=started_at,
            finished_at=datetime.now(timezone.utc),
        )
        await tracker.complete(slug, merged, merged.feed_hash)
        logger.info(
            f"[sync] provider={slug} done processed={merged.processed} added={merged.added} "
            f"updated={merged.updated} skipped={merged.skipped} failed={merged.failed}"
        )
        return merged

    except BatchWriteError as e:
        partial = RunResult.from_stats(
            e.stats,
            provider=slug,
            mode=mode.value,
            retail_vertical_id=vertical,
            feed_hash=result.feed_hash,
            started_at=started_at,
            finished_at=datetime.now(timezone.utc),
        )
        await tracker.fail(slug, str(e), partial)
        raise SyncRunError(str(e), partial) from e

    except Exception as e:
        logger.exception(f"[sync] provider={slug} run failed")
        message = f"{e.__class__.__name__}: {e}"
        result.finished_at = datetime.now(timezone.utc)
        await tracker.fail(slug, message)
        raise SyncRunError(message, result) from e
