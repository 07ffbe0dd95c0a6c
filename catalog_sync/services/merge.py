"""Bulk merge executor: provider items -> master_records.

A feed can carry tens of thousands of records. Touching the DB per record
(select, decide, insert/update) means ~3 round-trips per item, so the merge
works in three phases instead:

1. Load: one query (or one per IN-chunk) fetches every existing record the
   feed can touch into an in-memory map keyed by natural key.
2. Decide: each item is normalized, checked against the replacement policy and
   diffed against the existing values, entirely in memory.
3. Write: batched INSERT ... RETURNING for new records, one executemany UPDATE
   by primary key (guarded by `version`) for replaced records, then the same
   for vendor mappings.

Notes:
- A malformed item never aborts the run: it is counted as failed.
- Any DB error during the write phase raises BatchWriteError with the counters
  reached so far; the caller's session is rolled back.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator, Mapping, Sequence
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, TypeVar

from sqlalchemy import bindparam, insert, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from catalog_sync.models import MasterRecord, ProviderVendorMapping, SyncMode
from catalog_sync.services.change_detection import has_changes
from catalog_sync.services.items import (
    TRACKED_FIELDS,
    ItemTransformError,
    ProviderItem,
    parse_provider_item,
)
from catalog_sync.services.policy import (
    PriorityLookup,
    Provenance,
    ReplaceOptions,
    evaluate_replacement,
)
from catalog_sync.settings import Settings, get_settings

logger = logging.getLogger("uvicorn.error")

T = TypeVar("T")

MAPPING_FIELDS: tuple[str, ...] = ("vendor_sku", "cost", "map_price", "msrp", "quantity_available")

# Skip reason codes (policy reasons are added as-is)
SKIP_UNCHANGED = "UNCHANGED"
SKIP_DUPLICATE = "DUPLICATE_IN_FEED"
SKIP_VERSION_CONFLICT = "VERSION_CONFLICT"


@dataclass
class MergeStats:
    processed: int = 0
    added: int = 0
    updated: int = 0
    skipped: int = 0
    failed: int = 0
    conflicts: int = 0
    mappings_added: int = 0
    mappings_updated: int = 0
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    skip_reasons: dict[str, int] = field(default_factory=dict)
    max_reported: int = 100

    def skip(self, reason: str) -> None:
        self.skipped += 1
        self.skip_reasons[reason] = self.skip_reasons.get(reason, 0) + 1

    def error(self, message: str) -> None:
        self.failed += 1
        if len(self.errors) < self.max_reported:
            self.errors.append(message)

    def warn(self, message: str) -> None:
        if len(self.warnings) < self.max_reported:
            self.warnings.append(message)

    def as_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data.pop("max_reported")
        return data


class BatchWriteError(RuntimeError):
    """A batched write failed; carries the counters reached before the failure."""

    def __init__(self, message: str, stats: MergeStats):
        super().__init__(message)
        self.stats = stats


@dataclass
class _PlannedUpdate:
    record_id: int
    version: int
    values: dict[str, Any]


def _chunks(items: Sequence[T], size: int) -> Iterator[Sequence[T]]:
    for start in range(0, len(items), size):
        yield items[start : start + size]


_EXISTING_COLUMNS = (
    MasterRecord.id,
    MasterRecord.natural_key,
    MasterRecord.version,
    MasterRecord.source_provider,
    MasterRecord.source_locked,
    *(getattr(MasterRecord, name) for name in TRACKED_FIELDS),
)


async def load_existing_records(
    session: AsyncSession,
    retail_vertical_id: int,
    natural_keys: Iterable[str] | None = None,
    chunk_size: int | None = None,
) -> dict[str, dict[str, Any]]:
    """Load existing master records into a natural_key -> values map.

    Args:
        session: DB session.
        retail_vertical_id: Vertical to load.
        natural_keys: Keys to load (chunked IN lists). None loads the whole vertical.
        chunk_size: Max keys per IN list.
    """
    base = select(*_EXISTING_COLUMNS).where(MasterRecord.retail_vertical_id == retail_vertical_id)

    if natural_keys is None:
        result = await session.execute(base)
        return {row["natural_key"]: dict(row) for row in result.mappings()}

    keys = sorted(set(natural_keys))
    size = chunk_size or get_settings().merge_lookup_chunk_size
    existing: dict[str, dict[str, Any]] = {}
    for chunk in _chunks(keys, size):
        result = await session.execute(base.where(MasterRecord.natural_key.in_(chunk)))
        for row in result.mappings():
            existing[row["natural_key"]] = dict(row)
    return existing


async def _load_vendor_mappings(
    session: AsyncSession,
    provider: str,
    record_ids: Sequence[int],
    chunk_size: int,
) -> dict[int, dict[str, Any]]:
    mappings: dict[int, dict[str, Any]] = {}
    for chunk in _chunks(sorted(set(record_ids)), chunk_size):
        stmt = select(
            ProviderVendorMapping.id,
            ProviderVendorMapping.record_id,
            *(getattr(ProviderVendorMapping, name) for name in MAPPING_FIELDS),
        ).where(
            ProviderVendorMapping.provider_slug == provider,
            ProviderVendorMapping.record_id.in_(chunk),
        )
        result = await session.execute(stmt)
        for row in result.mappings():
            mappings[row["record_id"]] = dict(row)
    return mappings


def _dedupe_items(
    provider: str,
    items: Sequence[ProviderItem | Mapping[str, Any]],
    stats: MergeStats,
) -> dict[str, ProviderItem]:
    """Normalize items; the last occurrence of a natural key wins."""
    parsed: dict[str, ProviderItem] = {}
    for raw in items:
        stats.processed += 1
        try:
            item = parse_provider_item(raw, provider)
        except ItemTransformError as e:
            key = e.natural_key or "?"
            logger.warning(f"[merge] provider={provider} key={key}: {e}")
            stats.error(f"{key}: {e}")
            continue

        if item.natural_key in parsed:
            stats.skip(SKIP_DUPLICATE)
            stats.warn(f"{item.natural_key}: duplicate in feed, earlier occurrence ignored")
            # Keep insertion order of the last occurrence
            del parsed[item.natural_key]
        parsed[item.natural_key] = item
    return parsed


async def merge_items(
    session: AsyncSession,
    provider: str,
    items: Sequence[ProviderItem | Mapping[str, Any]],
    options: ReplaceOptions,
    priorities: PriorityLookup,
    retail_vertical_id: int,
    mode: SyncMode | str = SyncMode.INCREMENTAL,
) -> MergeStats:
    """Merge one provider's feed into the master catalog.

    Args:
        session: DB session (the caller commits).
        provider: Slug of the provider running the sync.
        items: Feed records (dicts in the shared schema or ProviderItem values).
        options: Run options (manual override / lock stamping).
        priorities: Provider -> priority lookup snapshot.
        retail_vertical_id: Target vertical.
        mode: `full` loads the whole vertical, `incremental` only the feed's keys.

    Returns:
        MergeStats where processed == added + updated + skipped + failed.

    Raises:
        BatchWriteError: when a batched write fails.
    """
    settings = get_settings()
    provider = provider.strip().lower()
    mode = SyncMode(mode)
    stats = MergeStats(max_reported=settings.sync_max_reported_errors)

    parsed = _dedupe_items(provider, items, stats)
    if not parsed:
        logger.info(f"[merge] provider={provider}: nothing to merge ({stats.failed} failed)")
        return stats

    existing = await load_existing_records(
        session,
        retail_vertical_id,
        None if mode == SyncMode.FULL else parsed.keys(),
        chunk_size=settings.merge_lookup_chunk_size,
    )
    logger.info(
        f"[merge] provider={provider} mode={mode.value} items={len(parsed)} existing={len(existing)}"
    )

    to_insert: list[dict[str, Any]] = []
    to_update: list[_PlannedUpdate] = []

    for key, item in parsed.items():
        values = item.descriptive_values()
        current = existing.get(key)

        if current is None:
            to_insert.append(
                {
                    "retail_vertical_id": retail_vertical_id,
                    "natural_key": key,
                    **values,
                    "source_provider": provider,
                    "source_locked": bool(options.source_locked),
                }
            )
            continue

        replace, reason = evaluate_replacement(
            Provenance(provider=current["source_provider"], source_locked=bool(current["source_locked"])),
            provider,
            options,
            priorities,
        )
        if not replace:
            stats.skip(reason.value)
            continue

        locked = bool(current["source_locked"]) if options.source_locked is None else options.source_locked
        if not has_changes(current, values, provider) and locked == bool(current["source_locked"]):
            stats.skip(SKIP_UNCHANGED)
            continue

        to_update.append(
            _PlannedUpdate(
                record_id=current["id"],
                version=current["version"],
                values={**values, "source_provider": provider, "source_locked": locked},
            )
        )

    try:
        record_ids = await _insert_records(session, to_insert, settings.merge_batch_size, stats)
        await _update_records(session, to_update, settings.merge_batch_size, stats)
        for key, current in existing.items():
            record_ids.setdefault(key, current["id"])
        await _upsert_vendor_mappings(session, provider, parsed, record_ids, settings, stats)
    except SQLAlchemyError as e:
        logger.exception(f"[merge] provider={provider}: batch write failed")
        raise BatchWriteError(f"batch write failed: {e.__class__.__name__}: {e}", stats) from e

    logger.info(
        f"[merge] provider={provider} processed={stats.processed} added={stats.added} "
        f"updated={stats.updated} skipped={stats.skipped} failed={stats.failed} "
        f"mappings_added={stats.mappings_added} mappings_updated={stats.mappings_updated}"
    )
    return stats


async def _insert_records(
    session: AsyncSession,
    rows: list[dict[str, Any]],
    batch_size: int,
    stats: MergeStats,
) -> dict[str, int]:
    """Insert new master records, returning natural_key -> id."""
    ids: dict[str, int] = {}
    stmt = insert(MasterRecord).returning(MasterRecord.id, MasterRecord.natural_key)
    for chunk in _chunks(rows, batch_size):
        result = await session.execute(stmt, list(chunk))
        for record_id, natural_key in result.all():
            ids[natural_key] = record_id
        stats.added += len(chunk)
    return ids


def _update_statement():
    table = MasterRecord.__table__
    assignments = {name: bindparam(f"b_{name}", type_=table.c[name].type) for name in TRACKED_FIELDS}
    assignments["source_provider"] = bindparam("b_source_provider", type_=table.c.source_provider.type)
    assignments["source_locked"] = bindparam("b_source_locked", type_=table.c.source_locked.type)
    return (
        update(table)
        .where(table.c.id == bindparam("b_id"), table.c.version == bindparam("b_version"))
        .values(**assignments, version=table.c.version + 1)
    )


async def _update_records(
    session: AsyncSession,
    planned: list[_PlannedUpdate],
    batch_size: int,
    stats: MergeStats,
) -> None:
    """Update replaced records by primary key, skipping rows whose version moved."""
    if not planned:
        return
    stmt = _update_statement()
    # asyncpg executemany does not report per-batch rowcounts
    can_count = session.bind.dialect.supports_sane_multi_rowcount

    for chunk in _chunks(planned, batch_size):
        params = [
            {
                "b_id": p.record_id,
                "b_version": p.version,
                **{f"b_{name}": value for name, value in p.values.items()},
            }
            for p in chunk
        ]
        result = await session.execute(stmt, params)
        applied = len(chunk)
        if can_count and result.rowcount is not None and 0 <= result.rowcount < len(chunk):
            lost = len(chunk) - result.rowcount
            applied -= lost
            stats.conflicts += lost
            for _ in range(lost):
                stats.skip(SKIP_VERSION_CONFLICT)
            stats.warn(f"{lost} record(s) changed concurrently, left untouched")
            logger.warning(f"[merge] {lost} version conflicts in update batch")
        stats.updated += applied


async def _upsert_vendor_mappings(
    session: AsyncSession,
    provider: str,
    parsed: Mapping[str, ProviderItem],
    record_ids: Mapping[str, int],
    settings: Settings,
    stats: MergeStats,
) -> None:
    """Keep the provider's SKU / price / stock per record current.

    Runs for every item with a vendor SKU, whether or not the provider owns the
    record's descriptive fields.
    """
    wanted = {
        record_ids[key]: item
        for key, item in parsed.items()
        if item.has_vendor_mapping() and key in record_ids
    }
    if not wanted:
        return

    current = await _load_vendor_mappings(session, provider, list(wanted), settings.merge_lookup_chunk_size)
    now = datetime.now(timezone.utc)

    inserts: list[dict[str, Any]] = []
    updates: list[dict[str, Any]] = []
    for record_id, item in wanted.items():
        values = {name: getattr(item, name) for name in MAPPING_FIELDS}
        mapping = current.get(record_id)
        if mapping is None:
            inserts.append(
                {"record_id": record_id, "provider_slug": provider, **values, "last_price_update": now}
            )
        elif any(mapping[name] != values[name] for name in MAPPING_FIELDS):
            updates.append({"id": mapping["id"], **values, "last_price_update": now})

    for chunk in _chunks(inserts, settings.merge_batch_size):
        await session.execute(insert(ProviderVendorMapping), list(chunk))
        stats.mappings_added += len(chunk)

    for chunk in _chunks(updates, settings.merge_batch_size):
        # ORM bulk UPDATE by primary key
        await session.execute(update(ProviderVendorMapping), list(chunk))
        stats.mappings_updated += len(chunk)
