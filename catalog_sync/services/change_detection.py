"""Change detection for sync runs.

Two independent levels:
- Feed level: SHA-256 fingerprint of the whole feed. A feed identical to the
  last successful run of the same provider needs no DB work at all.
- Record level: field-by-field diff between an existing master record and the
  candidate values, so unchanged records are skipped instead of rewritten
  (which would also bump updated_at that downstream caches key off).
"""

import hashlib
import json
from collections.abc import Iterable, Mapping
from dataclasses import asdict
from typing import Any

from catalog_sync.services.items import TRACKED_FIELDS, ProviderItem


def _canonical_item(item: ProviderItem | Mapping[str, Any]) -> str:
    payload = asdict(item) if isinstance(item, ProviderItem) else dict(item)
    return json.dumps(payload, sort_keys=True, ensure_ascii=False, separators=(",", ":"), default=str)


def compute_feed_fingerprint(
    items: Iterable[ProviderItem | Mapping[str, Any]] | None = None,
    *,
    raw_feed: bytes | str | None = None,
    context: Mapping[str, Any] | None = None,
) -> str:
    """Fingerprint a feed.

    When the raw feed bytes are available they are hashed as-is. Otherwise the
    items are serialized canonically and sorted, so re-ordering the same
    records produces the same fingerprint.

    `context` holds the run parameters that change what a merge writes
    (target vertical, mode, lock stamping). It is hashed ahead of the feed, so
    the same feed sent to another vertical or with another lock value is not
    treated as already synced.

    Returns:
        64-char hex digest.
    """
    digest = hashlib.sha256()
    if context:
        digest.update(_canonical_item(context).encode("utf-8"))
        digest.update(b"\n")
    if raw_feed is not None:
        digest.update(raw_feed.encode("utf-8") if isinstance(raw_feed, str) else raw_feed)
        return digest.hexdigest()

    for line in sorted(_canonical_item(item) for item in (items or [])):
        digest.update(line.encode("utf-8"))
        digest.update(b"\n")
    return digest.hexdigest()


def _normalize_value(value: object) -> str:
    # None and blank strings are the same "no value"
    if value is None:
        return ""
    return str(value).strip()


def diff_fields(
    existing: Mapping[str, Any],
    candidate: Mapping[str, Any],
    fields: Iterable[str] = TRACKED_FIELDS,
) -> list[str]:
    """List tracked fields whose value differs.

    Args:
        existing: Current master record values (row mapping).
        candidate: Values the incoming record would write.
        fields: Fields to compare.

    Returns:
        Names of changed fields (empty when the write would be a no-op).
    """
    return [
        name
        for name in fields
        if _normalize_value(existing.get(name)) != _normalize_value(candidate.get(name))
    ]


def has_changes(
    existing: Mapping[str, Any],
    candidate: Mapping[str, Any],
    candidate_provider: str | None,
) -> bool:
    """True when a write would change any tracked field or the owning provider."""
    if _normalize_value(existing.get("source_provider")).lower() != _normalize_value(candidate_provider).lower():
        return True
    return bool(diff_fields(existing, candidate))
