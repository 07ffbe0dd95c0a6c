"""Replacement policy: may a provider's record replace the current master data?

Pure decision function. It only looks at provenance (who owns the record, is
it locked) and provider priorities - never at the record payload - so it can be
unit-tested without a database.

Decision order (first match wins):
1. Manual override            -> replace
2. Locked by another provider -> keep
3. Same provider refreshing   -> replace
4. Priority comparison (lower number wins); ties keep the incumbent
"""

from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum


class ReplaceReason(Enum):
    """Stable reason codes, safe to persist / aggregate."""

    MANUAL_OVERRIDE = "MANUAL_OVERRIDE"
    SOURCE_LOCKED = "SOURCE_LOCKED"
    SAME_PROVIDER = "SAME_PROVIDER"
    HIGHER_PRIORITY = "HIGHER_PRIORITY"  # candidate outranks the incumbent
    LOWER_PRIORITY = "LOWER_PRIORITY"  # incumbent outranks the candidate
    EQUAL_PRIORITY = "EQUAL_PRIORITY"  # tie: incumbent keeps the record


@dataclass(frozen=True)
class Provenance:
    """Ownership flags of an existing master record."""

    provider: str | None
    source_locked: bool = False


@dataclass(frozen=True)
class ReplaceOptions:
    """Per-run write options.

    manual_override: administrator correction, bypasses lock and priority.
    source_locked: lock flag stamped onto records written by the run
        (None leaves the existing flag untouched). Not part of the decision.
    """

    manual_override: bool = False
    source_locked: bool | None = None


PriorityLookup = Callable[[str | None], int]


def _same_provider(a: str | None, b: str | None) -> bool:
    return (a or "").strip().lower() == (b or "").strip().lower()


def evaluate_replacement(
    existing: Provenance,
    candidate_provider: str | None,
    options: ReplaceOptions,
    priority_of: PriorityLookup,
) -> tuple[bool, ReplaceReason]:
    """Decide whether `candidate_provider` may overwrite `existing`.

    Args:
        existing: Provenance of the current master record.
        candidate_provider: Provider slug of the incoming record.
        options: Run options.
        priority_of: Provider -> priority lookup (must be total).

    Returns:
        Tuple of (replace?, reason code).
    """
    if options.manual_override:
        return True, ReplaceReason.MANUAL_OVERRIDE

    same = _same_provider(existing.provider, candidate_provider)

    if existing.source_locked and not same:
        return False, ReplaceReason.SOURCE_LOCKED

    if same:
        return True, ReplaceReason.SAME_PROVIDER

    candidate_priority = priority_of(candidate_provider)
    existing_priority = priority_of(existing.provider)

    if candidate_priority < existing_priority:
        return True, ReplaceReason.HIGHER_PRIORITY
    if candidate_priority > existing_priority:
        return False, ReplaceReason.LOWER_PRIORITY
    return False, ReplaceReason.EQUAL_PRIORITY


def should_replace(
    existing: Provenance,
    candidate_provider: str | None,
    options: ReplaceOptions,
    priority_of: PriorityLookup,
) -> bool:
    """Boolean form of evaluate_replacement()."""
    replace, _reason = evaluate_replacement(existing, candidate_provider, options, priority_of)
    return replace
