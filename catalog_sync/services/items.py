"""Provider item normalization.

The ingestion side hands us one dict per feed record, already mapped to the
shared schema. This module turns those dicts into ProviderItem values and
rejects records that can't be merged (missing natural key, missing name,
non-numeric pricing...). Rejections raise ItemTransformError so the merge can
count the item as failed and keep going.

Natural key:
- stripped, inner whitespace removed
- "0" / empty values are rejected (some feeds emit 0 for "no UPC")
"""

from __future__ import annotations

import json
import re
from collections.abc import Mapping
from dataclasses import asdict, dataclass, field
from typing import Any

# Descriptive fields owned by the winning provider, in column order
TRACKED_FIELDS: tuple[str, ...] = (
    "name",
    "brand",
    "model",
    "manufacturer_part_number",
    "category",
    "description",
    "image_url",
    "specifications_json",
)

_MAX_NATURAL_KEY_LENGTH = 64


class ItemTransformError(ValueError):
    """A single feed record could not be normalized."""

    def __init__(self, message: str, natural_key: str | None = None):
        super().__init__(message)
        self.natural_key = natural_key


@dataclass
class ProviderItem:
    """One normalized record from a provider feed (never persisted as-is)."""

    natural_key: str
    name: str
    provider: str | None = None
    brand: str | None = None
    model: str | None = None
    manufacturer_part_number: str | None = None
    category: str | None = None
    description: str | None = None
    image_url: str | None = None
    specifications: dict[str, Any] = field(default_factory=dict)

    # Vendor mapping (pricing / stock); optional
    vendor_sku: str | None = None
    cost: float | None = None
    map_price: float | None = None
    msrp: float | None = None
    quantity_available: int | None = None

    def descriptive_values(self) -> dict[str, str | None]:
        """Values for the tracked master record columns."""
        return {
            "name": self.name,
            "brand": self.brand,
            "model": self.model,
            "manufacturer_part_number": self.manufacturer_part_number,
            "category": self.category,
            "description": self.description,
            "image_url": self.image_url,
            "specifications_json": canonical_specifications(self.specifications),
        }

    def has_vendor_mapping(self) -> bool:
        return bool(self.vendor_sku)


def normalize_natural_key(raw: object) -> str | None:
    """Normalize a natural key (UPC/GTIN-like value).

    Returns:
        Normalized key, or None when the value is missing / a placeholder.
    """
    if raw is None:
        return None
    if isinstance(raw, bool):
        return None
    if isinstance(raw, float) and raw.is_integer():
        raw = int(raw)
    value = re.sub(r"\s+", "", str(raw))
    if not value or value.strip("0") == "":
        return None
    return value


def canonical_specifications(specs: Mapping[str, Any] | None) -> str | None:
    """Serialize specification attributes to canonical JSON (None when empty)."""
    if not specs:
        return None
    return json.dumps(specs, sort_keys=True, ensure_ascii=False, separators=(",", ":"), default=str)


def _clean_text(value: object) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _parse_float(value: object, field_name: str, natural_key: str) -> float | None:
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise ItemTransformError(f"{field_name} must be numeric", natural_key)
    try:
        # Feeds commonly send "$1,299.00"
        if isinstance(value, str):
            value = value.replace("$", "").replace(",", "").strip()
        parsed = float(value)
    except (TypeError, ValueError):
        raise ItemTransformError(f"{field_name} must be numeric, got {value!r}", natural_key) from None
    if parsed < 0:
        raise ItemTransformError(f"{field_name} must not be negative", natural_key)
    return round(parsed, 2)


def _parse_int(value: object, field_name: str, natural_key: str) -> int | None:
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise ItemTransformError(f"{field_name} must be an integer", natural_key)
    try:
        parsed = int(float(str(value).strip()))
    except (TypeError, ValueError):
        raise ItemTransformError(f"{field_name} must be an integer, got {value!r}", natural_key) from None
    return max(parsed, 0)


def parse_provider_item(raw: Mapping[str, Any] | ProviderItem, provider: str) -> ProviderItem:
    """Normalize one feed record for `provider`.

    Args:
        raw: Feed record (dict with shared-schema keys) or an existing ProviderItem.
        provider: Slug of the provider running the sync.

    Returns:
        A normalized ProviderItem.

    Raises:
        ItemTransformError: when the record is malformed or belongs to another provider.
    """
    if isinstance(raw, ProviderItem):
        raw = asdict(raw)
    if not isinstance(raw, Mapping):
        raise ItemTransformError(f"expected an object, got {type(raw).__name__}")

    natural_key = normalize_natural_key(raw.get("natural_key", raw.get("upc")))
    if natural_key is None:
        raise ItemTransformError("missing natural key")
    if len(natural_key) > _MAX_NATURAL_KEY_LENGTH:
        raise ItemTransformError("natural key too long", natural_key)

    item_provider = _clean_text(raw.get("provider"))
    if item_provider and item_provider.lower() != provider.strip().lower():
        raise ItemTransformError(
            f"record belongs to provider {item_provider!r}, not {provider!r}",
            natural_key,
        )

    name = _clean_text(raw.get("name"))
    if name is None:
        raise ItemTransformError("missing name", natural_key)

    specs = raw.get("specifications") or {}
    if not isinstance(specs, Mapping):
        raise ItemTransformError("specifications must be an object", natural_key)

    return ProviderItem(
        natural_key=natural_key,
        name=name,
        provider=provider,
        brand=_clean_text(raw.get("brand")),
        model=_clean_text(raw.get("model")),
        manufacturer_part_number=_clean_text(raw.get("manufacturer_part_number")),
        category=_clean_text(raw.get("category")),
        description=_clean_text(raw.get("description")),
        image_url=_clean_text(raw.get("image_url")),
        specifications=dict(specs),
        vendor_sku=_clean_text(raw.get("vendor_sku")),
        cost=_parse_float(raw.get("cost"), "cost", natural_key),
        map_price=_parse_float(raw.get("map_price"), "map_price", natural_key),
        msrp=_parse_float(raw.get("msrp"), "msrp", natural_key),
        quantity_available=_parse_int(raw.get("quantity_available"), "quantity_available", natural_key),
    )
