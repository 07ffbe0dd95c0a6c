"""Schemas for the admin sync / provider / record endpoints (/v1/admin)."""

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field


class VerticalPriority(BaseModel):
    """Priority override of a provider inside one retail vertical."""

    retail_vertical_id: int = Field(ge=1)
    priority: int = Field(ge=1)


class ProviderCreate(BaseModel):
    """Request body for POST /providers."""

    slug: str = Field(min_length=1, max_length=100)
    name: str | None = Field(default=None, max_length=200)
    priority: int | None = Field(default=None, ge=1)
    vertical_priorities: list[VerticalPriority] = Field(default_factory=list)
    is_active: bool = True


class PriorityUpdate(BaseModel):
    """Request body for PUT /providers/{slug}/priority.

    priority=None clears the value (global -> unranked, vertical -> no override).
    """

    priority: int | None = Field(default=None, ge=1)
    retail_vertical_id: int | None = Field(default=None, ge=1)


class ProviderResponse(BaseModel):
    slug: str
    name: str
    priority: int | None
    is_active: bool
    vertical_priorities: list[VerticalPriority] = Field(default_factory=list)


class SyncRequest(BaseModel):
    """Request body for POST /sync/{slug}.

    Items are provider records already mapped to the shared schema
    (natural_key/upc, name, brand, ..., vendor_sku, cost, map_price, msrp,
    quantity_available).
    """

    mode: Literal["full", "incremental"] = "incremental"
    items: list[dict[str, Any]] = Field(default_factory=list)
    retail_vertical_id: int | None = Field(default=None, ge=1)
    manual_override: bool = False
    source_locked: bool | None = None
    force: bool = False


class SyncResultResponse(BaseModel):
    """Outcome of one sync run."""

    provider: str
    mode: str
    retail_vertical_id: int
    processed: int
    added: int
    updated: int
    skipped: int
    failed: int
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    skip_reasons: dict[str, int] = Field(default_factory=dict)
    mappings_added: int = 0
    mappings_updated: int = 0
    feed_hash: str | None = None
    feed_unchanged: bool = False
    started_at: datetime | None = None
    finished_at: datetime | None = None


class SyncStateResponse(BaseModel):
    """Persistent run state of one provider (polled by the admin UI)."""

    provider: str
    status: str
    mode: str
    stuck: bool = False
    last_run_at: datetime | None = None
    last_finished_at: datetime | None = None
    last_success_at: datetime | None = None
    records_processed: int = 0
    records_added: int = 0
    records_updated: int = 0
    records_skipped: int = 0
    records_failed: int = 0
    last_error: str | None = None
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)


class SyncStatusListResponse(BaseModel):
    runs: list[SyncStateResponse]
    running: int
    stuck: int


class ResetResponse(BaseModel):
    provider: str
    reset: bool
    status: str


class RecordResponse(BaseModel):
    """Master record as stored."""

    id: int
    retail_vertical_id: int
    natural_key: str
    name: str
    brand: str | None = None
    model: str | None = None
    manufacturer_part_number: str | None = None
    category: str | None = None
    description: str | None = None
    image_url: str | None = None
    specifications: dict[str, Any] = Field(default_factory=dict)
    source_provider: str | None = None
    source_locked: bool = False
    version: int
    updated_at: datetime | None = None


class LockUpdate(BaseModel):
    """Request body for PUT /records/{vertical}/{natural_key}/lock."""

    locked: bool
