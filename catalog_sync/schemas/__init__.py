"""Pydantic schemas for API request/response validation."""

from catalog_sync.schemas.common import ErrorDetail, ErrorResponse
from catalog_sync.schemas.sync import (
    LockUpdate,
    PriorityUpdate,
    ProviderCreate,
    ProviderResponse,
    RecordResponse,
    ResetResponse,
    SyncRequest,
    SyncResultResponse,
    SyncStateResponse,
    SyncStatusListResponse,
    VerticalPriority,
)

__all__ = [
    "ErrorDetail",
    "ErrorResponse",
    "LockUpdate",
    "PriorityUpdate",
    "ProviderCreate",
    "ProviderResponse",
    "RecordResponse",
    "ResetResponse",
    "SyncRequest",
    "SyncResultResponse",
    "SyncStateResponse",
    "SyncStatusListResponse",
    "VerticalPriority",
]
