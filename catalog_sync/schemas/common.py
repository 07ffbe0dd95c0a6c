"""Error envelope shared by the admin API."""

from typing import Any

from pydantic import BaseModel


class ErrorDetail(BaseModel):
    """Machine-readable error: `code` is stable (INTERNAL_ERROR, SYNC_FAILED)."""

    code: str
    message: str
    # SYNC_FAILED carries the partial run counters here
    detail: dict[str, Any] | None = None


class ErrorResponse(BaseModel):
    """{ "error": { "code": str, "message": str, "detail": object } }

    Returned by the app-wide exception handler and by POST /v1/admin/sync/{slug}
    when a run fails after it started.
    """

    error: ErrorDetail
