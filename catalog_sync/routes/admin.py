"""Admin endpoints for provider configuration and sync runs.

These endpoints are used by the configuration UI and by operators.
In production, consider adding authentication (API key or admin token).
"""

import json
import logging

from fastapi import APIRouter, HTTPException, Query
from fastapi.responses import JSONResponse
from sqlalchemy import select

from catalog_sync.models import MasterRecord, ProviderVerticalPriority, SyncRunState
from catalog_sync.schemas import (
    ErrorDetail,
    ErrorResponse,
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
from catalog_sync.services.items import normalize_natural_key
from catalog_sync.services.policy import ReplaceOptions
from catalog_sync.services.priority import get_priority_resolver
from catalog_sync.services.providers import (
    ProviderConfigError,
    ProviderNotFoundError,
    set_provider_priority,
    upsert_provider,
)
from catalog_sync.services.sync import RunResult, SyncRunError, run_sync
from catalog_sync.services.sync_tracker import (
    ProviderInactiveError,
    ProviderNotRegisteredError,
    SyncAlreadyRunningError,
    get_sync_tracker,
    is_stuck,
)
from catalog_sync.stores.postgres import get_session

router = APIRouter()
logger = logging.getLogger("uvicorn.error")


def _json_list(value: str | None) -> list[str]:
    if not value:
        return []
    try:
        parsed = json.loads(value)
    except json.JSONDecodeError:
        return [value]
    return [str(x) for x in parsed] if isinstance(parsed, list) else [str(parsed)]


def _state_response(state: SyncRunState) -> SyncStateResponse:
    return SyncStateResponse(
        provider=state.provider_slug,
        status=state.status,
        mode=state.mode,
        stuck=is_stuck(state),
        last_run_at=state.last_run_at,
        last_finished_at=state.last_finished_at,
        last_success_at=state.last_success_at,
        records_processed=state.records_processed,
        records_added=state.records_added,
        records_updated=state.records_updated,
        records_skipped=state.records_skipped,
        records_failed=state.records_failed,
        last_error=state.last_error,
        errors=_json_list(state.errors_json),
        warnings=_json_list(state.warnings_json),
    )


def _result_response(result: RunResult) -> SyncResultResponse:
    return SyncResultResponse(
        provider=result.provider,
        mode=result.mode,
        retail_vertical_id=result.retail_vertical_id,
        processed=result.processed,
        added=result.added,
        updated=result.updated,
        skipped=result.skipped,
        failed=result.failed,
        errors=result.errors,
        warnings=result.warnings,
        skip_reasons=result.skip_reasons,
        mappings_added=result.mappings_added,
        mappings_updated=result.mappings_updated,
        feed_hash=result.feed_hash,
        feed_unchanged=result.feed_unchanged,
        started_at=result.started_at,
        finished_at=result.finished_at,
    )


def _record_response(record: MasterRecord) -> RecordResponse:
    specs = json.loads(record.specifications_json) if record.specifications_json else {}
    return RecordResponse(
        id=record.id,
        retail_vertical_id=record.retail_vertical_id,
        natural_key=record.natural_key,
        name=record.name,
        brand=record.brand,
        model=record.model,
        manufacturer_part_number=record.manufacturer_part_number,
        category=record.category,
        description=record.description,
        image_url=record.image_url,
        specifications=specs,
        source_provider=record.source_provider,
        source_locked=record.source_locked,
        version=record.version,
        updated_at=record.updated_at,
    )


async def _find_record(session, retail_vertical_id: int, natural_key: str) -> MasterRecord:
    key = normalize_natural_key(natural_key)
    if key is None:
        raise HTTPException(status_code=400, detail=f"Invalid natural key: {natural_key!r}")
    result = await session.execute(
        select(MasterRecord).where(
            MasterRecord.retail_vertical_id == retail_vertical_id,
            MasterRecord.natural_key == key,
        )
    )
    record = result.scalar_one_or_none()
    if record is None:
        raise HTTPException(status_code=404, detail=f"Record not found: {retail_vertical_id}/{key}")
    return record


# ============================================================
# Providers / priorities
# ============================================================


@router.post("/providers", response_model=ProviderResponse)
async def register_provider(request: ProviderCreate) -> ProviderResponse:
    """Register (or update) a provider and create its idle sync state."""
    try:
        async with get_session() as session:
            provider = await upsert_provider(
                session,
                slug=request.slug,
                name=request.name,
                priority=request.priority,
                vertical_priorities={vp.retail_vertical_id: vp.priority for vp in request.vertical_priorities},
                is_active=request.is_active,
            )
            overrides = (
                await session.scalars(
                    select(ProviderVerticalPriority)
                    .where(ProviderVerticalPriority.provider_id == provider.id)
                    .order_by(ProviderVerticalPriority.retail_vertical_id)
                )
            ).all()
            response = ProviderResponse(
                slug=provider.slug,
                name=provider.name,
                priority=provider.priority,
                is_active=provider.is_active,
                vertical_priorities=[
                    VerticalPriority(retail_vertical_id=o.retail_vertical_id, priority=o.priority)
                    for o in overrides
                ],
            )
    except ProviderConfigError as e:
        raise HTTPException(status_code=400, detail=str(e))

    await get_sync_tracker().register(response.slug)
    await get_priority_resolver().invalidate()
    return response


@router.put("/providers/{slug}/priority", response_model=ProviderResponse)
async def update_provider_priority(slug: str, request: PriorityUpdate) -> ProviderResponse:
    """Change a provider's priority (global or per vertical) and drop cached priorities."""
    try:
        async with get_session() as session:
            provider = await set_provider_priority(
                session,
                slug,
                request.priority,
                retail_vertical_id=request.retail_vertical_id,
            )
            response = ProviderResponse(
                slug=provider.slug,
                name=provider.name,
                priority=provider.priority,
                is_active=provider.is_active,
            )
    except ProviderNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ProviderConfigError as e:
        raise HTTPException(status_code=400, detail=str(e))

    await get_priority_resolver().invalidate()
    return response


@router.get("/priorities")
async def get_priorities(retail_vertical_id: int | None = Query(default=None, ge=1)) -> dict:
    """Effective provider priorities for a vertical (as used by sync runs)."""
    resolver = get_priority_resolver()
    async with get_session() as session:
        table = await resolver.snapshot(session, retail_vertical_id)
    return {
        "retail_vertical_id": retail_vertical_id,
        "default": table.default,
        "priorities": dict(sorted(table.priorities.items(), key=lambda kv: (kv[1], kv[0]))),
        "cache": resolver.cache_stats(),
    }


@router.post("/priorities/invalidate")
async def invalidate_priorities() -> dict:
    """Drop cached priority tables (memory + Redis)."""
    await get_priority_resolver().invalidate()
    return {"success": True}


# ============================================================
# Sync runs
# ============================================================


@router.post(
    "/sync/{slug}",
    response_model=SyncResultResponse,
    responses={409: {"model": ErrorResponse}, 404: {"model": ErrorResponse}, 500: {"model": ErrorResponse}},
)
async def trigger_sync(slug: str, request: SyncRequest):
    """Run a sync for `slug` with the posted items (blocks until the run ends)."""
    options = ReplaceOptions(
        manual_override=request.manual_override,
        source_locked=request.source_locked,
    )
    try:
        result = await run_sync(
            slug,
            request.mode,
            request.items,
            retail_vertical_id=request.retail_vertical_id,
            options=options,
            force=request.force,
        )
    except (SyncAlreadyRunningError, ProviderInactiveError) as e:
        raise HTTPException(status_code=409, detail=str(e))
    except ProviderNotRegisteredError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except SyncRunError as e:
        body = ErrorResponse(
            error=ErrorDetail(
                code="SYNC_FAILED",
                message=str(e),
                detail=_result_response(e.result).model_dump(mode="json"),
            )
        )
        return JSONResponse(status_code=500, content=body.model_dump(mode="json"))

    return _result_response(result)


@router.get("/sync/status", response_model=SyncStatusListResponse)
async def list_sync_status() -> SyncStatusListResponse:
    """Run state of every provider."""
    runs = [_state_response(state) for state in await get_sync_tracker().list_states()]
    return SyncStatusListResponse(
        runs=runs,
        running=sum(1 for r in runs if r.status == "running"),
        stuck=sum(1 for r in runs if r.stuck),
    )


@router.get("/sync/{slug}/status", response_model=SyncStateResponse)
async def get_sync_status(slug: str) -> SyncStateResponse:
    """Run state of one provider."""
    state = await get_sync_tracker().current_state(slug)
    if state is None:
        raise HTTPException(status_code=404, detail=f"Provider {slug!r} is not registered")
    return _state_response(state)


@router.post("/sync/{slug}/reset", response_model=ResetResponse)
async def reset_sync(slug: str) -> ResetResponse:
    """Force a stuck `running` sync to `error` (catalog data untouched)."""
    tracker = get_sync_tracker()
    try:
        was_reset = await tracker.reset(slug)
    except ProviderNotRegisteredError as e:
        raise HTTPException(status_code=404, detail=str(e))

    state = await tracker.current_state(slug)
    logger.info(f"[admin] reset provider={slug} reset={was_reset}")
    return ResetResponse(provider=state.provider_slug, reset=was_reset, status=state.status)


# ============================================================
# Master records
# ============================================================


@router.get("/records/{retail_vertical_id}/{natural_key}", response_model=RecordResponse)
async def get_record(retail_vertical_id: int, natural_key: str) -> RecordResponse:
    """Inspect a master record and its provenance."""
    async with get_session() as session:
        record = await _find_record(session, retail_vertical_id, natural_key)
        return _record_response(record)


@router.put("/records/{retail_vertical_id}/{natural_key}/lock", response_model=RecordResponse)
async def set_record_lock(retail_vertical_id: int, natural_key: str, request: LockUpdate) -> RecordResponse:
    """Pin (or unpin) a record to its current provider."""
    async with get_session() as session:
        record = await _find_record(session, retail_vertical_id, natural_key)
        if record.source_locked != request.locked:
            record.source_locked = request.locked
            record.version += 1
            await session.flush()
            # updated_at is set by the DB
            await session.refresh(record)
            logger.info(
                f"[admin] record {retail_vertical_id}/{record.natural_key} source_locked={request.locked}"
            )
        return _record_response(record)
