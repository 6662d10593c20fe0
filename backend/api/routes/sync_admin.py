"""
Admin endpoints for the ThriveCart → MemberPress integration.

Protected by the admin API token (``Authorization: Bearer <token>``).
"""

import csv
import io
import json
import logging
from typing import Annotated, Any

from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.encoders import jsonable_encoder
from fastapi.responses import StreamingResponse
from sqlalchemy.ext.asyncio import AsyncSession

from api.dependencies import get_config_store, get_sync_config, get_sync_service
from api.deps_admin import require_admin_token
from api.schemas.sync import (
    MappingsResponse,
    MappingsUpdate,
    SimulatedCancellationRequest,
    SyncLogClearResponse,
    SyncLogEntryResponse,
    SyncLogListResponse,
    SyncOptions,
    SyncOptionsUpdate,
    SyncStatusResponse,
)
from core.domain.expiration import utcnow
from core.domain.mapping import MappingEntry, count_active_mappings, find_overlapping_product_ids
from infrastructure.config import get_settings
from infrastructure.database import get_db
from services.config_store import SyncConfig, SyncConfigStore
from services.sync_log import clear_entries, list_recent_entries, record_sync_result
from services.sync_service import MEMBER_LOOKUP_FAILED, USER_NOT_FOUND, ThriveCartSyncService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["ThriveCart Admin"], dependencies=[Depends(require_admin_token)])


def _mapping_warnings(mappings: list[dict[str, Any]]) -> list[str]:
    warnings = []
    for index, raw in enumerate(mappings):
        if not MappingEntry.from_raw(raw).product_ids:
            warnings.append(f"Mapping #{index + 1} has no ThriveCart product IDs")
    for product_id, owners in find_overlapping_product_ids(mappings).items():
        warnings.append(
            f"Product {product_id} is mapped to memberships {', '.join(str(o) for o in owners)}; "
            f"only membership {owners[0]} will be used"
        )
    return warnings


@router.get("/thrivecart-hook-status", response_model=SyncStatusResponse)
async def get_sync_status(
    service: Annotated[ThriveCartSyncService, Depends(get_sync_service)],
    config: Annotated[SyncConfig, Depends(get_sync_config)],
):
    """Integration readiness: MemberPress reachability, secret, API key, mappings."""
    reachable, authorized = await service.memberpress.probe()

    return SyncStatusResponse(
        version=get_settings().app_version,
        memberpress_detected=reachable,
        secret_configured=bool(config.thrivecart_secret),
        api_connected=authorized,
        active_mappings=count_active_mappings(config.mappings),
        options=SyncOptions(log_days=config.log_days, admin_email=config.admin_email),
    )


@router.get("/thrivecart-hook-mappings", response_model=MappingsResponse)
async def get_mappings(
    store: Annotated[SyncConfigStore, Depends(get_config_store)],
):
    """Current mapping table in priority order."""
    mappings = await store.get_mappings()
    return MappingsResponse(
        mappings=mappings,
        active_mappings=count_active_mappings(mappings),
        warnings=_mapping_warnings(mappings),
    )


@router.put("/thrivecart-hook-mappings", response_model=MappingsResponse)
async def replace_mappings(
    update: MappingsUpdate,
    store: Annotated[SyncConfigStore, Depends(get_config_store)],
):
    """
    Replace the mapping table.

    Overlapping product ids are accepted; the first active entry wins and
    the response lists the overlaps as warnings.
    """
    table = [
        MappingEntry.from_raw(entry.model_dump(mode="json", exclude_none=True)).to_dict()
        for entry in update.mappings
    ]
    saved = await store.save_mappings(table)
    warnings = _mapping_warnings(saved)
    for warning in warnings:
        logger.warning("Mapping table saved with warning: %s", warning)

    return MappingsResponse(
        mappings=saved,
        active_mappings=count_active_mappings(saved),
        warnings=warnings,
    )


@router.put("/thrivecart-hook-options", response_model=SyncOptions)
async def update_options(
    update: SyncOptionsUpdate,
    store: Annotated[SyncConfigStore, Depends(get_config_store)],
):
    """Change the notification address and/or log retention."""
    await store.save_options(update.model_dump(mode="json", exclude_unset=True))
    return SyncOptions(log_days=await store.get_log_days(), admin_email=await store.get_admin_email())


@router.get("/thrivecart-hook-logs", response_model=SyncLogListResponse)
async def get_sync_logs(
    db: Annotated[AsyncSession, Depends(get_db)],
    limit: int = Query(50, ge=1, le=500),
):
    """Most recent sync log entries, newest first."""
    entries, total = await list_recent_entries(db, limit=limit)
    return SyncLogListResponse(
        entries=[SyncLogEntryResponse.model_validate(entry) for entry in entries],
        total=total,
    )


@router.get("/thrivecart-hook-logs/download")
async def download_sync_logs(
    db: Annotated[AsyncSession, Depends(get_db)],
):
    """Export the sync log as CSV."""
    entries, _ = await list_recent_entries(db, limit=10000)

    buf = io.StringIO()
    writer = csv.writer(buf)
    writer.writerow([
        "id", "created_at", "event_type", "state", "ok", "customer_email", "product_id",
        "member_id", "membership_id", "action_type", "error", "results",
    ])
    for e in entries:
        writer.writerow([
            e.id,
            e.created_at.isoformat() if e.created_at else "",
            e.event_type or "",
            e.state,
            int(e.ok),
            e.customer_email or "",
            e.product_id or "",
            e.member_id or "",
            e.membership_id or "",
            e.action_type or "",
            e.error or "",
            json.dumps(e.results) if e.results is not None else "",
        ])

    buf.seek(0)
    filename = f"thrivecart-sync-{utcnow():%Y-%m-%d-%H%M%S}.csv"
    return StreamingResponse(
        iter([buf.getvalue()]),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.delete("/thrivecart-hook-logs", response_model=SyncLogClearResponse)
async def clear_sync_logs(
    db: Annotated[AsyncSession, Depends(get_db)],
):
    """Delete every sync log entry."""
    return SyncLogClearResponse(deleted=await clear_entries(db))


@router.post("/thrivecart-hook-test-cancel")
async def simulate_cancellation(
    body: SimulatedCancellationRequest,
    service: Annotated[ThriveCartSyncService, Depends(get_sync_service)],
    db: Annotated[AsyncSession, Depends(get_db)],
):
    """
    Run the cancellation flow for a member without a ThriveCart webhook.

    This cancels real subscriptions. The run is recorded in the sync log.
    """
    result = await service.simulate_cancellation(body.email, body.membership_id)
    await record_sync_result(db, result)

    if result.error == USER_NOT_FOUND:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=USER_NOT_FOUND)
    if result.error == MEMBER_LOOKUP_FAILED:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=MEMBER_LOOKUP_FAILED)
    return jsonable_encoder(result.to_response())
