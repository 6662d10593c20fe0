"""
ThriveCart webhook endpoint.

ThriveCart posts form-encoded events (PHP bracket notation) and retries on
anything but HTTP 200, so every POST is answered with 200. The body tells
the caller what happened, except for authentication failures, which get an
empty body.
"""

import logging
from typing import Annotated, Any

from fastapi import APIRouter, Depends, Request, Response
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from api.dependencies import get_sync_service
from core.domain.events import parse_form_payload
from infrastructure.config import get_settings
from infrastructure.database import get_db
from services.config_store import SyncConfigStore
from services.sync_log import record_sync_result
from services.sync_service import SyncResult, ThriveCartSyncService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["ThriveCart Webhook"])
settings = get_settings()

HOOK_PATH = "/thrivecart-hook"

FEATURES = [
    "refund",
    "partial_refund",
    "cancellation",
    "multi_product_mapping",
    "payment_type_filter",
    "admin_notification",
]


async def _read_payload(request: Request) -> dict[str, Any]:
    """Decode the request body into a nested dict."""
    content_type = request.headers.get("content-type", "")
    if "application/json" in content_type:
        try:
            payload = await request.json()
        except ValueError:
            logger.warning("Invalid JSON in ThriveCart webhook body")
            return {}
        return payload if isinstance(payload, dict) else {}

    form = await request.form()
    return parse_form_payload(form.multi_items())


async def _record(db: AsyncSession, result: SyncResult, reset: bool = False) -> None:
    try:
        if reset:
            await db.rollback()
        await record_sync_result(db, result)
    except SQLAlchemyError as e:
        logger.error("Failed to store sync log entry: %s", e)
        await db.rollback()


@router.get(HOOK_PATH)
async def webhook_info():
    """Reachability check used when configuring the webhook in ThriveCart."""
    return {
        "ok": True,
        "message": "ThriveCart webhook endpoint ready",
        "version": settings.app_version,
        "features": FEATURES,
    }


@router.head(HOOK_PATH)
async def webhook_head():
    return Response(status_code=200)


@router.post(HOOK_PATH)
async def handle_thrivecart_webhook(
    request: Request,
    service: Annotated[ThriveCartSyncService, Depends(get_sync_service)],
    db: Annotated[AsyncSession, Depends(get_db)],
):
    """
    Handle ThriveCart refund and cancellation events.

    - order.refund / order.refunded: refund the latest complete
      transaction in MemberPress (access revoked immediately)
    - order.subscription_cancelled / order.rebill_cancelled: stop billing,
      access continues until the end of the paid period
    - anything else is acknowledged and ignored
    """
    payload: dict[str, Any] = {}
    try:
        payload = await _read_payload(request)
        config = await SyncConfigStore(db).load()
        result = await service.process_event(payload, config)
    except Exception:
        logger.exception("Unhandled error processing ThriveCart webhook")
        result = SyncResult.internal_error(payload)
        await _record(db, result, reset=True)
        return JSONResponse(status_code=200, content=result.to_response())

    await _record(db, result)

    if not result.authenticated:
        return Response(status_code=200)
    return JSONResponse(status_code=200, content=jsonable_encoder(result.to_response()))
