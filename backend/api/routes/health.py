"""
Health check endpoints.

``/health/live`` only says the process answers. ``/health/ready`` checks what
webhook processing needs: the options database and an authorized MemberPress
REST API.
"""

import asyncio
import logging
from datetime import UTC, datetime
from typing import Annotated

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from api.dependencies import get_sync_service
from infrastructure.config import get_settings
from infrastructure.database import get_db
from services.sync_service import ThriveCartSyncService

logger = logging.getLogger(__name__)

router = APIRouter()
settings = get_settings()

DB_CHECK_TIMEOUT_SECONDS = 5.0


async def _check_database(db: AsyncSession) -> str:
    try:
        result = await asyncio.wait_for(db.execute(text("SELECT 1")), timeout=DB_CHECK_TIMEOUT_SECONDS)
        result.scalar()
    except TimeoutError:
        logger.error("Health check DB timeout")
        return "error: database timeout"
    except Exception as e:
        logger.error("Health check DB error: %s", str(e))
        return "error: database check failed"
    return "connected"


def _memberpress_status(reachable: bool, authorized: bool) -> str:
    if authorized:
        return "connected"
    return "unauthorized" if reachable else "unreachable"


@router.get("/health")
async def health_check():
    """Basic health check."""
    return {
        "status": "healthy",
        "app": settings.app_name,
        "version": settings.app_version,
        "environment": settings.environment,
        "timestamp": datetime.now(UTC).isoformat(),
    }


@router.get("/health/db")
async def health_check_db(db: Annotated[AsyncSession, Depends(get_db)]):
    """Options database connectivity."""
    db_status = await _check_database(db)
    return {
        "status": "healthy" if db_status == "connected" else "degraded",
        "database": db_status,
        "timestamp": datetime.now(UTC).isoformat(),
    }


@router.get("/health/ready")
async def readiness_check(
    db: Annotated[AsyncSession, Depends(get_db)],
    service: Annotated[ThriveCartSyncService, Depends(get_sync_service)],
):
    """
    Readiness to process webhooks.

    Ready when the database answers and MemberPress accepts the API key. A
    missing ThriveCart secret is reported but does not block readiness;
    deliveries are then rejected as unauthenticated.
    """
    db_status = await _check_database(db)
    reachable, authorized = await service.memberpress.probe()
    memberpress = _memberpress_status(reachable, authorized)

    ready = db_status == "connected" and authorized
    if not ready:
        logger.warning("Readiness check failed (database=%s, memberpress=%s)", db_status, memberpress)

    return {
        "ready": ready,
        "database": db_status,
        "memberpress": memberpress,
        "thrivecart_secret": "configured" if settings.thrivecart_secret else "missing",
    }


@router.get("/health/live")
async def liveness_check():
    """Process is up."""
    return {"alive": True}
