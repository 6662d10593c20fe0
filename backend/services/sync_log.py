"""
Persistence for the derived sync log.
"""

import logging
from datetime import timedelta

from fastapi.encoders import jsonable_encoder
from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from core.domain.expiration import utcnow
from infrastructure.database.models import SyncLogEntry
from services.sync_service import SyncResult

logger = logging.getLogger(__name__)


async def record_sync_result(db: AsyncSession, result: SyncResult) -> SyncLogEntry:
    """Store one log row for a processed delivery."""
    entry = SyncLogEntry(
        event_type=result.event_type or None,
        state=result.state.value,
        ok=result.ok,
        customer_email=result.customer_email,
        product_id=result.product_id,
        member_id=result.user_id,
        membership_id=result.membership_id,
        action_type=result.action_type,
        error=result.error,
        results=jsonable_encoder(result.results) if result.results else None,
    )
    db.add(entry)
    await db.commit()
    return entry


async def purge_expired_entries(db: AsyncSession, days: int, now=None) -> int:
    """
    Delete log rows older than ``days``.

    Returns:
        Number of rows deleted
    """
    cutoff = (now or utcnow()) - timedelta(days=max(days, 1))
    result = await db.execute(delete(SyncLogEntry).where(SyncLogEntry.created_at < cutoff))
    await db.commit()
    deleted = result.rowcount or 0
    if deleted:
        logger.info("Cleaned up %d sync log entries older than %d days", deleted, days)
    return deleted


async def list_recent_entries(db: AsyncSession, limit: int = 50) -> tuple[list[SyncLogEntry], int]:
    """Newest log rows first, plus the total row count."""
    result = await db.execute(
        select(SyncLogEntry)
        .order_by(SyncLogEntry.created_at.desc(), SyncLogEntry.id.desc())
        .limit(limit)
    )
    total = await db.scalar(select(func.count()).select_from(SyncLogEntry))
    return list(result.scalars().all()), total or 0


async def clear_entries(db: AsyncSession) -> int:
    """Delete every log row."""
    result = await db.execute(delete(SyncLogEntry))
    await db.commit()
    deleted = result.rowcount or 0
    logger.info("Sync log cleared (%d entries)", deleted)
    return deleted
