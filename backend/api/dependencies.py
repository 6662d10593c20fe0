"""
API dependencies for the sync service and its configuration.
"""

from typing import Annotated

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from infrastructure.database import get_db
from services.config_store import SyncConfig, SyncConfigStore
from services.sync_service import ThriveCartSyncService


def get_sync_service(request: Request) -> ThriveCartSyncService:
    """
    Dependency returning the process-wide sync service.

    The service is built in the application lifespan and stored on app.state.
    """
    service = getattr(request.app.state, "sync_service", None)
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Sync service not initialised",
        )
    return service


async def get_config_store(
    db: Annotated[AsyncSession, Depends(get_db)],
) -> SyncConfigStore:
    return SyncConfigStore(db)


async def get_sync_config(
    store: Annotated[SyncConfigStore, Depends(get_config_store)],
) -> SyncConfig:
    """Configuration snapshot for the current request."""
    return await store.load()
