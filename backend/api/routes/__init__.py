"""API Routes."""

from fastapi import APIRouter

from .health import router as health_router
from .sync_admin import router as sync_admin_router
from .webhook import router as webhook_router

# Create main API router
api_router = APIRouter()

# Include route modules
api_router.include_router(health_router, tags=["Health"])
api_router.include_router(webhook_router)
api_router.include_router(sync_admin_router)
