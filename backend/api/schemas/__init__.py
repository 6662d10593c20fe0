"""
API request and response schemas.
"""

from .sync import (
    MappingIn,
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

__all__ = [
    "MappingIn",
    "MappingsResponse",
    "MappingsUpdate",
    "SimulatedCancellationRequest",
    "SyncLogClearResponse",
    "SyncLogEntryResponse",
    "SyncLogListResponse",
    "SyncOptions",
    "SyncOptionsUpdate",
    "SyncStatusResponse",
]
