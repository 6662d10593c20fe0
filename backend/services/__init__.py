"""
Service layer for business logic.
"""

from services.access_controller import RemoteAccessController, select_latest_transaction
from services.config_store import SyncConfig, SyncConfigStore
from services.sync_service import SyncResult, SyncState, ThriveCartSyncService

__all__ = [
    "RemoteAccessController",
    "select_latest_transaction",
    "SyncConfig",
    "SyncConfigStore",
    "SyncResult",
    "SyncState",
    "ThriveCartSyncService",
]
