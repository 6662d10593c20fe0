"""
SQLAlchemy database models.
"""

from .base import Base, TimestampMixin
from .sync_log import SyncLogEntry
from .sync_option import SyncOption, SyncOptionKey

__all__ = [
    "Base",
    "TimestampMixin",
    "SyncLogEntry",
    "SyncOption",
    "SyncOptionKey",
]
