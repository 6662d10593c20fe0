"""Key/value store for sync options edited by administrators."""
from typing import Any

from sqlalchemy import JSON, String
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, TimestampMixin


class SyncOptionKey:
    """Well-known option keys."""

    MAPPINGS = "mappings"
    MAPPINGS_MIGRATED_V2 = "mappings_migrated_v2"
    ADMIN_EMAIL = "admin_email"
    LOG_DAYS = "log_days"


class SyncOption(Base, TimestampMixin):
    """A single named option holding an arbitrary JSON value."""

    __tablename__ = "sync_options"

    key: Mapped[str] = mapped_column(String(100), primary_key=True)
    value: Mapped[Any] = mapped_column(JSON, nullable=True)
