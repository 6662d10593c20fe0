"""Derived log of processed webhook deliveries."""
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import JSON, Boolean, DateTime, Index, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base


class SyncLogEntry(Base):
    """
    One row per inbound POST.

    Only derived fields are stored; the raw payload (which carries the
    shared secret) never is.
    """

    __tablename__ = "sync_log_entries"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    event_type: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    state: Mapped[str] = mapped_column(String(30), nullable=False)
    ok: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    customer_email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    product_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    member_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    membership_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    action_type: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    results: Mapped[Optional[Any]] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    __table_args__ = (
        Index("ix_sync_log_entries_created", "created_at"),
        Index("ix_sync_log_entries_email", "customer_email"),
    )
