"""
Sync configuration snapshot and its option store.

Static credentials (webhook secret, MemberPress URL and key) come from the
environment through :mod:`infrastructure.config.settings`. Options an
administrator edits at runtime (mapping table, notification address, log
retention) live in the ``sync_options`` table. Each request reads one
:class:`SyncConfig` snapshot and passes it down explicitly.
"""

import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from core.domain.mapping import migrate_legacy_mappings
from infrastructure.config.settings import Settings, get_settings
from infrastructure.database.models import SyncOption, SyncOptionKey

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SyncConfig:
    """Read-only configuration for processing one event."""

    thrivecart_secret: str | None = None
    admin_email: str | None = None
    log_days: int = 30
    mappings: list[dict[str, Any]] = field(default_factory=list)


class SyncConfigStore:
    """Reads and writes sync options for one database session."""

    def __init__(self, db: AsyncSession, app_settings: Settings | None = None):
        self.db = db
        self.settings = app_settings or get_settings()

    async def get_option(self, key: str, default: Any = None) -> Any:
        option = await self.db.get(SyncOption, key)
        if option is None or option.value is None:
            return default
        return option.value

    async def set_option(self, key: str, value: Any) -> None:
        option = await self.db.get(SyncOption, key)
        if option is None:
            self.db.add(SyncOption(key=key, value=value))
        else:
            option.value = value
        try:
            await self.db.commit()
        except IntegrityError:
            # A concurrent request inserted the same key first; update its row.
            await self.db.rollback()
            option = await self.db.get(SyncOption, key)
            if option is None:
                raise
            option.value = value
            await self.db.commit()

    async def migrate_mappings(self) -> bool:
        """
        Upgrade legacy mapping entries once.

        Gated by the ``mappings_migrated_v2`` flag, which is set even when
        nothing needed converting.

        Returns:
            True if the stored table was rewritten
        """
        if await self.get_option(SyncOptionKey.MAPPINGS_MIGRATED_V2, False):
            return False

        stored = await self.get_option(SyncOptionKey.MAPPINGS, [])
        migrated, changed = migrate_legacy_mappings(stored if isinstance(stored, list) else [])
        if changed:
            await self.set_option(SyncOptionKey.MAPPINGS, migrated)
            logger.info("Migrated mappings to v2 format (%d entries)", len(migrated))

        await self.set_option(SyncOptionKey.MAPPINGS_MIGRATED_V2, True)
        return changed

    async def get_mappings(self) -> list[dict[str, Any]]:
        """Mapping table in priority order, migrated on first access."""
        await self.migrate_mappings()
        stored = await self.get_option(SyncOptionKey.MAPPINGS, [])
        if not isinstance(stored, list):
            logger.warning("Stored mapping table is not a list; ignoring it")
            return []
        return [dict(entry) for entry in stored if isinstance(entry, Mapping)]

    async def save_mappings(self, mappings: Sequence[Mapping[str, Any]]) -> list[dict[str, Any]]:
        """Replace the mapping table."""
        table = [dict(entry) for entry in mappings]
        await self.set_option(SyncOptionKey.MAPPINGS, table)
        return table

    async def save_options(self, options: Mapping[str, Any]) -> None:
        """
        Update the administrator-editable options present in ``options``.

        A ``None`` admin email clears the stored address so the environment
        default applies again.
        """
        for key in (SyncOptionKey.ADMIN_EMAIL, SyncOptionKey.LOG_DAYS):
            if key in options:
                await self.set_option(key, options[key])
        logger.info("Sync options updated: %s", ", ".join(k for k in options))

    async def get_admin_email(self) -> str | None:
        return await self.get_option(SyncOptionKey.ADMIN_EMAIL) or self.settings.admin_email

    async def get_log_days(self) -> int:
        value = await self.get_option(SyncOptionKey.LOG_DAYS)
        try:
            days = int(value) if value is not None else self.settings.log_retention_days
        except (TypeError, ValueError):
            days = self.settings.log_retention_days
        return max(days, 1)

    async def load(self) -> SyncConfig:
        """Snapshot of everything event processing reads."""
        return SyncConfig(
            thrivecart_secret=self.settings.thrivecart_secret,
            admin_email=await self.get_admin_email(),
            log_days=await self.get_log_days(),
            mappings=await self.get_mappings(),
        )
