"""Persisted backup preferences."""

from __future__ import annotations

import asyncio
import json
from datetime import datetime
from pathlib import Path
from typing import Any

import aiofiles.os
from pydantic import BaseModel, Field, ValidationError

from finvault.backup.errors import StorageIOError, normalize_os_error
from finvault.backup.models import RetentionConfig, SyncConfig
from finvault.config import Settings, get_settings
from finvault.security.cipher import MasterKeyCipher
from finvault.utils.files import read_bytes, write_atomic
from finvault.utils.mixins import LoggerMixin


class BackupPreferences(BaseModel):
    """User choices for backups, reminders, storage location and sync."""

    auto_backup_enabled: bool = False
    backup_interval_days: int = Field(default=3, ge=1)
    max_kept_snapshots: int = Field(default=10, ge=1)
    custom_path: str | None = None
    custom_handle: str | None = None
    reminder_enabled: bool = False
    reminder_days: int = Field(default=7, ge=1)
    sync: SyncConfig | None = None
    last_backup_at: datetime | None = None
    last_sync_at: datetime | None = None
    encryption_enabled: bool = False

    @classmethod
    def defaults(cls, settings: Settings | None = None) -> BackupPreferences:
        settings = settings or get_settings()
        return cls(
            backup_interval_days=settings.default_backup_interval_days,
            max_kept_snapshots=settings.max_kept_snapshots,
            reminder_days=settings.default_reminder_days,
        )

    def retention_config(self) -> RetentionConfig:
        return RetentionConfig(
            max_kept_snapshots=self.max_kept_snapshots,
            interval_days=self.backup_interval_days,
        )


class PreferencesStore(LoggerMixin):
    """JSON file store; the WebDAV password is kept Fernet encrypted."""

    def __init__(
        self,
        path: Path,
        cipher: MasterKeyCipher,
        settings: Settings | None = None,
    ):
        self.path = Path(path)
        self.cipher = cipher
        self.settings = settings or get_settings()
        self._lock = asyncio.Lock()

    async def load(self) -> BackupPreferences:
        if not await aiofiles.os.path.exists(self.path):
            return BackupPreferences.defaults(self.settings)
        try:
            raw = await read_bytes(self.path)
        except OSError as e:
            raise normalize_os_error(e, operation="read", target=str(self.path)) from e

        try:
            data = json.loads(raw)
        except ValueError as e:
            raise StorageIOError(f"Preferences file is corrupt: {e}") from e

        sync = data.get("sync") if isinstance(data, dict) else None
        if isinstance(sync, dict) and "password_encrypted" in sync:
            sync = dict(sync)
            sync["password"] = self.cipher.decrypt(sync.pop("password_encrypted"))
            data["sync"] = sync

        try:
            return BackupPreferences.model_validate(data)
        except ValidationError as e:
            raise StorageIOError(
                f"Preferences file is invalid: {e.error_count()} errors"
            ) from e

    async def save(self, preferences: BackupPreferences) -> None:
        async with self._lock:
            await self._write(preferences)

    async def update(self, **changes: Any) -> BackupPreferences:
        """Load, apply ``changes`` and save in one step."""
        async with self._lock:
            current = await self.load()
            updated = BackupPreferences.model_validate(
                {**current.model_dump(), **changes}
            )
            await self._write(updated)
        self.logger.debug("Preferences updated", fields=sorted(changes))
        return updated

    async def _write(self, preferences: BackupPreferences) -> None:
        data = preferences.model_dump(mode="json", exclude={"sync"})
        if preferences.sync is not None:
            sync = preferences.sync.model_dump(mode="json", exclude={"password"})
            sync["password_encrypted"] = self.cipher.encrypt(
                preferences.sync.password.get_secret_value()
            )
            data["sync"] = sync
        else:
            data["sync"] = None

        try:
            await write_atomic(
                self.path, json.dumps(data, indent=2).encode("utf-8"), mode=0o600
            )
        except OSError as e:
            raise normalize_os_error(e, operation="write", target=str(self.path)) from e


__all__ = ["BackupPreferences", "PreferencesStore"]
