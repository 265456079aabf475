"""Configuration settings for finvault with caching utilities."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from threading import RLock
from typing import Any

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Process level settings for the backup engine.

    User facing choices (auto backup, custom location, WebDAV account) live in
    :class:`finvault.backup.preferences.BackupPreferences`; the values here are
    deployment defaults and tuning knobs.
    """

    model_config = SettingsConfigDict(
        env_prefix="FINVAULT_",
        env_file=[".env.test", ".env"],
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Local storage layout
    data_dir: Path = Path("./data")
    backup_folder_name: str = "backups"
    backup_file_context: str = "finvault"
    backup_file_extension: str = "json"
    preferences_file_name: str = "backup_prefs.json"
    ledger_file_name: str = "ledger.json"
    key_file_name: str = "store_key.json"
    master_key_file_name: str = "master.key"

    # Retention / scheduling defaults
    max_kept_snapshots: int = Field(default=10, ge=1)
    default_backup_interval_days: int = Field(default=3, ge=1)
    default_reminder_days: int = Field(default=7, ge=1)
    default_sync_interval_hours: int = Field(default=24, ge=1)
    default_remote_folder: str = "finvault"

    # Remote (WebDAV) transport
    remote_retry_attempts: int = Field(default=3, ge=1)
    remote_retry_base_seconds: float = Field(default=0.5, ge=0)
    remote_retry_max_seconds: float = Field(default=8.0, ge=0)
    http_timeout_seconds: float = 30.0
    http_connect_timeout_seconds: float = 10.0

    # Worker pool
    io_workers: int = Field(default=4, ge=1)

    # Logging
    log_level: str = "INFO"
    log_format: str = "json"
    log_dir: Path = Path("logs")

    # Environment
    environment: str = "personal"

    @property
    def default_backup_dir(self) -> Path:
        """App-private backup folder used when no custom location is chosen"""
        return self.data_dir / self.backup_folder_name

    @property
    def preferences_path(self) -> Path:
        return self.data_dir / self.preferences_file_name

    @property
    def ledger_path(self) -> Path:
        return self.data_dir / self.ledger_file_name

    @property
    def key_path(self) -> Path:
        return self.data_dir / self.key_file_name

    @property
    def master_key_path(self) -> Path:
        return self.data_dir / self.master_key_file_name

    @property
    def is_testing(self) -> bool:
        """Check if running in testing mode"""
        return self.environment.lower() in ["testing", "test"]


_SETTINGS_LOCK = RLock()
_SETTINGS_CACHE: Settings | None = None


def get_settings(*, refresh: bool = False) -> Settings:
    """Return a cached ``Settings`` instance.

    Parameters
    ----------
    refresh:
        When ``True`` the cached instance is discarded and a new one is created.
    """

    global _SETTINGS_CACHE

    with _SETTINGS_LOCK:
        if refresh or _SETTINGS_CACHE is None:
            _SETTINGS_CACHE = Settings()
        return _SETTINGS_CACHE


def clear_settings_cache() -> None:
    """Clear the cached settings instance."""

    global _SETTINGS_CACHE

    with _SETTINGS_LOCK:
        _SETTINGS_CACHE = None


get_settings.cache_clear = clear_settings_cache  # type: ignore[attr-defined]


@contextmanager
def override_settings(**overrides: Any) -> Iterator[Settings]:
    """Temporarily override the cached settings within a context."""

    global _SETTINGS_CACHE

    with _SETTINGS_LOCK:
        previous_settings = _SETTINGS_CACHE

    base_settings = previous_settings or Settings()
    patched_settings = base_settings.model_copy(update=overrides)

    with _SETTINGS_LOCK:
        _SETTINGS_CACHE = patched_settings

    try:
        yield patched_settings
    finally:
        with _SETTINGS_LOCK:
            _SETTINGS_CACHE = previous_settings
