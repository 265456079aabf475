"""Resolution of the active storage location from preferences."""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING

import aiohttp

from finvault.backup.models import LocationKind, SyncConfig
from finvault.backup.storage.base import StorageLocation
from finvault.backup.storage.handle import (
    HandleResolver,
    OpaqueHandleStorage,
    PathHandleResolver,
)
from finvault.backup.storage.local import LocalDirectoryStorage
from finvault.backup.storage.remote import WebDavStorage
from finvault.config import Settings, get_settings
from finvault.sync.webdav import WebDavClient

if TYPE_CHECKING:
    from finvault.backup.preferences import BackupPreferences


class StorageLocationFactory:
    """Builds storage locations; switching locations never touches records."""

    def __init__(
        self,
        settings: Settings | None = None,
        handle_resolver: HandleResolver | None = None,
        session: aiohttp.ClientSession | None = None,
    ):
        self.settings = settings or get_settings()
        self.handle_resolver = handle_resolver or PathHandleResolver()
        self.session = session

    def default(self) -> LocalDirectoryStorage:
        return LocalDirectoryStorage(self.settings.default_backup_dir, LocationKind.DEFAULT)

    def local_path(self, path: str | Path) -> LocalDirectoryStorage:
        return LocalDirectoryStorage(Path(path), LocationKind.LOCAL_PATH)

    def opaque_handle(self, reference: str) -> OpaqueHandleStorage:
        return OpaqueHandleStorage(self.handle_resolver.resolve(reference))

    def remote(self, config: SyncConfig) -> WebDavStorage:
        return WebDavStorage(
            WebDavClient(config, settings=self.settings, session=self.session)
        )

    def from_preferences(self, preferences: BackupPreferences) -> StorageLocation:
        """Opaque handle first, then custom path, then the app folder."""
        if preferences.custom_handle:
            return self.opaque_handle(preferences.custom_handle)
        if preferences.custom_path:
            return self.local_path(preferences.custom_path)
        return self.default()


__all__ = ["StorageLocationFactory"]
