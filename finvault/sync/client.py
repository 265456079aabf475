"""
WebDAV 同期クライアント

バックアップのアップロード・最新バックアップの取得・接続テストと、
WebDAV 設定の保存および定期同期ジョブの管理を行う。
同期の各段階は :class:`SyncState` としてリスナーに通知される。
"""

from __future__ import annotations

import contextlib
from collections.abc import AsyncIterator, Callable
from datetime import UTC, datetime, timedelta

from finvault.backup.catalog import BackupCatalog
from finvault.backup.errors import RecordNotFoundError
from finvault.backup.locks import LocationLocks
from finvault.backup.models import (
    BackupOrigin,
    BackupOutcome,
    BackupRecord,
    SyncConfig,
    SyncState,
    ValidationResult,
)
from finvault.backup.preferences import PreferencesStore
from finvault.backup.restore import RestoreEngine
from finvault.backup.scheduler import REMOTE_SYNC_JOB, JobCallback, Scheduler
from finvault.backup.storage.base import StorageLocation
from finvault.backup.storage.factory import StorageLocationFactory
from finvault.backup.storage.remote import WebDavStorage
from finvault.backup.writer import BackupWriter
from finvault.utils.mixins import LoggerMixin

SyncListener = Callable[[SyncState], None]


class RemoteSyncClient(LoggerMixin):
    """Pushes snapshots to and pulls them from the configured WebDAV folder."""

    def __init__(
        self,
        *,
        writer: BackupWriter,
        restore_engine: RestoreEngine,
        preferences: PreferencesStore,
        storage_factory: StorageLocationFactory,
        locks: LocationLocks,
        scheduler: Scheduler | None = None,
        catalog: BackupCatalog | None = None,
        sync_job: JobCallback | None = None,
    ):
        self.writer = writer
        self.restore_engine = restore_engine
        self.preferences = preferences
        self.storage_factory = storage_factory
        self.locks = locks
        self.scheduler = scheduler
        self.catalog = catalog or BackupCatalog()
        self.sync_job = sync_job or self.sync
        self._state = SyncState.IDLE
        self._listeners: list[SyncListener] = []

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def state(self) -> SyncState:
        return self._state

    def add_listener(self, listener: SyncListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: SyncListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _transition(self, state: SyncState) -> None:
        self._state = state
        self.logger.debug("Sync state changed", state=state.value)
        for listener in list(self._listeners):
            listener(state)

    @contextlib.asynccontextmanager
    async def _remote_session(
        self, config: SyncConfig | None = None
    ) -> AsyncIterator[WebDavStorage]:
        config = config or await self.current_config()
        storage = self.storage_factory.remote(config)
        self._transition(SyncState.CONNECTING)
        try:
            yield storage
        except BaseException:
            self._transition(SyncState.FAILED)
            raise
        finally:
            await storage.close()
        self._transition(SyncState.COMPLETED)

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    async def current_config(self) -> SyncConfig:
        preferences = await self.preferences.load()
        if preferences.sync is None:
            raise RecordNotFoundError("WebDAV sync is not configured")
        return preferences.sync

    async def save_config(self, config: SyncConfig) -> None:
        await self.preferences.update(sync=config)
        self.apply_schedule(config)
        self.logger.info(
            "WebDAV config saved",
            folder=config.remote_folder,
            auto_sync=config.auto_sync_enabled,
        )

    async def delete_config(self) -> None:
        await self.preferences.update(sync=None)
        self.apply_schedule(None)
        self.logger.info("WebDAV config removed")

    def apply_schedule(self, config: SyncConfig | None) -> None:
        if self.scheduler is None:
            return
        if config is not None and config.auto_sync_enabled:
            self.scheduler.configure(
                REMOTE_SYNC_JOB, timedelta(hours=config.interval_hours), self.sync_job
            )
        else:
            self.scheduler.cancel(REMOTE_SYNC_JOB)

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def test_connection(self, config: SyncConfig) -> bool:
        """読み取り専用の接続確認。リモートの状態は変更しない"""
        storage = self.storage_factory.remote(config)
        try:
            return await storage.client.probe()
        finally:
            await storage.close()

    async def push(self, record: BackupRecord, source: StorageLocation) -> None:
        """Upload an existing record under its own name."""
        async with self.locks.hold(source):
            payload = await source.read(record.name)

        async with self._remote_session() as remote:
            await remote.ensure_ready()
            self._transition(SyncState.UPLOADING)
            async with self.locks.hold(remote):
                await remote.write(record.name, payload)
        await self._mark_synced()

    async def pull_latest(self) -> bytes:
        async with self._remote_session() as remote:
            return await self._download_latest(remote)

    async def _download_latest(self, remote: WebDavStorage) -> bytes:
        latest = await self.catalog.latest(remote)
        if latest is None:
            raise RecordNotFoundError("No backups found on the remote")
        self._transition(SyncState.DOWNLOADING)
        payload = await remote.read(latest.name)
        self.logger.info("Remote backup downloaded", record=latest.name)
        return payload

    async def sync(self) -> BackupOutcome:
        """Create a fresh backup on the remote and prune the remote folder."""
        preferences = await self.preferences.load()
        async with self._remote_session() as remote:
            await remote.ensure_ready()
            self._transition(SyncState.UPLOADING)
            outcome = await self.writer.create_backup(
                remote, BackupOrigin.MANUAL, preferences.retention_config()
            )
        await self._mark_synced()
        return outcome

    async def restore_latest(self) -> ValidationResult:
        """Download the newest remote backup and apply it.

        The session stays open until the restore finishes, so a rejected
        payload ends in ``FAILED`` rather than ``COMPLETED``.
        """
        async with self._remote_session() as remote:
            payload = await self._download_latest(remote)
            return await self.restore_engine.restore_payload(
                payload, source="remote latest"
            )

    async def _mark_synced(self) -> None:
        await self.preferences.update(last_sync_at=datetime.now(UTC))


__all__ = ["RemoteSyncClient", "SyncListener"]
