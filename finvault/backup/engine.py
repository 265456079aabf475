"""
Backup engine facade

Wires storage, catalog, retention, validation, restore, remote sync, the
encryption key manager and the scheduler together. Every public operation is
dispatched on the :class:`WorkerPool` and resolves to an
:class:`OperationResult`; completed operations are also published on
:attr:`BackupEngine.events`.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from datetime import timedelta
from pathlib import Path

import aiohttp

from finvault.backup.catalog import BackupCatalog
from finvault.backup.errors import BackupError, EncryptionError, ValidationFailedError
from finvault.backup.exporter import Exporter
from finvault.backup.locks import LocationLocks
from finvault.backup.models import BackupOrigin, BackupRecord, SyncConfig
from finvault.backup.naming import BackupNamer
from finvault.backup.preferences import BackupPreferences, PreferencesStore
from finvault.backup.reminder import BackupReminder
from finvault.backup.restore import RestoreEngine
from finvault.backup.results import OperationResult, Success
from finvault.backup.retention import RetentionPolicy
from finvault.backup.scheduler import (
    REMINDER_JOB,
    AsyncioScheduler,
    AutoBackupTrigger,
    Scheduler,
)
from finvault.backup.storage.base import StorageLocation
from finvault.backup.storage.factory import StorageLocationFactory
from finvault.backup.storage.handle import HandleResolver
from finvault.backup.validator import BackupValidator
from finvault.backup.workers import EventChannel, WorkerPool
from finvault.backup.writer import BackupWriter
from finvault.config import Settings, get_settings
from finvault.ledger.store import JsonLedgerStore, LedgerExporter
from finvault.security.cipher import MasterKeyCipher
from finvault.security.key_manager import EncryptionKeyManager
from finvault.sync.client import RemoteSyncClient
from finvault.utils.error_handler import reports_operation
from finvault.utils.logger import log_operation, setup_logging
from finvault.utils.mixins import LoggerMixin

RecordLike = BackupRecord | str

REMINDER_INTERVAL = timedelta(days=1)


def _name_of(record: RecordLike) -> str:
    return record.name if isinstance(record, BackupRecord) else record


class BackupEngine(LoggerMixin):
    """Entry point for hosts (UI, CLI, periodic task runner)."""

    def __init__(
        self,
        exporter: Exporter,
        preferences: PreferencesStore,
        *,
        settings: Settings | None = None,
        storage_factory: StorageLocationFactory | None = None,
        scheduler: Scheduler | None = None,
        key_manager: EncryptionKeyManager | None = None,
        events: EventChannel | None = None,
    ):
        self.settings = settings or get_settings()
        self.exporter = exporter
        self.preferences = preferences
        self.storage_factory = storage_factory or StorageLocationFactory(self.settings)
        self.scheduler = scheduler or AsyncioScheduler()
        self.key_manager = key_manager

        self.locks = LocationLocks()
        self.catalog = BackupCatalog()
        self.validator = BackupValidator()
        self.retention = RetentionPolicy(self.catalog)
        self.writer = BackupWriter(
            exporter,
            namer=BackupNamer(
                self.settings.backup_file_context, self.settings.backup_file_extension
            ),
            retention=self.retention,
            locks=self.locks,
        )
        self.restorer = RestoreEngine(
            exporter, validator=self.validator, locks=self.locks
        )
        self.reminder = BackupReminder()
        self.events = events or EventChannel()
        self.pool = WorkerPool(self.settings.io_workers, self.events)
        self.auto_trigger = AutoBackupTrigger(self.scheduler, self.run_scheduled_backup)
        self.sync_client = RemoteSyncClient(
            writer=self.writer,
            restore_engine=self.restorer,
            preferences=preferences,
            storage_factory=self.storage_factory,
            locks=self.locks,
            scheduler=self.scheduler,
            catalog=self.catalog,
            sync_job=self.run_scheduled_sync,
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> BackupPreferences:
        """Re-register the periodic jobs stored in preferences."""
        preferences = await self.preferences.load()
        if preferences.auto_backup_enabled:
            self.auto_trigger.configure(preferences.backup_interval_days)
        if preferences.reminder_enabled:
            self.scheduler.configure(
                REMINDER_JOB, REMINDER_INTERVAL, self.run_reminder_check
            )
        self.sync_client.apply_schedule(preferences.sync)
        self.logger.info(
            "Backup engine started",
            auto_backup=preferences.auto_backup_enabled,
            reminder=preferences.reminder_enabled,
            sync=preferences.sync is not None,
        )
        return preferences

    async def close(self) -> None:
        await self.pool.shutdown()
        if isinstance(self.scheduler, AsyncioScheduler):
            await self.scheduler.shutdown()

    def _submit(
        self, operation: str, factory: Callable[[], Awaitable[OperationResult]]
    ) -> Awaitable[OperationResult]:
        log_operation(operation, pending=self.pool.pending)
        return self.pool.submit(operation, factory)

    async def active_location(self) -> StorageLocation:
        preferences = await self.preferences.load()
        return self.storage_factory.from_preferences(preferences)

    # ------------------------------------------------------------------
    # Backups
    # ------------------------------------------------------------------

    async def create_backup(
        self, origin: BackupOrigin = BackupOrigin.MANUAL
    ) -> OperationResult:
        return await self._submit("create_backup", lambda: self._create_backup(origin))

    async def run_scheduled_backup(self) -> OperationResult:
        """Scheduler trigger target for the auto backup job."""
        return await self.create_backup(BackupOrigin.AUTO)

    @reports_operation("create backup")
    async def _create_backup(self, origin: BackupOrigin) -> OperationResult:
        preferences = await self.preferences.load()
        location = self.storage_factory.from_preferences(preferences)
        outcome = await self.writer.create_backup(
            location, origin, preferences.retention_config()
        )

        message = f"Backup created: {outcome.record.name}"
        try:
            await self.preferences.update(last_backup_at=outcome.record.created_at)
        except BackupError as e:
            self.logger.warning(
                "Backup time not recorded", record=outcome.record.name, error=str(e)
            )
            message += " (backup time could not be saved)"
        if outcome.retention and outcome.retention.pruned_count:
            message += f" ({outcome.retention.pruned_count} old backups removed)"
        if outcome.retention_error:
            message += " (old backups could not be cleaned up)"
        return Success(message, data=outcome)

    async def list_backups(self, origin: BackupOrigin | None = None) -> OperationResult:
        return await self._submit("list_backups", lambda: self._list_backups(origin))

    @reports_operation("list backups")
    async def _list_backups(self, origin: BackupOrigin | None) -> OperationResult:
        location = await self.active_location()
        records = await self.catalog.list(location, origin)
        return Success(f"{len(records)} backups found", data=records)

    async def list_foreign_files(self) -> OperationResult:
        return await self._submit("list_foreign_files", self._list_foreign_files)

    @reports_operation("list foreign files")
    async def _list_foreign_files(self) -> OperationResult:
        location = await self.active_location()
        refs = await self.catalog.list_foreign(location)
        return Success(f"{len(refs)} other files found", data=refs)

    async def read_backup_content(self, record: RecordLike) -> OperationResult:
        return await self._submit(
            "read_backup_content", lambda: self._read_backup_content(record)
        )

    @reports_operation("read backup")
    async def _read_backup_content(self, record: RecordLike) -> OperationResult:
        location = await self.active_location()
        async with self.locks.hold(location):
            payload = await location.read(_name_of(record))
        text = payload.decode("utf-8", errors="replace")
        return Success(f"Read {len(payload)} bytes", data=text)

    async def validate_backup(self, record: RecordLike) -> OperationResult:
        return await self._submit("validate_backup", lambda: self._validate_backup(record))

    @reports_operation("validate backup")
    async def _validate_backup(self, record: RecordLike) -> OperationResult:
        location = await self.active_location()
        async with self.locks.hold(location):
            payload = await location.read(_name_of(record))
        result = await self.validator.validate_async(payload)
        if not result.is_valid:
            raise ValidationFailedError(result.summary())
        return Success(result.summary(), data=result)

    async def restore_backup(self, record: RecordLike) -> OperationResult:
        return await self._submit("restore_backup", lambda: self._restore_backup(record))

    @reports_operation("restore backup")
    async def _restore_backup(self, record: RecordLike) -> OperationResult:
        location = await self.active_location()
        result = await self.restorer.restore(location, _name_of(record))
        counts = result.entity_counts
        message = (
            f"Restored {counts.categories} categories, {counts.accounts} accounts, "
            f"{counts.transactions} transactions and {counts.budgets} budgets"
        )
        if result.has_consistency_issues:
            message += " (with consistency warnings)"
        return Success(message, data=result)

    async def delete_backup(self, record: RecordLike) -> OperationResult:
        return await self._submit("delete_backup", lambda: self._delete_backup(record))

    @reports_operation("delete backup")
    async def _delete_backup(self, record: RecordLike) -> OperationResult:
        location = await self.active_location()
        name = _name_of(record)
        async with self.locks.hold(location):
            await location.delete(name)
        return Success(f"Deleted {name}")

    async def prune_now(self) -> OperationResult:
        return await self._submit("prune", self._prune_now)

    @reports_operation("prune backups")
    async def _prune_now(self) -> OperationResult:
        preferences = await self.preferences.load()
        location = self.storage_factory.from_preferences(preferences)
        async with self.locks.hold(location):
            summary = await self.retention.prune(
                location, preferences.retention_config()
            )
        return Success(f"{summary.pruned_count} old backups removed", data=summary)

    # ------------------------------------------------------------------
    # Settings
    # ------------------------------------------------------------------

    async def enable_auto_backup(self, interval_days: int | None = None) -> OperationResult:
        return await self._submit(
            "enable_auto_backup", lambda: self._enable_auto_backup(interval_days)
        )

    @reports_operation("enable auto backup")
    async def _enable_auto_backup(self, interval_days: int | None) -> OperationResult:
        changes: dict[str, object] = {"auto_backup_enabled": True}
        if interval_days is not None:
            changes["backup_interval_days"] = interval_days
        preferences = await self.preferences.update(**changes)
        self.auto_trigger.configure(preferences.backup_interval_days)
        return Success(
            f"Auto backup every {preferences.backup_interval_days} days",
            data=preferences,
        )

    async def disable_auto_backup(self) -> OperationResult:
        return await self._submit("disable_auto_backup", self._disable_auto_backup)

    @reports_operation("disable auto backup")
    async def _disable_auto_backup(self) -> OperationResult:
        preferences = await self.preferences.update(auto_backup_enabled=False)
        self.auto_trigger.cancel()
        return Success("Auto backup disabled", data=preferences)

    async def set_reminder(self, enabled: bool, days: int | None = None) -> OperationResult:
        return await self._submit("set_reminder", lambda: self._set_reminder(enabled, days))

    @reports_operation("set backup reminder")
    async def _set_reminder(self, enabled: bool, days: int | None) -> OperationResult:
        changes: dict[str, object] = {"reminder_enabled": enabled}
        if days is not None:
            changes["reminder_days"] = days
        preferences = await self.preferences.update(**changes)
        if enabled:
            self.scheduler.configure(
                REMINDER_JOB, REMINDER_INTERVAL, self.run_reminder_check
            )
            message = f"Reminder after {preferences.reminder_days} days without backup"
        else:
            self.scheduler.cancel(REMINDER_JOB)
            message = "Backup reminder disabled"
        return Success(message, data=preferences)

    async def check_reminder(self) -> OperationResult:
        return await self._submit("check_reminder", self._check_reminder)

    async def run_reminder_check(self) -> OperationResult:
        """Scheduler trigger target for the daily reminder job."""
        result = await self.check_reminder()
        if result.ok and result.data.due:
            self.logger.warning("Backup reminder due", reason=result.message)
        return result

    @reports_operation("check backup reminder")
    async def _check_reminder(self) -> OperationResult:
        decision = self.reminder.check(await self.preferences.load())
        return Success(decision.message, data=decision)

    async def set_custom_path(self, path: str | Path) -> OperationResult:
        return await self._submit("set_custom_path", lambda: self._set_custom_path(path))

    @reports_operation("set backup folder")
    async def _set_custom_path(self, path: str | Path) -> OperationResult:
        location = self.storage_factory.local_path(path)
        await location.ensure_ready()
        preferences = await self.preferences.update(
            custom_path=str(path), custom_handle=None
        )
        return Success(f"Backups will be stored in {location.display_name}", data=preferences)

    async def set_custom_handle(self, reference: str) -> OperationResult:
        return await self._submit(
            "set_custom_handle", lambda: self._set_custom_handle(reference)
        )

    @reports_operation("set backup folder")
    async def _set_custom_handle(self, reference: str) -> OperationResult:
        location = self.storage_factory.opaque_handle(reference)
        await location.ensure_ready()
        preferences = await self.preferences.update(
            custom_handle=reference, custom_path=None
        )
        return Success(f"Backups will be stored in {location.display_name}", data=preferences)

    async def clear_custom_location(self) -> OperationResult:
        return await self._submit("clear_custom_location", self._clear_custom_location)

    @reports_operation("reset backup folder")
    async def _clear_custom_location(self) -> OperationResult:
        preferences = await self.preferences.update(custom_path=None, custom_handle=None)
        return Success("Backups will be stored in the app folder", data=preferences)

    # ------------------------------------------------------------------
    # Remote sync
    # ------------------------------------------------------------------

    async def test_connection(self, config: SyncConfig) -> OperationResult:
        return await self._submit("test_connection", lambda: self._test_connection(config))

    @reports_operation("test WebDAV connection")
    async def _test_connection(self, config: SyncConfig) -> OperationResult:
        reachable = await self.sync_client.test_connection(config)
        return Success("Connection successful", data=reachable)

    async def save_sync_config(self, config: SyncConfig) -> OperationResult:
        return await self._submit("save_sync_config", lambda: self._save_sync_config(config))

    @reports_operation("save WebDAV config")
    async def _save_sync_config(self, config: SyncConfig) -> OperationResult:
        await self.sync_client.save_config(config)
        return Success("WebDAV settings saved")

    async def delete_sync_config(self) -> OperationResult:
        return await self._submit("delete_sync_config", self._delete_sync_config)

    @reports_operation("delete WebDAV config")
    async def _delete_sync_config(self) -> OperationResult:
        await self.sync_client.delete_config()
        return Success("WebDAV settings removed")

    async def sync_now(self) -> OperationResult:
        return await self._submit("sync", self._sync_now)

    async def run_scheduled_sync(self) -> OperationResult:
        """Scheduler trigger target for the WebDAV sync job."""
        return await self.sync_now()

    @reports_operation("sync with WebDAV")
    async def _sync_now(self) -> OperationResult:
        outcome = await self.sync_client.sync()
        return Success(f"Uploaded {outcome.record.name}", data=outcome)

    async def push_backup(self, record: RecordLike) -> OperationResult:
        return await self._submit("push_backup", lambda: self._push_backup(record))

    @reports_operation("upload backup")
    async def _push_backup(self, record: RecordLike) -> OperationResult:
        location = await self.active_location()
        found = await self.catalog.find(location, _name_of(record))
        await self.sync_client.push(found, location)
        return Success(f"Uploaded {found.name}")

    async def restore_latest_remote(self) -> OperationResult:
        return await self._submit("restore_latest_remote", self._restore_latest_remote)

    @reports_operation("restore from WebDAV")
    async def _restore_latest_remote(self) -> OperationResult:
        result = await self.sync_client.restore_latest()
        return Success(
            f"Restored {result.entity_counts.total} records from WebDAV", data=result
        )

    # ------------------------------------------------------------------
    # Encryption
    # ------------------------------------------------------------------

    def _require_key_manager(self) -> EncryptionKeyManager:
        if self.key_manager is None:
            raise EncryptionError("No key manager is configured")
        return self.key_manager

    async def enable_encryption(self) -> OperationResult:
        return await self._submit("enable_encryption", self._enable_encryption)

    @reports_operation("enable encryption")
    async def _enable_encryption(self) -> OperationResult:
        await self._require_key_manager().setup()
        await self.preferences.update(encryption_enabled=True)
        return Success("Store encryption enabled")

    async def rotate_encryption_key(self) -> OperationResult:
        return await self._submit("rotate_encryption_key", self._rotate_encryption_key)

    @reports_operation("rotate encryption key")
    async def _rotate_encryption_key(self) -> OperationResult:
        key_manager = self._require_key_manager()
        await key_manager.rotate()
        state = await key_manager.state()
        return Success(
            f"Encryption key rotated (version {state.current_key_version})", data=state
        )

    async def encryption_state(self) -> OperationResult:
        return await self._submit("encryption_state", self._encryption_state)

    @reports_operation("read encryption state")
    async def _encryption_state(self) -> OperationResult:
        state = await self._require_key_manager().state()
        label = "enabled" if state.enabled else "disabled"
        return Success(f"Store encryption {label}", data=state)


async def build_engine(
    settings: Settings | None = None,
    *,
    exporter: Exporter | None = None,
    scheduler: Scheduler | None = None,
    handle_resolver: HandleResolver | None = None,
    session: aiohttp.ClientSession | None = None,
) -> BackupEngine:
    """Assemble an engine over the JSON ledger store described by ``settings``."""
    settings = settings or get_settings()
    setup_logging(settings)
    cipher = MasterKeyCipher(settings.master_key_path)
    store = JsonLedgerStore(settings.ledger_path)
    key_manager = EncryptionKeyManager(settings.key_path, cipher, reencryptor=store)
    if await key_manager.is_enabled():
        store.password = (await key_manager.current_password()).get_secret_value()

    return BackupEngine(
        exporter or LedgerExporter(store),
        PreferencesStore(settings.preferences_path, cipher, settings),
        settings=settings,
        storage_factory=StorageLocationFactory(settings, handle_resolver, session),
        scheduler=scheduler,
        key_manager=key_manager,
    )


__all__ = ["BackupEngine", "build_engine"]
