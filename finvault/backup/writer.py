"""Creation of new backup records."""

from __future__ import annotations

import hashlib

from finvault.backup.errors import BackupError, SerializationFailedError
from finvault.backup.exporter import Exporter
from finvault.backup.locks import LocationLocks
from finvault.backup.models import (
    BackupOrigin,
    BackupOutcome,
    BackupRecord,
    RetentionConfig,
    RetentionSummary,
)
from finvault.backup.naming import BackupNamer
from finvault.backup.retention import RetentionPolicy
from finvault.backup.storage.base import StorageLocation
from finvault.utils.mixins import LoggerMixin


class BackupWriter(LoggerMixin):
    """Serializes the ledger, writes a record, then applies retention.

    The whole sequence runs under the location lock, so a manual and a
    scheduled backup of the same location never interleave their writes and
    prunes.
    """

    def __init__(
        self,
        exporter: Exporter,
        *,
        namer: BackupNamer | None = None,
        retention: RetentionPolicy | None = None,
        locks: LocationLocks | None = None,
    ):
        self.exporter = exporter
        self.namer = namer or BackupNamer()
        self.retention = retention or RetentionPolicy()
        self.locks = locks or LocationLocks()

    async def create_backup(
        self,
        location: StorageLocation,
        origin: BackupOrigin,
        retention: RetentionConfig | None = None,
    ) -> BackupOutcome:
        """Create one record at ``location``.

        Args:
            location: Destination of the new record
            origin: Auto or manual, encoded in the record name
            retention: When given, old records are pruned after the write

        Returns:
            The new record plus the retention outcome. A failed prune is
            reported in ``retention_error`` and does not fail the backup.
        """
        async with self.locks.hold(location):
            payload = await self._serialize()

            await location.ensure_ready()
            name, created_at = self.namer.next_name(origin)
            ref = await location.write(name, payload)

            record = BackupRecord(
                name=name,
                origin=origin,
                created_at=created_at,
                size_bytes=ref.size_bytes,
                location_key=location.key,
                checksum=hashlib.sha256(payload).hexdigest(),
            )
            self.logger.info(
                "Backup created",
                location=location.key,
                record=name,
                origin=origin.value,
                size=ref.size_bytes,
            )

            summary: RetentionSummary | None = None
            retention_error: str | None = None
            if retention is not None:
                try:
                    summary = await self.retention.prune(location, retention)
                except BackupError as e:
                    retention_error = str(e)
                    self.logger.warning(
                        "Backup succeeded but pruning failed",
                        location=location.key,
                        record=name,
                        error=retention_error,
                    )

        return BackupOutcome(
            record=record, retention=summary, retention_error=retention_error
        )

    async def _serialize(self) -> bytes:
        try:
            payload = await self.exporter.serialize()
        except BackupError:
            raise
        except Exception as e:
            raise SerializationFailedError(f"Ledger export failed: {e}") from e

        if not isinstance(payload, bytes | bytearray):
            raise SerializationFailedError(
                f"Exporter returned {type(payload).__name__}, expected bytes"
            )
        return bytes(payload)


__all__ = ["BackupWriter"]
