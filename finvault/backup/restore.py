"""Restoring the ledger from a backup record."""

from __future__ import annotations

from finvault.backup.errors import BackupError, ValidationFailedError
from finvault.backup.exporter import Exporter
from finvault.backup.locks import LocationLocks
from finvault.backup.models import BackupRecord, ValidationResult
from finvault.backup.storage.base import StorageLocation
from finvault.backup.validator import BackupValidator
from finvault.utils.mixins import LoggerMixin


class RestoreEngine(LoggerMixin):
    """Validates a snapshot and hands it to the exporter.

    The location lock is held only while the bytes are read, so retention
    cannot remove the record mid-read but a long restore does not block new
    backups. The exporter applies the payload all-or-nothing.
    """

    def __init__(
        self,
        exporter: Exporter,
        *,
        validator: BackupValidator | None = None,
        locks: LocationLocks | None = None,
    ):
        self.exporter = exporter
        self.validator = validator or BackupValidator()
        self.locks = locks or LocationLocks()

    async def restore(
        self, location: StorageLocation, record: BackupRecord | str
    ) -> ValidationResult:
        name = record.name if isinstance(record, BackupRecord) else record
        async with self.locks.hold(location):
            payload = await location.read(name)
        self.logger.debug("Backup read for restore", record=name, size=len(payload))
        return await self.restore_payload(payload, source=name)

    async def restore_payload(
        self, payload: bytes, *, source: str = "payload"
    ) -> ValidationResult:
        result = await self.validator.validate_async(payload)
        if not result.is_valid:
            raise ValidationFailedError(f"{source} is not a valid backup: {result.error}")

        try:
            await self.exporter.deserialize(payload)
        except BackupError:
            raise
        except Exception as e:
            raise ValidationFailedError(f"{source} could not be applied: {e}") from e
        self.logger.info(
            "Backup restored",
            source=source,
            records=result.entity_counts.total,
            consistency_issues=result.has_consistency_issues,
        )
        return result


__all__ = ["RestoreEngine"]
