"""Retention policy for backup records."""

from __future__ import annotations

from finvault.backup.catalog import BackupCatalog, sort_records
from finvault.backup.errors import BackupError, RecordNotFoundError
from finvault.backup.models import (
    BackupRecord,
    RetentionConfig,
    RetentionSummary,
    TimestampSource,
)
from finvault.backup.storage.base import StorageLocation
from finvault.utils.mixins import LoggerMixin


class RetentionPolicy(LoggerMixin):
    """Keeps the newest ``max_kept_snapshots`` records of a location.

    Automatic and manual backups share one cap. Records whose age cannot be
    determined at all (no parsable name stamp and no modification time) are
    never deleted.
    """

    def __init__(self, catalog: BackupCatalog | None = None):
        self.catalog = catalog or BackupCatalog()

    @staticmethod
    def plan(
        records: list[BackupRecord], config: RetentionConfig
    ) -> tuple[list[BackupRecord], list[BackupRecord]]:
        """Split records into (keep, remove) without touching storage."""
        ordered = sort_records(records)
        dated = [r for r in ordered if r.timestamp_source is not TimestampSource.UNKNOWN]
        undated = [r for r in ordered if r.timestamp_source is TimestampSource.UNKNOWN]
        cap = config.max_kept_snapshots
        return dated[:cap] + undated, dated[cap:]

    async def prune(
        self, location: StorageLocation, config: RetentionConfig
    ) -> RetentionSummary:
        records = await self.catalog.list(location)
        keep, remove = self.plan(records, config)

        removed: list[str] = []
        failed: list[str] = []
        for record in remove:
            try:
                await location.delete(record.name)
            except RecordNotFoundError:
                # 別の操作で既に削除済み
                self.logger.debug("Record already gone", record=record.name)
                continue
            except BackupError as e:
                failed.append(record.name)
                self.logger.warning(
                    "Failed to prune backup record", record=record.name, error=str(e)
                )
                continue
            removed.append(record.name)

        if removed or failed:
            self.logger.info(
                "Old backups pruned",
                pruned=len(removed),
                failed=len(failed),
                kept=len(keep),
                max_kept=config.max_kept_snapshots,
            )
        return RetentionSummary(
            removed=removed, kept=[r.name for r in keep], failed=failed
        )


__all__ = ["RetentionPolicy"]
