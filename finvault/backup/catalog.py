"""Listing and ordering of backup records at a storage location."""

from __future__ import annotations

from collections.abc import Iterable
from datetime import UTC, datetime

import structlog

from finvault.backup.errors import RecordNotFoundError
from finvault.backup.models import BackupOrigin, BackupRecord, RecordRef, TimestampSource
from finvault.backup.naming import parse_backup_name
from finvault.backup.storage.base import StorageLocation

logger = structlog.get_logger(__name__)

_EPOCH = datetime.min.replace(tzinfo=UTC)


def to_record(ref: RecordRef, location_key: str) -> BackupRecord | None:
    """Build a record from a listed file; ``None`` for foreign files."""
    parsed = parse_backup_name(ref.name)
    if parsed is None:
        return None

    if parsed.created_at is not None:
        created_at, source = parsed.created_at, TimestampSource.NAME
    elif ref.modified_at is not None:
        created_at, source = ref.modified_at, TimestampSource.MODIFIED
    else:
        created_at, source = _EPOCH, TimestampSource.UNKNOWN

    return BackupRecord(
        name=ref.name,
        origin=parsed.origin,
        created_at=created_at,
        size_bytes=ref.size_bytes,
        location_key=location_key,
        timestamp_source=source,
    )


def sort_records(records: Iterable[BackupRecord]) -> list[BackupRecord]:
    """Newest first; equal timestamps are ordered by name."""
    return sorted(records, key=lambda r: (r.created_at, r.name), reverse=True)


def filter_by_origin(
    records: Iterable[BackupRecord], origin: BackupOrigin | None
) -> list[BackupRecord]:
    if origin is None:
        return list(records)
    return [record for record in records if record.origin is origin]


class BackupCatalog:
    """Read-only view over the backup files of a location."""

    async def list(
        self, location: StorageLocation, origin: BackupOrigin | None = None
    ) -> list[BackupRecord]:
        refs = await location.list()
        records = [
            record
            for record in (to_record(ref, location.key) for ref in refs)
            if record is not None
        ]
        ordered = sort_records(records)
        logger.debug(
            "Backup catalog listed",
            location=location.key,
            records=len(ordered),
            ignored=len(refs) - len(ordered),
        )
        return filter_by_origin(ordered, origin)

    async def list_foreign(self, location: StorageLocation) -> list[RecordRef]:
        """Files in the backup folder that do not follow the naming convention"""
        refs = await location.list()
        foreign = [ref for ref in refs if parse_backup_name(ref.name) is None]
        return sorted(foreign, key=lambda ref: ref.name)

    async def find(self, location: StorageLocation, name: str) -> BackupRecord:
        for record in await self.list(location):
            if record.name == name:
                return record
        raise RecordNotFoundError(f"No backup named {name!r} at {location.key}")

    async def latest(
        self, location: StorageLocation, origin: BackupOrigin | None = None
    ) -> BackupRecord | None:
        records = await self.list(location, origin)
        return records[0] if records else None


__all__ = ["BackupCatalog", "filter_by_origin", "sort_records", "to_record"]
