"""Tests for the backup catalog and retention policy"""

from datetime import UTC, datetime, timedelta

import pytest

from finvault.backup.catalog import BackupCatalog, filter_by_origin
from finvault.backup.errors import RecordNotFoundError
from finvault.backup.models import BackupOrigin, RetentionConfig, TimestampSource
from finvault.backup.retention import RetentionPolicy


def _name(day: int, origin: str = "backup", second: int = 0) -> str:
    return f"finvault_202501{day:02d}_1200{second:02d}_{origin}.json"


class TestBackupCatalog:
    @pytest.mark.asyncio
    async def test_lists_newest_first_and_ignores_foreign(self, memory_storage):
        memory_storage.add(_name(1))
        memory_storage.add(_name(3, "autobackup"))
        memory_storage.add(_name(2))
        memory_storage.add("readme.txt")
        memory_storage.add("finvault_20250104_120000_export.json")

        records = await BackupCatalog().list(memory_storage)

        assert [r.name for r in records] == [
            _name(3, "autobackup"),
            _name(2),
            _name(1),
        ]
        assert records[0].origin is BackupOrigin.AUTO
        assert all(r.location_key == "memory:test" for r in records)

    @pytest.mark.asyncio
    async def test_equal_timestamps_are_ordered_by_name(self, memory_storage):
        memory_storage.add("finvault_20250101_120000_backup.json")
        memory_storage.add("finvault_20250101_120000_autobackup.json")

        records = await BackupCatalog().list(memory_storage)

        assert [r.name for r in records] == [
            "finvault_20250101_120000_backup.json",
            "finvault_20250101_120000_autobackup.json",
        ]

    @pytest.mark.asyncio
    async def test_invalid_stamp_falls_back_to_modified_time(self, memory_storage):
        modified = datetime(2025, 1, 10, tzinfo=UTC)
        memory_storage.add("finvault_20251399_120000_backup.json", modified_at=modified)
        memory_storage.add(_name(5))

        records = await BackupCatalog().list(memory_storage)

        assert records[0].name == "finvault_20251399_120000_backup.json"
        assert records[0].created_at == modified
        assert records[0].timestamp_source is TimestampSource.MODIFIED

    @pytest.mark.asyncio
    async def test_filter_by_origin_and_latest(self, memory_storage):
        memory_storage.add(_name(1, "autobackup"))
        memory_storage.add(_name(2))
        catalog = BackupCatalog()

        autos = await catalog.list(memory_storage, BackupOrigin.AUTO)
        everything = await catalog.list(memory_storage)

        assert [r.name for r in autos] == [_name(1, "autobackup")]
        assert filter_by_origin(everything, BackupOrigin.MANUAL)[0].name == _name(2)
        assert (await catalog.latest(memory_storage)).name == _name(2)
        assert (await catalog.latest(memory_storage, BackupOrigin.AUTO)).name == _name(
            1, "autobackup"
        )

    @pytest.mark.asyncio
    async def test_find_and_foreign_files(self, memory_storage):
        memory_storage.add(_name(1))
        memory_storage.add("notes.txt")
        catalog = BackupCatalog()

        assert (await catalog.find(memory_storage, _name(1))).name == _name(1)
        with pytest.raises(RecordNotFoundError):
            await catalog.find(memory_storage, _name(9))
        assert [ref.name for ref in await catalog.list_foreign(memory_storage)] == [
            "notes.txt"
        ]

    @pytest.mark.asyncio
    async def test_empty_location(self, memory_storage):
        assert await BackupCatalog().list(memory_storage) == []
        assert await BackupCatalog().latest(memory_storage) is None


class TestRetentionPolicy:
    @pytest.mark.asyncio
    async def test_keeps_newest_three_of_five(self, memory_storage):
        for day in range(1, 6):
            memory_storage.add(_name(day))

        summary = await RetentionPolicy().prune(
            memory_storage, RetentionConfig(max_kept_snapshots=3)
        )

        remaining = await BackupCatalog().list(memory_storage)
        assert [r.name for r in remaining] == [_name(5), _name(4), _name(3)]
        assert sorted(summary.removed) == [_name(1), _name(2)]
        assert summary.pruned_count == 2

    @pytest.mark.asyncio
    async def test_prune_is_idempotent(self, memory_storage):
        for day in range(1, 6):
            memory_storage.add(_name(day))
        policy = RetentionPolicy()
        config = RetentionConfig(max_kept_snapshots=2)

        first = await policy.prune(memory_storage, config)
        second = await policy.prune(memory_storage, config)

        assert first.pruned_count == 3
        assert second.pruned_count == 0
        assert memory_storage.deleted == [_name(3), _name(2), _name(1)]

    @pytest.mark.asyncio
    async def test_both_tags_share_one_cap(self, memory_storage):
        memory_storage.add(_name(1, "autobackup"))
        memory_storage.add(_name(2))
        memory_storage.add(_name(3, "autobackup"))

        await RetentionPolicy().prune(memory_storage, RetentionConfig(max_kept_snapshots=2))

        assert sorted(memory_storage.files) == sorted([_name(2), _name(3, "autobackup")])

    @pytest.mark.asyncio
    async def test_foreign_files_are_never_pruned(self, memory_storage):
        memory_storage.add("keep-me.json")
        for day in range(1, 4):
            memory_storage.add(_name(day))

        await RetentionPolicy().prune(memory_storage, RetentionConfig(max_kept_snapshots=1))

        assert sorted(memory_storage.files) == sorted([_name(3), "keep-me.json"])

    @pytest.mark.asyncio
    async def test_delete_failures_are_reported_not_raised(self, memory_storage):
        for day in range(1, 5):
            memory_storage.add(_name(day))
        memory_storage.fail_delete.add(_name(1))

        summary = await RetentionPolicy().prune(
            memory_storage, RetentionConfig(max_kept_snapshots=2)
        )

        assert summary.removed == [_name(2)]
        assert summary.failed == [_name(1)]

    @pytest.mark.asyncio
    async def test_records_without_any_timestamp_are_kept(self, memory_storage):
        memory_storage.add("finvault_20251399_120000_backup.json", modified_at=None)
        for day in range(1, 4):
            memory_storage.add(_name(day))

        await RetentionPolicy().prune(memory_storage, RetentionConfig(max_kept_snapshots=1))

        assert sorted(memory_storage.files) == sorted(
            ["finvault_20251399_120000_backup.json", _name(3)]
        )

    def test_plan_never_removes_newest(self):
        from finvault.backup.models import BackupRecord

        now = datetime(2025, 1, 1, tzinfo=UTC)
        records = [
            BackupRecord(
                name=f"finvault_{(now + timedelta(days=i)):%Y%m%d}_000000_backup.json",
                origin=BackupOrigin.MANUAL,
                created_at=now + timedelta(days=i),
                size_bytes=1,
                location_key="memory:test",
            )
            for i in range(4)
        ]

        keep, remove = RetentionPolicy.plan(records, RetentionConfig(max_kept_snapshots=1))

        assert keep == [records[3]]
        assert records[3] not in remove
        assert len(remove) == 3

    def test_retention_config_validates_cap(self):
        with pytest.raises(ValueError):
            RetentionConfig(max_kept_snapshots=0)
