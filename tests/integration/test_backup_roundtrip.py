"""
End-to-end backup scenarios over the JSON ledger store

Real files on disk, the real exporter and, for sync, the local WebDAV server.
"""

import pytest

from conftest import SAMPLE_LEDGER
from finvault.backup.engine import build_engine
from finvault.backup.errors import ErrorKind
from finvault.ledger.models import Ledger
from finvault.ledger.store import JsonLedgerStore

pytestmark = pytest.mark.integration


@pytest.fixture(autouse=True)
def _fast_kdf(monkeypatch):
    monkeypatch.setattr(JsonLedgerStore, "KDF_ITERATIONS", 1000)


@pytest.fixture
async def ledger_engine(settings):
    store = JsonLedgerStore(settings.ledger_path)
    await store.save(Ledger.model_validate(SAMPLE_LEDGER))
    engine = await build_engine(settings)
    yield engine
    await engine.close()


async def current_ledger(engine) -> Ledger:
    return await engine.exporter.store.load()


@pytest.mark.asyncio
async def test_backup_then_restore_reproduces_ledger(ledger_engine):
    original = await current_ledger(ledger_engine)
    created = await ledger_engine.create_backup()
    assert created.ok

    await ledger_engine.exporter.store.save(Ledger())
    assert not (await current_ledger(ledger_engine)).same_data(original)

    restored = await ledger_engine.restore_backup(created.data.record)

    assert restored.ok, restored
    assert (await current_ledger(ledger_engine)).same_data(original)


@pytest.mark.asyncio
async def test_invalid_snapshot_leaves_store_untouched(ledger_engine, settings):
    original = await current_ledger(ledger_engine)
    name = "finvault_20250101_000000000_backup.json"
    settings.default_backup_dir.mkdir(parents=True, exist_ok=True)
    # 構造は正しいがスキーマに合わない
    (settings.default_backup_dir / name).write_text(
        '{"formatVersion": 1, "accounts": [{"id": "not-a-number"}]}'
    )

    result = await ledger_engine.restore_backup(name)

    assert result.kind is ErrorKind.VALIDATION_FAILED
    assert (await current_ledger(ledger_engine)).same_data(original)


@pytest.mark.asyncio
async def test_key_rotation_keeps_backups_restorable(ledger_engine, settings):
    original = await current_ledger(ledger_engine)

    assert (await ledger_engine.enable_encryption()).ok
    assert "Wallet" not in settings.ledger_path.read_text()
    backup = (await ledger_engine.create_backup()).data.record

    rotated = await ledger_engine.rotate_encryption_key()
    assert rotated.ok
    assert rotated.data.current_key_version == 2

    await ledger_engine.exporter.store.save(Ledger())
    assert (await ledger_engine.restore_backup(backup)).ok
    assert (await current_ledger(ledger_engine)).same_data(original)

    reopened = await build_engine(settings)
    try:
        assert (await current_ledger(reopened)).same_data(original)
        state = await reopened.encryption_state()
        assert state.data.enabled
    finally:
        await reopened.close()


@pytest.mark.asyncio
async def test_remote_sync_and_restore(ledger_engine, sync_config, webdav_server):
    original = await current_ledger(ledger_engine)
    assert (await ledger_engine.save_sync_config(sync_config)).ok

    synced = await ledger_engine.sync_now()
    assert synced.ok
    assert len(webdav_server.names_in("finvault")) == 1

    await ledger_engine.exporter.store.save(Ledger())
    restored = await ledger_engine.restore_latest_remote()

    assert restored.ok
    assert restored.data.entity_counts.transactions == 2
    assert (await current_ledger(ledger_engine)).same_data(original)
