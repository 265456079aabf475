"""Tests for the ledger models and JSON store"""

import json
from decimal import Decimal

import pytest

from conftest import SAMPLE_LEDGER, sample_payload
from finvault.backup.errors import EncryptionError, ValidationFailedError
from finvault.backup.validator import BackupValidator
from finvault.ledger import JsonLedgerStore, Ledger, LedgerExporter, LedgerSnapshot


@pytest.fixture(autouse=True)
def _fast_kdf(monkeypatch):
    monkeypatch.setattr(JsonLedgerStore, "KDF_ITERATIONS", 1_000)


def _ledger() -> Ledger:
    return Ledger.model_validate(SAMPLE_LEDGER)


def test_models_accept_camel_case_and_dump_it():
    ledger = _ledger()

    assert ledger.transactions[0].account_id == 10
    assert ledger.accounts[0].balance == Decimal("120.50")
    dumped = json.loads(ledger.model_dump_json(by_alias=True))
    assert dumped["transactions"][0]["accountId"] == 10
    assert dumped["budgets"][0]["categoryIds"] == [1]


def test_budget_end_before_start_is_rejected():
    with pytest.raises(ValueError):
        Ledger.model_validate(
            {
                "budgets": [
                    {
                        "id": 1,
                        "name": "x",
                        "amount": "1",
                        "startDate": "2025-02-01",
                        "endDate": "2025-01-01",
                    }
                ]
            }
        )


def test_snapshot_envelope_is_valid_backup():
    snapshot = LedgerSnapshot.from_ledger(_ledger())
    payload = snapshot.to_payload()

    document = json.loads(payload)
    assert document["formatVersion"] == 1
    assert document["metadata"]["version"] == "1.0"
    result = BackupValidator().validate(payload)
    assert result.is_valid
    assert not result.has_consistency_issues


def test_snapshot_from_invalid_payload():
    with pytest.raises(ValidationFailedError):
        LedgerSnapshot.from_payload(sample_payload(accounts=[{"id": "x"}]))


@pytest.mark.asyncio
async def test_store_round_trip(tmp_path):
    store = JsonLedgerStore(tmp_path / "ledger.json")

    assert (await store.load()).same_data(Ledger())
    await store.save(_ledger())

    assert (await store.load()).same_data(_ledger())


@pytest.mark.asyncio
async def test_encrypted_store_and_reencrypt(tmp_path):
    path = tmp_path / "ledger.json"
    store = JsonLedgerStore(path)
    await store.save(_ledger())

    await store.reencrypt(None, "first-pass")
    assert json.loads(path.read_text())["encrypted"] is True
    assert "Wallet" not in path.read_text()
    assert (await store.load()).same_data(_ledger())

    await store.reencrypt("first-pass", "second-pass")
    assert (await JsonLedgerStore(path, "second-pass").load()).same_data(_ledger())
    with pytest.raises(EncryptionError):
        await JsonLedgerStore(path, "first-pass").load()
    with pytest.raises(EncryptionError):
        await JsonLedgerStore(path).load()


@pytest.mark.asyncio
async def test_reencrypt_with_wrong_old_password_keeps_file(tmp_path):
    path = tmp_path / "ledger.json"
    store = JsonLedgerStore(path, "right")
    await store.save(_ledger())
    before = path.read_bytes()

    with pytest.raises(EncryptionError):
        await store.reencrypt("wrong", "new")

    assert path.read_bytes() == before
    assert store.password == "right"


@pytest.mark.asyncio
async def test_exporter_round_trip(tmp_path):
    source = JsonLedgerStore(tmp_path / "a.json")
    await source.save(_ledger())
    target = JsonLedgerStore(tmp_path / "b.json")

    payload = await LedgerExporter(source).serialize()
    await LedgerExporter(target).deserialize(payload)

    assert (await target.load()).same_data(_ledger())


@pytest.mark.asyncio
async def test_exporter_rejects_bad_payload_without_touching_store(tmp_path):
    store = JsonLedgerStore(tmp_path / "ledger.json")
    await store.save(_ledger())
    before = (tmp_path / "ledger.json").read_bytes()

    with pytest.raises(ValidationFailedError):
        await LedgerExporter(store).deserialize(
            sample_payload(transactions=[{"id": 1, "amount": "abc"}])
        )

    assert (tmp_path / "ledger.json").read_bytes() == before
