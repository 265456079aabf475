"""
JSON ファイルによる家計簿ストア

パスフレーズが設定されている場合、ファイル全体を PBKDF2 + Fernet で暗号化する。
書き込みは常に一時ファイル経由の置き換えで行い、失敗時は元の内容が残る。
"""

from __future__ import annotations

import asyncio
import base64
import json
import os
from pathlib import Path

import aiofiles.os
from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC
from pydantic import ValidationError

from finvault.backup.errors import (
    EncryptionError,
    StorageIOError,
    normalize_os_error,
)
from finvault.ledger.models import Ledger, LedgerSnapshot
from finvault.utils.files import read_bytes, write_atomic
from finvault.utils.mixins import LoggerMixin

KDF_NAME = "pbkdf2-sha256"
SALT_BYTES = 16


def _derive_key(password: str, salt: bytes, iterations: int) -> bytes:
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(), length=32, salt=salt, iterations=iterations
    )
    return base64.urlsafe_b64encode(kdf.derive(password.encode("utf-8")))


class JsonLedgerStore(LoggerMixin):
    """Ledger persisted as one JSON document."""

    KDF_ITERATIONS = 390_000

    def __init__(self, path: Path, password: str | None = None):
        self.path = Path(path)
        self.password = password
        self._lock = asyncio.Lock()

    def _log_context(self) -> dict[str, str]:
        return {"store": self.path.name}

    async def load(self) -> Ledger:
        if not await aiofiles.os.path.exists(self.path):
            return Ledger()
        try:
            raw = await read_bytes(self.path)
        except OSError as e:
            raise normalize_os_error(e, operation="read", target=str(self.path)) from e
        return await self._decode(raw, self.password)

    async def save(self, ledger: Ledger) -> None:
        async with self._lock:
            await self._write(ledger, self.password)

    async def reencrypt(self, old_password: str | None, new_password: str) -> None:
        """Rewrite the store under ``new_password`` (``StoreReencryptor``)."""
        async with self._lock:
            if await aiofiles.os.path.exists(self.path):
                try:
                    raw = await read_bytes(self.path)
                except OSError as e:
                    raise normalize_os_error(
                        e, operation="read", target=str(self.path)
                    ) from e
                ledger = await self._decode(raw, old_password)
                await self._write(ledger, new_password)
            self.password = new_password
        self.logger.info("Ledger store re-encrypted")

    async def _write(self, ledger: Ledger, password: str | None) -> None:
        data = ledger.model_dump_json(by_alias=True).encode("utf-8")
        if password is not None:
            data = await asyncio.to_thread(self._encrypt, data, password)
        try:
            await write_atomic(self.path, data, mode=0o600)
        except OSError as e:
            raise normalize_os_error(e, operation="write", target=str(self.path)) from e

    async def _decode(self, raw: bytes, password: str | None) -> Ledger:
        try:
            document = json.loads(raw)
        except ValueError as e:
            raise StorageIOError(f"Ledger store is corrupt: {e}") from e

        if isinstance(document, dict) and document.get("encrypted"):
            if password is None:
                raise EncryptionError("Ledger store is encrypted but no passphrase is set")
            plain = await asyncio.to_thread(self._decrypt, document, password)
            try:
                document = json.loads(plain)
            except ValueError as e:
                raise StorageIOError(f"Ledger store is corrupt: {e}") from e

        try:
            return Ledger.model_validate(document)
        except ValidationError as e:
            raise StorageIOError(f"Ledger store is corrupt: {e.error_count()} errors") from e

    def _encrypt(self, data: bytes, password: str) -> bytes:
        salt = os.urandom(SALT_BYTES)
        key = _derive_key(password, salt, self.KDF_ITERATIONS)
        envelope = {
            "encrypted": True,
            "kdf": KDF_NAME,
            "iterations": self.KDF_ITERATIONS,
            "salt": base64.b64encode(salt).decode("ascii"),
            "token": Fernet(key).encrypt(data).decode("ascii"),
        }
        return json.dumps(envelope).encode("utf-8")

    @staticmethod
    def _decrypt(envelope: dict, password: str) -> bytes:
        try:
            salt = base64.b64decode(envelope["salt"])
            key = _derive_key(password, salt, int(envelope["iterations"]))
            return Fernet(key).decrypt(envelope["token"].encode("ascii"))
        except (KeyError, TypeError, ValueError, InvalidToken) as e:
            raise EncryptionError("Ledger store cannot be decrypted") from e


class LedgerExporter:
    """Backup exporter over a :class:`JsonLedgerStore`."""

    def __init__(self, store: JsonLedgerStore):
        self.store = store

    async def serialize(self) -> bytes:
        ledger = await self.store.load()
        return LedgerSnapshot.from_ledger(ledger).to_payload()

    async def deserialize(self, payload: bytes) -> None:
        # スキーマ検証を先に行い、失敗時はストアに触れない
        snapshot = LedgerSnapshot.from_payload(payload)
        await self.store.save(snapshot.to_ledger())


__all__ = ["JsonLedgerStore", "LedgerExporter"]
