"""Lifecycle of the ledger store passphrase.

The passphrase is kept in a JSON key file, itself encrypted with the local
master key. Rotation is two-phase: the new passphrase is persisted first,
then the store is re-encrypted from the old one. When re-encryption fails the
previous key file is written back, so the passphrase that unlocks the store
is never lost. Cancelling the caller does not interrupt a switch that has
already started.
"""

from __future__ import annotations

import asyncio
import json
import secrets
from collections.abc import Coroutine
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Protocol

import aiofiles.os
from pydantic import SecretStr

from finvault.backup.errors import EncryptionError
from finvault.backup.models import EncryptionState
from finvault.security.cipher import MasterKeyCipher
from finvault.utils.files import read_bytes, write_atomic
from finvault.utils.mixins import LoggerMixin

PASSPHRASE_BYTES = 32


class StoreReencryptor(Protocol):
    async def reencrypt(self, old_password: str | None, new_password: str) -> None:
        """Rewrite the store so it opens with ``new_password``.

        ``old_password`` is ``None`` when the store is not encrypted yet.
        """
        ...


def generate_passphrase() -> str:
    """32 random bytes, url-safe base64 encoded."""
    return secrets.token_urlsafe(PASSPHRASE_BYTES)


class EncryptionKeyManager(LoggerMixin):
    """Owns the passphrase; other components only ask for re-encryption."""

    def __init__(
        self,
        key_path: Path,
        cipher: MasterKeyCipher,
        reencryptor: StoreReencryptor | None = None,
    ):
        self.key_path = Path(key_path)
        self.cipher = cipher
        self.reencryptor = reencryptor
        self._lock = asyncio.Lock()

    async def _load(self) -> dict[str, Any] | None:
        if not await aiofiles.os.path.exists(self.key_path):
            return None
        try:
            raw = await read_bytes(self.key_path)
            data = json.loads(raw)
        except (OSError, ValueError) as e:
            raise EncryptionError(f"Key file cannot be read: {e}") from e
        if not isinstance(data, dict) or "password" not in data:
            raise EncryptionError("Key file is missing the passphrase")
        return data

    async def _save(self, data: dict[str, Any]) -> None:
        try:
            await write_atomic(
                self.key_path, json.dumps(data).encode("utf-8"), mode=0o600
            )
        except OSError as e:
            raise EncryptionError(f"Key file cannot be written: {e}") from e

    async def _remove(self) -> None:
        try:
            await aiofiles.os.remove(self.key_path)
        except FileNotFoundError:
            return
        except OSError as e:
            raise EncryptionError(f"Key file cannot be removed: {e}") from e

    async def is_enabled(self) -> bool:
        data = await self._load()
        return bool(data and data.get("enabled"))

    async def current_password(self) -> SecretStr:
        data = await self._load()
        if not data or not data.get("enabled"):
            raise EncryptionError("Store encryption is not enabled")
        return SecretStr(self.cipher.decrypt(data["password"]))

    async def state(self) -> EncryptionState:
        data = await self._load()
        if not data:
            return EncryptionState()
        rotated = data.get("last_rotated_at")
        return EncryptionState(
            enabled=bool(data.get("enabled")),
            current_key_version=int(data.get("current_key_version", 0)),
            last_rotated_at=datetime.fromisoformat(rotated) if rotated else None,
        )

    async def setup(self) -> SecretStr:
        """Enable encryption. Returns the existing passphrase when already enabled."""
        async with self._lock:
            previous = await self._load()
            if previous and previous.get("enabled"):
                return SecretStr(self.cipher.decrypt(previous["password"]))

            password = generate_passphrase()
            await self._run_to_completion(
                self._switch(previous, None, password, version=1)
            )

            self.logger.info("Store encryption enabled", key_version=1)
            return SecretStr(password)

    async def rotate(self) -> SecretStr:
        async with self._lock:
            previous = await self._load()
            if not previous or not previous.get("enabled"):
                raise EncryptionError("Cannot rotate: store encryption is not enabled")

            old_password = self.cipher.decrypt(previous["password"])
            new_password = generate_passphrase()
            version = int(previous.get("current_key_version", 1)) + 1

            await self._run_to_completion(
                self._switch(previous, old_password, new_password, version=version)
            )

            self.logger.info("Store key rotated", key_version=version)
            return SecretStr(new_password)

    async def _switch(
        self,
        previous: dict[str, Any] | None,
        old_password: str | None,
        new_password: str,
        *,
        version: int,
    ) -> None:
        """鍵ファイルを書き換えてからストアを再暗号化する (失敗時は鍵ファイルを戻す)"""
        await self._save(self._record(new_password, version=version))
        try:
            await self._reencrypt(old_password, new_password)
        except Exception:
            await self._restore(previous)
            self.logger.warning("Key switch rolled back", key_version=version - 1)
            raise

    async def _run_to_completion(self, switch: Coroutine[Any, Any, None]) -> None:
        """Run ``switch`` to the end even when the caller is cancelled.

        The key file and the store must never be left on different
        passphrases, so cancellation waits for the switch and is re-raised
        afterwards.
        """
        task = asyncio.ensure_future(switch)
        try:
            await asyncio.shield(task)
        except asyncio.CancelledError:
            await asyncio.wait({task})
            if not task.cancelled() and task.exception() is not None:
                self.logger.warning(
                    "Key switch failed after cancellation", error=str(task.exception())
                )
            raise

    async def reencrypt(self, old_secret: SecretStr | str) -> None:
        """Re-encrypt the store from ``old_secret`` to the current passphrase."""
        old = (
            old_secret.get_secret_value()
            if isinstance(old_secret, SecretStr)
            else old_secret
        )
        current = await self.current_password()
        await self._reencrypt(old, current.get_secret_value())

    async def _reencrypt(self, old_password: str | None, new_password: str) -> None:
        if self.reencryptor is None:
            return
        try:
            await self.reencryptor.reencrypt(old_password, new_password)
        except EncryptionError:
            raise
        except Exception as e:
            raise EncryptionError(f"Re-encryption failed: {e}") from e

    async def _restore(self, previous: dict[str, Any] | None) -> None:
        if previous is None:
            await self._remove()
        else:
            await self._save(previous)

    def _record(self, password: str, *, version: int) -> dict[str, Any]:
        return {
            "enabled": True,
            "current_key_version": version,
            "last_rotated_at": datetime.now(UTC).isoformat(),
            "password": self.cipher.encrypt(password),
        }


__all__ = ["EncryptionKeyManager", "StoreReencryptor", "generate_passphrase"]
