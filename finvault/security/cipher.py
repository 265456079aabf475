"""
マスターキーによる暗号化

ストアのパスフレーズや WebDAV パスワードなど、ディスクに保存する秘密情報を
Fernet で暗号化する。マスターキーは初回利用時に生成し、 0600 で保存する。
"""

from __future__ import annotations

import os
from pathlib import Path

from cryptography.fernet import Fernet, InvalidToken

from finvault.backup.errors import EncryptionError
from finvault.utils.mixins import LoggerMixin


class MasterKeyCipher(LoggerMixin):
    """Fernet cipher keyed by a local master key file."""

    def __init__(self, key_path: Path):
        self.key_path = Path(key_path)
        self._key: bytes | None = None

    def _get_key(self) -> bytes:
        """マスターキーを取得 (存在しない場合は生成)"""
        if self._key is not None:
            return self._key

        if self.key_path.exists():
            try:
                self._key = self.key_path.read_bytes().strip()
            except OSError as e:
                raise EncryptionError(f"Cannot read master key: {e}") from e
        else:
            self._key = Fernet.generate_key()
            try:
                self.key_path.parent.mkdir(parents=True, exist_ok=True)
                with open(self.key_path, "wb") as f:
                    f.write(self._key)
                if hasattr(os, "chmod"):
                    self.key_path.chmod(0o600)
            except OSError as e:
                self._key = None
                raise EncryptionError(f"Cannot write master key: {e}") from e
            self.logger.info("新しいマスターキーを生成しました", key_file=str(self.key_path))

        return self._key

    def _fernet(self) -> Fernet:
        try:
            return Fernet(self._get_key())
        except ValueError as e:
            raise EncryptionError(f"Master key file is malformed: {e}") from e

    def encrypt(self, plaintext: str) -> str:
        return self._fernet().encrypt(plaintext.encode("utf-8")).decode("ascii")

    def decrypt(self, token: str) -> str:
        try:
            return self._fernet().decrypt(token.encode("ascii")).decode("utf-8")
        except (InvalidToken, UnicodeError) as e:
            raise EncryptionError("Stored secret cannot be decrypted") from e


__all__ = ["MasterKeyCipher"]
