"""Filesystem backed storage (default app folder or a user chosen path)."""

from __future__ import annotations

import contextlib
import os
import stat
import uuid
from datetime import UTC, datetime
from pathlib import Path

import aiofiles
import aiofiles.os

from finvault.backup.errors import StorageIOError, normalize_os_error
from finvault.backup.models import LocationKind, RecordRef
from finvault.backup.storage.base import (
    TEMP_PREFIX,
    TEMP_SUFFIX,
    StorageLocation,
    check_record_name,
    is_temporary_name,
)
from finvault.utils.logger import validate_safe_path


class LocalDirectoryStorage(StorageLocation):
    """Backup folder on the local filesystem."""

    def __init__(self, directory: Path, kind: LocationKind = LocationKind.LOCAL_PATH):
        if kind not in (LocationKind.DEFAULT, LocationKind.LOCAL_PATH):
            raise ValueError(f"LocalDirectoryStorage cannot back {kind.value}")
        self.directory = Path(directory).expanduser()
        self.kind = kind

    @property
    def key(self) -> str:
        return f"{self.kind.value}:{self.directory.resolve()}"

    @property
    def display_name(self) -> str:
        return str(self.directory)

    def _path_for(self, name: str) -> Path:
        check_record_name(name)
        try:
            return validate_safe_path(self.directory / name, self.directory)
        except ValueError as e:
            raise StorageIOError(str(e)) from e

    async def ensure_ready(self) -> None:
        try:
            await aiofiles.os.makedirs(self.directory, exist_ok=True)
        except OSError as e:
            raise normalize_os_error(
                e, operation="create directory", target=str(self.directory)
            ) from e

    async def exists(self) -> bool:
        return await aiofiles.os.path.isdir(self.directory)

    async def write(self, name: str, data: bytes) -> RecordRef:
        target = self._path_for(name)
        temp = self.directory / f"{TEMP_PREFIX}{name}.{uuid.uuid4().hex}{TEMP_SUFFIX}"
        try:
            async with aiofiles.open(temp, "wb") as f:
                await f.write(data)
                await f.flush()
            # 一時ファイルを書き切ってから公開する
            await aiofiles.os.replace(temp, target)
            info = await aiofiles.os.stat(target)
        except OSError as e:
            self._discard(temp)
            raise normalize_os_error(e, operation="write", target=str(target)) from e
        except BaseException:
            self._discard(temp)
            raise

        self.logger.debug("Backup record written", record=name, size=info.st_size)
        return RecordRef(
            name=name,
            size_bytes=info.st_size,
            modified_at=datetime.fromtimestamp(info.st_mtime, tz=UTC),
        )

    async def read(self, name: str) -> bytes:
        path = self._path_for(name)
        try:
            async with aiofiles.open(path, "rb") as f:
                return await f.read()
        except OSError as e:
            raise normalize_os_error(e, operation="read", target=str(path)) from e

    async def list(self) -> list[RecordRef]:
        if not await self.exists():
            return []

        try:
            names = await aiofiles.os.listdir(self.directory)
        except OSError as e:
            raise normalize_os_error(
                e, operation="list", target=str(self.directory)
            ) from e

        refs: list[RecordRef] = []
        for name in names:
            if is_temporary_name(name):
                continue
            try:
                info = await aiofiles.os.stat(self.directory / name)
            except FileNotFoundError:
                # 一覧取得後に削除されたファイル
                continue
            except OSError as e:
                raise normalize_os_error(e, operation="stat", target=name) from e
            if not stat.S_ISREG(info.st_mode):
                continue
            refs.append(
                RecordRef(
                    name=name,
                    size_bytes=info.st_size,
                    modified_at=datetime.fromtimestamp(info.st_mtime, tz=UTC),
                )
            )
        return refs

    async def delete(self, name: str) -> None:
        path = self._path_for(name)
        try:
            await aiofiles.os.remove(path)
        except OSError as e:
            raise normalize_os_error(e, operation="delete", target=str(path)) from e
        self.logger.debug("Backup record deleted", record=name)

    def _discard(self, temp: Path) -> None:
        with contextlib.suppress(OSError):
            os.remove(temp)


__all__ = ["LocalDirectoryStorage"]
