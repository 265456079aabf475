"""Storage behind an opaque directory handle.

Hosts that hand out directory grants instead of plain paths (document
pickers, sandboxed folders) implement :class:`DirectoryHandle`. A handle whose
grant was revoked reports ``is_granted() == False`` or raises
``PermissionError``; both surface as ``PermissionDeniedError``.
"""

from __future__ import annotations

import contextlib
import stat
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Protocol
from urllib.parse import unquote, urlsplit

import aiofiles
import aiofiles.os

from finvault.backup.errors import (
    PermissionDeniedError,
    RecordNotFoundError,
    StorageIOError,
    normalize_os_error,
)
from finvault.backup.models import LocationKind, RecordRef
from finvault.backup.storage.base import (
    TEMP_PREFIX,
    TEMP_SUFFIX,
    StorageLocation,
    check_record_name,
    is_temporary_name,
)


@dataclass(frozen=True)
class HandleEntry:
    name: str
    size_bytes: int
    modified_at: datetime | None = None
    is_file: bool = True


class DirectoryHandle(ABC):
    """Capability set a platform directory handle has to provide."""

    reference: str
    supports_rename: bool = False

    @abstractmethod
    def is_granted(self) -> bool: ...

    @abstractmethod
    async def exists(self) -> bool: ...

    async def ensure_directory(self) -> None:
        if not await self.exists():
            raise FileNotFoundError(f"Directory handle {self.reference} is gone")

    @abstractmethod
    async def list_children(self) -> list[HandleEntry]: ...

    @abstractmethod
    async def create_file(self, name: str, data: bytes) -> HandleEntry: ...

    @abstractmethod
    async def read_file(self, name: str) -> bytes: ...

    @abstractmethod
    async def delete_child(self, name: str) -> bool:
        """Delete a child; ``False`` when it did not exist."""

    async def rename_child(self, old: str, new: str) -> None:
        raise NotImplementedError(f"{type(self).__name__} cannot rename children")


class FileSystemDirectoryHandle(DirectoryHandle):
    """Handle backed by a real directory; the grant can be revoked."""

    supports_rename = True

    def __init__(self, reference: str, root: Path, granted: bool = True):
        self.reference = reference
        self.root = Path(root)
        self._granted = granted

    def revoke(self) -> None:
        self._granted = False

    def grant(self) -> None:
        self._granted = True

    def is_granted(self) -> bool:
        return self._granted

    def _check(self) -> None:
        if not self._granted:
            raise PermissionError(f"Grant for {self.reference} was revoked")

    async def exists(self) -> bool:
        self._check()
        return await aiofiles.os.path.isdir(self.root)

    async def ensure_directory(self) -> None:
        self._check()
        await aiofiles.os.makedirs(self.root, exist_ok=True)

    async def list_children(self) -> list[HandleEntry]:
        self._check()
        entries = []
        for name in await aiofiles.os.listdir(self.root):
            try:
                info = await aiofiles.os.stat(self.root / name)
            except FileNotFoundError:
                continue
            entries.append(
                HandleEntry(
                    name=name,
                    size_bytes=info.st_size,
                    modified_at=datetime.fromtimestamp(info.st_mtime, tz=UTC),
                    is_file=stat.S_ISREG(info.st_mode),
                )
            )
        return entries

    async def create_file(self, name: str, data: bytes) -> HandleEntry:
        self._check()
        path = self.root / name
        async with aiofiles.open(path, "xb") as f:
            await f.write(data)
        info = await aiofiles.os.stat(path)
        return HandleEntry(
            name=name,
            size_bytes=info.st_size,
            modified_at=datetime.fromtimestamp(info.st_mtime, tz=UTC),
        )

    async def read_file(self, name: str) -> bytes:
        self._check()
        async with aiofiles.open(self.root / name, "rb") as f:
            return await f.read()

    async def delete_child(self, name: str) -> bool:
        self._check()
        try:
            await aiofiles.os.remove(self.root / name)
        except FileNotFoundError:
            return False
        return True

    async def rename_child(self, old: str, new: str) -> None:
        self._check()
        await aiofiles.os.replace(self.root / old, self.root / new)


class HandleResolver(Protocol):
    def resolve(self, reference: str) -> DirectoryHandle: ...


class PathHandleResolver:
    """Resolves ``file://`` URIs and plain paths; explicit registrations win."""

    def __init__(self) -> None:
        self._registered: dict[str, DirectoryHandle] = {}

    def register(self, handle: DirectoryHandle) -> None:
        self._registered[handle.reference] = handle

    def resolve(self, reference: str) -> DirectoryHandle:
        if reference in self._registered:
            return self._registered[reference]

        parts = urlsplit(reference)
        if parts.scheme == "file":
            root = Path(unquote(parts.path))
        elif parts.scheme in ("", None) or len(parts.scheme) == 1:
            # 単一文字スキームは Windows のドライブレター
            root = Path(reference)
        else:
            raise PermissionDeniedError(
                f"No resolver for directory handle scheme {parts.scheme!r}"
            )
        handle = FileSystemDirectoryHandle(reference, root)
        self._registered[reference] = handle
        return handle


class OpaqueHandleStorage(StorageLocation):
    """Backup folder reached through a :class:`DirectoryHandle`."""

    kind = LocationKind.OPAQUE_HANDLE

    def __init__(self, handle: DirectoryHandle):
        self.handle = handle

    @property
    def key(self) -> str:
        return f"{self.kind.value}:{self.handle.reference}"

    @property
    def display_name(self) -> str:
        return self.handle.reference

    def _require_grant(self) -> None:
        if not self.handle.is_granted():
            raise PermissionDeniedError(
                f"Access to {self.handle.reference} is no longer granted"
            )

    async def ensure_ready(self) -> None:
        self._require_grant()
        try:
            await self.handle.ensure_directory()
        except OSError as e:
            raise normalize_os_error(
                e, operation="prepare directory", target=self.handle.reference
            ) from e

    async def exists(self) -> bool:
        if not self.handle.is_granted():
            return False
        try:
            return await self.handle.exists()
        except PermissionError:
            return False

    async def write(self, name: str, data: bytes) -> RecordRef:
        check_record_name(name)
        self._require_grant()

        if not self.handle.supports_rename:
            entry = await self._create(name, data)
            return self._to_ref(entry)

        temp = f"{TEMP_PREFIX}{name}.{uuid.uuid4().hex}{TEMP_SUFFIX}"
        try:
            entry = await self._create(temp, data)
            await self.handle.rename_child(temp, name)
        except OSError as e:
            await self._discard(temp)
            raise normalize_os_error(e, operation="publish", target=name) from e
        except BaseException:
            await self._discard(temp)
            raise

        self.logger.debug("Backup record written", record=name, size=entry.size_bytes)
        return RecordRef(name=name, size_bytes=entry.size_bytes, modified_at=entry.modified_at)

    async def _create(self, name: str, data: bytes) -> HandleEntry:
        try:
            return await self.handle.create_file(name, data)
        except FileExistsError as e:
            raise StorageIOError(f"Record {name} already exists") from e
        except OSError as e:
            raise normalize_os_error(e, operation="create file", target=name) from e

    async def read(self, name: str) -> bytes:
        check_record_name(name)
        self._require_grant()
        try:
            return await self.handle.read_file(name)
        except OSError as e:
            raise normalize_os_error(e, operation="read", target=name) from e

    async def list(self) -> list[RecordRef]:
        self._require_grant()
        try:
            if not await self.handle.exists():
                return []
            entries = await self.handle.list_children()
        except OSError as e:
            raise normalize_os_error(
                e, operation="list", target=self.handle.reference
            ) from e
        return [
            self._to_ref(entry)
            for entry in entries
            if entry.is_file and not is_temporary_name(entry.name)
        ]

    async def delete(self, name: str) -> None:
        check_record_name(name)
        self._require_grant()
        try:
            deleted = await self.handle.delete_child(name)
        except OSError as e:
            raise normalize_os_error(e, operation="delete", target=name) from e
        if not deleted:
            raise RecordNotFoundError(f"{name} does not exist in {self.handle.reference}")
        self.logger.debug("Backup record deleted", record=name)

    async def _discard(self, temp: str) -> None:
        with contextlib.suppress(OSError):
            await self.handle.delete_child(temp)

    @staticmethod
    def _to_ref(entry: HandleEntry) -> RecordRef:
        return RecordRef(
            name=entry.name, size_bytes=entry.size_bytes, modified_at=entry.modified_at
        )


__all__ = [
    "DirectoryHandle",
    "FileSystemDirectoryHandle",
    "HandleEntry",
    "HandleResolver",
    "OpaqueHandleStorage",
    "PathHandleResolver",
]
