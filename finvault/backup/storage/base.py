"""Storage location abstraction shared by every backend."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from finvault.backup.errors import StorageIOError
from finvault.backup.models import LocationKind, RecordRef
from finvault.utils.mixins import LoggerMixin

TEMP_PREFIX = "."
TEMP_SUFFIX = ".part"


def check_record_name(name: str) -> str:
    """Reject names that could escape the backup folder."""
    if (
        not name
        or name in (".", "..")
        or "/" in name
        or "\\" in name
        or "\x00" in name
    ):
        raise StorageIOError(f"Invalid record name: {name!r}")
    return name


def is_temporary_name(name: str) -> bool:
    return name.startswith(TEMP_PREFIX) and name.endswith(TEMP_SUFFIX)


class StorageLocation(LoggerMixin, ABC):
    """An addressable destination for backup records.

    Writes are published atomically: a record either appears in :meth:`list`
    fully written or not at all.
    """

    kind: LocationKind

    @property
    @abstractmethod
    def key(self) -> str:
        """Stable identity of the location, used for locking and logging."""

    @property
    def display_name(self) -> str:
        return self.key

    @abstractmethod
    async def ensure_ready(self) -> None:
        """Create the directory/collection if it does not exist yet."""

    @abstractmethod
    async def exists(self) -> bool: ...

    @abstractmethod
    async def write(self, name: str, data: bytes) -> RecordRef: ...

    @abstractmethod
    async def read(self, name: str) -> bytes: ...

    @abstractmethod
    async def list(self) -> list[RecordRef]: ...

    @abstractmethod
    async def delete(self, name: str) -> None: ...

    def _log_context(self) -> dict[str, Any]:
        return {"location": self.key}

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.key!r})"
