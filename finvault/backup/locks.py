"""Per-location mutual exclusion."""

from __future__ import annotations

import asyncio

from finvault.backup.storage.base import StorageLocation


class LocationLocks:
    """One ``asyncio.Lock`` per storage location key.

    Backup (serialize, write, prune), explicit deletion and the read phase of
    a restore take the lock of the location they touch. Different locations
    never block each other.
    """

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}

    def hold(self, location: StorageLocation) -> asyncio.Lock:
        return self._locks.setdefault(location.key, asyncio.Lock())

    def is_locked(self, location: StorageLocation) -> bool:
        lock = self._locks.get(location.key)
        return lock is not None and lock.locked()


__all__ = ["LocationLocks"]
