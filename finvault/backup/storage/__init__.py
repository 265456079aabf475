"""Storage backends for backup records."""

from finvault.backup.storage.base import StorageLocation
from finvault.backup.storage.factory import StorageLocationFactory
from finvault.backup.storage.handle import (
    DirectoryHandle,
    FileSystemDirectoryHandle,
    HandleResolver,
    OpaqueHandleStorage,
    PathHandleResolver,
)
from finvault.backup.storage.local import LocalDirectoryStorage
from finvault.backup.storage.remote import WebDavStorage

__all__ = [
    "DirectoryHandle",
    "FileSystemDirectoryHandle",
    "HandleResolver",
    "LocalDirectoryStorage",
    "OpaqueHandleStorage",
    "PathHandleResolver",
    "StorageLocation",
    "StorageLocationFactory",
    "WebDavStorage",
]
