"""Error taxonomy for backup, restore and sync operations.

Backend specific failures (``OSError``, HTTP status codes, ``aiohttp``
exceptions, ``cryptography`` tokens) are converted into these types before they
leave a storage backend, so callers only ever see :class:`BackupError`.
"""

from __future__ import annotations

import errno
from enum import Enum


class ErrorKind(str, Enum):
    """Failure categories surfaced to callers."""

    SERIALIZATION_FAILED = "serialization_failed"
    IO_ERROR = "io_error"
    PERMISSION_DENIED = "permission_denied"
    VALIDATION_FAILED = "validation_failed"
    NETWORK_ERROR = "network_error"
    AUTH_ERROR = "auth_error"
    ENCRYPTION_ERROR = "encryption_error"
    NOT_FOUND = "not_found"
    CANCELLED = "cancelled"
    UNKNOWN = "unknown"


USER_MESSAGES: dict[ErrorKind, str] = {
    ErrorKind.SERIALIZATION_FAILED: "Could not export ledger data",
    ErrorKind.IO_ERROR: "Could not read or write the backup location",
    ErrorKind.PERMISSION_DENIED: "No permission to access the backup location",
    ErrorKind.VALIDATION_FAILED: "Backup file is corrupt or not recognized",
    ErrorKind.NETWORK_ERROR: "Network unavailable",
    ErrorKind.AUTH_ERROR: "Remote server rejected the credentials",
    ErrorKind.ENCRYPTION_ERROR: "Encryption key operation failed",
    ErrorKind.NOT_FOUND: "Backup not found",
    ErrorKind.CANCELLED: "Operation cancelled",
    ErrorKind.UNKNOWN: "Unknown error",
}


class BackupError(Exception):
    """Base exception for backup related failures."""

    kind: ErrorKind = ErrorKind.UNKNOWN

    @property
    def user_message(self) -> str:
        return USER_MESSAGES[self.kind]


class SerializationFailedError(BackupError):
    kind = ErrorKind.SERIALIZATION_FAILED


class StorageIOError(BackupError):
    kind = ErrorKind.IO_ERROR


class PermissionDeniedError(BackupError):
    kind = ErrorKind.PERMISSION_DENIED


class ValidationFailedError(BackupError):
    kind = ErrorKind.VALIDATION_FAILED


class RecordNotFoundError(BackupError):
    kind = ErrorKind.NOT_FOUND


class EncryptionError(BackupError):
    kind = ErrorKind.ENCRYPTION_ERROR


class NetworkError(BackupError):
    """Remote unreachable, timed out or answered with an unusable status."""

    kind = ErrorKind.NETWORK_ERROR

    def __init__(self, message: str, *, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class TransientNetworkError(NetworkError):
    """Network failure worth retrying (connection reset, 5xx, timeouts)."""


class AuthError(BackupError):
    kind = ErrorKind.AUTH_ERROR

    def __init__(self, message: str, *, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


def normalize_os_error(exc: OSError, *, operation: str, target: str) -> BackupError:
    """Map a filesystem error onto the backup taxonomy."""
    message = f"{operation} failed for {target}: {exc.strerror or exc}"
    if isinstance(exc, PermissionError) or exc.errno in (errno.EACCES, errno.EPERM):
        return PermissionDeniedError(message)
    if isinstance(exc, FileNotFoundError):
        return RecordNotFoundError(message)
    return StorageIOError(message)


__all__ = [
    "AuthError",
    "BackupError",
    "EncryptionError",
    "ErrorKind",
    "NetworkError",
    "PermissionDeniedError",
    "RecordNotFoundError",
    "SerializationFailedError",
    "StorageIOError",
    "TransientNetworkError",
    "USER_MESSAGES",
    "ValidationFailedError",
    "normalize_os_error",
]
