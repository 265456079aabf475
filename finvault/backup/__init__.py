"""Backup, retention and restore of ledger snapshots."""

from finvault.backup.errors import BackupError, ErrorKind
from finvault.backup.models import (
    BackupOrigin,
    BackupOutcome,
    BackupRecord,
    LocationKind,
    RetentionConfig,
    RetentionSummary,
    SyncConfig,
    SyncState,
    ValidationResult,
)
from finvault.backup.results import Failure, OperationResult, Success

__all__ = [
    "BackupError",
    "BackupOrigin",
    "BackupOutcome",
    "BackupRecord",
    "ErrorKind",
    "Failure",
    "LocationKind",
    "OperationResult",
    "RetentionConfig",
    "RetentionSummary",
    "Success",
    "SyncConfig",
    "SyncState",
    "ValidationResult",
]
