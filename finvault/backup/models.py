"""Data models for backup functionality."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any
from urllib.parse import quote

from pydantic import BaseModel, Field, SecretStr, field_validator

from finvault.config import get_settings


class BackupOrigin(str, Enum):
    """Who created a snapshot; the value is the tag used in file names."""

    AUTO = "autobackup"
    MANUAL = "backup"

    @property
    def tag(self) -> str:
        return self.value


class LocationKind(str, Enum):
    DEFAULT = "default"
    LOCAL_PATH = "local_path"
    OPAQUE_HANDLE = "opaque_handle"
    REMOTE = "remote"


class TimestampSource(str, Enum):
    """Where a record's ``created_at`` came from."""

    NAME = "name"
    MODIFIED = "modified"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class RecordRef:
    """A file as reported by a storage backend."""

    name: str
    size_bytes: int
    modified_at: datetime | None = None


@dataclass(frozen=True)
class BackupRecord:
    """A snapshot stored at a location. Immutable once written."""

    name: str
    origin: BackupOrigin
    created_at: datetime
    size_bytes: int
    location_key: str
    timestamp_source: TimestampSource = TimestampSource.NAME
    checksum: str | None = None

    @property
    def id(self) -> str:
        return self.name

    @property
    def display_name(self) -> str:
        label = "Auto" if self.origin is BackupOrigin.AUTO else "Manual"
        return f"{label} backup {self.created_at:%Y-%m-%d %H:%M:%S}"

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "id": self.id,
            "name": self.name,
            "display_name": self.display_name,
            "origin": self.origin.value,
            "created_at": self.created_at.isoformat(),
            "size_bytes": self.size_bytes,
            "location": self.location_key,
            "timestamp_source": self.timestamp_source.value,
            "checksum": self.checksum,
        }


@dataclass
class RetentionConfig:
    """Configuration for snapshot retention."""

    max_kept_snapshots: int = 10
    interval_days: int = 3

    def __post_init__(self):
        """Validate configuration after initialization."""
        if self.max_kept_snapshots < 1:
            raise ValueError("max_kept_snapshots must be at least 1")
        if self.interval_days < 1:
            raise ValueError("interval_days must be at least 1")


@dataclass(frozen=True)
class RetentionSummary:
    removed: list[str] = field(default_factory=list)
    kept: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)

    @property
    def pruned_count(self) -> int:
        return len(self.removed)


@dataclass(frozen=True)
class BackupOutcome:
    """Result of a successful ``create_backup`` call."""

    record: BackupRecord
    retention: RetentionSummary | None = None
    retention_error: str | None = None


@dataclass(frozen=True)
class EncryptionState:
    enabled: bool = False
    current_key_version: int = 0
    last_rotated_at: datetime | None = None


@dataclass(frozen=True)
class EntityCounts:
    categories: int = 0
    accounts: int = 0
    transactions: int = 0
    budgets: int = 0

    @property
    def total(self) -> int:
        return self.categories + self.accounts + self.transactions + self.budgets


@dataclass(frozen=True)
class ValidationResult:
    """Outcome of inspecting a snapshot payload without applying it."""

    is_valid: bool
    entity_counts: EntityCounts = field(default_factory=EntityCounts)
    exported_at: str | None = None
    format_version: int | None = None
    has_consistency_issues: bool = False
    issues: tuple[str, ...] = ()
    error: str | None = None

    def summary(self) -> str:
        """Human readable description, as shown after validating a backup."""
        if not self.is_valid:
            return f"Invalid backup: {self.error or 'no data records found'}"

        counts = self.entity_counts
        lines = [
            "Backup is valid:",
            f"- categories: {counts.categories}",
            f"- accounts: {counts.accounts}",
            f"- transactions: {counts.transactions}",
            f"- budgets: {counts.budgets}",
        ]
        if self.exported_at:
            lines.append(f"- exported at: {self.exported_at}")
        if self.format_version is not None:
            lines.append(f"- format version: {self.format_version}")
        if self.has_consistency_issues:
            lines.append(
                "Warning: the data has consistency issues and may need manual repair"
            )
        return "\n".join(lines)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class SyncState(str, Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    UPLOADING = "uploading"
    DOWNLOADING = "downloading"
    COMPLETED = "completed"
    FAILED = "failed"


class SyncConfig(BaseModel):
    """WebDAV account bound to one remote storage location."""

    server_url: str = Field(..., description="WebDAV server base URL")
    username: str = Field(..., description="Basic auth user name")
    password: SecretStr = Field(..., description="Basic auth password")
    remote_folder: str = Field(
        default_factory=lambda: get_settings().default_remote_folder,
        validate_default=True,
        description="Folder for backups",
    )
    auto_sync_enabled: bool = Field(default=False)
    interval_hours: int = Field(
        default_factory=lambda: get_settings().default_sync_interval_hours,
        validate_default=True,
        ge=1,
    )

    @field_validator("server_url")
    @classmethod
    def validate_server_url(cls, v: str) -> str:
        v = v.strip()
        if not v.lower().startswith(("http://", "https://")):
            raise ValueError("server_url must start with http:// or https://")
        return v.rstrip("/")

    @field_validator("remote_folder")
    @classmethod
    def validate_remote_folder(cls, v: str) -> str:
        folder = v.strip().strip("/")
        if not folder:
            raise ValueError("remote_folder must not be empty")
        if any(part in ("", ".", "..") for part in folder.split("/")):
            raise ValueError("remote_folder contains an invalid segment")
        return folder

    @property
    def folder_url(self) -> str:
        """Collection URL of the backup folder, always with a trailing slash"""
        segments = "/".join(quote(part) for part in self.remote_folder.split("/"))
        return f"{self.server_url}/{segments}/"
