"""Backup file naming convention.

Names look like ``<context>_<timestamp>_<tag>.<ext>``::

    finvault_20250101_093000123_backup.json      (UTC, millisecond precision)
    finvault_20250101_093000_autobackup.json     (second precision)
    finvault_1735723800123_backup.json           (epoch milliseconds)
    20250101_093000_autobackup.json              (no context)

Only ``backup`` and ``autobackup`` tags are recognized; anything else in a
backup folder is a foreign file and is never listed or pruned.
"""

from __future__ import annotations

import re
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from threading import Lock

from finvault.backup.models import BackupOrigin

_NAME_PATTERN = re.compile(
    r"^(?:(?P<context>[A-Za-z][A-Za-z0-9-]*(?:_[A-Za-z][A-Za-z0-9-]*)*)_)?"
    r"(?P<stamp>\d{8}_\d{6}(?:\d{3})?|\d{13})"
    r"_(?P<tag>autobackup|backup)"
    r"\.(?P<ext>[A-Za-z0-9]+)$"
)
_CONTEXT_PATTERN = re.compile(r"^[A-Za-z][A-Za-z0-9-]*$")

_STAMP_FORMAT = "%Y%m%d_%H%M%S"


@dataclass(frozen=True)
class ParsedName:
    context: str | None
    origin: BackupOrigin
    extension: str
    created_at: datetime | None


def _parse_stamp(stamp: str) -> datetime | None:
    try:
        if "_" not in stamp:
            return datetime.fromtimestamp(int(stamp) / 1000, tz=UTC)
        base, millis = stamp[:15], stamp[15:]
        parsed = datetime.strptime(base, _STAMP_FORMAT).replace(tzinfo=UTC)
        if millis:
            parsed += timedelta(milliseconds=int(millis))
        return parsed
    except (ValueError, OverflowError, OSError):
        # 名前の形式は正しいが日付として不正 (例: 13 月)
        return None


def parse_backup_name(name: str) -> ParsedName | None:
    """Parse a file name; ``None`` when it is not a backup file."""
    match = _NAME_PATTERN.match(name)
    if match is None:
        return None
    return ParsedName(
        context=match.group("context"),
        origin=BackupOrigin(match.group("tag")),
        extension=match.group("ext"),
        created_at=_parse_stamp(match.group("stamp")),
    )


def is_backup_name(name: str) -> bool:
    return _NAME_PATTERN.match(name) is not None


def format_backup_name(
    context: str, created_at: datetime, origin: BackupOrigin, extension: str = "json"
) -> str:
    if not _CONTEXT_PATTERN.match(context):
        raise ValueError(f"Invalid backup name context: {context!r}")
    moment = created_at.astimezone(UTC)
    stamp = moment.strftime(_STAMP_FORMAT) + f"{moment.microsecond // 1000:03d}"
    return f"{context}_{stamp}_{origin.tag}.{extension}"


class BackupNamer:
    """Issues strictly increasing backup names.

    Two backups requested within the same millisecond still get distinct,
    correctly ordered names because the issued timestamp is bumped past the
    previous one.
    """

    def __init__(
        self,
        context: str = "finvault",
        extension: str = "json",
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        format_backup_name(context, datetime.now(UTC), BackupOrigin.MANUAL)
        self.context = context
        self.extension = extension
        self._clock = clock or (lambda: datetime.now(UTC))
        self._last: datetime | None = None
        self._lock = Lock()

    def next_name(self, origin: BackupOrigin) -> tuple[str, datetime]:
        with self._lock:
            now = self._clock().astimezone(UTC)
            now = now.replace(microsecond=(now.microsecond // 1000) * 1000)
            if self._last is not None and now <= self._last:
                now = self._last + timedelta(milliseconds=1)
            self._last = now
        return format_backup_name(self.context, now, origin, self.extension), now


__all__ = [
    "BackupNamer",
    "ParsedName",
    "format_backup_name",
    "is_backup_name",
    "parse_backup_name",
]
