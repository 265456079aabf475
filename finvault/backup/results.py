"""Tagged operation results shared by every engine operation."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from finvault.backup.errors import USER_MESSAGES, BackupError, ErrorKind


@dataclass(frozen=True)
class Success:
    message: str
    data: Any = None

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class Failure:
    kind: ErrorKind
    message: str
    detail: str | None = None

    @property
    def ok(self) -> bool:
        return False

    @classmethod
    def from_error(cls, error: BackupError) -> Failure:
        return cls(kind=error.kind, message=error.user_message, detail=str(error))

    @classmethod
    def of(cls, kind: ErrorKind, detail: str | None = None) -> Failure:
        return cls(kind=kind, message=USER_MESSAGES[kind], detail=detail)


OperationResult = Success | Failure

__all__ = ["Failure", "OperationResult", "Success"]
