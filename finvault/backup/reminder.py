"""Reminder to back up when the last backup is too old."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime

from finvault.backup.preferences import BackupPreferences


@dataclass(frozen=True)
class ReminderDecision:
    due: bool
    days_since_last: int | None = None

    @property
    def message(self) -> str:
        if not self.due:
            return "Backups are up to date"
        if self.days_since_last is None:
            return "No backup has been made yet"
        return f"Last backup was {self.days_since_last} days ago"


class BackupReminder:
    """Decides whether the user should be reminded to back up."""

    def check(
        self, preferences: BackupPreferences, now: datetime | None = None
    ) -> ReminderDecision:
        if not preferences.reminder_enabled:
            return ReminderDecision(due=False)

        last = preferences.last_backup_at
        if last is None:
            return ReminderDecision(due=True)

        now = now or datetime.now(UTC)
        if last.tzinfo is None:
            last = last.replace(tzinfo=UTC)
        days = max((now - last).days, 0)
        return ReminderDecision(
            due=days >= preferences.reminder_days, days_since_last=days
        )


__all__ = ["BackupReminder", "ReminderDecision"]
