"""
定期実行ジョブ

エンジンは :class:`Scheduler` プロトコルに対してジョブを登録するだけで、
実際にプロセスを起こすのはホスト側の責務。 :class:`AsyncioScheduler` は
プロセス内で動く実装で、各コールバックの完了を待ってから次の待機に入るため
同じジョブが重複して実行されることはない。
"""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any, Protocol

from finvault.utils.mixins import LoggerMixin

AUTO_BACKUP_JOB = "auto-backup"
REMINDER_JOB = "backup-reminder"
REMOTE_SYNC_JOB = "webdav-sync"

JobCallback = Callable[[], Awaitable[Any]]


class Scheduler(Protocol):
    def configure(self, job: str, interval: timedelta, callback: JobCallback) -> None:
        """Register or replace a periodic job."""
        ...

    def cancel(self, job: str) -> None: ...

    def is_scheduled(self, job: str) -> bool: ...


@dataclass
class ScheduledJob:
    """スケジュール済みジョブ"""

    name: str
    interval: timedelta
    callback: JobCallback
    task: asyncio.Task[None] | None = None
    last_run: datetime | None = None
    run_count: int = 0
    failures: int = 0


class AsyncioScheduler(LoggerMixin):
    """In-process scheduler running one asyncio task per job."""

    def __init__(self) -> None:
        self._jobs: dict[str, ScheduledJob] = {}

    @property
    def jobs(self) -> dict[str, ScheduledJob]:
        return dict(self._jobs)

    def configure(self, job: str, interval: timedelta, callback: JobCallback) -> None:
        """ジョブを登録 (既存の同名ジョブは置き換え)。実行中のイベントループが必要"""
        if interval <= timedelta(0):
            raise ValueError("interval must be positive")

        self.cancel(job)
        scheduled = ScheduledJob(name=job, interval=interval, callback=callback)
        scheduled.task = asyncio.get_running_loop().create_task(
            self._run_job(scheduled), name=f"scheduler:{job}"
        )
        self._jobs[job] = scheduled
        self.logger.info(
            "Job scheduled", job=job, interval_seconds=interval.total_seconds()
        )

    def cancel(self, job: str) -> None:
        scheduled = self._jobs.pop(job, None)
        if scheduled is None:
            return
        if scheduled.task is not None:
            scheduled.task.cancel()
        self.logger.info("Job cancelled", job=job)

    def is_scheduled(self, job: str) -> bool:
        return job in self._jobs

    def interval_of(self, job: str) -> timedelta | None:
        scheduled = self._jobs.get(job)
        return scheduled.interval if scheduled else None

    async def shutdown(self) -> None:
        """Cancel every job and wait for the loops to finish."""
        tasks = [job.task for job in self._jobs.values() if job.task is not None]
        self._jobs.clear()
        for task in tasks:
            task.cancel()
        for task in tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task

    async def _run_job(self, job: ScheduledJob) -> None:
        while True:
            await asyncio.sleep(job.interval.total_seconds())
            try:
                await job.callback()
            except Exception as e:
                job.failures += 1
                self.logger.error("Scheduled job failed", job=job.name, error=str(e))
            job.last_run = datetime.now(UTC)
            job.run_count += 1


class AutoBackupTrigger:
    """Exposes ``configure(interval_days)`` / ``cancel()`` for the auto backup job."""

    def __init__(
        self,
        scheduler: Scheduler,
        callback: JobCallback,
        job: str = AUTO_BACKUP_JOB,
    ):
        self.scheduler = scheduler
        self.callback = callback
        self.job = job

    def configure(self, interval_days: int) -> None:
        if interval_days < 1:
            raise ValueError("interval_days must be at least 1")
        self.scheduler.configure(self.job, timedelta(days=interval_days), self.callback)

    def cancel(self) -> None:
        self.scheduler.cancel(self.job)

    @property
    def is_active(self) -> bool:
        return self.scheduler.is_scheduled(self.job)


__all__ = [
    "AUTO_BACKUP_JOB",
    "AsyncioScheduler",
    "AutoBackupTrigger",
    "JobCallback",
    "REMINDER_JOB",
    "REMOTE_SYNC_JOB",
    "ScheduledJob",
    "Scheduler",
]
