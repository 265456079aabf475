"""Bounded dispatch of engine operations and completion events."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime

from finvault.backup.errors import ErrorKind
from finvault.backup.results import Failure, OperationResult
from finvault.utils.mixins import LoggerMixin


@dataclass(frozen=True)
class OperationEvent:
    """Published once per finished operation."""

    operation: str
    result: OperationResult
    finished_at: datetime = field(default_factory=lambda: datetime.now(UTC))


class EventChannel:
    """Fan-out of operation events to subscriber queues.

    A slow subscriber whose queue is full loses its oldest event.
    """

    def __init__(self, maxsize: int = 100):
        self.maxsize = maxsize
        self._subscribers: list[asyncio.Queue[OperationEvent]] = []

    def subscribe(self) -> asyncio.Queue[OperationEvent]:
        queue: asyncio.Queue[OperationEvent] = asyncio.Queue(self.maxsize)
        self._subscribers.append(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue[OperationEvent]) -> None:
        if queue in self._subscribers:
            self._subscribers.remove(queue)

    def publish(self, event: OperationEvent) -> None:
        for queue in self._subscribers:
            if queue.full():
                queue.get_nowait()
            queue.put_nowait(event)


class WorkerPool(LoggerMixin):
    """Runs operations as tasks, at most ``size`` at a time."""

    def __init__(self, size: int, events: EventChannel | None = None):
        if size < 1:
            raise ValueError("size must be at least 1")
        self.size = size
        self.events = events or EventChannel()
        self._semaphore = asyncio.Semaphore(size)
        self._tasks: set[asyncio.Task[OperationResult]] = set()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def submit(
        self, operation: str, factory: Callable[[], Awaitable[OperationResult]]
    ) -> asyncio.Task[OperationResult]:
        """Schedule ``factory()``; the returned task can be awaited or cancelled."""
        task = asyncio.get_running_loop().create_task(
            self._run(operation, factory), name=f"finvault:{operation}"
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _run(
        self, operation: str, factory: Callable[[], Awaitable[OperationResult]]
    ) -> OperationResult:
        try:
            async with self._semaphore:
                result = await factory()
        except asyncio.CancelledError:
            self.logger.info("Operation cancelled", operation=operation)
            self.events.publish(
                OperationEvent(operation, Failure.of(ErrorKind.CANCELLED))
            )
            raise

        self.events.publish(OperationEvent(operation, result))
        return result

    async def shutdown(self) -> None:
        """Cancel outstanding operations and wait for them to unwind."""
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)


__all__ = ["EventChannel", "OperationEvent", "WorkerPool"]
