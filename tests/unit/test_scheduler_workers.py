"""Tests for the scheduler, worker pool and event channel"""

import asyncio
import contextlib
from datetime import timedelta

import pytest

from finvault.backup.errors import ErrorKind
from finvault.backup.results import Success
from finvault.backup.scheduler import AUTO_BACKUP_JOB, AsyncioScheduler, AutoBackupTrigger
from finvault.backup.workers import EventChannel, OperationEvent, WorkerPool


class TestAsyncioScheduler:
    @pytest.mark.asyncio
    async def test_runs_job_periodically_without_overlap(self):
        scheduler = AsyncioScheduler()
        running = 0
        overlaps = 0
        calls = 0

        async def job():
            nonlocal running, overlaps, calls
            running += 1
            overlaps = max(overlaps, running)
            calls += 1
            await asyncio.sleep(0.03)
            running -= 1

        scheduler.configure("job", timedelta(milliseconds=5), job)
        await asyncio.sleep(0.15)
        await scheduler.shutdown()

        assert calls >= 2
        assert overlaps == 1

    @pytest.mark.asyncio
    async def test_failing_job_keeps_running(self):
        scheduler = AsyncioScheduler()
        calls = 0

        async def job():
            nonlocal calls
            calls += 1
            raise RuntimeError("boom")

        scheduler.configure("job", timedelta(milliseconds=5), job)
        await asyncio.sleep(0.05)
        failures = scheduler.jobs["job"].failures
        await scheduler.shutdown()

        assert calls >= 2
        assert failures >= 2

    @pytest.mark.asyncio
    async def test_configure_replaces_and_cancel_removes(self):
        scheduler = AsyncioScheduler()

        async def job():
            return None

        scheduler.configure("job", timedelta(days=1), job)
        first_task = scheduler.jobs["job"].task
        scheduler.configure("job", timedelta(days=3), job)
        with contextlib.suppress(asyncio.CancelledError):
            await first_task

        assert first_task.cancelled()
        assert scheduler.interval_of("job") == timedelta(days=3)

        scheduler.cancel("job")
        assert not scheduler.is_scheduled("job")
        scheduler.cancel("job")
        await scheduler.shutdown()

    @pytest.mark.asyncio
    async def test_auto_backup_trigger(self):
        scheduler = AsyncioScheduler()

        async def job():
            return None

        trigger = AutoBackupTrigger(scheduler, job)
        trigger.configure(3)

        assert trigger.is_active
        assert scheduler.interval_of(AUTO_BACKUP_JOB) == timedelta(days=3)
        with pytest.raises(ValueError):
            trigger.configure(0)

        trigger.cancel()
        assert not trigger.is_active
        await scheduler.shutdown()


class TestWorkerPool:
    @pytest.mark.asyncio
    async def test_bounds_concurrency_and_publishes_events(self):
        events = EventChannel()
        queue = events.subscribe()
        pool = WorkerPool(2, events)
        active = 0
        peak = 0

        async def operation():
            nonlocal active, peak
            active += 1
            peak = max(peak, active)
            await asyncio.sleep(0.02)
            active -= 1
            return Success("done")

        results = await asyncio.gather(*(pool.submit("op", operation) for _ in range(5)))

        assert all(result.ok for result in results)
        assert peak == 2
        assert queue.qsize() == 5
        event = queue.get_nowait()
        assert isinstance(event, OperationEvent)
        assert event.operation == "op"

    @pytest.mark.asyncio
    async def test_cancellation_is_published_and_propagated(self):
        events = EventChannel()
        queue = events.subscribe()
        pool = WorkerPool(1, events)
        started = asyncio.Event()

        async def slow():
            started.set()
            await asyncio.sleep(10)
            return Success("never")

        task = pool.submit("restore", slow)
        await started.wait()
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task
        event = await asyncio.wait_for(queue.get(), 1)
        assert event.operation == "restore"
        assert event.result.kind is ErrorKind.CANCELLED
        assert pool.pending == 0

    def test_event_channel_drops_oldest_when_full(self):
        channel = EventChannel(maxsize=2)
        queue = channel.subscribe()

        for name in ("a", "b", "c"):
            channel.publish(OperationEvent(name, Success(name)))

        assert [queue.get_nowait().operation for _ in range(2)] == ["b", "c"]
        channel.unsubscribe(queue)
        channel.publish(OperationEvent("d", Success("d")))
        assert queue.empty()
