# pyright: reportPrivateUsage=false
from __future__ import annotations

import asyncio
from datetime import datetime, timedelta

import pytest

from name_screening.application.queries import HealthStatus, JobSnapshot
from name_screening.application.queue import JobQueue, ProgressReporter
from name_screening.domain.events import Event, JobCompleted, JobFailed, JobQueued
from name_screening.domain.exceptions import ValidationError
from name_screening.domain.model import JobStatus, JobType
from name_screening.infrastructure.message_bus import FunctionHandler, InMemoryMessageBus
from name_screening.infrastructure.repositories import InMemoryJobRepository

# Fakes


class FakeClock:
    def __init__(self) -> None:
        self.now = datetime(2025, 1, 1, 9, 0, 0)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class RecordingHandler:
    """시작 순서와 동시 실행 수를 기록하는 핸들러"""

    def __init__(self, hold: asyncio.Event | None = None):
        self.started: list[str] = []
        self.active = 0
        self.max_active = 0
        self.hold = hold

    async def handle(self, job: JobSnapshot, progress: ProgressReporter):
        self.started.append(job.payload["name"])
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.hold is not None:
                await self.hold.wait()
            else:
                await asyncio.sleep(0)
            return {"name": job.payload["name"]}
        finally:
            self.active -= 1


class FailingHandler:
    async def handle(self, job: JobSnapshot, progress: ProgressReporter):
        progress.report(30)
        raise RuntimeError(f"cannot process {job.payload['name']}")


class ProgressHandler:
    def __init__(self) -> None:
        self.seen: list[int] = []

    async def handle(self, job: JobSnapshot, progress: ProgressReporter):
        for value in (20, 60, 40, 80):
            progress.report(value)
            self.seen.append(progress.current)
        return None


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def bus() -> InMemoryMessageBus:
    return InMemoryMessageBus()


@pytest.fixture
def queue(clock: FakeClock, bus: InMemoryMessageBus) -> JobQueue:
    return JobQueue(InMemoryJobRepository(), bus, max_concurrent_jobs=2, clock=clock)


async def enqueue_named(queue: JobQueue, clock: FakeClock, priorities: list[int]) -> list[str]:
    ids = []
    for index, priority in enumerate(priorities):
        ids.append(
            await queue.enqueue(JobType.CLEANUP, {"name": f"job{index}"}, priority=priority)
        )
        clock.advance(1)
    return ids


async def settle() -> None:
    for _ in range(5):
        await asyncio.sleep(0)


# Unit Tests


async def test_drain_starts_by_priority_then_fifo(queue: JobQueue, clock: FakeClock):
    handler = RecordingHandler()
    queue.register_handler(JobType.CLEANUP, handler)
    await enqueue_named(queue, clock, [1, 3, 3, 1, 2])

    first = await queue.drain()
    second = await queue.drain()
    third = await queue.drain()

    assert len(first) == 2 and len(second) == 2 and len(third) == 1
    assert handler.started == ["job1", "job2", "job4", "job0", "job3"]
    assert handler.max_active <= 2


async def test_fifo_tie_break_uses_arrival_when_timestamps_equal(queue: JobQueue):
    handler = RecordingHandler()
    queue.register_handler(JobType.CLEANUP, handler)
    for index in range(4):
        await queue.enqueue(JobType.CLEANUP, {"name": f"job{index}"})

    await queue.drain()
    await queue.drain()

    assert handler.started == ["job0", "job1", "job2", "job3"]


async def test_overlapping_drains_respect_cap(queue: JobQueue, clock: FakeClock):
    hold = asyncio.Event()
    handler = RecordingHandler(hold=hold)
    queue.register_handler(JobType.CLEANUP, handler)
    await enqueue_named(queue, clock, [1, 1, 1, 1, 1])

    drains = [asyncio.create_task(queue.drain()) for _ in range(3)]
    await settle()
    assert queue.stats().running == 2
    assert handler.max_active == 2

    hold.set()
    started = await asyncio.gather(*drains)
    assert sorted(len(ids) for ids in started) == [0, 0, 2]
    assert queue.stats().queued == 3


async def test_drain_honours_max_to_start(queue: JobQueue, clock: FakeClock):
    queue.register_handler(JobType.CLEANUP, RecordingHandler())
    await enqueue_named(queue, clock, [1, 1, 1])

    assert len(await queue.drain(max_to_start=1)) == 1
    assert await queue.drain(max_to_start=0) == []


async def test_failed_handler_only_fails_its_own_job(queue: JobQueue, clock: FakeClock):
    ok = await queue.enqueue(JobType.CLEANUP, {"name": "ok"})
    bad = await queue.enqueue(JobType.FILE_INGEST, {"name": "bad"})
    queue.register_handler(JobType.CLEANUP, RecordingHandler())
    queue.register_handler(JobType.FILE_INGEST, FailingHandler())

    await queue.drain()

    ok_job = queue.status(ok)
    bad_job = queue.status(bad)
    assert ok_job is not None and ok_job.status == JobStatus.COMPLETED
    assert ok_job.result == {"name": "ok"}
    assert bad_job is not None and bad_job.status == JobStatus.FAILED
    assert bad_job.error == "cannot process bad"
    assert bad_job.completed_at is not None


async def test_job_without_handler_fails_with_message(queue: JobQueue):
    job_id = await queue.enqueue(JobType.LOCAL_SEARCH_BATCH, {})

    await queue.drain()

    job = queue.status(job_id)
    assert job is not None
    assert job.status == JobStatus.FAILED
    assert "No handler registered" in (job.error or "")


async def test_progress_reported_by_handler_is_monotonic(queue: JobQueue):
    handler = ProgressHandler()
    queue.register_handler(JobType.CLEANUP, handler)
    job_id = await queue.enqueue(JobType.CLEANUP, {})

    await queue.drain()

    assert handler.seen == [20, 60, 60, 80]
    job = queue.status(job_id)
    assert job is not None and job.progress == 100


async def test_enqueue_rejects_unknown_type(queue: JobQueue):
    with pytest.raises(ValidationError):
        await queue.enqueue("not-a-type", {})
    assert queue.stats().total == 0


async def test_enqueue_accepts_type_string(queue: JobQueue):
    job_id = await queue.enqueue("individual-search", {"search_term": "x"}, priority=3)
    job = queue.status(job_id)
    assert job is not None
    assert job.type == JobType.INDIVIDUAL_SEARCH
    assert job.priority == 3


async def test_duplicate_handler_registration_raises(queue: JobQueue):
    queue.register_handler(JobType.CLEANUP, RecordingHandler())
    with pytest.raises(ValueError):
        queue.register_handler(JobType.CLEANUP, RecordingHandler())


async def test_scheduled_job_waits_for_wake_time(queue: JobQueue, clock: FakeClock):
    handler = RecordingHandler()
    queue.register_handler(JobType.CLEANUP, handler)
    job_id = await queue.schedule(JobType.CLEANUP, {"name": "later"}, delay=60)

    assert queue.status(job_id).status == JobStatus.SCHEDULED
    assert await queue.drain() == []

    clock.advance(59)
    assert await queue.promote_scheduled() == []
    assert queue.status(job_id).status == JobStatus.SCHEDULED

    clock.advance(1)
    assert await queue.promote_scheduled() == [job_id]
    assert await queue.drain() == [job_id]
    assert handler.started == ["later"]


async def test_schedule_without_delay_is_enqueue(queue: JobQueue):
    job_id = await queue.schedule(JobType.CLEANUP, {}, delay=0)
    assert queue.status(job_id).status == JobStatus.QUEUED


async def test_cancel_only_queued_jobs(queue: JobQueue):
    hold = asyncio.Event()
    queue.register_handler(JobType.CLEANUP, RecordingHandler(hold=hold))
    running = await queue.enqueue(JobType.CLEANUP, {"name": "a"})
    await queue.enqueue(JobType.CLEANUP, {"name": "b"})
    waiting = await queue.enqueue(JobType.CLEANUP, {"name": "c"})
    scheduled = await queue.schedule(JobType.CLEANUP, {"name": "d"}, delay=10)

    drain = asyncio.create_task(queue.drain())
    await settle()

    assert await queue.cancel(running) is False
    assert await queue.cancel(scheduled) is False
    assert await queue.cancel(waiting) is True
    assert await queue.cancel(waiting) is False
    assert await queue.cancel("job_missing") is False

    hold.set()
    await drain
    assert await queue.cancel(running) is False
    assert queue.status(waiting).status == JobStatus.CANCELLED


async def test_stats_counts_and_average(queue: JobQueue, clock: FakeClock):
    queue.register_handler(JobType.CLEANUP, RecordingHandler())
    queue.register_handler(JobType.FILE_INGEST, FailingHandler())
    await queue.enqueue(JobType.CLEANUP, {"name": "a"})
    await queue.enqueue(JobType.FILE_INGEST, {"name": "b"})
    await queue.enqueue(JobType.CLEANUP, {"name": "c"})
    await queue.schedule(JobType.CLEANUP, {"name": "d"}, delay=30)

    await queue.drain()
    stats = queue.stats()

    assert stats.total == 4
    assert stats.completed == 1
    assert stats.failed == 1
    assert stats.queued == 1
    assert stats.scheduled == 1
    assert stats.running == 0
    assert stats.avg_exec_ms == 0.0
    assert stats.utilization_pct == 0.0


async def test_health_critical_when_paused_with_queued_jobs(queue: JobQueue):
    await queue.enqueue(JobType.CLEANUP, {})
    queue.pause()

    health = queue.health()

    assert health.status == HealthStatus.CRITICAL
    assert any("paused" in issue for issue in health.issues)
    assert await queue.drain() == []


async def test_health_warning_on_failure_rate(queue: JobQueue):
    queue.register_handler(JobType.FILE_INGEST, FailingHandler())
    queue.register_handler(JobType.CLEANUP, RecordingHandler())
    await queue.enqueue(JobType.FILE_INGEST, {"name": "x"})
    await queue.enqueue(JobType.CLEANUP, {"name": "y"})
    await queue.drain()

    health = queue.health()

    assert health.status == HealthStatus.WARNING
    assert health.stats.failed == 1


async def test_health_warning_on_high_utilization(queue: JobQueue):
    hold = asyncio.Event()
    queue.register_handler(JobType.CLEANUP, RecordingHandler(hold=hold))
    await queue.enqueue(JobType.CLEANUP, {"name": "a"})
    await queue.enqueue(JobType.CLEANUP, {"name": "b"})

    drain = asyncio.create_task(queue.drain())
    await settle()
    health = queue.health()
    hold.set()
    await drain

    assert health.stats.utilization_pct == 100.0
    assert health.status == HealthStatus.WARNING


async def test_empty_queue_is_healthy(queue: JobQueue):
    assert queue.health().status == HealthStatus.HEALTHY


async def test_pause_resume_and_set_concurrency(queue: JobQueue, clock: FakeClock):
    handler = RecordingHandler()
    queue.register_handler(JobType.CLEANUP, handler)
    await enqueue_named(queue, clock, [1, 1, 1, 1])

    queue.pause()
    queue.set_concurrency(3)
    assert queue.is_paused
    assert await queue.drain() == []

    queue.resume()
    assert len(await queue.drain()) == 3

    queue.set_concurrency(0)
    assert queue.stats().max_concurrent_jobs == 1


async def test_sweep_removes_only_old_terminal_jobs(queue: JobQueue, clock: FakeClock):
    queue.register_handler(JobType.CLEANUP, RecordingHandler())
    done = await queue.enqueue(JobType.CLEANUP, {"name": "a"})
    await queue.drain()
    waiting = await queue.enqueue(JobType.CLEANUP, {"name": "b"})
    queue.pause()

    clock.advance(10)
    assert queue.sweep_completed(timedelta(seconds=30)) == 0

    clock.advance(30)
    assert queue.sweep_completed(30) == 1
    assert queue.status(done) is None
    assert queue.status(waiting) is not None


async def test_snapshot_is_a_copy(queue: JobQueue):
    job_id = await queue.enqueue(JobType.CLEANUP, {"items": [1, 2]})
    snapshot = queue.status(job_id)
    snapshot.payload["items"].append(3)

    assert queue.status(job_id).payload == {"items": [1, 2]}


async def test_lifecycle_events_are_published(queue: JobQueue, bus: InMemoryMessageBus):
    received: list[Event] = []

    async def record(event: Event) -> None:
        received.append(event)

    for event_type in (JobQueued, JobCompleted, JobFailed):
        bus.subscribe_to_event(event_type, FunctionHandler(record))
    queue.register_handler(JobType.CLEANUP, RecordingHandler())
    queue.register_handler(JobType.FILE_INGEST, FailingHandler())

    await queue.enqueue(JobType.CLEANUP, {"name": "a"})
    await queue.enqueue(JobType.FILE_INGEST, {"name": "b"})
    await queue.drain()

    assert [type(e) for e in received].count(JobQueued) == 2
    assert any(isinstance(e, JobCompleted) for e in received)
    assert any(isinstance(e, JobFailed) for e in received)


async def test_subscriber_error_does_not_break_queue(queue: JobQueue, bus: InMemoryMessageBus):
    async def explode(event: Event) -> None:
        raise RuntimeError("subscriber down")

    bus.subscribe_to_event(JobCompleted, FunctionHandler(explode))
    queue.register_handler(JobType.CLEANUP, RecordingHandler())
    job_id = await queue.enqueue(JobType.CLEANUP, {"name": "a"})

    await queue.drain()

    assert queue.status(job_id).status == JobStatus.COMPLETED
