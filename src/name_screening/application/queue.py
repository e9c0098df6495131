"""인메모리 Job 큐

Job 테이블은 JobQueue만 변경합니다. 모든 상태 변경은 await 사이에서 동기적으로
일어나므로 같은 이벤트 루프에서 drain이 겹쳐 호출되어도 동시 실행 한도는 지켜집니다.
"""

from __future__ import annotations

import asyncio
import itertools
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Any, Protocol

from loguru import logger

from name_screening.application.queries import (
    HealthStatus,
    JobSnapshot,
    QueueHealth,
    QueueStats,
)
from name_screening.domain.exceptions import ValidationError
from name_screening.domain.message_bus import MessageBus
from name_screening.domain.model import Job, JobStatus, JobType
from name_screening.domain.repositories import JobRepository

FAILURE_RATE_WARNING = 0.10
UTILIZATION_WARNING_PCT = 90.0


class ProgressReporter:
    """핸들러가 실행 중인 Job의 진행률을 보고하는 창구"""

    def __init__(self, job: Job):
        self._job = job

    def report(self, progress: int) -> None:
        self._job.update_progress(progress)

    @property
    def current(self) -> int:
        return self._job.progress


class JobHandler(Protocol):
    async def handle(
        self, job: JobSnapshot, progress: ProgressReporter
    ) -> dict[str, Any] | None:
        ...


def _coerce_job_type(job_type: JobType | str) -> JobType:
    if isinstance(job_type, JobType):
        return job_type
    try:
        return JobType(job_type)
    except ValueError:
        raise ValidationError(f"Unknown job type: {job_type!r}") from None


def _as_timedelta(value: timedelta | float) -> timedelta:
    return value if isinstance(value, timedelta) else timedelta(seconds=value)


class JobQueue:
    def __init__(
        self,
        repository: JobRepository,
        bus: MessageBus,
        max_concurrent_jobs: int = 5,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.repository = repository
        self.bus = bus
        self._clock = clock
        self._configured_cap = max(1, max_concurrent_jobs)
        self._cap = self._configured_cap
        self._paused = False
        self._sequence = itertools.count()
        self._handlers: dict[JobType, JobHandler] = {}

    # --- 핸들러 등록 ---

    def register_handler(self, job_type: JobType, handler: JobHandler) -> None:
        if job_type in self._handlers:
            raise ValueError(f"Handler already registered for {job_type.value}")
        self._handlers[job_type] = handler
        logger.debug(
            f"{job_type.value} 핸들러 등록 완료", handler=type(handler).__name__
        )

    # --- 작업 추가 ---

    async def enqueue(
        self,
        job_type: JobType | str,
        payload: dict[str, Any] | None = None,
        priority: int = 1,
    ) -> str:
        """queued 상태의 Job을 만들고 id를 반환합니다. 실행을 기다리지 않습니다."""
        job = Job.create(
            job_type=_coerce_job_type(job_type),
            payload=dict(payload or {}),
            priority=priority,
            created_at=self._clock(),
            sequence=next(self._sequence),
        )
        self.repository.add(job)
        logger.info(
            "Job 추가",
            job_id=job.id,
            job_type=job.type.value,
            priority=priority,
            event_name="job_enqueued",
        )
        await self._publish(job)
        return job.id

    async def schedule(
        self,
        job_type: JobType | str,
        payload: dict[str, Any] | None = None,
        delay: timedelta | float = 0,
        priority: int = 1,
    ) -> str:
        """delay 이후에 실행될 Job을 예약합니다. delay가 0 이하면 enqueue와 같습니다."""
        delay = _as_timedelta(delay)
        if delay <= timedelta(0):
            return await self.enqueue(job_type, payload, priority)

        now = self._clock()
        job = Job.create(
            job_type=_coerce_job_type(job_type),
            payload=dict(payload or {}),
            priority=priority,
            created_at=now,
            sequence=next(self._sequence),
            scheduled_for=now + delay,
        )
        self.repository.add(job)
        logger.info(
            "Job 예약",
            job_id=job.id,
            job_type=job.type.value,
            scheduled_for=job.scheduled_for.isoformat(),
            event_name="job_scheduled",
        )
        return job.id

    async def promote_scheduled(self) -> list[str]:
        """예약 시간이 지난 Job을 queued로 옮기고 그 id들을 반환합니다."""
        now = self._clock()
        due = sorted(
            (
                job
                for job in self.repository.all()
                if job.status == JobStatus.SCHEDULED
                and job.scheduled_for is not None
                and job.scheduled_for <= now
            ),
            key=lambda job: job.sort_key,
        )
        for job in due:
            job.promote()
        if due:
            logger.debug(
                f"예약 Job {len(due)}개 대기열로 이동",
                job_ids=[job.id for job in due],
                event_name="jobs_promoted",
            )
        await self._publish(*due)
        return [job.id for job in due]

    # --- 실행 ---

    async def drain(self, max_to_start: int | None = None) -> list[str]:
        """동시 실행 한도 안에서 대기 Job을 시작하고, 시작한 Job이 모두 끝날 때까지 기다립니다.

        Returns:
            이번 호출에서 시작한 Job id 목록 (시작 순서)
        """
        running = self._count(JobStatus.RUNNING)
        slots = self._cap - running
        if max_to_start is not None:
            slots = min(slots, max_to_start)
        if slots <= 0:
            return []

        selected = sorted(
            (job for job in self.repository.all() if job.status == JobStatus.QUEUED),
            key=lambda job: job.sort_key,
        )[:slots]
        if not selected:
            return []

        # 첫 await 전에 모두 running으로 표시해야 겹친 drain이 같은 Job을 고르지 않습니다.
        now = self._clock()
        for job in selected:
            job.start(now)
        logger.info(
            f"Job {len(selected)}개 시작",
            job_ids=[job.id for job in selected],
            running=running + len(selected),
            cap=self._cap,
            event_name="jobs_started",
        )

        await self._publish(*selected)
        await asyncio.gather(*(self._execute(job) for job in selected))
        return [job.id for job in selected]

    async def _execute(self, job: Job) -> None:
        with logger.contextualize(job_id=job.id, job_type=job.type.value):
            handler = self._handlers.get(job.type)
            if handler is None:
                logger.error(
                    "등록된 핸들러가 없습니다", event_name="job_handler_missing"
                )
                job.fail(f"No handler registered for job type {job.type.value}", self._clock())
                await self._publish(job)
                return

            try:
                result = await handler.handle(
                    JobSnapshot.from_job(job), ProgressReporter(job)
                )
            except Exception as e:
                logger.exception("Job 실행 실패", event_name="job_failed")
                job.fail(str(e) or e.__class__.__name__, self._clock())
            else:
                job.complete(result or {}, self._clock())
                logger.info(
                    "Job 완료",
                    execution_time_ms=job.execution_time_ms,
                    event_name="job_completed",
                )
            await self._publish(job)

    # --- 조회/관리 ---

    def status(self, job_id: str) -> JobSnapshot | None:
        job = self.repository.get(job_id)
        return JobSnapshot.from_job(job) if job else None

    def list_jobs(self, status: JobStatus | None = None) -> list[JobSnapshot]:
        jobs = sorted(self.repository.all(), key=lambda job: (job.created_at, job.sequence))
        return [
            JobSnapshot.from_job(job)
            for job in jobs
            if status is None or job.status == status
        ]

    async def cancel(self, job_id: str) -> bool:
        """queued 상태의 Job만 취소할 수 있습니다."""
        job = self.repository.get(job_id)
        if job is None or not job.cancel(self._clock()):
            return False
        logger.info("Job 취소", job_id=job_id, event_name="job_cancelled")
        await self._publish(job)
        return True

    def stats(self) -> QueueStats:
        jobs = self.repository.all()
        counts = {status: 0 for status in JobStatus}
        for job in jobs:
            counts[job.status] += 1

        exec_times = [
            job.execution_time_ms
            for job in jobs
            if job.status == JobStatus.COMPLETED and job.execution_time_ms is not None
        ]
        avg_exec_ms = round(sum(exec_times) / len(exec_times), 2) if exec_times else 0.0

        running = counts[JobStatus.RUNNING]
        if self._cap > 0:
            utilization = round(running / self._cap * 100, 2)
        else:
            utilization = 100.0 if running else 0.0

        return QueueStats(
            total=len(jobs),
            queued=counts[JobStatus.QUEUED],
            scheduled=counts[JobStatus.SCHEDULED],
            running=running,
            completed=counts[JobStatus.COMPLETED],
            failed=counts[JobStatus.FAILED],
            cancelled=counts[JobStatus.CANCELLED],
            avg_exec_ms=avg_exec_ms,
            utilization_pct=utilization,
            max_concurrent_jobs=self._cap,
        )

    def health(self) -> QueueHealth:
        stats = self.stats()
        issues: list[str] = []
        status = HealthStatus.HEALTHY

        if stats.total > 0 and stats.failed / stats.total > FAILURE_RATE_WARNING:
            issues.append(
                f"High failure rate: {stats.failed}/{stats.total} jobs failed"
            )
            status = HealthStatus.WARNING
        if stats.utilization_pct > UTILIZATION_WARNING_PCT:
            issues.append(f"High utilization: {stats.utilization_pct}%")
            status = HealthStatus.WARNING
        if stats.running == 0 and stats.queued > 0:
            if self._paused:
                issues.append(f"Queue is paused with {stats.queued} queued jobs")
            else:
                issues.append(f"Queue appears stuck: {stats.queued} queued, none running")
            status = HealthStatus.CRITICAL

        return QueueHealth(status=status, stats=stats, issues=issues)

    def set_concurrency(self, max_jobs: int) -> None:
        self._configured_cap = max(1, max_jobs)
        if not self._paused:
            self._cap = self._configured_cap
        logger.info(
            "Job 동시 실행 수 변경",
            max_concurrent_jobs=self._configured_cap,
            paused=self._paused,
            event_name="queue_concurrency_changed",
        )

    def pause(self) -> None:
        self._paused = True
        self._cap = 0
        logger.info("큐 일시정지", event_name="queue_paused")

    def resume(self) -> None:
        self._paused = False
        self._cap = self._configured_cap
        logger.info("큐 재개", cap=self._cap, event_name="queue_resumed")

    @property
    def is_paused(self) -> bool:
        return self._paused

    def sweep_completed(self, max_age: timedelta | float) -> int:
        """완료된 지 max_age가 지난 종료 상태 Job을 삭제하고 삭제 수를 반환합니다."""
        cutoff = self._clock() - _as_timedelta(max_age)
        stale = [
            job
            for job in self.repository.all()
            if job.status.is_terminal
            and job.completed_at is not None
            and job.completed_at < cutoff
        ]
        for job in stale:
            self.repository.remove(job.id)
        if stale:
            logger.info(
                f"오래된 Job {len(stale)}개 정리", event_name="jobs_swept"
            )
        return len(stale)

    def _count(self, status: JobStatus) -> int:
        return sum(1 for job in self.repository.all() if job.status == status)

    async def _publish(self, *jobs: Job) -> None:
        for job in jobs:
            for event in job.pull_events():
                await self.bus.handle(event)
