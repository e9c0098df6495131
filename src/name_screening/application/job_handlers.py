from __future__ import annotations

import time
from datetime import timedelta
from pathlib import Path
from typing import TYPE_CHECKING, Any, Final

from loguru import logger

from name_screening.application.local_search import LocalSearchService
from name_screening.application.queries import JobSnapshot
from name_screening.domain.events import JobCancelled, JobCompleted, JobFailed
from name_screening.domain.exceptions import BatchNotFoundError, ValidationError
from name_screening.domain.model import BatchStatus, JobStatus, JobType
from name_screening.domain.stores import BulkRecordStore, NotificationSink
from name_screening.infrastructure.scrapers.orchestrator import (
    BatchSearchOptions,
    ScraperOrchestrator,
)

if TYPE_CHECKING:
    from name_screening.application.queue import JobQueue, ProgressReporter
    from name_screening.infrastructure.config import Settings
    from name_screening.infrastructure.record_files import RecordFileReader

CLEANUP_KINDS = ("logs", "old_batches", "temp_files", "notifications", "jobs", "all")
LOG_MAX_AGE = timedelta(days=30)
BATCH_MAX_AGE = timedelta(days=30)
TEMP_FILE_MAX_AGE = timedelta(days=1)
NOTIFICATION_MAX_AGE = timedelta(days=7)


def _percent(done: int, total: int) -> int:
    if total <= 0:
        return 0
    return min(99, int(done / total * 100))


class IndividualSearchJobHandler:
    def __init__(self, local_search: LocalSearchService, orchestrator: ScraperOrchestrator):
        self.local_search: Final = local_search
        self.orchestrator: Final = orchestrator

    async def handle(self, job: JobSnapshot, progress: ProgressReporter) -> dict[str, Any]:
        payload = job.payload
        term = payload["search_term"]
        results: dict[str, Any] = {
            "local_results": None,
            "external_results": None,
            "execution_times": {},
        }

        if payload.get("include_local", True):
            started = time.perf_counter()
            local = await self.local_search.search_individual(
                term,
                payload.get("search_type", "name"),
                payload.get("similarity_threshold"),
                identification=payload.get("identification"),
            )
            results["local_results"] = local.to_dict()
            results["execution_times"]["local"] = round(
                (time.perf_counter() - started) * 1000, 2
            )
            progress.report(50)

        if payload.get("include_external", False):
            started = time.perf_counter()
            external = await self.orchestrator.search_individual(
                term, payload.get("selected_sites") or []
            )
            results["external_results"] = external.to_dict()
            results["execution_times"]["external"] = round(
                (time.perf_counter() - started) * 1000, 2
            )
        progress.report(100)
        return results


class LocalSearchBatchJobHandler:
    """배치의 pending 레코드가 없어질 때까지 로컬 검색 페이지를 반복 실행합니다."""

    def __init__(self, local_search: LocalSearchService, record_store: BulkRecordStore):
        self.local_search: Final = local_search
        self.record_store: Final = record_store

    async def handle(self, job: JobSnapshot, progress: ProgressReporter) -> dict[str, Any]:
        batch_id = job.payload["batch_id"]
        batch = await self.record_store.batch_progress(batch_id)
        if batch is None:
            raise BatchNotFoundError(f"Batch not found: {batch_id}")

        processed = 0
        total_matches = 0
        pages = 0
        while True:
            outcome = await self.local_search.search_batch(
                batch_id,
                batch_size=job.payload.get("batch_size"),
                min_score=job.payload.get("similarity_threshold"),
            )
            pages += 1
            processed += outcome.processed
            total_matches += outcome.total_matches
            progress.report(_percent(processed, batch.total_records))
            if not outcome.has_more:
                break
            if outcome.processed == 0:
                logger.warning(
                    "대기 레코드가 남았지만 처리된 레코드가 없어 중단합니다",
                    batch_id=batch_id,
                    event_name="local_batch_stalled",
                )
                break

        if not job.payload.get("include_external") or not await self.record_store.has_pending(
            batch_id
        ):
            await self.record_store.mark_batch(batch_id, BatchStatus.COMPLETED)
        return {
            "batch_id": batch_id,
            "processed": processed,
            "total_matches": total_matches,
            "pages": pages,
        }


class ExternalSearchBatchJobHandler:
    """배치의 외부 검색 대기 레코드가 없어질 때까지 오케스트레이터를 반복 호출합니다."""

    def __init__(self, orchestrator: ScraperOrchestrator, record_store: BulkRecordStore):
        self.orchestrator: Final = orchestrator
        self.record_store: Final = record_store

    async def handle(self, job: JobSnapshot, progress: ProgressReporter) -> dict[str, Any]:
        batch_id = job.payload["batch_id"]
        batch = await self.record_store.batch_progress(batch_id)
        if batch is None:
            raise BatchNotFoundError(f"Batch not found: {batch_id}")

        options = BatchSearchOptions(
            batch_size=job.payload.get("batch_size"),
            delay_between_searches_ms=job.payload.get("delay_between_searches_ms"),
        )
        processed = 0
        total_results = 0
        while True:
            outcome = await self.orchestrator.search_batch(
                batch_id, job.payload.get("selected_sites") or [], options
            )
            processed += outcome.processed
            total_results += outcome.total_results
            progress.report(_percent(processed, batch.total_records))
            if not outcome.has_more:
                break
            if outcome.processed == 0:
                logger.warning(
                    "외부 검색 대기 레코드가 남았지만 처리된 레코드가 없어 중단합니다",
                    batch_id=batch_id,
                    event_name="external_batch_stalled",
                )
                break

        if not job.payload.get("include_local", True) or not await self.record_store.has_pending_local(
            batch_id
        ):
            await self.record_store.mark_batch(batch_id, BatchStatus.COMPLETED)
        return {
            "batch_id": batch_id,
            "processed": processed,
            "total_results": total_results,
        }


class FileIngestJobHandler:
    def __init__(
        self,
        reader: RecordFileReader,
        record_store: BulkRecordStore,
        notifier: NotificationSink,
        max_batch_size: int,
    ):
        self.reader: Final = reader
        self.record_store: Final = record_store
        self.notifier: Final = notifier
        self.max_batch_size: Final = max_batch_size

    async def handle(self, job: JobSnapshot, progress: ProgressReporter) -> dict[str, Any]:
        file_path = Path(job.payload["file_path"])
        batch_name = job.payload.get("batch_name") or file_path.stem

        records = self.reader.read(file_path)
        progress.report(40)
        if not records:
            raise ValidationError(f"{file_path.name}: no records found")
        if len(records) > self.max_batch_size:
            raise ValidationError(
                f"{file_path.name}: {len(records)} records exceeds the maximum of {self.max_batch_size}"
            )

        batch_id = await self.record_store.create_batch(
            batch_name, records, source_file=file_path.name
        )
        progress.report(90)
        await self.notifier.notify(
            "success",
            "File processed",
            f"Batch '{batch_name}' created with {len(records)} records",
            batch_id=batch_id,
        )
        return {"batch_id": batch_id, "batch_name": batch_name, "total_records": len(records)}


class CleanupJobHandler:
    def __init__(
        self,
        queue: JobQueue,
        record_store: BulkRecordStore,
        notifier: NotificationSink,
        settings: Settings,
    ):
        self.queue: Final = queue
        self.record_store: Final = record_store
        self.notifier: Final = notifier
        self.settings: Final = settings

    async def handle(self, job: JobSnapshot, progress: ProgressReporter) -> dict[str, Any]:
        kind = job.payload.get("type", "all")
        if kind not in CLEANUP_KINDS:
            raise ValidationError(f"Unknown cleanup type: {kind}")

        cleaned = {key: 0 for key in CLEANUP_KINDS if key != "all"}
        if kind in ("logs", "all"):
            cleaned["logs"] = self._cleanup_logs()
            progress.report(25)
        if kind in ("old_batches", "all"):
            cleaned["old_batches"] = await self.record_store.cleanup_completed_batches(
                BATCH_MAX_AGE
            )
            progress.report(50)
        if kind in ("temp_files", "all"):
            cleaned["temp_files"] = self._cleanup_temp_files()
            progress.report(75)
        if kind in ("notifications", "all"):
            cleaned["notifications"] = await self.notifier.cleanup_read(
                NOTIFICATION_MAX_AGE
            )
        if kind in ("jobs", "all"):
            cleaned["jobs"] = self.queue.sweep_completed(
                timedelta(seconds=self.settings.queue.retention_seconds)
            )
        progress.report(100)

        logger.info("정리 작업 완료", type=kind, cleaned=cleaned, event_name="cleanup_done")
        return {"type": kind, "cleaned": cleaned}

    def _cleanup_logs(self) -> int:
        directory = self.settings.logging.directory
        if directory is None or not directory.is_dir():
            return 0
        return _remove_older_than(directory.glob("*.log*"), LOG_MAX_AGE)

    def _cleanup_temp_files(self) -> int:
        temp_dir = self.settings.temp_dir
        if not temp_dir.is_dir():
            return 0
        removed = _remove_older_than(temp_dir.iterdir(), TEMP_FILE_MAX_AGE)
        for path in list(temp_dir.iterdir()):
            if path.is_dir() and not any(path.iterdir()):
                path.rmdir()
                removed += 1
        return removed


def _remove_older_than(paths, max_age: timedelta) -> int:
    cutoff = time.time() - max_age.total_seconds()
    removed = 0
    for path in paths:
        if path.is_file() and path.stat().st_mtime < cutoff:
            path.unlink()
            removed += 1
    return removed


class JobNotificationHandler:
    """Job 완료/실패 이벤트를 알림으로 전달하는 이벤트 핸들러"""

    TITLES = {
        JobType.LOCAL_SEARCH_BATCH: "Local batch search",
        JobType.EXTERNAL_SEARCH_BATCH: "External batch search",
        JobType.INDIVIDUAL_SEARCH: "Individual search",
        JobType.FILE_INGEST: "File processing",
        JobType.CLEANUP: "Cleanup",
    }

    def __init__(self, queue: JobQueue, notifier: NotificationSink):
        self.queue: Final = queue
        self.notifier: Final = notifier

    async def handle(self, event: JobCompleted | JobFailed) -> None:
        with logger.contextualize(job_id=event.job_id):
            job = self.queue.status(event.job_id)
            if job is None:
                logger.warning(f"Job {event.job_id} not found. Skipping notification.")
                return
            title = self.TITLES.get(job.type, job.type.value)
            batch_id = job.payload.get("batch_id")
            if isinstance(event, JobFailed):
                await self.notifier.notify(
                    "error", f"{title} failed", event.error, batch_id=batch_id
                )
            else:
                await self.notifier.notify(
                    "success",
                    f"{title} completed",
                    f"Job {job.id} completed in {round(event.execution_time_ms or 0)} ms",
                    batch_id=batch_id,
                )


BATCH_JOB_TYPES = frozenset({JobType.LOCAL_SEARCH_BATCH, JobType.EXTERNAL_SEARCH_BATCH})
ACTIVE_JOB_STATUSES = frozenset({JobStatus.QUEUED, JobStatus.SCHEDULED, JobStatus.RUNNING})


class BatchStatusRecoveryHandler:
    """배치 Job이 모두 끝났는데도 processing으로 남은 배치를 created로 되돌립니다.

    취소되거나 실패한 배치 Job, 혹은 짝 Job이 중간에 빠져 완료 조건을 채우지 못한
    배치가 대상입니다. 되돌린 배치는 다시 search_batch로 보낼 수 있습니다.
    """

    def __init__(self, queue: JobQueue, record_store: BulkRecordStore):
        self.queue: Final = queue
        self.record_store: Final = record_store

    async def handle(self, event: JobCompleted | JobFailed | JobCancelled) -> None:
        job = self.queue.status(event.job_id)
        if job is None or job.type not in BATCH_JOB_TYPES:
            return
        batch_id = job.payload.get("batch_id")
        if batch_id is None:
            return

        siblings_active = any(
            other.id != job.id
            and other.type in BATCH_JOB_TYPES
            and other.status in ACTIVE_JOB_STATUSES
            and other.payload.get("batch_id") == batch_id
            for other in self.queue.list_jobs()
        )
        if siblings_active:
            return

        batch = await self.record_store.batch_progress(batch_id)
        if batch is None or batch.status != BatchStatus.PROCESSING:
            return
        await self.record_store.mark_batch(batch_id, BatchStatus.CREATED)
        logger.warning(
            "배치 Job이 모두 끝났지만 배치가 완료되지 않아 created로 되돌립니다",
            batch_id=batch_id,
            job_id=job.id,
            job_status=job.status.value,
            event_name="batch_status_reset",
        )
