"""검색 요청 디스패처

작은 요청은 즉시 실행하고, 사이트가 많은 외부 검색과 배치 검색은 큐에 넣고
폴링용 job id를 돌려줍니다. 잘못된 요청은 Job을 만들기 전에 ValidationError로 거절됩니다.
"""

from __future__ import annotations

from datetime import timedelta
from pathlib import Path
from typing import Final

from loguru import logger

from name_screening.application.commands import (
    BatchSearchRequest,
    DispatchResult,
    IndividualSearchRequest,
)
from name_screening.application.job_handlers import CLEANUP_KINDS
from name_screening.application.local_search import LocalSearchService
from name_screening.application.queue import JobQueue
from name_screening.domain.exceptions import (
    BatchAlreadyProcessingError,
    BatchNotFoundError,
    InvalidSearchRequest,
    ValidationError,
)
from name_screening.domain.model import BatchStatus, JobType, SearchMode
from name_screening.domain.stores import BulkRecordStore, NotificationSink
from name_screening.infrastructure.config import SearchSettings
from name_screening.infrastructure.scrapers.orchestrator import ScraperOrchestrator

BASE_SECONDS_PER_RECORD = 0.5
LOCAL_SECONDS_PER_RECORD = 0.2
SECONDS_PER_SITE = 1.5
FILE_INGEST_PRIORITY = 2


def estimate_completion_seconds(
    total_records: int, include_local: bool, sites_count: int
) -> float:
    """대략적인 완료 예상 시간(초). 화면 표시용 참고값입니다."""
    per_record = BASE_SECONDS_PER_RECORD
    if include_local:
        per_record += LOCAL_SECONDS_PER_RECORD
    per_record += sites_count * SECONDS_PER_SITE
    return round(total_records * per_record, 1)


def _validate_threshold(value: float | None) -> None:
    if value is not None and not 0 <= value <= 100:
        raise InvalidSearchRequest("similarity_threshold must be between 0 and 100")


class SearchDispatcher:
    def __init__(
        self,
        queue: JobQueue,
        local_search: LocalSearchService,
        orchestrator: ScraperOrchestrator,
        record_store: BulkRecordStore,
        notifier: NotificationSink,
        settings: SearchSettings,
    ):
        self.queue: Final = queue
        self.local_search: Final = local_search
        self.orchestrator: Final = orchestrator
        self.record_store: Final = record_store
        self.notifier: Final = notifier
        self.settings: Final = settings

    async def search_individual(self, request: IndividualSearchRequest) -> DispatchResult:
        term = request.search_term.strip()
        if not term:
            raise InvalidSearchRequest("search_term is required")
        try:
            mode = SearchMode(request.search_type)
        except ValueError:
            raise InvalidSearchRequest(
                f"Invalid search type: {request.search_type!r}"
            ) from None
        _validate_threshold(request.similarity_threshold)

        sites_count = 0
        if request.include_external:
            # 알 수 없는 사이트만 선택된 경우 여기서 NoValidSitesError가 발생합니다.
            sites_count = len(await self.orchestrator.select_sites(request.selected_sites))

        if not request.include_external or sites_count <= self.settings.sync_site_threshold:
            logger.info(
                "개별 검색 즉시 실행",
                search_term=term,
                sites=sites_count,
                event_name="individual_search_sync",
            )
            local = await self.local_search.search_individual(
                term,
                mode,
                request.similarity_threshold,
                identification=request.identification,
            )
            results = {"local_results": local.to_dict(), "external_results": None}
            if request.include_external:
                external = await self.orchestrator.search_individual(
                    term, request.selected_sites
                )
                results["external_results"] = external.to_dict()
            return DispatchResult(processed_immediately=True, results=results)

        job_id = await self.queue.enqueue(
            JobType.INDIVIDUAL_SEARCH,
            {
                "search_term": term,
                "search_type": mode.value,
                "similarity_threshold": request.similarity_threshold,
                "include_local": True,
                "include_external": True,
                "selected_sites": list(request.selected_sites),
                "identification": request.identification,
            },
            priority=self.settings.individual_search_priority,
        )
        return DispatchResult(
            processed_immediately=False,
            job_id=job_id,
            job_ids={"individual": job_id},
            estimated_time_seconds=estimate_completion_seconds(1, True, sites_count),
            message="Search queued for processing",
        )

    async def search_batch(self, request: BatchSearchRequest) -> DispatchResult:
        _validate_threshold(request.similarity_threshold)
        batch = await self.record_store.batch_progress(request.batch_id)
        if batch is None:
            raise BatchNotFoundError(f"Batch not found: {request.batch_id}")
        if batch.status == BatchStatus.PROCESSING:
            raise BatchAlreadyProcessingError(
                f"Batch {request.batch_id} is already being processed"
            )
        run_external = request.include_external and bool(request.selected_sites)
        if not request.include_local and not run_external:
            raise InvalidSearchRequest("Nothing to search: enable local or external search")

        sites_count = 0
        if run_external:
            sites_count = len(await self.orchestrator.select_sites(request.selected_sites))

        await self.record_store.mark_batch(request.batch_id, BatchStatus.PROCESSING)
        job_ids: dict[str, str] = {}
        if request.include_local:
            job_ids["local"] = await self.queue.enqueue(
                JobType.LOCAL_SEARCH_BATCH,
                {
                    "batch_id": request.batch_id,
                    "similarity_threshold": request.similarity_threshold,
                    "include_external": run_external,
                },
                priority=request.priority,
            )
        if run_external:
            job_ids["external"] = await self.queue.enqueue(
                JobType.EXTERNAL_SEARCH_BATCH,
                {
                    "batch_id": request.batch_id,
                    "selected_sites": list(request.selected_sites),
                    "include_local": request.include_local,
                },
                priority=request.priority - 1,
            )

        logger.info(
            "배치 검색 큐 등록",
            batch_id=request.batch_id,
            job_ids=job_ids,
            event_name="batch_search_queued",
        )
        await self.notifier.notify(
            "info",
            "Batch search started",
            f"Processing batch '{batch.batch_name}'",
            batch_id=request.batch_id,
        )
        return DispatchResult(
            processed_immediately=False,
            job_id=job_ids.get("local") or job_ids.get("external"),
            job_ids=job_ids,
            estimated_time_seconds=estimate_completion_seconds(
                batch.total_records, request.include_local, sites_count
            ),
            message=f"Batch search queued for {batch.total_records} records",
        )

    async def create_batch(self, file_path: str | Path, batch_name: str | None = None) -> str:
        path = Path(file_path)
        if not path.is_file():
            raise ValidationError(f"file not found: {path}")
        return await self.queue.enqueue(
            JobType.FILE_INGEST,
            {"file_path": str(path), "batch_name": batch_name or path.stem},
            priority=FILE_INGEST_PRIORITY,
        )

    async def schedule_cleanup(
        self, kind: str = "all", delay: timedelta | float = 0
    ) -> str:
        if kind not in CLEANUP_KINDS:
            raise ValidationError(f"Unknown cleanup type: {kind}")
        return await self.queue.schedule(JobType.CLEANUP, {"type": kind}, delay=delay)
