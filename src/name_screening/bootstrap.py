from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any

from loguru import logger

from name_screening.application import job_handlers
from name_screening.application.dispatcher import SearchDispatcher
from name_screening.application.local_search import LocalSearchService
from name_screening.application.queue import JobQueue
from name_screening.application.worker import QueueWorker
from name_screening.domain.events import JobCancelled, JobCompleted, JobFailed
from name_screening.domain.model import JobType
from name_screening.infrastructure.message_bus import InMemoryMessageBus
from name_screening.infrastructure.persistence.repositories import (
    SqlAlchemyBulkRecordStore,
    SqlAlchemyNotificationSink,
    SqlAlchemyScraperSiteRepository,
    SqlAlchemySimilarityStore,
)
from name_screening.infrastructure.record_files import CsvRecordFileReader
from name_screening.infrastructure.repositories import InMemoryJobRepository
from name_screening.infrastructure.scrapers.factory import (
    ScraperRunnerFactory,
    create_default_factory,
)
from name_screening.infrastructure.scrapers.orchestrator import ScraperOrchestrator

if TYPE_CHECKING:
    from name_screening.domain.message_bus import MessageBus
    from name_screening.infrastructure.context import ApplicationContext


class Application:
    """애플리케이션의 핵심 컴포넌트들을 관리하는 클래스"""

    def __init__(
        self,
        bus: MessageBus,
        queue: JobQueue,
        orchestrator: ScraperOrchestrator,
        local_search: LocalSearchService,
        dispatcher: SearchDispatcher,
        worker: QueueWorker,
        sites: SqlAlchemyScraperSiteRepository,
        records: SqlAlchemyBulkRecordStore,
        similarity: SqlAlchemySimilarityStore,
        notifications: SqlAlchemyNotificationSink,
    ):
        self.bus = bus
        self.queue = queue
        self.orchestrator = orchestrator
        self.local_search = local_search
        self.dispatcher = dispatcher
        self.worker = worker
        self.sites = sites
        self.records = records
        self.similarity = similarity
        self.notifications = notifications


def bootstrap(
    context: ApplicationContext,
    runner_factory: ScraperRunnerFactory | None = None,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> Application:
    """애플리케이션을 초기화하고 모든 컴포넌트를 설정합니다.

    Args:
        context: 설정과 DB 세션 팩토리를 가진 ApplicationContext (진입한 상태여야 함)
        runner_factory: 스크레이퍼 실행기 팩토리. 생략하면 기본 실행기를 등록합니다.
        sleep: 지연에 사용할 코루틴 함수 (테스트에서 교체)

    Returns:
        초기화된 Application 객체
    """
    if context.session_factory is None:
        raise RuntimeError("ApplicationContext must be entered before bootstrap")
    settings = context.settings
    logger.info("애플리케이션 bootstrap 시작")

    # 1. 메시지 버스 및 Job 큐 생성
    bus = InMemoryMessageBus()
    queue = JobQueue(
        InMemoryJobRepository(),
        bus,
        max_concurrent_jobs=settings.queue.max_concurrent_jobs,
    )
    logger.debug("MessageBus 및 JobQueue 생성 완료")

    # 2. 저장소 생성
    sites = SqlAlchemyScraperSiteRepository(context.session_factory)
    records = SqlAlchemyBulkRecordStore(context.session_factory)
    similarity = SqlAlchemySimilarityStore(context.session_factory)
    notifications = SqlAlchemyNotificationSink(context.session_factory)

    # 3. 검색 서비스 생성
    orchestrator = ScraperOrchestrator(
        sites,
        runner_factory or create_default_factory(settings.scrapers),
        records,
        notifications,
        settings.scrapers,
        sleep=sleep,
    )
    local_search = LocalSearchService(
        similarity, records, notifications, settings.search, sleep=sleep
    )

    # 4. Job 핸들러 등록
    queue.register_handler(
        JobType.INDIVIDUAL_SEARCH,
        job_handlers.IndividualSearchJobHandler(local_search, orchestrator),
    )
    queue.register_handler(
        JobType.LOCAL_SEARCH_BATCH,
        job_handlers.LocalSearchBatchJobHandler(local_search, records),
    )
    queue.register_handler(
        JobType.EXTERNAL_SEARCH_BATCH,
        job_handlers.ExternalSearchBatchJobHandler(orchestrator, records),
    )
    queue.register_handler(
        JobType.FILE_INGEST,
        job_handlers.FileIngestJobHandler(
            CsvRecordFileReader(),
            records,
            notifications,
            settings.search.max_batch_size,
        ),
    )
    queue.register_handler(
        JobType.CLEANUP,
        job_handlers.CleanupJobHandler(queue, records, notifications, settings),
    )
    logger.debug("Job 핸들러 등록 완료")

    # 5. 이벤트 핸들러 등록
    notification_handler = job_handlers.JobNotificationHandler(queue, notifications)
    bus.subscribe_to_event(JobCompleted, notification_handler)
    bus.subscribe_to_event(JobFailed, notification_handler)
    batch_recovery = job_handlers.BatchStatusRecoveryHandler(queue, records)
    for event_type in (JobCompleted, JobFailed, JobCancelled):
        bus.subscribe_to_event(event_type, batch_recovery)
    logger.debug("이벤트 핸들러 등록 완료")

    dispatcher = SearchDispatcher(
        queue, local_search, orchestrator, records, notifications, settings.search
    )
    worker = QueueWorker(queue, settings.queue)

    logger.info("애플리케이션 bootstrap 완료")
    return Application(
        bus=bus,
        queue=queue,
        orchestrator=orchestrator,
        local_search=local_search,
        dispatcher=dispatcher,
        worker=worker,
        sites=sites,
        records=records,
        similarity=similarity,
        notifications=notifications,
    )
