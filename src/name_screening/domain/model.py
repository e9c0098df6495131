import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, override

from name_screening.domain.events import (
    Event,
    JobCancelled,
    JobCompleted,
    JobFailed,
    JobQueued,
    JobStarted,
)
from name_screening.domain.exceptions import InvalidJobTransition

# --- Enums ---


class JobType(Enum):
    LOCAL_SEARCH_BATCH = "local-search-batch"
    EXTERNAL_SEARCH_BATCH = "external-search-batch"
    INDIVIDUAL_SEARCH = "individual-search"
    FILE_INGEST = "file-ingest"
    CLEANUP = "cleanup"


class JobStatus(Enum):
    QUEUED = "queued"
    SCHEDULED = "scheduled"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset(
    {JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED}
)


class ScraperKind(Enum):
    HEADLESS_BROWSER = "headless-browser"
    HTTP_CLIENT = "http-client"
    DIRECT_LINK = "direct-link"


class ScraperStatus(Enum):
    COMPLETED = "completed"
    FAILED = "failed"
    TIMEOUT = "timeout"


class SearchMode(Enum):
    NAME = "name"
    IDENTIFICATION = "identification"
    BOTH = "both"


class RecordStatus(Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    ERROR = "error"


class BatchStatus(Enum):
    CREATED = "created"
    PROCESSING = "processing"
    COMPLETED = "completed"


# --- Value Objects ---


@dataclass(frozen=True)
class ScraperSite:
    """외부 검색 소스 하나의 참조 데이터"""

    name: str
    category: str
    scraper_kind: ScraperKind
    timeout_seconds: int = 30
    launch_config: dict[str, Any] = field(default_factory=dict)
    is_active: bool = True


@dataclass(frozen=True)
class ScraperResult:
    """(검색어, 사이트) 한 쌍에 대한 스크레이퍼 실행 결과"""

    site_name: str
    category: str
    query: str
    has_results: bool
    result_count: int
    result_payload: dict[str, Any]
    status: ScraperStatus
    execution_time_ms: float
    direct_link: str | None = None
    error_detail: str | None = None

    @classmethod
    def failure(
        cls,
        site: ScraperSite,
        query: str,
        error: str,
        status: ScraperStatus = ScraperStatus.FAILED,
        execution_time_ms: float = 0.0,
    ) -> "ScraperResult":
        return cls(
            site_name=site.name,
            category=site.category,
            query=query,
            has_results=False,
            result_count=0,
            result_payload={},
            status=status,
            execution_time_ms=execution_time_ms,
            error_detail=error,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "site_name": self.site_name,
            "category": self.category,
            "query": self.query,
            "has_results": self.has_results,
            "result_count": self.result_count,
            "result_payload": self.result_payload,
            "status": self.status.value,
            "direct_link": self.direct_link,
            "execution_time_ms": self.execution_time_ms,
            "error_detail": self.error_detail,
        }


@dataclass(frozen=True)
class SearchRecord:
    """대량 검색 배치에 포함된 한 행"""

    id: str
    batch_id: str
    full_name: str
    identification: str | None = None
    status: RecordStatus = RecordStatus.PENDING

    @property
    def query_terms(self) -> list[str]:
        """이름과 식별번호 중 비어있지 않은 값을 검색어로 사용합니다."""
        return [term for term in (self.full_name, self.identification) if term]


@dataclass(frozen=True)
class BatchProgress:
    batch_id: str
    batch_name: str
    status: BatchStatus
    total_records: int
    processed_records: int = 0


@dataclass(frozen=True)
class LocalMatch:
    """로컬 유사도 검색 결과 한 건"""

    record_id: str
    full_name: str
    identification: str | None
    source_name: str | None
    name_similarity: float
    id_similarity: float
    combined_score: float
    match_type: str = "low_similarity"
    confidence_level: str = "very_low"
    additional_data: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "record_id": self.record_id,
            "full_name": self.full_name,
            "identification": self.identification,
            "source_name": self.source_name,
            "similarity_scores": {
                "name_similarity": self.name_similarity,
                "id_similarity": self.id_similarity,
                "combined_score": self.combined_score,
            },
            "match_type": self.match_type,
            "confidence_level": self.confidence_level,
            "additional_data": self.additional_data,
        }


# --- Entities ---


@dataclass(eq=False)
class Job:
    """큐가 관리하는 작업 단위. 상태 전이는 이 클래스의 메서드로만 일어납니다."""

    type: JobType
    payload: dict[str, Any]
    priority: int = 1
    status: JobStatus = JobStatus.QUEUED
    created_at: datetime = field(default_factory=datetime.now)
    sequence: int = 0
    scheduled_for: datetime | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    progress: int = 0
    error: str | None = None
    result: dict[str, Any] | None = None
    id: str = field(default_factory=lambda: f"job_{uuid.uuid4().hex}")
    events: list[Event] = field(default_factory=list)

    @staticmethod
    def create(
        job_type: JobType,
        payload: dict[str, Any],
        priority: int,
        created_at: datetime,
        sequence: int,
        scheduled_for: datetime | None = None,
    ) -> "Job":
        """새 Job을 생성합니다. scheduled_for가 주어지면 scheduled 상태로 시작합니다."""
        job = Job(
            type=job_type,
            payload=payload,
            priority=priority,
            created_at=created_at,
            sequence=sequence,
            scheduled_for=scheduled_for,
            status=JobStatus.SCHEDULED if scheduled_for else JobStatus.QUEUED,
        )
        if job.status == JobStatus.QUEUED:
            job.events.append(JobQueued(job_id=job.id, job_type=job_type.value))
        return job

    def pull_events(self) -> list[Event]:
        """수집된 이벤트를 반환하고 내부 리스트를 비웁니다."""
        pulled_events = self.events[:]
        self.events.clear()
        return pulled_events

    def promote(self) -> None:
        self._require(JobStatus.SCHEDULED, "promote")
        self.status = JobStatus.QUEUED
        self.scheduled_for = None
        self.events.append(JobQueued(job_id=self.id, job_type=self.type.value))

    def start(self, now: datetime) -> None:
        self._require(JobStatus.QUEUED, "start")
        self.status = JobStatus.RUNNING
        self.started_at = now
        self.events.append(JobStarted(job_id=self.id))

    def update_progress(self, progress: int) -> None:
        """진행률을 0~100 범위로 제한하고, 실행 중에는 감소하지 않도록 합니다."""
        if self.status != JobStatus.RUNNING:
            return
        self.progress = max(self.progress, min(100, max(0, int(progress))))

    def complete(self, result: dict[str, Any], now: datetime) -> None:
        self._require(JobStatus.RUNNING, "complete")
        self.status = JobStatus.COMPLETED
        self.result = result
        self.progress = 100
        self.completed_at = now
        self.events.append(
            JobCompleted(job_id=self.id, execution_time_ms=self.execution_time_ms)
        )

    def fail(self, error: str, now: datetime) -> None:
        self._require(JobStatus.RUNNING, "fail")
        self.status = JobStatus.FAILED
        self.error = error
        self.completed_at = now
        self.events.append(JobFailed(job_id=self.id, error=error))

    def cancel(self, now: datetime) -> bool:
        if self.status != JobStatus.QUEUED:
            return False
        self.status = JobStatus.CANCELLED
        self.completed_at = now
        self.events.append(JobCancelled(job_id=self.id))
        return True

    @property
    def execution_time_ms(self) -> float | None:
        if self.started_at is None or self.completed_at is None:
            return None
        return (self.completed_at - self.started_at).total_seconds() * 1000

    @property
    def sort_key(self) -> tuple[int, datetime, int]:
        # priority desc, then arrival
        return (-self.priority, self.created_at, self.sequence)

    def _require(self, expected: JobStatus, action: str) -> None:
        if self.status != expected:
            raise InvalidJobTransition(
                f"Cannot {action} job {self.id} in status {self.status.value}"
            )

    @override
    def __eq__(self, other: object):
        if not isinstance(other, Job):
            return NotImplemented
        return self.id == other.id

    @override
    def __hash__(self):
        return hash(self.id)
