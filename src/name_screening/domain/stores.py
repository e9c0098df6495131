"""큐와 오케스트레이터가 사용하는 외부 협력자 인터페이스"""

from datetime import timedelta
from typing import Any, Protocol

from name_screening.domain.model import (
    BatchProgress,
    BatchStatus,
    LocalMatch,
    RecordStatus,
    ScraperResult,
    ScraperSite,
    SearchRecord,
)


class SimilarityStore(Protocol):
    async def search_by_similarity(
        self,
        name: str,
        identification: str | None,
        min_score: float,
        limit: int,
    ) -> list[LocalMatch]:
        """유사도 점수(0~100) 내림차순으로 로컬 레코드를 반환합니다."""
        ...

    async def find_by_identification(
        self, identification: str, limit: int
    ) -> list[LocalMatch]:
        """식별번호가 정확히 일치하는 레코드를 반환합니다."""
        ...


class BulkRecordStore(Protocol):
    async def create_batch(
        self, batch_name: str, records: list[dict[str, Any]], source_file: str | None
    ) -> str:
        ...

    async def batch_progress(self, batch_id: str) -> BatchProgress | None:
        ...

    async def mark_batch(self, batch_id: str, status: BatchStatus) -> None:
        ...

    async def pending_local_records(
        self, batch_id: str, limit: int
    ) -> list[SearchRecord]:
        ...

    async def has_pending_local(self, batch_id: str) -> bool:
        ...

    async def record_status_update(
        self, record_id: str, status: RecordStatus, error: str | None = None
    ) -> None:
        ...

    async def save_local_results(
        self, record_id: str, matches: list[LocalMatch]
    ) -> None:
        ...

    async def pending_records(self, batch_id: str, limit: int) -> list[SearchRecord]:
        """아직 외부 검색 결과가 저장되지 않은 레코드를 반환합니다."""
        ...

    async def has_pending(self, batch_id: str) -> bool:
        ...

    async def save_external_results(
        self, record_id: str, results: list[ScraperResult]
    ) -> None:
        ...

    async def cleanup_completed_batches(self, older_than: timedelta) -> int:
        """완료된 지 older_than이 지난 배치를 삭제하고 삭제 수를 반환합니다."""
        ...


class ScraperSiteRepository(Protocol):
    async def active_sites(self) -> list[ScraperSite]:
        ...


class NotificationSink(Protocol):
    async def notify(
        self,
        type: str,
        title: str,
        message: str,
        progress: tuple[int, int] | None = None,
        batch_id: str | None = None,
    ) -> None:
        """알림을 기록합니다. 실패해도 호출자에게 예외를 전달하지 않아야 합니다."""
        ...

    async def cleanup_read(self, older_than: timedelta) -> int:
        ...
