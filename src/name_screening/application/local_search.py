"""로컬 레코드 유사도 검색 서비스"""

from __future__ import annotations

import asyncio
import re
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any

from loguru import logger

from name_screening.domain.exceptions import InvalidSearchRequest
from name_screening.domain.model import LocalMatch, RecordStatus, SearchMode
from name_screening.domain.stores import (
    BulkRecordStore,
    NotificationSink,
    SimilarityStore,
)
from name_screening.infrastructure.config import SearchSettings
from name_screening.infrastructure.exceptions import StoreUnavailableError
from name_screening.infrastructure.logging_utils import PerformanceTracker

NOTIFY_EVERY_RECORDS = 10

_WHITESPACE = re.compile(r"\s+")
# 문자, 숫자, 공백, 마침표, 하이픈 외의 문자는 제거합니다.
_DISALLOWED = re.compile(r"[^\w\s.\-]")


def clean_search_term(term: str | None) -> str:
    if term is None:
        return ""
    cleaned = _WHITESPACE.sub(" ", term.strip())
    return _DISALLOWED.sub("", cleaned)


def determine_match_type(name_score: float, id_score: float) -> str:
    if abs(name_score - 100.0) < 0.001 and abs(id_score - 100.0) < 0.001:
        return "exact"
    if name_score >= 95.0 or id_score >= 95.0:
        return "high_similarity"
    if name_score >= 80.0 or id_score >= 80.0:
        return "medium_similarity"
    return "low_similarity"


def confidence_level(combined_score: float) -> str:
    if combined_score >= 95.0:
        return "very_high"
    if combined_score >= 85.0:
        return "high"
    if combined_score >= 70.0:
        return "medium"
    if combined_score >= 50.0:
        return "low"
    return "very_low"


def classify(matches: list[LocalMatch]) -> list[LocalMatch]:
    """일치 유형과 신뢰도를 채우고 종합 점수 내림차순으로 정렬합니다."""
    classified = [
        replace(
            match,
            match_type=determine_match_type(match.name_similarity, match.id_similarity),
            confidence_level=confidence_level(match.combined_score),
        )
        for match in matches
    ]
    classified.sort(key=lambda m: m.combined_score, reverse=True)
    return classified


@dataclass(frozen=True)
class LocalSearchOutcome:
    matches: list[LocalMatch]
    metadata: dict[str, Any]

    def to_dict(self) -> dict[str, Any]:
        return {
            "results": [m.to_dict() for m in self.matches],
            "metadata": self.metadata,
        }


@dataclass(frozen=True)
class LocalBatchOutcome:
    processed: int
    total_matches: int
    has_more: bool
    execution_time_ms: float = 0.0


class LocalSearchService:
    def __init__(
        self,
        similarity_store: SimilarityStore,
        record_store: BulkRecordStore,
        notifier: NotificationSink,
        settings: SearchSettings,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.similarity_store = similarity_store
        self.record_store = record_store
        self.notifier = notifier
        self.settings = settings
        self._sleep = sleep

    async def search_by_name(
        self,
        name: str,
        identification: str | None,
        min_score: float,
        limit: int,
    ) -> list[LocalMatch]:
        name = clean_search_term(name)
        identification = clean_search_term(identification) or None
        if not name:
            return []
        matches = await self.similarity_store.search_by_similarity(
            name, identification, min_score, limit
        )
        return classify(matches)

    async def search_by_identification(
        self, identification: str, min_score: float, limit: int
    ) -> list[LocalMatch]:
        """정확히 일치하는 식별번호를 먼저 찾고, 없으면 유사도 검색으로 넘어갑니다."""
        identification = clean_search_term(identification)
        if not identification:
            return []
        exact = await self.similarity_store.find_by_identification(identification, limit)
        if exact or min_score >= 100.0:
            return classify(exact)
        matches = await self.similarity_store.search_by_similarity(
            "", identification, min_score, limit
        )
        return classify(matches)

    async def search_individual(
        self,
        term: str,
        mode: SearchMode | str = SearchMode.NAME,
        min_score: float | None = None,
        limit: int | None = None,
        identification: str | None = None,
    ) -> LocalSearchOutcome:
        try:
            mode = SearchMode(mode)
        except ValueError:
            raise InvalidSearchRequest(f"Invalid search type: {mode!r}") from None
        min_score = (
            self.settings.default_similarity_threshold if min_score is None else min_score
        )
        limit = limit or self.settings.max_results

        tracker = PerformanceTracker("local_search")
        tracker.start()
        match mode:
            case SearchMode.NAME:
                matches = await self.search_by_name(term, identification, min_score, limit)
            case SearchMode.IDENTIFICATION:
                matches = await self.search_by_identification(term, min_score, limit)
            case SearchMode.BOTH:
                matches = await self.search_by_name(term, identification, min_score, limit)
                if not matches:
                    matches = await self.search_by_identification(term, min_score, limit)

        execution_time_ms = tracker.elapsed_ms()
        logger.info(
            "로컬 검색 완료",
            search_term=term,
            search_type=mode.value,
            results_count=len(matches),
            execution_time_ms=execution_time_ms,
            event_name="local_search_completed",
        )
        return LocalSearchOutcome(
            matches=matches,
            metadata={
                "search_term": term,
                "search_type": mode.value,
                "min_similarity": min_score,
                "results_count": len(matches),
                "execution_time_ms": execution_time_ms,
                "timestamp": datetime.now().isoformat(timespec="seconds"),
            },
        )

    async def search_batch(
        self,
        batch_id: str,
        batch_size: int | None = None,
        min_score: float | None = None,
    ) -> LocalBatchOutcome:
        """배치의 pending 레코드 한 페이지를 로컬 검색합니다.

        레코드마다 processing -> completed 로 상태를 바꾸며, 레코드 단위 오류는
        error 상태로 기록됩니다. 저장소 자체를 사용할 수 없으면 예외가 전파됩니다.
        """
        batch_size = batch_size or self.settings.max_batch_size
        min_score = (
            self.settings.default_similarity_threshold if min_score is None else min_score
        )
        delay = self.settings.batch_processing_delay_ms / 1000
        tracker = PerformanceTracker("local_search_batch")
        tracker.start()

        records = await self.record_store.pending_local_records(batch_id, batch_size)
        processed = 0
        total_matches = 0
        for index, record in enumerate(records):
            try:
                await self.record_store.record_status_update(
                    record.id, RecordStatus.PROCESSING
                )
                matches = await self.search_by_name(
                    record.full_name,
                    record.identification,
                    min_score,
                    self.settings.max_results_per_record,
                )
                await self.record_store.save_local_results(record.id, matches)
                await self.record_store.record_status_update(
                    record.id, RecordStatus.COMPLETED
                )
                total_matches += len(matches)
            except StoreUnavailableError:
                raise
            except Exception as e:
                logger.exception(
                    "레코드 로컬 검색 실패",
                    record_id=record.id,
                    event_name="local_record_failed",
                )
                await self.record_store.record_status_update(
                    record.id, RecordStatus.ERROR, str(e)
                )
            processed += 1

            if processed % NOTIFY_EVERY_RECORDS == 0:
                percentage = round(processed / len(records) * 100, 1)
                await self.notifier.notify(
                    "progress",
                    "Local search in progress",
                    f"Processed {processed} of {len(records)} records ({percentage}%)",
                    progress=(processed, len(records)),
                    batch_id=batch_id,
                )
            if delay > 0 and index < len(records) - 1:
                await self._sleep(delay)

        has_more = await self.record_store.has_pending_local(batch_id)
        execution_time_ms = tracker.elapsed_ms()
        logger.info(
            "로컬 검색 페이지 완료",
            batch_id=batch_id,
            processed=processed,
            total_matches=total_matches,
            has_more=has_more,
            event_name="local_batch_page_completed",
        )
        return LocalBatchOutcome(
            processed=processed,
            total_matches=total_matches,
            has_more=has_more,
            execution_time_ms=execution_time_ms,
        )
