from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from name_screening.domain.model import SearchMode


class Command:
    """모든 요청 커맨드의 기본 클래스 (마커 역할)"""

    pass


@dataclass(frozen=True)
class IndividualSearchRequest(Command):
    """이름/식별번호 하나에 대한 검색 요청"""

    search_term: str
    search_type: str = SearchMode.NAME.value
    similarity_threshold: float | None = None
    include_external: bool = False
    selected_sites: list[str] = field(default_factory=list)
    identification: str | None = None


@dataclass(frozen=True)
class BatchSearchRequest(Command):
    """업로드된 배치 전체에 대한 검색 요청"""

    batch_id: str
    include_local: bool = True
    include_external: bool = False
    selected_sites: list[str] = field(default_factory=list)
    similarity_threshold: float | None = None
    priority: int = 2


@dataclass(frozen=True)
class DispatchResult:
    """디스패처 응답. 즉시 처리되었으면 results를, 큐에 들어갔으면 job id를 담습니다."""

    processed_immediately: bool
    results: dict[str, Any] | None = None
    job_id: str | None = None
    job_ids: dict[str, str] = field(default_factory=dict)
    estimated_time_seconds: float | None = None
    message: str = ""
