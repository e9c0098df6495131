"""외부 스크레이퍼 오케스트레이터

검색어 하나를 여러 사이트로 분산 실행합니다. 사이트는 `max_concurrent` 크기의
그룹으로 나뉘고, 그룹 안에서는 동시에, 그룹 사이에는 rate limit 지연을 두고
순차적으로 실행됩니다. 어떤 사이트가 실패하거나 타임아웃되더라도 사이트마다
정확히 하나의 ScraperResult가 만들어집니다.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any

from loguru import logger

from name_screening.domain.exceptions import InvalidSearchRequest, NoValidSitesError
from name_screening.domain.model import (
    ScraperResult,
    ScraperSite,
    ScraperStatus,
    SearchRecord,
)
from name_screening.domain.stores import (
    BulkRecordStore,
    NotificationSink,
    ScraperSiteRepository,
)
from name_screening.infrastructure.config import ScraperSettings
from name_screening.infrastructure.exceptions import SiteConfigurationError
from name_screening.infrastructure.logging_utils import PerformanceTracker, log_step
from name_screening.infrastructure.scrapers.factory import ScraperRunnerFactory

NOTIFY_EVERY_RECORDS = 5

Sleep = Callable[[float], Awaitable[Any]]


@dataclass
class ScraperStats:
    total_searches: int = 0
    successful: int = 0
    failed: int = 0
    timeout: int = 0
    sites_with_results: int = 0
    total_execution_ms: float = 0.0

    @property
    def success_rate(self) -> float:
        if self.total_searches == 0:
            return 0.0
        return round(self.successful / self.total_searches * 100, 2)

    @property
    def avg_execution_ms(self) -> float:
        if self.total_searches == 0:
            return 0.0
        return round(self.total_execution_ms / self.total_searches, 2)

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_searches": self.total_searches,
            "successful": self.successful,
            "failed": self.failed,
            "timeout": self.timeout,
            "sites_with_results": self.sites_with_results,
            "success_rate": self.success_rate,
            "avg_execution_ms": self.avg_execution_ms,
        }


@dataclass(frozen=True)
class IndividualSearchOutcome:
    results: list[ScraperResult]
    metadata: dict[str, Any]

    def to_dict(self) -> dict[str, Any]:
        return {
            "results": [r.to_dict() for r in self.results],
            "metadata": self.metadata,
        }


@dataclass(frozen=True)
class BatchSearchOptions:
    batch_size: int | None = None
    delay_between_searches_ms: int | None = None


@dataclass(frozen=True)
class BatchSearchOutcome:
    processed: int
    total_results: int
    has_more: bool
    execution_time_ms: float = 0.0
    sites: list[str] = field(default_factory=list)


def chunk_sites(sites: list[ScraperSite], size: int) -> list[list[ScraperSite]]:
    size = max(1, size)
    return [sites[i : i + size] for i in range(0, len(sites), size)]


def merge_by_site(results: list[ScraperResult]) -> list[ScraperResult]:
    """사이트별로 결과를 하나만 남깁니다. 나중 결과에 검색 결과가 있으면 앞의 빈 결과를 대체합니다."""
    merged: dict[str, ScraperResult] = {}
    for result in results:
        current = merged.get(result.site_name)
        if current is None or (result.has_results and not current.has_results):
            merged[result.site_name] = result
    return list(merged.values())


class ScraperOrchestrator:
    def __init__(
        self,
        site_repository: ScraperSiteRepository,
        factory: ScraperRunnerFactory,
        record_store: BulkRecordStore,
        notifier: NotificationSink,
        settings: ScraperSettings,
        sleep: Sleep = asyncio.sleep,
    ):
        self.site_repository = site_repository
        self.factory = factory
        self.record_store = record_store
        self.notifier = notifier
        self.settings = settings
        self.max_concurrent = settings.max_concurrent
        self._sleep = sleep
        self._sites: dict[str, ScraperSite] | None = None
        self._batches_in_flight = 0
        self._stats = ScraperStats()

    # --- 사이트 관리 ---

    async def _active_sites(self) -> dict[str, ScraperSite]:
        if self._sites is None:
            return await self._load_sites()
        return self._sites

    async def _load_sites(self) -> dict[str, ScraperSite]:
        sites = await self.site_repository.active_sites()
        loaded = {site.name: site for site in sites if site.is_active}
        self._sites = loaded
        logger.info(
            f"활성 사이트 {len(loaded)}개 로드",
            sites=list(loaded),
            event_name="sites_loaded",
        )
        return loaded

    async def reload_sites(self) -> None:
        """사이트 목록을 다시 읽습니다. 배치 실행 중에는 허용되지 않습니다."""
        if self._batches_in_flight:
            raise SiteConfigurationError(
                "cannot reload sites while a batch search is running"
            )
        await self._load_sites()

    async def available_sites(self) -> list[ScraperSite]:
        return list((await self._active_sites()).values())

    async def sites_by_category(self) -> dict[str, list[ScraperSite]]:
        categories: dict[str, list[ScraperSite]] = {}
        for site in (await self._active_sites()).values():
            categories.setdefault(site.category, []).append(site)
        return categories

    async def select_sites(self, site_names: list[str] | None) -> list[ScraperSite]:
        """선택된 사이트 이름을 활성 사이트로 변환합니다. 비어 있으면 모든 활성 사이트를 사용합니다."""
        active = await self._active_sites()
        if not site_names:
            selected = list(active.values())
        else:
            selected = []
            for name in site_names:
                site = active.get(name)
                if site is None:
                    logger.warning(
                        "알 수 없거나 비활성 상태인 사이트를 건너뜁니다",
                        site=name,
                        event_name="site_skipped",
                    )
                    continue
                if site not in selected:
                    selected.append(site)
        if not selected:
            raise NoValidSitesError("no valid sites to search")
        return selected

    def set_concurrency(self, max_scrapers: int) -> None:
        self.max_concurrent = max(1, max_scrapers)
        logger.info(
            "스크레이퍼 동시 실행 수 변경",
            max_concurrent=self.max_concurrent,
            event_name="scraper_concurrency_changed",
        )

    def stats(self) -> ScraperStats:
        return replace(self._stats)

    def reset_stats(self) -> None:
        self._stats = ScraperStats()

    # --- 실행 ---

    async def run_one(self, term: str, site: ScraperSite) -> ScraperResult:
        """사이트 하나를 실행합니다. 어떤 경우에도 예외 대신 결과를 반환합니다."""
        try:
            runner = self.factory.get_runner(site.scraper_kind)
            return await runner.run(term, site)
        except Exception as e:
            logger.warning(
                "스크레이퍼 실행 오류",
                site=site.name,
                error=str(e),
                error_type=e.__class__.__name__,
                event_name="scraper_error",
            )
            return ScraperResult.failure(site, term, f"{e.__class__.__name__}: {e}")

    async def _run_group(
        self, term: str, group: list[ScraperSite]
    ) -> list[ScraperResult]:
        outcomes = await asyncio.gather(
            *(self.run_one(term, site) for site in group), return_exceptions=True
        )
        results = []
        for site, outcome in zip(group, outcomes):
            if isinstance(outcome, asyncio.CancelledError):
                raise outcome
            if isinstance(outcome, BaseException):
                results.append(
                    ScraperResult.failure(site, term, f"{type(outcome).__name__}: {outcome}")
                )
            else:
                results.append(outcome)
        return results

    async def _run_groups(
        self, term: str, sites: list[ScraperSite]
    ) -> list[ScraperResult]:
        groups = chunk_sites(sites, self.max_concurrent)
        delay = self.settings.rate_limit_delay_ms / 1000
        results: list[ScraperResult] = []
        for index, group in enumerate(groups):
            logger.debug(
                f"사이트 그룹 {index + 1}/{len(groups)} 실행",
                sites=[site.name for site in group],
                event_name="site_group_start",
            )
            results.extend(await self._run_group(term, group))
            if index < len(groups) - 1 and delay > 0:
                await self._sleep(delay)
        self._record_stats(results)
        return results

    def _record_stats(self, results: list[ScraperResult]) -> None:
        for result in results:
            self._stats.total_searches += 1
            self._stats.total_execution_ms += result.execution_time_ms
            if result.status == ScraperStatus.COMPLETED:
                self._stats.successful += 1
            elif result.status == ScraperStatus.TIMEOUT:
                self._stats.timeout += 1
            else:
                self._stats.failed += 1
            if result.has_results:
                self._stats.sites_with_results += 1

    async def search_individual(
        self, term: str, site_names: list[str] | None = None
    ) -> IndividualSearchOutcome:
        term = term.strip()
        if not term:
            raise InvalidSearchRequest("search term must not be empty")

        sites = await self.select_sites(site_names)
        tracker = PerformanceTracker("search_individual")
        tracker.start()
        with log_step("외부 개별 검색", search_term=term, site_count=len(sites)):
            results = await self._run_groups(term, sites)

        execution_time_ms = tracker.elapsed_ms()
        tracker.end()
        return IndividualSearchOutcome(
            results=results,
            metadata={
                "search_term": term,
                "sites_processed": len(sites),
                "sites_with_results": sum(1 for r in results if r.has_results),
                "execution_time_ms": execution_time_ms,
                "timestamp": datetime.now().isoformat(timespec="seconds"),
            },
        )

    async def _search_record(
        self, record: SearchRecord, sites: list[ScraperSite]
    ) -> list[ScraperResult]:
        results: list[ScraperResult] = []
        for term in record.query_terms:
            results.extend(await self._run_groups(term, sites))
        return merge_by_site(results)

    async def search_batch(
        self,
        batch_id: str,
        site_names: list[str] | None = None,
        options: BatchSearchOptions | None = None,
    ) -> BatchSearchOutcome:
        """배치의 대기 레코드 한 페이지를 처리합니다.

        호출자는 has_more가 False가 될 때까지 다시 호출해야 합니다.
        레코드 하나의 검색이 실패하면 모든 사이트에 대한 오류 결과를 저장해
        같은 레코드가 다시 선택되지 않게 합니다. 저장소 오류는 그대로 전파됩니다.
        """
        options = options or BatchSearchOptions()
        batch_size = options.batch_size or self.settings.batch_size
        delay_ms = (
            options.delay_between_searches_ms
            if options.delay_between_searches_ms is not None
            else self.settings.rate_limit_delay_ms
        )

        sites = await self.select_sites(site_names)
        tracker = PerformanceTracker("search_batch")
        tracker.start()

        self._batches_in_flight += 1
        try:
            with logger.contextualize(batch_id=batch_id):
                records = await self.record_store.pending_records(batch_id, batch_size)
                if not records:
                    logger.info("외부 검색 대기 레코드 없음", event_name="batch_page_empty")
                    return BatchSearchOutcome(
                        processed=0,
                        total_results=0,
                        has_more=False,
                        execution_time_ms=tracker.elapsed_ms(),
                        sites=[s.name for s in sites],
                    )

                processed = 0
                total_results = 0
                for index, record in enumerate(records):
                    try:
                        results = await self._search_record(record, sites)
                    except Exception as e:
                        logger.exception(
                            "레코드 외부 검색 실패",
                            record_id=record.id,
                            event_name="record_search_failed",
                        )
                        results = [
                            ScraperResult.failure(site, record.full_name, str(e))
                            for site in sites
                        ]
                    await self.record_store.save_external_results(record.id, results)
                    total_results += len(results)
                    processed += 1

                    if processed % NOTIFY_EVERY_RECORDS == 0:
                        await self._notify_progress(batch_id, processed, len(records))

                    if delay_ms > 0 and index < len(records) - 1:
                        await self._sleep(delay_ms / 1000)

                has_more = await self.record_store.has_pending(batch_id)
                execution_time_ms = tracker.elapsed_ms()
                tracker.end()
                logger.info(
                    "외부 검색 페이지 완료",
                    processed=processed,
                    total_results=total_results,
                    has_more=has_more,
                    event_name="batch_page_completed",
                )
                return BatchSearchOutcome(
                    processed=processed,
                    total_results=total_results,
                    has_more=has_more,
                    execution_time_ms=execution_time_ms,
                    sites=[s.name for s in sites],
                )
        finally:
            self._batches_in_flight -= 1

    async def _notify_progress(self, batch_id: str, current: int, total: int) -> None:
        percentage = round(current / total * 100, 1)
        await self.notifier.notify(
            "progress",
            "External search in progress",
            f"Processed {current} of {total} records on external sites ({percentage}%)",
            progress=(current, total),
            batch_id=batch_id,
        )
