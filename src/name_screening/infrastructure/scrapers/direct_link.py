import time
from urllib.parse import quote_plus

from loguru import logger

from name_screening.domain.model import ScraperResult, ScraperSite, ScraperStatus
from name_screening.infrastructure.exceptions import SiteConfigurationError

TERM_PLACEHOLDER = "{TERM}"


class DirectLinkRunner:
    """프로세스를 띄우지 않고 검색 URL 템플릿에 검색어를 넣어 링크만 만들어 줍니다."""

    async def run(self, term: str, site: ScraperSite) -> ScraperResult:
        started = time.perf_counter()
        template = site.launch_config.get("search_url")
        if not template:
            raise SiteConfigurationError(
                f"search_url is not configured for site {site.name}"
            )

        link = template.replace(TERM_PLACEHOLDER, quote_plus(term))
        logger.debug(
            "직접 링크 생성",
            site=site.name,
            direct_link=link,
            event_name="direct_link_built",
        )
        return ScraperResult(
            site_name=site.name,
            category=site.category,
            query=term,
            has_results=True,
            result_count=1,
            result_payload={"type": "direct_link", "url": link},
            status=ScraperStatus.COMPLETED,
            execution_time_ms=round((time.perf_counter() - started) * 1000, 2),
            direct_link=link,
        )
