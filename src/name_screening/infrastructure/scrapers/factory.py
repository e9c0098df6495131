from loguru import logger

from name_screening.domain.model import ScraperKind
from name_screening.infrastructure.config import ScraperSettings
from name_screening.infrastructure.exceptions import SiteConfigurationError
from name_screening.infrastructure.scrapers.base import ScraperRunner
from name_screening.infrastructure.scrapers.direct_link import DirectLinkRunner
from name_screening.infrastructure.scrapers.process import ProcessScraperRunner


class ScraperRunnerFactory:
    """스크레이퍼 종류별 실행기를 관리하는 팩토리"""

    def __init__(self) -> None:
        self._runners: dict[ScraperKind, ScraperRunner] = {}

    def register_runner(self, kind: ScraperKind, runner: ScraperRunner) -> None:
        """팩토리에 새로운 실행기를 등록합니다. 같은 종류를 다시 등록하면 교체됩니다."""
        self._runners[kind] = runner
        logger.debug(f"{kind.value} 실행기 등록 완료", runner=type(runner).__name__)

    def get_runner(self, kind: ScraperKind) -> ScraperRunner:
        runner = self._runners.get(kind)
        if runner is None:
            raise SiteConfigurationError(f"지원하지 않는 스크레이퍼 종류입니다: {kind.value}")
        return runner


def create_default_factory(settings: ScraperSettings) -> ScraperRunnerFactory:
    factory = ScraperRunnerFactory()
    factory.register_runner(ScraperKind.DIRECT_LINK, DirectLinkRunner())
    factory.register_runner(
        ScraperKind.HTTP_CLIENT,
        ProcessScraperRunner(settings, ScraperKind.HTTP_CLIENT),
    )
    factory.register_runner(
        ScraperKind.HEADLESS_BROWSER,
        ProcessScraperRunner(settings, ScraperKind.HEADLESS_BROWSER),
    )
    return factory
