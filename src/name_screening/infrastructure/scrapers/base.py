from typing import Protocol

from name_screening.domain.model import ScraperResult, ScraperSite


class ScraperRunner(Protocol):
    async def run(self, term: str, site: ScraperSite) -> ScraperResult:
        """검색어 하나로 사이트 하나를 조회합니다.

        Args:
            term: 검색어 (이름 또는 식별번호)
            site: 조회할 사이트 설정

        Returns:
            실행 결과. 타임아웃과 프로세스 실패는 예외가 아니라 결과의 status로 표현됩니다.

        Raises:
            SiteConfigurationError: 사이트 설정으로 실행 자체가 불가능한 경우
        """
        ...
