from name_screening.domain.exceptions import ScreeningError


class InfrastructureError(ScreeningError):
    """인프라스트럭처 계층에서 발생하는 모든 예외의 기반 클래스입니다."""
    pass


class SiteConfigurationError(InfrastructureError):
    """스크레이퍼 실행 설정(스크립트 경로, URL 템플릿 등)이 잘못되었을 때 발생합니다."""
    pass


class ScraperOutputError(InfrastructureError):
    """스크레이퍼 프로세스의 종료 코드나 stdout이 계약과 다를 때 발생합니다."""
    pass


class StoreUnavailableError(InfrastructureError):
    """유사도 저장소나 레코드 저장소에 접근할 수 없을 때 발생합니다."""
    pass
