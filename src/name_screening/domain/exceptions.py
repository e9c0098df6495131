class ScreeningError(Exception):
    """도메인/애플리케이션 계층에서 발생하는 모든 예외의 기반 클래스입니다."""

    pass


class ValidationError(ScreeningError):
    """잘못된 입력. 호출자에게 즉시 전달되며 작업은 생성되지 않습니다."""

    pass


class InvalidSearchRequest(ValidationError):
    pass


class NoValidSitesError(ValidationError):
    """선택된 사이트 중 활성 상태인 사이트가 하나도 없을 때 발생합니다."""

    pass


class BatchNotFoundError(ValidationError):
    pass


class BatchAlreadyProcessingError(ValidationError):
    pass


class InvalidJobTransition(ScreeningError, ValueError):
    """허용되지 않은 Job 상태 전이를 시도했을 때 발생합니다."""

    pass
