from dataclasses import dataclass


class Event:
    """모든 도메인 이벤트의 기본 클래스 (마커 인터페이스 역할)"""

    pass


@dataclass(frozen=True)
class JobQueued(Event):
    """Job이 실행 대기열에 들어갔을 때 발생하는 이벤트"""

    job_id: str
    job_type: str


@dataclass(frozen=True)
class JobStarted(Event):
    """Job이 실행 상태로 변경되었을 때 발생하는 이벤트"""

    job_id: str


@dataclass(frozen=True)
class JobCompleted(Event):
    """Job 핸들러가 정상적으로 끝났을 때 발생하는 이벤트"""

    job_id: str
    execution_time_ms: float | None


@dataclass(frozen=True)
class JobFailed(Event):
    """Job 핸들러가 예외로 끝났을 때 발생하는 이벤트"""

    job_id: str
    error: str


@dataclass(frozen=True)
class JobCancelled(Event):
    job_id: str
