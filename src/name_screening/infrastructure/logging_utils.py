"""로깅 설정 및 트레이싱 유틸리티"""

from __future__ import annotations

import sys
import time
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any

from loguru import logger

if TYPE_CHECKING:
    from name_screening.infrastructure.config import LoggingSettings

CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | <level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - "
    "<level>{message}</level> | <yellow>{extra}</yellow>"
)


def configure_logging(settings: LoggingSettings) -> None:
    """loguru 싱크를 구성합니다. stderr 출력과 회전되는 JSON 파일 로그를 사용합니다."""
    logger.remove()
    if sys.stderr:
        logger.add(sys.stderr, level=settings.level, format=CONSOLE_FORMAT)

    if settings.directory is not None:
        settings.directory.mkdir(parents=True, exist_ok=True)
        logger.add(
            settings.directory / "screening.log",
            level=settings.file_level,
            rotation=settings.rotation,
            retention=settings.retention,
            encoding="utf-8",
            backtrace=True,
            diagnose=settings.diagnose,
            serialize=True,
        )
    logger.debug(
        "로깅 설정 완료",
        level=settings.level,
        directory=str(settings.directory),
        event_name="logging_configured",
    )


@contextmanager
def log_step(step_name: str, **extra_context: Any):
    """단계별 작업을 로깅하는 컨텍스트 매니저

    Usage:
        with log_step("사이트 그룹 실행", group=1):
            ...
    """
    logger.info(f"▶ {step_name}", **extra_context)
    start_time = time.perf_counter()

    try:
        yield
        elapsed = time.perf_counter() - start_time
        logger.info(
            f"✓ {step_name} completed in {elapsed:.3f}s",
            duration=elapsed,
            **extra_context,
        )
    except Exception as e:
        elapsed = time.perf_counter() - start_time
        logger.error(
            f"✗ {step_name} failed after {elapsed:.3f}s: {e.__class__.__name__}: {e}",
            duration=elapsed,
            error_type=e.__class__.__name__,
            **extra_context,
        )
        raise


class PerformanceTracker:
    """단계별 경과 시간을 기록하는 클래스"""

    def __init__(self, name: str):
        self.name = name
        self.start_time: float | None = None
        self.metrics: dict[str, float] = {}

    def start(self) -> None:
        self.start_time = time.perf_counter()
        logger.debug(f"Performance tracking started: {self.name}")

    def elapsed_ms(self) -> float:
        if self.start_time is None:
            return 0.0
        return round((time.perf_counter() - self.start_time) * 1000, 2)

    def end(self) -> dict[str, float]:
        """추적을 종료하고 경과 시간(초)을 반환합니다."""
        if self.start_time is None:
            logger.warning(f"PerformanceTracker.start() not called for {self.name}")
            return {}

        self.metrics["total"] = time.perf_counter() - self.start_time
        logger.info(
            f"Performance metrics for {self.name}",
            **{k: f"{v:.3f}s" for k, v in self.metrics.items()},
        )
        return self.metrics

