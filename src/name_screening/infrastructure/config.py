"""애플리케이션 설정.

pydantic-settings로 환경 변수와 `.env` 파일을 읽습니다. 코어 컴포넌트는 이 모듈의
전역 값을 직접 읽지 않고, ApplicationContext를 통해 전달받은 Settings만 사용합니다.
"""
from __future__ import annotations

import sys
from functools import lru_cache
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class DatabaseSettings(BaseSettings):
    """Database configuration."""
    model_config = SettingsConfigDict(env_prefix="DB_", extra="ignore")

    url: str = Field(default="sqlite:///screening.db")
    echo: bool = Field(default=False)


class QueueSettings(BaseSettings):
    """Job queue configuration."""
    model_config = SettingsConfigDict(env_prefix="QUEUE_", extra="ignore")

    max_concurrent_jobs: int = Field(default=5, ge=1, le=100)
    poll_interval_seconds: float = Field(default=1.0, gt=0)
    retention_seconds: int = Field(
        default=3600, ge=0, description="Age after which terminal jobs are swept"
    )
    sweep_interval_seconds: float = Field(default=300.0, gt=0)


class ScraperSettings(BaseSettings):
    """External scraper configuration."""
    model_config = SettingsConfigDict(env_prefix="SCRAPER_", extra="ignore")

    max_concurrent: int = Field(default=3, ge=1, le=50)
    rate_limit_delay_ms: int = Field(default=2000, ge=0)
    default_timeout_seconds: int = Field(default=30, ge=1)
    batch_size: int = Field(default=50, ge=1)
    scripts_dir: Path = Field(default=Path("scrapers"))
    interpreter: list[str] = Field(
        default_factory=lambda: [sys.executable],
        description="argv prefix used to launch scraper scripts",
    )
    headless: bool = Field(default=True)


class SearchSettings(BaseSettings):
    """Local search and dispatch configuration."""
    model_config = SettingsConfigDict(env_prefix="SEARCH_", extra="ignore")

    default_similarity_threshold: float = Field(default=70.0, ge=0.0, le=100.0)
    max_results: int = Field(default=50, ge=1)
    max_results_per_record: int = Field(default=10, ge=1)
    max_batch_size: int = Field(default=500, ge=1)
    batch_processing_delay_ms: int = Field(default=100, ge=0)
    sync_site_threshold: int = Field(
        default=3, ge=0, description="Largest site fan-out executed synchronously"
    )
    individual_search_priority: int = Field(default=3)


class LoggingSettings(BaseSettings):
    """Logging configuration."""
    model_config = SettingsConfigDict(env_prefix="LOG_", extra="ignore")

    level: str = Field(default="INFO")
    file_level: str = Field(default="DEBUG")
    directory: Path | None = Field(default=Path("logs"))
    rotation: str = Field(default="10 MB")
    retention: str = Field(default="7 days")
    diagnose: bool = Field(default=False)


class Settings(BaseSettings):
    """Main application settings."""
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    app_name: str = Field(default="Name Screening")
    temp_dir: Path = Field(default=Path("uploads/temp"))

    db: DatabaseSettings = Field(default_factory=DatabaseSettings)
    queue: QueueSettings = Field(default_factory=QueueSettings)
    scrapers: ScraperSettings = Field(default_factory=ScraperSettings)
    search: SearchSettings = Field(default_factory=SearchSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Cached settings instance for entry points."""
    return Settings()
