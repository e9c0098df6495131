import pytest

from name_screening.bootstrap import bootstrap
from name_screening.infrastructure.config import (
    DatabaseSettings,
    LoggingSettings,
    QueueSettings,
    ScraperSettings,
    SearchSettings,
    Settings,
)
from name_screening.infrastructure.context import ApplicationContext


@pytest.fixture
def settings(tmp_path) -> Settings:
    """인메모리 DB와 지연 없는 설정을 사용하는 Fixture."""
    return Settings(
        temp_dir=tmp_path / "temp",
        db=DatabaseSettings(url="sqlite://"),
        queue=QueueSettings(poll_interval_seconds=0.01),
        scrapers=ScraperSettings(rate_limit_delay_ms=0),
        search=SearchSettings(batch_processing_delay_ms=0),
        logging=LoggingSettings(directory=None),
    )


@pytest.fixture
async def screening_app(settings):
    async with ApplicationContext(settings) as context:
        yield bootstrap(context)
