import pydantic
import pytest

from name_screening.infrastructure.config import QueueSettings, ScraperSettings, Settings


def test_defaults():
    settings = Settings()

    assert settings.queue.max_concurrent_jobs == 5
    assert settings.scrapers.max_concurrent == 3
    assert settings.scrapers.rate_limit_delay_ms == 2000
    assert settings.search.sync_site_threshold == 3
    assert settings.search.individual_search_priority == 3


def test_environment_overrides(monkeypatch):
    monkeypatch.setenv("SCRAPER_MAX_CONCURRENT", "7")
    monkeypatch.setenv("QUEUE_POLL_INTERVAL_SECONDS", "0.5")
    monkeypatch.setenv("SEARCH_DEFAULT_SIMILARITY_THRESHOLD", "85")

    settings = Settings()

    assert settings.scrapers.max_concurrent == 7
    assert settings.queue.poll_interval_seconds == 0.5
    assert settings.search.default_similarity_threshold == 85.0


@pytest.mark.parametrize(
    "factory, env, value",
    [
        (QueueSettings, "QUEUE_MAX_CONCURRENT_JOBS", "0"),
        (ScraperSettings, "SCRAPER_RATE_LIMIT_DELAY_MS", "-1"),
    ],
)
def test_out_of_range_values_are_rejected(monkeypatch, factory, env, value):
    monkeypatch.setenv(env, value)

    with pytest.raises(pydantic.ValidationError):
        factory()
