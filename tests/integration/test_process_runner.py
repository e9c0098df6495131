"""실제 하위 프로세스를 실행하는 스크레이퍼 실행기 테스트"""

import json
import sys
from pathlib import Path

import pytest

from name_screening.domain.model import ScraperKind, ScraperSite, ScraperStatus
from name_screening.infrastructure.config import ScraperSettings
from name_screening.infrastructure.exceptions import SiteConfigurationError
from name_screening.infrastructure.scrapers.factory import create_default_factory
from name_screening.infrastructure.scrapers.orchestrator import ScraperOrchestrator
from name_screening.infrastructure.scrapers.process import (
    ProcessScraperRunner,
    normalize_site_name,
)

ECHO_ARGS = """
import json, sys
args = dict(a[2:].split("=", 1) for a in sys.argv[1:])
term = args["search-term"]
print(json.dumps({
    "has_results": True,
    "results_count": 2,
    "data": {"args": args},
    "direct_link": "https://example.org/?q=" + term,
}))
"""


def python_site(name: str, script: str, timeout: int = 10, **config) -> ScraperSite:
    return ScraperSite(
        name=name,
        category="tests",
        scraper_kind=ScraperKind.HTTP_CLIENT,
        timeout_seconds=timeout,
        launch_config={"command": [sys.executable, "-c", script], **config},
    )


@pytest.fixture
def runner() -> ProcessScraperRunner:
    return ProcessScraperRunner(ScraperSettings(), ScraperKind.HTTP_CLIENT)


async def test_successful_process_output_is_parsed(runner: ProcessScraperRunner):
    site = python_site("Echo", ECHO_ARGS, region="eu")

    result = await runner.run("Ana Diaz", site)

    assert result.status == ScraperStatus.COMPLETED
    assert result.has_results is True
    assert result.result_count == 2
    assert result.direct_link == "https://example.org/?q=Ana Diaz"
    args = result.result_payload["args"]
    assert args["search-term"] == "Ana Diaz"
    assert args["timeout"] == "10"
    assert json.loads(args["config"]) == {"region": "eu"}
    assert "headless" not in args


async def test_headless_flag_for_browser_sites():
    runner = ProcessScraperRunner(ScraperSettings(headless=False), ScraperKind.HEADLESS_BROWSER)

    result = await runner.run("Ana", python_site("Browser", ECHO_ARGS))

    assert result.result_payload["args"]["headless"] == "false"


async def test_timeout_kills_process_and_reports_timeout(runner: ProcessScraperRunner):
    site = python_site("Slow", "import time; time.sleep(30)", timeout=1)

    result = await runner.run("Ana", site)

    assert result.status == ScraperStatus.TIMEOUT
    assert result.has_results is False
    assert result.execution_time_ms < 10_000


@pytest.mark.parametrize(
    "script, expected",
    [
        ("import sys; sys.stderr.write('blocked'); sys.exit(3)", "exit code 3"),
        ("print('not json')", "invalid JSON"),
        ("pass", "no output"),
        ("print('[1, 2]')", "expected a JSON object"),
    ],
)
async def test_bad_processes_yield_failed_results(runner: ProcessScraperRunner, script, expected):
    result = await runner.run("Ana", python_site("Bad", script))

    assert result.status == ScraperStatus.FAILED
    assert expected in (result.error_detail or "")


async def test_missing_executable_is_failed_result(runner: ProcessScraperRunner):
    site = ScraperSite(
        name="Ghost",
        category="tests",
        scraper_kind=ScraperKind.HTTP_CLIENT,
        launch_config={"command": ["/nonexistent/scraper-binary"]},
    )

    result = await runner.run("Ana", site)

    assert result.status == ScraperStatus.FAILED
    assert "could not launch" in (result.error_detail or "")


def test_script_path_comes_from_category_and_normalized_name(tmp_path: Path):
    script = tmp_path / "sanctions" / "ofac-sdn-list.py"
    script.parent.mkdir()
    script.write_text(ECHO_ARGS)
    runner = ProcessScraperRunner(
        ScraperSettings(scripts_dir=tmp_path, interpreter=[sys.executable]),
        ScraperKind.HTTP_CLIENT,
    )
    site = ScraperSite(name="OFAC  SDN List!", category="sanctions", scraper_kind=ScraperKind.HTTP_CLIENT)

    argv = runner.build_command("Ana", site)

    assert normalize_site_name(site.name) == "ofac-sdn-list"
    assert argv[:2] == [sys.executable, str(script)]
    assert "--search-term=Ana" in argv


def test_missing_script_raises_configuration_error(tmp_path: Path):
    runner = ProcessScraperRunner(ScraperSettings(scripts_dir=tmp_path), ScraperKind.HTTP_CLIENT)
    site = ScraperSite(name="Nowhere", category="misc", scraper_kind=ScraperKind.HTTP_CLIENT)

    with pytest.raises(SiteConfigurationError):
        runner.build_command("Ana", site)


async def test_orchestrator_returns_one_result_per_site_with_real_processes():
    class StaticSites:
        async def active_sites(self):
            return [
                python_site("Good", ECHO_ARGS),
                python_site("Slow", "import time; time.sleep(30)", timeout=1),
                python_site("Broken", "raise SystemExit(2)"),
                ScraperSite(
                    name="Missing script",
                    category="nowhere",
                    scraper_kind=ScraperKind.HTTP_CLIENT,
                ),
            ]

    class NullNotifier:
        async def notify(self, *args, **kwargs):
            return None

    settings = ScraperSettings(max_concurrent=2, rate_limit_delay_ms=0)
    orchestrator = ScraperOrchestrator(
        StaticSites(), create_default_factory(settings), None, NullNotifier(), settings
    )

    outcome = await orchestrator.search_individual("Ana")

    statuses = {r.site_name: r.status for r in outcome.results}
    assert statuses == {
        "Good": ScraperStatus.COMPLETED,
        "Slow": ScraperStatus.TIMEOUT,
        "Broken": ScraperStatus.FAILED,
        "Missing script": ScraperStatus.FAILED,
    }
