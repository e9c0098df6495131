"""외부 스크레이퍼 프로세스 실행기

각 사이트는 별도 프로세스로 실행되고, 표준 출력으로 JSON 객체 하나를 출력해야 합니다::

    {"has_results": true, "results_count": 2, "data": {...}, "direct_link": "..."}
"""

from __future__ import annotations

import asyncio
import json
import re
import time
from pathlib import Path
from typing import Any

from loguru import logger

from name_screening.domain.model import (
    ScraperKind,
    ScraperResult,
    ScraperSite,
    ScraperStatus,
)
from name_screening.infrastructure.config import ScraperSettings
from name_screening.infrastructure.exceptions import (
    ScraperOutputError,
    SiteConfigurationError,
)

STDERR_TAIL_CHARS = 500


def normalize_site_name(name: str) -> str:
    """사이트 이름을 스크립트 파일 이름으로 변환합니다. ("OFAC SDN List" -> "ofac-sdn-list")"""
    normalized = re.sub(r"[^a-z0-9]", "-", name.lower())
    normalized = re.sub(r"-+", "-", normalized)
    return normalized.strip("-")


def parse_scraper_output(stdout: bytes) -> dict[str, Any]:
    text = stdout.decode("utf-8", errors="replace").strip()
    if not text:
        raise ScraperOutputError("scraper produced no output")
    try:
        payload = json.loads(text)
    except json.JSONDecodeError as e:
        raise ScraperOutputError(f"invalid JSON output: {e}") from e
    if not isinstance(payload, dict):
        raise ScraperOutputError(
            f"expected a JSON object, got {type(payload).__name__}"
        )
    return payload


class ProcessScraperRunner:
    """사이트당 하나의 외부 프로세스를 실행하고 타임아웃 안에 결과를 수집합니다."""

    def __init__(self, settings: ScraperSettings, kind: ScraperKind):
        self.settings = settings
        self.kind = kind

    def build_command(self, term: str, site: ScraperSite) -> list[str]:
        """실행할 argv를 만듭니다.

        launch_config에 "command"가 있으면 그대로 사용하고, 없으면
        `scripts_dir/<category>/<normalized-name>.py` 스크립트를 인터프리터로 실행합니다.
        """
        command = site.launch_config.get("command")
        if command:
            argv = [str(part) for part in command]
        else:
            script = (
                self.settings.scripts_dir
                / site.category
                / f"{normalize_site_name(site.name)}.py"
            )
            if not Path(script).is_file():
                raise SiteConfigurationError(f"scraper script not found: {script}")
            argv = [*self.settings.interpreter, str(script)]

        argv += [
            f"--search-term={term}",
            f"--timeout={site.timeout_seconds}",
        ]
        if self.kind == ScraperKind.HEADLESS_BROWSER:
            headless = site.launch_config.get("headless", self.settings.headless)
            argv.append(f"--headless={'true' if headless else 'false'}")
        config = {k: v for k, v in site.launch_config.items() if k != "command"}
        argv.append(f"--config={json.dumps(config, ensure_ascii=False)}")
        return argv

    async def run(self, term: str, site: ScraperSite) -> ScraperResult:
        argv = self.build_command(term, site)
        started = time.perf_counter()

        def elapsed_ms() -> float:
            return round((time.perf_counter() - started) * 1000, 2)

        logger.debug(
            "스크레이퍼 프로세스 시작",
            site=site.name,
            kind=self.kind.value,
            timeout=site.timeout_seconds,
            event_name="scraper_process_start",
        )
        try:
            process = await asyncio.create_subprocess_exec(
                *argv,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            logger.warning(
                "스크레이퍼 프로세스 실행 실패",
                site=site.name,
                error=str(e),
                error_type=e.__class__.__name__,
                event_name="scraper_spawn_failed",
            )
            return ScraperResult.failure(
                site, term, f"could not launch scraper: {e}", execution_time_ms=elapsed_ms()
            )

        try:
            stdout, stderr = await asyncio.wait_for(
                process.communicate(), timeout=site.timeout_seconds
            )
        except TimeoutError:
            try:
                process.kill()
            except ProcessLookupError:
                pass
            await process.wait()
            logger.warning(
                "스크레이퍼 타임아웃",
                site=site.name,
                timeout=site.timeout_seconds,
                event_name="scraper_timeout",
            )
            return ScraperResult.failure(
                site,
                term,
                f"timed out after {site.timeout_seconds}s",
                status=ScraperStatus.TIMEOUT,
                execution_time_ms=elapsed_ms(),
            )

        if process.returncode != 0:
            detail = stderr.decode("utf-8", errors="replace").strip()
            return ScraperResult.failure(
                site,
                term,
                f"exit code {process.returncode}: {detail[-STDERR_TAIL_CHARS:] or 'no stderr'}",
                execution_time_ms=elapsed_ms(),
            )

        try:
            payload = parse_scraper_output(stdout)
        except ScraperOutputError as e:
            return ScraperResult.failure(site, term, str(e), execution_time_ms=elapsed_ms())

        data = payload.get("data") or {}
        return ScraperResult(
            site_name=site.name,
            category=site.category,
            query=term,
            has_results=bool(payload.get("has_results", False)),
            result_count=int(payload.get("results_count", 0) or 0),
            result_payload=data if isinstance(data, dict) else {"items": data},
            status=ScraperStatus.COMPLETED,
            execution_time_ms=elapsed_ms(),
            direct_link=payload.get("direct_link"),
        )
