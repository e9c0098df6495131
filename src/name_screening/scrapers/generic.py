"""범용 외부 스크레이퍼 프로세스

오케스트레이터가 실행하는 사이트 스크립트의 기본 구현입니다. `--config`로 전달된
launch_config의 `search_url` 템플릿에 검색어를 넣어 페이지를 가져오고, 결과 건수를
세어 표준 출력에 JSON 객체 하나를 출력합니다. 로그는 표준 에러로만 출력합니다.

launch_config 키:
    search_url: `{TERM}` 자리표시자를 가진 검색 URL (필수)
    result_pattern: 결과 항목 하나에 매칭되는 정규식 (http-client)
    result_selector: 결과 항목 하나에 매칭되는 CSS 선택자 (headless-browser)
    no_results_text: 페이지에 이 문구가 있으면 결과 없음으로 판단
    max_items: data에 담을 최대 항목 수 (기본 10)

사용 예::

    python -m name_screening.scrapers.generic --search-term="John Doe" --timeout=30 \\
        --config='{"search_url": "https://example.org/search?q={TERM}"}'
"""

from __future__ import annotations

import asyncio
import json
import re
import sys
from typing import Any
from urllib.parse import quote_plus

import click
import httpx
from loguru import logger

DEFAULT_MAX_ITEMS = 10
USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/131.0.0.0 Safari/537.36"
)
_TAGS = re.compile(r"<[^>]+>")


class ScraperConfigError(Exception):
    pass


def build_search_url(config: dict[str, Any], term: str) -> str:
    template = config.get("search_url")
    if not template:
        raise ScraperConfigError("search_url is required")
    return template.replace("{TERM}", quote_plus(term))


def analyze_text(text: str, term: str, config: dict[str, Any]) -> dict[str, Any]:
    """HTML/텍스트 본문에서 결과 건수를 셉니다.

    result_pattern이 있으면 매칭 수를, 없으면 검색어가 본문에 등장한 횟수를 사용합니다.
    """
    max_items = int(config.get("max_items", DEFAULT_MAX_ITEMS))
    no_results_text = config.get("no_results_text")
    if no_results_text and no_results_text.lower() in text.lower():
        return {"has_results": False, "results_count": 0, "data": {"items": []}}

    pattern = config.get("result_pattern")
    if pattern:
        matches = re.findall(pattern, text, flags=re.IGNORECASE | re.DOTALL)
        items = [
            _TAGS.sub("", m if isinstance(m, str) else " ".join(m)).strip()
            for m in matches
        ]
    else:
        items = re.findall(re.escape(term), _TAGS.sub(" ", text), flags=re.IGNORECASE)

    return {
        "has_results": bool(items),
        "results_count": len(items),
        "data": {"items": items[:max_items]},
    }


async def search_http(
    term: str,
    config: dict[str, Any],
    timeout: float,
    client: httpx.AsyncClient | None = None,
) -> dict[str, Any]:
    url = build_search_url(config, term)
    owns_client = client is None
    client = client or httpx.AsyncClient(
        headers={"User-Agent": USER_AGENT}, follow_redirects=True
    )
    try:
        response = await client.get(url, timeout=timeout)
        response.raise_for_status()
    finally:
        if owns_client:
            await client.aclose()

    result = analyze_text(response.text, term, config)
    result["direct_link"] = url
    return result


async def search_browser(
    term: str, config: dict[str, Any], timeout: float, headless: bool
) -> dict[str, Any]:
    from playwright.async_api import async_playwright

    url = build_search_url(config, term)
    selector = config.get("result_selector")
    max_items = int(config.get("max_items", DEFAULT_MAX_ITEMS))

    async with async_playwright() as playwright:
        browser = await playwright.chromium.launch(
            headless=headless,
            args=["--disable-blink-features=AutomationControlled"],
        )
        try:
            context = await browser.new_context(
                viewport={"width": 1920, "height": 1080}, user_agent=USER_AGENT
            )
            page = await context.new_page()
            await page.goto(url, timeout=timeout * 1000, wait_until="domcontentloaded")
            if not selector:
                result = analyze_text(await page.content(), term, config)
            else:
                locator = page.locator(selector)
                count = await locator.count()
                texts = [
                    (await locator.nth(i).inner_text()).strip()
                    for i in range(min(count, max_items))
                ]
                result = {
                    "has_results": count > 0,
                    "results_count": count,
                    "data": {"items": texts},
                }
        finally:
            await browser.close()

    result["direct_link"] = url
    return result


@click.command(help="Generic external site scraper")
@click.option("--search-term", required=True)
@click.option("--timeout", type=float, default=30.0, show_default=True)
@click.option("--headless", type=click.BOOL, default=None, help="Use a headless browser")
@click.option("--config", "config_json", default="{}", help="Site launch config as JSON")
def main(search_term, timeout, headless, config_json):
    logger.remove()
    logger.add(sys.stderr, level="WARNING")

    try:
        config = json.loads(config_json)
        if headless is None:
            result = asyncio.run(search_http(search_term, config, timeout))
        else:
            result = asyncio.run(search_browser(search_term, config, timeout, headless))
    except (ScraperConfigError, json.JSONDecodeError, httpx.HTTPError) as e:
        logger.error(f"scraper failed: {e.__class__.__name__}: {e}")
        raise SystemExit(1)

    click.echo(json.dumps(result, ensure_ascii=False))


if __name__ == "__main__":
    main()
