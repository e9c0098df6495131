"""screening 명령줄 진입점

Job 테이블은 프로세스 메모리에만 존재하므로, 큐에 들어간 작업은 같은 명령 안에서
워커를 할 일이 없어질 때까지 구동해 처리합니다.
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Any

import click

from name_screening.application.commands import (
    BatchSearchRequest,
    IndividualSearchRequest,
)
from name_screening.bootstrap import Application, bootstrap
from name_screening.domain.exceptions import ScreeningError
from name_screening.domain.model import ScraperKind, ScraperSite, SearchMode
from name_screening.infrastructure.config import get_settings
from name_screening.infrastructure.context import ApplicationContext
from name_screening.infrastructure.logging_utils import configure_logging
from name_screening.infrastructure.record_files import CsvRecordFileReader


def _echo_json(data: Any) -> None:
    click.echo(json.dumps(data, ensure_ascii=False, indent=2, default=str))


def _run(action: Callable[[Application], Awaitable[Any]]) -> Any:
    async def _main() -> Any:
        async with ApplicationContext(get_settings()) as context:
            return await action(bootstrap(context))

    try:
        return asyncio.run(_main())
    except ScreeningError as e:
        click.secho(f"Error: {e}", fg="red", err=True)
        raise SystemExit(1)


async def _run_jobs(app: Application, job_ids: list[str]) -> list[dict[str, Any]]:
    await app.worker.run(until_idle=True)
    snapshots = [app.queue.status(job_id) for job_id in job_ids]
    return [s.to_dict() for s in snapshots if s is not None]


@click.group(help="screening: name screening against local records and external sites")
def cli():
    configure_logging(get_settings().logging)


@cli.command("init-db", help="Create database tables")
def init_db_cmd():
    async def action(app: Application) -> None:
        return None

    _run(action)
    click.secho(f"Database ready: {get_settings().db.url}", fg="green")


# ---------- Sites ----------
@cli.command("sites", help="List active external sites by category")
def sites_cmd():
    async def action(app: Application):
        return await app.orchestrator.sites_by_category()

    categories = _run(action)
    if not categories:
        click.secho("No active sites.", fg="yellow")
        return
    for category, sites in sorted(categories.items()):
        click.secho(category, fg="cyan", bold=True)
        for site in sites:
            click.echo(f"  {site.name:<30} {site.scraper_kind.value:<16} {site.timeout_seconds}s")


@cli.command("add-site", help="Register an external site")
@click.argument("name")
@click.option("--category", required=True, help="Site category, e.g. sanctions")
@click.option(
    "--kind",
    type=click.Choice([k.value for k in ScraperKind]),
    default=ScraperKind.DIRECT_LINK.value,
    show_default=True,
)
@click.option("--timeout", type=int, default=None, help="Per-site timeout in seconds")
@click.option("--config", "config_json", default="{}", help="Launch config as JSON")
def add_site_cmd(name, category, kind, timeout, config_json):
    try:
        launch_config = json.loads(config_json)
    except json.JSONDecodeError as e:
        raise click.BadParameter(f"invalid JSON: {e}", param_hint="--config")

    site = ScraperSite(
        name=name,
        category=category,
        scraper_kind=ScraperKind(kind),
        timeout_seconds=timeout or get_settings().scrapers.default_timeout_seconds,
        launch_config=launch_config,
    )

    async def action(app: Application) -> None:
        await app.sites.add_site(site)

    _run(action)
    click.secho(f"Added site {name} ({kind})", fg="green")


@cli.command("import-local", help="Load local reference records from a CSV file")
@click.argument("file_path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--source", default=None, help="Source name stored with each record")
def import_local_cmd(file_path, source):
    async def action(app: Application) -> int:
        records = CsvRecordFileReader().read(file_path)
        for record in records:
            record["source_name"] = source or file_path.stem
            record["additional_data"] = record.pop("original_row_data", {})
        return await app.similarity.add_records(records)

    count = _run(action)
    click.secho(f"Imported {count} local records", fg="green")


# ---------- Search ----------
@cli.command("search", help="Search one name or identification")
@click.argument("term")
@click.option(
    "--type",
    "search_type",
    type=click.Choice([m.value for m in SearchMode]),
    default=SearchMode.NAME.value,
    show_default=True,
)
@click.option("--threshold", type=float, default=None, help="Minimum similarity (0-100)")
@click.option("--identification", default=None)
@click.option("--external/--no-external", default=False, show_default=True)
@click.option("--site", "sites", multiple=True, help="External site name (repeatable)")
def search_cmd(term, search_type, threshold, identification, external, sites):
    request = IndividualSearchRequest(
        search_term=term,
        search_type=search_type,
        similarity_threshold=threshold,
        include_external=external,
        selected_sites=list(sites),
        identification=identification,
    )

    async def action(app: Application):
        result = await app.dispatcher.search_individual(request)
        if result.processed_immediately:
            return result.results
        click.secho(f"Queued as {result.job_id}", fg="cyan", err=True)
        return await _run_jobs(app, [result.job_id])

    _echo_json(_run(action))


@cli.command("create-batch", help="Create a search batch from a CSV file")
@click.argument("file_path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--name", "batch_name", default=None, help="Batch name (defaults to file name)")
def create_batch_cmd(file_path, batch_name):
    async def action(app: Application):
        job_id = await app.dispatcher.create_batch(file_path, batch_name)
        return await _run_jobs(app, [job_id])

    _echo_json(_run(action))


@cli.command("batch-search", help="Run local and external search for a batch")
@click.argument("batch_id")
@click.option("--local/--no-local", default=True, show_default=True)
@click.option("--external/--no-external", default=False, show_default=True)
@click.option("--site", "sites", multiple=True, help="External site name (repeatable)")
@click.option("--threshold", type=float, default=None)
@click.option("--priority", type=int, default=2, show_default=True)
def batch_search_cmd(batch_id, local, external, sites, threshold, priority):
    request = BatchSearchRequest(
        batch_id=batch_id,
        include_local=local,
        include_external=external,
        selected_sites=list(sites),
        similarity_threshold=threshold,
        priority=priority,
    )

    async def action(app: Application):
        result = await app.dispatcher.search_batch(request)
        click.secho(
            f"Queued {result.job_ids} (estimated {result.estimated_time_seconds}s)",
            fg="cyan",
            err=True,
        )
        return await _run_jobs(app, list(result.job_ids.values()))

    _echo_json(_run(action))


# ---------- Worker ----------
@cli.command("worker", help="Run the queue worker with periodic cleanup until interrupted")
@click.option(
    "--cleanup-every",
    type=float,
    default=3600.0,
    show_default=True,
    help="Seconds between scheduled cleanup jobs",
)
def worker_cmd(cleanup_every):
    async def action(app: Application) -> None:
        app.worker.install_signal_handlers()

        async def schedule_cleanups() -> None:
            while not app.worker.stopping:
                await app.dispatcher.schedule_cleanup("all", delay=cleanup_every)
                await asyncio.sleep(cleanup_every)

        scheduler = asyncio.create_task(schedule_cleanups())
        try:
            await app.worker.run()
        finally:
            scheduler.cancel()

    click.secho("Worker started. Press Ctrl+C to stop…", fg="cyan")
    _run(action)
    click.secho("Worker stopped.", fg="yellow")


def main():
    cli()
