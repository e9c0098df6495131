from datetime import datetime, timedelta

import pytest
from sqlalchemy import select, update

from name_screening.domain.model import (
    BatchStatus,
    LocalMatch,
    RecordStatus,
    ScraperKind,
    ScraperResult,
    ScraperSite,
    ScraperStatus,
)
from name_screening.infrastructure.exceptions import StoreUnavailableError
from name_screening.infrastructure.persistence.database import (
    create_tables,
    drop_tables,
    get_engine,
    get_session_factory,
)
from name_screening.infrastructure.persistence.orm import (
    external_results_table,
    notifications_table,
    search_batches_table,
    search_results_table,
)
from name_screening.infrastructure.persistence.repositories import (
    SqlAlchemyBulkRecordStore,
    SqlAlchemyNotificationSink,
    SqlAlchemyScraperSiteRepository,
    SqlAlchemySimilarityStore,
)


@pytest.fixture
def engine():
    """In-memory SQLite 엔진을 제공하는 Fixture"""
    engine = get_engine("sqlite:///:memory:")
    create_tables(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return get_session_factory(engine)


def result_for(site_name: str, has_results: bool = False) -> ScraperResult:
    return ScraperResult(
        site_name=site_name,
        category="sanctions",
        query="Ana Diaz",
        has_results=has_results,
        result_count=1 if has_results else 0,
        result_payload={"items": ["x"]} if has_results else {},
        status=ScraperStatus.COMPLETED,
        execution_time_ms=12.5,
    )


async def test_site_repository_round_trip(session_factory):
    repo = SqlAlchemyScraperSiteRepository(session_factory)
    await repo.add_site(
        ScraperSite(
            name="OFAC",
            category="sanctions",
            scraper_kind=ScraperKind.HEADLESS_BROWSER,
            timeout_seconds=45,
            launch_config={"search_url": "https://x/{TERM}"},
        )
    )
    await repo.add_site(
        ScraperSite(name="Registry", category="public", scraper_kind=ScraperKind.DIRECT_LINK)
    )

    sites = await repo.active_sites()
    assert [s.name for s in sites] == ["Registry", "OFAC"]
    ofac = sites[1]
    assert ofac.scraper_kind == ScraperKind.HEADLESS_BROWSER
    assert ofac.timeout_seconds == 45
    assert ofac.launch_config == {"search_url": "https://x/{TERM}"}

    assert await repo.set_active("Registry", False) is True
    assert await repo.update_config("OFAC", {"search_url": "https://y/{TERM}"}) is True
    assert await repo.set_active("unknown", False) is False
    sites = await repo.active_sites()
    assert [s.name for s in sites] == ["OFAC"]
    assert sites[0].launch_config["search_url"] == "https://y/{TERM}"


async def test_duplicate_site_name_is_store_error(session_factory):
    repo = SqlAlchemyScraperSiteRepository(session_factory)
    site = ScraperSite(name="OFAC", category="sanctions", scraper_kind=ScraperKind.DIRECT_LINK)
    await repo.add_site(site)

    with pytest.raises(StoreUnavailableError):
        await repo.add_site(site)


async def test_batch_creation_and_local_pending_flow(session_factory):
    store = SqlAlchemyBulkRecordStore(session_factory)
    batch_id = await store.create_batch(
        "march",
        [
            {"full_name": "Ana Diaz", "identification": "123"},
            {"full_name": "Luis Paz", "identification": ""},
            {"full_name": "Eva Ruiz"},
        ],
        source_file="march.csv",
    )

    progress = await store.batch_progress(batch_id)
    assert progress is not None
    assert progress.status == BatchStatus.CREATED
    assert progress.total_records == 3
    assert progress.processed_records == 0

    pending = await store.pending_local_records(batch_id, 2)
    assert [r.full_name for r in pending] == ["Ana Diaz", "Luis Paz"]
    assert pending[1].identification is None

    await store.record_status_update(pending[0].id, RecordStatus.COMPLETED)
    await store.record_status_update(pending[1].id, RecordStatus.ERROR, "bad row")
    assert await store.has_pending_local(batch_id) is True
    progress = await store.batch_progress(batch_id)
    assert progress.processed_records == 2

    await store.mark_batch(batch_id, BatchStatus.PROCESSING)
    assert (await store.batch_progress(batch_id)).status == BatchStatus.PROCESSING
    assert await store.batch_progress("missing") is None


async def test_save_local_results(session_factory):
    store = SqlAlchemyBulkRecordStore(session_factory)
    batch_id = await store.create_batch("b", [{"full_name": "Ana"}], None)
    record = (await store.pending_local_records(batch_id, 10))[0]
    match = LocalMatch(
        record_id="local-1",
        full_name="ANA",
        identification=None,
        source_name="list",
        name_similarity=100.0,
        id_similarity=0.0,
        combined_score=100.0,
        match_type="high_similarity",
    )

    await store.save_local_results(record.id, [match])
    await store.save_local_results(record.id, [])

    with session_factory() as session:
        rows = session.execute(select(search_results_table)).mappings().all()
    assert len(rows) == 1
    assert rows[0]["similarity_percentage"] == 100.0
    assert rows[0]["match_type"] == "high_similarity"


async def test_external_pending_and_per_site_dedup(session_factory):
    store = SqlAlchemyBulkRecordStore(session_factory)
    batch_id = await store.create_batch(
        "b", [{"full_name": "Ana Diaz"}, {"full_name": "Luis Paz"}], None
    )
    first, second = await store.pending_records(batch_id, 10)
    assert await store.has_pending(batch_id) is True

    await store.save_external_results(first.id, [result_for("OFAC", True), result_for("UN")])
    await store.save_external_results(first.id, [result_for("OFAC"), result_for("EU")])

    rows = await store.external_results_for(first.id)
    assert [r["site_name"] for r in rows] == ["EU", "OFAC", "UN"]
    assert next(r for r in rows if r["site_name"] == "OFAC")["has_results"] is True

    assert [r.id for r in await store.pending_records(batch_id, 10)] == [second.id]
    await store.save_external_results(second.id, [result_for("OFAC")])
    assert await store.has_pending(batch_id) is False


async def test_cleanup_completed_batches_removes_children(session_factory):
    store = SqlAlchemyBulkRecordStore(session_factory)
    old = await store.create_batch("old", [{"full_name": "Ana"}], None)
    fresh = await store.create_batch("fresh", [{"full_name": "Eva"}], None)
    old_record = (await store.pending_records(old, 1))[0]
    await store.save_external_results(old_record.id, [result_for("OFAC")])
    await store.mark_batch(old, BatchStatus.COMPLETED)
    await store.mark_batch(fresh, BatchStatus.COMPLETED)
    with session_factory() as session, session.begin():
        session.execute(
            update(search_batches_table)
            .where(search_batches_table.c.id == old)
            .values(completed_at=datetime.now() - timedelta(days=40))
        )

    removed = await store.cleanup_completed_batches(timedelta(days=30))

    assert removed == 1
    assert await store.batch_progress(old) is None
    assert await store.batch_progress(fresh) is not None
    with session_factory() as session:
        assert session.execute(select(external_results_table)).all() == []


async def test_similarity_store_ranks_and_filters(session_factory):
    store = SqlAlchemySimilarityStore(session_factory)
    await store.add_records(
        [
            {"full_name": "Ana Diaz", "identification": "12345", "source_name": "list"},
            {"full_name": "Ana Dias", "identification": "99999"},
            {"full_name": "Pedro Gomez", "identification": "55555"},
        ]
    )

    matches = await store.search_by_similarity("ana diaz", None, 70, 10)

    assert [m.full_name for m in matches] == ["Ana Diaz", "Ana Dias"]
    assert matches[0].name_similarity == 100.0
    assert matches[0].combined_score == 100.0
    assert matches[1].combined_score < 100.0

    weighted = await store.search_by_similarity("Ana Diaz", "12345", 0, 1)
    assert len(weighted) == 1
    assert weighted[0].combined_score == 100.0

    by_id = await store.search_by_similarity("", "55555", 90, 10)
    assert [m.full_name for m in by_id] == ["Pedro Gomez"]


async def test_find_by_identification_is_case_insensitive(session_factory):
    store = SqlAlchemySimilarityStore(session_factory)
    await store.add_records([{"full_name": "Ana Diaz", "identification": "ab-12"}])

    matches = await store.find_by_identification("AB-12", 5)

    assert len(matches) == 1
    assert matches[0].id_similarity == 100.0


async def test_notification_sink(session_factory):
    sink = SqlAlchemyNotificationSink(session_factory)
    await sink.notify("progress", "Local search", "5 of 10", progress=(5, 10), batch_id="b1")
    await sink.notify("success", "Done", "finished")

    unread = await sink.unread()
    assert {n["title"] for n in unread} == {"Local search", "Done"}
    progress = next(n for n in unread if n["type"] == "progress")
    assert (progress["progress_current"], progress["progress_total"]) == (5, 10)

    await sink.mark_read([progress["id"]])
    assert len(await sink.unread()) == 1
    assert await sink.cleanup_read(timedelta(days=7)) == 0
    assert await sink.cleanup_read(timedelta(seconds=-1)) == 1

    with session_factory() as session:
        assert len(session.execute(select(notifications_table)).all()) == 1


async def test_notify_never_raises_when_store_is_down(engine, session_factory):
    sink = SqlAlchemyNotificationSink(session_factory)
    drop_tables(engine)

    await sink.notify("error", "x", "y")

    with pytest.raises(StoreUnavailableError):
        await sink.unread()
