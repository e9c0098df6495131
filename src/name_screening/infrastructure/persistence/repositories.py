"""협력자 프로토콜(domain.stores)의 SQLAlchemy 구현체"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timedelta
from difflib import SequenceMatcher
from typing import Any

from loguru import logger
from sqlalchemy import delete, func, insert, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from name_screening.domain.model import (
    BatchProgress,
    BatchStatus,
    LocalMatch,
    RecordStatus,
    ScraperKind,
    ScraperResult,
    ScraperSite,
    SearchRecord,
)
from name_screening.infrastructure.exceptions import StoreUnavailableError
from name_screening.infrastructure.persistence.orm import (
    bulk_searches_table,
    external_results_table,
    local_records_table,
    new_id,
    notifications_table,
    scraper_sites_table,
    search_batches_table,
    search_results_table,
)


class _SqlAlchemyStore:
    def __init__(self, session_factory: sessionmaker[Session]):
        self.session_factory = session_factory

    @contextmanager
    def _transaction(self) -> Iterator[Session]:
        """세션을 열고 트랜잭션 안에서 실행합니다. DB 오류는 StoreUnavailableError로 변환됩니다."""
        try:
            with self.session_factory() as session, session.begin():
                yield session
        except SQLAlchemyError as e:
            logger.error(
                "DB 작업 실패",
                store=type(self).__name__,
                error=str(e),
                error_type=e.__class__.__name__,
                event_name="store_error",
            )
            raise StoreUnavailableError(f"{type(self).__name__}: {e}") from e


class SqlAlchemyScraperSiteRepository(_SqlAlchemyStore):
    async def active_sites(self) -> list[ScraperSite]:
        with self._transaction() as session:
            rows = session.execute(
                select(scraper_sites_table)
                .where(scraper_sites_table.c.is_active.is_(True))
                .order_by(scraper_sites_table.c.category, scraper_sites_table.c.site_name)
            ).mappings()
            return [self._to_site(row) for row in rows]

    async def add_site(self, site: ScraperSite) -> None:
        with self._transaction() as session:
            session.execute(
                insert(scraper_sites_table).values(
                    site_name=site.name,
                    category=site.category,
                    scraper_kind=site.scraper_kind,
                    timeout_seconds=site.timeout_seconds,
                    launch_config=site.launch_config,
                    is_active=site.is_active,
                )
            )
        logger.info("스크레이퍼 사이트 등록", site=site.name, event_name="site_added")

    async def set_active(self, site_name: str, is_active: bool) -> bool:
        with self._transaction() as session:
            result = session.execute(
                update(scraper_sites_table)
                .where(scraper_sites_table.c.site_name == site_name)
                .values(is_active=is_active, updated_at=datetime.now())
            )
            return result.rowcount > 0

    async def update_config(self, site_name: str, launch_config: dict[str, Any]) -> bool:
        with self._transaction() as session:
            result = session.execute(
                update(scraper_sites_table)
                .where(scraper_sites_table.c.site_name == site_name)
                .values(launch_config=launch_config, updated_at=datetime.now())
            )
            return result.rowcount > 0

    @staticmethod
    def _to_site(row) -> ScraperSite:
        return ScraperSite(
            name=row["site_name"],
            category=row["category"],
            scraper_kind=ScraperKind(row["scraper_kind"]),
            timeout_seconds=row["timeout_seconds"],
            launch_config=dict(row["launch_config"] or {}),
            is_active=row["is_active"],
        )


class SqlAlchemyBulkRecordStore(_SqlAlchemyStore):
    async def create_batch(
        self, batch_name: str, records: list[dict[str, Any]], source_file: str | None
    ) -> str:
        batch_id = new_id()
        with self._transaction() as session:
            session.execute(
                insert(search_batches_table).values(
                    id=batch_id,
                    batch_name=batch_name,
                    original_filename=source_file,
                    total_records=len(records),
                    status=BatchStatus.CREATED,
                )
            )
            if records:
                session.execute(
                    insert(bulk_searches_table),
                    [
                        {
                            "id": new_id(),
                            "batch_id": batch_id,
                            "position": position,
                            "full_name": record["full_name"],
                            "identification": record.get("identification") or None,
                            "status": RecordStatus.PENDING,
                            "original_row_data": record.get("original_row_data"),
                        }
                        for position, record in enumerate(records)
                    ],
                )
        logger.info(
            "배치 생성",
            batch_id=batch_id,
            total_records=len(records),
            event_name="batch_created",
        )
        return batch_id

    async def batch_progress(self, batch_id: str) -> BatchProgress | None:
        with self._transaction() as session:
            batch = (
                session.execute(
                    select(search_batches_table).where(
                        search_batches_table.c.id == batch_id
                    )
                )
                .mappings()
                .first()
            )
            if batch is None:
                return None
            processed = session.execute(
                select(func.count())
                .select_from(bulk_searches_table)
                .where(
                    bulk_searches_table.c.batch_id == batch_id,
                    bulk_searches_table.c.status.in_(
                        [RecordStatus.COMPLETED, RecordStatus.ERROR]
                    ),
                )
            ).scalar_one()
            return BatchProgress(
                batch_id=batch["id"],
                batch_name=batch["batch_name"],
                status=BatchStatus(batch["status"]),
                total_records=batch["total_records"],
                processed_records=processed,
            )

    async def mark_batch(self, batch_id: str, status: BatchStatus) -> None:
        values: dict[str, Any] = {"status": status}
        if status == BatchStatus.PROCESSING:
            values["started_at"] = datetime.now()
        elif status == BatchStatus.COMPLETED:
            values["completed_at"] = datetime.now()
        with self._transaction() as session:
            session.execute(
                update(search_batches_table)
                .where(search_batches_table.c.id == batch_id)
                .values(**values)
            )

    async def pending_local_records(
        self, batch_id: str, limit: int
    ) -> list[SearchRecord]:
        with self._transaction() as session:
            rows = session.execute(
                select(bulk_searches_table)
                .where(
                    bulk_searches_table.c.batch_id == batch_id,
                    bulk_searches_table.c.status == RecordStatus.PENDING,
                )
                .order_by(bulk_searches_table.c.position)
                .limit(limit)
            ).mappings()
            return [self._to_record(row) for row in rows]

    async def has_pending_local(self, batch_id: str) -> bool:
        with self._transaction() as session:
            count = session.execute(
                select(func.count())
                .select_from(bulk_searches_table)
                .where(
                    bulk_searches_table.c.batch_id == batch_id,
                    bulk_searches_table.c.status == RecordStatus.PENDING,
                )
            ).scalar_one()
            return count > 0

    async def record_status_update(
        self, record_id: str, status: RecordStatus, error: str | None = None
    ) -> None:
        with self._transaction() as session:
            session.execute(
                update(bulk_searches_table)
                .where(bulk_searches_table.c.id == record_id)
                .values(status=status, error_message=error, processed_at=datetime.now())
            )

    async def save_local_results(
        self, record_id: str, matches: list[LocalMatch]
    ) -> None:
        if not matches:
            return
        with self._transaction() as session:
            session.execute(
                insert(search_results_table),
                [
                    {
                        "bulk_search_id": record_id,
                        "local_record_id": match.record_id,
                        "similarity_percentage": match.combined_score,
                        "match_type": match.match_type,
                        "similarity_details": match.to_dict()["similarity_scores"],
                    }
                    for match in matches
                ],
            )

    def _external_pending_clause(self, batch_id: str):
        answered = select(external_results_table.c.bulk_search_id).distinct()
        return (
            bulk_searches_table.c.batch_id == batch_id,
            bulk_searches_table.c.id.not_in(answered),
        )

    async def pending_records(self, batch_id: str, limit: int) -> list[SearchRecord]:
        with self._transaction() as session:
            rows = session.execute(
                select(bulk_searches_table)
                .where(*self._external_pending_clause(batch_id))
                .order_by(bulk_searches_table.c.position)
                .limit(limit)
            ).mappings()
            return [self._to_record(row) for row in rows]

    async def has_pending(self, batch_id: str) -> bool:
        with self._transaction() as session:
            count = session.execute(
                select(func.count())
                .select_from(bulk_searches_table)
                .where(*self._external_pending_clause(batch_id))
            ).scalar_one()
            return count > 0

    async def save_external_results(
        self, record_id: str, results: list[ScraperResult]
    ) -> None:
        """이미 결과가 있는 사이트는 건너뛰고 새 사이트의 결과만 저장합니다."""
        if not results:
            return
        with self._transaction() as session:
            existing = set(
                session.execute(
                    select(external_results_table.c.site_name).where(
                        external_results_table.c.bulk_search_id == record_id
                    )
                ).scalars()
            )
            rows = []
            for result in results:
                if result.site_name in existing:
                    continue
                existing.add(result.site_name)
                rows.append(
                    {
                        "bulk_search_id": record_id,
                        "site_name": result.site_name,
                        "site_category": result.category,
                        "search_query": result.query,
                        "has_results": result.has_results,
                        "results_count": result.result_count,
                        "results_data": result.result_payload,
                        "scraper_status": result.status,
                        "direct_link": result.direct_link,
                        "execution_time_ms": result.execution_time_ms,
                        "error_details": result.error_detail,
                    }
                )
            if rows:
                session.execute(insert(external_results_table), rows)

    async def external_results_for(self, record_id: str) -> list[dict[str, Any]]:
        with self._transaction() as session:
            rows = session.execute(
                select(external_results_table)
                .where(external_results_table.c.bulk_search_id == record_id)
                .order_by(external_results_table.c.site_name)
            ).mappings()
            return [dict(row) for row in rows]

    async def cleanup_completed_batches(self, older_than: timedelta) -> int:
        cutoff = datetime.now() - older_than
        with self._transaction() as session:
            old_batches = select(search_batches_table.c.id).where(
                search_batches_table.c.status == BatchStatus.COMPLETED,
                search_batches_table.c.completed_at < cutoff,
            )
            old_records = select(bulk_searches_table.c.id).where(
                bulk_searches_table.c.batch_id.in_(old_batches)
            )
            session.execute(
                delete(external_results_table).where(
                    external_results_table.c.bulk_search_id.in_(old_records)
                )
            )
            session.execute(
                delete(search_results_table).where(
                    search_results_table.c.bulk_search_id.in_(old_records)
                )
            )
            session.execute(
                delete(bulk_searches_table).where(
                    bulk_searches_table.c.batch_id.in_(old_batches)
                )
            )
            result = session.execute(
                delete(search_batches_table).where(
                    search_batches_table.c.id.in_(old_batches)
                )
            )
            return result.rowcount

    @staticmethod
    def _to_record(row) -> SearchRecord:
        return SearchRecord(
            id=row["id"],
            batch_id=row["batch_id"],
            full_name=row["full_name"],
            identification=row["identification"],
            status=RecordStatus(row["status"]),
        )


def _ratio(a: str, b: str) -> float:
    if not a or not b:
        return 0.0
    return round(SequenceMatcher(None, a.upper(), b.upper()).ratio() * 100, 2)


class SqlAlchemySimilarityStore(_SqlAlchemyStore):
    """로컬 레코드를 읽어 파이썬에서 문자열 유사도를 계산하는 저장소.

    이름만 주어지면 이름 유사도가 곧 종합 점수이고, 식별번호도 주어지면
    이름 70%, 식별번호 30% 가중 평균을 종합 점수로 사용합니다.
    """

    NAME_WEIGHT = 0.7

    async def add_records(self, records: list[dict[str, Any]]) -> int:
        if not records:
            return 0
        with self._transaction() as session:
            session.execute(
                insert(local_records_table),
                [
                    {
                        "id": record.get("id") or new_id(),
                        "full_name": record["full_name"],
                        "identification": record.get("identification"),
                        "source_name": record.get("source_name"),
                        "additional_data": record.get("additional_data", {}),
                        "is_active": True,
                    }
                    for record in records
                ],
            )
        return len(records)

    async def search_by_similarity(
        self,
        name: str,
        identification: str | None,
        min_score: float,
        limit: int,
    ) -> list[LocalMatch]:
        with self._transaction() as session:
            rows = session.execute(
                select(local_records_table).where(
                    local_records_table.c.is_active.is_(True)
                )
            ).mappings()
            matches = []
            for row in rows:
                name_score = _ratio(name, row["full_name"])
                id_score = _ratio(identification or "", row["identification"] or "")
                if name and identification:
                    combined = round(
                        name_score * self.NAME_WEIGHT + id_score * (1 - self.NAME_WEIGHT),
                        2,
                    )
                elif name:
                    combined = name_score
                else:
                    combined = id_score
                if combined < min_score:
                    continue
                matches.append(self._to_match(row, name_score, id_score, combined))

        matches.sort(key=lambda m: m.combined_score, reverse=True)
        return matches[:limit]

    async def find_by_identification(
        self, identification: str, limit: int
    ) -> list[LocalMatch]:
        with self._transaction() as session:
            rows = session.execute(
                select(local_records_table)
                .where(
                    func.upper(local_records_table.c.identification)
                    == identification.upper(),
                    local_records_table.c.is_active.is_(True),
                )
                .limit(limit)
            ).mappings()
            return [self._to_match(row, 100.0, 100.0, 100.0) for row in rows]

    @staticmethod
    def _to_match(row, name_score: float, id_score: float, combined: float) -> LocalMatch:
        return LocalMatch(
            record_id=row["id"],
            full_name=row["full_name"],
            identification=row["identification"],
            source_name=row["source_name"],
            name_similarity=name_score,
            id_similarity=id_score,
            combined_score=combined,
            additional_data=dict(row["additional_data"] or {}),
        )


class SqlAlchemyNotificationSink(_SqlAlchemyStore):
    async def notify(
        self,
        type: str,
        title: str,
        message: str,
        progress: tuple[int, int] | None = None,
        batch_id: str | None = None,
    ) -> None:
        current, total = progress or (0, 0)
        try:
            with self._transaction() as session:
                session.execute(
                    insert(notifications_table).values(
                        type=type,
                        title=title,
                        message=message,
                        progress_current=current,
                        progress_total=total,
                        batch_id=batch_id,
                    )
                )
        except StoreUnavailableError:
            # 알림은 fire-and-forget. 실패는 로그로만 남깁니다.
            logger.warning("알림 저장 실패", title=title, event_name="notify_failed")

    async def unread(self) -> list[dict[str, Any]]:
        with self._transaction() as session:
            rows = session.execute(
                select(notifications_table)
                .where(notifications_table.c.is_read.is_(False))
                .order_by(notifications_table.c.created_at.desc())
            ).mappings()
            return [dict(row) for row in rows]

    async def mark_read(self, notification_ids: list[int]) -> None:
        with self._transaction() as session:
            session.execute(
                update(notifications_table)
                .where(notifications_table.c.id.in_(notification_ids))
                .values(is_read=True, read_at=datetime.now())
            )

    async def cleanup_read(self, older_than: timedelta) -> int:
        cutoff = datetime.now() - older_than
        with self._transaction() as session:
            result = session.execute(
                delete(notifications_table).where(
                    notifications_table.c.is_read.is_(True),
                    notifications_table.c.read_at < cutoff,
                )
            )
            return result.rowcount
