from __future__ import annotations

from types import TracebackType
from typing import Type

from loguru import logger
from sqlalchemy import Engine
from sqlalchemy.orm import Session, sessionmaker

from name_screening.infrastructure.config import Settings
from name_screening.infrastructure.persistence.database import (
    create_tables,
    get_engine,
    get_session_factory,
)


class ApplicationContext:
    """설정과 DB 리소스를 소유하고 각 컴포넌트에 명시적으로 전달되는 핸들"""

    def __init__(self, settings: Settings, create_schema: bool = True) -> None:
        self.settings = settings
        self._create_schema = create_schema
        self.engine: Engine | None = None
        self.session_factory: sessionmaker[Session] | None = None

    async def __aenter__(self) -> ApplicationContext:
        self.engine = get_engine(self.settings.db.url, echo=self.settings.db.echo)
        if self._create_schema:
            create_tables(self.engine)
        self.session_factory = get_session_factory(self.engine)
        logger.debug(
            "ApplicationContext 초기화 완료",
            db_url=self.settings.db.url,
            event_name="context_opened",
        )
        return self

    async def __aexit__(
        self,
        exc_type: Type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        if self.engine:
            self.engine.dispose()
        self.engine = None
        self.session_factory = None
        logger.debug("ApplicationContext 종료", event_name="context_closed")
