from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from name_screening.infrastructure.persistence.orm import metadata


def get_engine(db_url: str = "sqlite:///screening.db", echo: bool = False) -> Engine:
    """SQLAlchemy 엔진을 생성합니다. 인메모리 SQLite는 모든 세션이 하나의 연결을 공유합니다."""
    if db_url in ("sqlite://", "sqlite:///:memory:"):
        return create_engine(
            db_url,
            echo=echo,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    return create_engine(db_url, echo=echo)


def get_session_factory(engine: Engine) -> sessionmaker[Session]:
    """세션 팩토리를 생성하고 반환합니다."""
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


def create_tables(engine: Engine) -> None:
    """메타데이터에 정의된 모든 테이블을 생성합니다."""
    metadata.create_all(engine)


def drop_tables(engine: Engine) -> None:
    """메타데이터에 정의된 모든 테이블을 삭제합니다."""
    metadata.drop_all(engine)
