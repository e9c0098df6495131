import uuid
from datetime import datetime

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
)

from name_screening.domain.model import (
    BatchStatus,
    RecordStatus,
    ScraperKind,
    ScraperStatus,
)


def _values(enum_cls):
    # Enum 이름이 아니라 값("http-client" 등)을 그대로 저장합니다.
    return [member.value for member in enum_cls]


def new_id() -> str:
    return str(uuid.uuid4())


metadata = MetaData()


scraper_sites_table = Table(
    "scraper_sites",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("site_name", String(100), nullable=False, unique=True),
    Column("category", String(50), nullable=False),
    Column(
        "scraper_kind",
        Enum(ScraperKind, values_callable=_values, native_enum=False),
        nullable=False,
    ),
    Column("timeout_seconds", Integer, nullable=False, default=30),
    Column("launch_config", JSON, nullable=False, default=dict),
    Column("is_active", Boolean, nullable=False, default=True),
    Column("updated_at", DateTime, nullable=False, default=datetime.now),
)

search_batches_table = Table(
    "search_batches",
    metadata,
    Column("id", String(36), primary_key=True, default=new_id),
    Column("batch_name", String(255), nullable=False),
    Column("original_filename", String(255), nullable=True),
    Column("total_records", Integer, nullable=False, default=0),
    Column(
        "status",
        Enum(BatchStatus, values_callable=_values, native_enum=False),
        nullable=False,
    ),
    Column("created_at", DateTime, nullable=False, default=datetime.now),
    Column("started_at", DateTime, nullable=True),
    Column("completed_at", DateTime, nullable=True),
)

bulk_searches_table = Table(
    "bulk_searches",
    metadata,
    Column("id", String(36), primary_key=True, default=new_id),
    Column("batch_id", String(36), ForeignKey("search_batches.id"), nullable=False),
    Column("position", Integer, nullable=False, default=0),
    Column("full_name", String(255), nullable=False),
    Column("identification", String(100), nullable=True),
    Column(
        "status",
        Enum(RecordStatus, values_callable=_values, native_enum=False),
        nullable=False,
    ),
    Column("error_message", Text, nullable=True),
    Column("original_row_data", JSON, nullable=True),
    Column("created_at", DateTime, nullable=False, default=datetime.now),
    Column("processed_at", DateTime, nullable=True),
)

local_records_table = Table(
    "local_database_records",
    metadata,
    Column("id", String(36), primary_key=True, default=new_id),
    Column("full_name", String(255), nullable=False),
    Column("identification", String(100), nullable=True),
    Column("source_name", String(255), nullable=True),
    Column("additional_data", JSON, nullable=True),
    Column("is_active", Boolean, nullable=False, default=True),
)

search_results_table = Table(
    "search_results",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column(
        "bulk_search_id", String(36), ForeignKey("bulk_searches.id"), nullable=False
    ),
    Column("local_record_id", String(36), nullable=False),
    Column("similarity_percentage", Float, nullable=False),
    Column("match_type", String(30), nullable=False),
    Column("similarity_details", JSON, nullable=True),
)

external_results_table = Table(
    "external_results",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column(
        "bulk_search_id", String(36), ForeignKey("bulk_searches.id"), nullable=False
    ),
    Column("site_name", String(100), nullable=False),
    Column("site_category", String(50), nullable=False),
    Column("search_query", String(255), nullable=False),
    Column("has_results", Boolean, nullable=False),
    Column("results_count", Integer, nullable=False),
    Column("results_data", JSON, nullable=True),
    Column(
        "scraper_status",
        Enum(ScraperStatus, values_callable=_values, native_enum=False),
        nullable=False,
    ),
    Column("direct_link", Text, nullable=True),
    Column("execution_time_ms", Float, nullable=True),
    Column("error_details", Text, nullable=True),
    Column("created_at", DateTime, nullable=False, default=datetime.now),
    # 한 레코드에 대해 사이트별 결과는 한 행만 존재합니다.
    UniqueConstraint("bulk_search_id", "site_name", name="uq_external_record_site"),
)

notifications_table = Table(
    "notifications",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("type", String(20), nullable=False),
    Column("title", String(255), nullable=False),
    Column("message", Text, nullable=False),
    Column("progress_current", Integer, nullable=False, default=0),
    Column("progress_total", Integer, nullable=False, default=0),
    Column("batch_id", String(36), nullable=True),
    Column("is_read", Boolean, nullable=False, default=False),
    Column("created_at", DateTime, nullable=False, default=datetime.now),
    Column("read_at", DateTime, nullable=True),
)
