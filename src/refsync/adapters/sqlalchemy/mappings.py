"""SQLAlchemy mapping metadata for the refsync domain model."""

from __future__ import annotations

import logging
import uuid
from datetime import UTC, datetime
from functools import cache
from typing import TYPE_CHECKING

from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    Dialect,
    Index,
    Integer,
    String,
    Table,
    TypeDecorator,
    UniqueConstraint,
    Uuid,
    orm,
)

from refsync.domain.model import ReferenceEntity

if TYPE_CHECKING:
    from sqlalchemy.engine import Engine

log = logging.getLogger(__name__)

UUIDColumnType = Uuid[uuid.UUID]


class UTCDateTime(TypeDecorator[datetime]):
    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: datetime | None, dialect: Dialect) -> datetime | None:
        _ = dialect
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=UTC)
        return value.astimezone(UTC)

    def process_result_value(self, value: datetime | None, dialect: Dialect) -> datetime | None:
        _ = dialect
        if value is None:
            return None
        return value if value.tzinfo else value.replace(tzinfo=UTC)


mapper_registry = orm.registry()
mapper_registry.metadata.naming_convention = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_label)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}

reference_entity_table = Table(
    "reference_entity",
    mapper_registry.metadata,
    Column("id", UUIDColumnType, primary_key=True, default=uuid.uuid4),
    Column("authority", String(64), nullable=False),
    Column("scheme", String(64), nullable=False),
    Column("code", String(128), nullable=False),
    Column("name", String, nullable=False),
    Column("category", String, nullable=True),
    Column("valid_from", Date, nullable=True),
    Column("valid_to", Date, nullable=True),
    Column("stale", Boolean, nullable=False, default=False),
    Column("created_run_id", UUIDColumnType, nullable=True),
    Column("seen_run_id", UUIDColumnType, nullable=True),
    Column("changed_run_id", UUIDColumnType, nullable=True),
    Column("updated_at", UTCDateTime(), nullable=True),
    UniqueConstraint("authority", "scheme", "code", name="uq_reference_entity_identity"),
    Index("ix_reference_entity_seen_run_id", "seen_run_id"),
)

checkpoint_table = Table(
    "reconcile_checkpoint",
    mapper_registry.metadata,
    Column("run_key", String(64), primary_key=True),
    Column("run_id", UUIDColumnType, nullable=False),
    Column("source_url", String, nullable=False),
    Column("cache_digest", String(64), nullable=True),
    Column("rows_consumed", Integer, nullable=False, default=0),
    Column("chunks_committed", Integer, nullable=False, default=0),
    Column("rows_skipped", Integer, nullable=False, default=0),
    Column("finalized", Boolean, nullable=False, default=False),
    Column("deleted_or_stale", Integer, nullable=False, default=0, server_default="0"),
    Column("status", String(32), nullable=False),
    Column("step", String(32), nullable=True),
    Column("reason", String, nullable=True),
    Column("updated_at", UTCDateTime(), nullable=True),
)


@cache
def start_mappers() -> orm.registry:
    """Configure SQLAlchemy mappers for the domain model."""

    log.info("Starting SQLAlchemy mappers")

    mapper_registry.map_imperatively(ReferenceEntity, reference_entity_table)

    return mapper_registry


def create_all_tables(engine: Engine) -> None:
    """Create database tables for the mapped metadata."""

    log.info("Creating all tables")
    mapper_registry.metadata.create_all(engine)
