"""SQLAlchemy adapter package for refsync."""

from __future__ import annotations

from .mappings import (
    checkpoint_table,
    create_all_tables,
    mapper_registry,
    reference_entity_table,
    start_mappers,
)
from .repositories import SqlAlchemyCheckpointRepository, SqlAlchemyReferenceEntityRepository
from .unit_of_work import (
    SqlAlchemyReconcileUnitOfWork,
    StartupError,
    configured_engine,
    is_started,
    shutdown,
    startup,
)

__all__ = [
    "SqlAlchemyCheckpointRepository",
    "SqlAlchemyReconcileUnitOfWork",
    "SqlAlchemyReferenceEntityRepository",
    "StartupError",
    "checkpoint_table",
    "configured_engine",
    "create_all_tables",
    "is_started",
    "mapper_registry",
    "reference_entity_table",
    "shutdown",
    "start_mappers",
    "startup",
]
