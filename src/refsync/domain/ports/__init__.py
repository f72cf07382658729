"""Domain port definitions for adapters."""

from __future__ import annotations

from .fetching import CacheHandle, FeedFetcher
from .parsing import FeedParser, RowMapper
from .persistence import CheckpointRepository, ReferenceEntityRepository
from .reporting import ChunkSummary, RunObserver, StatusReport, StatusSink
from .unit_of_work import (
    ReconcileRepositories,
    ReconcileUnitOfWork,
    RepositoryCollection,
    UnitOfWork,
)

__all__ = [
    "CacheHandle",
    "CheckpointRepository",
    "ChunkSummary",
    "FeedFetcher",
    "FeedParser",
    "ReconcileRepositories",
    "ReconcileUnitOfWork",
    "ReferenceEntityRepository",
    "RepositoryCollection",
    "RowMapper",
    "RunObserver",
    "StatusReport",
    "StatusSink",
    "UnitOfWork",
]
