"""Ports for observing a run and publishing its status map."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import Mapping
    from uuid import UUID

    from refsync.domain.model import Checkpoint, DiffStats, Identity, ObservedStatus, RunReport
    from refsync.domain.reconciliation.context import RunContext


@dataclass(frozen=True, slots=True)
class ChunkSummary:
    """What one committed chunk did."""

    number: int
    rows: int
    skipped: int
    inserted: int
    updated: int
    checkpoint: Checkpoint


@dataclass(frozen=True, slots=True)
class StatusReport:
    run_id: UUID
    stats: DiffStats
    statuses: Mapping[Identity, ObservedStatus]


@runtime_checkable
class RunObserver(Protocol):
    """Synchronous hooks called by the pipeline; must not raise."""

    def on_run_start(self, context: RunContext) -> None: ...

    def on_chunk_committed(self, context: RunContext, chunk: ChunkSummary) -> None: ...

    def on_run_end(self, report: RunReport) -> None: ...


@runtime_checkable
class StatusSink(Protocol):
    """Downstream (auditing) consumer of the observed status map."""

    def publish(self, report: StatusReport) -> None: ...


__all__ = ["ChunkSummary", "RunObserver", "StatusReport", "StatusSink"]
