"""Run-level state: checkpoint, status machine, statistics and report."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING

from refsync.domain.errors import RunStateError
from refsync.domain.model.enums import RunStatus, StepName

if TYPE_CHECKING:
    from datetime import datetime
    from uuid import UUID


@dataclass(frozen=True, slots=True)
class Checkpoint:
    """Durable progress marker for one run key.

    ``rows_consumed`` counts data rows (header excluded) from the start of the
    cached feed whose effects are committed; a resumed run skips exactly that
    many rows.
    """

    run_key: str
    run_id: UUID
    source_url: str
    cache_digest: str | None = None
    rows_consumed: int = 0
    chunks_committed: int = 0
    rows_skipped: int = 0
    finalized: bool = False
    deleted_or_stale: int = 0
    status: RunStatus = RunStatus.RUNNING
    step: StepName | None = None
    reason: str | None = None
    updated_at: datetime | None = None

    def advance(
        self,
        *,
        rows: int,
        skipped: int = 0,
        updated_at: datetime | None = None,
    ) -> Checkpoint:
        return replace(
            self,
            rows_consumed=self.rows_consumed + rows,
            chunks_committed=self.chunks_committed + 1,
            rows_skipped=self.rows_skipped + skipped,
            updated_at=updated_at,
        )

    def finalize(
        self,
        *,
        deleted_or_stale: int = 0,
        updated_at: datetime | None = None,
    ) -> Checkpoint:
        """Mark the feed as fully applied, deletion pass included."""

        return replace(
            self, finalized=True, deleted_or_stale=deleted_or_stale, updated_at=updated_at
        )

    def with_status(
        self,
        status: RunStatus,
        *,
        step: StepName | None = None,
        reason: str | None = None,
        updated_at: datetime | None = None,
    ) -> Checkpoint:
        return replace(self, status=status, step=step, reason=reason, updated_at=updated_at)


_ALLOWED_TRANSITIONS: dict[RunStatus, frozenset[RunStatus]] = {
    RunStatus.PENDING: frozenset({RunStatus.RUNNING}),
    RunStatus.RUNNING: frozenset(
        {RunStatus.COMPLETED, RunStatus.FAILED, RunStatus.ABORTED_THRESHOLD}
    ),
}


@dataclass(slots=True)
class RunState:
    """PENDING -> RUNNING -> {COMPLETED | FAILED | ABORTED_THRESHOLD}."""

    status: RunStatus = RunStatus.PENDING

    def transition(self, target: RunStatus) -> None:
        allowed = _ALLOWED_TRANSITIONS.get(self.status, frozenset())
        if target not in allowed:
            raise RunStateError(f"Invalid run status transition {self.status} -> {target}")
        self.status = target


@dataclass(frozen=True, slots=True)
class DiffStats:
    inserted: int = 0
    updated: int = 0
    changed: int = 0
    untouched: int = 0
    deleted_or_stale: int = 0

    @property
    def applied(self) -> int:
        return self.inserted + self.updated


@dataclass(slots=True)
class RunMetrics:
    """Counters emitted for every run, successful or not."""

    rows_read: int = 0
    chunks_committed: int = 0
    skipped: int = 0
    stats: DiffStats = field(default_factory=DiffStats)
    started_at: datetime | None = None
    finished_at: datetime | None = None

    def as_dict(self) -> dict[str, object]:
        return {
            "rows_read": self.rows_read,
            "chunks_committed": self.chunks_committed,
            "inserted": self.stats.inserted,
            "updated": self.stats.updated,
            "changed": self.stats.changed,
            "untouched": self.stats.untouched,
            "deleted_or_stale": self.stats.deleted_or_stale,
            "skipped": self.skipped,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
        }


@dataclass(frozen=True, slots=True)
class StepOutcome:
    step: StepName
    status: RunStatus
    reason: str | None = None
    message: str | None = None


@dataclass(slots=True)
class RunReport:
    """Everything a caller needs to know about a finished run."""

    run_key: str
    run_id: UUID | None
    status: RunStatus
    metrics: RunMetrics
    steps: list[StepOutcome] = field(default_factory=list[StepOutcome])
    failed_step: StepName | None = None
    reason: str | None = None
    observed_fraction: float | None = None

    @property
    def succeeded(self) -> bool:
        return self.status is RunStatus.COMPLETED

    def step(self, name: StepName) -> StepOutcome | None:
        for outcome in self.steps:
            if outcome.step is name:
                return outcome
        return None
