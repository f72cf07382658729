"""Explicit per-run state passed through every pipeline stage.

Nothing here is global: a ``RunContext`` is created when a run starts, handed
to each stage by reference, and its identity index is released once status has
been published.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Final

from refsync.domain.errors import RunStateError
from refsync.domain.model import (
    DeletionPolicy,
    ErrorPolicy,
    ReconcileMode,
    RunMetrics,
    RunState,
    RunStatus,
)

if TYPE_CHECKING:
    from pathlib import Path
    from uuid import UUID

    from refsync.domain.model import Checkpoint, StepOutcome
    from refsync.domain.ports.fetching import CacheHandle

    from .identity_index import IdentityIndex
    from .precheck import GateDecision

DEFAULT_COMMIT_INTERVAL: Final[int] = 500
DEFAULT_DELETE_THRESHOLD: Final[float] = 0.2
RUN_KEY_LENGTH: Final[int] = 16


def derive_run_key(input_url: str, *, namespace: str = "reference") -> str:
    """Return a stable short identifier for the run parameters that define a feed."""

    digest = hashlib.sha256(f"{namespace}\n{input_url.strip()}".encode())
    return digest.hexdigest()[:RUN_KEY_LENGTH]


@dataclass(frozen=True, slots=True)
class RunParameters:
    """Recognised options of one reconciliation run."""

    input_url: str
    download_cache: Path
    commit_interval: int = DEFAULT_COMMIT_INTERVAL
    delete_threshold: float = DEFAULT_DELETE_THRESHOLD
    mode: ReconcileMode = ReconcileMode.FULL_STREAMING
    error_policy: ErrorPolicy = ErrorPolicy.STOP_ON_ERROR
    deletion_policy: DeletionPolicy = DeletionPolicy.REPORT_ONLY
    transform_workers: int = 1
    namespace: str = "reference"

    def __post_init__(self) -> None:
        if not self.input_url.strip():
            raise ValueError("input_url must not be blank")
        if self.commit_interval < 1:
            raise ValueError(f"commit_interval must be positive, got {self.commit_interval}")
        if not 0.0 <= self.delete_threshold <= 1.0:
            raise ValueError(
                f"delete_threshold must be within [0, 1], got {self.delete_threshold}"
            )
        if self.transform_workers < 1:
            raise ValueError(
                f"transform_workers must be positive, got {self.transform_workers}"
            )

    @property
    def run_key(self) -> str:
        return derive_run_key(self.input_url, namespace=self.namespace)


@dataclass(slots=True)
class RunContext:
    """Mutable state of one run, owned by the pipeline."""

    params: RunParameters
    state: RunState = field(default_factory=RunState)
    metrics: RunMetrics = field(default_factory=RunMetrics)
    steps: list[StepOutcome] = field(default_factory=list["StepOutcome"])
    cache: CacheHandle | None = None
    checkpoint: Checkpoint | None = None
    index: IdentityIndex | None = None
    gate: GateDecision | None = None
    materialized_rows: list[object] | None = None
    deleted_or_stale: int = 0

    @property
    def run_key(self) -> str:
        return self.params.run_key

    @property
    def run_id(self) -> UUID | None:
        return self.checkpoint.run_id if self.checkpoint is not None else None

    @property
    def all_steps_completed(self) -> bool:
        return all(outcome.status is RunStatus.COMPLETED for outcome in self.steps)

    def require_cache(self) -> CacheHandle:
        if self.cache is None:
            raise RunStateError("Feed has not been downloaded yet")
        return self.cache

    def require_checkpoint(self) -> Checkpoint:
        if self.checkpoint is None:
            raise RunStateError("Run checkpoint has not been opened yet")
        return self.checkpoint

    def require_index(self) -> IdentityIndex:
        if self.index is None:
            raise RunStateError("Identity index is not loaded")
        return self.index

    def release_index(self) -> None:
        """Drop the identity index and any materialised rows to free memory."""

        if self.index is not None:
            self.index.clear()
        self.index = None
        self.materialized_rows = None
