"""Domain model for reference snapshot reconciliation."""

from __future__ import annotations

from .entity import CandidateEntity, Identity, ReferenceAttributes, ReferenceEntity, new_id
from .enums import (
    ApplyAction,
    DeletionPolicy,
    ErrorPolicy,
    ObservedStatus,
    ReconcileMode,
    RunStatus,
    StepName,
)
from .run import (
    Checkpoint,
    DiffStats,
    RunMetrics,
    RunReport,
    RunState,
    StepOutcome,
)

__all__ = [
    "ApplyAction",
    "CandidateEntity",
    "Checkpoint",
    "DeletionPolicy",
    "DiffStats",
    "ErrorPolicy",
    "Identity",
    "ObservedStatus",
    "ReconcileMode",
    "ReferenceAttributes",
    "ReferenceEntity",
    "RunMetrics",
    "RunReport",
    "RunState",
    "RunStatus",
    "StepName",
    "StepOutcome",
    "new_id",
]
