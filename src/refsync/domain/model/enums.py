"""Domain enums (pure, dependency-light)."""

from __future__ import annotations

from enum import StrEnum


class ObservedStatus(StrEnum):
    """What a run observed for one identity."""

    NEW = "new"
    UPDATED = "updated"
    UNTOUCHED = "untouched"


class ApplyAction(StrEnum):
    INSERT = "insert"
    UPDATE = "update"


class RunStatus(StrEnum):
    PENDING = "PENDING"
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    ABORTED_THRESHOLD = "ABORTED_THRESHOLD"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL_STATUSES


_TERMINAL_STATUSES = frozenset(
    {RunStatus.COMPLETED, RunStatus.FAILED, RunStatus.ABORTED_THRESHOLD}
)


class StepName(StrEnum):
    DOWNLOAD = "download"
    PRECHECK = "precheck"
    PROCESS = "process"
    REPORT = "report"
    CLEANUP = "cleanup"


class ReconcileMode(StrEnum):
    """Selects whether (and how) the deletion gate runs before the main loop."""

    FULL_STREAMING = "full-streaming"
    TWO_PASS = "two-pass"
    IN_MEMORY_COMPARE = "in-memory-compare"

    @property
    def runs_precheck(self) -> bool:
        return self is not ReconcileMode.FULL_STREAMING


class ErrorPolicy(StrEnum):
    """How row-level failures (parse/transform) propagate."""

    STOP_ON_ERROR = "stop-on-error"
    BEST_EFFORT = "best-effort"
    ALL_OR_NOTHING = "all-or-nothing"


class DeletionPolicy(StrEnum):
    """What happens to persisted entities absent from the feed."""

    REPORT_ONLY = "report-only"
    MARK_STALE = "mark-stale"
    HARD_DELETE = "hard-delete"
