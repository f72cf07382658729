"""Error taxonomy for reconciliation runs.

Row-level errors (``ParseError``, ``TransformError``) are subject to the
configured error policy. Everything else is fatal for the run.
"""

from __future__ import annotations

from typing import Literal

type FetchErrorKind = Literal["network", "timeout", "status"]


class ReconciliationError(RuntimeError):
    """Base class for failures raised by the reconciliation pipeline."""


class FetchError(ReconciliationError):
    """Raised when the remote feed cannot be retrieved."""

    def __init__(
        self,
        message: str,
        *,
        kind: FetchErrorKind,
        url: str | None = None,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message)
        self.kind: FetchErrorKind = kind
        self.url = url
        self.status_code = status_code


class RowError(ReconciliationError):
    """A failure attributable to a single feed row."""

    def __init__(self, message: str, *, line_number: int | None = None) -> None:
        super().__init__(message)
        self.line_number = line_number

    def __str__(self) -> str:
        message = super().__str__()
        if self.line_number is None:
            return message
        return f"line {self.line_number}: {message}"


class ParseError(RowError):
    """Raised (or yielded) when a feed line cannot be parsed into a row record."""


class TransformError(RowError):
    """Raised when a parsed row cannot be mapped into a candidate entity."""


class ThresholdAbortError(ReconciliationError):
    """Raised when the deletion gate judges the feed too destructive."""

    def __init__(self, observed_fraction: float, threshold: float) -> None:
        super().__init__(
            f"Feed would remove {observed_fraction:.1%} of persisted entities "
            f"(threshold {threshold:.1%})"
        )
        self.observed_fraction = observed_fraction
        self.threshold = threshold


class CommitError(ReconciliationError):
    """Raised when the persistence layer fails to commit a unit of work."""


class CacheMismatchError(ReconciliationError):
    """Raised when a resumed run finds a cache file different from its checkpoint."""


class RunStateError(ReconciliationError):
    """Raised on an invalid run status transition."""


class RunCancelledError(ReconciliationError):
    """Raised when a stop was requested; progress up to the last commit is kept."""
