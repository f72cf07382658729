"""Run observers and status sinks backed by logging and plain files."""

from __future__ import annotations

import json
from collections import Counter
from logging import Logger, getLogger
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from pathlib import Path

    from refsync.domain.model import RunReport
    from refsync.domain.ports.reporting import ChunkSummary, StatusReport
    from refsync.domain.reconciliation.context import RunContext

log = getLogger(__name__)


class LoggingRunObserver:
    """Log run lifecycle events; chunk progress every ``progress_every`` chunks."""

    def __init__(self, logger: Logger | None = None, *, progress_every: int = 1) -> None:
        self._log = logger or log
        self._progress_every = max(progress_every, 1)

    def on_run_start(self, context: RunContext) -> None:
        self._log.info(
            "Run %s started for %s (cache %s)",
            context.run_key,
            context.params.input_url,
            context.params.download_cache,
        )

    def on_chunk_committed(self, context: RunContext, chunk: ChunkSummary) -> None:
        if chunk.number % self._progress_every:
            return
        self._log.info(
            "Run %s: chunk %s committed, %s rows consumed (%s inserted, %s updated, %s skipped)",
            context.run_key,
            chunk.number,
            chunk.checkpoint.rows_consumed,
            chunk.inserted,
            chunk.updated,
            chunk.skipped,
        )

    def on_run_end(self, report: RunReport) -> None:
        if report.succeeded:
            self._log.info("Run %s completed: %s", report.run_key, report.metrics.as_dict())
            return
        self._log.warning(
            "Run %s ended %s at step %s (reason=%s): %s",
            report.run_key,
            report.status,
            report.failed_step,
            report.reason,
            report.metrics.as_dict(),
        )


class LoggingStatusSink:
    def __init__(self, logger: Logger | None = None) -> None:
        self._log = logger or log

    def publish(self, report: StatusReport) -> None:
        counts = Counter(status.value for status in report.statuses.values())
        self._log.info("Status map for run %s: %s", report.run_id, dict(sorted(counts.items())))


class CollectingStatusSink:
    """Keep published reports in memory (embedding callers, tests)."""

    def __init__(self) -> None:
        self.reports: list[StatusReport] = []

    def publish(self, report: StatusReport) -> None:
        self.reports.append(report)

    @property
    def last(self) -> StatusReport | None:
        return self.reports[-1] if self.reports else None


class JsonLinesStatusSink:
    """Write the status map as JSON lines: one summary line, then one line per identity."""

    def __init__(self, path: Path) -> None:
        self.path = path

    def publish(self, report: StatusReport) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        stats = report.stats
        with self.path.open("w", encoding="utf-8") as handle:
            summary = {
                "run_id": str(report.run_id),
                "inserted": stats.inserted,
                "updated": stats.updated,
                "changed": stats.changed,
                "untouched": stats.untouched,
                "deleted_or_stale": stats.deleted_or_stale,
            }
            handle.write(json.dumps(summary) + "\n")
            for identity, status in sorted(
                report.statuses.items(), key=lambda item: item[0].as_tuple()
            ):
                record = {
                    "authority": identity.authority,
                    "scheme": identity.scheme,
                    "code": identity.code,
                    "status": status.value,
                }
                handle.write(json.dumps(record) + "\n")
        log.info("Wrote status map for run %s to %s", report.run_id, self.path)


if TYPE_CHECKING:
    from refsync.domain.ports.reporting import RunObserver, StatusSink

    _observer_check: RunObserver = LoggingRunObserver()
    _sink_check: StatusSink = LoggingStatusSink()
    _collecting_check: StatusSink = CollectingStatusSink()
