"""Step orchestration for one reconciliation run.

download -> precheck (two-pass / in-memory-compare only) -> process -> report
-> cleanup. Every executed step leaves a ``StepOutcome``; the run is COMPLETED
only when all of them completed. A failed or aborted run keeps its cache file
and checkpoint.
"""

from __future__ import annotations

from collections.abc import Generator
from contextlib import contextmanager, nullcontext
from dataclasses import dataclass, replace
from datetime import UTC, datetime
from logging import getLogger
from typing import TYPE_CHECKING, cast

from refsync.domain.errors import (
    CacheMismatchError,
    CommitError,
    FetchError,
    ParseError,
    ReconciliationError,
    RunCancelledError,
    ThresholdAbortError,
    TransformError,
)
from refsync.domain.model import (
    Checkpoint,
    ReconcileMode,
    RunReport,
    RunStatus,
    StepName,
    StepOutcome,
    new_id,
)

from .cleanup import cleanup
from .context import RunContext
from .identity_index import IdentityIndex
from .precheck import precheck
from .reconciler import ChunkedReconciler
from .status import publish_status

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable, Iterator, Sequence
    from contextlib import AbstractContextManager

    from refsync.domain.ports.fetching import FeedFetcher
    from refsync.domain.ports.parsing import FeedParser, RowMapper
    from refsync.domain.ports.reporting import RunObserver, StatusSink
    from refsync.domain.ports.unit_of_work import ReconcileUnitOfWork

    from .context import RunParameters

log = getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _never() -> bool:
    return False


def reason_for(exc: BaseException) -> str:
    """Map an exception to the reason code recorded with a failed step."""

    match exc:
        case ThresholdAbortError():
            return "threshold"
        case FetchError(kind=kind):
            return f"fetch-{kind}"
        case ParseError():
            return "parse"
        case TransformError():
            return "transform"
        case CommitError():
            return "commit"
        case CacheMismatchError():
            return "cache-mismatch"
        case RunCancelledError():
            return "cancelled"
        case ReconciliationError():
            return "reconciliation"
        case _:
            return "error"


@dataclass
class ReconciliationPipeline[TRow]:
    """Run the reconciliation steps for a feed against the persisted dataset."""

    fetcher: FeedFetcher
    parser: FeedParser[TRow]
    mapper: RowMapper[TRow]
    unit_of_work_factory: Callable[[], ReconcileUnitOfWork]
    status_sink: StatusSink | None = None
    observers: Sequence[RunObserver] = ()
    stop_requested: Callable[[], bool] = _never
    clock: Callable[[], datetime] = _utcnow

    def run(self, params: RunParameters) -> RunReport:
        context = RunContext(params=params)
        context.state.transition(RunStatus.RUNNING)
        context.metrics.started_at = self.clock()
        log.info(
            "Starting run %s: url=%s, mode=%s, error_policy=%s, commit_interval=%s",
            context.run_key,
            params.input_url,
            params.mode,
            params.error_policy,
            params.commit_interval,
        )
        for observer in self.observers:
            observer.on_run_start(context)

        failure = self._execute(context)

        if failure is None:
            self._step(
                context,
                StepName.CLEANUP,
                lambda: cleanup(context, self.unit_of_work_factory),
            )
            failure = self._first_failure(context)

        if failure is None:
            context.state.transition(RunStatus.COMPLETED)
        else:
            context.state.transition(failure.status)
            self._record_terminal_status(context, failure)

        report = self._build_report(context, failure)
        for observer in self.observers:
            observer.on_run_end(report)
        return report

    # Steps ----------------------------------------------------------------

    def _execute(self, context: RunContext) -> StepOutcome | None:
        if not self._step(context, StepName.DOWNLOAD, lambda: self._download(context)):
            return self._first_failure(context)

        if context.params.mode.runs_precheck and not self._step(
            context, StepName.PRECHECK, lambda: self._precheck(context)
        ):
            return self._first_failure(context)

        self._step(context, StepName.PROCESS, lambda: self._process(context))

        # accumulated statistics are reported even when processing failed
        if context.index is not None:
            self._step(context, StepName.REPORT, lambda: self._report(context))
        return self._first_failure(context)

    def _step(self, context: RunContext, step: StepName, action: Callable[[], None]) -> bool:
        try:
            action()
        except ThresholdAbortError as exc:
            log.error("Step %s aborted: %s", step, exc)  # noqa: TRY400
            context.steps.append(
                StepOutcome(
                    step=step,
                    status=RunStatus.ABORTED_THRESHOLD,
                    reason=reason_for(exc),
                    message=str(exc),
                )
            )
            return False
        except Exception as exc:
            log.exception("Step %s failed", step)
            context.steps.append(
                StepOutcome(
                    step=step,
                    status=RunStatus.FAILED,
                    reason=reason_for(exc),
                    message=str(exc),
                )
            )
            return False
        context.steps.append(StepOutcome(step=step, status=RunStatus.COMPLETED))
        return True

    def _download(self, context: RunContext) -> None:
        params = context.params
        params.download_cache.parent.mkdir(parents=True, exist_ok=True)
        context.cache = self.fetcher.fetch(params.input_url, params.download_cache)
        log.info(
            "Feed cache ready: path=%s, bytes=%s, reused=%s",
            context.cache.path,
            context.cache.size_bytes,
            context.cache.reused,
        )

    def _precheck(self, context: RunContext) -> None:
        with self.unit_of_work_factory() as uow:
            existing = set(uow.repositories.entities.identities())
        with self._rows(context) as rows:
            decision = precheck(rows, self.mapper, existing, context.params.delete_threshold)
        context.gate = decision
        if decision.abort:
            raise ThresholdAbortError(decision.observed_fraction, decision.threshold)

    def _process(self, context: RunContext) -> None:
        checkpoint = self._open_checkpoint(context)
        with self.unit_of_work_factory() as uow:
            context.index = IdentityIndex.load(
                uow.repositories.entities.iter_all(),
                run_id=checkpoint.run_id,
            )
        log.info("Loaded identity index with %s entries", len(context.index))

        params = context.params
        reconciler = ChunkedReconciler(
            unit_of_work_factory=self.unit_of_work_factory,
            mapper=self.mapper,
            error_policy=params.error_policy,
            deletion_policy=params.deletion_policy,
            commit_interval=params.commit_interval,
            transform_workers=params.transform_workers,
            observers=self.observers,
            stop_requested=self.stop_requested,
            clock=self.clock,
        )
        # a finalized checkpoint needs no rows, so the cache is not parsed again
        rows_source: AbstractContextManager[Iterable[TRow | ParseError]] = (
            nullcontext(()) if checkpoint.finalized else self._rows(context)
        )
        try:
            with rows_source as rows:
                reconciler.run(context, rows)
        finally:
            self._sync_metrics(context)

        if context.metrics.skipped:
            log.warning(
                "Run %s skipped %s rows under the best-effort policy",
                context.run_key,
                context.metrics.skipped,
            )

    def _report(self, context: RunContext) -> None:
        stats = publish_status(context, self.status_sink)
        log.info(
            "Run %s status: inserted=%s, updated=%s, changed=%s, untouched=%s, "
            "deleted_or_stale=%s",
            context.run_key,
            stats.inserted,
            stats.updated,
            stats.changed,
            stats.untouched,
            stats.deleted_or_stale,
        )

    # Helpers --------------------------------------------------------------

    def _open_checkpoint(self, context: RunContext) -> Checkpoint:
        """Load the run's checkpoint (resume) or start a fresh one."""

        if context.checkpoint is not None:
            return context.checkpoint

        cache = context.require_cache()
        now = self.clock()
        with self.unit_of_work_factory() as uow:
            existing = uow.repositories.checkpoints.get(context.run_key)
            if existing is None:
                checkpoint = Checkpoint(
                    run_key=context.run_key,
                    run_id=new_id(),
                    source_url=context.params.input_url,
                    cache_digest=cache.sha256,
                    updated_at=now,
                )
            else:
                if existing.rows_consumed and existing.cache_digest != cache.sha256:
                    raise CacheMismatchError(
                        f"Cache {cache.path} does not match checkpoint of run {existing.run_id}"
                    )
                checkpoint = replace(
                    existing.with_status(RunStatus.RUNNING, updated_at=now),
                    cache_digest=cache.sha256,
                )
                log.info(
                    "Found checkpoint for run %s: rows_consumed=%s, chunks_committed=%s",
                    existing.run_id,
                    existing.rows_consumed,
                    existing.chunks_committed,
                )
            uow.repositories.checkpoints.save(checkpoint)
            uow.commit()
        context.checkpoint = checkpoint
        self._sync_metrics(context)
        return checkpoint

    @contextmanager
    def _rows(self, context: RunContext) -> Iterator[Iterable[TRow | ParseError]]:
        """Yield the candidate row stream, materialising it in in-memory mode."""

        if context.params.mode is ReconcileMode.IN_MEMORY_COMPARE:
            if context.materialized_rows is None:
                context.materialized_rows = list(self.parser.parse(context.require_cache().path))
            yield cast("list[TRow | ParseError]", context.materialized_rows)
            return

        rows = self.parser.parse(context.require_cache().path)
        try:
            yield rows
        finally:
            if isinstance(rows, Generator):
                rows.close()

    def _sync_metrics(self, context: RunContext) -> None:
        checkpoint = context.checkpoint
        if checkpoint is None:
            return
        context.metrics.rows_read = checkpoint.rows_consumed
        context.metrics.chunks_committed = checkpoint.chunks_committed
        context.metrics.skipped = checkpoint.rows_skipped

    def _record_terminal_status(self, context: RunContext, failure: StepOutcome) -> None:
        """Persist the terminal status on the retained checkpoint for inspection."""

        checkpoint = context.checkpoint
        if checkpoint is None and context.cache is None:
            return
        now = self.clock()
        try:
            with self.unit_of_work_factory() as uow:
                checkpoints = uow.repositories.checkpoints
                if checkpoint is None:
                    # failed before processing; leave any resumable progress as it was
                    checkpoint = checkpoints.get(context.run_key) or Checkpoint(
                        run_key=context.run_key,
                        run_id=new_id(),
                        source_url=context.params.input_url,
                        cache_digest=context.require_cache().sha256,
                        updated_at=now,
                    )
                checkpoint = checkpoint.with_status(
                    failure.status,
                    step=failure.step,
                    reason=failure.reason,
                    updated_at=now,
                )
                checkpoints.save(checkpoint)
                uow.commit()
            context.checkpoint = checkpoint
        except Exception:  # noqa: BLE001
            log.exception("Could not record terminal status for run %s", context.run_key)

    @staticmethod
    def _first_failure(context: RunContext) -> StepOutcome | None:
        for outcome in context.steps:
            if outcome.status is not RunStatus.COMPLETED:
                return outcome
        return None

    def _build_report(self, context: RunContext, failure: StepOutcome | None) -> RunReport:
        context.metrics.finished_at = self.clock()
        report = RunReport(
            run_key=context.run_key,
            run_id=context.run_id,
            status=context.state.status,
            metrics=context.metrics,
            steps=list(context.steps),
            failed_step=failure.step if failure else None,
            reason=failure.reason if failure else None,
            observed_fraction=context.gate.observed_fraction if context.gate else None,
        )
        log.info(
            "Run %s finished with %s: %s",
            context.run_key,
            report.status,
            context.metrics.as_dict(),
        )
        return report

