"""Chunked read/transform/apply/commit/checkpoint loop.

Chunks run strictly one after another: chunk N+1 is not read before chunk N is
committed and checkpointed, and rows are applied in feed order. That ordering is
what makes a checkpoint expressed as "rows consumed" sufficient for exactly-once
application across restarts.
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import UTC, datetime
from itertools import islice
from logging import getLogger
from typing import TYPE_CHECKING

from refsync.domain.errors import ParseError, RowError, RunCancelledError, TransformError
from refsync.domain.model import (
    ApplyAction,
    DeletionPolicy,
    ErrorPolicy,
)
from refsync.domain.ports.reporting import ChunkSummary

from .context import DEFAULT_COMMIT_INTERVAL

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable, Iterator, Sequence
    from concurrent.futures import Executor

    from refsync.domain.model import CandidateEntity, Checkpoint
    from refsync.domain.ports.parsing import RowMapper
    from refsync.domain.ports.persistence import ReferenceEntityRepository
    from refsync.domain.ports.reporting import RunObserver
    from refsync.domain.ports.unit_of_work import ReconcileUnitOfWork

    from .context import RunContext
    from .identity_index import IdentityIndex

log = getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _never() -> bool:
    return False


@dataclass(slots=True)
class ReconcileResult:
    checkpoint: Checkpoint
    chunks: list[ChunkSummary] = field(default_factory=list[ChunkSummary])
    deleted_or_stale: int = 0


@dataclass(slots=True)
class _ChunkWork:
    candidates: list[CandidateEntity]
    rows: int
    skipped: int


class ChunkedReconciler[TRow]:
    """Drive candidate rows into the persisted dataset chunk by chunk."""

    def __init__(
        self,
        *,
        unit_of_work_factory: Callable[[], ReconcileUnitOfWork],
        mapper: RowMapper[TRow],
        error_policy: ErrorPolicy = ErrorPolicy.STOP_ON_ERROR,
        deletion_policy: DeletionPolicy = DeletionPolicy.REPORT_ONLY,
        commit_interval: int = DEFAULT_COMMIT_INTERVAL,
        transform_workers: int = 1,
        observers: Sequence[RunObserver] = (),
        stop_requested: Callable[[], bool] = _never,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        if commit_interval < 1:
            raise ValueError(f"commit_interval must be positive, got {commit_interval}")
        self._uow_factory = unit_of_work_factory
        self._mapper = mapper
        self.error_policy = error_policy
        self.deletion_policy = deletion_policy
        self.commit_interval = commit_interval
        self.transform_workers = transform_workers
        self._observers = tuple(observers)
        self._stop_requested = stop_requested
        self._clock = clock

    def run(self, context: RunContext, rows: Iterable[TRow | ParseError]) -> ReconcileResult:
        """Apply ``rows`` after skipping those the checkpoint already covers.

        Raises ``RowError`` (stop-on-error / all-or-nothing), ``CommitError`` or
        ``RunCancelledError``. Whatever was committed before the failure stays
        committed and is reflected by ``context.checkpoint``.
        """

        checkpoint = context.require_checkpoint()
        if checkpoint.finalized:
            log.info(
                "Run %s already applied every row and its deletion pass; nothing to reconcile",
                checkpoint.run_id,
            )
            context.deleted_or_stale = checkpoint.deleted_or_stale
            return ReconcileResult(
                checkpoint=checkpoint, deleted_or_stale=checkpoint.deleted_or_stale
            )

        remaining = islice(rows, checkpoint.rows_consumed, None)
        if checkpoint.rows_consumed:
            log.info(
                "Resuming run %s after %s rows (%s chunks committed)",
                checkpoint.run_id,
                checkpoint.rows_consumed,
                checkpoint.chunks_committed,
            )

        executor: ThreadPoolExecutor | None = None
        if self.transform_workers > 1:
            executor = ThreadPoolExecutor(
                max_workers=self.transform_workers,
                thread_name_prefix="refsync-transform",
            )
        try:
            if self.error_policy is ErrorPolicy.ALL_OR_NOTHING:
                return self._run_deferred(context, remaining, executor)
            return self._run_per_chunk(context, remaining, executor)
        finally:
            if executor is not None:
                executor.shutdown(wait=True)

    # Per-chunk transactions -------------------------------------------------

    def _run_per_chunk(
        self,
        context: RunContext,
        rows: Iterator[TRow | ParseError],
        executor: Executor | None,
    ) -> ReconcileResult:
        index = context.require_index()
        result = ReconcileResult(checkpoint=context.require_checkpoint())

        for chunk in self._chunks(rows):
            work = self._transform(chunk, executor)
            checkpoint = context.require_checkpoint()
            now = self._clock()
            with self._uow_factory() as uow:
                index.begin()
                try:
                    inserted, updated = self._apply_all(
                        index, work.candidates, uow.repositories.entities, checkpoint, now
                    )
                    next_checkpoint = checkpoint.advance(
                        rows=work.rows, skipped=work.skipped, updated_at=now
                    )
                    uow.repositories.checkpoints.save(next_checkpoint)
                    uow.commit()
                except BaseException:
                    index.rollback()
                    raise
                index.commit()

            context.checkpoint = next_checkpoint
            summary = ChunkSummary(
                number=next_checkpoint.chunks_committed,
                rows=work.rows,
                skipped=work.skipped,
                inserted=inserted,
                updated=updated,
                checkpoint=next_checkpoint,
            )
            self._chunk_committed(context, summary)
            result.chunks.append(summary)

        now = self._clock()
        with self._uow_factory() as uow:
            index.begin()
            try:
                deleted = self._apply_deletions(index, uow.repositories.entities, now)
                final_checkpoint = context.require_checkpoint().finalize(
                    deleted_or_stale=deleted, updated_at=now
                )
                uow.repositories.checkpoints.save(final_checkpoint)
                uow.commit()
            except BaseException:
                index.rollback()
                raise
            index.commit()

        context.checkpoint = final_checkpoint
        context.deleted_or_stale = deleted
        result.checkpoint = final_checkpoint
        result.deleted_or_stale = deleted
        return result

    # Whole-run transaction (all-or-nothing) ------------------------------------

    def _run_deferred(
        self,
        context: RunContext,
        rows: Iterator[TRow | ParseError],
        executor: Executor | None,
    ) -> ReconcileResult:
        index = context.require_index()
        checkpoint = context.require_checkpoint()
        pending: list[ChunkSummary] = []

        with self._uow_factory() as uow:
            index.begin()
            try:
                for chunk in self._chunks(rows):
                    work = self._transform(chunk, executor)
                    now = self._clock()
                    inserted, updated = self._apply_all(
                        index, work.candidates, uow.repositories.entities, checkpoint, now
                    )
                    checkpoint = checkpoint.advance(
                        rows=work.rows, skipped=work.skipped, updated_at=now
                    )
                    uow.flush()
                    pending.append(
                        ChunkSummary(
                            number=checkpoint.chunks_committed,
                            rows=work.rows,
                            skipped=work.skipped,
                            inserted=inserted,
                            updated=updated,
                            checkpoint=checkpoint,
                        )
                    )

                now = self._clock()
                deleted = self._apply_deletions(index, uow.repositories.entities, now)
                checkpoint = checkpoint.finalize(deleted_or_stale=deleted, updated_at=now)
                uow.repositories.checkpoints.save(checkpoint)
                uow.commit()
            except BaseException:
                index.rollback()
                raise
            index.commit()

        context.checkpoint = checkpoint
        context.deleted_or_stale = deleted
        for summary in pending:
            self._chunk_committed(context, summary)
        return ReconcileResult(checkpoint=checkpoint, chunks=pending, deleted_or_stale=deleted)

    # Stages ---------------------------------------------------------------

    def _chunks(self, rows: Iterator[TRow | ParseError]) -> Iterator[list[TRow | ParseError]]:
        """READ: yield bounded chunks, honouring stop requests between chunks only."""

        while True:
            if self._stop_requested():
                log.warning("Stop requested; halting at chunk boundary")
                raise RunCancelledError("Run cancelled at chunk boundary")
            chunk = list(islice(rows, self.commit_interval))
            if not chunk:
                return
            yield chunk

    def _transform(
        self,
        chunk: list[TRow | ParseError],
        executor: Executor | None,
    ) -> _ChunkWork:
        """TRANSFORM: map rows, classifying row-level failures per error policy."""

        if executor is None:
            results = [self._translate(row) for row in chunk]
        else:
            results = list(executor.map(self._translate, chunk))

        candidates: list[CandidateEntity] = []
        skipped = 0
        for item in results:
            if isinstance(item, RowError):
                if self.error_policy is not ErrorPolicy.BEST_EFFORT:
                    raise item
                skipped += 1
                log.warning("Skipping row: %s", item)
                continue
            candidates.append(item)
        return _ChunkWork(candidates=candidates, rows=len(chunk), skipped=skipped)

    def _translate(self, row: TRow | ParseError) -> CandidateEntity | RowError:
        if isinstance(row, ParseError):
            return row
        try:
            return self._mapper.translate(row)
        except TransformError as exc:
            return exc

    def _apply_all(
        self,
        index: IdentityIndex,
        candidates: list[CandidateEntity],
        repository: ReferenceEntityRepository,
        checkpoint: Checkpoint,
        now: datetime,
    ) -> tuple[int, int]:
        """APPLY: serial, in feed order."""

        inserted = updated = 0
        for candidate in candidates:
            outcome = index.apply(candidate, repository, run_id=checkpoint.run_id, now=now)
            if outcome.action is ApplyAction.INSERT:
                inserted += 1
            else:
                updated += 1
        return inserted, updated

    def _apply_deletions(
        self,
        index: IdentityIndex,
        repository: ReferenceEntityRepository,
        now: datetime,
    ) -> int:
        if self.deletion_policy is DeletionPolicy.REPORT_ONLY:
            return 0
        if self.deletion_policy is DeletionPolicy.MARK_STALE:
            # rows flagged by an earlier run are not counted again
            entries = index.untouched(include_stale=False)
        else:
            entries = index.untouched()
        entity_ids = [entry.entity_id for entry in entries if entry.entity_id]
        if not entity_ids:
            return 0
        if self.deletion_policy is DeletionPolicy.MARK_STALE:
            affected = repository.mark_stale(entity_ids, updated_at=now)
        else:
            affected = repository.delete(entity_ids)
            for entry in entries:
                index.discard(entry.identity)
        log.info("Deletion policy %s affected %s entities", self.deletion_policy, affected)
        return affected

    def _chunk_committed(self, context: RunContext, summary: ChunkSummary) -> None:
        log.debug(
            "Chunk %s committed: rows=%s, inserted=%s, updated=%s, skipped=%s",
            summary.number,
            summary.rows,
            summary.inserted,
            summary.updated,
            summary.skipped,
        )
        for observer in self._observers:
            observer.on_chunk_committed(context, summary)
