from __future__ import annotations

from dataclasses import replace
from typing import TYPE_CHECKING

import pytest

from refsync.adapters.reporting import CollectingStatusSink
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
from refsync.domain.model import ReconcileMode, RunStatus, StepName
from refsync.domain.reconciliation import derive_run_key, reason_for
from tests.helpers.fakes import RecordingObserver
from tests.helpers.feeds import (
    FailingFetcher,
    StaticFeedFetcher,
    feed_line,
    feed_text,
    identity,
)
from tests.helpers.pipeline import FEED_URL, make_params, make_pipeline, persisted, seed

if TYPE_CHECKING:
    from collections.abc import Callable
    from datetime import datetime
    from pathlib import Path

    from refsync.adapters.sqlalchemy.unit_of_work import SqlAlchemyReconcileUnitOfWork
    from refsync.domain.model import Checkpoint

    UowFactory = Callable[[], SqlAlchemyReconcileUnitOfWork]


def _stored_checkpoint(uow_factory: UowFactory) -> Checkpoint | None:
    with uow_factory() as uow:
        return uow.repositories.checkpoints.get(derive_run_key(FEED_URL))


def test_three_row_feed_end_to_end(
    tmp_path: Path,
    sqlite_unit_of_work: UowFactory,
    fixed_clock: Callable[[], datetime],
) -> None:
    seed(sqlite_unit_of_work, [("A", "Alpha"), ("B", "Beta")])
    content = feed_text([feed_line("A", "Alpha v2"), feed_line("B", "Beta"), feed_line("C")])
    sink = CollectingStatusSink()
    observer = RecordingObserver()
    pipeline = make_pipeline(
        sqlite_unit_of_work,
        content=content,
        sink=sink,
        observers=[observer],
        clock=fixed_clock,
    )
    params = make_params(tmp_path, commit_interval=2)

    report = pipeline.run(params)

    assert report.status is RunStatus.COMPLETED
    assert [outcome.step for outcome in report.steps] == [
        StepName.DOWNLOAD,
        StepName.PROCESS,
        StepName.REPORT,
        StepName.CLEANUP,
    ]
    stats = report.metrics.stats
    assert (stats.inserted, stats.updated, stats.changed, stats.untouched) == (1, 2, 1, 0)
    assert report.metrics.rows_read == 3
    assert report.metrics.chunks_committed == 2
    assert [(chunk.inserted, chunk.updated) for chunk in observer.chunks] == [(0, 2), (1, 0)]
    assert persisted(sqlite_unit_of_work) == {
        "A": ("Alpha v2", False),
        "B": ("Beta", False),
        "C": ("Entity C", False),
    }
    assert not params.download_cache.exists()
    assert _stored_checkpoint(sqlite_unit_of_work) is None
    assert sink.last is not None
    assert observer.started == [params.run_key]
    assert observer.reports == [report]


def test_fetch_failure_fails_download_step(
    tmp_path: Path, sqlite_unit_of_work: UowFactory
) -> None:
    pipeline = make_pipeline(sqlite_unit_of_work, fetcher=FailingFetcher(kind="status"))

    report = pipeline.run(make_params(tmp_path))

    assert report.status is RunStatus.FAILED
    assert report.failed_step is StepName.DOWNLOAD
    assert report.reason == "fetch-status"
    assert len(report.steps) == 1
    assert report.run_id is None


def test_two_pass_gate_aborts_before_any_write(
    tmp_path: Path, sqlite_unit_of_work: UowFactory
) -> None:
    seed(sqlite_unit_of_work, [("A", "Alpha"), ("B", "Beta"), ("C", "Gamma"), ("D", "Delta")])
    content = feed_text([feed_line("A", "Alpha v2"), feed_line("E")])
    pipeline = make_pipeline(sqlite_unit_of_work, content=content)
    params = make_params(tmp_path, mode=ReconcileMode.TWO_PASS, delete_threshold=0.2)

    report = pipeline.run(params)

    assert report.status is RunStatus.ABORTED_THRESHOLD
    assert report.failed_step is StepName.PRECHECK
    assert report.reason == "threshold"
    assert report.observed_fraction == pytest.approx(0.75)
    assert [outcome.step for outcome in report.steps] == [StepName.DOWNLOAD, StepName.PRECHECK]
    assert persisted(sqlite_unit_of_work)["A"] == ("Alpha", False)
    assert "E" not in persisted(sqlite_unit_of_work)
    assert params.download_cache.exists()
    checkpoint = _stored_checkpoint(sqlite_unit_of_work)
    assert checkpoint is not None
    assert checkpoint.status is RunStatus.ABORTED_THRESHOLD
    assert checkpoint.step is StepName.PRECHECK
    assert checkpoint.rows_consumed == 0


@pytest.mark.parametrize("mode", [ReconcileMode.TWO_PASS, ReconcileMode.IN_MEMORY_COMPARE])
def test_gate_proceeds_within_threshold(
    tmp_path: Path, sqlite_unit_of_work: UowFactory, mode: ReconcileMode
) -> None:
    seed(sqlite_unit_of_work, [("A", "Alpha"), ("B", "Beta")])
    content = feed_text([feed_line("A", "Alpha"), feed_line("B", "Beta"), feed_line("C")])
    fetcher = StaticFeedFetcher(content)
    pipeline = make_pipeline(sqlite_unit_of_work, fetcher=fetcher)

    report = pipeline.run(make_params(tmp_path, mode=mode))

    assert report.status is RunStatus.COMPLETED
    assert report.step(StepName.PRECHECK) is not None
    assert report.observed_fraction == 0.0
    assert fetcher.downloads == 1
    assert set(persisted(sqlite_unit_of_work)) == {"A", "B", "C"}


def test_process_failure_still_reports_accumulated_stats(
    tmp_path: Path, sqlite_unit_of_work: UowFactory
) -> None:
    content = feed_text(
        [feed_line("A"), feed_line("B"), "ISO,CCY,broken", feed_line("D")],
    )
    sink = CollectingStatusSink()
    pipeline = make_pipeline(sqlite_unit_of_work, content=content, sink=sink)
    params = make_params(tmp_path, commit_interval=2)

    report = pipeline.run(params)

    assert report.status is RunStatus.FAILED
    assert report.failed_step is StepName.PROCESS
    assert report.reason == "parse"
    report_step = report.step(StepName.REPORT)
    assert report_step is not None
    assert report_step.status is RunStatus.COMPLETED
    assert report.step(StepName.CLEANUP) is None
    assert report.metrics.stats.inserted == 2
    assert report.metrics.rows_read == 2
    assert sink.last is not None
    assert params.download_cache.exists()
    checkpoint = _stored_checkpoint(sqlite_unit_of_work)
    assert checkpoint is not None
    assert checkpoint.status is RunStatus.FAILED
    assert checkpoint.reason == "parse"
    assert checkpoint.rows_consumed == 2


def test_changed_cache_is_rejected_on_resume(
    tmp_path: Path, sqlite_unit_of_work: UowFactory
) -> None:
    content = feed_text([feed_line(code) for code in ("A", "B", "C", "D")])
    observer = RecordingObserver()
    params = make_params(tmp_path, commit_interval=2)
    first = make_pipeline(
        sqlite_unit_of_work,
        content=content,
        observers=[observer],
        stop_requested=lambda: len(observer.chunks) >= 1,
    ).run(params)
    assert first.reason == "cancelled"

    params.download_cache.write_text(
        feed_text([feed_line(code) for code in ("X", "A", "B", "C", "D")]), encoding="utf-8"
    )
    second = make_pipeline(sqlite_unit_of_work, content=content).run(params)

    assert second.status is RunStatus.FAILED
    assert second.reason == "cache-mismatch"
    assert set(persisted(sqlite_unit_of_work)) == {"A", "B"}



def test_two_pass_reports_changed_cache_against_process(
    tmp_path: Path, sqlite_unit_of_work: UowFactory
) -> None:
    content = feed_text([feed_line(code) for code in ("A", "B", "C", "D")])
    observer = RecordingObserver()
    params = make_params(tmp_path, commit_interval=2)
    make_pipeline(
        sqlite_unit_of_work,
        content=content,
        observers=[observer],
        stop_requested=lambda: len(observer.chunks) >= 1,
    ).run(params)

    params.download_cache.write_text(
        feed_text([feed_line(code) for code in ("X", "A", "B", "C", "D")]), encoding="utf-8"
    )
    two_pass = replace(params, mode=ReconcileMode.TWO_PASS)
    report = make_pipeline(sqlite_unit_of_work, content=content).run(two_pass)

    assert report.status is RunStatus.FAILED
    assert report.failed_step is StepName.PROCESS
    assert report.reason == "cache-mismatch"
    precheck_step = report.step(StepName.PRECHECK)
    assert precheck_step is not None
    assert precheck_step.status is RunStatus.COMPLETED
    checkpoint = _stored_checkpoint(sqlite_unit_of_work)
    assert checkpoint is not None
    assert checkpoint.step is StepName.PROCESS
    assert checkpoint.rows_consumed == 2
    assert set(persisted(sqlite_unit_of_work)) == {"A", "B"}


def test_gate_ignores_rows_already_marked_stale(
    tmp_path: Path, sqlite_unit_of_work: UowFactory, fixed_clock: Callable[[], datetime]
) -> None:
    seed(sqlite_unit_of_work, [("A", "Alpha"), ("B", "Beta"), ("Z", "Zulu")])
    with sqlite_unit_of_work() as uow:
        entities = uow.repositories.entities
        zulu = entities.get_by_identity(identity("Z"))
        assert zulu is not None
        entities.mark_stale([zulu.id], updated_at=fixed_clock())
        uow.commit()
    content = feed_text([feed_line("A", "Alpha"), feed_line("B", "Beta")])
    params = make_params(tmp_path, mode=ReconcileMode.TWO_PASS, delete_threshold=0.2)

    report = make_pipeline(sqlite_unit_of_work, content=content).run(params)

    assert report.status is RunStatus.COMPLETED
    assert report.observed_fraction == 0.0

@pytest.mark.parametrize(
    ("error", "reason"),
    [
        (ThresholdAbortError(0.5, 0.2), "threshold"),
        (FetchError("down", kind="timeout"), "fetch-timeout"),
        (ParseError("bad"), "parse"),
        (TransformError("bad"), "transform"),
        (CommitError("locked"), "commit"),
        (CacheMismatchError("changed"), "cache-mismatch"),
        (RunCancelledError("stop"), "cancelled"),
        (ReconciliationError("other"), "reconciliation"),
        (OSError("disk full"), "error"),
    ],
)
def test_reason_for_maps_errors(error: BaseException, reason: str) -> None:
    assert reason_for(error) == reason
