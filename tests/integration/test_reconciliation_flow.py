"""End-to-end runs over SQLite covering restart, cancellation and idempotence."""

from __future__ import annotations

from typing import TYPE_CHECKING

import httpx
import pytest
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from refsync.adapters.feed import HttpFeedFetcher
from refsync.adapters.http_resilience import ResilientClient
from refsync.adapters.sqlalchemy.unit_of_work import SqlAlchemyReconcileUnitOfWork, startup
from refsync.config.http_resilience import ResilienceConfig, RetryPolicy
from refsync.domain.model import DeletionPolicy, ErrorPolicy, RunStatus, StepName
from refsync.domain.reconciliation import derive_run_key
from tests.helpers.fakes import CommitFailure, FailingStatusSink
from tests.helpers.feeds import feed_line, feed_text
from tests.helpers.pipeline import FEED_URL, make_params, make_pipeline, persisted, seed

if TYPE_CHECKING:
    from collections.abc import Callable
    from pathlib import Path

    from sqlalchemy.engine import Engine

    UowFactory = Callable[[], SqlAlchemyReconcileUnitOfWork]

SEED = [("A", "Alpha"), ("B", "Beta"), ("Z", "Zulu")]
FEED = feed_text(
    [
        feed_line("A", "Alpha v2"),
        feed_line("B", "Beta"),
        feed_line("C"),
        feed_line("D"),
        feed_line("E"),
    ]
)


def _checkpoint_rows(uow_factory: UowFactory) -> int | None:
    with uow_factory() as uow:
        checkpoint = uow.repositories.checkpoints.get(derive_run_key(FEED_URL))
    return checkpoint.rows_consumed if checkpoint is not None else None


@pytest.fixture
def uninterrupted_result(
    tmp_path: Path, sqlite_engine: Engine
) -> dict[str, tuple[str, bool]]:
    """Final dataset of the same run executed without interruption on its own database."""

    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        future=True,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    startup(engine=engine, force=True)
    try:
        seed(SqlAlchemyReconcileUnitOfWork, SEED)
        pipeline = make_pipeline(SqlAlchemyReconcileUnitOfWork, content=FEED)
        report = pipeline.run(
            make_params(tmp_path / "reference-run", deletion_policy=DeletionPolicy.MARK_STALE)
        )
        assert report.status is RunStatus.COMPLETED
        return persisted(SqlAlchemyReconcileUnitOfWork)
    finally:
        startup(engine=sqlite_engine, force=True)
        engine.dispose()


def test_second_run_of_same_feed_changes_nothing(
    tmp_path: Path, sqlite_unit_of_work: UowFactory
) -> None:
    seed(sqlite_unit_of_work, SEED)
    params = make_params(tmp_path)

    first = make_pipeline(sqlite_unit_of_work, content=FEED).run(params)
    after_first = persisted(sqlite_unit_of_work)
    second = make_pipeline(sqlite_unit_of_work, content=FEED).run(params)

    assert first.status is RunStatus.COMPLETED
    assert second.status is RunStatus.COMPLETED
    assert (first.metrics.stats.inserted, first.metrics.stats.changed) == (3, 1)
    stats = second.metrics.stats
    assert (stats.inserted, stats.updated, stats.changed, stats.untouched) == (0, 5, 0, 1)
    assert persisted(sqlite_unit_of_work) == after_first


def test_commit_failure_then_resume_matches_uninterrupted_run(
    tmp_path: Path,
    sqlite_unit_of_work: UowFactory,
    uninterrupted_result: dict[str, tuple[str, bool]],
) -> None:
    seed(sqlite_unit_of_work, SEED)
    params = make_params(tmp_path, deletion_policy=DeletionPolicy.MARK_STALE)
    # commit 1 opens the checkpoint, commit 2 is chunk 1, commit 3 is chunk 2
    failing = CommitFailure(fail_on=3)

    interrupted = make_pipeline(failing.factory(), content=FEED).run(params)

    assert interrupted.status is RunStatus.FAILED
    assert interrupted.failed_step is StepName.PROCESS
    assert interrupted.reason == "commit"
    assert _checkpoint_rows(sqlite_unit_of_work) == 2
    assert set(persisted(sqlite_unit_of_work)) == {"A", "B", "Z"}
    assert params.download_cache.exists()

    resumed = make_pipeline(sqlite_unit_of_work, content="unused").run(params)

    assert resumed.status is RunStatus.COMPLETED
    assert resumed.run_id == interrupted.run_id
    stats = resumed.metrics.stats
    assert (stats.inserted, stats.updated, stats.changed, stats.untouched) == (3, 2, 1, 1)
    assert stats.deleted_or_stale == 1
    assert persisted(sqlite_unit_of_work) == uninterrupted_result
    assert _checkpoint_rows(sqlite_unit_of_work) is None


def test_cancel_then_resume_applies_each_row_once(
    tmp_path: Path,
    sqlite_unit_of_work: UowFactory,
    uninterrupted_result: dict[str, tuple[str, bool]],
) -> None:
    seed(sqlite_unit_of_work, SEED)
    params = make_params(tmp_path, deletion_policy=DeletionPolicy.MARK_STALE)
    answers = iter([False, False])

    cancelled = make_pipeline(
        sqlite_unit_of_work, content=FEED, stop_requested=lambda: next(answers, True)
    ).run(params)

    assert cancelled.status is RunStatus.FAILED
    assert cancelled.reason == "cancelled"
    assert _checkpoint_rows(sqlite_unit_of_work) == 4

    resumed = make_pipeline(sqlite_unit_of_work, content="unused").run(params)

    assert resumed.status is RunStatus.COMPLETED
    assert resumed.metrics.rows_read == 5
    assert resumed.metrics.chunks_committed == 3
    assert persisted(sqlite_unit_of_work) == uninterrupted_result



@pytest.mark.parametrize(
    ("policy", "untouched", "zulu"),
    [
        (DeletionPolicy.MARK_STALE, 1, ("Zulu", True)),
        (DeletionPolicy.HARD_DELETE, 0, None),
    ],
)
def test_report_failure_then_resume_does_not_repeat_deletions(
    tmp_path: Path,
    sqlite_unit_of_work: UowFactory,
    policy: DeletionPolicy,
    untouched: int,
    zulu: tuple[str, bool] | None,
) -> None:
    seed(sqlite_unit_of_work, SEED)
    params = make_params(tmp_path, deletion_policy=policy)

    interrupted = make_pipeline(
        sqlite_unit_of_work, content=FEED, sink=FailingStatusSink()
    ).run(params)

    assert interrupted.status is RunStatus.FAILED
    assert interrupted.failed_step is StepName.REPORT
    assert params.download_cache.exists()
    after_interruption = persisted(sqlite_unit_of_work)
    assert after_interruption.get("Z") == zulu

    resumed = make_pipeline(sqlite_unit_of_work, content="unused").run(params)

    assert resumed.status is RunStatus.COMPLETED
    assert resumed.run_id == interrupted.run_id
    assert resumed.metrics.rows_read == 5
    assert resumed.metrics.chunks_committed == 3
    stats = resumed.metrics.stats
    assert (stats.inserted, stats.updated, stats.changed, stats.untouched) == (3, 2, 1, untouched)
    assert stats.deleted_or_stale == 1
    assert persisted(sqlite_unit_of_work) == after_interruption
    assert _checkpoint_rows(sqlite_unit_of_work) is None
    assert not params.download_cache.exists()


def test_cleanup_failure_keeps_artefacts_and_next_run_completes(
    tmp_path: Path,
    sqlite_unit_of_work: UowFactory,
    uninterrupted_result: dict[str, tuple[str, bool]],
) -> None:
    seed(sqlite_unit_of_work, SEED)
    params = make_params(tmp_path, deletion_policy=DeletionPolicy.MARK_STALE)
    # commits 1-5 open, fill and finalize the checkpoint; commit 6 is cleanup
    failing = CommitFailure(fail_on=6)

    interrupted = make_pipeline(failing.factory(), content=FEED).run(params)

    assert interrupted.status is RunStatus.FAILED
    assert interrupted.failed_step is StepName.CLEANUP
    assert interrupted.reason == "commit"
    assert params.download_cache.exists()
    assert _checkpoint_rows(sqlite_unit_of_work) == 5

    resumed = make_pipeline(sqlite_unit_of_work, content="unused").run(params)

    assert resumed.status is RunStatus.COMPLETED
    assert resumed.metrics.stats.deleted_or_stale == 1
    assert persisted(sqlite_unit_of_work) == uninterrupted_result
    assert _checkpoint_rows(sqlite_unit_of_work) is None
    assert not params.download_cache.exists()


def test_stale_rows_are_counted_once_across_runs(
    tmp_path: Path, sqlite_unit_of_work: UowFactory
) -> None:
    seed(sqlite_unit_of_work, SEED)
    params = make_params(tmp_path, deletion_policy=DeletionPolicy.MARK_STALE)
    without_beta = feed_text(
        [feed_line("A", "Alpha v2"), feed_line("C"), feed_line("D"), feed_line("E")]
    )

    first = make_pipeline(sqlite_unit_of_work, content=FEED).run(params)
    second = make_pipeline(sqlite_unit_of_work, content=without_beta).run(params)

    assert first.metrics.stats.deleted_or_stale == 1
    assert second.status is RunStatus.COMPLETED
    assert second.metrics.stats.deleted_or_stale == 1
    assert second.metrics.stats.untouched == 2
    stored = persisted(sqlite_unit_of_work)
    assert (stored["B"], stored["Z"]) == (("Beta", True), ("Zulu", True))

def test_best_effort_skips_bad_rows_and_completes(
    tmp_path: Path, sqlite_unit_of_work: UowFactory
) -> None:
    content = feed_text(
        [feed_line("A"), "ISO,CCY,BROKEN", feed_line("B", " "), feed_line("C")]
    )
    params = make_params(tmp_path, error_policy=ErrorPolicy.BEST_EFFORT)

    report = make_pipeline(sqlite_unit_of_work, content=content).run(params)

    assert report.status is RunStatus.COMPLETED
    assert report.metrics.skipped == 2
    assert report.metrics.rows_read == 4
    assert set(persisted(sqlite_unit_of_work)) == {"A", "C"}


def test_stop_on_error_keeps_committed_chunks(
    tmp_path: Path, sqlite_unit_of_work: UowFactory
) -> None:
    content = feed_text([feed_line("A"), feed_line("B"), feed_line("C", " "), feed_line("D")])

    report = make_pipeline(sqlite_unit_of_work, content=content).run(make_params(tmp_path))

    assert report.status is RunStatus.FAILED
    assert report.reason == "transform"
    assert set(persisted(sqlite_unit_of_work)) == {"A", "B"}
    assert _checkpoint_rows(sqlite_unit_of_work) == 2


def test_all_or_nothing_failure_leaves_dataset_untouched(
    tmp_path: Path, sqlite_unit_of_work: UowFactory
) -> None:
    seed(sqlite_unit_of_work, SEED)
    before = persisted(sqlite_unit_of_work)
    content = feed_text([feed_line("A", "Alpha v2"), feed_line("C"), feed_line("D", " ")])
    params = make_params(tmp_path, error_policy=ErrorPolicy.ALL_OR_NOTHING)

    report = make_pipeline(sqlite_unit_of_work, content=content).run(params)

    assert report.status is RunStatus.FAILED
    assert report.reason == "transform"
    assert persisted(sqlite_unit_of_work) == before
    assert _checkpoint_rows(sqlite_unit_of_work) == 0


def test_http_feed_is_downloaded_and_reconciled(
    tmp_path: Path, sqlite_unit_of_work: UowFactory
) -> None:
    payload = FEED.encode()
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(200, content=payload)

    def client_factory(config: ResilienceConfig) -> ResilientClient:
        return ResilientClient(config, transport=httpx.MockTransport(handler))

    fetcher = HttpFeedFetcher(
        resilience=ResilienceConfig(name="test-feed", retry=RetryPolicy(total=0)),
        client_factory=client_factory,
    )
    params = make_params(tmp_path)

    report = make_pipeline(sqlite_unit_of_work, fetcher=fetcher).run(params)

    assert report.status is RunStatus.COMPLETED
    assert len(requests) == 1
    assert str(requests[0].url) == FEED_URL
    assert set(persisted(sqlite_unit_of_work)) == {"A", "B", "C", "D", "E"}
    assert not params.download_cache.exists()
