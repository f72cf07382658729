"""Application orchestration entry points."""

from __future__ import annotations

from collections.abc import Callable
from logging import getLogger
from typing import TYPE_CHECKING

from refsync.adapters.feed import HttpFeedFetcher, ReferenceRowTranslator, reference_feed_parser
from refsync.adapters.reporting import LoggingRunObserver, LoggingStatusSink
from refsync.adapters.sqlalchemy.unit_of_work import (
    SqlAlchemyReconcileUnitOfWork,
    is_started,
    startup,
)
from refsync.config import get_feed_config, get_storage_config, get_sync_config
from refsync.domain.ports.unit_of_work import ReconcileUnitOfWork
from refsync.domain.reconciliation import ReconciliationPipeline, RunParameters, derive_run_key

if TYPE_CHECKING:
    from collections.abc import Sequence
    from pathlib import Path

    from refsync.config import StorageConfig, SyncConfig
    from refsync.domain.model import Checkpoint, RunReport
    from refsync.domain.ports.fetching import FeedFetcher
    from refsync.domain.ports.reporting import RunObserver, StatusSink

UnitOfWorkFactory = Callable[[], ReconcileUnitOfWork]


log = getLogger(__name__)


def _ensure_started() -> None:
    if not is_started():
        startup()


def default_cache_path(input_url: str, *, storage: StorageConfig | None = None) -> Path:
    storage_config = storage or get_storage_config()
    return storage_config.cache_path_for(derive_run_key(input_url))


def build_run_parameters(
    input_url: str,
    *,
    download_cache: Path | None = None,
    sync: SyncConfig | None = None,
    storage: StorageConfig | None = None,
) -> RunParameters:
    sync_config = sync or get_sync_config()
    return RunParameters(
        input_url=input_url,
        download_cache=download_cache or default_cache_path(input_url, storage=storage),
        commit_interval=sync_config.commit_interval,
        delete_threshold=sync_config.delete_threshold,
        mode=sync_config.mode,
        error_policy=sync_config.error_policy,
        deletion_policy=sync_config.deletion_policy,
        transform_workers=sync_config.transform_workers,
    )


def run_reconciliation(
    params: RunParameters,
    *,
    fetcher: FeedFetcher | None = None,
    unit_of_work_factory: UnitOfWorkFactory | None = None,
    status_sink: StatusSink | None = None,
    observers: Sequence[RunObserver] | None = None,
    stop_requested: Callable[[], bool] | None = None,
) -> RunReport:
    """Reconcile the feed behind ``params.input_url`` using the configured adapters."""

    if unit_of_work_factory is None:
        _ensure_started()
    pipeline = ReconciliationPipeline(
        fetcher=fetcher or HttpFeedFetcher(resilience=get_feed_config().resilience),
        parser=reference_feed_parser(),
        mapper=ReferenceRowTranslator(),
        unit_of_work_factory=unit_of_work_factory or SqlAlchemyReconcileUnitOfWork,
        status_sink=status_sink or LoggingStatusSink(),
        observers=observers if observers is not None else (LoggingRunObserver(),),
    )
    if stop_requested is not None:
        pipeline.stop_requested = stop_requested
    return pipeline.run(params)


def show_checkpoint(
    input_url: str,
    *,
    unit_of_work_factory: UnitOfWorkFactory | None = None,
) -> Checkpoint | None:
    """Return the retained checkpoint of the run for ``input_url`` (if any)."""

    if unit_of_work_factory is None:
        _ensure_started()
    with (unit_of_work_factory or SqlAlchemyReconcileUnitOfWork)() as uow:
        return uow.repositories.checkpoints.get(derive_run_key(input_url))


def clear_checkpoint(
    input_url: str,
    *,
    download_cache: Path | None = None,
    remove_cache: bool = False,
    unit_of_work_factory: UnitOfWorkFactory | None = None,
) -> bool:
    """Forget the run for ``input_url`` so the next run starts from scratch.

    Returns whether a checkpoint existed. The cached feed is only removed when
    ``remove_cache`` is set; a retained cache is otherwise reused as-is.
    """

    if unit_of_work_factory is None:
        _ensure_started()
    run_key = derive_run_key(input_url)
    with (unit_of_work_factory or SqlAlchemyReconcileUnitOfWork)() as uow:
        existed = uow.repositories.checkpoints.get(run_key) is not None
        uow.repositories.checkpoints.delete(run_key)
        uow.commit()

    if remove_cache:
        cache_path = download_cache or default_cache_path(input_url)
        cache_path.unlink(missing_ok=True)
        log.info("Removed feed cache %s", cache_path)
    log.info("Cleared checkpoint for run %s (existed=%s)", run_key, existed)
    return existed
