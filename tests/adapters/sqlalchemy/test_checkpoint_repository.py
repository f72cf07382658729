from __future__ import annotations

from datetime import UTC, datetime
from typing import TYPE_CHECKING
from uuid import uuid4

from refsync.domain.model import Checkpoint, RunStatus, StepName

if TYPE_CHECKING:
    from collections.abc import Callable

    from refsync.adapters.sqlalchemy.unit_of_work import SqlAlchemyReconcileUnitOfWork

    UowFactory = Callable[[], SqlAlchemyReconcileUnitOfWork]


def _checkpoint() -> Checkpoint:
    return Checkpoint(
        run_key="0123456789abcdef",
        run_id=uuid4(),
        source_url="https://feeds.example.org/reference.csv",
        cache_digest="f" * 64,
        updated_at=datetime(2026, 2, 1, tzinfo=UTC),
    )


def test_save_inserts_then_updates(sqlite_unit_of_work: UowFactory) -> None:
    checkpoint = _checkpoint()
    with sqlite_unit_of_work() as uow:
        uow.repositories.checkpoints.save(checkpoint)
        uow.commit()

    advanced = checkpoint.advance(rows=500, skipped=2).with_status(
        RunStatus.FAILED, step=StepName.PROCESS, reason="commit"
    )
    with sqlite_unit_of_work() as uow:
        uow.repositories.checkpoints.save(advanced)
        uow.commit()

    with sqlite_unit_of_work() as uow:
        stored = uow.repositories.checkpoints.get(checkpoint.run_key)

    assert stored == advanced


def test_finalized_flag_survives_storage(sqlite_unit_of_work: UowFactory) -> None:
    checkpoint = _checkpoint().finalize(
        deleted_or_stale=3, updated_at=datetime(2026, 2, 2, tzinfo=UTC)
    )
    with sqlite_unit_of_work() as uow:
        uow.repositories.checkpoints.save(checkpoint)
        uow.commit()

    with sqlite_unit_of_work() as uow:
        stored = uow.repositories.checkpoints.get(checkpoint.run_key)

    assert stored is not None
    assert stored.finalized is True
    assert stored.deleted_or_stale == 3
    assert stored.status is RunStatus.RUNNING
    assert stored.step is None


def test_delete_removes_checkpoint(sqlite_unit_of_work: UowFactory) -> None:
    checkpoint = _checkpoint()
    with sqlite_unit_of_work() as uow:
        uow.repositories.checkpoints.save(checkpoint)
        uow.commit()

    with sqlite_unit_of_work() as uow:
        uow.repositories.checkpoints.delete(checkpoint.run_key)
        uow.commit()

    with sqlite_unit_of_work() as uow:
        assert uow.repositories.checkpoints.get(checkpoint.run_key) is None


def test_uncommitted_checkpoint_is_discarded(sqlite_unit_of_work: UowFactory) -> None:
    checkpoint = _checkpoint()
    with sqlite_unit_of_work() as uow:
        uow.repositories.checkpoints.save(checkpoint)

    with sqlite_unit_of_work() as uow:
        assert uow.repositories.checkpoints.get(checkpoint.run_key) is None
