from __future__ import annotations

from uuid import uuid4

import pytest

from refsync.domain.errors import RunStateError
from refsync.domain.model import Checkpoint, RunState, RunStatus, StepName


def test_run_state_follows_the_lifecycle() -> None:
    state = RunState()
    assert state.status is RunStatus.PENDING

    state.transition(RunStatus.RUNNING)
    state.transition(RunStatus.COMPLETED)

    assert state.status.is_terminal


@pytest.mark.parametrize(
    ("start", "target"),
    [
        (RunStatus.PENDING, RunStatus.COMPLETED),
        (RunStatus.RUNNING, RunStatus.PENDING),
        (RunStatus.COMPLETED, RunStatus.RUNNING),
        (RunStatus.FAILED, RunStatus.COMPLETED),
        (RunStatus.ABORTED_THRESHOLD, RunStatus.RUNNING),
    ],
)
def test_run_state_rejects_invalid_transitions(start: RunStatus, target: RunStatus) -> None:
    state = RunState(status=start)

    with pytest.raises(RunStateError):
        state.transition(target)

    assert state.status is start


def test_checkpoint_advance_accumulates() -> None:
    checkpoint = Checkpoint(run_key="key", run_id=uuid4(), source_url="https://example.org")

    advanced = checkpoint.advance(rows=500, skipped=3).advance(rows=120)

    assert advanced.rows_consumed == 620
    assert advanced.chunks_committed == 2
    assert advanced.rows_skipped == 3
    assert checkpoint.rows_consumed == 0


def test_checkpoint_with_status_records_failure() -> None:
    checkpoint = Checkpoint(run_key="key", run_id=uuid4(), source_url="https://example.org")

    failed = checkpoint.with_status(RunStatus.FAILED, step=StepName.PROCESS, reason="parse")

    assert failed.status is RunStatus.FAILED
    assert failed.step is StepName.PROCESS
    assert failed.reason == "parse"
    assert failed.run_id == checkpoint.run_id
