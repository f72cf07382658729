"""Publish the observed status map once the main loop is over."""

from __future__ import annotations

from logging import getLogger
from typing import TYPE_CHECKING

from refsync.domain.errors import RunStateError
from refsync.domain.ports.reporting import StatusReport

if TYPE_CHECKING:
    from refsync.domain.model import DiffStats
    from refsync.domain.ports.reporting import StatusSink

    from .context import RunContext

log = getLogger(__name__)


def publish_status(context: RunContext, sink: StatusSink | None = None) -> DiffStats:
    """Derive ``DiffStats`` from the index, hand the status map to ``sink``, then
    release the index.

    The index is released even when the sink fails: reporting is auditing only
    and never keeps the snapshot alive.
    """

    index = context.require_index()
    run_id = context.run_id
    if run_id is None:
        raise RunStateError("Cannot publish status before the run has an id")
    try:
        stats = index.stats(deleted_or_stale=context.deleted_or_stale)
        context.metrics.stats = stats
        if sink is not None:
            sink.publish(StatusReport(run_id=run_id, stats=stats, statuses=index.status_map()))
    finally:
        context.release_index()
    return stats
