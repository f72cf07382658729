"""Remove run artefacts once a run has completed."""

from __future__ import annotations

from logging import getLogger
from typing import TYPE_CHECKING

from refsync.domain.errors import RunStateError

if TYPE_CHECKING:
    from collections.abc import Callable

    from refsync.domain.ports.unit_of_work import ReconcileUnitOfWork

    from .context import RunContext

log = getLogger(__name__)


def cleanup(
    context: RunContext,
    unit_of_work_factory: Callable[[], ReconcileUnitOfWork],
) -> None:
    """Delete the cached feed and the checkpoint of a fully successful run.

    Refuses to run while any executed step did not complete: a failed or
    aborted run keeps both so it can be inspected and resumed.
    """

    if context.state.status.is_terminal or not context.all_steps_completed:
        raise RunStateError("Cleanup is only allowed for a run whose steps all completed")

    cache = context.require_cache()
    # the cache outlives its checkpoint, never the other way round
    with unit_of_work_factory() as uow:
        uow.repositories.checkpoints.delete(context.run_key)
        uow.commit()

    cache.path.unlink(missing_ok=True)
    log.info("Removed feed cache %s", cache.path)
