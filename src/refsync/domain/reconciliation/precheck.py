"""Deletion gate run before the main loop in two-pass and in-memory modes.

The gate estimates how much of the persisted dataset the feed would leave
behind. A feed that drops more than the configured fraction is far more likely
to be truncated or corrupt than a genuine change, so the run is aborted before
anything is written.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from logging import getLogger
from typing import TYPE_CHECKING

from refsync.domain.errors import ParseError, TransformError

if TYPE_CHECKING:
    from collections.abc import Iterable

    from refsync.domain.model import Identity
    from refsync.domain.ports.parsing import RowMapper

log = getLogger(__name__)


@dataclass(frozen=True, slots=True)
class GateDecision:
    proceed: bool
    observed_fraction: float
    threshold: float
    existing: int
    missing: int
    unreadable: int = 0

    @property
    def abort(self) -> bool:
        return not self.proceed


def evaluate_gate(*, existing: int, missing: int, threshold: float) -> GateDecision:
    """Compare the missing fraction with ``threshold`` (strictly greater aborts)."""

    observed = missing / existing if existing else 0.0
    return GateDecision(
        proceed=observed <= threshold,
        observed_fraction=observed,
        threshold=threshold,
        existing=existing,
        missing=missing,
    )


def precheck[TRow](
    rows: Iterable[TRow | ParseError],
    mapper: RowMapper[TRow],
    existing_identities: Iterable[Identity],
    threshold: float,
) -> GateDecision:
    """Stream ``rows`` and decide whether the run may proceed.

    Only the persisted identity set is held in memory; candidate rows are
    reduced to their identity and discarded one by one. Rows that fail to
    parse or yield no identity cannot vouch for any persisted entity and are
    counted as ``unreadable``.
    """

    remaining = set(existing_identities)
    existing = len(remaining)
    unreadable = 0

    for row in rows:
        if isinstance(row, ParseError):
            unreadable += 1
            continue
        try:
            identity = mapper.identity(row)
        except TransformError:
            unreadable += 1
            continue
        remaining.discard(identity)

    decision = evaluate_gate(existing=existing, missing=len(remaining), threshold=threshold)
    log.info(
        "Deletion gate: existing=%s, missing=%s, unreadable=%s, observed=%.3f, threshold=%.3f",
        existing,
        decision.missing,
        unreadable,
        decision.observed_fraction,
        threshold,
    )
    return replace(decision, unreadable=unreadable)
