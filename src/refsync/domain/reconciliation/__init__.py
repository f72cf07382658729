"""Chunked reconciliation of a published reference snapshot against storage.

Flow of one run:
1) fetch the feed once into a content-stable local cache
2) optionally gate on the fraction of persisted entities the feed would drop
3) load the identity index and apply the feed chunk by chunk, checkpointing
   after every commit
4) publish the observed status map and release the index
5) remove the cache and checkpoint once the run completed
"""

from __future__ import annotations

from .cleanup import cleanup
from .context import (
    DEFAULT_COMMIT_INTERVAL,
    DEFAULT_DELETE_THRESHOLD,
    RunContext,
    RunParameters,
    derive_run_key,
)
from .identity_index import ApplyOutcome, IdentityIndex, IndexEntry
from .pipeline import ReconciliationPipeline, reason_for
from .precheck import GateDecision, evaluate_gate, precheck
from .reconciler import ChunkedReconciler, ReconcileResult
from .status import publish_status

__all__ = [
    "DEFAULT_COMMIT_INTERVAL",
    "DEFAULT_DELETE_THRESHOLD",
    "ApplyOutcome",
    "ChunkedReconciler",
    "GateDecision",
    "IdentityIndex",
    "IndexEntry",
    "ReconcileResult",
    "ReconciliationPipeline",
    "RunContext",
    "RunParameters",
    "cleanup",
    "derive_run_key",
    "evaluate_gate",
    "precheck",
    "publish_status",
    "reason_for",
]
