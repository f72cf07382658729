"""Reconciliation run defaults, overridable through the environment."""

from __future__ import annotations

from dataclasses import dataclass

from refsync.domain.model import DeletionPolicy, ErrorPolicy, ReconcileMode
from refsync.domain.reconciliation.context import (
    DEFAULT_COMMIT_INTERVAL,
    DEFAULT_DELETE_THRESHOLD,
)

from .env import env_choice, env_float, env_int
from .errors import ConfigurationError


@dataclass(frozen=True, slots=True)
class SyncConfig:
    commit_interval: int = DEFAULT_COMMIT_INTERVAL
    delete_threshold: float = DEFAULT_DELETE_THRESHOLD
    mode: ReconcileMode = ReconcileMode.FULL_STREAMING
    error_policy: ErrorPolicy = ErrorPolicy.STOP_ON_ERROR
    deletion_policy: DeletionPolicy = DeletionPolicy.REPORT_ONLY
    transform_workers: int = 1

    def __post_init__(self) -> None:
        if self.commit_interval < 1:
            raise ConfigurationError(
                f"Commit interval must be a positive integer, got {self.commit_interval}",
                setting="commit_interval",
            )
        if not 0.0 <= self.delete_threshold <= 1.0:
            raise ConfigurationError(
                f"Delete threshold must be within [0, 1], got {self.delete_threshold}",
                setting="delete_threshold",
            )
        if self.transform_workers < 1:
            raise ConfigurationError(
                f"Transform workers must be a positive integer, got {self.transform_workers}",
                setting="transform_workers",
            )


def get_sync_config() -> SyncConfig:
    return SyncConfig(
        commit_interval=env_int("REFSYNC_COMMIT_INTERVAL", DEFAULT_COMMIT_INTERVAL),
        delete_threshold=env_float("REFSYNC_DELETE_THRESHOLD", DEFAULT_DELETE_THRESHOLD),
        mode=env_choice("REFSYNC_MODE", ReconcileMode, ReconcileMode.FULL_STREAMING),
        error_policy=env_choice("REFSYNC_ERROR_POLICY", ErrorPolicy, ErrorPolicy.STOP_ON_ERROR),
        deletion_policy=env_choice(
            "REFSYNC_DELETION_POLICY", DeletionPolicy, DeletionPolicy.REPORT_ONLY
        ),
        transform_workers=env_int("REFSYNC_TRANSFORM_WORKERS", 1),
    )
