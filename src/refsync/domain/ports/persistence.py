"""Ports for persisting reference entities and run checkpoints."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import Iterator, Sequence
    from datetime import datetime
    from uuid import UUID

    from refsync.domain.model import Checkpoint, Identity, ReferenceAttributes, ReferenceEntity


@runtime_checkable
class ReferenceEntityRepository(Protocol):
    """Persistence contract for the reconciled dataset."""

    def get(self, entity_id: UUID) -> ReferenceEntity | None: ...

    def get_by_identity(self, identity: Identity) -> ReferenceEntity | None: ...

    def add(self, entity: ReferenceEntity) -> None: ...

    def update(
        self,
        identity: Identity,
        attributes: ReferenceAttributes,
        *,
        run_id: UUID,
        changed: bool,
        updated_at: datetime,
    ) -> None:
        """Merge ``attributes`` into the row keyed by ``identity``."""
        ...

    def iter_all(self, *, batch_size: int = 1000) -> Iterator[ReferenceEntity]: ...

    def identities(self) -> Iterator[Identity]:
        """Yield the identities of live (not stale) entities."""
        ...

    def mark_stale(self, entity_ids: Sequence[UUID], *, updated_at: datetime) -> int:
        """Flag live entities as stale; returns how many were newly flagged."""
        ...

    def delete(self, entity_ids: Sequence[UUID]) -> int: ...

    def count(self) -> int: ...


@runtime_checkable
class CheckpointRepository(Protocol):
    """Persistence contract for run checkpoints, keyed by run key."""

    def get(self, run_key: str) -> Checkpoint | None: ...

    def save(self, checkpoint: Checkpoint) -> None: ...

    def delete(self, run_key: str) -> None: ...


__all__ = ["CheckpointRepository", "ReferenceEntityRepository"]
