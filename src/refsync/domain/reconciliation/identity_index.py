"""Writer-side snapshot of the persisted dataset keyed by natural identity.

The index is loaded once per run with a single bulk read and then decides, in
memory, whether each candidate is an insert or an update. This trades
O(dataset) memory for not issuing an existence query per row, and it is only
valid while the run is the sole writer of the dataset. Concurrent writers
invalidate the snapshot; nothing here detects them.

The index is not safe for concurrent ``apply`` calls; callers serialise them.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING

from refsync.domain.model import (
    ApplyAction,
    DiffStats,
    ObservedStatus,
    ReferenceEntity,
)

if TYPE_CHECKING:
    from collections.abc import Iterable, Iterator
    from datetime import datetime
    from uuid import UUID

    from refsync.domain.model import CandidateEntity, Identity, ReferenceAttributes
    from refsync.domain.ports.persistence import ReferenceEntityRepository


@dataclass(frozen=True, slots=True)
class IndexEntry:
    identity: Identity
    entity_id: UUID | None
    attributes: ReferenceAttributes | None
    status: ObservedStatus = ObservedStatus.UNTOUCHED
    changed: bool = False
    stale: bool = False


@dataclass(frozen=True, slots=True)
class ApplyOutcome:
    identity: Identity
    action: ApplyAction
    status: ObservedStatus
    changed: bool


class IdentityIndex:
    """Identity -> entry mapping with a transactional undo journal."""

    def __init__(self) -> None:
        self._entries: dict[Identity, IndexEntry] = {}
        self._journal: dict[Identity, IndexEntry | None] | None = None

    @classmethod
    def load(
        cls,
        entities: Iterable[ReferenceEntity],
        *,
        run_id: UUID | None = None,
    ) -> IdentityIndex:
        """Build the index from every persisted entity.

        Rows already created or seen by ``run_id`` (a resumed run) load with the
        status that run gave them, so statistics survive a restart.
        """

        index = cls()
        for entity in entities:
            identity = entity.identity
            if identity in index._entries:
                raise ValueError(f"Duplicate persisted identity: {identity}")
            index._entries[identity] = _entry_for(entity, run_id)
        return index

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, identity: object) -> bool:
        return identity in self._entries

    def __iter__(self) -> Iterator[IndexEntry]:
        return iter(self._entries.values())

    def get(self, identity: Identity) -> IndexEntry | None:
        return self._entries.get(identity)

    def apply(
        self,
        candidate: CandidateEntity,
        repository: ReferenceEntityRepository,
        *,
        run_id: UUID,
        now: datetime,
    ) -> ApplyOutcome:
        """Instruct ``repository`` to insert or merge ``candidate``.

        The decision depends only on the candidate's identity and the index's
        current state: re-applying an identity never inserts twice.
        """

        identity = candidate.identity
        entry = self._entries.get(identity)

        if entry is None:
            entity = ReferenceEntity.from_candidate(candidate, run_id=run_id, updated_at=now)
            repository.add(entity)
            self._put(
                IndexEntry(
                    identity=identity,
                    entity_id=entity.id,
                    attributes=candidate.attributes,
                    status=ObservedStatus.NEW,
                )
            )
            return ApplyOutcome(
                identity=identity,
                action=ApplyAction.INSERT,
                status=ObservedStatus.NEW,
                changed=True,
            )

        changed = entry.attributes != candidate.attributes
        repository.update(
            identity,
            candidate.attributes,
            run_id=run_id,
            changed=changed,
            updated_at=now,
        )
        # an entry inserted by this run stays NEW; others become UPDATED
        status = ObservedStatus.NEW if entry.status is ObservedStatus.NEW else ObservedStatus.UPDATED
        self._put(
            replace(
                entry,
                attributes=candidate.attributes,
                status=status,
                changed=entry.changed or (changed and status is ObservedStatus.UPDATED),
                stale=False,
            )
        )
        return ApplyOutcome(
            identity=identity,
            action=ApplyAction.UPDATE,
            status=status,
            changed=changed,
        )

    # Transaction journal --------------------------------------------------

    def begin(self) -> None:
        if self._journal is not None:
            raise RuntimeError("Identity index transaction already open")
        self._journal = {}

    def commit(self) -> None:
        self._journal = None

    def rollback(self) -> None:
        """Restore every entry changed since ``begin``."""

        if self._journal is None:
            return
        for identity, previous in self._journal.items():
            if previous is None:
                self._entries.pop(identity, None)
            else:
                self._entries[identity] = previous
        self._journal = None

    def discard(self, identity: Identity) -> None:
        """Forget a removed entity; journaled like ``apply``."""

        if identity not in self._entries:
            return
        if self._journal is not None and identity not in self._journal:
            self._journal[identity] = self._entries[identity]
        del self._entries[identity]

    def _put(self, entry: IndexEntry) -> None:
        identity = entry.identity
        if self._journal is not None and identity not in self._journal:
            self._journal[identity] = self._entries.get(identity)
        self._entries[identity] = entry

    # Reporting ------------------------------------------------------------

    def untouched(self, *, include_stale: bool = True) -> list[IndexEntry]:
        return [
            entry
            for entry in self._entries.values()
            if entry.status is ObservedStatus.UNTOUCHED and (include_stale or not entry.stale)
        ]

    def stats(self, *, deleted_or_stale: int = 0) -> DiffStats:
        counts = Counter(entry.status for entry in self._entries.values())
        changed = sum(
            1
            for entry in self._entries.values()
            if entry.status is ObservedStatus.UPDATED and entry.changed
        )
        return DiffStats(
            inserted=counts[ObservedStatus.NEW],
            updated=counts[ObservedStatus.UPDATED],
            changed=changed,
            untouched=counts[ObservedStatus.UNTOUCHED],
            deleted_or_stale=deleted_or_stale,
        )

    def status_map(self) -> dict[Identity, ObservedStatus]:
        return {identity: entry.status for identity, entry in self._entries.items()}

    def clear(self) -> None:
        self._entries.clear()
        self._journal = None


def _entry_for(entity: ReferenceEntity, run_id: UUID | None) -> IndexEntry:
    status = ObservedStatus.UNTOUCHED
    changed = False
    if run_id is not None:
        if entity.created_run_id == run_id:
            status = ObservedStatus.NEW
        elif entity.seen_run_id == run_id:
            status = ObservedStatus.UPDATED
            changed = entity.changed_run_id == run_id
    return IndexEntry(
        identity=entity.identity,
        entity_id=entity.id,
        attributes=entity.attributes,
        status=status,
        changed=changed,
        stale=entity.stale,
    )
