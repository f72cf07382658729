"""Repository implementations backed by SQLAlchemy sessions."""

from __future__ import annotations

from itertools import batched
from typing import TYPE_CHECKING, Any, Final, cast

from sqlalchemy import delete, func, insert, select, update

from refsync.adapters.sqlalchemy.mappings import checkpoint_table, reference_entity_table
from refsync.domain.errors import ReconciliationError
from refsync.domain.model import Checkpoint, Identity, ReferenceEntity, RunStatus, StepName

if TYPE_CHECKING:
    from collections.abc import Iterator, Mapping, Sequence
    from datetime import datetime
    from uuid import UUID

    from sqlalchemy import ColumnElement
    from sqlalchemy.engine import CursorResult
    from sqlalchemy.orm import Session

    from refsync.domain.model import ReferenceAttributes

# keeps IN clauses below SQLite's host parameter limit
ID_BATCH_SIZE: Final[int] = 500


def _identity_clause(identity: Identity) -> tuple[ColumnElement[bool], ...]:
    columns = reference_entity_table.c
    return (
        columns.authority == identity.authority,
        columns.scheme == identity.scheme,
        columns.code == identity.code,
    )


def _rowcount(result: object) -> int:
    return cast("CursorResult[Any]", result).rowcount


class SqlAlchemyReferenceEntityRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def get(self, entity_id: UUID) -> ReferenceEntity | None:
        return self.session.get(ReferenceEntity, entity_id)

    def get_by_identity(self, identity: Identity) -> ReferenceEntity | None:
        stmt = select(ReferenceEntity).where(*_identity_clause(identity))
        return self.session.execute(stmt).scalar_one_or_none()

    def add(self, entity: ReferenceEntity) -> None:
        self.session.add(entity)

    def update(
        self,
        identity: Identity,
        attributes: ReferenceAttributes,
        *,
        run_id: UUID,
        changed: bool,
        updated_at: datetime,
    ) -> None:
        # the row may have been added earlier in this session
        if self.session.new:
            self.session.flush()

        values: dict[str, object] = {
            "name": attributes.name,
            "category": attributes.category,
            "valid_from": attributes.valid_from,
            "valid_to": attributes.valid_to,
            "stale": False,
            "seen_run_id": run_id,
            "updated_at": updated_at,
        }
        if changed:
            values["changed_run_id"] = run_id
        stmt = update(reference_entity_table).where(*_identity_clause(identity)).values(**values)
        if _rowcount(self.session.execute(stmt)) == 0:
            raise ReconciliationError(f"No persisted entity for identity {identity}")

    def iter_all(self, *, batch_size: int = 1000) -> Iterator[ReferenceEntity]:
        stmt = select(ReferenceEntity).execution_options(yield_per=batch_size)
        yield from self.session.execute(stmt).scalars()

    def identities(self) -> Iterator[Identity]:
        columns = reference_entity_table.c
        stmt = select(columns.authority, columns.scheme, columns.code).where(
            columns.stale.is_(False)
        )
        for authority, scheme, code in self.session.execute(stmt):
            yield Identity(authority=authority, scheme=scheme, code=code)

    def mark_stale(self, entity_ids: Sequence[UUID], *, updated_at: datetime) -> int:
        affected = 0
        for batch in batched(entity_ids, ID_BATCH_SIZE):
            stmt = (
                update(reference_entity_table)
                .where(
                    reference_entity_table.c.id.in_(batch),
                    reference_entity_table.c.stale.is_(False),
                )
                .values(stale=True, updated_at=updated_at)
            )
            affected += _rowcount(self.session.execute(stmt))
        return affected

    def delete(self, entity_ids: Sequence[UUID]) -> int:
        affected = 0
        for batch in batched(entity_ids, ID_BATCH_SIZE):
            stmt = delete(reference_entity_table).where(reference_entity_table.c.id.in_(batch))
            affected += _rowcount(self.session.execute(stmt))
        return affected

    def count(self) -> int:
        stmt = select(func.count()).select_from(reference_entity_table)
        return int(self.session.execute(stmt).scalar_one())


class SqlAlchemyCheckpointRepository:
    """Checkpoint rows are read and written through Core; the domain value stays frozen."""

    def __init__(self, session: Session) -> None:
        self.session = session

    def get(self, run_key: str) -> Checkpoint | None:
        stmt = select(checkpoint_table).where(checkpoint_table.c.run_key == run_key)
        row = self.session.execute(stmt).mappings().one_or_none()
        if row is None:
            return None
        return _checkpoint_from_row(row)

    def save(self, checkpoint: Checkpoint) -> None:
        values = _checkpoint_values(checkpoint)
        stmt = (
            update(checkpoint_table)
            .where(checkpoint_table.c.run_key == checkpoint.run_key)
            .values(**values)
        )
        if _rowcount(self.session.execute(stmt)) == 0:
            self.session.execute(
                insert(checkpoint_table).values(run_key=checkpoint.run_key, **values)
            )

    def delete(self, run_key: str) -> None:
        self.session.execute(delete(checkpoint_table).where(checkpoint_table.c.run_key == run_key))


def _checkpoint_values(checkpoint: Checkpoint) -> dict[str, object]:
    return {
        "run_id": checkpoint.run_id,
        "source_url": checkpoint.source_url,
        "cache_digest": checkpoint.cache_digest,
        "rows_consumed": checkpoint.rows_consumed,
        "chunks_committed": checkpoint.chunks_committed,
        "rows_skipped": checkpoint.rows_skipped,
        "finalized": checkpoint.finalized,
        "deleted_or_stale": checkpoint.deleted_or_stale,
        "status": checkpoint.status.value,
        "step": checkpoint.step.value if checkpoint.step else None,
        "reason": checkpoint.reason,
        "updated_at": checkpoint.updated_at,
    }


def _checkpoint_from_row(row: Mapping[str, Any]) -> Checkpoint:
    step = row["step"]
    return Checkpoint(
        run_key=row["run_key"],
        run_id=row["run_id"],
        source_url=row["source_url"],
        cache_digest=row["cache_digest"],
        rows_consumed=row["rows_consumed"],
        chunks_committed=row["chunks_committed"],
        rows_skipped=row["rows_skipped"],
        finalized=bool(row["finalized"]),
        deleted_or_stale=row["deleted_or_stale"],
        status=RunStatus(row["status"]),
        step=StepName(step) if step else None,
        reason=row["reason"],
        updated_at=row["updated_at"],
    )
