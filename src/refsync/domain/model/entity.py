"""Reference entities: natural identity, attribute payload, persisted shape."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING
from uuid import UUID, uuid4

if TYPE_CHECKING:
    from datetime import date, datetime


def new_id() -> UUID:
    return uuid4()


@dataclass(frozen=True, slots=True)
class Identity:
    """Composite natural key of a reference entity.

    Equality and hashing are defined purely on the three key parts, which makes
    ``Identity`` usable as a dictionary key across runs.
    """

    authority: str
    scheme: str
    code: str

    @classmethod
    def of(cls, authority: str, scheme: str, code: str) -> Identity:
        """Build a normalised identity (trimmed, authority/scheme upper case)."""

        return cls(
            authority=authority.strip().upper(),
            scheme=scheme.strip().upper(),
            code=code.strip(),
        )

    def as_tuple(self) -> tuple[str, str, str]:
        return (self.authority, self.scheme, self.code)

    def __str__(self) -> str:
        return f"{self.authority}/{self.scheme}/{self.code}"


@dataclass(frozen=True, slots=True)
class ReferenceAttributes:
    """Mutable attribute fields of a reference entity, as one comparable value."""

    name: str
    category: str | None = None
    valid_from: date | None = None
    valid_to: date | None = None


@dataclass(frozen=True, slots=True)
class CandidateEntity:
    """One transformed feed row, discarded once its chunk commits."""

    identity: Identity
    attributes: ReferenceAttributes
    line_number: int | None = None


@dataclass(eq=False, kw_only=True)
class ReferenceEntity:
    """Durable reference entity owned by the persistence layer.

    The ``*_run_id`` columns record which run last created, saw or changed the
    row. They let a resumed run rebuild its observed statuses from storage.
    """

    id: UUID = field(default_factory=new_id)
    authority: str
    scheme: str
    code: str
    name: str
    category: str | None = None
    valid_from: date | None = None
    valid_to: date | None = None
    stale: bool = False
    created_run_id: UUID | None = None
    seen_run_id: UUID | None = None
    changed_run_id: UUID | None = None
    updated_at: datetime | None = None

    @property
    def identity(self) -> Identity:
        return Identity(authority=self.authority, scheme=self.scheme, code=self.code)

    @property
    def attributes(self) -> ReferenceAttributes:
        return ReferenceAttributes(
            name=self.name,
            category=self.category,
            valid_from=self.valid_from,
            valid_to=self.valid_to,
        )

    @classmethod
    def from_candidate(
        cls,
        candidate: CandidateEntity,
        *,
        run_id: UUID | None = None,
        updated_at: datetime | None = None,
    ) -> ReferenceEntity:
        identity = candidate.identity
        attributes = candidate.attributes
        return cls(
            authority=identity.authority,
            scheme=identity.scheme,
            code=identity.code,
            name=attributes.name,
            category=attributes.category,
            valid_from=attributes.valid_from,
            valid_to=attributes.valid_to,
            created_run_id=run_id,
            seen_run_id=run_id,
            changed_run_id=run_id,
            updated_at=updated_at,
        )
