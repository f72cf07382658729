"""Translate validated feed rows into candidate entities."""

from __future__ import annotations

from typing import TYPE_CHECKING

from refsync.domain.errors import TransformError
from refsync.domain.model import CandidateEntity, Identity, ReferenceAttributes

if TYPE_CHECKING:
    from .schema import ReferenceRow


def row_identity(row: ReferenceRow) -> Identity:
    blank = [
        name
        for name, value in (("authority", row.authority), ("scheme", row.scheme), ("code", row.code))
        if not value.strip()
    ]
    if blank:
        raise TransformError(
            f"blank identity part(s): {', '.join(blank)}",
            line_number=row.line_number,
        )
    return Identity.of(row.authority, row.scheme, row.code)


def translate_row(row: ReferenceRow) -> CandidateEntity:
    identity = row_identity(row)
    name = row.name.strip()
    if not name:
        raise TransformError(f"blank name for {identity}", line_number=row.line_number)
    if row.valid_from and row.valid_to and row.valid_to < row.valid_from:
        raise TransformError(
            f"valid_to {row.valid_to} precedes valid_from {row.valid_from} for {identity}",
            line_number=row.line_number,
        )
    return CandidateEntity(
        identity=identity,
        attributes=ReferenceAttributes(
            name=name,
            category=row.category,
            valid_from=row.valid_from,
            valid_to=row.valid_to,
        ),
        line_number=row.line_number,
    )


class ReferenceRowTranslator:
    """``RowMapper`` for ``ReferenceRow``; stateless and safe to share between threads."""

    def translate(self, row: ReferenceRow) -> CandidateEntity:
        return translate_row(row)

    def identity(self, row: ReferenceRow) -> Identity:
        return row_identity(row)


if TYPE_CHECKING:
    from refsync.domain.ports.parsing import RowMapper

    _mapper_check: RowMapper[ReferenceRow] = ReferenceRowTranslator()
