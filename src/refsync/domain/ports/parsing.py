"""Ports for turning cached feed bytes into candidate entities.

Two narrow seams: a parser producing row records lazily, and a mapper turning
one row record into a candidate entity. Either can be swapped without touching
the reconciliation core.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import Iterator
    from pathlib import Path

    from refsync.domain.errors import ParseError
    from refsync.domain.model import CandidateEntity, Identity


@runtime_checkable
class FeedParser[TRow](Protocol):
    """Lazily parse a cached feed.

    Yields one item per data line, in file order: either the row record or the
    ``ParseError`` describing why that line is unusable. Failures affecting the
    whole file (unreadable, wrong header) are raised instead.
    """

    def parse(self, path: Path) -> Iterator[TRow | ParseError]: ...


@runtime_checkable
class RowMapper[TRow](Protocol):
    """Pure mapping from a row record to the domain candidate shape."""

    def translate(self, row: TRow) -> CandidateEntity:
        """Return the candidate for ``row`` or raise ``TransformError``."""
        ...

    def identity(self, row: TRow) -> Identity:
        """Extract only the natural identity (used by the deletion gate)."""
        ...


__all__ = ["FeedParser", "RowMapper"]
