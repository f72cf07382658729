"""Ports for retrieving the remote feed into a local cache."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from pathlib import Path


@dataclass(frozen=True, slots=True)
class CacheHandle:
    """A complete, content-stable feed file on local disk."""

    path: Path
    size_bytes: int
    sha256: str
    reused: bool = False


@runtime_checkable
class FeedFetcher(Protocol):
    """Fetch the bytes behind ``source_url`` into ``cache_path`` (once).

    Implementations must reuse an existing file at ``cache_path`` and must never
    leave a partial file there. Failures raise ``FetchError``.
    """

    def fetch(self, source_url: str, cache_path: Path) -> CacheHandle: ...


__all__ = ["CacheHandle", "FeedFetcher"]
