"""Download a feed once into an atomically written local cache file."""

from __future__ import annotations

import asyncio
import hashlib
import os
from dataclasses import dataclass, field
from logging import getLogger
from typing import TYPE_CHECKING

import httpx

from refsync.adapters.http_resilience import ResilientClient
from refsync.config.feed import default_feed_resilience
from refsync.domain.errors import FetchError
from refsync.domain.ports.fetching import CacheHandle

if TYPE_CHECKING:
    from collections.abc import Callable
    from pathlib import Path

    from refsync.config.http_resilience import ResilienceConfig

log = getLogger(__name__)

PARTIAL_SUFFIX = ".part"


def _default_client_factory(config: ResilienceConfig) -> ResilientClient:
    return ResilientClient(config)


def describe_cache(path: Path, *, reused: bool) -> CacheHandle:
    with path.open("rb") as handle:
        digest = hashlib.file_digest(handle, "sha256")
    return CacheHandle(
        path=path,
        size_bytes=path.stat().st_size,
        sha256=digest.hexdigest(),
        reused=reused,
    )


@dataclass(slots=True)
class HttpFeedFetcher:
    resilience: ResilienceConfig = field(default_factory=default_feed_resilience)
    client_factory: Callable[[ResilienceConfig], ResilientClient] = field(
        default=_default_client_factory
    )

    def fetch(self, source_url: str, cache_path: Path) -> CacheHandle:
        if cache_path.is_file():
            log.info("Reusing cached feed %s", cache_path)
            return describe_cache(cache_path, reused=True)
        return asyncio.run(self._download(source_url, cache_path))

    async def _download(self, source_url: str, cache_path: Path) -> CacheHandle:
        partial = cache_path.with_name(cache_path.name + PARTIAL_SUFFIX)
        digest = hashlib.sha256()
        size = 0
        log.info("Downloading feed %s", source_url)
        try:
            async with (
                self.client_factory(self.resilience) as client,
                client.stream("GET", source_url) as response,
            ):
                if response.is_error:
                    raise FetchError(
                        f"Feed download failed with HTTP {response.status_code}",
                        kind="status",
                        url=source_url,
                        status_code=response.status_code,
                    )
                with partial.open("wb") as handle:
                    async for chunk in response.aiter_bytes(self.resilience.chunk_size):
                        handle.write(chunk)
                        digest.update(chunk)
                        size += len(chunk)
                    handle.flush()
                    os.fsync(handle.fileno())
            os.replace(partial, cache_path)
        except httpx.TimeoutException as exc:
            raise FetchError(
                f"Timed out downloading {source_url}", kind="timeout", url=source_url
            ) from exc
        except httpx.HTTPError as exc:
            raise FetchError(
                f"Network error downloading {source_url}: {exc}", kind="network", url=source_url
            ) from exc
        finally:
            partial.unlink(missing_ok=True)

        log.info("Cached %s bytes from %s at %s", size, source_url, cache_path)
        return CacheHandle(path=cache_path, size_bytes=size, sha256=digest.hexdigest())


if TYPE_CHECKING:
    from refsync.domain.ports.fetching import FeedFetcher

    _fetcher_check: FeedFetcher = HttpFeedFetcher()
