"""Download client settings: timeouts, retry budget and streaming chunk size."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

import httpx

from .errors import ConfigurationError

if TYPE_CHECKING:
    from collections.abc import Mapping

RETRY_STATUSES = frozenset({408, 429, 500, 502, 503, 504})
RETRY_EXCEPTIONS: tuple[type[httpx.HTTPError], ...] = (
    httpx.TimeoutException,
    httpx.NetworkError,
    httpx.RemoteProtocolError,
)
# a feed download is only ever a read
SAFE_METHODS = frozenset({"GET", "HEAD"})


@dataclass(slots=True, frozen=True)
class RetryPolicy:
    """Retry budget handed to ``httpx_retries.Retry``; ``total=0`` disables retries."""

    total: int = 4
    backoff_factor: float = 0.5
    max_backoff_wait: float = 60.0
    respect_retry_after_header: bool = True
    allowed_methods: frozenset[str] = SAFE_METHODS
    status_forcelist: frozenset[int] = RETRY_STATUSES
    retry_on_exceptions: tuple[type[httpx.HTTPError], ...] = RETRY_EXCEPTIONS
    backoff_jitter: float = 1.0

    def __post_init__(self) -> None:
        if self.total < 0:
            raise ConfigurationError(
                f"Retry total must not be negative, got {self.total}", setting="retry.total"
            )
        if self.backoff_factor < 0 or self.max_backoff_wait <= 0:
            raise ConfigurationError(
                "Retry backoff must be non-negative with a positive ceiling, got "
                f"factor={self.backoff_factor}, max_wait={self.max_backoff_wait}",
                setting="retry.backoff_factor",
            )


@dataclass(slots=True, frozen=True)
class ResilienceConfig:
    name: str
    base_url: str | None = None
    timeout_seconds: float = 30.0
    connect_timeout_seconds: float | None = None
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    default_headers: Mapping[str, str] | None = None
    follow_redirects: bool = True
    chunk_size: int = 64 * 1024

    def __post_init__(self) -> None:
        if self.timeout_seconds <= 0:
            raise ConfigurationError(
                f"{self.name}: timeout must be positive, got {self.timeout_seconds}",
                setting="timeout_seconds",
            )
        if self.connect_timeout_seconds is not None and self.connect_timeout_seconds <= 0:
            raise ConfigurationError(
                f"{self.name}: connect timeout must be positive, "
                f"got {self.connect_timeout_seconds}",
                setting="connect_timeout_seconds",
            )
        if self.chunk_size < 1:
            raise ConfigurationError(
                f"{self.name}: chunk size must be positive, got {self.chunk_size}",
                setting="chunk_size",
            )

    def timeout(self) -> httpx.Timeout:
        """Overall read/write/pool timeout, with an optional tighter connect timeout."""

        return httpx.Timeout(
            self.timeout_seconds,
            connect=self.connect_timeout_seconds or self.timeout_seconds,
        )
