"""Feed download configuration values."""

from __future__ import annotations

from dataclasses import dataclass

from refsync import __version__

from .env import env_float, env_int, optional_env_var
from .http_resilience import ResilienceConfig, RetryPolicy

FEED_TIMEOUT_SECONDS = 60.0
FEED_CONNECT_TIMEOUT_SECONDS = 10.0
FEED_RETRY_TOTAL = 4


@dataclass(frozen=True, slots=True)
class FeedConfig:
    """Where the reference snapshot is published and how to download it."""

    url: str | None
    resilience: ResilienceConfig


def default_feed_resilience(
    *,
    timeout_seconds: float = FEED_TIMEOUT_SECONDS,
    retries: int = FEED_RETRY_TOTAL,
    user_agent: str | None = None,
) -> ResilienceConfig:
    return ResilienceConfig(
        name="feed",
        timeout_seconds=timeout_seconds,
        connect_timeout_seconds=min(timeout_seconds, FEED_CONNECT_TIMEOUT_SECONDS),
        retry=RetryPolicy(total=retries),
        default_headers={"User-Agent": user_agent or f"refsync/{__version__}"},
    )


def get_feed_config() -> FeedConfig:
    return FeedConfig(
        url=optional_env_var("REFSYNC_FEED_URL"),
        resilience=default_feed_resilience(
            timeout_seconds=env_float("REFSYNC_FEED_TIMEOUT", FEED_TIMEOUT_SECONDS),
            retries=env_int("REFSYNC_FEED_RETRIES", FEED_RETRY_TOTAL),
            user_agent=optional_env_var("REFSYNC_USER_AGENT"),
        ),
    )
