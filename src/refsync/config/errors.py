"""Errors raised while reading refsync settings."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterable


class ConfigurationError(RuntimeError):
    """A setting is present but cannot be used.

    ``setting`` names the offending environment variable or config field when
    the caller knows it, so the CLI can point at what to fix.
    """

    def __init__(self, message: str, *, setting: str | None = None) -> None:
        super().__init__(message)
        self.setting = setting


class MissingConfigurationError(ConfigurationError):
    """One or more required environment variables are absent or blank."""

    def __init__(self, settings: Iterable[str]) -> None:
        self.settings = tuple(sorted(settings))
        super().__init__(
            f"Missing configuration for: {', '.join(self.settings)}",
            setting=self.settings[0] if self.settings else None,
        )
