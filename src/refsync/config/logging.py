"""Logging setup for refsync entry points."""

from __future__ import annotations

import logging

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%dT%H:%M:%S"

# request-level chatter from the download and migration stacks
CHATTY_LOGGERS = ("httpx", "httpcore", "alembic.runtime.migration")


def configure_logging(*, level: int = logging.INFO, force: bool = False) -> None:
    """Configure the root logger for a reconciliation run.

    Above DEBUG the HTTP client and migration loggers are held at WARNING so a
    run log reads as chunks and checkpoints rather than individual requests.
    ``force=True`` replaces handlers installed earlier (tests, embedding apps).
    """

    logging.basicConfig(level=level, format=LOG_FORMAT, datefmt=LOG_DATE_FORMAT, force=force)
    chatty_level = logging.WARNING if level > logging.DEBUG else logging.NOTSET
    for name in CHATTY_LOGGERS:
        logging.getLogger(name).setLevel(chatty_level)
