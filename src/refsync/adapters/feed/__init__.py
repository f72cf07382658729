"""Reference feed adapters: download, CSV parsing and row translation."""

from __future__ import annotations

from .fetcher import HttpFeedFetcher, describe_cache
from .parser import CsvFeedParser, reference_feed_parser
from .schema import REFERENCE_COLUMNS, REFERENCE_FEED_SCHEMA, FeedSchema, ReferenceRow
from .translator import ReferenceRowTranslator, row_identity, translate_row

__all__ = [
    "REFERENCE_COLUMNS",
    "REFERENCE_FEED_SCHEMA",
    "CsvFeedParser",
    "FeedSchema",
    "HttpFeedFetcher",
    "ReferenceRow",
    "ReferenceRowTranslator",
    "describe_cache",
    "reference_feed_parser",
    "row_identity",
    "translate_row",
]
