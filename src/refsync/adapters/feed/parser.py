"""Streaming CSV parser for cached feed files."""

from __future__ import annotations

import csv
from logging import getLogger
from typing import TYPE_CHECKING

from pydantic import ValidationError

from refsync.domain.errors import ParseError

from .schema import REFERENCE_FEED_SCHEMA, FeedBaseModel, FeedSchema, ReferenceRow

if TYPE_CHECKING:
    from collections.abc import Iterator
    from pathlib import Path

log = getLogger(__name__)


def _describe_validation_error(exc: ValidationError) -> str:
    parts: list[str] = []
    for error in exc.errors():
        location = ".".join(str(item) for item in error["loc"])
        parts.append(f"{location}: {error['msg']}")
    return "; ".join(parts)


class CsvFeedParser[TRow: FeedBaseModel]:
    """Lazily turn a delimited feed file into validated row models.

    Every non-blank data record yields exactly one item, in file order, so the
    n-th item always refers to the same record of the same file.
    """

    def __init__(self, schema: FeedSchema[TRow]) -> None:
        self.schema = schema

    def parse(self, path: Path) -> Iterator[TRow | ParseError]:
        try:
            handle = path.open(encoding=self.schema.encoding, newline="")
        except OSError as exc:
            raise ParseError(f"Cannot read feed {path}: {exc}") from exc

        with handle:
            reader = csv.reader(handle, delimiter=self.schema.delimiter)
            try:
                if self.schema.has_header and not self._check_header(reader, path):
                    return
                for values in reader:
                    if not any(value.strip() for value in values):
                        continue
                    yield self._parse_record(values, reader.line_num)
            except (UnicodeDecodeError, csv.Error) as exc:
                raise ParseError(
                    f"Feed {path} is not readable: {exc}", line_number=reader.line_num
                ) from exc

    def _check_header(self, reader: Iterator[list[str]], path: Path) -> bool:
        header = next(reader, None)
        if header is None:
            log.warning("Feed %s is empty", path)
            return False
        found = self.schema.normalise_header(header)
        if found != self.schema.columns:
            raise ParseError(
                f"Header mismatch for schema {self.schema.name}: expected "
                f"{', '.join(self.schema.columns)}; found {', '.join(found)}",
                line_number=1,
            )
        return True

    def _parse_record(self, values: list[str], line_number: int) -> TRow | ParseError:
        expected = len(self.schema.columns)
        if len(values) != expected:
            return ParseError(
                f"expected {expected} columns, found {len(values)}",
                line_number=line_number,
            )
        payload: dict[str, object] = dict(zip(self.schema.columns, values, strict=True))
        payload["line_number"] = line_number
        try:
            return self.schema.row_model.model_validate(payload)
        except ValidationError as exc:
            return ParseError(_describe_validation_error(exc), line_number=line_number)


def reference_feed_parser() -> CsvFeedParser[ReferenceRow]:
    return CsvFeedParser(REFERENCE_FEED_SCHEMA)


if TYPE_CHECKING:
    from refsync.domain.ports.parsing import FeedParser

    _parser_check: FeedParser[ReferenceRow] = reference_feed_parser()
