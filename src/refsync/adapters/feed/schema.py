"""Pydantic models describing rows of the reference feed."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date  # noqa: TC003

from pydantic import BaseModel, ConfigDict, field_validator

REFERENCE_COLUMNS: tuple[str, ...] = (
    "authority",
    "scheme",
    "code",
    "name",
    "category",
    "valid_from",
    "valid_to",
)


def _blank_to_none(value: object) -> object:
    if isinstance(value, str):
        stripped = value.strip()
        return stripped or None
    return value


class FeedBaseModel(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True, str_strip_whitespace=True)


class ReferenceRow(FeedBaseModel):
    """One data line of the reference feed, validated but not yet mapped."""

    line_number: int
    authority: str
    scheme: str
    code: str
    name: str
    category: str | None = None
    valid_from: date | None = None
    valid_to: date | None = None

    _normalize_optional = field_validator(
        "category", "valid_from", "valid_to", mode="before"
    )(_blank_to_none)


@dataclass(frozen=True)
class FeedSchema[TRow: FeedBaseModel]:
    """Layout of a delimited feed file and the row model validating each line."""

    name: str
    row_model: type[TRow]
    columns: tuple[str, ...]
    delimiter: str = ","
    has_header: bool = True
    encoding: str = "utf-8"
    header_aliases: dict[str, str] = field(default_factory=dict[str, str])

    def normalise_header(self, header: list[str]) -> tuple[str, ...]:
        names = (cell.strip().lower() for cell in header)
        return tuple(self.header_aliases.get(name, name) for name in names)


REFERENCE_FEED_SCHEMA: FeedSchema[ReferenceRow] = FeedSchema(
    name="reference-v1",
    row_model=ReferenceRow,
    columns=REFERENCE_COLUMNS,
)
