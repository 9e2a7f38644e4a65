"""Records exchanged with the Yuque API and written to disk."""

from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

BODY_FIELDS = ("body", "body_sheet", "body_html", "body_lake")


def parse_timestamp(value: Any) -> datetime:
    """Parse an ISO-8601 timestamp. Naive values are taken as UTC."""
    if not isinstance(value, str):
        raise ValueError(f"timestamp must be a string, got {type(value).__name__}")
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def format_timestamp(value: datetime) -> str:
    return value.isoformat()


def encode_json(data: Any) -> bytes:
    """Pretty-printed UTF-8 JSON.

    Text holding lone surrogates (valid in JSON, not encodable as UTF-8) is
    written with ASCII escapes instead, which decode back to the same string.
    """
    try:
        return json.dumps(data, ensure_ascii=False, indent=2).encode("utf-8")
    except UnicodeEncodeError:
        return json.dumps(data, ensure_ascii=True, indent=2).encode("ascii")


def _int(data: dict[str, Any], key: str) -> int:
    value = data[key]
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{key} must be an integer")
    return value


def _str(data: dict[str, Any], key: str) -> str:
    value = data.get(key)
    # Yuque sends null for empty descriptions and formats
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ValueError(f"{key} must be a string")
    return value


@dataclass(frozen=True, slots=True)
class Book:
    """A Yuque repository ("book"): a container of documents."""

    id: int
    slug: str
    name: str
    updated_at: datetime

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Book:
        return cls(
            id=_int(data, "id"),
            slug=_str(data, "slug"),
            name=_str(data, "name"),
            updated_at=parse_timestamp(data["updated_at"]),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "slug": self.slug,
            "name": self.name,
            "updated_at": format_timestamp(self.updated_at),
        }


@dataclass(frozen=True, slots=True)
class DocumentMetadata:
    """Listing entry of a document. Refers to its book by id."""

    id: int
    updated_at: datetime
    book_id: int

    @classmethod
    def from_dict(cls, data: dict[str, Any], book_id: int) -> DocumentMetadata:
        return cls(id=_int(data, "id"), updated_at=parse_timestamp(data["updated_at"]), book_id=book_id)


@dataclass(frozen=True, slots=True)
class Document:
    """Full document record. At most one of the body fields is populated."""

    id: int
    type: str
    slug: str
    title: str
    book_id: int
    description: str
    format: str
    updated_at: datetime
    body: str | None = None
    body_sheet: str | None = None
    body_html: str | None = None
    body_lake: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Document:
        bodies: dict[str, str | None] = {}
        for key in BODY_FIELDS:
            value = data.get(key)
            if value is not None and not isinstance(value, str):
                raise ValueError(f"{key} must be a string")
            bodies[key] = value
        return cls(
            id=_int(data, "id"),
            type=_str(data, "type"),
            slug=_str(data, "slug"),
            title=_str(data, "title"),
            book_id=_int(data, "book_id"),
            description=_str(data, "description"),
            format=_str(data, "format"),
            updated_at=parse_timestamp(data["updated_at"]),
            **bodies,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "slug": self.slug,
            "title": self.title,
            "book_id": self.book_id,
            "description": self.description,
            "format": self.format,
            "updated_at": format_timestamp(self.updated_at),
            "body": self.body,
            "body_sheet": self.body_sheet,
            "body_html": self.body_html,
            "body_lake": self.body_lake,
        }
