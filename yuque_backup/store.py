"""Persistent bookkeeping of which document versions were backed up."""

from __future__ import annotations

import json
import logging
import os
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any

from .errors import FilesystemFailure
from .models import Book, DocumentMetadata, encode_json, format_timestamp, parse_timestamp

METADATA_FILE = "metadata.json"


@dataclass(slots=True)
class BackupRecord:
    """Watermark plus the append-only history of backed-up versions."""

    last_updated: datetime
    backups: list[datetime] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> BackupRecord:
        return cls(
            last_updated=parse_timestamp(data["last_updated"]),
            backups=[parse_timestamp(value) for value in data["backups"]],
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "last_updated": format_timestamp(self.last_updated),
            "backups": [format_timestamp(value) for value in self.backups],
        }


@dataclass(slots=True)
class MainMetadata:
    items: dict[int, BackupRecord] = field(default_factory=dict)
    books: dict[int, Book] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> MainMetadata:
        return cls(
            items={int(key): BackupRecord.from_dict(value) for key, value in data.get("items", {}).items()},
            books={int(key): Book.from_dict(value) for key, value in data.get("books", {}).items()},
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "items": {str(key): record.to_dict() for key, record in sorted(self.items.items())},
            "books": {str(key): book.to_dict() for key, book in sorted(self.books.items())},
        }


class BackupStore:
    """Answers "does this document need a backup" and records backups.

    Mutations happen without awaiting, so concurrent asyncio tasks never
    interleave inside one of them.
    """

    def __init__(self, metadata: MainMetadata | None = None) -> None:
        self.metadata = metadata if metadata is not None else MainMetadata()

    def needs_backup(self, meta: DocumentMetadata) -> bool:
        """True unless the stored watermark is at least as new as `meta`."""
        record = self.metadata.items.get(meta.id)
        return record is None or record.last_updated < meta.updated_at

    def track_backup(self, meta: DocumentMetadata) -> None:
        """Record that `meta`'s version was written. Call only after the write."""
        record = self.metadata.items.get(meta.id)
        if record is None:
            self.metadata.items[meta.id] = BackupRecord(last_updated=meta.updated_at, backups=[meta.updated_at])
            return
        record.last_updated = meta.updated_at
        record.backups.append(meta.updated_at)

    def register_books(self, books: Iterable[Book]) -> None:
        for book in books:
            self.metadata.books[book.id] = book

    @classmethod
    def load(cls, path: Path) -> BackupStore:
        """Load the metadata file; a missing or unreadable one gives an empty store."""
        try:
            raw = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            logging.info("No metadata at %s; starting from an empty store", path)
            return cls()
        except (OSError, UnicodeDecodeError) as exc:
            logging.warning("Cannot read metadata %s (%s); starting from an empty store", path, exc)
            return cls()
        try:
            data = json.loads(raw)
            if not isinstance(data, dict):
                raise ValueError("metadata must be a JSON object")
            metadata = MainMetadata.from_dict(data)
        except (KeyError, TypeError, ValueError, AttributeError) as exc:
            logging.warning("Corrupt metadata %s (%s); starting from an empty store", path, exc)
            return cls()
        logging.info("Loaded metadata: %s documents, %s books", len(metadata.items), len(metadata.books))
        return cls(metadata)

    def save(self, path: Path) -> None:
        """Overwrite `path` with the full metadata. Failure is fatal to the run."""
        data = encode_json(self.metadata.to_dict())
        tmp_path = path.with_name(f".{path.name}.tmp")
        try:
            with tmp_path.open("wb") as fh:
                fh.write(data)
                fh.flush()
                os.fsync(fh.fileno())
            os.replace(tmp_path, path)
        except OSError as exc:
            tmp_path.unlink(missing_ok=True)
            raise FilesystemFailure(path, exc) from exc
        logging.info("Saved metadata: %s documents, %s books -> %s", len(self.metadata.items), len(self.metadata.books), path)
