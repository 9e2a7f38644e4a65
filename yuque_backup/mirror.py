"""Incrementally back up the books and documents of a Yuque user or group.

Steps:
A) List the target's books and register them in the metadata store.
B) For each chunk of books, list document metadata concurrently.
C) For each chunk of documents still needing a backup, fetch, write and track.
D) Save the metadata once, after every chunk has finished.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
from collections.abc import Awaitable, Callable, Iterator, Sequence
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import TypeVar

import aiohttp

from .client import RepositoryClient
from .config import Config, load_config
from .errors import BackupError, ConfigFailure, FetchFailed, FilesystemFailure
from .limiter import RateLimiter
from .models import Book, Document, DocumentMetadata, encode_json
from .resources import ResourceMirror
from .store import METADATA_FILE, BackupStore

RUN_STAMP_FORMAT = "%Y-%m-%dT%H-%M-%SZ"
FILES_DIR = "files"

T = TypeVar("T")
PostProcessHook = Callable[[Document, RepositoryClient], Awaitable[None]]


@dataclass(slots=True)
class SyncSummary:
    """Counters of one run."""

    books: int = 0
    books_failed: int = 0
    documents_seen: int = 0
    skipped: int = 0
    fetched: int = 0
    failed: int = 0
    listing_failed: bool = False

    @property
    def ok(self) -> bool:
        return not self.listing_failed and self.books_failed == 0 and self.failed == 0


def chunked(items: Sequence[T], size: int) -> Iterator[Sequence[T]]:
    """Yield consecutive slices of at most `size` items."""
    for start in range(0, len(items), size):
        yield items[start : start + size]


def document_path(backup_dir: Path, doc_id: int) -> Path:
    return backup_dir / f"doc{doc_id}.json"


def write_document(path: Path, document: Document) -> None:
    """Create `path` with the document as JSON. Never overwrites an existing file."""
    data = encode_json(document.to_dict())
    try:
        fh = path.open("xb")
    except OSError as exc:
        raise FilesystemFailure(path, exc) from exc
    try:
        with fh:
            fh.write(data)
            fh.flush()
            os.fsync(fh.fileno())
    except OSError as exc:
        # the file is ours; never leave a truncated document behind
        path.unlink(missing_ok=True)
        raise FilesystemFailure(path, exc) from exc


class SyncEngine:
    """Drive one incremental backup run."""

    def __init__(
        self,
        client: RepositoryClient,
        store: BackupStore,
        backup_dir: Path,
        metadata_path: Path,
        chunk_size: int = 8,
        post_process: PostProcessHook | None = None,
    ) -> None:
        self.client = client
        self.store = store
        self.backup_dir = backup_dir
        self.metadata_path = metadata_path
        self.chunk_size = max(1, chunk_size)
        self.post_process = post_process
        self.books: dict[int, Book] = {}
        self.summary = SyncSummary()

    async def run(self) -> SyncSummary:
        """Back up every changed document, then persist the metadata.

        Raises FilesystemFailure if the metadata cannot be saved.
        """
        try:
            books = await self.client.list_books()
        except FetchFailed as exc:
            logging.error("Cannot list books: %s", exc)
            self.summary.listing_failed = True
            books = []
        logging.info("Discovered %s books", len(books))
        self.books = {book.id: book for book in books}
        self.store.register_books(books)
        self.summary.books = len(books)

        for chunk in chunked(books, self.chunk_size):
            results = await asyncio.gather(*(self.backup_book(book) for book in chunk), return_exceptions=True)
            for book, result in zip(chunk, results):
                if isinstance(result, BackupError):
                    self.summary.books_failed += 1
                    logging.error("Skipping book %s (%s): %s", book.id, book.slug, result)
                elif isinstance(result, BaseException):
                    raise result

        self.store.save(self.metadata_path)
        return self.summary

    async def backup_book(self, book: Book) -> None:
        """Back up the changed documents of one book.

        A listing failure propagates; per-document failures are logged here.
        """
        metas = await self.client.list_document_metadata(book)
        pending = [meta for meta in metas if self.store.needs_backup(meta)]
        self.summary.documents_seen += len(metas)
        self.summary.skipped += len(metas) - len(pending)
        logging.info("Book %s (%s): %s documents, %s to back up", book.id, book.slug, len(metas), len(pending))

        for chunk in chunked(pending, self.chunk_size):
            results = await asyncio.gather(*(self.backup_document(meta) for meta in chunk), return_exceptions=True)
            for meta, result in zip(chunk, results):
                if isinstance(result, BackupError):
                    self.summary.failed += 1
                    logging.error("Failed to back up doc %s of book %s: %s", meta.id, book.id, result)
                elif isinstance(result, BaseException):
                    raise result

    async def backup_document(self, meta: DocumentMetadata) -> None:
        book = self.books[meta.book_id]
        document = await self.client.fetch_document(book, meta)
        write_document(document_path(self.backup_dir, meta.id), document)
        # tracked only once the file is on disk
        self.store.track_backup(meta)
        self.summary.fetched += 1

        if self.post_process is None:
            return
        try:
            await self.post_process(document, self.client)
        except BackupError as exc:
            logging.error("Post-processing of doc %s failed: %s", meta.id, exc)


def prepare_run_dir(root: Path, now: datetime | None = None) -> Path:
    """Create the directory receiving this run's documents."""
    now = now or datetime.now(timezone.utc)
    run_dir = root / now.strftime(RUN_STAMP_FORMAT)
    try:
        run_dir.mkdir(parents=True)
    except OSError as exc:
        raise FilesystemFailure(run_dir, exc) from exc
    return run_dir


async def run(config: Config, root: Path) -> int:
    """Execute one backup run. Return process exit code."""
    logging.info("Starting backup with config: %r", config)
    run_dir = prepare_run_dir(root)
    metadata_path = root / METADATA_FILE
    store = BackupStore.load(metadata_path)
    limiter = RateLimiter(config.limit)
    mirror = ResourceMirror(config.host, run_dir / FILES_DIR) if config.mirror_resources else None
    connector = aiohttp.TCPConnector(limit=max(8, config.chunk_size * 2))

    async with aiohttp.ClientSession(connector=connector) as session:
        client = RepositoryClient(session, config, limiter)
        engine = SyncEngine(
            client,
            store,
            backup_dir=run_dir,
            metadata_path=metadata_path,
            chunk_size=config.chunk_size,
            post_process=mirror,
        )
        summary = await engine.run()

    logging.info(
        "Summary: books=%s books_failed=%s documents=%s skipped=%s fetched=%s failed=%s resources=%s dir=%s",
        summary.books,
        summary.books_failed,
        summary.documents_seen,
        summary.skipped,
        summary.fetched,
        summary.failed,
        mirror.fetched if mirror is not None else 0,
        run_dir,
    )
    return 0 if summary.ok else 1


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    """CLI options."""
    parser = argparse.ArgumentParser(description="Yuque backup utilities")
    parser.add_argument("path", nargs="?", default="./", help="Backup directory (default: current directory)")
    parser.add_argument("-c", "--config", required=True, metavar="FILE", help="Configuration file (YAML or JSON)")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log every request")
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> None:
    """CLI entry point."""
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(message)s",
    )
    try:
        config = load_config(Path(args.config))
    except ConfigFailure as exc:
        raise SystemExit(f"invalid configuration: {exc}") from exc
    try:
        code = asyncio.run(run(config, Path(args.path)))
    except FilesystemFailure as exc:
        raise SystemExit(f"backup failed: {exc}") from exc
    raise SystemExit(code)


if __name__ == "__main__":
    main()
