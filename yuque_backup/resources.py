"""Mirror same-host files (images, attachments) linked from document bodies."""

from __future__ import annotations

import logging
import re
from pathlib import Path
from urllib.parse import urlparse

from .client import RepositoryClient
from .errors import FetchFailed, FilesystemFailure
from .models import Document

URL_PATTERN = re.compile(
    r"(https://www\.|http://www\.|https://|http://)?[a-zA-Z0-9]{2,}(\.[a-zA-Z0-9]{2,})(\.[a-zA-Z0-9]{2,})?/[a-zA-Z0-9]{2,}"
    r"[^\s()\[\]<>\"'`]*"
)


def extract_links(body: str, host: str) -> list[str]:
    """Return absolute URLs in `body` whose host equals `host`, in order, without duplicates."""
    links: list[str] = []
    for match in URL_PATTERN.finditer(body):
        url = match.group(0).rstrip(".,;:!?")
        parsed = urlparse(url)
        if parsed.scheme not in ("http", "https") or parsed.hostname != host:
            continue
        if url not in links:
            links.append(url)
    return links


def resource_name(url: str) -> str | None:
    """Last path segment of `url`, or None when there is nothing to name a file after."""
    name = urlparse(url).path.rsplit("/", 1)[-1]
    if not name or name in (".", ".."):
        return None
    return name


class ResourceMirror:
    """Post-processing hook: fetch every same-host link of a written document."""

    def __init__(self, host_url: str, files_dir: Path) -> None:
        self.host = urlparse(host_url).hostname or ""
        self.files_dir = files_dir
        self.fetched = 0
        # destination -> URL that claimed it first
        self.sources: dict[Path, str] = {}

    async def __call__(self, document: Document, client: RepositoryClient) -> None:
        if not document.body:
            return
        for url in extract_links(document.body, self.host):
            name = resource_name(url)
            if name is None:
                continue
            self.files_dir.mkdir(parents=True, exist_ok=True)
            destination = self.files_dir / name
            owner = self.sources.setdefault(destination, url)
            if owner != url:
                logging.warning(
                    "Skipping resource %s of doc %s: %s already holds %s", url, document.id, destination, owner
                )
                continue
            try:
                await client.fetch_resource(url, destination)
            except FilesystemFailure as exc:
                if isinstance(exc.cause, FileExistsError):
                    logging.info("Resource already mirrored or in progress: %s", destination)
                else:
                    self._release(destination, url)
                    logging.error("Cannot write resource for doc %s: %s", document.id, exc)
                continue
            except FetchFailed as exc:
                self._release(destination, url)
                logging.error("Cannot fetch resource for doc %s: %s", document.id, exc)
                continue
            self.fetched += 1

    def _release(self, destination: Path, url: str) -> None:
        if self.sources.get(destination) == url and not destination.exists():
            del self.sources[destination]
