"""Thin client for the Yuque v2 REST API."""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Any

import aiohttp

from .config import Config
from .errors import DecodeFailure, FilesystemFailure, HttpStatusFailure, TransportFailure
from .limiter import RateLimiter
from .models import Book, Document, DocumentMetadata

TOKEN_HEADER = "X-Auth-Token"
USER_AGENT_HEADER = "User-Agent"
STREAM_CHUNK_SIZE = 64 * 1024


class RepositoryClient:
    """Issue rate-limited GET requests and decode the `{"data": ...}` envelope.

    Every failure surfaces as a FetchFailed subclass; the client knows
    nothing about which documents need a backup.
    """

    def __init__(self, session: aiohttp.ClientSession, config: Config, limiter: RateLimiter) -> None:
        self.session = session
        self.config = config
        self.limiter = limiter
        self.headers = {TOKEN_HEADER: config.token, USER_AGENT_HEADER: config.user_agent}
        self.timeout = aiohttp.ClientTimeout(total=config.timeout_sec)

    def api_url(self, path: str) -> str:
        return f"{self.config.host}/api/v2{path}"

    async def _get_bytes(self, url: str, params: dict[str, str] | None = None) -> bytes:
        await self.limiter.acquire()
        logging.debug("GET %s", url)
        try:
            async with self.session.get(url, headers=self.headers, params=params, timeout=self.timeout) as resp:
                if not 200 <= resp.status < 300:
                    raise HttpStatusFailure(url, resp.status)
                return await resp.read()
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            raise TransportFailure(url, exc) from exc

    async def _get_data(self, url: str, params: dict[str, str] | None = None) -> Any:
        body = await self._get_bytes(url, params)
        try:
            envelope = json.loads(body.decode("utf-8"))
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            raise DecodeFailure(url, exc) from exc
        if not isinstance(envelope, dict) or "data" not in envelope:
            raise DecodeFailure(url, "response has no 'data' field")
        return envelope["data"]

    def _page_params(self) -> dict[str, str]:
        return {"limit": str(self.config.page_size)}

    async def list_books(self) -> list[Book]:
        """Books of the configured target. Only the first page is read."""
        url = self.api_url(f"{self.config.target.uri_path()}/repos")
        data = await self._get_data(url, self._page_params())
        try:
            return [Book.from_dict(item) for item in data]
        except (KeyError, TypeError, ValueError) as exc:
            raise DecodeFailure(url, exc) from exc

    async def list_document_metadata(self, book: Book) -> list[DocumentMetadata]:
        url = self.api_url(f"/repos/{book.id}/docs")
        data = await self._get_data(url, self._page_params())
        try:
            return [DocumentMetadata.from_dict(item, book.id) for item in data]
        except (KeyError, TypeError, ValueError) as exc:
            raise DecodeFailure(url, exc) from exc

    async def fetch_document(self, book: Book, meta: DocumentMetadata) -> Document:
        url = self.api_url(f"/repos/{book.id}/docs/{meta.id}")
        data = await self._get_data(url)
        try:
            return Document.from_dict(data)
        except (KeyError, TypeError, ValueError) as exc:
            raise DecodeFailure(url, exc) from exc

    async def fetch_resource(self, url: str, destination: Path) -> None:
        """Stream `url` into `destination`, which must not exist yet."""
        await self.limiter.acquire()
        logging.debug("GET %s -> %s", url, destination)
        try:
            async with self.session.get(url, headers=self.headers, timeout=self.timeout) as resp:
                if not 200 <= resp.status < 300:
                    raise HttpStatusFailure(url, resp.status)
                try:
                    fh = destination.open("xb")
                except OSError as exc:
                    raise FilesystemFailure(destination, exc) from exc
                try:
                    with fh:
                        async for chunk in resp.content.iter_chunked(STREAM_CHUNK_SIZE):
                            fh.write(chunk)
                        fh.flush()
                except BaseException:
                    # never leave a truncated resource behind
                    destination.unlink(missing_ok=True)
                    raise
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            raise TransportFailure(url, exc) from exc
        except OSError as exc:
            raise FilesystemFailure(destination, exc) from exc

