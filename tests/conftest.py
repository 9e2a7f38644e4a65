"""Shared test fixtures: an in-process fake of the Yuque v2 API."""

from __future__ import annotations

from collections.abc import AsyncGenerator
from dataclasses import dataclass, field
from typing import Any

import aiohttp
import pytest
import pytest_asyncio
from aiohttp import web
from aiohttp.test_utils import TestServer

from yuque_backup.client import RepositoryClient
from yuque_backup.config import Config, Target
from yuque_backup.limiter import RateLimiter

T1 = "2024-01-01T00:00:00+00:00"
T2 = "2024-02-01T00:00:00+00:00"
T3 = "2024-03-01T00:00:00+00:00"
TOKEN = "secret-token"


def make_book(book_id: int, updated_at: str = T1) -> dict[str, Any]:
    return {"id": book_id, "slug": f"book-{book_id}", "name": f"Book {book_id}", "updated_at": updated_at}


def make_doc(doc_id: int, book_id: int, updated_at: str, body: str | None = None) -> dict[str, Any]:
    return {
        "id": doc_id,
        "type": "Doc",
        "slug": f"doc-{doc_id}",
        "title": f"Document {doc_id}",
        "book_id": book_id,
        "description": None,
        "format": "markdown",
        "updated_at": updated_at,
        "body": body if body is not None else f"content of {doc_id}",
    }


@dataclass
class FakeYuque:
    """State behind the fake server; tests mutate it between runs."""

    books: list[dict[str, Any]] = field(default_factory=list)
    docs: dict[int, list[dict[str, Any]]] = field(default_factory=dict)
    files: dict[str, bytes] = field(default_factory=dict)
    failing_docs: set[int] = field(default_factory=set)
    failing_books: set[int] = field(default_factory=set)
    broken_listing: bool = False
    requests: list[str] = field(default_factory=list)
    headers: list[dict[str, str]] = field(default_factory=list)

    def add_book(self, book_id: int, *docs: dict[str, Any]) -> None:
        self.books.append(make_book(book_id))
        self.docs[book_id] = list(docs)

    def set_doc(self, book_id: int, doc: dict[str, Any]) -> None:
        self.docs[book_id] = [d for d in self.docs[book_id] if d["id"] != doc["id"]] + [doc]

    def fetched_doc_ids(self) -> list[int]:
        return [int(path.rsplit("/", 1)[1]) for path in self.requests if path.count("/docs/") == 1]

    def build_app(self) -> web.Application:
        app = web.Application()
        app.router.add_get("/api/v2/{kind}/{login}/repos", self.handle_repos)
        app.router.add_get("/api/v2/repos/{book_id}/docs", self.handle_doc_list)
        app.router.add_get("/api/v2/repos/{book_id}/docs/{doc_id}", self.handle_doc)
        app.router.add_get("/files/{name}", self.handle_file)
        return app

    def _record(self, request: web.Request) -> None:
        self.requests.append(request.path)
        self.headers.append(dict(request.headers))

    async def handle_repos(self, request: web.Request) -> web.Response:
        self._record(request)
        if self.broken_listing:
            return web.Response(status=500)
        return web.json_response({"data": self.books})

    async def handle_doc_list(self, request: web.Request) -> web.Response:
        self._record(request)
        book_id = int(request.match_info["book_id"])
        if book_id in self.failing_books:
            return web.Response(status=503)
        metas = [{"id": d["id"], "updated_at": d["updated_at"]} for d in self.docs.get(book_id, [])]
        return web.json_response({"data": metas})

    async def handle_doc(self, request: web.Request) -> web.Response:
        self._record(request)
        book_id = int(request.match_info["book_id"])
        doc_id = int(request.match_info["doc_id"])
        if doc_id in self.failing_docs:
            return web.Response(status=500)
        for doc in self.docs.get(book_id, []):
            if doc["id"] == doc_id:
                return web.json_response({"data": doc})
        return web.Response(status=404)

    async def handle_file(self, request: web.Request) -> web.Response:
        self._record(request)
        name = request.match_info["name"]
        if name not in self.files:
            return web.Response(status=404)
        return web.Response(body=self.files[name])


@pytest.fixture
def fake_yuque() -> FakeYuque:
    return FakeYuque()


@pytest_asyncio.fixture
async def server(fake_yuque: FakeYuque) -> AsyncGenerator[TestServer, None]:
    srv = TestServer(fake_yuque.build_app())
    await srv.start_server()
    yield srv
    await srv.close()


@pytest.fixture
def config(server: TestServer) -> Config:
    return Config(
        host=f"http://{server.host}:{server.port}",
        token=TOKEN,
        target=Target(type="groups", login="team"),
        limit=1000,
        chunk_size=2,
        page_size=50,
        timeout_sec=5,
        mirror_resources=False,
    )


@pytest_asyncio.fixture
async def client(config: Config) -> AsyncGenerator[RepositoryClient, None]:
    async with aiohttp.ClientSession() as session:
        yield RepositoryClient(session, config, RateLimiter(config.limit))
