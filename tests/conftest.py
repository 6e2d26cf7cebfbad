"""Shared test helpers: a scriptable fake page fetcher and an in-process ArcGIS-style server."""

from __future__ import annotations

import asyncio
import contextlib
from typing import Any, Awaitable, Callable, Optional

import aiohttp
from aiohttp import web
from aiohttp.test_utils import TestServer

from batch_fetch import FetchExhaustedError, Page


def make_records(offset: int, count: int) -> list[dict[str, Any]]:
    return [{"OBJECTID": offset + i} for i in range(count)]


class FakeFetcher:
    """
    In-memory page source.

    pages: offset → record count (missing offsets are empty pages)
    delays: offset → seconds before the page settles
    fail: offsets that raise FetchExhaustedError
    hang: never settle (until cancelled)
    """

    def __init__(
        self,
        pages: dict[int, int],
        batch_size: int,
        delays: Optional[dict[int, float]] = None,
        fail: tuple[int, ...] = (),
        hang: bool = False,
    ):
        self.pages = pages
        self.batch_size = batch_size
        self.delays = delays or {}
        self.fail = set(fail)
        self.hang = hang

        self.calls: list[int] = []
        self.completions: list[int] = []
        self.cancelled: list[int] = []
        self.active = 0
        self.max_active = 0

    def records(self, offset: int) -> list[dict[str, Any]]:
        return make_records(offset, self.pages.get(offset, 0))

    async def fetch(self, offset: int) -> Page:
        self.calls.append(offset)
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.hang:
                await asyncio.Event().wait()
            await asyncio.sleep(self.delays.get(offset, 0))
            if offset in self.fail:
                raise FetchExhaustedError(offset, 4, RuntimeError("boom"))
            features = self.records(offset)
            self.completions.append(offset)
            return Page(offset, features, exceeded_transfer_limit=len(features) == self.batch_size)
        except asyncio.CancelledError:
            self.cancelled.append(offset)
            raise
        finally:
            self.active -= 1


Handler = Callable[[web.Request], Awaitable[web.StreamResponse]]


@contextlib.asynccontextmanager
async def serve(handler: Handler):
    """Run `handler` at /query; yields (session, url)."""
    app = web.Application()
    app.router.add_get("/query", handler)
    server = TestServer(app)
    await server.start_server()
    try:
        async with aiohttp.ClientSession() as session:
            yield session, str(server.make_url("/query"))
    finally:
        await server.close()


def paged_handler(records: list[dict[str, Any]], exceeded: Optional[bool] = None) -> Handler:
    """Serve `records` as ArcGIS query pages keyed by resultOffset/resultRecordCount."""
    async def handler(request: web.Request) -> web.Response:
        offset = int(request.query["resultOffset"])
        count = int(request.query["resultRecordCount"])
        chunk = records[offset:offset + count]
        body: dict[str, Any] = {"features": [{"attributes": r} for r in chunk]}
        if exceeded is not None:
            body["exceededTransferLimit"] = exceeded
        return web.json_response(body)

    return handler
