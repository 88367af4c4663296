"""Root test configuration for apiproxy.

Provides an in-process mock upstream API (httpx.MockTransport) that records
every request it receives and answers with a configurable response, plus
helpers to drive Starlette / FastAPI apps through httpx.ASGITransport.

Mock responses are built with ``stream=`` rather than ``content=`` so their
bodies stay unread: the proxy must be able to stream them raw.
"""

from __future__ import annotations

import asyncio
from typing import AsyncIterator, Iterable, Optional

import httpx
import pytest

from apiproxy.client import APIClient

BASE_URL = "https://api.example.com/base"


class ChunkedStream(httpx.AsyncByteStream):
    """Async response body delivered in the given chunks."""

    def __init__(self, chunks: Iterable[bytes], fail_after: Optional[int] = None) -> None:
        self._chunks = list(chunks)
        self._fail_after = fail_after
        self.closed = False

    async def __aiter__(self) -> AsyncIterator[bytes]:
        for index, chunk in enumerate(self._chunks):
            if self._fail_after is not None and index >= self._fail_after:
                raise httpx.ReadError("connection reset by upstream")
            yield chunk

    async def aclose(self) -> None:
        self.closed = True


class MockUpstream:
    """In-process upstream API. Records requests; returns a configurable response."""

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.bodies: list[bytes] = []
        self.streams: list[httpx.AsyncByteStream] = []
        self.status_code = 200
        self.headers: list[tuple[str, str]] = [("content-type", "application/json")]
        self.chunks: list[bytes] = [b'{"result": "mocked"}']
        self.fail_after: Optional[int] = None
        self.error: Optional[Exception] = None
        self.delay: float = 0.0

    def respond(
        self,
        status_code: int = 200,
        body: bytes = b"",
        headers: Optional[list[tuple[str, str]]] = None,
        chunks: Optional[list[bytes]] = None,
    ) -> "MockUpstream":
        self.status_code = status_code
        self.headers = list(headers or [])
        self.chunks = chunks if chunks is not None else [body]
        return self

    async def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        self.bodies.append(request.content)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        stream = ChunkedStream(self.chunks, fail_after=self.fail_after)
        self.streams.append(stream)
        return httpx.Response(self.status_code, headers=self.headers, stream=stream)

    @property
    def last(self) -> httpx.Request:
        return self.requests[-1]

    def transport(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))

    def api_client(self, base_url: str = BASE_URL, **kwargs) -> APIClient:
        return APIClient(self.transport(), base_url, **kwargs)


@pytest.fixture
def upstream() -> MockUpstream:
    return MockUpstream()


@pytest.fixture
def asgi_client():
    """Factory: httpx client driving an app in-process (no lifespan, no network)."""

    def make(app) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://testserver")

    return make
