"""UpstreamResponse: the owned handle on one upstream API response.

Wraps the streaming ``httpx.Response`` returned by :meth:`APIClient.execute`.
The holder must release it exactly once; :meth:`aclose` is safe to call from
several cleanup paths (only the first call reaches the transport) and the
object is an async context manager:

    async with await client.execute(request) as upstream:
        payload = await upstream.aread()

Body reads are bounded by the deadline of the call that produced the response.
"""

from __future__ import annotations

import asyncio
from typing import AsyncIterator, Awaitable, Optional, TypeVar

import httpx

from apiproxy.errors import BodyDecodeError, StreamCopyError, TransportError, TransportTimeoutError

T = TypeVar("T")


class UpstreamResponse:
    """Status, headers and body stream of an upstream response."""

    def __init__(self, response: httpx.Response, deadline: Optional[float] = None) -> None:
        self._response = response
        self._deadline = deadline
        self._released = False

    # ── Metadata ──────────────────────────────────────────────────────────────

    @property
    def status_code(self) -> int:
        return self._response.status_code

    @property
    def headers(self) -> httpx.Headers:
        return self._response.headers

    @property
    def http_response(self) -> httpx.Response:
        return self._response

    @property
    def content_length(self) -> Optional[int]:
        """Declared Content-Length, or None when absent, invalid or negative."""
        raw = self._response.headers.get("content-length")
        if raw is None:
            return None
        try:
            value = int(raw)
        except ValueError:
            return None
        return value if value >= 0 else None

    @property
    def content_encoding(self) -> Optional[str]:
        return self._response.headers.get("content-encoding") or None

    @property
    def released(self) -> bool:
        return self._released

    # ── Body access ───────────────────────────────────────────────────────────

    async def aread(self) -> bytes:
        """Read the whole body, decoding its Content-Encoding (gzip, deflate, ...).

        Raises:
            BodyDecodeError: The body could not be decompressed.
            TransportTimeoutError: The call deadline elapsed.
            TransportError: The connection failed while reading.
        """
        try:
            return await self._within_deadline(self._response.aread())
        except httpx.DecodingError as exc:
            raise BodyDecodeError(
                f"Could not decode {self.content_encoding or 'identity'} response body: {exc}"
            ) from exc
        except httpx.TimeoutException as exc:
            raise TransportTimeoutError(f"Upstream body read timed out: {exc}") from exc
        except httpx.HTTPError as exc:
            raise TransportError(f"Upstream body read failed: {exc}") from exc

    async def aiter_raw(self) -> AsyncIterator[bytes]:
        """Yield the body bytes exactly as received (Content-Encoding preserved)."""
        chunks = self._response.aiter_raw()
        try:
            while True:
                try:
                    chunk = await self._within_deadline(chunks.__anext__())
                except StopAsyncIteration:
                    return
                yield chunk
        except httpx.TimeoutException as exc:
            raise TransportTimeoutError(f"Upstream body stream timed out: {exc}") from exc
        except (httpx.HTTPError, httpx.StreamError) as exc:
            raise StreamCopyError(f"Upstream body stream failed: {exc}") from exc
        finally:
            await chunks.aclose()

    # ── Release ───────────────────────────────────────────────────────────────

    async def aclose(self) -> None:
        """Release the underlying connection; later calls are no-ops."""
        if self._released:
            return
        self._released = True
        await self._response.aclose()

    async def __aenter__(self) -> "UpstreamResponse":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    # ── Internals ─────────────────────────────────────────────────────────────

    async def _within_deadline(self, awaitable: Awaitable[T]) -> T:
        if self._deadline is None:
            return await awaitable
        remaining = self._deadline - asyncio.get_running_loop().time()
        if remaining <= 0:
            close = getattr(awaitable, "close", None)
            if close is not None:
                close()
            raise TransportTimeoutError("Request deadline exceeded")
        try:
            return await asyncio.wait_for(awaitable, timeout=remaining)
        except asyncio.TimeoutError:
            raise TransportTimeoutError("Request deadline exceeded") from None

    def __repr__(self) -> str:
        return f"<UpstreamResponse [{self.status_code}]>"
