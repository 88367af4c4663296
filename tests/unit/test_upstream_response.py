"""Unit tests for UpstreamResponse: body access, deadlines and exactly-once release."""

from __future__ import annotations

import asyncio
import gzip

import httpx
import pytest

from apiproxy.errors import BodyDecodeError, StreamCopyError, TransportTimeoutError
from apiproxy.response import UpstreamResponse


class SlowStream(httpx.AsyncByteStream):
    def __init__(self, delay: float) -> None:
        self._delay = delay

    async def __aiter__(self):
        yield b"first"
        await asyncio.sleep(self._delay)
        yield b"second"


class FailingStream(httpx.AsyncByteStream):
    async def __aiter__(self):
        yield b"partial"
        raise httpx.ReadError("connection reset")


class CountingStream(httpx.ByteStream):
    def __init__(self, body: bytes) -> None:
        super().__init__(body)
        self.close_calls = 0

    async def aclose(self) -> None:
        self.close_calls += 1


def _response(body: bytes = b"", headers=None, stream=None) -> httpx.Response:
    return httpx.Response(200, headers=headers or [], stream=stream or httpx.ByteStream(body))


class TestMetadata:
    def test_content_length(self) -> None:
        upstream = UpstreamResponse(_response(headers=[("content-length", "12")]))
        assert upstream.content_length == 12

    @pytest.mark.parametrize("value", ["-1", "abc", ""])
    def test_invalid_content_length_is_none(self, value: str) -> None:
        upstream = UpstreamResponse(_response(headers=[("content-length", value)]))
        assert upstream.content_length is None

    def test_missing_content_length_is_none(self) -> None:
        assert UpstreamResponse(_response()).content_length is None

    def test_content_encoding(self) -> None:
        upstream = UpstreamResponse(_response(headers=[("content-encoding", "gzip")]))
        assert upstream.content_encoding == "gzip"
        assert UpstreamResponse(_response()).content_encoding is None


class TestBodyAccess:
    @pytest.mark.asyncio
    async def test_aread_decodes_gzip(self) -> None:
        payload = b'{"compressed": true}'
        upstream = UpstreamResponse(
            _response(gzip.compress(payload), headers=[("content-encoding", "gzip")])
        )
        assert await upstream.aread() == payload

    @pytest.mark.asyncio
    async def test_aread_bad_gzip_is_decode_error(self) -> None:
        upstream = UpstreamResponse(
            _response(b"definitely not gzip", headers=[("content-encoding", "gzip")])
        )
        with pytest.raises(BodyDecodeError):
            await upstream.aread()

    @pytest.mark.asyncio
    async def test_aiter_raw_keeps_encoding(self) -> None:
        compressed = gzip.compress(b"hello")
        upstream = UpstreamResponse(
            _response(compressed, headers=[("content-encoding", "gzip")])
        )
        received = b"".join([chunk async for chunk in upstream.aiter_raw()])
        assert received == compressed

    @pytest.mark.asyncio
    async def test_aiter_raw_failure_is_stream_copy_error(self) -> None:
        upstream = UpstreamResponse(_response(stream=FailingStream()))
        received: list[bytes] = []
        with pytest.raises(StreamCopyError):
            async for chunk in upstream.aiter_raw():
                received.append(chunk)
        assert received == [b"partial"]


class TestDeadline:
    @pytest.mark.asyncio
    async def test_aread_bounded_by_deadline(self) -> None:
        deadline = asyncio.get_running_loop().time() + 0.05
        upstream = UpstreamResponse(_response(stream=SlowStream(1.0)), deadline=deadline)
        with pytest.raises(TransportTimeoutError):
            await upstream.aread()

    @pytest.mark.asyncio
    async def test_streaming_bounded_by_deadline(self) -> None:
        deadline = asyncio.get_running_loop().time() + 0.05
        upstream = UpstreamResponse(_response(stream=SlowStream(1.0)), deadline=deadline)
        received: list[bytes] = []
        with pytest.raises(TransportTimeoutError):
            async for chunk in upstream.aiter_raw():
                received.append(chunk)
        assert received == [b"first"]

    @pytest.mark.asyncio
    async def test_expired_deadline_fails_immediately(self) -> None:
        deadline = asyncio.get_running_loop().time() - 1.0
        upstream = UpstreamResponse(_response(b"body"), deadline=deadline)
        with pytest.raises(TransportTimeoutError):
            await upstream.aread()

    @pytest.mark.asyncio
    async def test_no_deadline_reads_normally(self) -> None:
        upstream = UpstreamResponse(_response(stream=SlowStream(0.01)))
        assert await upstream.aread() == b"firstsecond"


class TestRelease:
    @pytest.mark.asyncio
    async def test_aclose_reaches_transport_once(self) -> None:
        stream = CountingStream(b"body")
        upstream = UpstreamResponse(_response(stream=stream))
        await upstream.aclose()
        await upstream.aclose()
        async with upstream:
            pass
        assert stream.close_calls == 1
        assert upstream.released is True

    @pytest.mark.asyncio
    async def test_context_manager_releases(self) -> None:
        upstream = UpstreamResponse(_response(b"body"))
        async with upstream as handle:
            assert handle is upstream
            assert upstream.released is False
        assert upstream.released is True
