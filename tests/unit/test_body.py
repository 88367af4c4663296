"""Unit tests for request body classification and re-encoding.

Inbound requests are plain Starlette ``Request`` objects built from an ASGI
scope and a scripted ``receive`` callable.
"""

from __future__ import annotations

from typing import Optional

import pytest
from starlette.requests import Request

from apiproxy.constants import JSON_CONTENT_TYPE, OCTET_STREAM_CONTENT_TYPE
from apiproxy.errors import (
    BodyDecodeError,
    EncodeError,
    InterceptorError,
    UploadTooLargeError,
)
from apiproxy.proxy.body import (
    ENCODERS,
    classify_body,
    decode_form,
    decode_json,
    encode_form,
    encode_json,
    encode_none_body,
    encode_raw_body,
    encode_form_body,
    encode_request_body,
    read_capped_body,
)
from apiproxy.proxy.options import BodyType, ProxyOptions


class ScriptedRequest:
    """Builds a Starlette Request whose body arrives in the given chunks."""

    def __init__(
        self,
        method: str = "POST",
        headers: Optional[list[tuple[str, str]]] = None,
        chunks: Optional[list[bytes]] = None,
    ) -> None:
        self.pending = list(chunks if chunks is not None else [b""])
        self.receive_calls = 0
        scope = {
            "type": "http",
            "method": method,
            "path": "/",
            "raw_path": b"/",
            "root_path": "",
            "query_string": b"",
            "scheme": "http",
            "http_version": "1.1",
            "server": ("testserver", 80),
            "client": ("127.0.0.1", 5000),
            "headers": [
                (name.lower().encode("latin-1"), value.encode("latin-1"))
                for name, value in headers or []
            ],
        }
        self.request = Request(scope, self.receive)

    async def receive(self) -> dict:
        self.receive_calls += 1
        if self.pending:
            body = self.pending.pop(0)
            return {"type": "http.request", "body": body, "more_body": bool(self.pending)}
        return {"type": "http.disconnect"}


def _request(method: str = "POST", headers=None, body: bytes = b"") -> Request:
    return ScriptedRequest(method, headers, [body]).request


async def _collect(content) -> bytes:
    if isinstance(content, bytes):
        return content
    return b"".join([chunk async for chunk in content])


# ─── JSON / form helpers ──────────────────────────────────────────────────────


class TestJsonHelpers:
    def test_encode_is_compact_and_newline_terminated(self) -> None:
        assert encode_json({"a": [1, 2], "b": "x"}) == b'{"a":[1,2],"b":"x"}\n'

    def test_encode_keeps_non_ascii(self) -> None:
        assert encode_json({"city": "Zürich"}) == '{"city":"Zürich"}\n'.encode("utf-8")

    def test_encode_unserialisable_is_encode_error(self) -> None:
        with pytest.raises(EncodeError):
            encode_json({"when": object()})

    @pytest.mark.parametrize(
        "value, expected",
        [(b"[1, 2]", [1, 2]), (b'"text"', "text"), (b"42", 42), (b"null", None), (b'{"a": {}}', {"a": {}})],
    )
    def test_decode_any_json_value(self, value: bytes, expected) -> None:
        assert decode_json(value) == expected

    @pytest.mark.parametrize("value", [b"", b"{", b"not json", b"\xff\xfe"])
    def test_decode_invalid_is_body_decode_error(self, value: bytes) -> None:
        with pytest.raises(BodyDecodeError):
            decode_json(value)


class TestFormHelpers:
    def test_keys_sorted_values_in_order(self) -> None:
        assert encode_form({"b": ["2"], "a": ["1", "3"]}) == "a=1&a=3&b=2"

    def test_special_characters_escaped(self) -> None:
        assert encode_form({"q": ["a b&c"]}) == "q=a+b%26c"

    def test_decode_keeps_blank_values(self) -> None:
        assert decode_form("a=&b=2&b=3") == {"a": [""], "b": ["2", "3"]}

    def test_decode_of_encode_is_identity(self) -> None:
        values = {"name": ["Zoë"], "tags": ["x", "y"], "empty": [""]}
        assert decode_form(encode_form(values)) == values


# ─── classify_body() ──────────────────────────────────────────────────────────


class TestClassifyBody:
    @pytest.mark.parametrize("method", ["GET", "HEAD", "OPTIONS", "DELETE"])
    def test_bodyless_methods(self, method: str) -> None:
        assert classify_body(_request(method)) is BodyType.NONE

    def test_delete_with_body_is_raw(self) -> None:
        request = _request(
            "DELETE", [("content-type", "application/json"), ("content-length", "2")]
        )
        assert classify_body(request) is BodyType.RAW

    def test_get_with_zero_length_is_none(self) -> None:
        assert classify_body(_request("GET", [("content-length", "0")])) is BodyType.NONE

    def test_urlencoded_is_form(self) -> None:
        request = _request(
            "POST", [("content-type", "application/x-www-form-urlencoded; charset=utf-8")]
        )
        assert classify_body(request) is BodyType.FORM

    def test_multipart_is_multipart_form(self) -> None:
        request = _request("PUT", [("content-type", "Multipart/Form-Data; boundary=xyz")])
        assert classify_body(request) is BodyType.MULTIPART_FORM

    @pytest.mark.parametrize("content_type", ["application/json", "text/csv", ""])
    def test_everything_else_is_raw(self, content_type: str) -> None:
        headers = [("content-type", content_type)] if content_type else []
        assert classify_body(_request("POST", headers)) is BodyType.RAW


# ─── Encoders ─────────────────────────────────────────────────────────────────


class TestEncoderTable:
    def test_every_body_type_has_an_encoder(self) -> None:
        assert set(ENCODERS) == set(BodyType)


class TestNoneEncoder:
    @pytest.mark.asyncio
    async def test_no_body_and_no_content_type_override(self) -> None:
        encoded = await encode_none_body(_request("GET"), ProxyOptions())
        assert encoded.content is None
        assert encoded.content_type is None


class TestRawEncoder:
    @pytest.mark.asyncio
    async def test_passthrough_is_byte_identical(self) -> None:
        scripted = ScriptedRequest(
            "POST", [("content-type", "application/pdf")], [b"%PDF-1.7", b"\x00\xff"]
        )
        encoded = await encode_raw_body(scripted.request, ProxyOptions())
        assert encoded.content_type == "application/pdf"
        assert await _collect(encoded.content) == b"%PDF-1.7\x00\xff"

    @pytest.mark.asyncio
    async def test_passthrough_defaults_to_octet_stream(self) -> None:
        encoded = await encode_raw_body(_request("POST", body=b"x"), ProxyOptions())
        assert encoded.content_type == OCTET_STREAM_CONTENT_TYPE

    @pytest.mark.asyncio
    async def test_json_interceptor_rewrites_body(self) -> None:
        def add_tenant(payload):
            payload["tenant"] = "acme"
            return payload

        request = _request("POST", [("content-type", "application/json")], b'{"id": 7}')
        encoded = await encode_raw_body(request, ProxyOptions(request_json_interceptor=add_tenant))
        assert encoded.content == b'{"id":7,"tenant":"acme"}\n'
        assert encoded.content_type == JSON_CONTENT_TYPE

    @pytest.mark.asyncio
    async def test_async_json_interceptor_is_awaited(self) -> None:
        async def wrap(payload):
            return {"data": payload}

        request = _request("POST", body=b"[1,2]")
        encoded = await encode_raw_body(request, ProxyOptions(request_json_interceptor=wrap))
        assert encoded.content == b'{"data":[1,2]}\n'

    @pytest.mark.asyncio
    async def test_invalid_json_is_decode_error(self) -> None:
        request = _request("POST", body=b"{not json")
        with pytest.raises(BodyDecodeError):
            await encode_raw_body(request, ProxyOptions(request_json_interceptor=lambda p: p))

    @pytest.mark.asyncio
    async def test_interceptor_failure_is_interceptor_error(self) -> None:
        def reject(payload):
            raise ValueError("tenant not allowed")

        request = _request("POST", body=b"{}")
        with pytest.raises(InterceptorError) as exc_info:
            await encode_raw_body(request, ProxyOptions(request_json_interceptor=reject))
        assert exc_info.value.hook == "request_json_interceptor"
        assert isinstance(exc_info.value.__cause__, ValueError)

    @pytest.mark.asyncio
    async def test_unserialisable_result_is_encode_error(self) -> None:
        request = _request("POST", body=b"{}")
        with pytest.raises(EncodeError):
            await encode_raw_body(
                request, ProxyOptions(request_json_interceptor=lambda p: {1, 2})
            )


class TestFormEncoder:
    FORM = [("content-type", "application/x-www-form-urlencoded")]

    @pytest.mark.asyncio
    async def test_values_reencoded_sorted(self) -> None:
        request = _request("POST", self.FORM, b"b=2&a=1&a=3")
        encoded = await encode_form_body(request, ProxyOptions())
        assert encoded.content == b"a=1&a=3&b=2"
        assert encoded.content_type == "application/x-www-form-urlencoded"

    @pytest.mark.asyncio
    async def test_interceptor_result_is_sent(self) -> None:
        def add_source(values):
            values["source"] = ["proxy"]
            values.pop("secret", None)
            return values

        request = _request("POST", self.FORM, b"name=x&secret=y")
        encoded = await encode_form_body(
            request, ProxyOptions(request_form_interceptor=add_source)
        )
        assert decode_form(encoded.content.decode()) == {"name": ["x"], "source": ["proxy"]}

    @pytest.mark.asyncio
    async def test_interceptor_failure_is_interceptor_error(self) -> None:
        def reject(values):
            raise KeyError("name")

        request = _request("POST", self.FORM, b"a=1")
        with pytest.raises(InterceptorError):
            await encode_form_body(request, ProxyOptions(request_form_interceptor=reject))

    @pytest.mark.asyncio
    async def test_invalid_interceptor_result_is_encode_error(self) -> None:
        request = _request("POST", self.FORM, b"a=1")
        with pytest.raises(EncodeError):
            await encode_form_body(
                request, ProxyOptions(request_form_interceptor=lambda values: None)
            )


class TestEncodeRequestBody:
    @pytest.mark.asyncio
    async def test_dispatches_on_body_type(self) -> None:
        request = _request("POST", [("content-type", "text/plain")], b"hello")
        encoded = await encode_request_body(request, BodyType.RAW, ProxyOptions())
        assert encoded.content_type == "text/plain"
        assert await _collect(encoded.content) == b"hello"


# ─── read_capped_body() ───────────────────────────────────────────────────────


class TestReadCappedBody:
    @pytest.mark.asyncio
    async def test_within_limit_is_returned_and_cached(self) -> None:
        scripted = ScriptedRequest("POST", [], [b"abc", b"def"])
        assert await read_capped_body(scripted.request, 10) == b"abcdef"
        assert await scripted.request.body() == b"abcdef"

    @pytest.mark.asyncio
    async def test_declared_length_over_limit_rejected_without_reading(self) -> None:
        scripted = ScriptedRequest("POST", [("content-length", "100")], [b"x" * 100])
        with pytest.raises(UploadTooLargeError) as exc_info:
            await read_capped_body(scripted.request, 10)
        assert exc_info.value.size == 100
        assert exc_info.value.limit == 10
        assert scripted.receive_calls == 0

    @pytest.mark.asyncio
    async def test_streamed_body_over_limit_rejected(self) -> None:
        scripted = ScriptedRequest("POST", [], [b"x" * 6, b"x" * 6, b"x" * 6])
        with pytest.raises(UploadTooLargeError):
            await read_capped_body(scripted.request, 10)
        assert scripted.receive_calls == 2

    @pytest.mark.asyncio
    async def test_understated_length_still_capped(self) -> None:
        scripted = ScriptedRequest("POST", [("content-length", "4")], [b"x" * 8, b"x" * 8])
        with pytest.raises(UploadTooLargeError):
            await read_capped_body(scripted.request, 10)

    @pytest.mark.asyncio
    async def test_exactly_at_limit_is_accepted(self) -> None:
        scripted = ScriptedRequest("POST", [("content-length", "10")], [b"x" * 10])
        assert await read_capped_body(scripted.request, 10) == b"x" * 10

    @pytest.mark.asyncio
    async def test_invalid_content_length_is_decode_error(self) -> None:
        scripted = ScriptedRequest("POST", [("content-length", "lots")], [b"x"])
        with pytest.raises(BodyDecodeError):
            await read_capped_body(scripted.request, 10)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("limit", [0, -1])
    async def test_non_positive_limit_disables_cap(self, limit: int) -> None:
        scripted = ScriptedRequest("POST", [("content-length", "100")], [b"x" * 100])
        assert await read_capped_body(scripted.request, limit) == b"x" * 100
