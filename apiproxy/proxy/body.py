"""Request-side body re-encoding for the proxy pipeline.

Each BodyType has one encoder turning the inbound Starlette request into the
outbound body and its content type:

  NONE            no body; the inbound Content-Type (if any) is forwarded as-is
  RAW             untouched byte stream, or JSON decode → interceptor → re-encode
  FORM            URL-encoded form → interceptor → re-encode
  MULTIPART_FORM  size-capped multipart parse → MultipartWriter → interceptor

``ENCODERS`` maps every BodyType member to its encoder; adding a member without
an encoder fails the exhaustiveness test.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional
from urllib.parse import parse_qs, urlencode

from starlette.datastructures import UploadFile
from starlette.exceptions import HTTPException
from starlette.formparsers import MultiPartException
from starlette.requests import Request

from apiproxy.constants import (
    FORM_CONTENT_TYPE,
    JSON_CONTENT_TYPE,
    MULTIPART_FORM_CONTENT_TYPE,
    OCTET_STREAM_CONTENT_TYPE,
)
from apiproxy.errors import BodyDecodeError, EncodeError, UploadTooLargeError
from apiproxy.interceptors import FormValues, call_interceptor
from apiproxy.proxy.multipart import MultipartWriter
from apiproxy.proxy.options import BodyType, ProxyOptions
from apiproxy.request import RequestBody
from apiproxy.utils.logger import get_logger

logger = get_logger(__name__)

# Methods whose requests carry no body unless the client declares one.
_BODYLESS_METHODS: frozenset[str] = frozenset({"GET", "HEAD", "OPTIONS", "DELETE", "TRACE"})


@dataclass(frozen=True)
class EncodedBody:
    """Outbound body and the Content-Type describing it (None = leave as-is)."""

    content: Optional[RequestBody]
    content_type: Optional[str]


# ─── JSON helpers ─────────────────────────────────────────────────────────────


def decode_json(data: bytes) -> Any:
    """Decode a single JSON value (object, array or scalar).

    Raises:
        BodyDecodeError: Empty or malformed JSON.
    """
    try:
        return json.loads(data)
    except (ValueError, UnicodeDecodeError) as exc:
        raise BodyDecodeError(f"Invalid JSON body: {exc}") from exc


def encode_json(value: Any) -> bytes:
    """Encode a JSON value compactly, newline-terminated.

    Raises:
        EncodeError: The value is not JSON-serialisable.
    """
    try:
        return (json.dumps(value, ensure_ascii=False, separators=(",", ":")) + "\n").encode("utf-8")
    except (TypeError, ValueError) as exc:
        raise EncodeError(f"Could not encode JSON body: {exc}") from exc


# ─── Form helpers ─────────────────────────────────────────────────────────────


def encode_form(values: FormValues) -> str:
    """URL-encode a multi-valued form, keys sorted, values in order."""
    return urlencode([(key, value) for key in sorted(values) for value in values[key]])


def decode_form(encoded: str) -> FormValues:
    """Inverse of :func:`encode_form`; blank values are kept."""
    return parse_qs(encoded, keep_blank_values=True)


# ─── Classification ───────────────────────────────────────────────────────────


def classify_body(request: Request) -> BodyType:
    """Pick a BodyType for transparent proxying from method and Content-Type."""
    content_type = request.headers.get("content-type", "")
    media_type = content_type.split(";", 1)[0].strip().lower()

    has_body = (
        "content-length" in request.headers and request.headers["content-length"] != "0"
    ) or "transfer-encoding" in request.headers
    if request.method.upper() in _BODYLESS_METHODS and not has_body:
        return BodyType.NONE
    if media_type == FORM_CONTENT_TYPE:
        return BodyType.FORM
    if media_type == MULTIPART_FORM_CONTENT_TYPE:
        return BodyType.MULTIPART_FORM
    return BodyType.RAW


# ─── Encoders ─────────────────────────────────────────────────────────────────


async def encode_none_body(request: Request, options: ProxyOptions) -> EncodedBody:
    return EncodedBody(content=None, content_type=None)


async def encode_raw_body(request: Request, options: ProxyOptions) -> EncodedBody:
    """RAW: JSON round-trip through the interceptor, or byte-identical passthrough."""
    if options.request_json_interceptor is not None:
        payload = decode_json(await request.body())
        payload = await call_interceptor(
            "request_json_interceptor", options.request_json_interceptor, payload
        )
        return EncodedBody(content=encode_json(payload), content_type=JSON_CONTENT_TYPE)

    content_type = request.headers.get("content-type") or OCTET_STREAM_CONTENT_TYPE
    return EncodedBody(content=request.stream(), content_type=content_type)


async def encode_form_body(request: Request, options: ProxyOptions) -> EncodedBody:
    """FORM: parse URL-encoded values, run the interceptor, re-encode."""
    try:
        form = await request.form()
    except (MultiPartException, HTTPException) as exc:
        raise BodyDecodeError(f"Invalid form body: {_detail(exc)}") from exc

    values: FormValues = {}
    try:
        for key, value in form.multi_items():
            if isinstance(value, str):
                values.setdefault(key, []).append(value)
    finally:
        await form.close()

    if options.request_form_interceptor is not None:
        values = await call_interceptor(
            "request_form_interceptor", options.request_form_interceptor, values
        )

    try:
        encoded = encode_form(values).encode("ascii")
    except (TypeError, AttributeError, KeyError) as exc:
        raise EncodeError(f"Could not encode form body: {exc}") from exc

    content_type = request.headers.get("content-type") or FORM_CONTENT_TYPE
    return EncodedBody(content=encoded, content_type=content_type)


async def encode_multipart_body(request: Request, options: ProxyOptions) -> EncodedBody:
    """MULTIPART_FORM: capped parse, re-serialise every part, then the interceptor."""
    await read_capped_body(request, options.max_upload_size)

    try:
        form = await request.form()
    except (MultiPartException, HTTPException) as exc:
        raise BodyDecodeError(f"Invalid multipart body: {_detail(exc)}") from exc

    writer = MultipartWriter()
    try:
        for name, value in form.multi_items():
            if isinstance(value, UploadFile):
                writer.write_file(
                    name,
                    value.filename or "",
                    await value.read(),
                    value.content_type,
                )
            else:
                writer.write_field(name, value)
    finally:
        await form.close()

    if options.request_multipart_interceptor is not None:
        await call_interceptor(
            "request_multipart_interceptor", options.request_multipart_interceptor, writer
        )

    return EncodedBody(content=writer.close(), content_type=writer.content_type)


async def read_capped_body(request: Request, limit: int) -> bytes:
    """Read the inbound body, failing as soon as it exceeds ``limit`` bytes.

    Two-phase check: a declared Content-Length over the limit is rejected
    without reading; otherwise the body is accumulated with a rolling cap.
    The bytes are cached on the request so later ``form()`` / ``body()`` calls
    reuse them. ``limit <= 0`` disables the cap.

    Raises:
        UploadTooLargeError: The body is larger than ``limit``.
        BodyDecodeError: Content-Length is not an integer.
    """
    if limit <= 0:
        return await request.body()

    declared = request.headers.get("content-length")
    if declared is not None:
        try:
            declared_size = int(declared)
        except ValueError as exc:
            raise BodyDecodeError(f"Invalid Content-Length header: {declared!r}") from exc
        if declared_size > limit:
            logger.warning("upload_too_large", declared_size=declared_size, limit=limit)
            raise UploadTooLargeError(limit, declared_size)

    chunks: list[bytes] = []
    total = 0
    async for chunk in request.stream():
        total += len(chunk)
        if total > limit:
            logger.warning("upload_too_large", accumulated_size=total, limit=limit)
            raise UploadTooLargeError(limit)
        chunks.append(chunk)

    body = b"".join(chunks)
    # Starlette's Request.stream() replays _body when present
    request._body = body  # type: ignore[attr-defined]
    return body


def _detail(exc: Exception) -> str:
    return str(getattr(exc, "detail", None) or getattr(exc, "message", None) or exc)


Encoder = Callable[[Request, ProxyOptions], Awaitable[EncodedBody]]

ENCODERS: dict[BodyType, Encoder] = {
    BodyType.NONE: encode_none_body,
    BodyType.RAW: encode_raw_body,
    BodyType.FORM: encode_form_body,
    BodyType.MULTIPART_FORM: encode_multipart_body,
}


async def encode_request_body(
    request: Request,
    body_type: BodyType,
    options: ProxyOptions,
) -> EncodedBody:
    """Re-encode the inbound body according to ``body_type``."""
    return await ENCODERS[body_type](request, options)
