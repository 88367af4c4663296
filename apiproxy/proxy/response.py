"""Upstream response → outbound response mapping.

Exactly one policy runs per call:

  1. No content (204): status plus allow-listed headers; the body is never read.
  2. JSON-intercepted (``response_json_interceptor`` set): the whole body is
     read (Content-Encoding decoded), decoded as JSON, passed through the
     interceptor and re-encoded into a buffer *before* any response is built,
     so a decode or interceptor failure never leaves headers half-written.
  3. Raw passthrough: a StreamingResponse relays the undecoded upstream bytes
     without buffering; Content-Type, Content-Length and Content-Encoding are
     preserved.

The upstream response is released exactly once on every path. In the streaming
policy ownership moves to the returned response: the relay releases it when it
finishes or fails, and the background task covers a stream never started.
"""

from __future__ import annotations

from typing import AsyncIterator

from starlette.background import BackgroundTask
from starlette.responses import Response, StreamingResponse

from apiproxy.constants import HTTP_NO_CONTENT, JSON_CONTENT_TYPE
from apiproxy.errors import APIClientError
from apiproxy.interceptors import call_interceptor
from apiproxy.proxy.body import decode_json, encode_json
from apiproxy.proxy.headers import (
    CONTENT_ENCODING,
    CONTENT_LENGTH,
    CONTENT_TYPE,
    transfer_allowed_headers,
)
from apiproxy.proxy.options import ProxyOptions
from apiproxy.response import UpstreamResponse
from apiproxy.utils.logger import get_logger

logger = get_logger(__name__)

# Headers set by the body policies themselves; never copied by the allow-list.
_BODY_HEADERS: frozenset[str] = frozenset(
    {CONTENT_TYPE.lower(), CONTENT_LENGTH.lower(), CONTENT_ENCODING.lower()}
)


async def build_proxy_response(upstream: UpstreamResponse, options: ProxyOptions) -> Response:
    """Map ``upstream`` to the response returned to the original caller.

    Raises:
        BodyDecodeError, InterceptorError, EncodeError, TransportError:
            JSON policy failures; nothing has been written yet.
    """
    if upstream.status_code == HTTP_NO_CONTENT:
        return await no_content_response(upstream, options)
    if options.response_json_interceptor is not None:
        return await json_intercepted_response(upstream, options)
    return streaming_response(upstream, options)


async def no_content_response(upstream: UpstreamResponse, options: ProxyOptions) -> Response:
    await upstream.aclose()
    response = Response(status_code=HTTP_NO_CONTENT)
    transfer_allowed_headers(
        upstream.headers, options.transfer_response_headers, response.headers
    )
    return response


async def json_intercepted_response(
    upstream: UpstreamResponse,
    options: ProxyOptions,
) -> Response:
    async with upstream:
        data = await upstream.aread()

    payload = decode_json(data)
    payload = await call_interceptor(
        "response_json_interceptor", options.response_json_interceptor, payload
    )
    body = encode_json(payload)

    response = Response(content=body, status_code=upstream.status_code)
    transfer_allowed_headers(
        upstream.headers,
        options.transfer_response_headers,
        response.headers,
        exclude=_BODY_HEADERS,
    )
    response.headers[CONTENT_TYPE] = JSON_CONTENT_TYPE
    response.headers[CONTENT_LENGTH] = str(len(body))

    logger.debug(
        "response_json_intercepted",
        status_code=upstream.status_code,
        upstream_encoding=upstream.content_encoding,
        size=len(body),
    )
    return response


def streaming_response(upstream: UpstreamResponse, options: ProxyOptions) -> StreamingResponse:
    response = StreamingResponse(
        relay_body(upstream, options),
        status_code=upstream.status_code,
        background=BackgroundTask(upstream.aclose),
    )
    transfer_allowed_headers(
        upstream.headers,
        options.transfer_response_headers,
        response.headers,
        exclude=_BODY_HEADERS,
    )

    content_type = upstream.headers.get(CONTENT_TYPE)
    if content_type:
        response.headers[CONTENT_TYPE] = content_type
    if upstream.content_length is not None:
        response.headers[CONTENT_LENGTH] = str(upstream.content_length)
    if upstream.content_encoding:
        response.headers[CONTENT_ENCODING] = upstream.content_encoding
    return response


async def relay_body(upstream: UpstreamResponse, options: ProxyOptions) -> AsyncIterator[bytes]:
    """Stream the raw upstream body; failures surface as a partial response."""
    try:
        async for chunk in upstream.aiter_raw():
            yield chunk
    except APIClientError as exc:
        logger.warning(
            "stream_relay_failed",
            status_code=upstream.status_code,
            error_type=type(exc).__name__,
            error=str(exc),
        )
        mapped = options.intercept_error(exc)
        if mapped is exc:
            raise
        raise mapped from exc
    finally:
        await upstream.aclose()
