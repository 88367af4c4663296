"""Proxy pipeline: forwards an inbound Starlette request to the API.

``proxy_api()`` is the single implementation; every other entry point here is a
fixed-argument form of it:

  transparent_proxy_api      method and path taken from the inbound request
  proxy_get_api              method forced to GET, no body
  transparent_proxy_get_api  GET, no body, inbound path
  proxy_raw_api / proxy_form_api / proxy_multipart_api
                             body classification fixed

Usage in a FastAPI route:

    @router.post("/orders")
    async def create_order(request: Request) -> Response:
        return await proxy_api(
            api_client,
            request,
            BodyType.RAW,
            path="/v2/orders",
            options=ProxyOptions(request_json_interceptor=add_tenant),
        )

Errors are raised to the caller (see apiproxy.errors). Before the returned
response starts streaming nothing has been written, so the host can still
answer with an error response.
"""

from __future__ import annotations

from functools import partial
from typing import TYPE_CHECKING, Optional

from starlette.requests import Request
from starlette.responses import Response

from apiproxy.errors import APIClientError
from apiproxy.proxy.body import encode_request_body
from apiproxy.proxy.headers import make_header_forwarder
from apiproxy.proxy.options import BodyType, ProxyOptions
from apiproxy.proxy.response import build_proxy_response
from apiproxy.request import RequestBuilder
from apiproxy.utils.logger import get_logger

if TYPE_CHECKING:
    from apiproxy.client import APIClient

logger = get_logger(__name__)


def inbound_target(request: Request) -> str:
    """Path, query and fragment of the inbound request, as received."""
    raw_path = request.scope.get("raw_path")
    target = raw_path.decode("latin-1") if raw_path else request.url.path
    if request.url.query:
        target += "?" + request.url.query
    if request.url.fragment:
        target += "#" + request.url.fragment
    return target


async def proxy_api(
    client: "APIClient",
    request: Request,
    body_type: BodyType = BodyType.NONE,
    *,
    method: str = "",
    path: str = "",
    options: Optional[ProxyOptions] = None,
) -> Response:
    """Forward ``request`` to the API behind ``client``.

    Args:
        client:    APIClient holding the transport and base URL.
        request:   Inbound Starlette request.
        body_type: How the inbound body is re-encoded.
        method:    Outbound method; empty uses the inbound method.
        path:      Outbound path (base-relative or absolute, may carry a query);
                   empty uses the inbound path, query and fragment.
        options:   Per-call options; defaults to ``ProxyOptions()``.

    Returns:
        The response to hand back to the ASGI server.

    Raises:
        APIClientError: Any failure, after ``options.error_interceptor`` mapping.
    """
    options = options if options is not None else ProxyOptions()
    try:
        return await _proxy(
            client,
            request,
            body_type,
            method or request.method,
            path or inbound_target(request),
            options,
        )
    except APIClientError as exc:
        mapped = options.intercept_error(exc)
        if mapped is exc:
            raise
        raise mapped from exc


async def _proxy(
    client: "APIClient",
    request: Request,
    body_type: BodyType,
    method: str,
    path: str,
    options: ProxyOptions,
) -> Response:
    encoded = await encode_request_body(request, body_type, options)

    builder = (
        RequestBuilder(method, path, encoded.content)
        .with_timeout(options.request_timeout)
        .with_request_interceptors(
            make_header_forwarder(request.headers.items(), encoded.content_type)
        )
    )
    if options.url_interceptor is not None:
        builder.append_url_interceptors(options.url_interceptor)
    if options.request_interceptor is not None:
        builder.append_request_interceptors(options.request_interceptor)

    upstream = await client.execute(builder.build())

    logger.info(
        "request_proxied",
        method=method,
        path=path,
        body_type=body_type.value,
        status_code=upstream.status_code,
    )

    try:
        return await build_proxy_response(upstream, options)
    except BaseException:
        await upstream.aclose()
        raise


# ─── Convenience wrappers ─────────────────────────────────────────────────────


async def transparent_proxy_api(
    client: "APIClient",
    request: Request,
    body_type: BodyType,
) -> Response:
    return await proxy_api(client, request, body_type)


async def proxy_get_api(
    client: "APIClient",
    request: Request,
    path: str = "",
    options: Optional[ProxyOptions] = None,
) -> Response:
    return await proxy_api(
        client, request, BodyType.NONE, method="GET", path=path, options=options
    )


async def transparent_proxy_get_api(client: "APIClient", request: Request) -> Response:
    return await proxy_get_api(client, request)


proxy_raw_api = partial(proxy_api, body_type=BodyType.RAW)
proxy_form_api = partial(proxy_api, body_type=BodyType.FORM)
proxy_multipart_api = partial(proxy_api, body_type=BodyType.MULTIPART_FORM)
