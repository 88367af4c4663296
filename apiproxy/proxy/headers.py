"""HTTP header processing for the proxy pipeline.

Request side, ``forward_request_headers()``:
  - strips hop-by-hop headers from the inbound request,
  - forwards every remaining inbound header, all values in their original order,
    replacing any same-named header already on the outbound request,
  - overwrites ``Content-Type`` with the value computed for the re-encoded body.
    The override always wins, even over a deliberately different inbound type.

Response side, ``transfer_allowed_headers()``:
  - copies only the headers named in the allow-list
    (``ProxyOptions.transfer_response_headers``), all values, in order.
    Everything else stays behind, so hop-by-hop and sensitive upstream headers
    never leak. ``Content-Type``, ``Content-Length`` and ``Content-Encoding``
    are handled by the response policies, not here.

Header names compare case-insensitively throughout (RFC 7230 §3.2).
"""

from __future__ import annotations

from typing import Collection, Iterable, Optional

import httpx
from starlette.datastructures import MutableHeaders

from apiproxy.interceptors import RequestInterceptor

# ─── Constants ────────────────────────────────────────────────────────────────

# Hop-by-hop headers MUST NOT be forwarded (RFC 7230 §6.1).
# httpx sets content-length / transfer-encoding from the outbound body and
# host from the resolved upstream URL.
HOP_BY_HOP_HEADERS: frozenset[str] = frozenset(
    {
        "connection",
        "keep-alive",
        "proxy-authenticate",
        "proxy-authorization",
        "te",
        "trailers",
        "transfer-encoding",
        "upgrade",
        "host",
        "content-length",
    }
)

CONTENT_TYPE: str = "Content-Type"
CONTENT_LENGTH: str = "Content-Length"
CONTENT_ENCODING: str = "Content-Encoding"

# ─── Request side ─────────────────────────────────────────────────────────────


def forwardable_headers(
    inbound_headers: Iterable[tuple[str, str]],
) -> list[tuple[str, str]]:
    """Inbound (name, value) pairs minus hop-by-hop headers, order preserved."""
    return [
        (name, value)
        for name, value in inbound_headers
        if name.lower() not in HOP_BY_HOP_HEADERS
    ]


def forward_request_headers(
    target: httpx.Request,
    inbound_headers: Iterable[tuple[str, str]],
    content_type: Optional[str] = None,
) -> None:
    """Copy inbound headers onto the outbound request in place.

    Args:
        target:          The outbound ``httpx.Request``.
        inbound_headers: ``(name, value)`` pairs of the inbound request, e.g.
                         ``request.headers.items()`` in a Starlette handler.
        content_type:    Content type of the re-encoded body; replaces any
                         forwarded ``Content-Type`` when given.
    """
    forwarded = forwardable_headers(inbound_headers)
    if content_type:
        forwarded = [(k, v) for k, v in forwarded if k.lower() != "content-type"]
        forwarded.append((CONTENT_TYPE, content_type))

    replaced = {name.lower() for name, _ in forwarded}
    kept = [
        (name, value)
        for name, value in target.headers.multi_items()
        if name.lower() not in replaced
    ]
    target.headers = httpx.Headers(kept + forwarded)


def make_header_forwarder(
    inbound_headers: Iterable[tuple[str, str]],
    content_type: Optional[str] = None,
) -> RequestInterceptor:
    """Request interceptor applying :func:`forward_request_headers`."""
    snapshot = list(inbound_headers)

    def forward(request: httpx.Request) -> None:
        forward_request_headers(request, snapshot, content_type)

    return forward


# ─── Response side ────────────────────────────────────────────────────────────


def transfer_allowed_headers(
    upstream_headers: httpx.Headers,
    allowed: Iterable[str],
    target: MutableHeaders,
    *,
    exclude: Collection[str] = (),
) -> None:
    """Append allow-listed upstream headers to the outbound response headers.

    Args:
        upstream_headers: Headers of the upstream response.
        allowed:          Allow-list of header names (any case).
        target:           Headers of the response being built.
        exclude:          Lower-case names never copied even if allow-listed.
    """
    for name in allowed:
        if name.lower() in exclude:
            continue
        for value in upstream_headers.get_list(name):
            target.append(name, value)
