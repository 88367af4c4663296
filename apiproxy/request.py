"""Outbound request assembly, independent of the transport.

A :class:`LogicalRequest` describes one outbound API call: method, absolute or
base-relative URL, body, per-request timeout and the request-level interceptor
chains. It is immutable once built; :class:`RequestBuilder` accumulates the
options in call order.

Appending and replacing interceptor lists are separate operations:

    request = (
        RequestBuilder("GET", "/orders")
        .with_url_interceptors(sign_url)          # replaces
        .append_url_interceptors(add_tracking)    # keeps sign_url, adds after it
        .with_timeout(5.0)
        .build()
    )
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import AsyncIterable, Iterable, Optional, Union

from apiproxy.interceptors import RequestInterceptor, URLInterceptor

RequestBody = Union[bytes, AsyncIterable[bytes]]


@dataclass(frozen=True)
class LogicalRequest:
    """One outbound API call, before URL resolution and interceptors.

    timeout: seconds; 0 means "use the client default".
    """

    method: str
    url: str
    body: Optional[RequestBody] = None
    timeout: float = 0.0
    url_interceptors: tuple[URLInterceptor, ...] = ()
    request_interceptors: tuple[RequestInterceptor, ...] = ()


class RequestBuilder:
    """Accumulates LogicalRequest options; operations apply in call order."""

    def __init__(self, method: str, url: str, body: Optional[RequestBody] = None) -> None:
        self._method = method
        self._url = url
        self._body = body
        self._timeout: float = 0.0
        self._url_interceptors: list[URLInterceptor] = []
        self._request_interceptors: list[RequestInterceptor] = []

    def with_timeout(self, timeout: float) -> "RequestBuilder":
        self._timeout = timeout
        return self

    def with_url_interceptors(self, *interceptors: URLInterceptor) -> "RequestBuilder":
        """Replace the URL interceptor list."""
        self._url_interceptors = list(interceptors)
        return self

    def append_url_interceptors(self, *interceptors: URLInterceptor) -> "RequestBuilder":
        """Append to the URL interceptor list; appending nothing is a no-op."""
        self._url_interceptors.extend(interceptors)
        return self

    def with_request_interceptors(self, *interceptors: RequestInterceptor) -> "RequestBuilder":
        """Replace the request interceptor list."""
        self._request_interceptors = list(interceptors)
        return self

    def append_request_interceptors(self, *interceptors: RequestInterceptor) -> "RequestBuilder":
        """Append to the request interceptor list; appending nothing is a no-op."""
        self._request_interceptors.extend(interceptors)
        return self

    def build(self) -> LogicalRequest:
        return LogicalRequest(
            method=self._method,
            url=self._url,
            body=self._body,
            timeout=self._timeout,
            url_interceptors=tuple(self._url_interceptors),
            request_interceptors=tuple(self._request_interceptors),
        )


def new_api_request(
    method: str,
    url: str,
    body: Optional[RequestBody] = None,
    *,
    timeout: float = 0.0,
    url_interceptors: Iterable[URLInterceptor] = (),
    request_interceptors: Iterable[RequestInterceptor] = (),
) -> LogicalRequest:
    """Build a LogicalRequest in one call."""
    return (
        RequestBuilder(method, url, body)
        .with_timeout(timeout)
        .with_url_interceptors(*url_interceptors)
        .with_request_interceptors(*request_interceptors)
        .build()
    )
