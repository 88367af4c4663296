"""API client: base-URL resolution, interceptor chains and deadline-bound execution.

The client owns an authenticated transport (any ``httpx.AsyncClient``; bearer
injection and token refresh live in its ``auth``), the API base URL, the default
timeout and the client-level URL / request interceptors. All of that is frozen
in :class:`ClientConfig` at construction and shared read-only by concurrent
calls.

Execution order for one call (:meth:`APIClient.execute`):
  1. Resolve the request URL against the base URL (absolute URLs pass through).
  2. Client-level URL interceptor, then the request-level ones.
  3. Effective timeout = request timeout if > 0, else the client default.
  4. Build the transport request; the call is bound to ``now + timeout``.
  5. Client-level request interceptor, then the request-level ones.
  6. Send (streaming). Transport errors propagate; nothing is retried.
"""

from __future__ import annotations

import asyncio
import posixpath
from dataclasses import dataclass
from typing import Optional

import httpx

from apiproxy.constants import DEFAULT_REQUEST_TIMEOUT
from apiproxy.errors import (
    RequestBuildError,
    TransportError,
    TransportTimeoutError,
    URLParseError,
)
from apiproxy.interceptors import (
    RequestInterceptor,
    URLInterceptor,
    apply_request_interceptors,
    apply_url_interceptors,
)
from apiproxy.request import LogicalRequest
from apiproxy.response import UpstreamResponse
from apiproxy.utils.logger import get_logger

logger = get_logger(__name__)


# ─── Transport factory ────────────────────────────────────────────────────────


def create_http_client(
    auth: Optional[httpx.Auth] = None,
    timeout: float = DEFAULT_REQUEST_TIMEOUT,
) -> httpx.AsyncClient:
    """Create the shared transport used by an APIClient.

    The client is created once and shared by every call; it is never
    instantiated per-request. Redirects are not followed so 3xx responses reach
    the caller unchanged.

    Args:
        auth: Authentication flow applied to every request (e.g. a bearer-token
              ``httpx.Auth`` that refreshes itself). None sends no credentials.
        timeout: Transport-level timeout in seconds.
    """
    return httpx.AsyncClient(
        auth=auth,
        timeout=httpx.Timeout(timeout),
        follow_redirects=False,
    )


# ─── URL resolution ───────────────────────────────────────────────────────────


def parse_base_url(base_url: str | httpx.URL) -> httpx.URL:
    """Parse and validate an absolute API base URL.

    Raises:
        URLParseError: The URL is malformed or has no scheme / host.
    """
    try:
        url = httpx.URL(base_url)
    except (httpx.InvalidURL, TypeError) as exc:
        raise URLParseError(f"Invalid base URL {base_url!r}: {exc}") from exc
    if not url.scheme or not url.host:
        raise URLParseError(f"Base URL must be absolute, got {str(base_url)!r}")
    return url


def join_url_path(base_path: str, relative_path: str) -> str:
    """Join two URL paths with exactly one separator and clean the result.

    ``join_url_path("/v1", "/orders")`` → ``"/v1/orders"``. Empty segments,
    ``.`` and ``..`` are resolved like a POSIX path join; the result always
    starts with ``/``.
    """
    joined = "/".join(part for part in (base_path, relative_path) if part)
    if not joined:
        return "/"
    cleaned = posixpath.normpath(joined)
    if cleaned == ".":
        return "/"
    # normpath keeps a leading "//" (POSIX allows it); URLs must not
    return "/" + cleaned.lstrip("/")


def encoded_path(url: httpx.URL) -> str:
    """Percent-encoded path of ``url``, without the query."""
    return url.raw_path.decode("ascii").partition("?")[0]


def resolve_url(base_url: httpx.URL, url: str) -> httpx.URL:
    """Resolve a request URL against the API base URL.

    A URL carrying a scheme is returned verbatim. Otherwise the result keeps the
    base scheme and authority, joins the paths, and takes query and fragment
    from the relative URL (the base's are discarded). Paths are joined in
    their percent-encoded form, so an escape such as ``%2F`` or ``%252e`` reaches
    the upstream exactly as given and never becomes a separator or ``..``.

    Raises:
        URLParseError: ``url`` cannot be parsed.
    """
    try:
        target = httpx.URL(url)
    except (httpx.InvalidURL, TypeError) as exc:
        raise URLParseError(f"Invalid request URL {url!r}: {exc}") from exc

    if target.scheme:
        return target

    try:
        return base_url.copy_with(
            path=join_url_path(encoded_path(base_url), encoded_path(target)),
            query=target.query or None,
            fragment=target.fragment or None,
        )
    except httpx.InvalidURL as exc:
        raise URLParseError(f"Cannot resolve {url!r} against {base_url}: {exc}") from exc


# ─── Client ───────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class ClientConfig:
    """Immutable client settings, shared by all concurrent calls."""

    transport: httpx.AsyncClient
    base_url: httpx.URL
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT
    url_interceptor: Optional[URLInterceptor] = None
    request_interceptor: Optional[RequestInterceptor] = None


class APIClient:
    """Executes LogicalRequests against a configured base API."""

    def __init__(
        self,
        transport: httpx.AsyncClient,
        base_url: str | httpx.URL,
        *,
        request_timeout: float = DEFAULT_REQUEST_TIMEOUT,
        url_interceptor: Optional[URLInterceptor] = None,
        request_interceptor: Optional[RequestInterceptor] = None,
        owns_transport: bool = False,
    ) -> None:
        if request_timeout <= 0:
            raise ValueError(f"request_timeout must be positive, got {request_timeout}")
        self._config = ClientConfig(
            transport=transport,
            base_url=parse_base_url(base_url),
            request_timeout=request_timeout,
            url_interceptor=url_interceptor,
            request_interceptor=request_interceptor,
        )
        self._owns_transport = owns_transport

    @classmethod
    def create(
        cls,
        base_url: str | httpx.URL,
        *,
        auth: Optional[httpx.Auth] = None,
        request_timeout: float = DEFAULT_REQUEST_TIMEOUT,
        url_interceptor: Optional[URLInterceptor] = None,
        request_interceptor: Optional[RequestInterceptor] = None,
    ) -> "APIClient":
        """Build a client with its own transport (closed by :meth:`aclose`)."""
        return cls(
            create_http_client(auth=auth, timeout=request_timeout),
            base_url,
            request_timeout=request_timeout,
            url_interceptor=url_interceptor,
            request_interceptor=request_interceptor,
            owns_transport=True,
        )

    @property
    def config(self) -> ClientConfig:
        return self._config

    @property
    def base_url(self) -> httpx.URL:
        return self._config.base_url

    @property
    def request_timeout(self) -> float:
        return self._config.request_timeout

    def effective_timeout(self, request: LogicalRequest) -> float:
        return request.timeout if request.timeout > 0 else self._config.request_timeout

    async def execute(self, request: LogicalRequest) -> UpstreamResponse:
        """Execute one logical request and return the (unread) upstream response.

        The caller owns the returned response and must release it
        (``await response.aclose()`` or ``async with``).

        Raises:
            URLParseError: The request URL is malformed.
            InterceptorError: A URL or request interceptor raised.
            RequestBuildError: The transport request could not be constructed.
            TransportTimeoutError: The deadline elapsed before the response arrived.
            TransportError: Network, TLS or protocol failure.
        """
        config = self._config

        url = apply_url_interceptors(
            resolve_url(config.base_url, request.url),
            (config.url_interceptor, *request.url_interceptors),
        )

        timeout = self.effective_timeout(request)
        deadline = asyncio.get_running_loop().time() + timeout

        try:
            http_request = config.transport.build_request(
                request.method,
                url,
                content=request.body,
                timeout=httpx.Timeout(timeout),
            )
        except httpx.InvalidURL as exc:
            raise URLParseError(f"Invalid request URL {str(url)!r}: {exc}") from exc
        except (TypeError, ValueError) as exc:
            raise RequestBuildError(f"Cannot build {request.method} {url}: {exc}") from exc

        apply_request_interceptors(
            http_request,
            (config.request_interceptor, *request.request_interceptors),
        )

        logger.debug(
            "upstream_request",
            method=http_request.method,
            url=str(http_request.url),
            timeout=timeout,
        )

        try:
            response = await asyncio.wait_for(
                config.transport.send(http_request, stream=True),
                timeout=timeout,
            )
        except asyncio.TimeoutError:
            logger.warning("upstream_timeout", method=http_request.method, url=str(url), timeout=timeout)
            raise TransportTimeoutError(
                f"{http_request.method} {url} timed out after {timeout}s"
            ) from None
        except httpx.TimeoutException as exc:
            logger.warning("upstream_timeout", method=http_request.method, url=str(url), timeout=timeout)
            raise TransportTimeoutError(f"{http_request.method} {url} timed out: {exc}") from exc
        except httpx.InvalidURL as exc:
            raise URLParseError(f"Invalid request URL {str(url)!r}: {exc}") from exc
        except httpx.HTTPError as exc:
            logger.warning(
                "upstream_unavailable",
                method=http_request.method,
                url=str(url),
                error_type=type(exc).__name__,
                error=str(exc),
            )
            raise TransportError(f"{http_request.method} {url} failed: {exc}") from exc

        logger.debug(
            "upstream_response",
            method=http_request.method,
            url=str(url),
            status_code=response.status_code,
        )
        return UpstreamResponse(response, deadline=deadline)

    # ── Lifecycle ─────────────────────────────────────────────────────────────

    async def aclose(self) -> None:
        """Close the transport if this client created it."""
        if self._owns_transport:
            await self._config.transport.aclose()

    async def __aenter__(self) -> "APIClient":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()
