"""apiproxy: HTTP API client and proxy helpers on httpx and Starlette.

Public API:
  - APIClient / ClientConfig     base URL, default timeout, client-level interceptors
  - RequestBuilder / LogicalRequest / new_api_request()
  - UpstreamResponse             owned upstream response, released exactly once
  - APIClientError and subclasses (see apiproxy.errors)
  - apiproxy.proxy               inbound → upstream proxy pipeline
"""

from __future__ import annotations

from apiproxy.client import APIClient, ClientConfig, create_http_client
from apiproxy.errors import (
    APIClientError,
    BodyDecodeError,
    EncodeError,
    InterceptorError,
    RequestBuildError,
    StreamCopyError,
    TransportError,
    TransportTimeoutError,
    UploadTooLargeError,
    URLParseError,
)
from apiproxy.request import LogicalRequest, RequestBuilder, new_api_request
from apiproxy.response import UpstreamResponse

__all__ = [
    "APIClient",
    "APIClientError",
    "BodyDecodeError",
    "ClientConfig",
    "EncodeError",
    "InterceptorError",
    "LogicalRequest",
    "RequestBuildError",
    "RequestBuilder",
    "StreamCopyError",
    "TransportError",
    "TransportTimeoutError",
    "URLParseError",
    "UploadTooLargeError",
    "UpstreamResponse",
    "create_http_client",
    "new_api_request",
]
