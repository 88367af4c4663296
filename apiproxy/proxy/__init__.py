"""Proxy pipeline: forward an inbound Starlette request to the API.

Public API:
  - proxy_api()                  forward with explicit body type, method, path, options
  - transparent_proxy_api()      inbound method and path, given body type
  - proxy_get_api()              GET with no body
  - transparent_proxy_get_api()  GET with no body, inbound path
  - proxy_raw_api() / proxy_form_api() / proxy_multipart_api()
  - classify_body()              pick a BodyType from method and Content-Type
  - BodyType, ProxyOptions       per-call configuration
  - MultipartWriter              in-progress multipart body seen by interceptors
"""

from __future__ import annotations

from apiproxy.proxy.body import classify_body
from apiproxy.proxy.multipart import MultipartPart, MultipartWriter
from apiproxy.proxy.options import BodyType, ProxyOptions
from apiproxy.proxy.pipeline import (
    proxy_api,
    proxy_form_api,
    proxy_get_api,
    proxy_multipart_api,
    proxy_raw_api,
    transparent_proxy_api,
    transparent_proxy_get_api,
)

__all__ = [
    "BodyType",
    "MultipartPart",
    "MultipartWriter",
    "ProxyOptions",
    "classify_body",
    "proxy_api",
    "proxy_form_api",
    "proxy_get_api",
    "proxy_multipart_api",
    "proxy_raw_api",
    "transparent_proxy_api",
    "transparent_proxy_get_api",
]
