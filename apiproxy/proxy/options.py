"""Proxy call options and inbound body classification."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field, replace
from typing import Any, Iterable, Optional

from apiproxy.constants import DEFAULT_MAX_UPLOAD_SIZE
from apiproxy.errors import APIClientError
from apiproxy.interceptors import (
    ErrorInterceptor,
    FormInterceptor,
    JSONInterceptor,
    MultipartFormInterceptor,
    RequestInterceptor,
    URLInterceptor,
)


class BodyType(enum.Enum):
    """How the inbound body is decoded and re-encoded for the upstream call."""

    NONE = "NONE"
    RAW = "RAW"
    FORM = "FORM"
    MULTIPART_FORM = "MULTIPART_FORM"


def _unique_header_names(names: Iterable[str]) -> tuple[str, ...]:
    """Ordered, case-insensitively de-duplicated header names."""
    seen: set[str] = set()
    unique: list[str] = []
    for name in names:
        key = name.lower()
        if key not in seen:
            seen.add(key)
            unique.append(name)
    return tuple(unique)


@dataclass(frozen=True)
class ProxyOptions:
    """Per-call proxy configuration.

    max_upload_size:           cap on the inbound multipart body (bytes; <= 0 disables)
    request_timeout:           seconds; 0 uses the client default
    url_interceptor:           appended after the client-level URL interceptor
    request_interceptor:       appended after header forwarding
    request_json_interceptor:  RAW bodies are decoded as JSON and passed through it
    request_form_interceptor:  FORM values are passed through it
    request_multipart_interceptor: gets the writer after all inbound parts are written
    response_json_interceptor: upstream body is decoded as JSON and passed through it
    transfer_response_headers: upstream headers copied to the response (allow-list)
    error_interceptor:         maps an error to the exception finally raised
    """

    max_upload_size: int = DEFAULT_MAX_UPLOAD_SIZE
    request_timeout: float = 0.0

    url_interceptor: Optional[URLInterceptor] = None
    request_interceptor: Optional[RequestInterceptor] = None

    request_json_interceptor: Optional[JSONInterceptor] = None
    request_form_interceptor: Optional[FormInterceptor] = None
    request_multipart_interceptor: Optional[MultipartFormInterceptor] = None

    response_json_interceptor: Optional[JSONInterceptor] = None

    transfer_response_headers: tuple[str, ...] = field(default=())

    error_interceptor: Optional[ErrorInterceptor] = None

    def __post_init__(self) -> None:
        object.__setattr__(
            self,
            "transfer_response_headers",
            _unique_header_names(self.transfer_response_headers),
        )

    def replace(self, **changes: Any) -> "ProxyOptions":
        """Return a copy with the given fields changed."""
        return replace(self, **changes)

    def intercept_error(self, exc: APIClientError) -> Exception:
        """Exception to raise in place of ``exc`` (``exc`` itself when unmapped).

        The interceptor can only remap: returning None keeps ``exc``.
        """
        if self.error_interceptor is None:
            return exc
        mapped = self.error_interceptor(exc)
        if mapped is None:
            return exc
        if mapped is not exc and mapped.__cause__ is None:
            mapped.__cause__ = exc
        return mapped
