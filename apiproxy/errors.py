"""Error taxonomy for the API client and proxy pipeline.

Every failure surfaced by this package is an :class:`APIClientError` subclass so
hosts can branch on the cause:

  - URLParseError          malformed base or request URL
  - RequestBuildError      the transport request could not be constructed
  - TransportError         network / TLS / protocol failure talking upstream
  - TransportTimeoutError  the per-call deadline elapsed
  - BodyDecodeError        malformed JSON / form / multipart / compressed body
  - UploadTooLargeError    multipart upload exceeded ``max_upload_size``
  - InterceptorError       a user hook raised
  - EncodeError            a body could not be serialised
  - StreamCopyError        relaying the upstream body failed mid-stream

Nothing here is fatal to the process; each call fails independently.
``http_status`` is a hint for hosts translating errors into HTTP responses
before any response bytes were written.
"""

from __future__ import annotations


class APIClientError(Exception):
    """Base class for all API client and proxy pipeline errors."""

    http_status: int = 500
    code: str = "api_client_error"

    def __init__(self, message: str = "") -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        """JSON-serialisable error body (never includes the chained cause)."""
        return {"error": {"message": self.message or self.code, "code": self.code}}


class URLParseError(APIClientError):
    http_status = 500
    code = "url_parse_error"


class RequestBuildError(APIClientError):
    http_status = 500
    code = "request_build_error"


class TransportError(APIClientError):
    http_status = 502
    code = "upstream_unavailable"


class TransportTimeoutError(TransportError):
    http_status = 504
    code = "upstream_timeout"


class BodyDecodeError(APIClientError):
    http_status = 400
    code = "body_decode_error"


class UploadTooLargeError(BodyDecodeError):
    http_status = 413
    code = "payload_too_large"

    def __init__(self, limit: int, size: int | None = None) -> None:
        if size is None:
            message = f"Upload exceeds maximum size of {limit} bytes"
        else:
            message = f"Upload of {size} bytes exceeds maximum size of {limit} bytes"
        super().__init__(message)
        self.limit = limit
        self.size = size


class InterceptorError(APIClientError):
    http_status = 422
    code = "interceptor_error"

    def __init__(self, hook: str, message: str = "") -> None:
        super().__init__(f"{hook} failed: {message}" if message else f"{hook} failed")
        self.hook = hook


class EncodeError(APIClientError):
    http_status = 500
    code = "encode_error"


class StreamCopyError(APIClientError):
    http_status = 502
    code = "stream_copy_error"
