"""Shared constants for apiproxy.

Timeouts, size limits and content types used across modules are defined here.
Other modules import their defaults from here.
"""

# ─── Timeouts ─────────────────────────────────────────────────────────────────

# Client-level default applied when a request does not carry its own timeout.
# A request timeout of 0 means "use the client default".
DEFAULT_REQUEST_TIMEOUT: float = 10.0  # seconds

# ─── Size limits ──────────────────────────────────────────────────────────────

# Maximum total size of an inbound multipart upload re-encoded by the proxy.
# Exceeding it is a hard failure (UploadTooLargeError), never a truncation.
# A value <= 0 disables the cap.
DEFAULT_MAX_UPLOAD_SIZE: int = 33_554_432  # 32 MiB

# ─── Content types ────────────────────────────────────────────────────────────

JSON_CONTENT_TYPE: str = "application/json; charset=utf-8"
FORM_CONTENT_TYPE: str = "application/x-www-form-urlencoded"
MULTIPART_FORM_CONTENT_TYPE: str = "multipart/form-data"
OCTET_STREAM_CONTENT_TYPE: str = "application/octet-stream"

# ─── Status codes ─────────────────────────────────────────────────────────────

HTTP_NO_CONTENT: int = 204
