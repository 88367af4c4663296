"""MultipartWriter: an in-progress multipart/form-data body.

The proxy writes every inbound field and file into a fresh writer, hands it to
the request multipart interceptor (which may add, remove or inspect parts), and
then finalizes it into the outbound body. Parts are rendered in the layout and
with the parameter escaping httpx's multipart encoder uses, except that a file
part keeps its ``filename`` parameter even when it is empty (an empty file
input in a browser form), where httpx would turn the part into a plain field.

    writer = MultipartWriter()
    writer.write_field("title", "Quarterly report")
    writer.write_file("attachment", "report.pdf", pdf_bytes, "application/pdf")
    body = writer.close()
    headers = {"Content-Type": writer.content_type}
"""

from __future__ import annotations

import mimetypes
import os
import re
from dataclasses import dataclass
from typing import Optional

from apiproxy.constants import MULTIPART_FORM_CONTENT_TYPE, OCTET_STREAM_CONTENT_TYPE
from apiproxy.errors import EncodeError

# HTML5 form-data escaping of quoted parameter values (same table as httpx).
_PARAM_REPLACEMENTS = {'"': "%22", "\\": "\\\\"}
_PARAM_REPLACEMENTS.update({chr(c): f"%{c:02X}" for c in range(0x20) if c != 0x1B})
_PARAM_RE = re.compile("|".join(re.escape(c) for c in _PARAM_REPLACEMENTS))


def format_param(name: str, value: str) -> str:
    """``name="value"`` with the value escaped for a Content-Disposition header."""
    escaped = _PARAM_RE.sub(lambda match: _PARAM_REPLACEMENTS[match.group(0)], value)
    return f'{name}="{escaped}"'


@dataclass(frozen=True)
class MultipartPart:
    """One part: a plain field when ``filename`` is None, otherwise a file."""

    name: str
    content: bytes
    filename: Optional[str] = None
    content_type: Optional[str] = None

    @property
    def is_file(self) -> bool:
        return self.filename is not None


class MultipartWriter:
    """Accumulates form parts in order and renders them once, on close()."""

    def __init__(self, boundary: Optional[str] = None) -> None:
        self._boundary = boundary or os.urandom(16).hex()
        self._parts: list[MultipartPart] = []
        self._body: Optional[bytes] = None

    @property
    def boundary(self) -> str:
        return self._boundary

    @property
    def content_type(self) -> str:
        """Boundary-bearing content type of the rendered body."""
        return f"{MULTIPART_FORM_CONTENT_TYPE}; boundary={self._boundary}"

    @property
    def parts(self) -> tuple[MultipartPart, ...]:
        return tuple(self._parts)

    @property
    def closed(self) -> bool:
        return self._body is not None

    def write_field(self, name: str, value: str) -> None:
        self._append(MultipartPart(name=name, content=value.encode("utf-8")))

    def write_file(
        self,
        name: str,
        filename: str,
        content: bytes,
        content_type: Optional[str] = None,
    ) -> None:
        """Add a file part. A None content type is guessed from the filename."""
        self._append(
            MultipartPart(
                name=name,
                content=content,
                filename=filename,
                content_type=content_type,
            )
        )

    def remove(self, name: str) -> int:
        """Drop every part called ``name``; returns how many were removed."""
        self._ensure_open()
        before = len(self._parts)
        self._parts = [part for part in self._parts if part.name != name]
        return before - len(self._parts)

    def close(self) -> bytes:
        """Render the body, including the closing boundary. Idempotent.

        Raises:
            EncodeError: A part could not be rendered.
        """
        if self._body is not None:
            return self._body
        try:
            chunks = [self._render_part(part) for part in self._parts]
        except (UnicodeEncodeError, TypeError) as exc:
            raise EncodeError(f"Could not encode multipart body: {exc}") from exc
        chunks.append(f"--{self._boundary}--\r\n".encode("ascii"))
        self._body = b"".join(chunks)
        return self._body

    def _render_part(self, part: MultipartPart) -> bytes:
        disposition = "Content-Disposition: form-data; " + format_param("name", part.name)
        lines = [f"--{self._boundary}"]
        if part.is_file:
            lines.append(disposition + "; " + format_param("filename", part.filename or ""))
            content_type = part.content_type or _guess_content_type(part.filename)
            lines.append(f"Content-Type: {content_type}")
        else:
            lines.append(disposition)
        head = ("\r\n".join(lines) + "\r\n\r\n").encode("utf-8")
        return head + part.content + b"\r\n"

    def _append(self, part: MultipartPart) -> None:
        self._ensure_open()
        self._parts.append(part)

    def _ensure_open(self) -> None:
        if self._body is not None:
            raise EncodeError("MultipartWriter is closed")


def _guess_content_type(filename: Optional[str]) -> str:
    if filename:
        return mimetypes.guess_type(filename)[0] or OCTET_STREAM_CONTENT_TYPE
    return OCTET_STREAM_CONTENT_TYPE
