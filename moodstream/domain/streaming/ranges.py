"""HTTP byte-range negotiation and the header set shared by every stream response."""

from __future__ import annotations

import re
from typing import Dict, NamedTuple, Optional

_RANGE_RE = re.compile(r"^\s*bytes\s*=\s*(\d+)\s*-\s*(\d*)\s*$", re.IGNORECASE)

CORS_HEADERS: Dict[str, str] = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, HEAD, OPTIONS",
    "Access-Control-Allow-Headers": "Range, Content-Type",
    "Access-Control-Expose-Headers": "Content-Length, Content-Range, Accept-Ranges",
}

DEFAULT_CACHE_CONTROL = "public, max-age=3600"


class ByteRange(NamedTuple):
    start: int
    end: int  # inclusive
    length: int

    def content_range(self, total_length: int) -> str:
        return f"bytes {self.start}-{self.end}/{total_length}"


def parse_range_request(header: Optional[str], total_length: int) -> Optional[ByteRange]:
    """Parse a single ``bytes=start-end`` or ``bytes=start-`` range.

    Returns None when the header is absent or malformed, when it asks for
    several ranges or a suffix range, or when the range does not fit inside
    ``[0, total_length)``. Callers answer None with the full resource.
    """
    if not header or total_length <= 0:
        return None
    match = _RANGE_RE.match(header)
    if not match:
        return None
    start = int(match.group(1))
    end = int(match.group(2)) if match.group(2) else total_length - 1
    if start > end or start >= total_length or end >= total_length:
        return None
    return ByteRange(start, end, end - start + 1)


def build_stream_headers(
    content_type: str,
    *,
    content_length: Optional[int] = None,
    content_range: Optional[str] = None,
    cache_control: str = DEFAULT_CACHE_CONTROL,
) -> Dict[str, str]:
    headers = dict(CORS_HEADERS)
    headers["Content-Type"] = content_type
    headers["Accept-Ranges"] = "bytes"
    headers["Cache-Control"] = cache_control
    if content_length is not None:
        headers["Content-Length"] = str(content_length)
    if content_range:
        headers["Content-Range"] = content_range
    return headers


def preflight_headers() -> Dict[str, str]:
    headers = dict(CORS_HEADERS)
    headers["Access-Control-Max-Age"] = "86400"
    return headers


__all__ = [
    "ByteRange",
    "CORS_HEADERS",
    "parse_range_request",
    "build_stream_headers",
    "preflight_headers",
]
