"""Upstream URL policy: allow-list validation, expiry and content-type hints."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Optional
from urllib.parse import parse_qs, urlsplit

logger = logging.getLogger(__name__)

DEFAULT_CONTENT_TYPE = "audio/mpeg"

_MIME_HINTS = ("audio/mp4", "audio/webm", "video/mp4", "video/webm")

_FORMAT_CONTENT_TYPES = {
    "mp3": "audio/mpeg",
    "mp4": "video/mp4",
    "m4a": "audio/mp4",
    "webm": "audio/webm",
}


@dataclass(frozen=True)
class SourceValidation:
    valid: bool
    error: Optional[str] = None
    url: Optional[str] = None

    def __bool__(self) -> bool:
        return self.valid


def _host_allowed(host: str, allowed_hosts: Iterable[str]) -> bool:
    for allowed in allowed_hosts:
        if host == allowed or host.endswith("." + allowed):
            return True
    return False


def validate_source_url(url: Optional[str], allowed_hosts: Iterable[str]) -> SourceValidation:
    """Accept only https URLs on an allow-listed host (or one of its subdomains)."""
    if not url or not url.strip():
        return SourceValidation(False, "Missing stream URL")
    try:
        parts = urlsplit(url.strip())
        host = (parts.hostname or "").lower().rstrip(".")
    except ValueError:
        return SourceValidation(False, "Malformed stream URL")
    if parts.scheme.lower() != "https":
        return SourceValidation(False, "Stream URL must use HTTPS")
    if not host:
        return SourceValidation(False, "Malformed stream URL")
    if parts.username or parts.password:
        return SourceValidation(False, "Stream URL must not carry credentials")
    if not _host_allowed(host, allowed_hosts):
        return SourceValidation(False, f"Stream host not allowed: {host}")
    return SourceValidation(True, url=url.strip())


def _query(url: str) -> Dict[str, list]:
    return parse_qs(urlsplit(url).query, keep_blank_values=True)


def expires_at(url: str) -> Optional[float]:
    """Epoch seconds from the ``expire`` parameter, None when the URL has none.

    Raises ValueError when the URL or the parameter cannot be parsed.
    """
    values = _query(url).get("expire")
    if not values:
        return None
    return float(int(values[0].strip()))


def is_expired(url: str, now: Optional[float] = None) -> bool:
    """True when the URL's ``expire`` time has passed or cannot be read."""
    try:
        expiry = expires_at(url)
    except (TypeError, ValueError):
        logger.debug("Treating stream URL with unreadable expiry as expired", exc_info=True)
        return True
    if expiry is None:
        return False
    current = time.time() if now is None else now
    return current > expiry


def detect_content_type(url: str, declared: Optional[str] = None) -> str:
    if declared and declared.strip():
        return declared.strip()
    lowered = url.lower()
    for mime in _MIME_HINTS:
        if f"mime={mime}" in lowered or f"mime={mime.replace('/', '%2f')}" in lowered:
            return mime
    return DEFAULT_CONTENT_TYPE


def is_media_content_type(value: Optional[str]) -> bool:
    """True for audio/*, video/* and application/octet-stream, ignoring parameters."""
    if not value:
        return False
    mime = value.split(";", 1)[0].strip().lower()
    return mime.startswith(("audio/", "video/")) or mime == "application/octet-stream"


def content_type_for_format(media_format: str) -> str:
    return _FORMAT_CONTENT_TYPES.get((media_format or "").lower(), DEFAULT_CONTENT_TYPE)


def _int_param(params: Dict[str, list], name: str) -> Optional[int]:
    values = params.get(name)
    if not values:
        return None
    try:
        return int(values[0])
    except ValueError:
        return None


def extract_quality_info(url: str) -> Dict[str, Any]:
    try:
        params = _query(url)
    except ValueError:
        return {}
    info: Dict[str, Any] = {}
    for name in ("quality", "itag"):
        values = params.get(name)
        if values and values[0]:
            info[name] = values[0]
    for name in ("fps", "bitrate"):
        value = _int_param(params, name)
        if value is not None:
            info[name] = value
    return info


def describe_quality(url: str) -> Optional[str]:
    """Compact ``key=value`` rendering used for the X-Stream-Quality header."""
    info = extract_quality_info(url)
    if not info:
        return None
    return ";".join(f"{key}={value}" for key, value in info.items())


__all__ = [
    "DEFAULT_CONTENT_TYPE",
    "SourceValidation",
    "validate_source_url",
    "expires_at",
    "is_expired",
    "detect_content_type",
    "content_type_for_format",
    "is_media_content_type",
    "extract_quality_info",
    "describe_quality",
]
