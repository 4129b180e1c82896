#!/usr/bin/env python
"""
Streaming delivery.

Serves bytes for a play request either from a retained local copy or by
proxying the remote upstream, with single-range support either way so a
standard media element can seek. Bodies are wrapped so that closing the
response (client disconnect included) closes the file or the upstream
connection, even when iteration never started.
"""

from __future__ import annotations

import logging
import os
import time
from dataclasses import dataclass, field
from typing import Dict, Iterable, Iterator, Optional

import requests
from werkzeug.wsgi import ClosingIterator

from moodstream.domain.library.models import LOCAL_STREAM_PREFIX
from moodstream.exceptions import (
    ExtractionError,
    LocalSourceUnavailable,
    LocalStreamNotFound,
    SourceExpiredError,
    SourceValidationError,
    UpstreamStatusError,
    UpstreamUnavailableError,
)
from moodstream.observability.metrics import (
    observe_upstream_latency,
    record_remote_fallback,
    record_stream_response,
)
from moodstream.settings import StreamingSettings

from .extraction import ExtractionProvider, StreamInfo
from .ranges import build_stream_headers, parse_range_request
from .sources import (
    SourceValidation,
    content_type_for_format,
    describe_quality,
    detect_content_type,
    is_expired,
    is_media_content_type,
    validate_source_url,
)

logger = logging.getLogger(__name__)

# Upstream answers that usually mean a cached stream URL went stale
_STALE_URL_STATUSES = (403, 410)


@dataclass
class StreamResult:
    status: int
    headers: Dict[str, str]
    body: Optional[Iterable[bytes]] = None
    source: str = "local"
    meta: Dict[str, str] = field(default_factory=dict)


def _parse_int(value: Optional[str]) -> Optional[int]:
    if value is None:
        return None
    try:
        return int(value)
    except ValueError:
        return None


def _length_from_content_range(content_range: Optional[str]) -> Optional[int]:
    # "bytes 0-499/1000" -> 500
    if not content_range or not content_range.startswith("bytes "):
        return None
    span = content_range[len("bytes "):].split("/", 1)[0]
    start, _, end = span.partition("-")
    try:
        return int(end) - int(start) + 1
    except ValueError:
        return None


def _iter_file(handle, length: int, chunk_size: int) -> Iterator[bytes]:
    remaining = length
    while remaining > 0:
        chunk = handle.read(min(chunk_size, remaining))
        if not chunk:
            break
        remaining -= len(chunk)
        yield chunk


class StreamDeliveryService:
    def __init__(
        self,
        manager,
        settings: StreamingSettings,
        *,
        extractor: Optional[ExtractionProvider] = None,
        session=None,
    ) -> None:
        """
        :param manager: The ContentIndexManager answering playback resolution.
        :param settings: Upstream policy, timeouts and chunk size.
        :param extractor: Provider resolving track ids to upstream URLs.
        :param session: Object exposing ``get``/``head`` like ``requests``; defaults to the module.
        """
        self.manager = manager
        self.settings = settings
        self.extractor = extractor
        self._http = session if session is not None else requests

    @property
    def _timeout(self):
        return (self.settings.connect_timeout, self.settings.read_timeout)

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------
    def validate_source_url(self, url: Optional[str]) -> SourceValidation:
        return validate_source_url(url, self.settings.allowed_hosts)

    def ensure_remote_url(self, url: Optional[str]) -> str:
        """Validated, unexpired upstream URL; raises before any side effect."""
        validation = self.validate_source_url(url)
        if not validation.valid:
            raise SourceValidationError(validation.error or "Invalid stream URL")
        if is_expired(validation.url):  # type: ignore[arg-type]
            raise SourceExpiredError("Stream URL has expired")
        return validation.url  # type: ignore[return-value]

    # ------------------------------------------------------------------
    # Local
    # ------------------------------------------------------------------
    def serve_local(
        self,
        path: str,
        range_header: Optional[str],
        media_format: str,
        *,
        head: bool = False,
    ) -> StreamResult:
        try:
            total = os.path.getsize(path)
        except OSError as exc:
            raise LocalSourceUnavailable(path, str(exc)) from exc

        content_type = content_type_for_format(media_format)
        byte_range = parse_range_request(range_header, total)
        if byte_range is not None:
            status = 206
            headers = build_stream_headers(
                content_type,
                content_length=byte_range.length,
                content_range=byte_range.content_range(total),
            )
            start, length = byte_range.start, byte_range.length
        else:
            status = 200
            headers = build_stream_headers(content_type, content_length=total)
            start, length = 0, total
        headers["X-Stream-Source"] = "local"

        if head:
            return StreamResult(status, headers, None, "local")

        try:
            handle = open(path, "rb")
        except OSError as exc:
            raise LocalSourceUnavailable(path, str(exc)) from exc
        try:
            handle.seek(start)
        except OSError as exc:
            handle.close()
            raise LocalSourceUnavailable(path, str(exc)) from exc

        body = ClosingIterator(_iter_file(handle, length, self.settings.chunk_size), [handle.close])
        return StreamResult(status, headers, body, "local")

    def _serve_reference(self, reference: str, range_header: Optional[str], head: bool) -> StreamResult:
        local = self.manager.open_local(reference)
        result = self.serve_local(local.path, range_header, local.track.media_format, head=head)
        result.meta["retrieval_id"] = local.track.retrieval_id
        return result

    def deliver_local_reference(self, reference: str, range_header: Optional[str], *, head: bool = False) -> StreamResult:
        """Serve a retained copy directly; no remote fallback on this path."""
        try:
            result = self._serve_reference(reference, range_header, head)
        except LocalSourceUnavailable as exc:
            raise LocalStreamNotFound(f"Local copy unavailable: {exc.reason}") from exc
        record_stream_response(result.source, result.status)
        return result

    # ------------------------------------------------------------------
    # Remote
    # ------------------------------------------------------------------
    def _request_headers(self, range_header: Optional[str]) -> Dict[str, str]:
        headers = {"User-Agent": self.settings.user_agent}
        if range_header:
            headers["Range"] = range_header
        return headers

    def _response_content_type(self, url: str, response, fallback_type: Optional[str]) -> str:
        """Content type to relay; raises when the upstream answered with something other than media."""
        declared = response.headers.get("Content-Type")
        if declared and not is_media_content_type(declared):
            logger.warning("Upstream answered %s with non-media content %s", response.status_code, declared)
            raise UpstreamStatusError(
                f"Upstream returned non-media content ({declared})",
                upstream_status=response.status_code,
                error_code="unexpected_content_type",
            )
        if declared and declared.split(";", 1)[0].strip().lower() != "application/octet-stream":
            return detect_content_type(url, declared)
        return detect_content_type(url, fallback_type)

    def _head_remote(self, url: str, fallback_type: Optional[str] = None) -> StreamResult:
        try:
            response = self._http.head(
                url,
                headers=self._request_headers(None),
                allow_redirects=True,
                timeout=self._timeout,
            )
        except requests.RequestException as exc:
            logger.warning("HEAD request to upstream failed: %s", exc)
            raise UpstreamUnavailableError("Upstream is unreachable") from exc
        try:
            if response.status_code >= 400:
                logger.warning("Upstream HEAD returned %s", response.status_code)
                raise UpstreamStatusError(
                    f"Upstream returned {response.status_code}", upstream_status=response.status_code
                )
            headers = build_stream_headers(
                self._response_content_type(url, response, fallback_type),
                content_length=_parse_int(response.headers.get("Content-Length")),
            )
        finally:
            response.close()
        headers["X-Stream-Source"] = "remote"
        quality = describe_quality(url)
        if quality:
            headers["X-Stream-Quality"] = quality
        return StreamResult(200, headers, None, "remote")

    def _iter_remote(self, remote) -> Iterator[bytes]:
        try:
            for chunk in remote.iter_content(chunk_size=self.settings.chunk_size):
                if chunk:
                    yield chunk
        except requests.RequestException as exc:
            logger.warning("Upstream stream interrupted: %s", exc)
        finally:
            remote.close()

    def proxy_remote(
        self,
        url: str,
        range_header: Optional[str],
        *,
        head: bool = False,
        fallback_type: Optional[str] = None,
    ) -> StreamResult:
        """Relay an upstream stream, forwarding Range and rewriting response headers.

        ``fallback_type`` is used when the upstream does not name a media type.
        """
        url = self.ensure_remote_url(url)
        if head:
            return self._head_remote(url, fallback_type)

        started = time.monotonic()
        try:
            remote = self._http.get(
                url,
                headers=self._request_headers(range_header),
                stream=True,
                timeout=self._timeout,
            )
        except requests.RequestException as exc:
            logger.warning("Failed to reach upstream: %s", exc)
            raise UpstreamUnavailableError("Upstream is unreachable") from exc
        observe_upstream_latency(time.monotonic() - started)

        if remote.status_code not in (200, 206):
            logger.warning("Upstream stream returned %s", remote.status_code)
            remote.close()
            raise UpstreamStatusError(
                f"Upstream returned {remote.status_code}", upstream_status=remote.status_code
            )

        try:
            content_type = self._response_content_type(url, remote, fallback_type)
        except UpstreamStatusError:
            remote.close()
            raise

        content_range = remote.headers.get("Content-Range") if remote.status_code == 206 else None
        content_length = _parse_int(remote.headers.get("Content-Length"))
        if content_length is None:
            content_length = _length_from_content_range(content_range)
        headers = build_stream_headers(
            content_type,
            content_length=content_length,
            content_range=content_range,
        )
        headers["X-Stream-Source"] = "remote"
        quality = describe_quality(url)
        if quality:
            headers["X-Stream-Quality"] = quality

        body = ClosingIterator(self._iter_remote(remote), [remote.close])
        return StreamResult(remote.status_code, headers, body, "remote")

    def _stream_info_for(self, track_id: str) -> StreamInfo:
        if self.extractor is None:
            raise ExtractionError("No extraction provider configured")
        info = self.extractor.stream_info(track_id)
        if is_expired(info.url):
            # Cached URL outlived its expiry; extract once more
            self.extractor.invalidate(track_id)
            info = self.extractor.stream_info(track_id)
        return info

    def deliver_remote_track(self, track_id: str, range_header: Optional[str], *, head: bool = False) -> StreamResult:
        info = self._stream_info_for(track_id)
        try:
            return self.proxy_remote(info.url, range_header, head=head, fallback_type=info.content_type)
        except UpstreamStatusError as exc:
            if exc.upstream_status not in _STALE_URL_STATUSES or self.extractor is None:
                raise
            logger.info("Upstream rejected cached URL for %s (%s); re-extracting", track_id, exc.upstream_status)
            self.extractor.invalidate(track_id)
            info = self._stream_info_for(track_id)
            return self.proxy_remote(info.url, range_header, head=head, fallback_type=info.content_type)

    def head_metadata(self, locator: str) -> StreamResult:
        """Headers only for a local stream reference or an upstream URL; never carries a body."""
        if locator.startswith(LOCAL_STREAM_PREFIX):
            return self.deliver_local_reference(locator, None, head=True)
        return self.proxy_remote(locator, None, head=True)

    # ------------------------------------------------------------------
    # Composed play flow
    # ------------------------------------------------------------------
    def deliver_track(self, track_id: str, range_header: Optional[str], *, head: bool = False) -> StreamResult:
        """Resolve, then serve locally or fall back to the remote stream."""
        source = self.manager.resolve_playback_source(track_id)
        if source.is_local:
            try:
                result = self._serve_reference(source.locator, range_header, head)
                record_stream_response(result.source, result.status)
                return result
            except LocalSourceUnavailable as exc:
                logger.warning(
                    "Local copy of track %s could not be opened (%s); falling back to remote",
                    track_id,
                    exc.reason,
                )
                record_remote_fallback()
                if source.retrieval_id:
                    self.manager.mark_unavailable(source.retrieval_id, reason=exc.reason)

        result = self.deliver_remote_track(track_id, range_header, head=head)
        record_stream_response(result.source, result.status)
        return result


__all__ = ["StreamResult", "StreamDeliveryService"]
