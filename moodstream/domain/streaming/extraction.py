"""Extraction provider: turns a logical track id into a playable upstream URL."""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional

from moodstream.exceptions import ExtractionError
from moodstream.utils.cache import MISSING, TTLCache

from .sources import content_type_for_format, expires_at

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StreamInfo:
    url: str
    content_type: Optional[str] = None
    title: Optional[str] = None
    duration: Optional[float] = None
    extra: Dict[str, Any] = field(default_factory=dict, compare=False)


class ExtractionProvider:
    def stream_info(self, track_id: str) -> StreamInfo:  # pragma: no cover - interface
        raise NotImplementedError

    def invalidate(self, track_id: str) -> None:
        return None


def _pick_audio_format(formats: List[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    audio = [
        f for f in formats
        if f.get("url") and f.get("acodec") not in (None, "none") and f.get("vcodec") in ("none", None)
    ]
    if not audio:
        audio = [f for f in formats if f.get("url")]
    if not audio:
        return None
    audio.sort(key=lambda f: f.get("abr") or f.get("tbr") or 0, reverse=True)
    return audio[0]


class YtDlpExtractionProvider(ExtractionProvider):
    """Resolve stream URLs with yt-dlp, caching them until they expire."""

    def __init__(
        self,
        source_url_template: str,
        *,
        format_selector: str = "bestaudio/best",
        user_agent: Optional[str] = None,
        cache_ttl_seconds: float = 1800,
        cache_maxsize: int = 256,
    ) -> None:
        self.source_url_template = source_url_template
        self.format_selector = format_selector
        self.user_agent = user_agent
        self._cache = TTLCache(maxsize=cache_maxsize, ttl=cache_ttl_seconds)
        # track id -> [lock, holders and waiters]; entries go away with their last user
        self._locks: Dict[str, list] = {}
        self._locks_guard = threading.Lock()

    @contextmanager
    def _track_lock(self, track_id: str) -> Iterator[None]:
        with self._locks_guard:
            entry = self._locks.setdefault(track_id, [threading.Lock(), 0])
            entry[1] += 1
        try:
            with entry[0]:
                yield
        finally:
            with self._locks_guard:
                entry[1] -= 1
                if entry[1] == 0:
                    self._locks.pop(track_id, None)

    def _options(self) -> Dict[str, Any]:
        opts: Dict[str, Any] = {
            "format": self.format_selector,
            "quiet": True,
            "no_warnings": True,
            "noplaylist": True,
            "skip_download": True,
        }
        if self.user_agent:
            opts["http_headers"] = {"User-Agent": self.user_agent}
        return opts

    def stream_info(self, track_id: str) -> StreamInfo:
        cached = self._cache.get(track_id, MISSING)
        if cached is not MISSING:
            return cached

        # One extraction per track at a time; late arrivals reuse the result
        with self._track_lock(track_id):
            cached = self._cache.get(track_id, MISSING)
            if cached is not MISSING:
                return cached
            info = self._extract(track_id)
            try:
                expiry = expires_at(info.url)
            except ValueError:
                expiry = None
            # Drop cached URLs a minute before the upstream stops honouring them
            self._cache.set(track_id, info, expires_at=expiry - 60 if expiry else None)
            return info

    def _extract(self, track_id: str) -> StreamInfo:
        import yt_dlp

        source_url = self.source_url_template.format(track_id=track_id)
        try:
            with yt_dlp.YoutubeDL(self._options()) as ydl:
                info = ydl.extract_info(source_url, download=False)
        except Exception as exc:
            logger.error("yt-dlp extraction failed for %s: %s", track_id, exc)
            raise ExtractionError(f"Failed to extract stream for {track_id}") from exc

        if not info:
            raise ExtractionError(f"No stream information for {track_id}")

        stream_url = info.get("url")
        chosen: Dict[str, Any] = info
        if not stream_url:
            chosen = _pick_audio_format(info.get("formats") or []) or {}
            stream_url = chosen.get("url")
        if not stream_url:
            raise ExtractionError(f"No playable stream found for {track_id}")

        logger.debug(
            "Extracted stream for %s: %s @ %skbps",
            track_id,
            chosen.get("acodec"),
            chosen.get("abr"),
        )
        ext = chosen.get("audio_ext") or chosen.get("ext")
        return StreamInfo(
            url=stream_url,
            content_type=content_type_for_format(ext) if ext in ("mp3", "m4a", "webm") else None,
            title=info.get("title"),
            duration=info.get("duration"),
            extra={"abr": chosen.get("abr"), "acodec": chosen.get("acodec"), "format_id": chosen.get("format_id")},
        )

    def invalidate(self, track_id: str) -> None:
        self._cache.pop(track_id)


__all__ = ["StreamInfo", "ExtractionProvider", "YtDlpExtractionProvider"]
