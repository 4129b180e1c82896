"""Versioned JSON blob persistence for the content index."""

from __future__ import annotations

import json
import logging
import os
import tempfile
from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Iterable, Optional

from moodstream.exceptions import IndexCorruptError
from .models import DownloadedTrack, parse_timestamp, utcnow

logger = logging.getLogger(__name__)

SCHEMA_VERSION = "1.0.0"


@dataclass
class IndexState:
    tracks: "OrderedDict[str, DownloadedTrack]"
    total_size_bytes: int
    last_updated: datetime
    schema_version: str = SCHEMA_VERSION


def serialize_index(tracks: Iterable[DownloadedTrack], total_size_bytes: int, last_updated: datetime) -> Dict[str, Any]:
    return {
        "schema_version": SCHEMA_VERSION,
        "last_updated": last_updated.isoformat(),
        "total_size_bytes": total_size_bytes,
        "tracks": [track.to_dict() for track in tracks],
    }


def deserialize_index(payload: Any, *, require_version: bool = True) -> IndexState:
    """Validate and convert a persisted/imported blob.

    Raises IndexCorruptError for any shape problem; nothing is partially
    applied because the caller only swaps state after this returns.
    """
    if not isinstance(payload, dict):
        raise IndexCorruptError("index payload must be a JSON object")
    tracks_raw = payload.get("tracks")
    if not isinstance(tracks_raw, list):
        raise IndexCorruptError("index payload is missing the 'tracks' collection")
    if "total_size_bytes" not in payload:
        raise IndexCorruptError("index payload is missing 'total_size_bytes'")
    declared_total = payload.get("total_size_bytes")
    if isinstance(declared_total, bool) or not isinstance(declared_total, int):
        raise IndexCorruptError("'total_size_bytes' must be an integer")

    version = payload.get("schema_version")
    if version is None and require_version:
        raise IndexCorruptError("index payload has no schema_version")
    if version is not None and version != SCHEMA_VERSION:
        raise IndexCorruptError(f"incompatible schema_version {version!r} (expected {SCHEMA_VERSION})")

    tracks: "OrderedDict[str, DownloadedTrack]" = OrderedDict()
    for position, raw in enumerate(tracks_raw):
        try:
            track = DownloadedTrack.from_dict(raw)
        except (KeyError, TypeError, ValueError) as exc:
            raise IndexCorruptError(f"invalid track entry at position {position}: {exc}") from exc
        # Last entry wins for a duplicated retrieval id, keeping the first position
        tracks[track.retrieval_id] = track

    try:
        last_updated = parse_timestamp(payload["last_updated"]) if payload.get("last_updated") else utcnow()
    except (TypeError, ValueError) as exc:
        raise IndexCorruptError(f"invalid last_updated: {exc}") from exc

    # The aggregate is a cache; always recomputed from the entries
    total = sum(track.file_size_bytes for track in tracks.values())
    if total != declared_total:
        logger.info("Recomputed index total size %s (declared %s)", total, declared_total)
    return IndexState(tracks=tracks, total_size_bytes=total, last_updated=last_updated)


class IndexStore:
    """Reads and atomically writes the index blob at a fixed path."""

    def __init__(self, path: str) -> None:
        self.path = os.path.abspath(path)

    def exists(self) -> bool:
        return os.path.isfile(self.path)

    def load(self) -> Optional[Dict[str, Any]]:
        """Return the raw payload, None when nothing was persisted yet."""
        if not self.exists():
            return None
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                return json.load(f)
        except (OSError, ValueError) as exc:
            raise IndexCorruptError(f"unreadable index at {self.path}: {exc}") from exc

    def save(self, payload: Dict[str, Any]) -> None:
        directory = os.path.dirname(self.path)
        os.makedirs(directory, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(prefix=".index-", suffix=".tmp", dir=directory)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(payload, f, ensure_ascii=False, indent=2)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, self.path)
        except BaseException:
            try:
                os.remove(tmp_path)
            except OSError:
                pass
            raise


__all__ = ["SCHEMA_VERSION", "IndexState", "IndexStore", "serialize_index", "deserialize_index"]
