#!/usr/bin/env python
"""
Types owned by the content index.

Inputs crossing the ingest boundary are pydantic models (validated once at
the edge); index entries are frozen dataclasses so every mutation produces a
new object and readers holding an older snapshot never observe a half-applied
change.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import quote

from pydantic import BaseModel, Field, field_validator

STATUS_COMPLETED = "completed"
RETRIEVAL_STATUSES = ("pending", "in_progress", STATUS_COMPLETED, "failed", "cancelled")

MEDIA_FORMATS = ("mp3", "mp4", "m4a", "webm")

LOCAL_STREAM_PREFIX = "/api/local-stream/"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_timestamp(value: Any) -> datetime:
    if isinstance(value, datetime):
        return ensure_utc(value)
    if isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        return ensure_utc(datetime.fromisoformat(text))
    raise TypeError(f"Unsupported timestamp value: {value!r}")


def normalize_mood_tags(value: Optional[object]) -> Tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        tokens = value.split(",")
    else:
        tokens = list(value)  # type: ignore[arg-type]
    tags: List[str] = []
    for token in tokens:
        tag = str(token).strip().lower()
        if tag and tag not in tags:
            tags.append(tag)
    return tuple(tags)


class RetrievalSnapshot(BaseModel):
    """Terminal record handed over by the retrieval subsystem."""

    retrieval_id: str = Field(min_length=1, max_length=64)
    track_id: str = Field(min_length=1, max_length=128)
    status: str
    file_path: Optional[str] = None
    file_size_bytes: Optional[int] = None
    media_format: str = "mp3"
    completed_at: Optional[datetime] = None
    source_url: Optional[str] = None

    @field_validator("status")
    @classmethod
    def _validate_status(cls, value: str) -> str:
        status = value.strip().lower()
        if status not in RETRIEVAL_STATUSES:
            raise ValueError(f"status must be one of {', '.join(RETRIEVAL_STATUSES)}")
        return status

    @field_validator("media_format")
    @classmethod
    def _validate_format(cls, value: str) -> str:
        fmt = value.strip().lower().lstrip(".")
        if fmt not in MEDIA_FORMATS:
            raise ValueError(f"media_format must be one of {', '.join(MEDIA_FORMATS)}")
        return fmt

    @field_validator("completed_at")
    @classmethod
    def _normalize_completed_at(cls, value: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(value) if value is not None else None

    @property
    def is_complete(self) -> bool:
        return (
            self.status == STATUS_COMPLETED
            and bool(self.file_path)
            and bool(self.file_size_bytes)
            and self.file_size_bytes > 0  # type: ignore[operator]
        )


class TrackMetadata(BaseModel):
    """Catalog metadata for the track a retrieval produced."""

    title: str = Field(min_length=1, max_length=255)
    artist: Optional[str] = None
    mood_tags: Tuple[str, ...] = ()

    @field_validator("mood_tags", mode="before")
    @classmethod
    def _normalize_moods(cls, value: Optional[object]) -> Tuple[str, ...]:
        return normalize_mood_tags(value)


class CleanupOptions(BaseModel):
    older_than_days: int = Field(default=30, ge=0)
    max_total_size_bytes: int = Field(default=1024 * 1024 * 1024, ge=0)
    keep_favorites: bool = True
    dry_run: bool = False


@dataclass(frozen=True)
class DownloadedTrack:
    track_id: str
    retrieval_id: str
    file_path: str
    file_size_bytes: int
    media_format: str
    retained_at: datetime
    title: str
    artist: Optional[str] = None
    mood_tags: Tuple[str, ...] = ()
    # Cache of a filesystem fact; authoritative only right after verification.
    is_available: bool = True

    @property
    def local_stream_reference(self) -> str:
        return f"{LOCAL_STREAM_PREFIX}{quote(self.retrieval_id, safe='')}"

    def to_dict(self) -> Dict[str, Any]:
        """Persistence representation, including the filesystem path."""
        data = asdict(self)
        data["retained_at"] = self.retained_at.isoformat()
        data["mood_tags"] = list(self.mood_tags)
        return data

    def to_public_dict(self) -> Dict[str, Any]:
        """API representation; the raw path never leaves the process."""
        data = self.to_dict()
        data.pop("file_path", None)
        data["local_stream_reference"] = self.local_stream_reference
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DownloadedTrack":
        if not isinstance(data, dict):
            raise TypeError("track entry must be an object")
        size = int(data["file_size_bytes"])
        if size < 0:
            raise ValueError("file_size_bytes must not be negative")
        media_format = str(data.get("media_format") or "mp3").lower()
        if media_format not in MEDIA_FORMATS:
            raise ValueError(f"unsupported media_format {media_format!r}")
        return cls(
            track_id=str(data["track_id"]),
            retrieval_id=str(data["retrieval_id"]),
            file_path=str(data["file_path"]),
            file_size_bytes=size,
            media_format=media_format,
            retained_at=parse_timestamp(data["retained_at"]),
            title=str(data.get("title") or data["track_id"]),
            artist=data.get("artist"),
            mood_tags=normalize_mood_tags(data.get("mood_tags")),
            is_available=bool(data.get("is_available", False)),
        )


@dataclass(frozen=True)
class PlaybackSource:
    kind: str  # 'local' | 'remote'
    locator: str
    format: str
    quality: Optional[str] = None
    retrieval_id: Optional[str] = field(default=None, compare=False)

    @property
    def is_local(self) -> bool:
        return self.kind == "local"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "locator": self.locator,
            "format": self.format,
            "quality": self.quality,
        }


@dataclass
class RemovalResult:
    retrieval_id: str
    removed: bool = False
    file_deleted: bool = False
    freed_bytes: int = 0
    title: Optional[str] = None
    error: Optional[str] = None

    def __bool__(self) -> bool:
        return self.removed

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class IntegrityReport:
    checked: int = 0
    valid: int = 0
    corrupt: int = 0
    missing: int = 0
    orphaned: int = 0
    issues: List[str] = field(default_factory=list)
    fixes: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.issues and not self.errors

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["is_valid"] = self.is_valid
        return data


@dataclass
class CleanupResult:
    dry_run: bool = False
    files_removed: int = 0
    bytes_freed: int = 0
    errors: List[str] = field(default_factory=list)
    removed_titles: List[str] = field(default_factory=list)
    removed_retrieval_ids: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


__all__ = [
    "STATUS_COMPLETED",
    "MEDIA_FORMATS",
    "LOCAL_STREAM_PREFIX",
    "RetrievalSnapshot",
    "TrackMetadata",
    "CleanupOptions",
    "DownloadedTrack",
    "PlaybackSource",
    "RemovalResult",
    "IntegrityReport",
    "CleanupResult",
    "utcnow",
    "ensure_utc",
    "parse_timestamp",
    "normalize_mood_tags",
]
