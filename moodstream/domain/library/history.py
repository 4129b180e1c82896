"""Retrieval history and favorites, the two collaborators the index consumes.

The manager only sees the small interfaces below; the SQL implementations
back them with the ``retrieval_records`` and ``favorite_tracks`` tables and
must be used inside a Flask application context.
"""

from __future__ import annotations

import logging
from typing import Iterable, List, Set, Tuple

from moodstream.database import db, FavoriteTrack, RetrievalRecord
from .models import RetrievalSnapshot, STATUS_COMPLETED, TrackMetadata, ensure_utc

logger = logging.getLogger(__name__)

HistoryEntry = Tuple[RetrievalSnapshot, TrackMetadata]


class RetrievalHistory:
    def completed_records(self) -> Iterable[HistoryEntry]:  # pragma: no cover - interface
        raise NotImplementedError

    def record(self, snapshot: RetrievalSnapshot, metadata: TrackMetadata) -> None:  # pragma: no cover - interface
        raise NotImplementedError


class FavoritesStore:
    def favorite_ids(self) -> Set[str]:  # pragma: no cover - interface
        raise NotImplementedError


def _snapshot_from_record(record: RetrievalRecord) -> HistoryEntry:
    snapshot = RetrievalSnapshot(
        retrieval_id=record.id,
        track_id=record.track_id,
        status=record.status,
        file_path=record.file_path,
        file_size_bytes=record.file_size_bytes,
        media_format=record.media_format or "mp3",
        completed_at=ensure_utc(record.completed_at) if record.completed_at else None,
        source_url=record.source_url,
    )
    metadata = TrackMetadata(
        title=record.title or record.track_id,
        artist=record.artist,
        mood_tags=record.mood_tags or (),
    )
    return snapshot, metadata


class SqlRetrievalHistory(RetrievalHistory):
    def completed_records(self) -> List[HistoryEntry]:
        records = (
            RetrievalRecord.query.filter_by(status=STATUS_COMPLETED)
            .order_by(RetrievalRecord.completed_at.asc(), RetrievalRecord.id.asc())
            .all()
        )
        entries: List[HistoryEntry] = []
        for record in records:
            try:
                entries.append(_snapshot_from_record(record))
            except ValueError as exc:
                logger.warning("Skipping invalid retrieval record %s: %s", record.id, exc)
        return entries

    def record(self, snapshot: RetrievalSnapshot, metadata: TrackMetadata) -> None:
        """Upsert a retrieval so a later rebuild can find it."""
        try:
            existing = db.session.get(RetrievalRecord, snapshot.retrieval_id)
            if existing is None:
                existing = RetrievalRecord(id=snapshot.retrieval_id)
                db.session.add(existing)
            existing.track_id = snapshot.track_id
            existing.status = snapshot.status
            existing.file_path = snapshot.file_path
            existing.file_size_bytes = snapshot.file_size_bytes
            existing.media_format = snapshot.media_format
            existing.completed_at = snapshot.completed_at
            existing.source_url = snapshot.source_url
            existing.title = metadata.title
            existing.artist = metadata.artist
            existing.mood_tags = list(metadata.mood_tags)
            db.session.commit()
            logger.info("Recorded retrieval %s (%s) in history", snapshot.retrieval_id, snapshot.status)
        except Exception:
            db.session.rollback()
            logger.error("Failed to record retrieval %s", snapshot.retrieval_id, exc_info=True)
            raise


class SqlFavoritesStore(FavoritesStore):
    def favorite_ids(self) -> Set[str]:
        return {row.track_id for row in FavoriteTrack.query.all()}

    def is_favorite(self, track_id: str) -> bool:
        return FavoriteTrack.query.filter_by(track_id=track_id).first() is not None

    def add(self, track_id: str) -> Tuple[FavoriteTrack, bool]:
        """Mark a track as favorite; returns the row and whether it was created."""
        existing = FavoriteTrack.query.filter_by(track_id=track_id).first()
        if existing:
            return existing, False
        favorite = FavoriteTrack(track_id=track_id)
        try:
            db.session.add(favorite)
            db.session.commit()
        except Exception:
            db.session.rollback()
            logger.error("Failed to add favorite %s", track_id, exc_info=True)
            raise
        return favorite, True

    def remove(self, track_id: str) -> bool:
        existing = FavoriteTrack.query.filter_by(track_id=track_id).first()
        if not existing:
            return False
        try:
            db.session.delete(existing)
            db.session.commit()
        except Exception:
            db.session.rollback()
            logger.error("Failed to remove favorite %s", track_id, exc_info=True)
            raise
        return True

    def list_favorites(self) -> List[FavoriteTrack]:
        return FavoriteTrack.query.order_by(FavoriteTrack.created_at.desc()).all()


__all__ = [
    "HistoryEntry",
    "RetrievalHistory",
    "FavoritesStore",
    "SqlRetrievalHistory",
    "SqlFavoritesStore",
]
