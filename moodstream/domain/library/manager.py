#!/usr/bin/env python
"""
Content index manager.

Owns the durable record of which tracks have a retained local copy and
answers "where do the bytes for track X come from". All mutations serialize
on one re-entrant writer lock and swap in a freshly built mapping, so readers
take no lock and always see a complete snapshot. Notifications are published
only after the writer lock has been released.
"""

from __future__ import annotations

import json
import logging
import threading
from collections import Counter
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Iterable, List, NamedTuple, Optional, Set, Tuple, Union
from urllib.parse import unquote

from moodstream.core import EventPublisher, NullPublisher
from moodstream.exceptions import IndexCorruptError, LocalSourceUnavailable
from moodstream.observability.metrics import record_cleanup, record_integrity_issues, update_index_gauges

from .history import FavoritesStore, RetrievalHistory
from .models import (
    LOCAL_STREAM_PREFIX,
    CleanupOptions,
    CleanupResult,
    DownloadedTrack,
    IntegrityReport,
    PlaybackSource,
    RemovalResult,
    RetrievalSnapshot,
    TrackMetadata,
    normalize_mood_tags,
    utcnow,
)
from .persistence import SCHEMA_VERSION, IndexStore, deserialize_index, serialize_index
from .storage import MediaStorage

logger = logging.getLogger(__name__)

REMOTE_STREAM_PREFIX = "/api/stream/"
# Format served in preference when a track has several retained copies
PREFERRED_FORMAT = "mp3"


class _IndexSnapshot(NamedTuple):
    tracks: Dict[str, DownloadedTrack]
    total_size_bytes: int
    last_updated: datetime


class LocalFile(NamedTuple):
    track: DownloadedTrack
    path: str


class ContentIndexManager:
    def __init__(
        self,
        storage: MediaStorage,
        store: IndexStore,
        *,
        history: Optional[RetrievalHistory] = None,
        favorites: Optional[FavoritesStore] = None,
        publisher: Optional[EventPublisher] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.storage = storage
        self.store = store
        self._history = history
        self._favorites = favorites
        self._publisher = publisher or NullPublisher()
        self._clock = clock or utcnow
        self._write_lock = threading.RLock()
        self._rebuild_guard = threading.Lock()
        self._snapshot = _IndexSnapshot({}, 0, self._clock())

    # ------------------------------------------------------------------
    # Loading and persistence
    # ------------------------------------------------------------------
    def load(self) -> None:
        """Load the persisted index; an unusable blob triggers a rebuild."""
        try:
            payload = self.store.load()
            if payload is None:
                logger.info("No persisted content index at %s; starting empty", self.store.path)
                return
            state = deserialize_index(payload)
        except IndexCorruptError as exc:
            logger.warning("Persisted content index is unusable (%s); rebuilding from retrieval history", exc)
            self.rebuild_index()
            return

        with self._write_lock:
            self._snapshot = _IndexSnapshot(dict(state.tracks), state.total_size_bytes, state.last_updated)
            update_index_gauges(state.total_size_bytes, len(state.tracks))
        logger.info(
            "Loaded content index: %s tracks, %s bytes", len(state.tracks), state.total_size_bytes
        )

    def _commit(self, tracks: Dict[str, DownloadedTrack], total_size_bytes: int) -> None:
        # Caller holds the writer lock
        self._snapshot = _IndexSnapshot(tracks, total_size_bytes, self._clock())
        update_index_gauges(total_size_bytes, len(tracks))
        try:
            self.store.save(serialize_index(tracks.values(), total_size_bytes, self._snapshot.last_updated))
        except OSError:
            logger.error("Failed to persist content index to %s", self.store.path, exc_info=True)

    def _publish(self, event: str, **data: Any) -> None:
        payload = {"event": event, "timestamp": self._clock().isoformat()}
        payload.update(data)
        try:
            self._publisher.publish(payload)
        except Exception:
            logger.warning("Failed to publish index event %s", event, exc_info=True)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------
    def _build_track(self, snapshot: RetrievalSnapshot, metadata: TrackMetadata) -> Optional[DownloadedTrack]:
        if not snapshot.is_complete:
            logger.warning(
                "Ignoring retrieval %s for track %s: status=%s file_path=%r size=%r",
                snapshot.retrieval_id,
                snapshot.track_id,
                snapshot.status,
                snapshot.file_path,
                snapshot.file_size_bytes,
            )
            return None
        reason = self.storage.validate_path(snapshot.file_path)
        if reason:
            logger.warning("Retrieval %s stored outside the storage policy: %s", snapshot.retrieval_id, reason)
        available = reason is None and self.storage.exists(snapshot.file_path)  # type: ignore[arg-type]
        return DownloadedTrack(
            track_id=snapshot.track_id,
            retrieval_id=snapshot.retrieval_id,
            file_path=snapshot.file_path,  # type: ignore[arg-type]
            file_size_bytes=int(snapshot.file_size_bytes),  # type: ignore[arg-type]
            media_format=snapshot.media_format,
            retained_at=snapshot.completed_at or self._clock(),
            title=metadata.title,
            artist=metadata.artist,
            mood_tags=metadata.mood_tags,
            is_available=available,
        )

    def ingest(
        self,
        snapshot: Union[RetrievalSnapshot, Dict[str, Any]],
        metadata: Union[TrackMetadata, Dict[str, Any]],
    ) -> Optional[DownloadedTrack]:
        """Record the retained copy produced by a completed retrieval.

        Re-ingesting a retrieval id replaces the entry in place. Returns the
        stored track, or None when the retrieval is not complete.
        """
        if isinstance(snapshot, dict):
            snapshot = RetrievalSnapshot.model_validate(snapshot)
        if isinstance(metadata, dict):
            metadata = TrackMetadata.model_validate(metadata)

        track = self._build_track(snapshot, metadata)
        if track is None:
            return None

        with self._write_lock:
            current = self._snapshot
            previous = current.tracks.get(track.retrieval_id)
            tracks = dict(current.tracks)
            tracks[track.retrieval_id] = track
            delta = track.file_size_bytes - (previous.file_size_bytes if previous else 0)
            self._commit(tracks, current.total_size_bytes + delta)

        logger.info(
            "%s retrieval %s (track %s, %s bytes)",
            "Updated" if previous else "Indexed",
            track.retrieval_id,
            track.track_id,
            track.file_size_bytes,
        )
        self._publish("track_updated" if previous else "track_added", track=track.to_public_dict())
        return track

    def _remove_entry(self, retrieval_id: str, expected: Optional[DownloadedTrack] = None) -> RemovalResult:
        result = RemovalResult(retrieval_id=retrieval_id)
        with self._write_lock:
            current = self._snapshot
            track = current.tracks.get(retrieval_id)
            if track is None or (expected is not None and track is not expected):
                return result
            try:
                result.file_deleted = self.storage.delete(track.file_path)
            except ValueError as exc:
                result.error = f"refused to delete {retrieval_id}: {exc}"
                logger.warning("Refused to delete file for %s: %s", retrieval_id, exc)
            except OSError as exc:
                result.error = f"failed to delete {retrieval_id}: {exc}"
                logger.warning("Failed to delete file for %s", retrieval_id, exc_info=True)

            tracks = dict(current.tracks)
            del tracks[retrieval_id]
            self._commit(tracks, current.total_size_bytes - track.file_size_bytes)
            result.removed = True
            result.freed_bytes = track.file_size_bytes
            result.title = track.title
        return result

    def remove(self, retrieval_id: str) -> RemovalResult:
        """Delete the retained copy and its entry; file failures never block removal."""
        result = self._remove_entry(retrieval_id)
        if not result:
            logger.info("Remove requested for unknown retrieval %s", retrieval_id)
            return result
        logger.info("Removed retrieval %s (%s bytes)", retrieval_id, result.freed_bytes)
        self._publish("track_removed", **result.to_dict())
        return result

    def _set_availability(self, retrieval_id: str, available: bool) -> bool:
        with self._write_lock:
            current = self._snapshot
            track = current.tracks.get(retrieval_id)
            if track is None or track.is_available == available:
                return False
            tracks = dict(current.tracks)
            tracks[retrieval_id] = replace(track, is_available=available)
            self._commit(tracks, current.total_size_bytes)
        self._publish("track_updated", track=tracks[retrieval_id].to_public_dict())
        return True

    def mark_unavailable(self, retrieval_id: str, reason: str = "file missing") -> bool:
        changed = self._set_availability(retrieval_id, False)
        if changed:
            logger.warning("Retained copy for %s marked unavailable: %s", retrieval_id, reason)
        return changed

    # ------------------------------------------------------------------
    # Playback resolution
    # ------------------------------------------------------------------
    def resolve_playback_source(self, track_id: str) -> PlaybackSource:
        """Local source when a retained copy is present, otherwise the remote stream.

        The newest present mp3 copy wins; other formats are used only when no
        mp3 copy is present.
        """
        candidates = sorted(
            (t for t in self._snapshot.tracks.values() if t.track_id == track_id),
            key=lambda t: (t.media_format == PREFERRED_FORMAT, t.retained_at, t.retrieval_id),
            reverse=True,
        )
        for track in candidates:
            if self.storage.is_safe(track.file_path) and self.storage.exists(track.file_path):
                return PlaybackSource(
                    kind="local",
                    locator=track.local_stream_reference,
                    format=track.media_format,
                    quality="original",
                    retrieval_id=track.retrieval_id,
                )
            self.mark_unavailable(track.retrieval_id, reason=f"file missing at {track.file_path}")
        if candidates:
            logger.warning("No retained copy of track %s is present; falling back to remote", track_id)
        return self.remote_source(track_id)

    @staticmethod
    def remote_source(track_id: str) -> PlaybackSource:
        return PlaybackSource(
            kind="remote",
            locator=f"{REMOTE_STREAM_PREFIX}{track_id}",
            format="stream",
            quality="best",
        )

    def open_local(self, reference: str) -> LocalFile:
        """Map a local stream reference to a verified, path-safe file."""
        retrieval_id = reference
        if reference.startswith(LOCAL_STREAM_PREFIX):
            retrieval_id = unquote(reference[len(LOCAL_STREAM_PREFIX):])
        track = self._snapshot.tracks.get(retrieval_id)
        if track is None:
            raise LocalSourceUnavailable(reference, "unknown local stream reference")
        reason = self.storage.validate_path(track.file_path)
        if reason:
            raise LocalSourceUnavailable(reference, reason)
        if not self.storage.exists(track.file_path):
            self.mark_unavailable(retrieval_id, reason=f"file missing at {track.file_path}")
            raise LocalSourceUnavailable(reference, "retained copy is missing")
        return LocalFile(track, self.storage.resolve(track.file_path))

    # ------------------------------------------------------------------
    # Sweeps
    # ------------------------------------------------------------------
    def _reconcile(self, track: DownloadedTrack, available: bool, size: Optional[int]) -> List[str]:
        fixes: List[str] = []
        with self._write_lock:
            current = self._snapshot
            # Entry changed or vanished since it was checked: leave it for the next sweep
            if current.tracks.get(track.retrieval_id) is not track:
                return fixes
            changes: Dict[str, Any] = {}
            if track.is_available != available:
                changes["is_available"] = available
                fixes.append(
                    f"{track.retrieval_id}: marked {'available' if available else 'unavailable'}"
                )
            if size is not None and size != track.file_size_bytes:
                changes["file_size_bytes"] = size
                fixes.append(f"{track.retrieval_id}: size corrected from {track.file_size_bytes} to {size}")
            if not changes:
                return fixes
            updated = replace(track, **changes)
            tracks = dict(current.tracks)
            tracks[track.retrieval_id] = updated
            self._commit(tracks, current.total_size_bytes - track.file_size_bytes + updated.file_size_bytes)
        return fixes

    def verify_integrity(self) -> IntegrityReport:
        """Check every entry against the filesystem and reconcile the index."""
        report = IntegrityReport()
        snapshot = self._snapshot
        for retrieval_id, track in list(snapshot.tracks.items()):
            report.checked += 1
            size: Optional[int] = None
            try:
                reason = self.storage.validate_path(track.file_path)
                if reason:
                    report.corrupt += 1
                    report.issues.append(f"{retrieval_id}: {reason}")
                    available = False
                elif not self.storage.exists(track.file_path):
                    report.missing += 1
                    report.issues.append(f"{retrieval_id}: file missing: {track.file_path}")
                    available = False
                else:
                    measured = self.storage.size_of(track.file_path)
                    if measured <= 0:
                        report.corrupt += 1
                        report.issues.append(f"{retrieval_id}: empty file: {track.file_path}")
                        available = False
                    else:
                        report.valid += 1
                        available = True
                        size = measured
            except OSError as exc:
                report.errors.append(f"{retrieval_id}: {exc}")
                logger.warning("Integrity check failed for %s", retrieval_id, exc_info=True)
                continue
            report.fixes.extend(self._reconcile(track, available, size))

        with self._write_lock:
            current = self._snapshot
            actual_total = sum(t.file_size_bytes for t in current.tracks.values())
            if actual_total != current.total_size_bytes:
                report.fixes.append(
                    f"total_size_bytes corrected from {current.total_size_bytes} to {actual_total}"
                )
                self._commit(dict(current.tracks), actual_total)

        referenced = {self.storage.resolve(t.file_path) for t in self._snapshot.tracks.values()}
        try:
            for path in self.storage.iter_media_files():
                if path not in referenced:
                    report.orphaned += 1
                    report.issues.append(f"orphaned file: {path}")
        except OSError as exc:
            report.errors.append(f"orphan scan failed: {exc}")
            logger.warning("Orphan scan of %s failed", self.storage.root, exc_info=True)

        record_integrity_issues(report.missing, report.corrupt, report.orphaned)
        logger.info(
            "Integrity sweep: %s checked, %s valid, %s missing, %s corrupt, %s orphaned, %s fixes",
            report.checked,
            report.valid,
            report.missing,
            report.corrupt,
            report.orphaned,
            len(report.fixes),
        )
        self._publish("integrity_verified", **report.to_dict())
        return report

    def _favorite_ids(self) -> Set[str]:
        if self._favorites is None:
            return set()
        return set(self._favorites.favorite_ids())

    def plan_cleanup(self, options: CleanupOptions) -> List[DownloadedTrack]:
        """Entries the retention policy would evict, in eviction order."""
        snapshot = self._snapshot
        cutoff = self._clock() - timedelta(days=options.older_than_days)
        protected = self._favorite_ids() if options.keep_favorites else set()
        eligible = sorted(
            (
                t
                for t in snapshot.tracks.values()
                if t.retained_at < cutoff and t.track_id not in protected
            ),
            key=lambda t: (t.retained_at, t.retrieval_id),
        )
        remaining = snapshot.total_size_bytes
        selected: List[DownloadedTrack] = []
        for track in eligible:
            if remaining <= options.max_total_size_bytes:
                break
            selected.append(track)
            remaining -= track.file_size_bytes
        return selected

    def cleanup(self, options: Union[CleanupOptions, Dict[str, Any], None] = None) -> CleanupResult:
        if options is None:
            options = CleanupOptions()
        elif isinstance(options, dict):
            options = CleanupOptions.model_validate(options)

        result = CleanupResult(dry_run=options.dry_run)
        candidates = self.plan_cleanup(options)
        for track in candidates:
            if options.dry_run:
                freed = track.file_size_bytes
            else:
                removal = self._remove_entry(track.retrieval_id, expected=track)
                if not removal:
                    logger.info("Cleanup skipped %s: entry changed during the sweep", track.retrieval_id)
                    continue
                if removal.error:
                    result.errors.append(removal.error)
                freed = removal.freed_bytes
            result.files_removed += 1
            result.bytes_freed += freed
            result.removed_titles.append(track.title)
            result.removed_retrieval_ids.append(track.retrieval_id)

        logger.info(
            "Cleanup %s: %s files, %s bytes freed",
            "simulation" if options.dry_run else "complete",
            result.files_removed,
            result.bytes_freed,
        )
        if not options.dry_run:
            record_cleanup(result.files_removed, result.bytes_freed)
            self._publish("cleanup_completed", **result.to_dict())
        return result

    # ------------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------------
    def tracks(self) -> List[DownloadedTrack]:
        return list(self._snapshot.tracks.values())

    def get(self, retrieval_id: str) -> Optional[DownloadedTrack]:
        return self._snapshot.tracks.get(retrieval_id)

    @property
    def total_size_bytes(self) -> int:
        return self._snapshot.total_size_bytes

    def search(self, query: Optional[str]) -> List[DownloadedTrack]:
        needle = (query or "").strip().lower()
        if not needle:
            return self.tracks()
        matches = []
        for track in self._snapshot.tracks.values():
            haystack = [track.title, track.artist or ""]
            haystack.extend(track.mood_tags)
            if any(needle in value.lower() for value in haystack):
                matches.append(track)
        return matches

    def filter_by_mood(self, mood: str) -> List[DownloadedTrack]:
        wanted = normalize_mood_tags([mood])
        if not wanted:
            return []
        return [t for t in self._snapshot.tracks.values() if wanted[0] in t.mood_tags]

    def filter_by_format(self, media_format: str) -> List[DownloadedTrack]:
        wanted = (media_format or "").strip().lower().lstrip(".")
        return [t for t in self._snapshot.tracks.values() if t.media_format == wanted]

    def stats(self) -> Dict[str, Any]:
        snapshot = self._snapshot
        tracks = list(snapshot.tracks.values())
        available = sum(1 for t in tracks if t.is_available)
        retained = [t.retained_at for t in tracks]
        return {
            "total_tracks": len(tracks),
            "total_size_bytes": snapshot.total_size_bytes,
            "available": available,
            "unavailable": len(tracks) - available,
            "by_format": dict(Counter(t.media_format for t in tracks)),
            "by_mood": dict(Counter(tag for t in tracks for tag in t.mood_tags)),
            "oldest_retained_at": min(retained).isoformat() if retained else None,
            "newest_retained_at": max(retained).isoformat() if retained else None,
        }

    def index_info(self) -> Dict[str, Any]:
        snapshot = self._snapshot
        return {
            "schema_version": SCHEMA_VERSION,
            "last_updated": snapshot.last_updated.isoformat(),
            "total_size_bytes": snapshot.total_size_bytes,
            "track_count": len(snapshot.tracks),
            "index_path": self.store.path,
            "rebuilding": self._rebuild_guard.locked(),
        }

    # ------------------------------------------------------------------
    # Export / import / rebuild
    # ------------------------------------------------------------------
    def export_index(self) -> Dict[str, Any]:
        snapshot = self._snapshot
        return serialize_index(snapshot.tracks.values(), snapshot.total_size_bytes, snapshot.last_updated)

    def _refresh_availability(self, tracks: Iterable[DownloadedTrack]) -> Dict[str, DownloadedTrack]:
        refreshed: Dict[str, DownloadedTrack] = {}
        for track in tracks:
            available = self.storage.is_safe(track.file_path) and self.storage.exists(track.file_path)
            refreshed[track.retrieval_id] = (
                track if track.is_available == available else replace(track, is_available=available)
            )
        return refreshed

    def import_index(self, blob: Union[str, bytes, Dict[str, Any]]) -> bool:
        """Replace the index with an exported blob; malformed input leaves state untouched."""
        try:
            payload = json.loads(blob) if isinstance(blob, (str, bytes)) else blob
            state = deserialize_index(payload, require_version=False)
        except (ValueError, IndexCorruptError) as exc:
            logger.warning("Rejected index import: %s", exc)
            return False

        tracks = self._refresh_availability(state.tracks.values())
        with self._write_lock:
            self._commit(tracks, state.total_size_bytes)
        logger.info("Imported content index with %s tracks", len(tracks))
        self._publish("index_imported", track_count=len(tracks), total_size_bytes=state.total_size_bytes)
        return True

    def rebuild_index(self) -> bool:
        """Re-derive the index from the retrieval history.

        Returns False without doing anything when another rebuild is already
        running.
        """
        if not self._rebuild_guard.acquire(blocking=False):
            logger.info("Index rebuild already in progress; skipping")
            return False
        try:
            entries: List[Tuple[RetrievalSnapshot, TrackMetadata]] = (
                list(self._history.completed_records()) if self._history is not None else []
            )
            tracks: Dict[str, DownloadedTrack] = {}
            for snapshot, metadata in entries:
                track = self._build_track(snapshot, metadata)
                if track is not None:
                    tracks[track.retrieval_id] = track
            total = sum(t.file_size_bytes for t in tracks.values())
            with self._write_lock:
                self._commit(tracks, total)
        finally:
            self._rebuild_guard.release()

        logger.info("Rebuilt content index from history: %s tracks, %s bytes", len(tracks), total)
        self._publish("index_rebuilt", track_count=len(tracks), total_size_bytes=total)
        return True


__all__ = ["ContentIndexManager", "LocalFile", "REMOTE_STREAM_PREFIX"]
