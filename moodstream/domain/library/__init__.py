"""Content index: which tracks have a retained local copy and where it lives."""

from .history import FavoritesStore, RetrievalHistory, SqlFavoritesStore, SqlRetrievalHistory
from .maintenance import MaintenanceScheduler
from .manager import ContentIndexManager, LocalFile
from .models import (
    CleanupOptions,
    CleanupResult,
    DownloadedTrack,
    IntegrityReport,
    PlaybackSource,
    RemovalResult,
    RetrievalSnapshot,
    TrackMetadata,
)
from .persistence import SCHEMA_VERSION, IndexStore
from .storage import MediaStorage

__all__ = [
    "CleanupOptions",
    "CleanupResult",
    "ContentIndexManager",
    "DownloadedTrack",
    "FavoritesStore",
    "IndexStore",
    "IntegrityReport",
    "LocalFile",
    "MaintenanceScheduler",
    "MediaStorage",
    "PlaybackSource",
    "RemovalResult",
    "RetrievalHistory",
    "RetrievalSnapshot",
    "SCHEMA_VERSION",
    "SqlFavoritesStore",
    "SqlRetrievalHistory",
    "TrackMetadata",
]
