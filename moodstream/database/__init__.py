"""SQL persistence for retrieval history and favorites."""

from .db_manager import db, RetrievalRecord, FavoriteTrack, initialize_database

__all__ = ["db", "RetrievalRecord", "FavoriteTrack", "initialize_database"]
