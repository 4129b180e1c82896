# database/db_manager.py
from flask_sqlalchemy import SQLAlchemy
import os
import logging
from datetime import datetime, timezone
from sqlalchemy.engine import make_url

# Initialize the SQLAlchemy object
db = SQLAlchemy()
logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RetrievalRecord(db.Model):
    """Terminal and in-flight retrievals reported by the download subsystem.

    This is the upstream history the content index is rebuilt from when the
    persisted index blob is unusable.
    """

    __tablename__ = 'retrieval_records'

    id = db.Column(db.String(64), primary_key=True)
    track_id = db.Column(db.String(128), nullable=False, index=True)
    status = db.Column(db.String(32), nullable=False, default='pending', index=True)
    file_path = db.Column(db.String(1024), nullable=True)
    file_size_bytes = db.Column(db.BigInteger, nullable=True)
    media_format = db.Column(db.String(16), nullable=False, default='mp3')
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    # Catalog metadata captured at retrieval time
    title = db.Column(db.String(255), nullable=False)
    artist = db.Column(db.String(255), nullable=True)
    mood_tags = db.Column(db.JSON, nullable=True)  # list[str]
    source_url = db.Column(db.String(1024), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow, nullable=False)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False)

    def __repr__(self):
        return f'<RetrievalRecord {self.id} track={self.track_id} status={self.status}>'

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'track_id': self.track_id,
            'status': self.status,
            'file_path': self.file_path,
            'file_size_bytes': self.file_size_bytes,
            'media_format': self.media_format,
            'completed_at': self.completed_at.isoformat() if self.completed_at else None,
            'title': self.title,
            'artist': self.artist,
            'mood_tags': list(self.mood_tags or []),
            'source_url': self.source_url,
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'updated_at': self.updated_at.isoformat() if self.updated_at else None,
        }


class FavoriteTrack(db.Model):
    __tablename__ = 'favorite_tracks'

    id = db.Column(db.Integer, primary_key=True)
    track_id = db.Column(db.String(128), unique=True, nullable=False, index=True)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow, nullable=False)

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'track_id': self.track_id,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }


def initialize_database(app):
    """
    Initializes the SQLAlchemy extension with the Flask app instance
    and creates all database tables if they don't already exist.
    """
    db.init_app(app)

    # Ensure the directory for the configured SQLite file exists
    try:
        uri = app.config.get('SQLALCHEMY_DATABASE_URI')
        if uri:
            url = make_url(uri)
            # Only handle file-based SQLite (not :memory:)
            if url.get_backend_name() == 'sqlite' and url.database and url.database != ':memory:':
                db_dir = os.path.dirname(url.database)
                if db_dir and not os.path.exists(db_dir):
                    os.makedirs(db_dir, exist_ok=True)
                    logger.info("Created SQLite DB directory: %s", db_dir)
    except Exception as e:
        # Don't block app startup on path parsing issues; log and continue
        logger.warning("Could not ensure SQLite directory exists: %s", e)

    # Create database tables within the application context
    with app.app_context():
        db.create_all()
        logger.info("Database tables created or already exist.")
