"""Route blueprints exposed via Flask."""

from .stream import stream_bp
from .library import library_bp
from .favorites import favorite_bp
from .events import events_bp
from .health import health_bp

__all__ = [
    "stream_bp",
    "library_bp",
    "favorite_bp",
    "events_bp",
    "health_bp",
]
