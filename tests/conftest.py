import os
import sys
from pathlib import Path

import pytest

# Ensure project root is on sys.path so 'app', 'config', and 'moodstream' import correctly
_TESTS_DIR = os.path.dirname(__file__)
_ROOT_DIR = os.path.abspath(os.path.join(_TESTS_DIR, os.pardir))
if _ROOT_DIR not in sys.path:
    sys.path.insert(0, _ROOT_DIR)

from tests.support import factories as test_factories
from tests.support import stubs as test_stubs


@pytest.fixture
def storage_root(tmp_path) -> Path:
    root = tmp_path / "media"
    root.mkdir()
    return root


@pytest.fixture
def clock():
    return test_stubs.FrozenClock()


@pytest.fixture
def publisher():
    return test_stubs.RecordingPublisher()


@pytest.fixture
def favorites():
    return test_stubs.InMemoryFavorites()


@pytest.fixture
def history():
    return test_stubs.InMemoryHistory()


@pytest.fixture
def make_manager(tmp_path, storage_root, clock, publisher, favorites, history):
    """Build a ContentIndexManager over a temp storage root and index file."""
    from moodstream.domain.library import ContentIndexManager, IndexStore, MediaStorage

    def _make(index_name: str = "index.json", **kwargs):
        kwargs.setdefault("history", history)
        kwargs.setdefault("favorites", favorites)
        kwargs.setdefault("publisher", publisher)
        kwargs.setdefault("clock", clock)
        return ContentIndexManager(
            MediaStorage(str(storage_root)),
            IndexStore(str(tmp_path / index_name)),
            **kwargs,
        )

    return _make


@pytest.fixture
def manager(make_manager):
    return make_manager()


@pytest.fixture
def app(tmp_path):
    import app as app_module

    db_path = tmp_path / "test.sqlite"
    application = app_module.create_app(
        {
            "TESTING": True,
            "SQLALCHEMY_DATABASE_URI": f"sqlite:///{db_path.as_posix()}",
            "STORAGE_ROOT": str(tmp_path / "media"),
            "INDEX_PATH": str(tmp_path / "content_index.json"),
            "MAINTENANCE_INTERVAL_SECONDS": 0,
            "ENABLE_RATE_LIMITING": False,
            "OTEL_EXPORTER_OTLP_ENDPOINT": None,
        }
    )
    yield application


@pytest.fixture
def app_context(app):
    with app.app_context():
        yield app


@pytest.fixture
def db_session(app_context):
    from moodstream.database import db

    test_factories.set_session(db.session)
    try:
        yield db.session
    finally:
        db.session.rollback()
        db.session.remove()
        test_factories.reset_session()


@pytest.fixture
def factories(db_session):
    yield test_factories


@pytest.fixture
def client(app):
    return app.test_client()
