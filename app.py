import os
import logging
import threading
import time
from collections import defaultdict, deque
from datetime import datetime
from typing import Any, Dict, Optional
from uuid import uuid4

from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

from flask import Flask, request, jsonify, g
from flask_cors import CORS

from config import Config
from moodstream.core import EventBroker, BrokerPublisher
from moodstream.database import initialize_database
from moodstream.domain.library import (
    CleanupOptions,
    ContentIndexManager,
    IndexStore,
    MaintenanceScheduler,
    MediaStorage,
    SqlFavoritesStore,
    SqlRetrievalHistory,
)
from moodstream.domain.streaming import StreamDeliveryService, YtDlpExtractionProvider
from moodstream.interfaces.http import register_error_handlers
from moodstream.interfaces.http.routes import (
    stream_bp,
    library_bp,
    favorite_bp,
    events_bp,
    health_bp,
)
from moodstream.observability import configure_structured_logging, metrics_blueprint, init_tracing
from moodstream.settings import (
    load_storage_settings,
    load_streaming_settings,
    settings_overrides_from_app_config,
)


logger = logging.getLogger(__name__)


def configure_logging(log_dir: str) -> str:
    """
    Configure root logging with:
      - FileHandler (INFO+) to a new file per run: log-YYYY-MM-DD-HH-MM-SS
      - StreamHandler (WARNING+) to console when ENABLE_CONSOLE_LOGS is set
      - Werkzeug/Flask loggers routed to root (no extra console spam)

    Returns the path to the created log file.
    """
    os.makedirs(log_dir, exist_ok=True)

    timestamp = datetime.now().strftime("%Y-%m-%d-%H-%M-%S")
    log_path = os.path.join(log_dir, f"log-{timestamp}")

    root = logging.getLogger()
    root.setLevel(logging.INFO)

    # Preserve structured handlers; remove existing FileHandlers to avoid duplicates
    root.handlers = [h for h in root.handlers if not isinstance(h, logging.FileHandler)]

    formatter = logging.Formatter(
        fmt='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    file_handler = logging.FileHandler(log_path, encoding='utf-8')
    file_handler.setLevel(logging.INFO)
    file_handler.setFormatter(formatter)
    root.addHandler(file_handler)

    if Config.ENABLE_CONSOLE_LOGS:
        console_handler = logging.StreamHandler()
        console_handler.setLevel(logging.WARNING)
        console_handler.setFormatter(formatter)
        root.addHandler(console_handler)

    for name in ("werkzeug", "flask.app"):
        _l = logging.getLogger(name)
        _l.setLevel(logging.INFO)
        _l.handlers = []
        _l.propagate = True

    return log_path


def _install_rate_limiter(app: Flask) -> None:
    rate_limit_state = {
        'lock': threading.RLock(),
        'buckets': defaultdict(deque),
    }
    app.extensions['rate_limiter'] = rate_limit_state

    @app.before_request
    def _apply_rate_limit():
        # Skip rate limiting for CORS preflight
        if request.method == "OPTIONS":
            return None
        limit = app.config['RATE_LIMIT_REQUESTS']
        window = app.config['RATE_LIMIT_WINDOW_SECONDS']
        identifier = (
            request.headers.get('X-Forwarded-For', '')
            or request.remote_addr
            or 'unknown'
        ).split(',')[0].strip()
        now = time.time()
        with rate_limit_state['lock']:
            bucket = rate_limit_state['buckets'][identifier]
            threshold = now - window
            while bucket and bucket[0] <= threshold:
                bucket.popleft()
            if len(bucket) >= limit:
                app.logger.warning(
                    "Rate limit exceeded",
                    extra={"policy": "rate_limit", "ip": identifier, "path": request.path},
                )
                resp = jsonify(
                    {
                        "error": "rate_limited",
                        "policy": "rate_limit",
                        "message": "Too many requests. Please slow down.",
                    }
                )
                resp.status_code = 429
                resp.headers['Retry-After'] = str(int(max(1, bucket[0] + window - now)))
                return resp
            bucket.append(now)


def create_app(overrides: Optional[Dict[str, Any]] = None):
    app = Flask(__name__)
    app.config.from_object(Config)
    if overrides:
        app.config.update(overrides)

    configure_structured_logging(app)
    init_tracing(app)

    @app.before_request
    def _assign_request_id():
        g.request_id = request.headers.get('X-Request-ID') or uuid4().hex

    @app.after_request
    def _inject_request_id(response):
        if getattr(g, 'request_id', None):
            response.headers.setdefault('X-Request-ID', g.request_id)
        return response

    allowed_origins = sorted({
        origin.strip()
        for origin in app.config['CORS_ALLOWED_ORIGINS']
        if origin and origin.strip() and origin.strip() != "*"
    })
    CORS(
        app,
        resources={r"/api/*": {"origins": allowed_origins}},
        expose_headers=["Content-Length", "Content-Range", "Accept-Ranges", "X-Request-ID"],
    )

    if (
        app.config['ENABLE_RATE_LIMITING']
        and app.config['RATE_LIMIT_REQUESTS'] > 0
        and app.config['RATE_LIMIT_WINDOW_SECONDS'] > 0
    ):
        _install_rate_limiter(app)

    csp_policy = app.config.get('CONTENT_SECURITY_POLICY')
    if csp_policy:

        @app.after_request
        def _apply_csp(response):
            response.headers.setdefault('Content-Security-Policy', csp_policy)
            return response

    initialize_database(app)

    overrides_by_schema = settings_overrides_from_app_config(app.config)
    storage_settings = load_storage_settings(overrides_by_schema['storage'])
    streaming_settings = load_streaming_settings(overrides_by_schema['streaming'])

    # Index notifications fan out to SSE subscribers
    app.extensions['event_broker'] = EventBroker()
    publisher = BrokerPublisher(app.extensions['event_broker'])

    retrieval_history = SqlRetrievalHistory()
    favorites_store = SqlFavoritesStore()
    app.extensions['retrieval_history'] = retrieval_history
    app.extensions['favorites_store'] = favorites_store

    content_index = ContentIndexManager(
        MediaStorage(storage_settings.storage_root, storage_settings.allowed_extensions),
        IndexStore(storage_settings.index_path),
        history=retrieval_history,
        favorites=favorites_store,
        publisher=publisher,
    )
    with app.app_context():
        content_index.load()
    app.extensions['content_index'] = content_index

    extractor = YtDlpExtractionProvider(
        streaming_settings.source_url_template,
        format_selector=streaming_settings.extraction_format,
        user_agent=streaming_settings.user_agent,
        cache_ttl_seconds=streaming_settings.url_cache_ttl_seconds,
        cache_maxsize=streaming_settings.url_cache_maxsize,
    )
    app.extensions['stream_delivery'] = StreamDeliveryService(
        content_index,
        streaming_settings,
        extractor=extractor,
    )

    maintenance = MaintenanceScheduler(
        content_index,
        storage_settings.maintenance_interval_seconds,
        cleanup_options=CleanupOptions(
            older_than_days=storage_settings.cleanup_older_than_days,
            max_total_size_bytes=storage_settings.cleanup_max_total_size_bytes,
            keep_favorites=storage_settings.cleanup_keep_favorites,
        ),
        flask_app=app,
    )
    app.extensions['maintenance'] = maintenance
    if not app.config.get('TESTING'):
        maintenance.start()

    register_error_handlers(app)

    # --- Register Blueprints ---
    app.register_blueprint(stream_bp)
    app.register_blueprint(library_bp)
    app.register_blueprint(events_bp)
    app.register_blueprint(favorite_bp)
    app.register_blueprint(metrics_blueprint)
    app.register_blueprint(health_bp)

    return app


if __name__ == '__main__':
    # Configure logging:
    # - In debug with reloader: only in the child process to avoid duplicate files
    # - In non-debug: always configure here
    debug_mode = bool(Config.DEBUG)
    log_dir = os.path.join(os.path.dirname(os.path.abspath(__file__)), 'storage', 'log')
    if not debug_mode or os.environ.get('WERKZEUG_RUN_MAIN') == 'true':
        log_file_path = configure_logging(log_dir)
        logger.info("File logging initialized at %s", log_file_path)

    app = create_app()
    # Route app.logger through root handlers, keep levels consistent
    app.logger.handlers = []
    app.logger.setLevel(logging.INFO)
    app.logger.propagate = True
    logger.info("Starting Flask application...")
    # Threaded so long-lived streams and SSE do not block other requests
    app.run(debug=Config.DEBUG, host='0.0.0.0', port=5000, threaded=True)
