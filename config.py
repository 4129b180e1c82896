#!/usr/bin/env python
# config.py
import os
from typing import List

# This assumes config.py is at the root of your project
basedir = os.path.abspath(os.path.dirname(__file__))


def _get_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _get_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        return default


def _get_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "t", "yes", "y", "on"}


def _get_csv_list(name: str, default: str) -> List[str]:
    raw = os.getenv(name)
    source = raw if raw is not None else default
    return [token.strip() for token in source.split(",") if token and token.strip()]


class Config:
    SECRET_KEY = os.environ.get('SECRET_KEY') or 'moodstream-dev-secret'

    # Retrieval history + favorites live in SQL; the content index is a JSON blob
    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL') or \
        'sqlite:///' + os.path.join(basedir, 'storage', 'moodstream.db')
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Managed storage
    STORAGE_ROOT = os.getenv('STORAGE_ROOT', os.path.join(basedir, 'storage', 'media'))
    INDEX_PATH = os.getenv('INDEX_PATH', os.path.join(basedir, 'storage', 'content_index.json'))
    ALLOWED_MEDIA_EXTENSIONS = _get_csv_list('ALLOWED_MEDIA_EXTENSIONS', '.mp3,.mp4,.m4a,.webm')

    # Retention sweep defaults
    CLEANUP_OLDER_THAN_DAYS = _get_int('CLEANUP_OLDER_THAN_DAYS', 30)
    CLEANUP_MAX_TOTAL_SIZE_BYTES = _get_int('CLEANUP_MAX_TOTAL_SIZE_BYTES', 1024 * 1024 * 1024)
    CLEANUP_KEEP_FAVORITES = _get_bool('CLEANUP_KEEP_FAVORITES', True)
    # Background integrity + cleanup sweep; 0 disables the scheduler
    MAINTENANCE_INTERVAL_SECONDS = _get_int('MAINTENANCE_INTERVAL_SECONDS', 3600)

    # Upstream proxying
    STREAM_ALLOWED_HOSTS = _get_csv_list(
        'STREAM_ALLOWED_HOSTS', 'googlevideo.com,youtube.com,youtu.be,ytimg.com'
    )
    STREAM_USER_AGENT = os.getenv(
        'STREAM_USER_AGENT',
        'Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 '
        '(KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36',
    )
    UPSTREAM_CONNECT_TIMEOUT_SECONDS = _get_float('UPSTREAM_CONNECT_TIMEOUT_SECONDS', 3.05)
    UPSTREAM_READ_TIMEOUT_SECONDS = _get_float('UPSTREAM_READ_TIMEOUT_SECONDS', 10.0)
    STREAM_CHUNK_SIZE = _get_int('STREAM_CHUNK_SIZE', 64 * 1024)

    # Extraction provider (yt-dlp)
    EXTRACTION_SOURCE_URL_TEMPLATE = os.getenv(
        'EXTRACTION_SOURCE_URL_TEMPLATE', 'https://www.youtube.com/watch?v={track_id}'
    )
    EXTRACTION_FORMAT = os.getenv('EXTRACTION_FORMAT', 'bestaudio/best')
    STREAM_URL_CACHE_TTL_SECONDS = _get_int('STREAM_URL_CACHE_TTL_SECONDS', 1800)
    STREAM_URL_CACHE_MAXSIZE = max(1, _get_int('STREAM_URL_CACHE_MAXSIZE', 256))

    # HTTP surface
    CORS_ALLOWED_ORIGINS = _get_csv_list('CORS_ALLOWED_ORIGINS', 'http://localhost:3000')
    ENABLE_RATE_LIMITING = _get_bool('ENABLE_RATE_LIMITING', False)
    RATE_LIMIT_REQUESTS = _get_int('RATE_LIMIT_REQUESTS', 600)
    RATE_LIMIT_WINDOW_SECONDS = _get_int('RATE_LIMIT_WINDOW_SECONDS', 60)
    CONTENT_SECURITY_POLICY = os.getenv('CONTENT_SECURITY_POLICY')

    # Runtime behavior
    DEBUG = _get_bool('DEBUG', False)
    # Control console logging; when disabled, logs go only to file
    ENABLE_CONSOLE_LOGS = _get_bool('ENABLE_CONSOLE_LOGS', False)

    # Observability
    OTEL_EXPORTER_OTLP_ENDPOINT = os.getenv('OTEL_EXPORTER_OTLP_ENDPOINT')
    OTEL_EXPORTER_OTLP_HEADERS = os.getenv('OTEL_EXPORTER_OTLP_HEADERS')
    OTEL_EXPORTER_OTLP_INSECURE = _get_bool('OTEL_EXPORTER_OTLP_INSECURE', True)
    OTEL_SERVICE_NAME = os.getenv('OTEL_SERVICE_NAME', 'moodstream')
