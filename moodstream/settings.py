#!/usr/bin/env python
"""
Centralized configuration schema for storage and streaming.

Merges defaults from config.Config with runtime overrides (typically the
Flask app config) and normalizes the values the domain services rely on.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from config import Config


def _split_tokens(value: Optional[object]) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [token.strip() for token in value.split(",")]
    if isinstance(value, (list, tuple, set)):
        return [str(token).strip() for token in value]
    return [str(value).strip()]


def _parse_extensions(value: Optional[object]) -> List[str]:
    """Normalize extension configuration into a unique ordered list of '.ext' tokens."""
    normalized: List[str] = []
    for token in _split_tokens(value):
        if not token:
            continue
        ext = token.lower()
        if not ext.startswith("."):
            ext = f".{ext}"
        if ext not in normalized:
            normalized.append(ext)
    return normalized or [".mp3", ".mp4", ".m4a", ".webm"]


def _parse_hosts(value: Optional[object]) -> List[str]:
    normalized: List[str] = []
    for token in _split_tokens(value):
        host = token.lower().strip(".")
        if host and host not in normalized:
            normalized.append(host)
    return normalized


class StorageSettings(BaseModel):
    """Where retained copies live and how long they are kept."""

    model_config = ConfigDict(extra="ignore")

    storage_root: str
    index_path: str
    allowed_extensions: List[str] = Field(default_factory=lambda: [".mp3", ".mp4", ".m4a", ".webm"])

    cleanup_older_than_days: int = 30
    cleanup_max_total_size_bytes: int = 1024 * 1024 * 1024
    cleanup_keep_favorites: bool = True
    maintenance_interval_seconds: int = 3600

    @field_validator("allowed_extensions", mode="before")
    @classmethod
    def _normalize_extensions(cls, value: Optional[object]) -> List[str]:
        return _parse_extensions(value)

    @field_validator(
        "cleanup_older_than_days",
        "cleanup_max_total_size_bytes",
        "maintenance_interval_seconds",
        mode="before",
    )
    @classmethod
    def _coerce_non_negative(cls, value: object) -> int:
        try:
            number = int(value)  # type: ignore[arg-type]
        except (TypeError, ValueError):
            return 0
        return max(0, number)

    @field_validator("cleanup_keep_favorites", mode="before")
    @classmethod
    def _coerce_bool(cls, value: object) -> bool:
        if isinstance(value, str):
            return value.strip().lower() in {"1", "true", "t", "yes", "y", "on"}
        return bool(value)


class StreamingSettings(BaseModel):
    """Upstream proxy policy and extraction provider options."""

    model_config = ConfigDict(extra="ignore")

    allowed_hosts: List[str] = Field(
        default_factory=lambda: ["googlevideo.com", "youtube.com", "youtu.be", "ytimg.com"]
    )
    user_agent: str = "Mozilla/5.0"
    connect_timeout: float = 3.05
    read_timeout: float = 10.0
    chunk_size: int = 64 * 1024

    source_url_template: str = "https://www.youtube.com/watch?v={track_id}"
    extraction_format: str = "bestaudio/best"
    url_cache_ttl_seconds: int = 1800
    url_cache_maxsize: int = 256

    @field_validator("allowed_hosts", mode="before")
    @classmethod
    def _normalize_hosts(cls, value: Optional[object]) -> List[str]:
        return _parse_hosts(value)

    @field_validator("connect_timeout", "read_timeout", mode="before")
    @classmethod
    def _clamp_timeout(cls, value: object) -> float:
        try:
            seconds = float(value)  # type: ignore[arg-type]
        except (TypeError, ValueError):
            return 10.0
        return max(0.1, min(seconds, 120.0))

    @field_validator("chunk_size", mode="before")
    @classmethod
    def _clamp_chunk_size(cls, value: object) -> int:
        try:
            size = int(value)  # type: ignore[arg-type]
        except (TypeError, ValueError):
            return 64 * 1024
        return max(1024, min(size, 4 * 1024 * 1024))

    @field_validator("source_url_template")
    @classmethod
    def _require_placeholder(cls, value: str) -> str:
        if "{track_id}" not in value:
            raise ValueError("source_url_template must contain '{track_id}'")
        return value


def load_storage_settings(overrides: Optional[Dict[str, Any]] = None) -> StorageSettings:
    """Load storage settings merging config defaults with optional runtime overrides."""
    data: Dict[str, Any] = {
        "storage_root": Config.STORAGE_ROOT,
        "index_path": Config.INDEX_PATH,
        "allowed_extensions": Config.ALLOWED_MEDIA_EXTENSIONS,
        "cleanup_older_than_days": Config.CLEANUP_OLDER_THAN_DAYS,
        "cleanup_max_total_size_bytes": Config.CLEANUP_MAX_TOTAL_SIZE_BYTES,
        "cleanup_keep_favorites": Config.CLEANUP_KEEP_FAVORITES,
        "maintenance_interval_seconds": Config.MAINTENANCE_INTERVAL_SECONDS,
    }
    if overrides:
        data.update(overrides)
    return StorageSettings.model_validate(data)


def load_streaming_settings(overrides: Optional[Dict[str, Any]] = None) -> StreamingSettings:
    """Load streaming settings merging config defaults with optional runtime overrides."""
    data: Dict[str, Any] = {
        "allowed_hosts": Config.STREAM_ALLOWED_HOSTS,
        "user_agent": Config.STREAM_USER_AGENT,
        "connect_timeout": Config.UPSTREAM_CONNECT_TIMEOUT_SECONDS,
        "read_timeout": Config.UPSTREAM_READ_TIMEOUT_SECONDS,
        "chunk_size": Config.STREAM_CHUNK_SIZE,
        "source_url_template": Config.EXTRACTION_SOURCE_URL_TEMPLATE,
        "extraction_format": Config.EXTRACTION_FORMAT,
        "url_cache_ttl_seconds": Config.STREAM_URL_CACHE_TTL_SECONDS,
        "url_cache_maxsize": Config.STREAM_URL_CACHE_MAXSIZE,
    }
    if overrides:
        data.update(overrides)
    return StreamingSettings.model_validate(data)


def settings_overrides_from_app_config(app_config) -> Dict[str, Dict[str, Any]]:
    """Translate Flask app config keys into settings overrides for both schemas."""
    storage = {
        "storage_root": app_config.get("STORAGE_ROOT"),
        "index_path": app_config.get("INDEX_PATH"),
        "allowed_extensions": app_config.get("ALLOWED_MEDIA_EXTENSIONS"),
        "cleanup_older_than_days": app_config.get("CLEANUP_OLDER_THAN_DAYS"),
        "cleanup_max_total_size_bytes": app_config.get("CLEANUP_MAX_TOTAL_SIZE_BYTES"),
        "cleanup_keep_favorites": app_config.get("CLEANUP_KEEP_FAVORITES"),
        "maintenance_interval_seconds": app_config.get("MAINTENANCE_INTERVAL_SECONDS"),
    }
    streaming = {
        "allowed_hosts": app_config.get("STREAM_ALLOWED_HOSTS"),
        "user_agent": app_config.get("STREAM_USER_AGENT"),
        "connect_timeout": app_config.get("UPSTREAM_CONNECT_TIMEOUT_SECONDS"),
        "read_timeout": app_config.get("UPSTREAM_READ_TIMEOUT_SECONDS"),
        "chunk_size": app_config.get("STREAM_CHUNK_SIZE"),
        "source_url_template": app_config.get("EXTRACTION_SOURCE_URL_TEMPLATE"),
        "extraction_format": app_config.get("EXTRACTION_FORMAT"),
        "url_cache_ttl_seconds": app_config.get("STREAM_URL_CACHE_TTL_SECONDS"),
        "url_cache_maxsize": app_config.get("STREAM_URL_CACHE_MAXSIZE"),
    }
    return {
        "storage": {k: v for k, v in storage.items() if v is not None},
        "streaming": {k: v for k, v in streaming.items() if v is not None},
    }


__all__ = [
    "StorageSettings",
    "StreamingSettings",
    "load_storage_settings",
    "load_streaming_settings",
    "settings_overrides_from_app_config",
]
