import importlib

import pytest
from hypothesis import given, strategies as st
from pydantic import ValidationError

from moodstream import settings
from moodstream.settings import StorageSettings, StreamingSettings


@pytest.mark.unit
def test_extensions_are_normalized_and_deduplicated():
    s = StorageSettings(storage_root="m", index_path="i.json", allowed_extensions="MP3, .m4a,mp3,,")
    assert s.allowed_extensions == [".mp3", ".m4a"]


@pytest.mark.unit
def test_empty_extension_list_falls_back_to_defaults():
    s = StorageSettings(storage_root="m", index_path="i.json", allowed_extensions="")
    assert s.allowed_extensions == [".mp3", ".mp4", ".m4a", ".webm"]


@pytest.mark.unit
def test_negative_or_garbage_retention_values_clamp_to_zero():
    s = StorageSettings(
        storage_root="m",
        index_path="i.json",
        cleanup_older_than_days=-5,
        cleanup_max_total_size_bytes="lots",
        maintenance_interval_seconds="-1",
    )
    assert s.cleanup_older_than_days == 0
    assert s.cleanup_max_total_size_bytes == 0
    assert s.maintenance_interval_seconds == 0


@pytest.mark.unit
@pytest.mark.parametrize("raw,expected", [("yes", True), ("0", False), ("off", False), (1, True)])
def test_keep_favorites_accepts_env_style_booleans(raw, expected):
    s = StorageSettings(storage_root="m", index_path="i.json", cleanup_keep_favorites=raw)
    assert s.cleanup_keep_favorites is expected


@pytest.mark.unit
def test_allowed_hosts_lowercased_and_trimmed():
    s = StreamingSettings(allowed_hosts=" GoogleVideo.com., youtube.com ,googlevideo.com")
    assert s.allowed_hosts == ["googlevideo.com", "youtube.com"]


@pytest.mark.unit
def test_source_template_requires_track_placeholder():
    with pytest.raises(ValidationError):
        StreamingSettings(source_url_template="https://example.com/watch")


@pytest.mark.unit
@given(st.one_of(st.integers(min_value=-10**9, max_value=10**9), st.text(max_size=8)))
def test_chunk_size_always_within_bounds(raw):
    size = StreamingSettings(chunk_size=raw).chunk_size
    assert 1024 <= size <= 4 * 1024 * 1024


@pytest.mark.unit
@given(st.floats(allow_nan=False, allow_infinity=False, min_value=-1e6, max_value=1e6))
def test_timeouts_are_clamped(seconds):
    s = StreamingSettings(connect_timeout=seconds, read_timeout=seconds)
    assert 0.1 <= s.connect_timeout <= 120.0
    assert 0.1 <= s.read_timeout <= 120.0


@pytest.mark.unit
def test_app_config_overrides_skip_unset_keys():
    overrides = settings.settings_overrides_from_app_config(
        {"STORAGE_ROOT": "/data/media", "STREAM_CHUNK_SIZE": 8192, "INDEX_PATH": None}
    )
    assert overrides["storage"] == {"storage_root": "/data/media"}
    assert overrides["streaming"] == {"chunk_size": 8192}

    storage = settings.load_storage_settings(overrides["storage"])
    assert storage.storage_root == "/data/media"


@pytest.mark.unit
def test_env_values_flow_through_config(monkeypatch):
    import config as _config

    monkeypatch.setenv("STREAM_ALLOWED_HOSTS", "cdn.example.org")
    monkeypatch.setenv("UPSTREAM_READ_TIMEOUT_SECONDS", "30")
    monkeypatch.setenv("CLEANUP_OLDER_THAN_DAYS", "7")
    try:
        reloaded = importlib.reload(_config)
        monkeypatch.setattr(settings, "Config", reloaded.Config)

        streaming = settings.load_streaming_settings()
        storage = settings.load_storage_settings()

        assert streaming.allowed_hosts == ["cdn.example.org"]
        assert streaming.read_timeout == 30.0
        assert storage.cleanup_older_than_days == 7
    finally:
        monkeypatch.undo()
        importlib.reload(_config)
