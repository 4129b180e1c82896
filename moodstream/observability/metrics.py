from __future__ import annotations

from typing import Optional

from flask import Blueprint, Response
from prometheus_client import Counter, Gauge, Histogram, generate_latest

metrics_blueprint = Blueprint("metrics_bp", __name__)

CONTENT_TYPE_LATEST = "text/plain; version=0.0.4; charset=utf-8"

STREAM_REQUESTS = Counter(
    "moodstream_stream_requests_total",
    "Stream requests answered, by source kind and response status.",
    ["source", "status"],
)
STREAM_FAILURES = Counter(
    "moodstream_stream_failures_total",
    "Stream requests rejected or failed, by error code.",
    ["error"],
)
REMOTE_FALLBACKS = Counter(
    "moodstream_remote_fallbacks_total",
    "Play requests that fell back to the remote source after a local miss.",
)
UPSTREAM_LATENCY = Histogram(
    "moodstream_upstream_response_seconds",
    "Time until the upstream returned response headers.",
    buckets=(0.05, 0.1, 0.25, 0.5, 1, 2, 5, 10, float("inf")),
)
CLEANUP_BYTES_FREED = Counter(
    "moodstream_cleanup_bytes_freed_total",
    "Bytes released by retention cleanup runs (dry runs excluded).",
)
CLEANUP_FILES_REMOVED = Counter(
    "moodstream_cleanup_files_removed_total",
    "Retained copies evicted by retention cleanup runs.",
)
INTEGRITY_ISSUES = Counter(
    "moodstream_integrity_issues_total",
    "Issues found by integrity sweeps, by kind.",
    ["kind"],
)
INDEX_SIZE_BYTES = Gauge(
    "moodstream_index_size_bytes",
    "Total bytes of retained copies recorded in the content index.",
)
INDEX_TRACKS = Gauge(
    "moodstream_index_tracks",
    "Number of entries in the content index.",
)


def record_stream_response(source: str, status: int) -> None:
    STREAM_REQUESTS.labels(source=source, status=str(status)).inc()


def record_stream_failure(error_code: str) -> None:
    STREAM_FAILURES.labels(error=error_code).inc()


def record_remote_fallback() -> None:
    REMOTE_FALLBACKS.inc()


def observe_upstream_latency(seconds: Optional[float]) -> None:
    if seconds is not None:
        UPSTREAM_LATENCY.observe(max(0.0, seconds))


def record_cleanup(files_removed: int, bytes_freed: int) -> None:
    if files_removed:
        CLEANUP_FILES_REMOVED.inc(files_removed)
    if bytes_freed:
        CLEANUP_BYTES_FREED.inc(bytes_freed)


def record_integrity_issues(missing: int, corrupt: int, orphaned: int) -> None:
    for kind, count in (("missing", missing), ("corrupt", corrupt), ("orphaned", orphaned)):
        if count:
            INTEGRITY_ISSUES.labels(kind=kind).inc(count)


def update_index_gauges(total_size_bytes: int, track_count: int) -> None:
    INDEX_SIZE_BYTES.set(max(0, total_size_bytes))
    INDEX_TRACKS.set(max(0, track_count))


@metrics_blueprint.route("/metrics")
def metrics_endpoint() -> Response:
    return Response(generate_latest(), mimetype=CONTENT_TYPE_LATEST)
