"""
Structured JSON logging.

Every record leaving the root logger carries the request it was emitted
under and, for playback routes, the track or retained copy being served
and whether the bytes came from disk or the upstream.
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from flask import g, has_app_context, has_request_context, request

try:
    from opentelemetry.sdk._logs import LoggerProvider, LoggingHandler
    from opentelemetry.sdk._logs.export import BatchLogRecordProcessor
    from opentelemetry.exporter.otlp.proto.grpc._log_exporter import OTLPLogExporter
    from opentelemetry.sdk.resources import Resource
except Exception:  # pragma: no cover - optional dependency
    LoggerProvider = None  # type: ignore

# URL variables promoted onto records when the matched route declares them
STREAM_VIEW_ARGS = ("track_id", "retrieval_id")
CONTEXT_FIELDS = ("request_id", "method", "path", "client") + STREAM_VIEW_ARGS + ("stream_source",)


def _client_address() -> Optional[str]:
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",", 1)[0].strip()
    return request.remote_addr


def request_context() -> Dict[str, Optional[str]]:
    """Context values for the current request; all None outside one."""
    context: Dict[str, Optional[str]] = dict.fromkeys(CONTEXT_FIELDS)
    if has_app_context():
        context["request_id"] = getattr(g, "request_id", None)
        context["stream_source"] = getattr(g, "stream_source", None)
    if has_request_context():
        context["method"] = request.method
        context["path"] = request.path
        context["client"] = _client_address()
        view_args = request.view_args or {}
        for name in STREAM_VIEW_ARGS:
            if view_args.get(name) is not None:
                context[name] = str(view_args[name])
    return context


class RequestContextFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        for name, value in request_context().items():
            # Values passed explicitly through ``extra`` win
            if getattr(record, name, None) is None:
                setattr(record, name, value)
        return True


class JsonFormatter(logging.Formatter):
    """One JSON object per line; context fields that are unset are omitted."""

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        for name in CONTEXT_FIELDS:
            value = getattr(record, name, None)
            if value is not None:
                payload[name] = value
        if record.exc_info:
            payload["exc"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False, default=str)


def _otlp_log_handler(app) -> Optional[logging.Handler]:
    if LoggerProvider is None:
        return None
    endpoint = app.config.get("OTEL_EXPORTER_OTLP_ENDPOINT") or os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT")
    if not endpoint:
        return None

    provider = LoggerProvider(
        resource=Resource.create({"service.name": app.config.get("OTEL_SERVICE_NAME", "moodstream")})
    )
    provider.add_log_record_processor(
        BatchLogRecordProcessor(
            OTLPLogExporter(endpoint=endpoint, insecure=app.config.get("OTEL_EXPORTER_OTLP_INSECURE", True))
        )
    )
    return LoggingHandler(level=logging.INFO, logger_provider=provider)


def configure_structured_logging(app) -> None:
    """Send root logger output to stdout as JSON, plus OTLP when an endpoint is set.

    Safe to call once per app instance; the stdout handler is only installed once.
    """
    root = logging.getLogger()
    handlers = []
    if not any(isinstance(h.formatter, JsonFormatter) for h in root.handlers if isinstance(h, logging.StreamHandler)):
        handlers.append(logging.StreamHandler(sys.stdout))
    otlp = _otlp_log_handler(app)
    if otlp is not None:
        handlers.append(otlp)

    for handler in handlers:
        handler.setFormatter(JsonFormatter())
        handler.addFilter(RequestContextFilter())
        root.addHandler(handler)
