from __future__ import annotations

import logging

from flask import Response, jsonify, request

from moodstream.exceptions import DeliveryError
from moodstream.domain.streaming.ranges import CORS_HEADERS
from moodstream.observability.metrics import record_stream_failure

logger = logging.getLogger(__name__)

RETRY_AFTER_SECONDS = 5


def delivery_error_response(error: DeliveryError) -> Response:
    """JSON error payload (empty for HEAD) carrying the stream CORS headers."""
    if request.method == "HEAD":
        resp = Response(status=error.status_code)
    else:
        resp = jsonify(error.to_dict())
        resp.status_code = error.status_code
    for name, value in CORS_HEADERS.items():
        resp.headers[name] = value
    if error.retryable:
        resp.headers["Retry-After"] = str(RETRY_AFTER_SECONDS)
    return resp


def register_error_handlers(app) -> None:
    @app.errorhandler(DeliveryError)
    def _handle_delivery_error(error: DeliveryError):
        record_stream_failure(error.error_code)
        log = logger.warning if error.status_code >= 500 else logger.info
        log("Stream request rejected (%s %s): %s", error.status_code, error.error_code, error.message)
        return delivery_error_response(error)
