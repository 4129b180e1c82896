import logging

from flask import Blueprint, Response, current_app, g, request

from moodstream.domain.streaming import StreamResult, preflight_headers
from moodstream.exceptions import SourceValidationError

logger = logging.getLogger(__name__)

stream_bp = Blueprint('stream_bp', __name__, url_prefix='/api')

_METHODS = ['GET', 'HEAD', 'OPTIONS']


def get_delivery_service():
    return current_app.extensions['stream_delivery']


def _preflight() -> Response:
    return Response(status=204, headers=preflight_headers())


def _to_response(result: StreamResult) -> Response:
    g.stream_source = result.source
    # HEAD keeps the computed Content-Length; body=None avoids a recomputed zero
    body = None if request.method == 'HEAD' else result.body
    return Response(body, status=result.status, headers=result.headers, direct_passthrough=body is not None)


@stream_bp.route('/stream/proxy', methods=_METHODS)
def proxy_stream():
    if request.method == 'OPTIONS':
        return _preflight()
    url = (request.args.get('url') or '').strip()
    if not url:
        raise SourceValidationError('Missing required parameter: url', error_code='missing_parameter')
    result = get_delivery_service().proxy_remote(
        url,
        request.headers.get('Range'),
        head=request.method == 'HEAD',
    )
    return _to_response(result)


@stream_bp.route('/stream/<string:track_id>', methods=_METHODS)
def stream_track(track_id: str):
    if request.method == 'OPTIONS':
        return _preflight()
    track_id = track_id.strip()
    if not track_id:
        raise SourceValidationError('Missing track identifier', error_code='missing_parameter')
    result = get_delivery_service().deliver_track(
        track_id,
        request.headers.get('Range'),
        head=request.method == 'HEAD',
    )
    logger.debug('Serving track %s from %s (%s)', track_id, result.source, result.status)
    return _to_response(result)


@stream_bp.route('/local-stream/<string:retrieval_id>', methods=_METHODS)
def stream_local(retrieval_id: str):
    if request.method == 'OPTIONS':
        return _preflight()
    result = get_delivery_service().deliver_local_reference(
        retrieval_id,
        request.headers.get('Range'),
        head=request.method == 'HEAD',
    )
    return _to_response(result)


__all__ = ['stream_bp']
