import logging

from flask import Blueprint, Response, current_app

logger = logging.getLogger(__name__)

events_bp = Blueprint('events_bp', __name__, url_prefix='/api/library')


def _get_broker():
    return current_app.extensions.get('event_broker')


@events_bp.route('/events')
def stream_events():
    broker = _get_broker()
    if broker is None:
        return Response('events unavailable', status=503)

    def _gen():
        try:
            for chunk in broker.subscribe():
                yield chunk
        except GeneratorExit:
            logger.info('SSE client disconnected')
            raise

    headers = {
        'Content-Type': 'text/event-stream',
        'Cache-Control': 'no-cache, no-transform',
        'Connection': 'keep-alive',
        'X-Accel-Buffering': 'no',
    }
    return Response(_gen(), headers=headers)


__all__ = ['events_bp']
