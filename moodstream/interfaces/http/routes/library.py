"""Content index listings, ingest and maintenance operations."""

from __future__ import annotations

import logging

from flask import Blueprint, current_app, jsonify, request
from pydantic import ValidationError

from moodstream.domain.library import CleanupOptions, RetrievalSnapshot, TrackMetadata

logger = logging.getLogger(__name__)

library_bp = Blueprint('library_bp', __name__, url_prefix='/api/library')


def get_content_index():
    return current_app.extensions['content_index']


def get_retrieval_history():
    return current_app.extensions.get('retrieval_history')


def _validation_error(exc: ValidationError):
    details = [
        {'field': '.'.join(str(part) for part in err.get('loc', ())), 'message': err.get('msg')}
        for err in exc.errors()
    ]
    return jsonify({'error': 'invalid_parameters', 'details': details}), 400


def _not_an_object():
    return jsonify({'error': 'invalid_parameters', 'message': 'Request body must be a JSON object'}), 400


@library_bp.route('', methods=['GET'])
def list_tracks():
    manager = get_content_index()
    mood = (request.args.get('mood') or '').strip()
    media_format = (request.args.get('format') or '').strip()
    query = (request.args.get('q') or '').strip()

    tracks = manager.search(query) if query else manager.tracks()
    if mood:
        wanted = {t.retrieval_id for t in manager.filter_by_mood(mood)}
        tracks = [t for t in tracks if t.retrieval_id in wanted]
    if media_format:
        wanted = {t.retrieval_id for t in manager.filter_by_format(media_format)}
        tracks = [t for t in tracks if t.retrieval_id in wanted]

    return jsonify({
        'items': [t.to_public_dict() for t in tracks],
        'total': len(tracks),
        'total_size_bytes': manager.total_size_bytes,
    }), 200


@library_bp.route('/stats', methods=['GET'])
def library_stats():
    return jsonify(get_content_index().stats()), 200


@library_bp.route('/info', methods=['GET'])
def library_info():
    return jsonify(get_content_index().index_info()), 200


@library_bp.route('/playback-source/<string:track_id>', methods=['GET'])
def playback_source(track_id: str):
    source = get_content_index().resolve_playback_source(track_id)
    return jsonify(source.to_dict()), 200


@library_bp.route('/ingest', methods=['POST'])
def ingest_retrieval():
    payload = request.get_json(silent=True)
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        return _not_an_object()
    record = payload.get('retrieval') or payload.get('record')
    metadata = payload.get('metadata') or {}
    if not isinstance(record, dict):
        return jsonify({'error': 'invalid_parameters', 'message': "Missing 'retrieval' object"}), 400
    if isinstance(metadata, dict) and not metadata.get('title'):
        metadata = dict(metadata, title=record.get('track_id') or 'Unknown')
    try:
        snapshot = RetrievalSnapshot.model_validate(record)
        track_metadata = TrackMetadata.model_validate(metadata)
    except ValidationError as exc:
        return _validation_error(exc)

    history = get_retrieval_history()
    if history is not None:
        history.record(snapshot, track_metadata)

    track = get_content_index().ingest(snapshot, track_metadata)
    if track is None:
        return jsonify({
            'status': 'ignored',
            'message': 'Retrieval is not complete; nothing was indexed.',
        }), 202
    return jsonify({'status': 'indexed', 'track': track.to_public_dict()}), 201


@library_bp.route('/<string:retrieval_id>', methods=['DELETE'])
def remove_track(retrieval_id: str):
    result = get_content_index().remove(retrieval_id)
    if not result:
        return jsonify({'error': 'not_found'}), 404
    return jsonify(result.to_dict()), 200


@library_bp.route('/verify', methods=['POST'])
def verify_library():
    report = get_content_index().verify_integrity()
    return jsonify(report.to_dict()), 200


@library_bp.route('/cleanup', methods=['POST'])
def cleanup_library():
    payload = request.get_json(silent=True)
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        return _not_an_object()
    defaults = current_app.config
    options = {
        'older_than_days': defaults.get('CLEANUP_OLDER_THAN_DAYS', 30),
        'max_total_size_bytes': defaults.get('CLEANUP_MAX_TOTAL_SIZE_BYTES', 1024 * 1024 * 1024),
        'keep_favorites': defaults.get('CLEANUP_KEEP_FAVORITES', True),
    }
    options.update({k: v for k, v in payload.items() if v is not None})
    try:
        cleanup_options = CleanupOptions.model_validate(options)
    except ValidationError as exc:
        return _validation_error(exc)
    result = get_content_index().cleanup(cleanup_options)
    return jsonify(result.to_dict()), 200


@library_bp.route('/export', methods=['GET'])
def export_library():
    return jsonify(get_content_index().export_index()), 200


@library_bp.route('/import', methods=['POST'])
def import_library():
    payload = request.get_json(silent=True)
    if payload is None:
        return jsonify({'error': 'invalid_parameters', 'message': 'Body must be a JSON index export'}), 400
    if not get_content_index().import_index(payload):
        return jsonify({'error': 'invalid_index', 'message': 'Index payload was rejected; nothing changed.'}), 400
    return jsonify({'status': 'imported', 'info': get_content_index().index_info()}), 200


@library_bp.route('/rebuild', methods=['POST'])
def rebuild_library():
    if not get_content_index().rebuild_index():
        return jsonify({'status': 'in_progress'}), 409
    return jsonify({'status': 'rebuilt', 'info': get_content_index().index_info()}), 200


__all__ = ['library_bp']
