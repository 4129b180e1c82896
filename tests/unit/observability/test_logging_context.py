import json
import logging
import sys

import pytest
from flask import g

from moodstream.observability.logging import JsonFormatter, RequestContextFilter
from tests.support.stubs import write_media


def _record(msg="hello"):
    return logging.LogRecord("moodstream.test", logging.INFO, __file__, 1, msg, None, None)


def _filtered(**extra):
    record = _record()
    for name, value in extra.items():
        setattr(record, name, value)
    RequestContextFilter().filter(record)
    return record


@pytest.mark.unit
def test_local_stream_request_fields_reach_json_output(app):
    with app.test_request_context(
        '/api/local-stream/r1', headers={'X-Forwarded-For': '10.0.0.1, 10.0.0.2'}
    ):
        g.request_id = 'req-1'
        g.stream_source = 'local'
        record = _filtered()

    assert record.retrieval_id == 'r1'
    assert record.track_id is None
    assert record.client == '10.0.0.1'
    assert record.method == 'GET'

    payload = json.loads(JsonFormatter().format(record))
    assert payload['msg'] == 'hello'
    assert payload['request_id'] == 'req-1'
    assert payload['path'] == '/api/local-stream/r1'
    assert payload['retrieval_id'] == 'r1'
    assert payload['stream_source'] == 'local'
    assert 'track_id' not in payload


@pytest.mark.unit
def test_track_id_taken_from_stream_route(app):
    with app.test_request_context('/api/stream/abc123', method='HEAD'):
        record = _filtered()

    assert record.track_id == 'abc123'
    assert record.retrieval_id is None
    assert record.stream_source is None
    assert record.method == 'HEAD'


@pytest.mark.unit
def test_explicit_extra_values_are_kept(app):
    with app.test_request_context('/api/stream/abc123'):
        record = _filtered(track_id='other')

    assert record.track_id == 'other'


@pytest.mark.unit
def test_records_outside_requests_have_no_context():
    record = _filtered()

    assert record.request_id is None
    assert record.path is None
    assert record.track_id is None

    payload = json.loads(JsonFormatter().format(record))
    assert set(payload) == {'ts', 'level', 'logger', 'msg'}


@pytest.mark.unit
def test_formatter_includes_exception_text():
    try:
        raise RuntimeError('upstream went away')
    except RuntimeError:
        record = logging.LogRecord(
            "moodstream.test", logging.ERROR, __file__, 1, "failed", None, sys.exc_info()
        )

    payload = json.loads(JsonFormatter().format(record))
    assert payload['level'] == 'ERROR'
    assert 'upstream went away' in payload['exc']


@pytest.mark.unit
def test_stream_routes_record_delivery_source(app, client):
    manager = app.extensions['content_index']
    path = write_media(manager.storage.root, 'r1.mp3', 100)
    with app.app_context():
        manager.ingest(
            {
                'retrieval_id': 'r1',
                'track_id': 't1',
                'status': 'completed',
                'file_path': path.name,
                'file_size_bytes': 100,
            },
            {'title': 'Rain'},
        )

    with client:
        response = client.get('/api/stream/t1')
        assert response.status_code == 200
        assert g.stream_source == 'local'
        record = _filtered()
        response.close()

    assert record.track_id == 't1'
    assert record.stream_source == 'local'
    assert record.request_id
