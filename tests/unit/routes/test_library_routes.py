import json

import pytest

from tests.support.stubs import write_media


def _retrieval(retrieval_id='r1', track_id='t1', size=1000, **extra):
    record = {
        'retrieval_id': retrieval_id,
        'track_id': track_id,
        'status': 'completed',
        'file_path': f'{retrieval_id}.mp3',
        'file_size_bytes': size,
        'media_format': 'mp3',
    }
    record.update(extra)
    return record


def _ingest(app, client, retrieval_id='r1', track_id='t1', size=1000, metadata=None, **extra):
    write_media(app.extensions['content_index'].storage.root, f'{retrieval_id}.mp3', size)
    return client.post(
        '/api/library/ingest',
        json={
            'retrieval': _retrieval(retrieval_id, track_id, size, **extra),
            'metadata': metadata or {'title': f'Song {retrieval_id}', 'mood_tags': ['Calm']},
        },
    )


@pytest.mark.unit
def test_ingest_indexes_completed_retrieval(app, client):
    r = _ingest(app, client)

    assert r.status_code == 201
    body = r.get_json()
    assert body['status'] == 'indexed'
    assert body['track']['retrieval_id'] == 'r1'
    assert body['track']['local_stream_reference'] == '/api/local-stream/r1'
    assert 'file_path' not in body['track']
    assert body['track']['mood_tags'] == ['calm']


@pytest.mark.unit
def test_ingest_records_history(app, client):
    from moodstream.database import RetrievalRecord, db

    _ingest(app, client)

    with app.app_context():
        record = db.session.get(RetrievalRecord, 'r1')
        assert record is not None
        assert record.status == 'completed'
        assert record.title == 'Song r1'


@pytest.mark.unit
def test_ingest_ignores_incomplete_retrieval(client):
    r = client.post(
        '/api/library/ingest',
        json={'retrieval': {'retrieval_id': 'r9', 'track_id': 't9', 'status': 'failed'}, 'metadata': {'title': 'x'}},
    )

    assert r.status_code == 202
    assert r.get_json()['status'] == 'ignored'
    assert client.get('/api/library').get_json()['total'] == 0


@pytest.mark.unit
@pytest.mark.parametrize(
    'payload',
    [
        {},
        {'retrieval': 'r1'},
        {'retrieval': {'retrieval_id': 'r1', 'track_id': 't1', 'status': 'bogus'}},
        {'retrieval': {'retrieval_id': 'r1', 'track_id': 't1', 'status': 'completed', 'media_format': 'flac'}},
    ],
)
def test_ingest_rejects_invalid_payloads(client, payload):
    r = client.post('/api/library/ingest', json=payload)

    assert r.status_code == 400
    assert r.get_json()['error'] == 'invalid_parameters'


@pytest.mark.unit
def test_listing_filters_by_mood_format_and_query(app, client):
    _ingest(app, client, 'r1', 't1', metadata={'title': 'Rainy Day', 'mood_tags': ['calm']})
    _ingest(app, client, 'r2', 't2', metadata={'title': 'Sunburst', 'mood_tags': ['happy']})

    everything = client.get('/api/library').get_json()
    assert everything['total'] == 2
    assert everything['total_size_bytes'] == 2000

    calm = client.get('/api/library', query_string={'mood': 'CALM'}).get_json()
    assert [item['retrieval_id'] for item in calm['items']] == ['r1']

    searched = client.get('/api/library', query_string={'q': 'sun'}).get_json()
    assert [item['retrieval_id'] for item in searched['items']] == ['r2']

    assert client.get('/api/library', query_string={'format': 'webm'}).get_json()['total'] == 0


@pytest.mark.unit
def test_stats_and_info(app, client):
    _ingest(app, client)

    stats = client.get('/api/library/stats').get_json()
    assert stats['total_tracks'] == 1
    assert stats['by_format'] == {'mp3': 1}
    assert stats['by_mood'] == {'calm': 1}

    info = client.get('/api/library/info').get_json()
    assert info['schema_version'] == '1.0.0'
    assert info['track_count'] == 1
    assert info['rebuilding'] is False


@pytest.mark.unit
def test_playback_source_local_then_remote(app, client):
    _ingest(app, client)

    local = client.get('/api/library/playback-source/t1').get_json()
    assert local == {'kind': 'local', 'locator': '/api/local-stream/r1', 'format': 'mp3', 'quality': 'original'}

    remote = client.get('/api/library/playback-source/t404').get_json()
    assert remote['kind'] == 'remote'
    assert remote['locator'] == '/api/stream/t404'


@pytest.mark.unit
def test_delete_removes_entry_and_file(app, client):
    _ingest(app, client)

    r = client.delete('/api/library/r1')

    assert r.status_code == 200
    body = r.get_json()
    assert body['removed'] is True
    assert body['freed_bytes'] == 1000
    assert not (app.extensions['content_index'].storage.exists('r1.mp3'))
    assert client.delete('/api/library/r1').status_code == 404


@pytest.mark.unit
def test_verify_reports_missing_files(app, client):
    _ingest(app, client)
    app.extensions['content_index'].storage.delete('r1.mp3')

    report = client.post('/api/library/verify').get_json()

    assert report['missing'] == 1
    assert report['is_valid'] is False


@pytest.mark.unit
def test_cleanup_dry_run_leaves_index_untouched(app, client):
    _ingest(app, client, completed_at='2020-01-01T00:00:00Z')

    r = client.post('/api/library/cleanup', json={'dry_run': True, 'max_total_size_bytes': 0})

    body = r.get_json()
    assert r.status_code == 200
    assert body['dry_run'] is True
    assert body['removed_retrieval_ids'] == ['r1']
    assert body['bytes_freed'] == 1000
    assert client.get('/api/library').get_json()['total'] == 1


@pytest.mark.unit
def test_cleanup_skips_favorites(app, client):
    _ingest(app, client, 'r1', 't1', completed_at='2020-01-01T00:00:00Z')
    _ingest(app, client, 'r2', 't2', completed_at='2020-01-02T00:00:00Z')
    client.post('/api/favorites/t1')

    body = client.post('/api/library/cleanup', json={'max_total_size_bytes': 0}).get_json()

    assert body['removed_retrieval_ids'] == ['r2']
    remaining = client.get('/api/library').get_json()['items']
    assert [item['retrieval_id'] for item in remaining] == ['r1']


@pytest.mark.unit
def test_cleanup_rejects_negative_options(client):
    r = client.post('/api/library/cleanup', json={'older_than_days': -1})

    assert r.status_code == 400


@pytest.mark.unit
def test_export_then_import_round_trip(app, client):
    _ingest(app, client)
    exported = client.get('/api/library/export').get_json()
    client.delete('/api/library/r1')

    write_media(app.extensions['content_index'].storage.root, 'r1.mp3', 1000)
    r = client.post('/api/library/import', data=json.dumps(exported), content_type='application/json')

    assert r.status_code == 200
    assert r.get_json()['info']['track_count'] == 1
    assert client.get('/api/library').get_json()['items'][0]['is_available'] is True


@pytest.mark.unit
def test_import_rejects_malformed_payload(app, client):
    _ingest(app, client)

    r = client.post('/api/library/import', json={'schema_version': '9.9.9', 'tracks': []})

    assert r.status_code == 400
    assert r.get_json()['error'] == 'invalid_index'
    assert client.get('/api/library').get_json()['total'] == 1


@pytest.mark.unit
def test_rebuild_restores_index_from_history(app, client, factories):
    root = app.extensions['content_index'].storage.root
    write_media(root, 'h1.mp3', 1000)
    factories.RetrievalRecordFactory(id='h1', track_id='th1', file_path='h1.mp3')
    factories.RetrievalRecordFactory(id='h2', track_id='th2', status='failed', file_path=None)

    r = client.post('/api/library/rebuild')

    assert r.status_code == 200
    assert r.get_json()['info']['track_count'] == 1
    items = client.get('/api/library').get_json()['items']
    assert [item['retrieval_id'] for item in items] == ['h1']


@pytest.mark.unit
def test_rebuild_conflict_while_running(app, client):
    manager = app.extensions['content_index']
    manager._rebuild_guard.acquire()
    try:
        r = client.post('/api/library/rebuild')
        ready = client.get('/readyz')
    finally:
        manager._rebuild_guard.release()

    assert r.status_code == 409
    assert ready.status_code == 503


@pytest.mark.unit
def test_event_stream_headers(app, client):
    class _Broker:
        def subscribe(self):
            yield 'event: track_added\ndata: {"retrieval_id": "r1"}\n\n'

    app.extensions['event_broker'] = _Broker()

    r = client.get('/api/library/events')

    assert r.status_code == 200
    assert r.headers['Content-Type'] == 'text/event-stream'
    assert 'event: track_added' in r.data.decode('utf-8')


@pytest.mark.unit
@pytest.mark.parametrize('path', ['/api/library/ingest', '/api/library/cleanup'])
@pytest.mark.parametrize('body', [[1, 2], 'text', 7])
def test_non_object_json_bodies_are_rejected(app, client, path, body):
    _ingest(app, client, completed_at='2020-01-01T00:00:00Z')

    r = client.post(path, json=body)

    assert r.status_code == 400
    assert r.get_json()['error'] == 'invalid_parameters'
    assert client.get('/api/library').get_json()['total'] == 1
