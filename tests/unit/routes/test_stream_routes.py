import pytest
import requests

from tests.support.stubs import (
    FakeExtractionProvider,
    FakeSession,
    FakeUpstreamResponse,
    upstream_url,
    write_media,
)


def _index_local_copy(app, retrieval_id="r1", track_id="t1", size=1000):
    manager = app.extensions['content_index']
    path = write_media(manager.storage.root, f"{retrieval_id}.mp3", size)
    with app.app_context():
        manager.ingest(
            {
                'retrieval_id': retrieval_id,
                'track_id': track_id,
                'status': 'completed',
                'file_path': path.name,
                'file_size_bytes': size,
            },
            {'title': 'Rain'},
        )
    return path


def _use_upstream(app, responses=(), head_responses=(), urls=None):
    service = app.extensions['stream_delivery']
    session = FakeSession(responses, head_responses)
    service._http = session
    service.extractor = FakeExtractionProvider(urls or {})
    return session


@pytest.mark.unit
def test_local_stream_serves_full_file(app, client):
    path = _index_local_copy(app)

    r = client.get('/api/local-stream/r1')

    assert r.status_code == 200
    assert r.data == path.read_bytes()
    assert r.headers['Content-Length'] == '1000'
    assert r.headers['Accept-Ranges'] == 'bytes'
    assert r.headers['Access-Control-Allow-Origin'] == '*'
    assert r.headers['X-Stream-Source'] == 'local'


@pytest.mark.unit
def test_local_stream_honours_range(app, client):
    path = _index_local_copy(app)

    r = client.get('/api/local-stream/r1', headers={'Range': 'bytes=900-'})

    assert r.status_code == 206
    assert r.headers['Content-Range'] == 'bytes 900-999/1000'
    assert r.headers['Content-Length'] == '100'
    assert r.data == path.read_bytes()[900:]


@pytest.mark.unit
def test_local_stream_head_keeps_length(app, client):
    _index_local_copy(app)

    r = client.head('/api/local-stream/r1')

    assert r.status_code == 200
    assert r.data == b''
    assert r.headers['Content-Length'] == '1000'


@pytest.mark.unit
def test_local_stream_unknown_reference_is_404(client):
    r = client.get('/api/local-stream/missing')

    assert r.status_code == 404
    assert r.get_json()['error'] == 'local_source_unavailable'
    assert r.headers['Access-Control-Allow-Origin'] == '*'


@pytest.mark.unit
@pytest.mark.parametrize('path', ['/api/stream/proxy', '/api/stream/t1', '/api/local-stream/r1'])
def test_preflight_answers_without_body(client, path):
    r = client.open(path, method='OPTIONS')

    assert r.status_code == 204
    assert r.headers['Access-Control-Allow-Origin'] == '*'
    assert 'HEAD' in r.headers['Access-Control-Allow-Methods']
    assert r.headers['Access-Control-Max-Age'] == '86400'


@pytest.mark.unit
def test_proxy_requires_url(client):
    r = client.get('/api/stream/proxy')

    assert r.status_code == 400
    assert r.get_json()['error'] == 'missing_parameter'


@pytest.mark.unit
def test_proxy_rejects_disallowed_host(app, client):
    session = _use_upstream(app)

    r = client.get('/api/stream/proxy', query_string={'url': 'https://evil.example.com/a.mp3'})

    assert r.status_code == 400
    assert r.get_json()['error'] == 'invalid_source'
    assert session.calls == []


@pytest.mark.unit
def test_proxy_rejects_expired_url(app, client):
    session = _use_upstream(app)

    r = client.get('/api/stream/proxy', query_string={'url': upstream_url(expire=1000)})

    assert r.status_code == 410
    assert r.get_json()['error'] == 'source_expired'
    assert session.calls == []


@pytest.mark.unit
def test_proxy_unreachable_upstream_is_503_with_retry_after(app, client):
    _use_upstream(app, responses=[requests.ConnectionError('refused')])

    r = client.get('/api/stream/proxy', query_string={'url': upstream_url()})

    assert r.status_code == 503
    assert r.headers['Retry-After'] == '5'
    body = r.get_json()
    assert body['error'] == 'upstream_unreachable'
    assert body['retryable'] is True


@pytest.mark.unit
def test_proxy_upstream_failure_is_502(app, client):
    _use_upstream(app, responses=[FakeUpstreamResponse(404)])

    r = client.get('/api/stream/proxy', query_string={'url': upstream_url()})

    assert r.status_code == 502
    assert r.get_json()['upstream_status'] == 404


@pytest.mark.unit
def test_proxy_forwards_range_and_relays_partial_content(app, client):
    upstream = FakeUpstreamResponse(
        206,
        {'Content-Type': 'audio/webm', 'Content-Range': 'bytes 0-3/10', 'Content-Length': '4'},
        [b'ab', b'cd'],
    )
    session = _use_upstream(app, responses=[upstream])

    r = client.get(
        '/api/stream/proxy',
        query_string={'url': upstream_url(mime='audio/webm')},
        headers={'Range': 'bytes=0-3'},
    )

    assert r.status_code == 206
    assert r.data == b'abcd'
    assert r.headers['Content-Range'] == 'bytes 0-3/10'
    assert r.headers['Content-Type'] == 'audio/webm'
    assert r.headers['Access-Control-Allow-Origin'] == '*'
    assert session.calls[0]['headers']['Range'] == 'bytes=0-3'
    assert upstream.closed is True


@pytest.mark.unit
def test_proxy_head_reports_upstream_length(app, client):
    head = FakeUpstreamResponse(200, {'Content-Length': '2048', 'Content-Type': 'audio/mp4'})
    _use_upstream(app, head_responses=[head])

    r = client.head('/api/stream/proxy', query_string={'url': upstream_url()})

    assert r.status_code == 200
    assert r.data == b''
    assert r.headers['Content-Length'] == '2048'


@pytest.mark.unit
def test_track_stream_prefers_local_copy(app, client):
    _index_local_copy(app)
    session = _use_upstream(app)

    r = client.get('/api/stream/t1')

    assert r.status_code == 200
    assert r.headers['X-Stream-Source'] == 'local'
    assert session.calls == []


@pytest.mark.unit
def test_track_stream_falls_back_to_remote(app, client):
    url = upstream_url()
    session = _use_upstream(
        app,
        responses=[FakeUpstreamResponse(200, {'Content-Length': '3'}, [b'abc'])],
        urls={'t2': [url]},
    )

    r = client.get('/api/stream/t2')

    assert r.status_code == 200
    assert r.data == b'abc'
    assert r.headers['X-Stream-Source'] == 'remote'
    assert session.calls[0]['url'] == url


@pytest.mark.unit
def test_stream_errors_are_counted_in_metrics(app, client):
    client.get('/api/stream/proxy')

    r = client.get('/metrics')

    assert r.status_code == 200
    assert b'moodstream_stream_failures_total' in r.data


@pytest.mark.unit
def test_proxy_refuses_non_media_upstream_body(app, client):
    upstream = FakeUpstreamResponse(200, {'Content-Type': 'text/html; charset=utf-8'}, [b'<html>blocked</html>'])
    _use_upstream(app, responses=[upstream])

    r = client.get('/api/stream/proxy', query_string={'url': upstream_url()})

    assert r.status_code == 502
    body = r.get_json()
    assert body['error'] == 'unexpected_content_type'
    assert body['upstream_status'] == 200
    assert b'blocked' not in r.data
    assert upstream.closed is True
    assert upstream.iterated is False
