"""
Transport and logging tests
===========================

ApiClient against a recording requests.Session, and the log database.
Run with: pytest tests/test_transport.py -v
"""

import asyncio
import json

import pytest
import requests

from mailbadger_dashboard.core.errors import TransportError
from mailbadger_dashboard.core.logging_service import LoggingService
from mailbadger_dashboard.core.transport import ApiClient, ApiResponse, FetchDescriptor


def make_response(status_code, payload=None, content_type='application/json'):
    response = requests.Response()
    response.status_code = status_code
    if payload is None:
        response._content = b''
    elif isinstance(payload, (dict, list)):
        response._content = json.dumps(payload).encode('utf-8')
    else:
        response._content = str(payload).encode('utf-8')
    response.headers['Content-Type'] = content_type
    return response


class RecordingSession(requests.Session):
    def __init__(self, responses):
        super().__init__()
        self.responses = list(responses)
        self.requests = []

    def request(self, method, url, **kwargs):
        self.requests.append((method, url, kwargs))
        result = self.responses.pop(0)
        if isinstance(result, Exception):
            raise result
        return result


@pytest.fixture
def make_client():
    def factory(*responses, log_calls=True):
        session = RecordingSession(responses)
        client = ApiClient('https://api.example.com/', timeout=5, session=session, log_calls=log_calls)
        return client, session
    return factory


# ---------------------------------------------------------------------------
# 1. URL resolution and request shape
# ---------------------------------------------------------------------------

def test_url_for_joins_paths_and_passes_absolute_urls(make_client):
    client, _ = make_client()
    assert client.url_for('/api/subscribers') == 'https://api.example.com/api/subscribers'
    assert client.url_for('api/segments?per_page=40') == 'https://api.example.com/api/segments?per_page=40'
    assert client.url_for('https://cdn.example.com/x.csv') == 'https://cdn.example.com/x.csv'


def test_request_sends_method_params_body_and_timeout(make_client):
    client, session = make_client(make_response(200, {'file_name': 'a.csv'}))
    response = client.request(FetchDescriptor('/api/subscribers/export', method='POST', body={'x': '1'}))

    method, url, kwargs = session.requests[0]
    assert method == 'POST'
    assert url == 'https://api.example.com/api/subscribers/export'
    assert kwargs['data'] == {'x': '1'}
    assert kwargs['timeout'] == 5
    assert response.ok
    assert response.payload == {'file_name': 'a.csv'}
    assert session.headers['Accept'] == 'application/json'


def test_send_runs_off_the_event_loop(make_client):
    client, session = make_client(make_response(200, {'collection': []}))
    response = asyncio.run(client.send(FetchDescriptor('/api/subscribers', params={'per_page': 10})))

    assert response.payload == {'collection': []}
    assert session.requests[0][2]['params'] == {'per_page': 10}


# ---------------------------------------------------------------------------
# 2. Failures -- network errors raise, HTTP errors are returned
# ---------------------------------------------------------------------------

@pytest.mark.parametrize('error', [
    requests.ConnectionError('refused'),
    requests.Timeout('slow'),
    requests.RequestException('odd'),
])
def test_network_errors_raise_transport_error(make_client, error):
    client, _ = make_client(error, log_calls=False)
    with pytest.raises(TransportError) as excinfo:
        client.request(FetchDescriptor('/api/subscribers'))
    assert excinfo.value.status_code is None


def test_http_error_is_returned_and_raise_for_status_keeps_body(make_client):
    client, _ = make_client(make_response(404, {'status': 'pending'}))
    response = client.request(FetchDescriptor('/api/subscribers/export/download'))

    assert not response.ok
    with pytest.raises(TransportError) as excinfo:
        response.raise_for_status()
    assert excinfo.value.status_code == 404
    assert excinfo.value.payload == {'status': 'pending'}


def test_non_json_body_is_kept_as_text(make_client):
    client, _ = make_client(make_response(502, 'Bad Gateway', content_type='text/html'))
    response = client.request(FetchDescriptor('/api/subscribers'))
    assert response.payload == 'Bad Gateway'


def test_raise_for_status_includes_server_message():
    with pytest.raises(TransportError, match='HTTP 503: down for maintenance'):
        ApiResponse(status_code=503, payload={'message': 'down for maintenance'}).raise_for_status()
    assert ApiResponse(status_code=204).raise_for_status().ok


# ---------------------------------------------------------------------------
# 3. Logging -- API calls land in the log database
# ---------------------------------------------------------------------------

def test_api_calls_are_logged(make_client):
    client, _ = make_client(make_response(200, {}), make_response(500, {}))
    client.request(FetchDescriptor('/api/subscribers'))
    client.request(FetchDescriptor('/api/segments'))

    rows = LoggingService.recent(source='transport')
    assert [row['level'] for row in rows] == ['ERROR', 'INFO']
    assert rows[1]['message'] == 'API GET /api/subscribers - Status: 200'


def test_logging_can_be_disabled(make_client):
    client, _ = make_client(make_response(200, {}), log_calls=False)
    client.request(FetchDescriptor('/api/subscribers'))
    assert LoggingService.recent(source='transport') == []


def test_logging_falls_back_when_database_is_unusable(tmp_db_dir, caplog):
    # A directory cannot be opened as a sqlite database
    LoggingService.db_path = tmp_db_dir
    LoggingService.warning('export', 'still reported')
    assert 'still reported' in caplog.text


def test_cleanup_old_logs_keeps_recent_rows():
    LoggingService.info('export', 'fresh entry')
    assert LoggingService.cleanup_old_logs(days_to_keep=1) == 0
    assert any(row['message'] == 'fresh entry' for row in LoggingService.recent())
