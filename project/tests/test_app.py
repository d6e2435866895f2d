import json
from datetime import datetime, timedelta, timezone
from unittest.mock import Mock

import pytest

from app import create_app
from conftest import collection, make_report
from fallback_gateway import GatewayResult, QueryKind
from lsr_config import Settings
from snapshot_store import SnapshotStore


def result(coll=None, hard=False, error=None, source='cache'):
    return GatewayResult(coll if coll is not None else collection([make_report('2026-03-01T10:00:00Z')]),
                         source, QueryKind.HISTORICAL_CACHED, 'test', error=error, hard_failure=hard)


@pytest.fixture
def gateway():
    gw = Mock()
    gw.resolve.return_value = result()
    return gw


@pytest.fixture
def store(tmp_path):
    return SnapshotStore(tmp_path)


@pytest.fixture
def client(tmp_path, gateway, store):
    app = create_app(Settings(cache_dir=tmp_path), gateway=gateway, store=store)
    return app.test_client()


def test_explicit_range(client, gateway):
    resp = client.get('/api/cache?start=2026-03-01&startHour=06:00&end=2026-03-02&endHour=18:30')
    assert resp.status_code == 200
    assert resp.get_json()['type'] == 'FeatureCollection'
    assert resp.headers['Access-Control-Allow-Origin'] == '*'
    start, end = gateway.resolve.call_args.args
    assert start == datetime(2026, 3, 1, 6, 0, tzinfo=timezone.utc)
    assert end == datetime(2026, 3, 2, 18, 30, tzinfo=timezone.utc)


def test_hours_default_to_whole_days(client, gateway):
    client.get('/api/cache.php?start=2026-03-01&end=2026-03-01')
    start, end = gateway.resolve.call_args.args
    assert (start.hour, start.minute, end.hour, end.minute) == (0, 0, 23, 59)


def test_no_params_means_last_24_hours(client, gateway):
    client.get('/api/cache')
    start, end = gateway.resolve.call_args.args
    assert end - start == timedelta(hours=24)
    assert datetime.now(timezone.utc) - end < timedelta(minutes=2)


@pytest.mark.parametrize('query', [
    'start=2026-03-01&startHour=25:00&end=2026-03-02',
    'start=2026-03-01&end=yesterday',
    'start=2026-03-02&end=2026-03-01',
])
def test_malformed_params_are_400(client, gateway, query):
    resp = client.get('/api/cache?' + query)
    assert resp.status_code == 400
    body = resp.get_json()
    assert body['features'] == [] and body['error']
    gateway.resolve.assert_not_called()


def test_degraded_result_is_200_with_error(client, gateway):
    gateway.resolve.return_value = result(collection(error='Failed to fetch from source API'), error='HTTP 503', source='none')
    resp = client.get('/api/cache?start=2026-03-01&end=2026-03-01')
    assert resp.status_code == 200
    assert resp.get_json() == collection(error='Failed to fetch from source API')


def test_hard_failure_is_500(client, gateway):
    gateway.resolve.return_value = result(collection(error='Failed to fetch from source API'), hard=True, source='none')
    resp = client.get('/api/cache?start=2026-03-01&end=2026-03-01')
    assert resp.status_code == 500
    assert resp.get_json()['features'] == []


def test_jsonp(client):
    resp = client.get('/api/cache?start=2026-03-01&end=2026-03-01&callback=LSR.handle_1')
    assert resp.status_code == 200
    assert resp.mimetype == 'application/javascript'
    text = resp.get_data(as_text=True)
    assert text.startswith('LSR.handle_1(') and text.endswith(');')
    payload = json.loads(text[len('LSR.handle_1('):-2])
    assert len(payload['features']) == 1


def test_jsonp_error_framing(client):
    resp = client.get('/api/cache?start=2026-03-02&end=2026-03-01&callback=cb')
    assert resp.status_code == 400
    assert resp.get_data(as_text=True).startswith('cb(')


def test_bad_callback_is_rejected(client, gateway):
    resp = client.get('/api/cache?callback=alert(1)//')
    assert resp.status_code == 400
    gateway.resolve.assert_not_called()


def test_serves_snapshot_files(client, store):
    store.write(datetime(2026, 3, 1).date(), [make_report('2026-03-01T10:00:00Z')])
    resp = client.get('/data/reports-2026-03-01.geojson')
    assert resp.status_code == 200
    assert json.loads(resp.get_data(as_text=True))['type'] == 'FeatureCollection'
    assert resp.headers['Access-Control-Allow-Origin'] == '*'
    resp.close()


def test_missing_or_bad_snapshot_names_are_404(client):
    assert client.get('/data/reports-2026-03-02.geojson').status_code == 404
    assert client.get('/data/passwd').status_code == 404
    assert client.get('/data/reports-2026-3-2.geojson').status_code == 404
