import threading
import time

import pytest
import requests

from conftest import FakeResponse, FakeSession, collection
from lsr_errors import (
    EgressBlocked,
    HTTPStatusError,
    NetworkError,
    RequestCancelled,
    RequestTimeout,
    ServerError,
    UpstreamMalformed,
    UpstreamUnavailable,
)
from request_manager import RequestManager, default_allowed_patterns

SOURCE = 'https://mesonet.agron.iastate.edu/geojson/lsr.php'
URL = SOURCE + '?sts=202603010000&ets=202603012359&wfos='


def manager(session, **kw):
    kw.setdefault('base_delay_s', 0.0)
    kw.setdefault('jitter', lambda: 0.0)
    return RequestManager(session=session, allowed_patterns=default_allowed_patterns(SOURCE), **kw)


def test_allowlist():
    mgr = manager(FakeSession(FakeResponse()), base_url='http://cache.local')
    assert mgr.is_url_allowed(URL)
    assert mgr.is_url_allowed('api/cache?start=2026-03-01')
    assert mgr.is_url_allowed('/api/cache.php')
    assert mgr.is_url_allowed('http://cache.local/data/reports-2026-03-01.geojson')
    assert mgr.is_url_allowed('https://api.weather.gov/products/types/PNS')
    assert not mgr.is_url_allowed('https://example.com/lsr.php')
    assert not mgr.is_url_allowed('data/../secrets.geojson')
    mgr.add_allowed_pattern(r'^https://example\.com/')
    assert mgr.is_url_allowed('https://example.com/lsr.php')


def test_blocked_url_never_reaches_the_network():
    session = FakeSession(FakeResponse(200, collection()))
    mgr = manager(session)
    with pytest.raises(EgressBlocked):
        mgr.fetch_json('https://example.com/steal')
    assert session.calls == []
    assert mgr.get_error_log()[-1]['kind'] == 'EGRESS_BLOCKED'
    mgr.clear_error_log()
    assert mgr.get_error_log() == []


def test_relative_url_needs_base_url():
    with pytest.raises(EgressBlocked):
        manager(FakeSession(FakeResponse())).fetch_json('api/cache')


def test_relative_url_is_joined_to_base_url():
    session = FakeSession(FakeResponse(200, collection()))
    manager(session, base_url='http://cache.local/').fetch_json('api/cache?start=2026-03-01')
    assert session.calls[0]['url'] == 'http://cache.local/api/cache?start=2026-03-01'


def test_success_passes_headers_and_timeout():
    resp = FakeResponse(200, collection())
    session = FakeSession(resp)
    assert manager(session).fetch_json(URL, headers={'User-Agent': 'x'}, timeout=12) == collection()
    assert session.calls == [{'url': URL, 'headers': {'User-Agent': 'x'}, 'timeout': 12.0, 'allow_redirects': False}]
    assert resp.closed


def test_retries_500_then_succeeds():
    session = FakeSession(FakeResponse(500), FakeResponse(500), FakeResponse(200, collection()))
    assert manager(session).fetch_json(URL) == collection()
    assert len(session.calls) == 3


def test_retries_stop_after_max():
    session = FakeSession(FakeResponse(500))
    mgr = manager(session)
    with pytest.raises(ServerError):
        mgr.fetch_json(URL)
    assert len(session.calls) == 4
    assert len(mgr.get_error_log()) == 4


@pytest.mark.parametrize('status', [502, 503])
def test_unavailable_fails_fast(status):
    session = FakeSession(FakeResponse(status))
    with pytest.raises(UpstreamUnavailable):
        manager(session).fetch_json(URL)
    assert len(session.calls) == 1


def test_client_errors_are_not_retried():
    session = FakeSession(FakeResponse(404))
    with pytest.raises(HTTPStatusError) as exc:
        manager(session).fetch_json(URL)
    assert exc.value.status == 404
    assert len(session.calls) == 1


def test_transport_errors_are_classified_and_retried():
    session = FakeSession(requests.exceptions.ConnectionError('refused'))
    with pytest.raises(NetworkError):
        manager(session, max_retries=1).fetch_json(URL)
    assert len(session.calls) == 2

    session = FakeSession(requests.exceptions.ReadTimeout('slow'), FakeResponse(200, collection()))
    assert manager(session).fetch_json(URL) == collection()

    session = FakeSession(requests.exceptions.ReadTimeout('slow'))
    with pytest.raises(RequestTimeout):
        manager(session, max_retries=0).fetch_json(URL)


def test_malformed_body_is_not_retried():
    session = FakeSession(FakeResponse(200, ValueError('Expecting value')))
    with pytest.raises(UpstreamMalformed):
        manager(session).fetch_json(URL)
    assert len(session.calls) == 1


@pytest.mark.parametrize('status', [301, 302, 307])
def test_redirects_are_not_followed(status):
    # An allowlisted host redirecting elsewhere must not open a second connection
    resp = FakeResponse(status, collection())
    resp.headers = {'Location': 'https://elsewhere.example/exfil'}
    session = FakeSession(resp)
    mgr = manager(session)
    assert not mgr.is_url_allowed('https://elsewhere.example/exfil')
    with pytest.raises(HTTPStatusError) as exc:
        mgr.fetch_json(URL)
    assert exc.value.status == status
    assert [c['url'] for c in session.calls] == [URL]
    assert session.calls[0]['allow_redirects'] is False


def test_backoff_delay():
    mgr = RequestManager(session=FakeSession(FakeResponse()), base_delay_s=1.0, max_delay_s=10.0, jitter=lambda: 0.25)
    assert [mgr.retry_delay(a) for a in range(5)] == [1.25, 2.25, 4.25, 8.25, 10.25]


def test_request_key_ignores_option_order():
    a = RequestManager.request_key(URL, {'headers': {'A': '1', 'B': '2'}, 'timeout': 30.0})
    b = RequestManager.request_key(URL, {'timeout': 30.0, 'headers': {'B': '2', 'A': '1'}})
    assert a == b


def test_concurrent_identical_requests_share_one_call():
    gate = threading.Event()
    session = FakeSession(FakeResponse(200, collection(n=1)), gate=gate)
    mgr = manager(session)
    results = []

    def worker():
        results.append(mgr.fetch_json(URL, timeout=5))

    threads = [threading.Thread(target=worker) for _ in range(5)]
    threads[0].start()
    assert session.entered.wait(5)
    for t in threads[1:]:
        t.start()
    time.sleep(0.2)
    assert mgr.pending_count() == 1
    gate.set()
    for t in threads:
        t.join(5)

    assert len(session.calls) == 1
    assert results == [collection(n=1)] * 5
    assert mgr.pending_count() == 0


def test_waiters_share_the_failure():
    gate = threading.Event()
    session = FakeSession(FakeResponse(503), gate=gate)
    mgr = manager(session)
    errors = []

    def worker():
        try:
            mgr.fetch_json(URL)
        except UpstreamUnavailable as e:
            errors.append(e)

    threads = [threading.Thread(target=worker) for _ in range(3)]
    threads[0].start()
    assert session.entered.wait(5)
    for t in threads[1:]:
        t.start()
    time.sleep(0.2)
    gate.set()
    for t in threads:
        t.join(5)
    assert len(session.calls) == 1
    assert len(errors) == 3


def test_cancel_interrupts_backoff():
    session = FakeSession(FakeResponse(500))
    mgr = manager(session, base_delay_s=30.0)
    outcome = []

    def worker():
        try:
            mgr.fetch_json(URL)
        except RequestCancelled as e:
            outcome.append(e)

    t = threading.Thread(target=worker)
    t.start()
    assert session.entered.wait(5)
    assert mgr.cancel(URL)
    t.join(5)
    assert not t.is_alive()
    assert len(outcome) == 1
    assert len(session.calls) == 1
    assert not mgr.cancel(URL)


def test_cancel_all_closes_in_flight_response():
    gate = threading.Event()
    resp = FakeResponse(200, collection())
    session = FakeSession(resp, gate=gate)
    mgr = manager(session)
    outcome = []

    def worker():
        try:
            mgr.fetch_json(URL)
        except RequestCancelled as e:
            outcome.append(e)

    t = threading.Thread(target=worker)
    t.start()
    assert session.entered.wait(5)
    assert mgr.cancel_all() == 1
    gate.set()
    t.join(5)
    assert len(outcome) == 1
    assert resp.closed
