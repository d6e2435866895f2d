"""Shared fixtures: backend on sys.path, fake HTTP session, report factory.

No test talks to the network; outbound calls go through FakeSession.
"""
import os
import sys
import tempfile
import threading
from datetime import date, datetime, timezone
from pathlib import Path

import pytest

# Snapshot dir for the module-level app, set before anything imports lsr_config
os.environ.setdefault('LSR_CACHE_DIR', tempfile.mkdtemp(prefix='lsr-test-'))

backend_dir = Path(__file__).resolve().parents[1] / 'backend'
if str(backend_dir) not in sys.path:
    sys.path.insert(0, str(backend_dir))

from snapshot_store import SnapshotStore  # noqa: E402

NOW = datetime(2026, 3, 15, 12, 0, tzinfo=timezone.utc)


class FakeResponse:
    def __init__(self, status_code=200, payload=None):
        self.status_code = status_code
        self._payload = payload
        self.closed = False

    def json(self):
        if isinstance(self._payload, Exception):
            raise self._payload
        return self._payload

    def close(self):
        self.closed = True


class FakeSession:
    """Replays queued responses; the last one repeats. Exceptions are raised."""

    def __init__(self, *responses, gate=None):
        self.responses = list(responses)
        self.calls = []
        self.entered = threading.Event()
        self.gate = gate
        self._lock = threading.Lock()

    def get(self, url, headers=None, timeout=None, stream=False, allow_redirects=True):
        with self._lock:
            self.calls.append({'url': url, 'headers': headers, 'timeout': timeout,
                               'allow_redirects': allow_redirects})
            item = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        self.entered.set()
        if self.gate is not None:
            self.gate.wait(5)
        if isinstance(item, Exception):
            raise item
        return item

    def close(self):
        pass


def collection(features=None, **extra):
    out = {'type': 'FeatureCollection', 'features': list(features or [])}
    out.update(extra)
    return out


def make_report(valid, lat=41.6, lon=-93.6, typ='H', magnitude=1.0, **props):
    p = {'valid': valid, 'lat': lat, 'lon': lon, 'type': typ, 'magnitude': magnitude,
         'typetext': 'HAIL', 'city': 'Ames', 'county': 'Story', 'state': 'IA'}
    p.update(props)
    return {'type': 'Feature', 'geometry': {'type': 'Point', 'coordinates': [lon, lat]}, 'properties': p}


@pytest.fixture
def store(tmp_path):
    return SnapshotStore(tmp_path / 'data')


@pytest.fixture
def day():
    return date(2026, 3, 1)
