"""Live upstream access: the LSR GeoJSON feed and a remote snapshot server.

Both go through a RequestManager, so they share its allowlist, retry policy
and de-duplication.
"""
from __future__ import annotations

import logging
import time
from datetime import datetime
from typing import Any, Dict, Optional
from urllib.parse import urlencode

from lsr_config import LIVE_TIMEOUT_S, SOURCE_API_URL, USER_AGENT
from lsr_errors import EgressBlocked, LSRError, UpstreamMalformed
from lsr_time import QueryRange, format_compact
from range_assembler import CacheError, CacheHit, CacheResult
from request_manager import RequestManager

log = logging.getLogger('lsr.upstream')


def _as_collection(payload: Any, source: str) -> Dict[str, Any]:
    if not isinstance(payload, dict) or not isinstance(payload.get('features'), list):
        raise UpstreamMalformed(f'{source} returned no FeatureCollection')
    out = dict(payload)
    out.setdefault('type', 'FeatureCollection')
    return out


class LSRSourceClient:
    def __init__(
        self,
        requests_mgr: RequestManager,
        base_url: str = SOURCE_API_URL,
        timeout_s: float = LIVE_TIMEOUT_S,
        user_agent: str = USER_AGENT,
    ):
        self.requests = requests_mgr
        self.base_url = base_url
        self.timeout_s = float(timeout_s)
        self.user_agent = user_agent

    def build_url(self, start: datetime, end: datetime) -> str:
        return f"{self.base_url}?sts={format_compact(start)}&ets={format_compact(end)}&wfos="

    def fetch(self, start: datetime, end: datetime) -> Dict[str, Any]:
        """Fetch reports issued in [start, end]; raises LSRError on failure."""
        url = self.build_url(start, end)
        t0 = time.time()
        payload = self.requests.fetch_json(
            url,
            headers={'User-Agent': self.user_agent, 'Accept': 'application/json'},
            timeout=self.timeout_s,
        )
        data = _as_collection(payload, 'Source API')
        log.info('[API] source %s reports=%d (%.0fms)', url, len(data['features']), (time.time() - t0) * 1000.0)
        return data


class ServerCacheClient:
    """Reads a snapshot server's read endpoint; same contract as RangeAssembler."""

    def __init__(self, requests_mgr: RequestManager, endpoint: str = 'api/cache', timeout_s: float = LIVE_TIMEOUT_S):
        self.requests = requests_mgr
        self.endpoint = endpoint
        self.timeout_s = float(timeout_s)

    def build_url(self, start: datetime, end: datetime) -> str:
        qr = QueryRange(start, end)
        params = {
            'start': qr.start.strftime('%Y-%m-%d'),
            'startHour': qr.start.strftime('%H:%M'),
            'end': qr.end.strftime('%Y-%m-%d'),
            'endHour': qr.end.strftime('%H:%M'),
        }
        return f"{self.endpoint}?{urlencode(params)}"

    def assemble(self, start: datetime, end: datetime) -> CacheResult:
        url = self.build_url(start, end)
        try:
            payload = self.requests.fetch_json(url, headers={'Accept': 'application/json'}, timeout=self.timeout_s)
            data = _as_collection(payload, 'Cache API')
        except EgressBlocked:
            raise
        except LSRError as e:
            return CacheError(f'cache server: {e}')
        error: Optional[str] = data.get('error')
        if error:
            return CacheError(f'cache server: {error}')
        return CacheHit(data)
