"""Fallback gateway: decide cache vs live per query and degrade instead of raising.

Decision order (first match wins):
1. real-time: the query end lies within the last `realtime_hours` of now
   (end >= now - 24h) -> live
2. out of window: end < now - retention_days -> live, cache not consulted
3. otherwise try the cache; CacheMiss / CacheError -> live
"""
from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Optional, Protocol

from lsr_config import CACHE_DAYS, REALTIME_HOURS
from lsr_errors import EgressBlocked, LSRError, UpstreamUnavailable
from lsr_time import QueryRange, as_utc, utc_now
from range_assembler import CacheError, CacheHit, CacheMiss, CacheResult

log = logging.getLogger('lsr.gateway')


class QueryKind(str, enum.Enum):
    REALTIME = 'realtime'
    HISTORICAL_CACHED = 'historical_in_window'
    HISTORICAL_OUT_OF_WINDOW = 'historical_out_of_window'


class CacheSource(Protocol):
    def assemble(self, start: datetime, end: datetime) -> CacheResult: ...


class LiveSource(Protocol):
    def fetch(self, start: datetime, end: datetime) -> Dict[str, Any]: ...


@dataclass
class GatewayResult:
    collection: Dict[str, Any]
    source: str  # 'cache' | 'live' | 'none'
    kind: QueryKind
    reason: str
    error: Optional[str] = None
    hard_failure: bool = False

    @property
    def http_status(self) -> int:
        return 500 if self.hard_failure else 200


def _failed(message: str) -> Dict[str, Any]:
    return {'type': 'FeatureCollection', 'features': [], 'error': message}


class FallbackGateway:
    def __init__(
        self,
        cache: Optional[CacheSource],
        live: LiveSource,
        retention_days: int = CACHE_DAYS,
        realtime_hours: float = REALTIME_HOURS,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.cache = cache
        self.live = live
        self.retention_days = int(retention_days)
        self.realtime_hours = float(realtime_hours)
        self.clock = clock

    def classify(self, qr: QueryRange, now: Optional[datetime] = None) -> QueryKind:
        now = as_utc(now or self.clock())
        if qr.end >= now - timedelta(hours=self.realtime_hours):
            return QueryKind.REALTIME
        if qr.end < now - timedelta(days=self.retention_days):
            return QueryKind.HISTORICAL_OUT_OF_WINDOW
        return QueryKind.HISTORICAL_CACHED

    def resolve(self, start: datetime, end: datetime) -> GatewayResult:
        qr = QueryRange(start, end)
        kind = self.classify(qr)

        if kind is QueryKind.REALTIME:
            return self._live(qr, kind, f'Query ends within the last {self.realtime_hours:g} hours (real-time data needed)')
        if kind is QueryKind.HISTORICAL_OUT_OF_WINDOW:
            return self._live(qr, kind, f'Query older than {self.retention_days} days (outside cache window)')
        if self.cache is None:
            return self._live(qr, kind, 'No cache source configured')

        try:
            result = self.cache.assemble(qr.start, qr.end)
        except EgressBlocked as e:
            log.error('[GATEWAY] cache source blocked: %s', e)
            return GatewayResult(_failed(str(e)), 'none', kind, 'Cache source blocked by egress allowlist', error=str(e), hard_failure=True)

        if isinstance(result, CacheHit):
            log.info('[GATEWAY] %s served from cache (%d reports)', qr.label(), len(result.collection.get('features', [])))
            return GatewayResult(result.collection, 'cache', kind, f'Historical data within {self.retention_days}-day cache window')
        if isinstance(result, CacheMiss):
            return self._live(qr, kind, f'Cache miss ({result.reason})')
        if isinstance(result, CacheError):
            return self._live(qr, kind, f'Cache error ({result.reason})')
        raise TypeError(f'Unexpected cache result {result!r}')

    def _live(self, qr: QueryRange, kind: QueryKind, reason: str) -> GatewayResult:
        log.info('[GATEWAY] %s -> live: %s', qr.label(), reason)
        try:
            data = self.live.fetch(qr.start, qr.end)
        except LSRError as e:
            # Upstream-unavailable is a soft signal; everything else means no source was reachable
            hard = not isinstance(e, UpstreamUnavailable)
            log.error('[GATEWAY] live fetch failed (%s): %s', e.kind, e)
            return GatewayResult(
                _failed('Failed to fetch from source API'),
                'none',
                kind,
                f'{reason}; live fetch failed: {e}',
                error=str(e),
                hard_failure=hard,
            )
        return GatewayResult(data, 'live', kind, reason)
