"""Snapshot updater: fetch a UTC day from upstream and merge it into its snapshot.

Days are processed one at a time from a work queue with a fixed pause
between upstream requests.
"""
from __future__ import annotations

import logging
import time
from collections import deque
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional

from lsr_config import UPDATE_DELAY_S
from lsr_errors import EgressBlocked, LSRError, NetworkError, RequestTimeout
from lsr_time import day_bounds
from reports import report_identity
from snapshot_store import SnapshotStore

log = logging.getLogger('lsr.updater')

SNAPSHOT_IO_ERROR = 'IO'


class RateLimiter:
    def __init__(
        self,
        min_interval_s: float,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.min_interval_s = float(min_interval_s)
        self._clock = clock
        self._sleep = sleep
        self._last_ts: Optional[float] = None

    def wait(self) -> None:
        now = self._clock()
        if self._last_ts is not None:
            elapsed = now - self._last_ts
            if elapsed < self.min_interval_s:
                self._sleep(self.min_interval_s - elapsed)
        self._last_ts = self._clock()


@dataclass
class DayResult:
    day: date
    reports_written: int = 0
    error: Optional[str] = None
    error_kind: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class RangeResult:
    results: List[DayResult] = field(default_factory=list)

    @property
    def total_reports(self) -> int:
        return sum(r.reports_written for r in self.results)

    @property
    def failed(self) -> List[DayResult]:
        return [r for r in self.results if not r.ok]

    def summary(self) -> Dict[str, Any]:
        return {
            'days': len(self.results),
            'ok': len(self.results) - len(self.failed),
            'failed': len(self.failed),
            'total_reports': self.total_reports,
            'per_day': [
                {'day': r.day.isoformat(), 'reports': r.reports_written, 'error': r.error}
                for r in self.results
            ],
        }


def merge_features(existing: Iterable[Dict[str, Any]], incoming: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Merge by report identity; incoming wins, identity-less reports are appended.

    An overwritten report keeps the position of the report it replaces.
    """
    merged: List[Dict[str, Any]] = []
    index: Dict[str, int] = {}
    for batch in (existing, incoming):
        for feature in batch:
            rid = report_identity(feature)
            if rid is None:
                merged.append(feature)
            elif rid in index:
                merged[index[rid]] = feature
            else:
                index[rid] = len(merged)
                merged.append(feature)
    return merged


class SnapshotUpdater:
    def __init__(self, store: SnapshotStore, source: Any, limiter: Optional[RateLimiter] = None):
        """`source` is anything with `fetch(start, end) -> FeatureCollection dict` (LSRSourceClient)."""
        self.store = store
        self.source = source
        self.limiter = limiter or RateLimiter(UPDATE_DELAY_S)

    def update_day(self, day: date) -> DayResult:
        bounds = day_bounds(day)
        log.info('[UPDATE] fetching %s', day.isoformat())
        try:
            data = self.source.fetch(bounds.start, bounds.end)
        except LSRError as e:
            log.error('[UPDATE] %s failed: %s', day.isoformat(), e)
            return DayResult(day, error=str(e), error_kind=e.kind)

        # An unreadable snapshot fails the day; merging into [] would drop its reports
        try:
            existing = self.store.load_features(day)
            merged = merge_features(existing, data['features'])
            self.store.write(day, merged)
        except (OSError, ValueError) as e:
            log.error('[UPDATE] %s snapshot left untouched: %s', day.isoformat(), e)
            return DayResult(day, error=str(e), error_kind=SNAPSHOT_IO_ERROR)
        log.info('[UPDATE] %s: %d reports saved (%d existing, %d incoming)',
                 day.isoformat(), len(merged), len(existing), len(data['features']))
        return DayResult(day, reports_written=len(merged))

    def iter_updates(self, days: Iterable[date]) -> Iterator[DayResult]:
        queue = deque(days)
        while queue:
            day = queue.popleft()
            self.limiter.wait()
            yield self.update_day(day)

    def update_days(self, days: Iterable[date]) -> RangeResult:
        result = RangeResult()
        for r in self.iter_updates(days):
            result.results.append(r)
        log.info('[UPDATE] total %d reports across %d days (%d failed)',
                 result.total_reports, len(result.results), len(result.failed))
        return result

    def update_range(self, start: date, end: date) -> RangeResult:
        days = []
        d = start
        while d <= end:
            days.append(d)
            d += timedelta(days=1)
        return self.update_days(days)


def no_network_path(result: RangeResult) -> bool:
    """True when every attempted day failed for lack of a usable network path."""
    if not result.results:
        return False
    kinds = {NetworkError.kind, RequestTimeout.kind, EgressBlocked.kind}
    return all(r.error_kind in kinds for r in result.results)
