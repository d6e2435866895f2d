"""Assemble a time-windowed FeatureCollection from daily snapshots.

The result is three-valued so that "range is genuinely empty" (a hit with no
features) stays distinct from "a snapshot is missing" (a miss) and from "a
snapshot could not be read" (an error).
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Dict, List, Union

from lsr_time import QueryRange
from reports import in_time_range
from snapshot_store import SnapshotStore

log = logging.getLogger('lsr.assembler')


@dataclass
class CacheHit:
    collection: Dict[str, Any]


@dataclass
class CacheMiss:
    missing_days: List[date] = field(default_factory=list)

    @property
    def reason(self) -> str:
        days = ', '.join(d.isoformat() for d in self.missing_days)
        return f'missing snapshots: {days}' if days else 'cache unavailable'


@dataclass
class CacheError:
    reason: str


CacheResult = Union[CacheHit, CacheMiss, CacheError]


class RangeAssembler:
    def __init__(self, store: SnapshotStore):
        self.store = store

    def assemble(self, start: datetime, end: datetime) -> CacheResult:
        qr = QueryRange(start, end)
        days = qr.days()

        # All-or-nothing: a partial hit would silently under-report
        missing = [d for d in days if not self.store.exists(d)]
        if missing:
            log.info('[CACHE] miss %s (%d of %d days missing)', qr.label(), len(missing), len(days))
            return CacheMiss(missing)

        features: List[Dict[str, Any]] = []
        for d in days:
            try:
                data = self.store.load(d)
            except (OSError, ValueError) as e:
                log.warning('[CACHE] unreadable snapshot %s: %s', self.store.filename(d), e)
                return CacheError(f'unreadable snapshot {d.isoformat()}: {e}')
            if data is None:
                # Deleted between the existence pass and the read
                return CacheMiss([d])
            features.extend(f for f in data['features'] if in_time_range(f, qr.start, qr.end))

        log.info('[CACHE] hit %s days=%d reports=%d', qr.label(), len(days), len(features))
        return CacheHit({'type': 'FeatureCollection', 'features': features})
