"""Ephemeral client cache: short-TTL, byte-bounded, in-process.

Entries are stored serialized, so every read hands back a fresh copy and the
size ceiling is measured in encoded bytes.
"""
from __future__ import annotations

import hashlib
import json
import logging
import math
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from lsr_config import CLIENT_CACHE_MAX_BYTES, CLIENT_CACHE_TTL_S

log = logging.getLogger('lsr.client_cache')

CACHE_PREFIX = 'lsr_cache_'
CLEANUP_FRACTION = 0.3


@dataclass
class _Entry:
    data: str
    stored_at: float
    ttl: float
    size: int


def generate_key(params: Dict[str, Any]) -> str:
    raw = json.dumps(params, sort_keys=True, default=str)
    return CACHE_PREFIX + hashlib.sha1(raw.encode('utf-8')).hexdigest()


class EphemeralCache:
    def __init__(
        self,
        max_bytes: int = CLIENT_CACHE_MAX_BYTES,
        default_ttl_s: float = CLIENT_CACHE_TTL_S,
        clock: Callable[[], float] = time.time,
    ):
        self.max_bytes = int(max_bytes)
        self.default_ttl_s = float(default_ttl_s)
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: Dict[str, _Entry] = {}
        self._size = 0

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    @property
    def size_bytes(self) -> int:
        with self._lock:
            return self._size

    def _expired(self, entry: _Entry, now: float) -> bool:
        return now - entry.stored_at > entry.ttl

    def _drop(self, key: str) -> None:
        entry = self._entries.pop(key, None)
        if entry is not None:
            self._size -= entry.size

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if self._expired(entry, self._clock()):
                self._drop(key)
                log.info('[CACHE] client entry expired key=%s', key)
                return None
            data = entry.data
        return json.loads(data)

    def set(self, key: str, value: Any, ttl: Optional[float] = None) -> bool:
        serialized = json.dumps(value, ensure_ascii=False)
        size = len(serialized.encode('utf-8'))
        if size > self.max_bytes:
            log.warning('[CACHE] client entry too large (%d bytes) key=%s', size, key)
            return False
        entry = _Entry(serialized, self._clock(), float(ttl if ttl is not None else self.default_ttl_s), size)
        with self._lock:
            self._drop(key)
            if self._size + size > self.max_bytes:
                self._cleanup_locked(incoming=size)
            self._entries[key] = entry
            self._size += size
        return True

    def remove(self, key: str) -> None:
        with self._lock:
            self._drop(key)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._size = 0

    def cleanup(self) -> None:
        with self._lock:
            self._cleanup_locked(incoming=0)

    def _cleanup_locked(self, incoming: int) -> None:
        now = self._clock()
        for key in [k for k, e in self._entries.items() if self._expired(e, now)]:
            self._drop(key)
        # Oldest 30% per round; repeated only while the ceiling is still exceeded
        while self._entries and self._size + incoming > self.max_bytes:
            by_age = sorted(self._entries.items(), key=lambda kv: kv[1].stored_at)
            n = math.ceil(len(by_age) * CLEANUP_FRACTION)
            for key, _ in by_age[:n]:
                self._drop(key)
            log.info('[CACHE] client cleanup evicted %d oldest entries (size=%d)', n, self._size)
