"""LSRService: consumer entry point (ephemeral cache in front of the gateway)."""
from __future__ import annotations

import logging
import time
from datetime import datetime
from typing import Any, Dict, Optional

import requests

from client_cache import EphemeralCache, generate_key
from fallback_gateway import FallbackGateway
from lsr_config import Settings
from lsr_time import QueryRange, format_compact
from range_assembler import RangeAssembler
from request_manager import RequestManager, default_allowed_patterns
from snapshot_store import SnapshotStore
from upstream import LSRSourceClient, ServerCacheClient

log = logging.getLogger('lsr.service')


def build_request_manager(settings: Settings, session: Optional[requests.Session] = None, base_url: Optional[str] = None) -> RequestManager:
    return RequestManager(
        session=session,
        base_url=base_url,
        allowed_patterns=default_allowed_patterns(settings.source_api_url),
        default_timeout_s=settings.live_timeout_s,
    )


def build_source_client(settings: Settings, requests_mgr: RequestManager, timeout_s: Optional[float] = None) -> LSRSourceClient:
    return LSRSourceClient(
        requests_mgr,
        base_url=settings.source_api_url,
        timeout_s=timeout_s if timeout_s is not None else settings.live_timeout_s,
        user_agent=settings.user_agent,
    )


def build_store(settings: Settings) -> SnapshotStore:
    return SnapshotStore(settings.cache_dir, settings.file_prefix, settings.file_ext)


def build_gateway(settings: Settings, requests_mgr: RequestManager, cache_server: Optional[str] = None) -> FallbackGateway:
    """Gateway over the local snapshot store, or over a remote snapshot server
    when `cache_server` (a base URL) is given."""
    if cache_server:
        cache = ServerCacheClient(requests_mgr, timeout_s=settings.live_timeout_s)
    else:
        cache = RangeAssembler(build_store(settings))
    return FallbackGateway(
        cache,
        build_source_client(settings, requests_mgr),
        retention_days=settings.cache_days,
        realtime_hours=settings.realtime_hours,
    )


def build_service(settings: Optional[Settings] = None, cache_server: Optional[str] = None,
                  session: Optional[requests.Session] = None) -> 'LSRService':
    settings = settings or Settings.from_env()
    mgr = build_request_manager(settings, session=session, base_url=cache_server)
    cache = EphemeralCache(settings.client_cache_max_bytes, settings.client_cache_ttl_s)
    return LSRService(build_gateway(settings, mgr, cache_server=cache_server), cache)


class LSRService:
    def __init__(self, gateway: FallbackGateway, cache: EphemeralCache, ttl_s: Optional[float] = None):
        self.gateway = gateway
        self.cache = cache
        self.ttl_s = ttl_s

    def fetch_reports(self, start: datetime, end: datetime, use_cache: bool = True) -> Dict[str, Any]:
        """Return a FeatureCollection for [start, end].

        Failed lookups come back as an empty collection with an `error` string
        and are never cached.
        """
        qr = QueryRange(start, end)
        t0 = time.time()
        key = generate_key({'type': 'lsr', 'start': format_compact(qr.start), 'end': format_compact(qr.end)})

        if use_cache:
            cached = self.cache.get(key)
            if cached is not None:
                cached['_cached'] = True
                log.info('[CACHE] client hit %s reports=%d', qr.label(), len(cached.get('features', [])))
                return cached

        result = self.gateway.resolve(qr.start, qr.end)
        data = result.collection
        duration_ms = (time.time() - t0) * 1000.0
        log.info('[FETCH] source=%s %s reports=%d (%.0fms) reason=%s',
                 result.source, qr.label(), len(data.get('features', [])), duration_ms, result.reason)

        if result.error is None and isinstance(data.get('features'), list):
            self.cache.set(key, data, ttl=self.ttl_s)
        return data
