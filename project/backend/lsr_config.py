"""Runtime configuration for the LSR snapshot cache.

Defaults live in module constants; `Settings.from_env()` applies overrides
from the environment.
"""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, TypeVar

log = logging.getLogger('lsr.config')

BASE_DIR = Path(__file__).resolve().parents[1]

CACHE_DIR = BASE_DIR / 'data'
CACHE_DAYS = 30  # ~12 MB, ~13,000 reports
SOURCE_API_URL = 'https://mesonet.agron.iastate.edu/geojson/lsr.php'
CACHE_FILE_PREFIX = 'reports-'
CACHE_FILE_EXT = '.geojson'

USER_AGENT = 'LSR-Update-Cache/1.0'
LIVE_TIMEOUT_S = 30.0
UPDATE_TIMEOUT_S = 60.0
UPDATE_DELAY_S = 0.5
REALTIME_HOURS = 24.0

CLIENT_CACHE_TTL_S = 5 * 60.0
CLIENT_CACHE_MAX_BYTES = 10 * 1024 * 1024

RETRY_MAX = 3
RETRY_BASE_DELAY_S = 1.0
RETRY_MAX_DELAY_S = 10.0

T = TypeVar('T')


def _env(name: str, default: T, cast: Callable[[str], T]) -> T:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return cast(raw.strip())
    except ValueError:
        log.warning('[CONFIG] invalid %s=%r; using default %r', name, raw, default)
        return default


@dataclass(frozen=True)
class Settings:
    cache_dir: Path = CACHE_DIR
    cache_days: int = CACHE_DAYS
    source_api_url: str = SOURCE_API_URL
    file_prefix: str = CACHE_FILE_PREFIX
    file_ext: str = CACHE_FILE_EXT
    user_agent: str = USER_AGENT
    live_timeout_s: float = LIVE_TIMEOUT_S
    update_timeout_s: float = UPDATE_TIMEOUT_S
    update_delay_s: float = UPDATE_DELAY_S
    realtime_hours: float = REALTIME_HOURS
    client_cache_ttl_s: float = CLIENT_CACHE_TTL_S
    client_cache_max_bytes: int = CLIENT_CACHE_MAX_BYTES
    port: int = 5000

    @staticmethod
    def from_env() -> 'Settings':
        cache_dir = _env('LSR_CACHE_DIR', CACHE_DIR, lambda s: Path(s).expanduser())
        cache_days = _env('LSR_CACHE_DAYS', CACHE_DAYS, int)
        if cache_days < 1:
            log.warning('[CONFIG] LSR_CACHE_DAYS must be >= 1; using %d', CACHE_DAYS)
            cache_days = CACHE_DAYS
        return Settings(
            cache_dir=cache_dir,
            cache_days=cache_days,
            source_api_url=_env('LSR_SOURCE_API_URL', SOURCE_API_URL, str),
            live_timeout_s=_env('LSR_LIVE_TIMEOUT_S', LIVE_TIMEOUT_S, float),
            update_timeout_s=_env('LSR_UPDATE_TIMEOUT_S', UPDATE_TIMEOUT_S, float),
            update_delay_s=_env('LSR_UPDATE_DELAY_S', UPDATE_DELAY_S, float),
            realtime_hours=_env('LSR_REALTIME_HOURS', REALTIME_HOURS, float),
            client_cache_ttl_s=_env('LSR_CLIENT_CACHE_TTL_S', CLIENT_CACHE_TTL_S, float),
            client_cache_max_bytes=_env('LSR_CLIENT_CACHE_MAX_BYTES', CLIENT_CACHE_MAX_BYTES, int),
            port=_env('PORT', 5000, int),
        )
