"""RequestManager: egress-checked, de-duplicated, retrying JSON GETs.

- Egress allowlist checked before any socket is opened
- Pending request de-duplication (same URL + options share one call)
- Retry with exponential backoff + jitter on network/timeout/5xx (not 502/503)
- Cancellation per in-flight request
"""
from __future__ import annotations

import json
import logging
import random
import re
import threading
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Deque, Dict, List, Optional, Pattern, Union

import requests

from lsr_config import RETRY_BASE_DELAY_S, RETRY_MAX, RETRY_MAX_DELAY_S, SOURCE_API_URL
from lsr_errors import (
    EgressBlocked,
    LSRError,
    RequestCancelled,
    classify_exception,
    error_for_status,
)

log = logging.getLogger('lsr.requests')

ERROR_LOG_SIZE = 50


def default_allowed_patterns(source_api_url: str = SOURCE_API_URL) -> List[Pattern[str]]:
    return [
        # Own cache endpoints (relative)
        re.compile(r'^api/cache(\.php)?(\?.*)?$'),
        re.compile(r'^api/cleanup-cache\.php(\?.*)?$'),
        re.compile(r'^api/update-cache\.php(\?.*)?$'),
        # Own static snapshot files
        re.compile(r'^data/[a-zA-Z0-9_-]+\.geojson$'),
        # Upstream LSR feed
        re.compile(r'^' + re.escape(source_api_url) + r'(\?.*)?$'),
        # NWS products (alerts / PNS)
        re.compile(r'^https://api\.weather\.gov/products(/types/PNS|/[A-Za-z0-9-]+)?$'),
    ]


class CancelToken:
    def __init__(self) -> None:
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._response: Optional[requests.Response] = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def attach(self, response: requests.Response) -> None:
        with self._lock:
            self._response = response
        if self.cancelled:
            response.close()

    def cancel(self) -> None:
        self._event.set()
        with self._lock:
            resp = self._response
        if resp is not None:
            resp.close()

    def wait(self, seconds: float) -> bool:
        """Sleep up to `seconds`; True if cancelled meanwhile."""
        return self._event.wait(max(0.0, seconds))


@dataclass
class _Pending:
    event: threading.Event = field(default_factory=threading.Event)
    token: CancelToken = field(default_factory=CancelToken)
    result: Any = None
    error: Optional[Exception] = None


class RequestManager:
    def __init__(
        self,
        session: Optional[requests.Session] = None,
        base_url: Optional[str] = None,
        allowed_patterns: Optional[List[Union[str, Pattern[str]]]] = None,
        max_retries: int = RETRY_MAX,
        base_delay_s: float = RETRY_BASE_DELAY_S,
        max_delay_s: float = RETRY_MAX_DELAY_S,
        default_timeout_s: float = 30.0,
        jitter: Optional[Callable[[], float]] = None,
    ):
        self.session = session or requests.Session()
        self.base_url = base_url.rstrip('/') + '/' if base_url else None
        patterns = allowed_patterns if allowed_patterns is not None else default_allowed_patterns()
        self.allowed_patterns: List[Pattern[str]] = [re.compile(p) if isinstance(p, str) else p for p in patterns]
        self.max_retries = int(max_retries)
        self.base_delay_s = float(base_delay_s)
        self.max_delay_s = float(max_delay_s)
        self.default_timeout_s = float(default_timeout_s)
        self._jitter = jitter or (lambda: random.uniform(0.0, 1.0))
        self._lock = threading.Lock()
        self._pending: Dict[str, _Pending] = {}
        self._errors: Deque[Dict[str, Any]] = deque(maxlen=ERROR_LOG_SIZE)

    # -------------------- egress allowlist --------------------
    def _relative(self, url: str) -> str:
        if self.base_url and url.startswith(self.base_url):
            return url[len(self.base_url):]
        return url[1:] if url.startswith('/') else url

    def is_url_allowed(self, url: str) -> bool:
        candidate = self._relative(str(url))
        return any(p.match(candidate) for p in self.allowed_patterns)

    def add_allowed_pattern(self, pattern: Union[str, Pattern[str]]) -> None:
        self.allowed_patterns.append(re.compile(pattern) if isinstance(pattern, str) else pattern)

    def _absolute(self, url: str) -> str:
        if re.match(r'^https?://', url):
            return url
        if not self.base_url:
            raise EgressBlocked(f'Relative URL without base_url: {url}')
        return self.base_url + self._relative(url)

    # -------------------- retry policy --------------------
    @staticmethod
    def request_key(url: str, options: Optional[Dict[str, Any]] = None) -> str:
        return f"{url}_{json.dumps(options or {}, sort_keys=True, default=str)}"

    def retry_delay(self, attempt: int) -> float:
        delay = min(self.base_delay_s * (2 ** attempt), self.max_delay_s)
        return delay + self._jitter()

    def should_retry(self, error: LSRError, attempt: int) -> bool:
        if attempt >= self.max_retries:
            return False
        return bool(error.retryable)

    # -------------------- error log --------------------
    def _record(self, error: LSRError, context: str) -> None:
        entry = {
            'timestamp': datetime.now(timezone.utc).isoformat(timespec='seconds'),
            'kind': error.kind,
            'message': str(error),
            'context': context,
        }
        with self._lock:
            self._errors.append(entry)
        log.warning('[API] %s: %s (%s)', context, error, error.kind)

    def get_error_log(self) -> List[Dict[str, Any]]:
        with self._lock:
            return list(self._errors)

    def clear_error_log(self) -> None:
        with self._lock:
            self._errors.clear()

    # -------------------- transport --------------------
    def _send_once(self, url: str, headers: Dict[str, str], timeout: float, token: CancelToken) -> Any:
        if token.cancelled:
            raise RequestCancelled(f'Request cancelled: {url}')
        resp = None
        try:
            # Redirects are not followed; a 3xx surfaces as HTTPStatusError
            resp = self.session.get(url, headers=headers, timeout=timeout, stream=True, allow_redirects=False)
            token.attach(resp)
            err = error_for_status(int(resp.status_code), url)
            if err is not None:
                raise err
            payload = resp.json()
        except Exception as e:
            if token.cancelled:
                raise RequestCancelled(f'Request cancelled: {url}') from e
            mapped = classify_exception(e)
            if mapped is None or mapped is e:
                raise
            raise mapped from e
        finally:
            if resp is not None:
                resp.close()
        if token.cancelled:
            raise RequestCancelled(f'Request cancelled: {url}')
        return payload

    def _fetch_with_retry(self, url: str, headers: Dict[str, str], timeout: float, token: CancelToken) -> Any:
        abs_url = self._absolute(url)
        attempt = 0
        while True:
            log.info('[API] start %s (attempt %d)', abs_url, attempt + 1)
            try:
                return self._send_once(abs_url, headers, timeout, token)
            except RequestCancelled:
                raise
            except LSRError as e:
                self._record(e, f'Request attempt {attempt + 1}')
                if not self.should_retry(e, attempt):
                    raise
                delay = self.retry_delay(attempt)
                log.warning('[API] retrying in %.2fs (attempt %d) url=%s', delay, attempt + 1, abs_url)
                if token.wait(delay):
                    raise RequestCancelled(f'Request cancelled: {url}')
                attempt += 1

    def fetch_json(self, url: str, headers: Optional[Dict[str, str]] = None, timeout: Optional[float] = None) -> Any:
        """GET `url` and return the decoded JSON body.

        Concurrent identical calls share one network call and its outcome.
        Raises an LSRError subclass on failure.
        """
        if not self.is_url_allowed(url):
            err = EgressBlocked(f'Request blocked: URL not in allowlist - {url}')
            self._record(err, 'Egress allowlist')
            raise err

        hdrs = dict(headers or {})
        t = float(timeout) if timeout is not None else self.default_timeout_s
        key = self.request_key(url, {'headers': hdrs, 'timeout': t})

        with self._lock:
            pending = self._pending.get(key)
            owner = pending is None
            if owner:
                pending = _Pending()
                self._pending[key] = pending
        if not owner:
            log.info('[QUEUE] duplicate wait url=%s', url)
            pending.event.wait()
            if pending.error is not None:
                raise pending.error
            return pending.result

        try:
            pending.result = self._fetch_with_retry(url, hdrs, t, pending.token)
        except Exception as e:
            pending.error = e
            raise
        finally:
            with self._lock:
                if self._pending.get(key) is pending:
                    del self._pending[key]
            pending.event.set()
        return pending.result

    # -------------------- cancellation --------------------
    def cancel(self, url: str, headers: Optional[Dict[str, str]] = None, timeout: Optional[float] = None) -> bool:
        t = float(timeout) if timeout is not None else self.default_timeout_s
        key = self.request_key(url, {'headers': dict(headers or {}), 'timeout': t})
        with self._lock:
            pending = self._pending.pop(key, None)
        if pending is None:
            return False
        pending.token.cancel()
        log.info('[API] cancelled %s', url)
        return True

    def cancel_all(self) -> int:
        with self._lock:
            items = list(self._pending.values())
            self._pending.clear()
        for p in items:
            p.token.cancel()
        return len(items)

    def pending_count(self) -> int:
        with self._lock:
            return len(self._pending)

    def close(self) -> None:
        self.cancel_all()
        self.session.close()
