"""Error taxonomy shared by the upstream client, request manager and gateway."""
from __future__ import annotations

from typing import Optional

import requests


class LSRError(Exception):
    kind = 'UNKNOWN'
    retryable = False

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class NetworkError(LSRError):
    kind = 'NETWORK'
    retryable = True


class RequestTimeout(LSRError):
    kind = 'TIMEOUT'
    retryable = True


class ServerError(LSRError):
    """5xx other than 502/503."""
    kind = 'SERVER'
    retryable = True


class UpstreamUnavailable(LSRError):
    """502/503: fail fast so the caller can fall back."""
    kind = 'UPSTREAM_UNAVAILABLE'


class HTTPStatusError(LSRError):
    kind = 'HTTP'


class UpstreamMalformed(LSRError):
    kind = 'UPSTREAM_MALFORMED'


class EgressBlocked(LSRError):
    kind = 'EGRESS_BLOCKED'


class RequestCancelled(LSRError):
    kind = 'CANCELLED'


def error_for_status(status: int, url: str) -> Optional[LSRError]:
    if 200 <= status < 300:
        return None
    msg = f'HTTP {status} for {url}'
    if status in (502, 503):
        return UpstreamUnavailable(msg, status=status)
    if status >= 500:
        return ServerError(msg, status=status)
    return HTTPStatusError(msg, status=status)


def classify_exception(exc: BaseException) -> Optional[LSRError]:
    """Map transport/parse exceptions onto the taxonomy.

    Returns None for exceptions that are not transport or parse failures;
    callers re-raise those unchanged.
    """
    if isinstance(exc, LSRError):
        return exc
    # ConnectTimeout is both a Timeout and a ConnectionError; treat it as a timeout.
    if isinstance(exc, requests.exceptions.Timeout):
        return RequestTimeout(f'Request timed out: {exc}')
    if isinstance(exc, requests.exceptions.JSONDecodeError):
        return UpstreamMalformed(f'Failed to parse response: {exc}')
    if isinstance(exc, requests.exceptions.RequestException):
        return NetworkError(f'Network error: {exc}')
    if isinstance(exc, ValueError):
        return UpstreamMalformed(f'Failed to parse response: {exc}')
    return None
