"""Report normalization: identity and issue timestamp of an LSR feature.

A report is a GeoJSON Feature whose `properties` carry the upstream fields
(`valid`, `lat`, `lon`, `type`/`rtype`, `magnitude`, `typetext`, `city`,
`county`, `state`, `remark`, ...).
"""
from __future__ import annotations

import hashlib
from datetime import datetime
from typing import Any, Dict, Optional

import pandas as pd

IDENTITY_FIELDS = ('valid', 'lat', 'lon', 'type', 'magnitude')


def _props(feature: Any) -> Optional[Dict[str, Any]]:
    if not isinstance(feature, dict):
        return None
    props = feature.get('properties')
    return props if isinstance(props, dict) else None


def report_identity(feature: Any) -> Optional[str]:
    """SHA-256 over valid|lat|lon|type|magnitude, or None if any is missing.

    `rtype` stands in for `type` when the feed uses that name. A null value
    counts as missing; an empty string does not.
    """
    props = _props(feature)
    if props is None:
        return None
    parts = []
    for name in IDENTITY_FIELDS:
        value = props.get(name)
        if value is None and name == 'type':
            value = props.get('rtype')
        if value is None:
            return None
        parts.append(str(value))
    return hashlib.sha256('|'.join(parts).encode('utf-8')).hexdigest()


def parse_timestamp(raw: Any) -> Optional[datetime]:
    if raw is None or not isinstance(raw, str) or not raw.strip():
        return None
    ts = pd.to_datetime(raw.strip(), utc=True, errors='coerce')
    if ts is None or pd.isna(ts):
        return None
    return ts.to_pydatetime()


def report_timestamp(feature: Any) -> Optional[datetime]:
    """Issue time (`properties.valid`) as aware UTC datetime, None if absent/unparseable."""
    props = _props(feature)
    if props is None:
        return None
    return parse_timestamp(props.get('valid'))


def in_time_range(feature: Any, start: datetime, end: datetime) -> bool:
    # Reports without a usable timestamp are always kept
    ts = report_timestamp(feature)
    if ts is None:
        return True
    return start <= ts <= end
