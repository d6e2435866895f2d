"""UTC time helpers: query ranges, compact upstream stamps, day enumeration."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import List, Optional


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(dt: datetime) -> datetime:
    # Naive datetimes are taken to be UTC already
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


@dataclass(frozen=True)
class QueryRange:
    """Inclusive [start, end] instant interval, minute granularity, UTC."""
    start: datetime
    end: datetime

    def __post_init__(self) -> None:
        object.__setattr__(self, 'start', as_utc(self.start).replace(second=0, microsecond=0))
        object.__setattr__(self, 'end', as_utc(self.end).replace(second=0, microsecond=0))
        if self.start > self.end:
            raise ValueError(f'start {self.start.isoformat()} is after end {self.end.isoformat()}')

    def days(self) -> List[date]:
        return days_touched(self.start, self.end)

    def label(self) -> str:
        return f"{self.start:%Y-%m-%d %H:%M} -> {self.end:%Y-%m-%d %H:%M}"


def _parse_hour(raw: str) -> tuple[int, int]:
    s = str(raw).strip()
    if len(s) != 5 or s[2] != ':':
        raise ValueError(f"Invalid hour {raw!r}; expected HH:MM")
    hh, mm = int(s[:2]), int(s[3:])
    if not (0 <= hh <= 23 and 0 <= mm <= 59):
        raise ValueError(f"Invalid hour {raw!r}; expected HH:MM")
    return hh, mm


def parse_instant(day_raw: str, hour_raw: str) -> datetime:
    d = date.fromisoformat(str(day_raw).strip())
    hh, mm = _parse_hour(hour_raw)
    return datetime(d.year, d.month, d.day, hh, mm, tzinfo=timezone.utc)


def parse_query_range(
    start_date: Optional[str],
    start_hour: Optional[str],
    end_date: Optional[str],
    end_hour: Optional[str],
    now: Optional[datetime] = None,
) -> QueryRange:
    """Build a QueryRange from read-endpoint parameters.

    Missing start or end date means the last 24 hours ending now.
    Hours default to 00:00 (start) and 23:59 (end).
    """
    if not start_date or not end_date:
        end = as_utc(now or utc_now())
        return QueryRange(end - timedelta(hours=24), end)
    start = parse_instant(start_date, start_hour or '00:00')
    end = parse_instant(end_date, end_hour or '23:59')
    return QueryRange(start, end)


def format_compact(dt: datetime) -> str:
    """Upstream stamp: YYYYMMDDHHMM, no separators."""
    return as_utc(dt).strftime('%Y%m%d%H%M')


def day_bounds(day: date) -> QueryRange:
    start = datetime(day.year, day.month, day.day, 0, 0, tzinfo=timezone.utc)
    return QueryRange(start, start.replace(hour=23, minute=59))


def days_touched(start: datetime, end: datetime) -> List[date]:
    d0 = as_utc(start).date()
    d1 = as_utc(end).date()
    out: List[date] = []
    while d0 <= d1:
        out.append(d0)
        d0 += timedelta(days=1)
    return out


def yesterday_utc(now: Optional[datetime] = None) -> date:
    return (as_utc(now or utc_now()) - timedelta(days=1)).date()
