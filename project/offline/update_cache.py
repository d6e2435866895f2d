#!/usr/bin/env python3
"""Refresh daily LSR snapshots from the upstream feed.

Run once a day shortly after midnight UTC (e.g. cron `5 0 * * *`) so that
yesterday's snapshot is complete before the read endpoint needs it.

Usage:
  python project/offline/update_cache.py             # yesterday (UTC)
  python project/offline/update_cache.py --all       # whole retention window
  python project/offline/update_cache.py --days 7    # last 7 days
  python project/offline/update_cache.py --today     # today (testing only)
  python project/offline/update_cache.py --date 2026-01-14
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from datetime import date, datetime, timedelta
from pathlib import Path
from typing import List, Optional

# Allow running from repo root by adding `project/backend` to sys.path
_BACKEND_DIR = Path(__file__).resolve().parents[1] / "backend"
if str(_BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(_BACKEND_DIR))

from lsr_config import Settings  # type: ignore
from lsr_service import build_request_manager, build_source_client, build_store  # type: ignore
from lsr_time import as_utc, utc_now, yesterday_utc  # type: ignore
from snapshot_updater import RangeResult, RateLimiter, SnapshotUpdater, no_network_path  # type: ignore

log = logging.getLogger("lsr.update_cache")


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Update daily LSR snapshots")
    mode = p.add_mutually_exclusive_group()
    mode.add_argument("--all", action="store_true", help="Refresh the whole retention window ending today")
    mode.add_argument("--days", type=int, default=None, help="Refresh the last N days ending today")
    mode.add_argument("--today", action="store_true", help="Refresh today only (partial day, testing)")
    mode.add_argument("--date", type=date.fromisoformat, default=None, help="Refresh one day (YYYY-MM-DD)")
    args = p.parse_args(argv)
    if args.days is not None and args.days < 1:
        p.error("--days must be >= 1")
    return args


def target_days(args: argparse.Namespace, settings: Settings, now: Optional[datetime] = None) -> List[date]:
    today = as_utc(now or utc_now()).date()
    if args.date is not None:
        return [args.date]
    if args.today:
        return [today]
    if args.all or args.days is not None:
        n = settings.cache_days if args.all else int(args.days)
        return [today - timedelta(days=i) for i in range(n - 1, -1, -1)]
    return [yesterday_utc(now)]


def run(args: argparse.Namespace, settings: Settings, updater: Optional[SnapshotUpdater] = None,
        now: Optional[datetime] = None) -> RangeResult:
    if updater is None:
        mgr = build_request_manager(settings)
        source = build_source_client(settings, mgr, timeout_s=settings.update_timeout_s)
        updater = SnapshotUpdater(build_store(settings), source, RateLimiter(settings.update_delay_s))

    days = target_days(args, settings, now=now)
    log.info("[UPDATE] %d day(s): %s .. %s", len(days), days[0].isoformat(), days[-1].isoformat())
    return updater.update_days(days)


def main(argv: Optional[List[str]] = None) -> int:
    logging.basicConfig(level=logging.INFO, format='[%(levelname)s] %(message)s')
    args = parse_args(argv)
    settings = Settings.from_env()
    result = run(args, settings)
    print(json.dumps(result.summary(), indent=2))
    if no_network_path(result):
        log.error("[UPDATE] no usable network path to the source API")
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
