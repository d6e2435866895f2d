#!/usr/bin/env python3
"""Delete snapshots older than the retention window.

Usage:
  python project/offline/cleanup_cache.py              # keep LSR_CACHE_DAYS (30)
  python project/offline/cleanup_cache.py --days 14 --dry-run
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import List, Optional

_BACKEND_DIR = Path(__file__).resolve().parents[1] / "backend"
if str(_BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(_BACKEND_DIR))

from lsr_config import Settings  # type: ignore
from lsr_service import build_store  # type: ignore
from lsr_time import utc_now  # type: ignore

log = logging.getLogger("lsr.cleanup_cache")


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Remove expired LSR snapshots")
    p.add_argument("--days", type=int, default=None, help="Retention in days (default LSR_CACHE_DAYS)")
    p.add_argument("--dry-run", action="store_true", help="List what would be deleted without deleting")
    args = p.parse_args(argv)
    if args.days is not None and args.days < 0:
        p.error("--days must be >= 0")
    return args


def main(argv: Optional[List[str]] = None) -> int:
    logging.basicConfig(level=logging.INFO, format='[%(levelname)s] %(message)s')
    args = parse_args(argv)
    settings = Settings.from_env()
    retention = settings.cache_days if args.days is None else args.days
    summary = build_store(settings).cleanup(retention, utc_now().date(), dry_run=args.dry_run)
    log.info("[CLEANUP] cutoff %s: %d deleted, %d kept", summary["cutoff"], len(summary["deleted"]), summary["kept"])
    print(json.dumps(summary, indent=2))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
