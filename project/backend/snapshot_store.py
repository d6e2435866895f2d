"""Daily snapshot store: one pretty-printed GeoJSON FeatureCollection per UTC day.

Files are named `<prefix>YYYY-MM-DD<ext>` (default `reports-2026-01-14.geojson`).
Writes go through a unique temp file + os.replace so readers never observe a
partially written snapshot. There is no locking: at most one updater may
write a given day at a time.
"""
from __future__ import annotations

import json
import logging
import os
import re
import tempfile
from datetime import date, timedelta
from pathlib import Path
from typing import Any, Dict, List, Optional

from lsr_config import CACHE_FILE_EXT, CACHE_FILE_PREFIX

log = logging.getLogger('lsr.snapshot')

SNAPSHOT_MODE = 0o644


def empty_collection() -> Dict[str, Any]:
    return {'type': 'FeatureCollection', 'features': []}


class SnapshotStore:
    def __init__(self, cache_dir: Path, prefix: str = CACHE_FILE_PREFIX, ext: str = CACHE_FILE_EXT):
        self.cache_dir = Path(cache_dir)
        self.prefix = prefix
        self.ext = ext
        self.cache_dir.mkdir(parents=True, exist_ok=True)
        self._name_re = re.compile(r'^' + re.escape(prefix) + r'(\d{4}-\d{2}-\d{2})' + re.escape(ext) + r'$')

    def filename(self, day: date) -> str:
        return f"{self.prefix}{day.isoformat()}{self.ext}"

    def path_for(self, day: date) -> Path:
        return self.cache_dir / self.filename(day)

    def exists(self, day: date) -> bool:
        return self.path_for(day).is_file()

    def day_from_name(self, name: str) -> Optional[date]:
        m = self._name_re.match(name)
        if not m:
            return None
        try:
            return date.fromisoformat(m.group(1))
        except ValueError:
            return None

    def load(self, day: date) -> Optional[Dict[str, Any]]:
        """Return the snapshot collection, or None if the file does not exist.

        Raises OSError / ValueError when the file exists but cannot be read or
        is not a FeatureCollection.
        """
        path = self.path_for(day)
        if not path.is_file():
            return None
        with open(path, 'r', encoding='utf-8') as f:
            data = json.load(f)
        if not isinstance(data, dict) or not isinstance(data.get('features'), list):
            raise ValueError(f'{path.name} is not a FeatureCollection')
        return data

    def load_features(self, day: date) -> List[Dict[str, Any]]:
        """Existing features for a day, empty when there is no snapshot yet.

        An unreadable snapshot raises like `load`; it is never taken as empty.
        """
        data = self.load(day)
        return list(data['features']) if data else []

    def write(self, day: date, features: List[Dict[str, Any]]) -> Path:
        path = self.path_for(day)
        payload = json.dumps({'type': 'FeatureCollection', 'features': features}, ensure_ascii=False, indent=2)
        if not payload.endswith('\n'):
            payload += '\n'

        fd = None
        tmp_name = None
        try:
            fd, tmp_name = tempfile.mkstemp(prefix=path.name + '.', suffix='.tmp', dir=str(self.cache_dir))
            with os.fdopen(fd, 'w', encoding='utf-8') as f:
                fd = None
                # mkstemp creates 0600; the read endpoint may run as another user
                os.fchmod(f.fileno(), SNAPSHOT_MODE)
                f.write(payload)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, path)
            tmp_name = None
        finally:
            if fd is not None:
                os.close(fd)
            if tmp_name:
                Path(tmp_name).unlink(missing_ok=True)
        log.info('[CACHE] disk save %s (%d reports)', path.name, len(features))
        return path

    def list_days(self) -> List[date]:
        out = []
        for p in self.cache_dir.glob(f'{self.prefix}*{self.ext}'):
            d = self.day_from_name(p.name)
            if d is not None:
                out.append(d)
        return sorted(out)

    def cleanup(self, retention_days: int, today: date, dry_run: bool = False) -> Dict[str, Any]:
        """Delete snapshots whose date precedes `today - retention_days`."""
        cutoff = today - timedelta(days=int(retention_days))
        deleted: List[str] = []
        kept = 0
        for d in self.list_days():
            if d < cutoff:
                name = self.filename(d)
                if not dry_run:
                    self.path_for(d).unlink(missing_ok=True)
                deleted.append(name)
                log.info('[CLEANUP] %s %s', 'would delete' if dry_run else 'deleted', name)
            else:
                kept += 1
        return {'cutoff': cutoff.isoformat(), 'deleted': deleted, 'kept': kept, 'dry_run': bool(dry_run)}
