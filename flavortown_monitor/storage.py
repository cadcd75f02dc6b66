"""
On-disk state
=============
FileStore is a flat byte key/value store under the storage directory.
Writes go to a temp file first and are moved into place with os.replace,
so a crash never leaves a half-written record behind.

SnapshotStore keeps one JSON file per successful run and reads back the
newest one as the baseline for the next diff.
"""

import logging
import os
import tempfile
from datetime import datetime, timezone
from typing import List, Optional

from .models import Catalog, catalog_from_json, catalog_to_json


logger = logging.getLogger(__name__)

SNAPSHOT_PREFIX = "snapshots/"


class FileStore:
    def __init__(self, root: str):
        self.root = root
        os.makedirs(root, exist_ok=True)

    def _path(self, key: str) -> str:
        parts = [part for part in key.split('/') if part]
        if not parts or any(part in ('.', '..') for part in parts):
            raise ValueError(f"invalid storage key: {key!r}")
        return os.path.join(self.root, *parts)

    def get(self, key: str) -> Optional[bytes]:
        try:
            with open(self._path(key), 'rb') as f:
                return f.read()
        except FileNotFoundError:
            return None

    def put(self, key: str, data: bytes) -> None:
        path = self._path(key)
        directory = os.path.dirname(path)
        os.makedirs(directory, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=directory, prefix='.tmp-')
        try:
            with os.fdopen(fd, 'wb') as f:
                f.write(data)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise

    def keys(self, prefix: str = "") -> List[str]:
        """Sorted keys under a directory-style prefix such as 'snapshots/'"""
        directory = os.path.join(self.root, *[p for p in prefix.split('/') if p])
        if not os.path.isdir(directory):
            return []
        return sorted(
            prefix + name for name in os.listdir(directory)
            if not name.startswith('.') and os.path.isfile(os.path.join(directory, name))
        )

    def delete(self, key: str) -> None:
        try:
            os.remove(self._path(key))
        except FileNotFoundError:
            pass


class SnapshotStore:
    def __init__(self, store: FileStore, retention: int = 50):
        self.store = store
        self.retention = retention

    def load_latest(self) -> Optional[Catalog]:
        keys = self.store.keys(SNAPSHOT_PREFIX)
        if not keys:
            logger.info("No previous snapshot found")
            return None
        latest = keys[-1]
        catalog = catalog_from_json(self.store.get(latest))
        logger.info(f"Loaded snapshot {latest}: {len(catalog)} items")
        return catalog

    def write_new(self, catalog: Catalog, now: Optional[datetime] = None) -> str:
        now = now or datetime.now(timezone.utc)
        key = f"{SNAPSHOT_PREFIX}{now.strftime('%Y%m%dT%H%M%S%fZ')}.json"
        self.store.put(key, catalog_to_json(catalog))
        logger.info(f"Saved snapshot {key}: {len(catalog)} items")
        self.prune()
        return key

    def prune(self) -> int:
        """Drop the oldest snapshots beyond the retention count"""
        keys = self.store.keys(SNAPSHOT_PREFIX)
        stale = keys[:-self.retention] if len(keys) > self.retention else []
        for key in stale:
            self.store.delete(key)
        if stale:
            logger.info(f"Pruned {len(stale)} old snapshots")
        return len(stale)
