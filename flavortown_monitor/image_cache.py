"""
Image cache
===========
Maps an Active Storage blob id to the CDN URL the image was rehosted at.
Each blob is uploaded at most once, across items and across runs.

Loaded once per run and flushed once at the end, in the same spirit as the
other per-cycle state managers.
"""

import asyncio
import json
import logging
from collections import defaultdict
from typing import Dict

from .errors import EncodingError
from .storage import FileStore


logger = logging.getLogger(__name__)

CACHE_KEY = "image_cache.json"


class ImageCache:
    def __init__(self, store: FileStore, uploader, key: str = CACHE_KEY):
        self.store = store
        self.uploader = uploader
        self.key = key
        self.data: Dict[int, str] = {}
        self.dirty = False
        self._locks: Dict[int, asyncio.Lock] = defaultdict(asyncio.Lock)

    def load(self):
        """Load the cache from storage"""
        raw = self.store.get(self.key)
        if raw is None:
            self.data = {}
        else:
            try:
                self.data = {int(blob_id): url for blob_id, url in json.loads(raw.decode('utf-8')).items()}
            except (UnicodeDecodeError, json.JSONDecodeError, AttributeError, ValueError) as e:
                raise EncodingError(f"unreadable image cache {self.key}: {e!r}") from e
        self.dirty = False
        logger.info(f"Loaded image cache: {len(self.data)} images")

    def flush(self):
        """Write the cache back to storage (only if modified)"""
        if not self.dirty:
            return
        payload = {str(blob_id): url for blob_id, url in sorted(self.data.items())}
        self.store.put(self.key, json.dumps(payload, indent=2).encode('utf-8'))
        self.dirty = False
        logger.info(f"Saved image cache: {len(self.data)} images")

    async def resolve(self, origin_id: int, origin_url: str) -> str:
        cached = self.data.get(origin_id)
        if cached is not None:
            return cached

        async with self._locks[origin_id]:
            # Another task may have uploaded it while we waited
            cached = self.data.get(origin_id)
            if cached is not None:
                return cached
            cdn_url = await self.uploader.upload(origin_url)
            self.data[origin_id] = cdn_url
            self.dirty = True
            return cdn_url
