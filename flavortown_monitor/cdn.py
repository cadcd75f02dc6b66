"""Rehosting shop images on the Hack Club CDN."""

import asyncio
import json
import logging
import random

import aiohttp

from .config import FETCH_RETRIES, RETRY_DELAY_MAX, RETRY_DELAY_MIN, Settings
from .errors import TransportError


logger = logging.getLogger(__name__)


def _cdn_url_from_body(body: str):
    try:
        data = json.loads(body)
    except json.JSONDecodeError:
        return None
    if not isinstance(data, dict):
        return None
    return data.get("url") or data.get("deployedUrl")


class CdnClient:
    def __init__(self, session: aiohttp.ClientSession, settings: Settings):
        self.session = session
        self.endpoint = settings.cdn_base_url
        self.headers = {"Authorization": f"Bearer {settings.cdn_key}"}
        self.timeout = aiohttp.ClientTimeout(total=settings.request_timeout)

    async def upload(self, asset_url: str) -> str:
        """Ask the CDN to copy asset_url and return the CDN URL it now lives at"""
        action = f"CDN upload of {asset_url}"
        for attempt in range(FETCH_RETRIES):
            try:
                async with self.session.post(self.endpoint, json={"url": asset_url},
                                             headers=self.headers, timeout=self.timeout) as response:
                    status = response.status
                    body = await response.text()
                break
            except (aiohttp.ClientConnectionError, asyncio.TimeoutError) as e:
                if attempt == FETCH_RETRIES - 1:
                    raise
                logger.warning(f"{action}: {e!r} (attempt {attempt + 1}), retrying")
                await asyncio.sleep(random.uniform(RETRY_DELAY_MIN, RETRY_DELAY_MAX))

        if status >= 300:
            raise TransportError(action, status, body)
        cdn_url = _cdn_url_from_body(body)
        if not cdn_url:
            raise TransportError(action, status, f"no CDN url in response: {body}")
        logger.info(f"Uploaded {asset_url} -> {cdn_url}")
        return cdn_url
