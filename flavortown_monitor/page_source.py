"""
Shop page access
================
PageSource talks HTTP to the shop through a shared aiohttp session and hands
back parsed pages as HtmlNode, a small typed wrapper around BeautifulSoup.
HtmlNode is the only place that touches BeautifulSoup objects directly.
"""

import asyncio
import logging
import random
from typing import List, Optional

import aiohttp
from bs4 import BeautifulSoup
from bs4.element import Tag

from .config import FETCH_RETRIES, RETRY_DELAY_MAX, RETRY_DELAY_MIN, Settings, get_headers
from .errors import ExtractionError, TransportError


logger = logging.getLogger(__name__)


class HtmlNode:
    """One element (or a whole document) queried by CSS selector"""

    def __init__(self, tag: Tag):
        self._tag = tag

    @classmethod
    def parse(cls, html: str) -> "HtmlNode":
        return cls(BeautifulSoup(html, 'html.parser'))

    def find_one(self, selector: str) -> Optional["HtmlNode"]:
        found = self._tag.select_one(selector)
        return HtmlNode(found) if found is not None else None

    def find_all(self, selector: str) -> List["HtmlNode"]:
        return [HtmlNode(tag) for tag in self._tag.select(selector)]

    def require(self, selector: str) -> "HtmlNode":
        found = self.find_one(selector)
        if found is None:
            raise ExtractionError(f"missing element: {selector}")
        return found

    def attr(self, name: str) -> Optional[str]:
        value = self._tag.get(name)
        if isinstance(value, list):
            return " ".join(value)
        return value

    def require_attr(self, name: str) -> str:
        value = self.attr(name)
        if value is None:
            raise ExtractionError(f"missing attribute {name!r} on <{self._tag.name}>")
        return value

    @property
    def text(self) -> str:
        # Collapse whitespace runs, keep spacing around inline tags
        return " ".join(self._tag.get_text().split())


class PageSource:
    """Fetches shop pages with the session cookie and switches the active region"""

    def __init__(self, session: aiohttp.ClientSession, settings: Settings):
        self.session = session
        self.settings = settings
        self.headers = get_headers(settings)
        self.timeout = aiohttp.ClientTimeout(total=settings.request_timeout)

    async def _request(self, method: str, url: str, action: str, **kwargs) -> str:
        """Send one request, retrying connection failures only. Any status >= 400 raises."""
        kwargs.setdefault("headers", self.headers)
        for attempt in range(FETCH_RETRIES):
            try:
                async with self.session.request(method, url, timeout=self.timeout, **kwargs) as response:
                    body = await response.text()
                    if response.status >= 400:
                        raise TransportError(action, response.status, body)
                    return body
            except (aiohttp.ClientConnectionError, asyncio.TimeoutError) as e:
                if attempt == FETCH_RETRIES - 1:
                    raise
                logger.warning(f"{action}: {e!r} (attempt {attempt + 1}), retrying")
                await asyncio.sleep(random.uniform(RETRY_DELAY_MIN, RETRY_DELAY_MAX))
        raise AssertionError("unreachable")

    async def fetch(self, url: str) -> HtmlNode:
        html = await self._request("GET", url, f"GET {url}")
        return HtmlNode.parse(html)

    async def switch_region(self, code: str, csrf_token: str) -> None:
        headers = {**self.headers, "X-CSRF-Token": csrf_token}
        await self._request(
            "PATCH",
            self.settings.url("shop/update_region"),
            f"switch region to {code}",
            headers=headers,
            data={"region": code},
            # Rails answers with a redirect back to the shop on success
            allow_redirects=False,
        )
        logger.info(f"Switched shop region to {code}")
