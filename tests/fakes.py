"""Shared test doubles: an in-memory shop whose pages depend on the last region switch."""

import asyncio
import base64
import json
from typing import Dict, List, Optional, Tuple
from urllib.parse import parse_qs, quote, urlparse

from flavortown_monitor.config import Settings
from flavortown_monitor.errors import TransportError
from flavortown_monitor.models import Accessory, Region, ShopItem
from flavortown_monitor.page_source import HtmlNode


BASE_URL = "https://flavortown.example/"
CSRF_TOKEN = "token-123"


def make_settings(**overrides) -> Settings:
    values = dict(
        cookie="_flavortown_session=abc",
        webhook_url="https://hooks.example/slack",
        base_url=BASE_URL,
        max_concurrent_requests=4,
    )
    values.update(overrides)
    return Settings(**values)


def blob_path(blob_id: int, filename: str = "image.png") -> str:
    payload = json.dumps({"_rails": {"data": blob_id, "pur": "blob_id"}}).encode()
    signed_id = quote(base64.b64encode(payload).decode(), safe="") + "--c0ffee"
    return f"/rails/active_storage/representations/redirect/{signed_id}/variant-key/{filename}"


def card_html(item_id: int, title: str, price: int, blob_id: int, description: str = "") -> str:
    return f"""
    <div class="shop-item-card">
      <div class="shop-item-card__image"><img src="{blob_path(blob_id)}" alt=""></div>
      <h4>{title}</h4>
      <p class="shop-item-card__description">{description}</p>
      <span class="shop-item-card__price">{price:,} shells</span>
      <div class="shop-item-card__order-button">
        <a class="btn" href="/shop/order?shop_item_id={item_id}">Order</a>
      </div>
    </div>"""


def shop_html(region_code: str, cards: List[str], csrf: str = CSRF_TOKEN) -> str:
    options = "".join(
        f'<option value="{r.code}"{" selected" if r.code == region_code else ""}>{r.display}</option>'
        for r in Region
    )
    return (
        f'<html><head><meta name="csrf-token" content="{csrf}"></head>'
        f'<body><select name="region">{options}</select>{"".join(cards)}</body></html>'
    )


def order_html(long_description: Optional[str] = None, stock: Optional[str] = None,
               accessories: List[Tuple[int, str, int]] = ()) -> str:
    parts = []
    if long_description is not None:
        parts.append(f'<div class="shop-order__description">{long_description}</div>')
    if stock is not None:
        parts.append(f'<p class="shop-order__stock">{stock}</p>')
    for accessory_id, name, price in accessories:
        parts.append(
            f'<label class="shop-order__accessory" data-accessory-id="{accessory_id}">'
            f'<span class="shop-order__accessory-name">{name}</span>'
            f'<span class="shop-order__accessory-price">{price} shells</span></label>'
        )
    return f'<html><body>{"".join(parts)}</body></html>'


def _card(card: dict) -> str:
    return card_html(card["id"], card["title"], card["price"], card["blob_id"], card.get("description", ""))


class FakeShop:
    """
    Page source double. listings maps region code -> card dicts
    (id, title, price, blob_id, description); details maps item id or
    (region code, item id) -> order page html.
    """

    def __init__(self, listings: Dict[str, List[dict]], details: Optional[dict] = None,
                 stuck_regions: Tuple[str, ...] = ()):
        self.listings = listings
        self.details = details or {}
        self.stuck_regions = stuck_regions
        self.region = "US"
        self.switches: List[str] = []
        self.fetched: List[str] = []

    async def switch_region(self, code: str, csrf_token: str) -> None:
        if csrf_token != CSRF_TOKEN:
            raise TransportError(f"switch region to {code}", 422, "invalid authenticity token")
        self.switches.append(code)
        if code not in self.stuck_regions:
            self.region = code

    async def fetch(self, url: str) -> HtmlNode:
        self.fetched.append(url)
        await asyncio.sleep(0)
        parsed = urlparse(url)
        if parsed.path == "/shop":
            cards = [_card(card) for card in self.listings.get(self.region, [])]
            return HtmlNode.parse(shop_html(self.region, cards))
        if parsed.path == "/shop/order":
            item_id = int(parse_qs(parsed.query)["shop_item_id"][0])
            html = self.details.get((self.region, item_id), self.details.get(item_id, order_html()))
            return HtmlNode.parse(html)
        raise TransportError(f"GET {url}", 404, "not found")


class FakeUploader:
    def __init__(self, fail_for: Tuple[str, ...] = ()):
        self.calls: List[str] = []
        self.fail_for = fail_for

    async def upload(self, asset_url: str) -> str:
        self.calls.append(asset_url)
        await asyncio.sleep(0)
        if asset_url in self.fail_for:
            raise TransportError(f"CDN upload of {asset_url}", 500, "boom")
        return f"https://cdn.example/{len(self.calls)}.png"


class RecordingNotifier:
    def __init__(self, fail_on: Optional[int] = None):
        self.sent = []
        self.fail_on = fail_on

    async def send(self, message) -> None:
        if self.fail_on is not None and len(self.sent) + 1 == self.fail_on:
            raise TransportError("webhook send", 400, "invalid_blocks")
        self.sent.append(message)


def make_item(item_id: int, title: str = "Item", prices: Optional[dict] = None, description: str = "",
              image_url: Optional[str] = None, accessories: Optional[List[Accessory]] = None,
              **kwargs) -> ShopItem:
    return ShopItem(
        id=item_id,
        title=title,
        description=description,
        image_url=image_url or f"https://cdn.example/{item_id}.png",
        image_id=item_id,
        prices=dict(prices) if prices is not None else {Region.UNITED_STATES: 10},
        accessories=accessories or [],
        **kwargs,
    )
