"""
Region crawler
==============
One pass over the shop for a single region:

1. PATCH the active region (CSRF protected)
2. Fetch /shop and check the page agrees on the active region
3. Extract every item card
4. Fetch every item's order page concurrently for long description,
   stock and accessories

Any missing element or unparseable number aborts the run.
"""

import asyncio
import logging
import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple
from urllib.parse import parse_qs, urljoin, urlparse

from .config import Settings
from .errors import ExtractionError, RegionMismatchError
from .models import Region
from .page_source import HtmlNode


logger = logging.getLogger(__name__)

CSRF_SELECTOR = 'meta[name="csrf-token"]'
CURRENT_REGION_SELECTOR = 'select[name="region"] option[selected]'

CARD_SELECTOR = '.shop-item-card'
TITLE_SELECTOR = 'h4'
DESCRIPTION_SELECTOR = 'p.shop-item-card__description'
PRICE_SELECTOR = 'span.shop-item-card__price'
IMAGE_SELECTOR = 'div.shop-item-card__image > img'
ORDER_LINK_SELECTOR = 'div.shop-item-card__order-button > a.btn'

LONG_DESCRIPTION_SELECTOR = '.shop-order__description'
STOCK_SELECTOR = '.shop-order__stock'
ACCESSORY_SELECTOR = '.shop-order__accessory'
ACCESSORY_NAME_SELECTOR = '.shop-order__accessory-name'
ACCESSORY_PRICE_SELECTOR = '.shop-order__accessory-price'

OUT_OF_STOCK_RE = re.compile(r'out\s+of\s+stock', re.I)
DIGITS_RE = re.compile(r'[0-9]+')


@dataclass
class RawItem:
    """One item card as listed for a single region"""
    id: int
    title: str
    description: str
    price: int
    image_url: str


@dataclass
class RawAccessory:
    id: int
    name: str
    price: int


@dataclass
class ItemDetail:
    """Order page data for one item in one region"""
    long_description: Optional[str] = None
    remaining_stock: Optional[int] = None
    accessories: List[RawAccessory] = field(default_factory=list)


@dataclass
class RegionResult:
    region: Region
    items: List[RawItem]
    details: Dict[int, ItemDetail]


def parse_price(text: str) -> int:
    """Digits only: '1,250 shells' -> 1250"""
    digits = ''.join(DIGITS_RE.findall(text))
    if not digits:
        raise ExtractionError(f"can't parse price from {text!r}")
    return int(digits)


def parse_stock(node: Optional[HtmlNode]) -> Optional[int]:
    """None when the page shows no stock indicator at all"""
    if node is None:
        return None
    text = node.text
    if OUT_OF_STOCK_RE.search(text):
        return 0
    match = DIGITS_RE.search(text)
    if not match:
        raise ExtractionError(f"can't parse stock from {text!r}")
    return int(match.group())


def extract_item_id(href: str) -> int:
    values = parse_qs(urlparse(href).query).get('shop_item_id')
    if not values:
        raise ExtractionError(f"can't find shop item id in {href!r}")
    try:
        return int(values[0])
    except ValueError:
        raise ExtractionError(f"can't parse shop item id in {href!r}") from None


def extract_csrf_token(page: HtmlNode) -> str:
    token = page.require(CSRF_SELECTOR).require_attr('content')
    if not token:
        raise ExtractionError("empty csrf-token")
    return token


def check_current_region(page: HtmlNode, region: Region) -> None:
    selected = page.find_one(CURRENT_REGION_SELECTOR)
    reported = selected.attr('value') if selected is not None else None
    if reported != region.code:
        raise RegionMismatchError(region.code, reported)


def parse_listing(page: HtmlNode, base_url: str) -> List[RawItem]:
    items = []
    for card in page.find_all(CARD_SELECTOR):
        href = card.require(ORDER_LINK_SELECTOR).require_attr('href')
        items.append(RawItem(
            id=extract_item_id(href),
            title=card.require(TITLE_SELECTOR).text,
            description=card.require(DESCRIPTION_SELECTOR).text,
            price=parse_price(card.require(PRICE_SELECTOR).text),
            image_url=urljoin(base_url, card.require(IMAGE_SELECTOR).require_attr('src')),
        ))
    return items


def parse_detail(page: HtmlNode) -> ItemDetail:
    long_description = page.find_one(LONG_DESCRIPTION_SELECTOR)

    accessories = []
    seen = set()
    for node in page.find_all(ACCESSORY_SELECTOR):
        raw_id = node.require_attr('data-accessory-id')
        try:
            accessory_id = int(raw_id)
        except ValueError:
            raise ExtractionError(f"can't parse accessory id {raw_id!r}") from None
        if accessory_id in seen:
            continue
        seen.add(accessory_id)
        accessories.append(RawAccessory(
            id=accessory_id,
            name=node.require(ACCESSORY_NAME_SELECTOR).text,
            price=parse_price(node.require(ACCESSORY_PRICE_SELECTOR).text),
        ))

    return ItemDetail(
        long_description=(long_description.text or None) if long_description is not None else None,
        remaining_stock=parse_stock(page.find_one(STOCK_SELECTOR)),
        accessories=accessories,
    )


class RegionCrawler:
    def __init__(self, page_source, settings: Settings):
        self.page_source = page_source
        self.settings = settings
        self.semaphore = asyncio.Semaphore(settings.max_concurrent_requests)

    async def fetch_csrf_token(self) -> str:
        page = await self.page_source.fetch(self.settings.url("shop"))
        return extract_csrf_token(page)

    async def _fetch_detail(self, item_id: int) -> Tuple[int, ItemDetail]:
        async with self.semaphore:
            page = await self.page_source.fetch(self.settings.url(f"shop/order?shop_item_id={item_id}"))
        return item_id, parse_detail(page)

    async def crawl(self, region: Region, csrf_token: str) -> RegionResult:
        await self.page_source.switch_region(region.code, csrf_token)

        page = await self.page_source.fetch(self.settings.url("shop"))
        check_current_region(page, region)
        items = parse_listing(page, self.settings.base_url)
        logger.info(f"{region}: {len(items)} items listed")

        # A card listed twice only needs one detail fetch
        item_ids = list(dict.fromkeys(item.id for item in items))
        results = await asyncio.gather(*(self._fetch_detail(item_id) for item_id in item_ids))
        return RegionResult(region=region, items=items, details=dict(results))
