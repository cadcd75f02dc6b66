"""
Catalog merger
==============
Crawls every region one after the other (the active region is server-side
session state, so region passes can never overlap) and folds the results
into a single ShopItem per item id.
"""

import asyncio
import logging
from typing import Dict, Iterable, List

from .blobs import get_blob_id
from .crawler import ItemDetail, RegionCrawler, RegionResult
from .image_cache import ImageCache
from .models import ALL_REGIONS, Accessory, Catalog, Region, ShopItem, sort_catalog


logger = logging.getLogger(__name__)


def merge_detail(item: ShopItem, region: Region, detail: ItemDetail) -> None:
    """First non-empty long description and stock win; accessory prices accumulate per region."""
    if not item.long_description and detail.long_description:
        item.long_description = detail.long_description
    if item.remaining_stock is None and detail.remaining_stock is not None:
        item.remaining_stock = detail.remaining_stock

    accessories = {accessory.id: accessory for accessory in item.accessories}
    for raw in detail.accessories:
        accessory = accessories.get(raw.id)
        if accessory is None:
            accessory = Accessory(id=raw.id, name=raw.name)
            accessories[raw.id] = accessory
            item.accessories.append(accessory)
        accessory.prices[region] = raw.price


def merge_region(items: Dict[int, ShopItem], result: RegionResult) -> None:
    region = result.region
    for raw in result.items:
        item = items.get(raw.id)
        if item is None:
            item = ShopItem(
                id=raw.id,
                title=raw.title,
                description=raw.description,
                image_url=raw.image_url,
                image_id=get_blob_id(raw.image_url),
            )
            items[raw.id] = item
        item.prices[region] = raw.price

        detail = result.details.get(raw.id)
        if detail is not None:
            merge_detail(item, region, detail)


async def resolve_images(items: Iterable[ShopItem], cache: ImageCache) -> None:
    items = list(items)
    urls = await asyncio.gather(*(cache.resolve(item.image_id, item.image_url) for item in items))
    for item, url in zip(items, urls):
        item.image_url = url


def finalize(items: Dict[int, ShopItem]) -> Catalog:
    for item in items.values():
        item.accessories.sort(key=lambda accessory: accessory.id)
    return sort_catalog(items.values())


class CatalogMerger:
    def __init__(self, crawler: RegionCrawler, image_cache: ImageCache, regions: List[Region] = None):
        self.crawler = crawler
        self.image_cache = image_cache
        self.regions = regions or ALL_REGIONS

    async def build_catalog(self) -> Catalog:
        csrf_token = await self.crawler.fetch_csrf_token()

        items: Dict[int, ShopItem] = {}
        for region in self.regions:
            result = await self.crawler.crawl(region, csrf_token)
            merge_region(items, result)
            logger.info(f"{region}: merged, {len(items)} distinct items so far")

        await resolve_images(items.values(), self.image_cache)
        catalog = finalize(items)
        logger.info(f"Catalog built: {len(catalog)} items across {len(self.regions)} regions")
        return catalog
