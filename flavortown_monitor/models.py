"""Shop data model and its JSON snapshot encoding."""

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional
from urllib.parse import urljoin

from .errors import EncodingError


class Region(Enum):
    """Shop regions, in the order they are crawled and rendered"""

    UNITED_STATES = ("US", "USA")
    EUROPE = ("EU", "Europe")
    UNITED_KINGDOM = ("UK", "UK")
    INDIA = ("IN", "India")
    CANADA = ("CA", "Canada")
    AUSTRALIA = ("AU", "Australia")
    GLOBAL = ("XX", "Global")

    @property
    def code(self) -> str:
        return self.value[0]

    @property
    def display(self) -> str:
        return self.value[1]

    def __str__(self) -> str:
        return self.display

    @classmethod
    def from_code(cls, code: str) -> "Region":
        for region in cls:
            if region.code == code:
                return region
        raise EncodingError(f"unknown region code: {code!r}")


ALL_REGIONS: List[Region] = list(Region)

Prices = Dict[Region, int]


@dataclass
class Accessory:
    id: int
    name: str
    prices: Prices = field(default_factory=dict)


@dataclass
class ShopItem:
    id: int
    title: str
    description: str
    image_url: str
    image_id: int
    prices: Prices = field(default_factory=dict)
    accessories: List[Accessory] = field(default_factory=list)
    long_description: Optional[str] = None
    remaining_stock: Optional[int] = None

    def buy_link(self, base_url: str) -> str:
        return urljoin(base_url, f"shop/order?shop_item_id={self.id}")


Catalog = List[ShopItem]


def sort_catalog(items) -> Catalog:
    """Canonical catalog order: ascending item id"""
    return sorted(items, key=lambda item: item.id)


def _prices_to_dict(prices: Prices) -> Dict[str, int]:
    return {region.code: prices[region] for region in ALL_REGIONS if region in prices}


def _prices_from_dict(raw: Dict[str, int]) -> Prices:
    prices = {}
    for code, price in raw.items():
        if not isinstance(price, int) or isinstance(price, bool) or price < 0:
            raise EncodingError(f"invalid price for region {code}: {price!r}")
        prices[Region.from_code(code)] = price
    return prices


def item_to_dict(item: ShopItem) -> dict:
    return {
        "id": item.id,
        "title": item.title,
        "description": item.description,
        "long_description": item.long_description,
        "image_url": item.image_url,
        "image_id": item.image_id,
        "prices": _prices_to_dict(item.prices),
        "remaining_stock": item.remaining_stock,
        "accessories": [
            {"id": acc.id, "name": acc.name, "prices": _prices_to_dict(acc.prices)}
            for acc in item.accessories
        ],
    }


def item_from_dict(data: dict) -> ShopItem:
    try:
        return ShopItem(
            id=int(data["id"]),
            title=data["title"],
            description=data["description"],
            long_description=data.get("long_description"),
            image_url=data["image_url"],
            image_id=int(data["image_id"]),
            prices=_prices_from_dict(data["prices"]),
            remaining_stock=data.get("remaining_stock"),
            accessories=[
                Accessory(id=int(acc["id"]), name=acc["name"], prices=_prices_from_dict(acc["prices"]))
                for acc in data.get("accessories", [])
            ],
        )
    except (KeyError, TypeError, ValueError) as e:
        raise EncodingError(f"malformed shop item record: {e!r}") from e


def catalog_to_json(catalog: Catalog) -> bytes:
    payload = {"items": [item_to_dict(item) for item in sort_catalog(catalog)]}
    return json.dumps(payload, indent=2, ensure_ascii=False).encode("utf-8")


def catalog_from_json(raw: bytes) -> Catalog:
    try:
        payload = json.loads(raw.decode("utf-8"))
        records = payload["items"]
    except (UnicodeDecodeError, json.JSONDecodeError, KeyError, TypeError) as e:
        raise EncodingError(f"unreadable catalog snapshot: {e}") from e
    return sort_catalog(item_from_dict(record) for record in records)
