"""Structural diff between two catalogs."""

from dataclasses import dataclass, field
from typing import List, Tuple

from .models import Catalog, ShopItem


@dataclass
class ItemDiff:
    new_items: List[ShopItem] = field(default_factory=list)
    deleted_items: List[ShopItem] = field(default_factory=list)
    updated_items: List[Tuple[ShopItem, ShopItem]] = field(default_factory=list)

    def is_empty(self) -> bool:
        return not (self.new_items or self.deleted_items or self.updated_items)

    def summary(self) -> str:
        return f"{len(self.new_items)} new, {len(self.updated_items)} updated, {len(self.deleted_items)} removed"


def compute_diff(old_items: Catalog, new_items: Catalog) -> ItemDiff:
    """
    Added and updated items follow the order of new_items, removed items the
    order of old_items. Items that compare equal are left out.
    """
    old_map = {item.id: item for item in old_items}
    new_map = {item.id: item for item in new_items}

    diff = ItemDiff()
    for item in new_items:
        old_item = old_map.get(item.id)
        if old_item is None:
            diff.new_items.append(item)
        elif old_item != item:
            diff.updated_items.append((old_item, item))

    diff.deleted_items = [item for item in old_items if item.id not in new_map]
    return diff
