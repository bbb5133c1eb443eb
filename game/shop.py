"""Trail shop: purchase and equip requests."""
import logging
from dataclasses import dataclass, asdict
from typing import Any, Dict, Iterable, List, Optional, Tuple

from game.economy import BalanceStore
from game.inventory import InventoryStore


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ShopItem:
    """One purchasable trail."""
    id: str
    name: str
    cost: int
    color: Tuple[int, int, int]

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> 'ShopItem':
        return ShopItem(
            id=data['id'],
            name=data.get('name', data['id']),
            cost=int(data.get('cost', 0)),
            color=tuple(data.get('color', (255, 255, 255))),
        )

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['color'] = list(self.color)
        return data


class ShopService:
    """Validates requests against the catalog, balance and inventory.

    Invalid requests (unknown item, already owned, not enough coins,
    equipping something not owned) change nothing.
    """

    def __init__(self, items: Iterable[Dict[str, Any]], economy: BalanceStore,
                 inventory: InventoryStore):
        self._items = {}
        for entry in items:
            item = ShopItem.from_dict(entry)
            self._items[item.id] = item
        self.economy = economy
        self.inventory = inventory

    def catalog(self) -> List[ShopItem]:
        return list(self._items.values())

    def find(self, item_id: str) -> Optional[ShopItem]:
        return self._items.get(item_id)

    def purchase(self, identity: str, item_id: str) -> bool:
        """Buy an item with coins.

        Args:
            identity: Buyer identity
            item_id: Catalog id

        Returns:
            True if the item was bought. Unknown, already owned or
            unaffordable items return False and change nothing.
        """
        item = self.find(item_id)
        if item is None:
            return False
        if self.inventory.has_item(identity, item_id):
            return False
        if not self.economy.try_spend(identity, item.cost):
            return False
        self.inventory.add_item(identity, item_id)
        logger.info("%s bought %s for %d", identity, item_id, item.cost)
        return True

    def equip(self, identity: str, item_id: str) -> Optional[ShopItem]:
        """Return the equipped item, or None if the request was invalid."""
        item = self.find(item_id)
        if item is None or not self.inventory.equip(identity, item_id):
            return None
        return item
