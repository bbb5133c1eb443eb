"""Owned cosmetic items and the equipped trail."""
from typing import List, Optional

from game.store import JsonStore


class InventoryStore:
    """Per-identity list of owned item ids, in purchase order."""

    def __init__(self, owned: Optional[JsonStore] = None, equipped: Optional[JsonStore] = None):
        self._owned = owned or JsonStore()
        self._equipped = equipped or JsonStore()

    def list_items(self, identity: str) -> List[str]:
        """A copy; mutating it does not touch the store."""
        return list(self._owned.get(identity, []))

    def has_item(self, identity: str, item_id: str) -> bool:
        return item_id in self._owned.get(identity, [])

    def add_item(self, identity: str, item_id: str) -> bool:
        if self.has_item(identity, item_id):
            return False
        self._owned.set(identity, self.list_items(identity) + [item_id])
        return True

    def equip(self, identity: str, item_id: str) -> bool:
        if not self.has_item(identity, item_id):
            return False
        self._equipped.set(identity, item_id)
        return True

    def equipped(self, identity: str) -> Optional[str]:
        return self._equipped.get(identity)
