"""Coin balances, daily bonus and the coin board."""
import logging
from datetime import date
from typing import List, Optional, Tuple

from game.store import JsonStore


logger = logging.getLogger(__name__)

MAX_BOARD_SIZE = 25


class BalanceStore:
    """Per-identity coin balance.

    ``best`` keeps the highest balance ever seen per identity; the coin
    board ranks on it, so spending never drops anyone off the board.
    """

    def __init__(self, balances: Optional[JsonStore] = None, best: Optional[JsonStore] = None,
                 daily: Optional[JsonStore] = None):
        self._balances = balances or JsonStore()
        self._best = best or JsonStore()
        self._daily = daily or JsonStore()

    def get(self, identity: str) -> int:
        value = self._balances.get(identity, 0)
        return value if isinstance(value, int) else 0

    def award(self, identity: str, delta: int) -> int:
        """Add coins to a balance.

        Args:
            identity: Participant identity
            delta: Amount to add; may be negative

        Returns:
            The new balance, clamped at zero
        """
        balance = max(0, self.get(identity) + int(delta))
        self._balances.set(identity, balance)
        if balance > self._best.get(identity, 0):
            self._best.set(identity, balance)
        return balance

    def try_spend(self, identity: str, amount: int) -> bool:
        """Deduct ``amount`` if the balance covers it.

        Returns:
            True if the coins were spent, False with no change otherwise
        """
        balance = self.get(identity)
        if amount < 0 or balance < amount:
            return False
        self._balances.set(identity, balance - amount)
        return True

    def claim_daily_bonus(self, identity: str, amount: int, today: Optional[date] = None) -> int:
        """Credit ``amount`` once per calendar day.

        Args:
            identity: Participant identity
            amount: Bonus size
            today: Date to stamp; defaults to the local date

        Returns:
            The amount credited, or 0 if the bonus was already claimed today
        """
        stamp = (today or date.today()).isoformat()
        if self._daily.get(identity) == stamp:
            return 0
        self._daily.set(identity, stamp)
        self.award(identity, amount)
        logger.info("Daily bonus of %d for %s", amount, identity)
        return amount

    def top_coins(self, limit: int = 10) -> List[Tuple[str, int]]:
        limit = max(1, min(MAX_BOARD_SIZE, int(limit)))
        ranked = sorted(self._best.items(), key=lambda kv: (-kv[1], kv[0]))
        return ranked[:limit]
