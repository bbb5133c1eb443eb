"""Win counts, titles and the wins board."""
from typing import Dict, Iterable, List, Optional, Tuple

from game.store import JsonStore


DEFAULT_TITLES = (
    {"name": "Legend", "min_wins": 50},
    {"name": "Pro", "min_wins": 20},
    {"name": "Runner", "min_wins": 5},
    {"name": "Rookie", "min_wins": 0},
)


def title_for(wins: int, titles: Iterable[Dict] = DEFAULT_TITLES) -> str:
    """Name of the highest threshold ``wins`` satisfies."""
    best = None
    for title in titles:
        threshold = title.get("min_wins", 0)
        if wins >= threshold and (best is None or threshold > best.get("min_wins", 0)):
            best = title
    return best["name"] if best else ""


class WinStore:
    """Per-identity win totals."""

    def __init__(self, store: Optional[JsonStore] = None):
        self._store = store or JsonStore()

    def record_win(self, identity: str) -> int:
        return self._store.update(identity, lambda n: (n or 0) + 1, default=0)

    def get_wins(self, identity: str) -> int:
        value = self._store.get(identity, 0)
        return value if isinstance(value, int) else 0

    def get_top_n(self, n: int = 10) -> List[Tuple[str, int]]:
        """Best ``n`` identities by wins, ties broken by identity."""
        ranked = sorted(self._store.items(), key=lambda kv: (-kv[1], kv[0]))
        return ranked[:max(0, n)]
