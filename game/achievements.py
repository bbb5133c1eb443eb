"""Achievement system for wins and coin milestones."""
import logging
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence

from game.economy import BalanceStore
from game.leaderboard import WinStore
from game.store import JsonStore


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Progress:
    """What achievement conditions get to look at."""
    wins: int
    coins: int


@dataclass
class Achievement:
    """Represents a single achievement."""
    id: str
    name: str
    description: str
    reward: int
    condition: Callable[[Progress], bool]


ACHIEVEMENTS = [
    Achievement(
        id="first_win",
        name="First Win",
        description="Finish first in a round",
        reward=10,
        condition=lambda p: p.wins >= 1
    ),
    Achievement(
        id="five_wins",
        name="Strider",
        description="Finish 5 rounds",
        reward=25,
        condition=lambda p: p.wins >= 5
    ),
    Achievement(
        id="hundred_coins",
        name="Wealthy",
        description="Hold 100 coins",
        reward=30,
        condition=lambda p: p.coins >= 100
    ),
    Achievement(
        id="ten_wins",
        name="Champion",
        description="Finish 10 rounds",
        reward=50,
        condition=lambda p: p.wins >= 10
    ),
]


class AchievementEvaluator:
    """Unlocks achievements and credits their rewards.

    Conditions are checked against one snapshot taken at the start of
    ``check_all``; coins credited by an unlock count from the next check.
    Each achievement unlocks at most once per identity.
    """

    def __init__(self, economy: BalanceStore, wins: WinStore,
                 unlocked: Optional[JsonStore] = None,
                 achievements: Optional[Sequence[Achievement]] = None):
        self.economy = economy
        self.wins = wins
        self._unlocked = unlocked or JsonStore()
        self.achievements = list(ACHIEVEMENTS if achievements is None else achievements)

    def unlocked(self, identity: str) -> List[str]:
        return list(self._unlocked.get(identity, []))

    def check_all(self, identity: str) -> List[Achievement]:
        """Return the achievements newly unlocked by this call."""
        progress = Progress(self.wins.get_wins(identity), self.economy.get(identity))
        done = self.unlocked(identity)
        newly_unlocked = []
        for achievement in self.achievements:
            if achievement.id in done:
                continue
            if not achievement.condition(progress):
                continue
            done.append(achievement.id)
            self._unlocked.set(identity, list(done))
            if achievement.reward > 0:
                self.economy.award(identity, achievement.reward)
            logger.info("%s unlocked %s", identity, achievement.id)
            newly_unlocked.append(achievement)
        return newly_unlocked
