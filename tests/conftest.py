"""Shared test fixtures for the obby round server tests."""
import asyncio
import heapq
import itertools
import json
import random
from io import StringIO
from typing import Any, Dict, List

import pytest
from rich.console import Console

from course.elements import Container, ContactReport
from course.motion import MotionRunner
from course.randomness import RandomSource
from course.sections import SectionContext
from game.achievements import AchievementEvaluator
from game.config_loader import ConfigLoader
from game.economy import BalanceStore
from game.inventory import InventoryStore
from game.leaderboard import WinStore
from server.protocol import Message


class VirtualClock:
    """Deterministic clock: time only moves when a test calls ``advance``."""

    def __init__(self):
        self._now = 0.0
        self._sleepers: List = []
        self._seq = itertools.count()

    def now(self) -> float:
        return self._now

    async def sleep(self, seconds: float) -> None:
        if seconds <= 0:
            await asyncio.sleep(0)
            return
        future = asyncio.get_running_loop().create_future()
        heapq.heappush(self._sleepers, (self._now + seconds, next(self._seq), future))
        await future

    @property
    def pending(self) -> int:
        return sum(1 for _, _, f in self._sleepers if not f.done())

    async def settle(self, rounds: int = 20) -> None:
        """Let every runnable task reach its next suspension point."""
        for _ in range(rounds):
            await asyncio.sleep(0)

    async def advance(self, seconds: float) -> None:
        """Move time forward, waking sleepers in deadline order."""
        target = self._now + seconds
        await self.settle()
        while self._sleepers and self._sleepers[0][0] <= target + 1e-9:
            wake, _, future = heapq.heappop(self._sleepers)
            self._now = max(self._now, wake)
            if not future.done():
                future.set_result(None)
            await self.settle()
        self._now = target
        await self.settle()


class ContactRecorder:
    """Collects contact reports from course elements."""

    def __init__(self):
        self.reports: List[ContactReport] = []

    def __call__(self, report: ContactReport) -> None:
        self.reports.append(report)

    def kinds(self) -> List[str]:
        return [r.kind.value for r in self.reports]


class MessageCollector:
    """Helper to collect and analyze messages sent by the engine."""

    def __init__(self):
        self.broadcasts: List[tuple] = []  # (type, data)
        self.player_messages: Dict[str, List[tuple]] = {}  # player_id -> [(type, data)]

    async def broadcast(self, msg: Message):
        self.broadcasts.append((msg.type, msg.data))

    async def send_to_player(self, player_id: str, msg: Message):
        self.player_messages.setdefault(player_id, []).append((msg.type, msg.data))

    def get_broadcasts_of_type(self, msg_type: str) -> List[Dict[str, Any]]:
        return [data for t, data in self.broadcasts if t == msg_type]

    def get_player_messages_of_type(self, player_id: str, msg_type: str) -> List[Dict[str, Any]]:
        return [data for t, data in self.player_messages.get(player_id, []) if t == msg_type]

    def clear(self):
        self.broadcasts.clear()
        self.player_messages.clear()


@pytest.fixture(autouse=True)
def deterministic_random():
    """Seed random for reproducible tests."""
    random.seed(42)
    yield
    random.seed()


@pytest.fixture
def rng():
    return RandomSource(1234)


@pytest.fixture
def clock():
    return VirtualClock()


@pytest.fixture
def contacts():
    return ContactRecorder()


@pytest.fixture
def collector():
    return MessageCollector()


@pytest.fixture
def section_ctx(rng, clock, contacts):
    """Section context with a fresh course container and a virtual clock."""
    arena = Container("Arena")
    container = Container("Course", arena)
    runner = MotionRunner(clock)
    return SectionContext(container, rng, runner, contacts)


@pytest.fixture
def economy():
    return BalanceStore()


@pytest.fixture
def wins():
    return WinStore()


@pytest.fixture
def inventory():
    return InventoryStore()


@pytest.fixture
def achievements(economy, wins):
    return AchievementEvaluator(economy, wins)


@pytest.fixture
def temp_config_dir(tmp_path, monkeypatch):
    """Create temporary config directory with test JSON files."""
    config_dir = tmp_path / "config"
    config_dir.mkdir()

    game_settings = {
        "round": {
            "lobby_seconds": 4,
            "voting_seconds": 3,
            "run_seconds": 30,
            "cleanup_seconds": 2
        },
        "rewards": {
            "finish": 20,
            "first_finish_bonus": 5,
            "daily_bonus": 10
        }
    }
    courses = {"course_types": ["Maze", "GapRun"]}
    shop = {
        "items": [
            {"id": "trail_red", "name": "Red Trail", "cost": 30, "color": [255, 0, 0]},
            {"id": "trail_gold", "name": "Gold Trail", "cost": 150, "color": [255, 210, 60]}
        ]
    }
    titles = {
        "titles": [
            {"name": "Rookie", "min_wins": 0},
            {"name": "Pro", "min_wins": 3}
        ]
    }

    (config_dir / "game_settings.json").write_text(json.dumps(game_settings, indent=2))
    (config_dir / "courses.json").write_text(json.dumps(courses, indent=2))
    (config_dir / "shop.json").write_text(json.dumps(shop, indent=2))
    (config_dir / "titles.json").write_text(json.dumps(titles, indent=2))

    # Reset the singleton instance FIRST
    ConfigLoader._instance = None
    monkeypatch.setattr(ConfigLoader, '_config_dir', str(config_dir))

    from game import config_loader
    new_config = ConfigLoader()
    monkeypatch.setattr(config_loader, 'config', new_config)

    yield config_dir

    ConfigLoader._instance = None


@pytest.fixture
def mock_console():
    """Rich console writing into a buffer."""
    output = StringIO()
    console = Console(file=output, force_terminal=False, width=80, legacy_windows=False)
    return console, output
