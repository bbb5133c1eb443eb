# server/round_engine.py
"""Round lifecycle engine for the obby server.

The engine cycles Lobby -> Voting -> Build -> Run -> Results -> Cleanup
forever. A single driver coroutine owns the phases; it only suspends while
counting a phase down, one second at a time. Contacts reported by the
course (finish pad, hazards, force fields, checkpoints) are queued and
drained by the driver after every second, so finisher and reset handling
never interleave with a phase transition.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Awaitable, Callable, Dict, List, Optional

import numpy as np

from course.assembler import DEFAULT_CATALOG, BuildResult, CourseAssembler
from course.elements import (
    ContactKind, ContactReport, Container, Element, attach_finish,
)
from course.geometry import Pose
from course.motion import MotionRunner
from course.podium import build_podium, clear_podium
from course.randomness import RandomSource
from game.achievements import AchievementEvaluator
from game.away import AwayRegistry
from game.checkpoints import CheckpointTracker
from game.economy import BalanceStore
from game.leaderboard import DEFAULT_TITLES, WinStore, title_for
from server.events import GameEvent, GameEventType
from server.pending import RoundState, count_votes, draw_ballot, tally_votes
from server.protocol import (
    Message, RoundPhase,
    achievement_unlocked_message, balance_update_message, course_built_message,
    leaderboard_update_message, player_finished_message, player_reset_message,
    round_status_message, teleport_message, vote_update_message,
)
from server.timers import PhaseTimer


logger = logging.getLogger(__name__)

# Type aliases
MessageBroadcaster = Callable[[Message], Awaitable[None]]
PlayerMessageSender = Callable[[str, Message], Awaitable[None]]

# Avatars are placed this far above the surface they are sent to
TELEPORT_HEIGHT = 3
PODIUM_SIZE = 3
BOARD_SIZE = 10

LOBBY_TEXT = "Lobby: next round soon..."
WAITING_TEXT = "Waiting for players..."
VOTING_TEXT = "Voting: choose the next course"
RUN_TEXT = "Run! Reach the green finish pad to win!"
RESULTS_TEXT = "Round over! Showing podium..."
CLEANUP_TEXT = "Cleaning up..."

_CONTACT_EVENTS = {
    ContactKind.FINISH: GameEventType.FINISH_CONTACT,
    ContactKind.HAZARD: GameEventType.HAZARD_CONTACT,
    ContactKind.FORCE: GameEventType.FORCE_CONTACT,
    ContactKind.CHECKPOINT: GameEventType.CHECKPOINT_CONTACT,
}


def _or_default(value, default):
    """Configured value unless the key was absent; an explicit [] stays []."""
    return default if value is None else value


@dataclass
class RoundSettings:
    """Tunable round constants."""

    lobby_seconds: int = 12
    voting_seconds: int = 8
    run_seconds: int = 120
    cleanup_seconds: int = 5
    idle_wait_seconds: int = 3
    ballot_size: int = 3
    finish_reward: int = 25
    first_finish_bonus: int = 15
    daily_bonus: int = 50
    catalog: List[str] = field(default_factory=lambda: list(DEFAULT_CATALOG))
    titles: List[Dict[str, Any]] = field(default_factory=lambda: list(DEFAULT_TITLES))

    @classmethod
    def from_config(cls, cfg) -> "RoundSettings":
        """Build settings from game_settings.json, courses.json and titles.json.

        Args:
            cfg: A ConfigLoader

        Returns:
            RoundSettings where every absent key keeps its default. An
            explicitly empty catalog is kept, so the lobby holds.
        """
        defaults = cls()
        return cls(
            lobby_seconds=cfg.get("round", "lobby_seconds", default=defaults.lobby_seconds),
            voting_seconds=cfg.get("round", "voting_seconds", default=defaults.voting_seconds),
            run_seconds=cfg.get("round", "run_seconds", default=defaults.run_seconds),
            cleanup_seconds=cfg.get("round", "cleanup_seconds", default=defaults.cleanup_seconds),
            idle_wait_seconds=cfg.get("round", "idle_wait_seconds", default=defaults.idle_wait_seconds),
            ballot_size=cfg.get("round", "ballot_size", default=defaults.ballot_size),
            finish_reward=cfg.get("rewards", "finish", default=defaults.finish_reward),
            first_finish_bonus=cfg.get("rewards", "first_finish_bonus",
                                       default=defaults.first_finish_bonus),
            daily_bonus=cfg.get("rewards", "daily_bonus", default=defaults.daily_bonus),
            catalog=_or_default(cfg.get_course_types(), defaults.catalog),
            titles=_or_default(cfg.get_titles(), defaults.titles),
        )


@dataclass(eq=False)
class ServerParticipant:
    """Server-side participant.

    ``position`` is None while the participant has no avatar; relocating
    such a participant does nothing.
    """

    player_id: str
    username: str
    connected: bool = True
    position: Optional[np.ndarray] = None
    velocity: np.ndarray = field(default_factory=lambda: np.zeros(3))

    @property
    def has_avatar(self) -> bool:
        return self.connected and self.position is not None

    def to_public_dict(self) -> Dict[str, Any]:
        return {
            "player_id": self.player_id,
            "username": self.username,
            "connected": self.connected,
            "position": None if self.position is None else [round(float(v), 3) for v in self.position],
        }


class RoundEngine:
    """Runs the round cycle and reacts to participant events."""

    def __init__(
        self,
        broadcast: MessageBroadcaster,
        send_to_player: PlayerMessageSender,
        economy: BalanceStore,
        wins: WinStore,
        achievements: AchievementEvaluator,
        away: Optional[AwayRegistry] = None,
        checkpoints: Optional[CheckpointTracker] = None,
        settings: Optional[RoundSettings] = None,
        rng: Optional[RandomSource] = None,
        clock=None,
        center: Optional[Pose] = None,
        today: Callable[[], date] = date.today,
    ):
        self.broadcast = broadcast
        self.send_to_player = send_to_player

        # Collaborators
        self.economy = economy
        self.wins = wins
        self.achievements = achievements
        self.away = away or AwayRegistry()
        self.checkpoints = checkpoints or CheckpointTracker()
        self.settings = settings or RoundSettings()
        self.rng = rng or RandomSource()
        self.runner = MotionRunner(clock)
        self.clock = self.runner.clock
        self.today = today

        # World
        self.center = center or Pose.identity()
        self.arena = Container("ArenaRuntime")
        self.assembler = CourseAssembler(self.rng, self.runner, self._on_contact,
                                         self.settings.catalog)
        self.build: Optional[BuildResult] = None
        self.podium: Dict[int, Element] = {}

        # Participants
        self.participants: Dict[str, ServerParticipant] = {}

        # State
        self._phase = RoundPhase.LOBBY
        self._status_text = LOBBY_TEXT
        self.state = RoundState()
        self.last_choice: Optional[str] = None
        self._stopped = False
        self._finish_lock = asyncio.Lock()
        self._events: asyncio.Queue = asyncio.Queue()

        self.timer = PhaseTimer(self.clock, on_tick=self._on_tick, after_tick=self.drain_events)

        # Event handlers by event type
        self._handlers: Dict[GameEventType, Callable] = {
            GameEventType.PLAYER_JOIN: self._handle_player_join,
            GameEventType.PLAYER_LEAVE: self._handle_player_leave,
            GameEventType.SUBMIT_VOTE: self._handle_submit_vote,
            GameEventType.TOGGLE_AWAY: self._handle_toggle_away,
            GameEventType.FINISH_CONTACT: self._handle_finish_contact,
            GameEventType.HAZARD_CONTACT: self._handle_hazard_contact,
            GameEventType.FORCE_CONTACT: self._handle_force_contact,
            GameEventType.CHECKPOINT_CONTACT: self._handle_checkpoint_contact,
        }

    @property
    def phase(self) -> RoundPhase:
        """Current round phase."""
        return self._phase

    @property
    def round_num(self) -> int:
        return self.state.round_num

    @property
    def finishers(self) -> List[str]:
        return self.state.finishers.ordered()

    @property
    def connected_players(self) -> List[ServerParticipant]:
        return [p for p in self.participants.values() if p.connected]

    @property
    def eligible_players(self) -> List[ServerParticipant]:
        """Connected participants who are not away."""
        return [p for p in self.connected_players if not self.away.is_away(p.player_id)]

    @property
    def start_pose(self) -> Pose:
        if self.build is not None:
            return self.build.start
        return self.center.translate(0, 2, 22)

    # --- Event intake ---

    async def handle_event(self, event: GameEvent) -> None:
        """Dispatch an event to its handler.

        Events without a handler are ignored. Never blocks on the phase driver.

        Args:
            event: Participant or contact event
        """
        handler = self._handlers.get(event.type)
        if handler:
            await handler(event)

    def submit(self, event: GameEvent) -> None:
        """Queue an event for the driver.

        Queued events are handled in arrival order after the current
        countdown second, or at the next pause.

        Args:
            event: Event to handle later
        """
        self._events.put_nowait(event)

    def report_contact(self, element_id: str, player_id: str) -> bool:
        """Deliver a host contact between an element and a participant.

        Args:
            element_id: Id of the touched element
            player_id: Participant whose avatar touched it

        Returns:
            True if a live element ran its contact handlers, False when the
            element is not part of the current course or was destroyed
        """
        container = self.build.container if self.build else None
        element = container.find(element_id) if container else None
        if element is None:
            return False
        return element.touch(player_id)

    def _on_contact(self, report: ContactReport) -> None:
        event_type = _CONTACT_EVENTS[report.kind]
        data = {"element_id": report.element.element_id, "round_num": self.state.round_num}
        if report.kind == ContactKind.FORCE:
            data["impulse"] = report.impulse
        elif report.kind == ContactKind.CHECKPOINT:
            data["pose"] = report.element.pose
        self.submit(GameEvent(type=event_type, data=data, player_id=report.participant_id))

    async def drain_events(self) -> None:
        """Handle every queued event in arrival order."""
        while not self._events.empty():
            event = self._events.get_nowait()
            try:
                await self.handle_event(event)
            except Exception:
                logger.exception("Failed to handle %s for %s", event.type.name, event.player_id)

    # --- Participant events ---

    async def _handle_player_join(self, event: GameEvent) -> None:
        """Handle PLAYER_JOIN event."""
        player_id = event.player_id
        if not player_id:
            return

        participant = self.participants.get(player_id)
        if participant is None:
            username = event.data.get("username") or f"Player_{player_id[:8]}"
            participant = ServerParticipant(player_id=player_id, username=username)
            self.participants[player_id] = participant
        participant.connected = True
        participant.position = self.start_pose.position + np.array([0, TELEPORT_HEIGHT, 0])
        participant.velocity = np.zeros(3)

        if self.settings.daily_bonus > 0:
            credited = self._guarded("daily bonus", self.economy.claim_daily_bonus,
                                     player_id, self.settings.daily_bonus, self.today())
            if credited:
                await self.send_to_player(player_id, balance_update_message(
                    player_id, self.economy.get(player_id)))

    async def _handle_player_leave(self, event: GameEvent) -> None:
        """Handle PLAYER_LEAVE event."""
        player_id = event.player_id
        participant = self.participants.get(player_id)
        if participant is None:
            return
        participant.connected = False
        participant.position = None
        self.away.forget(player_id)
        self.checkpoints.forget(player_id)
        self.state.votes.remove(player_id)

    async def _handle_submit_vote(self, event: GameEvent) -> None:
        """Handle SUBMIT_VOTE event. Unlisted choices and away voters are ignored."""
        if self._phase != RoundPhase.VOTING:
            return

        player_id = event.player_id
        choice = event.data.get("choice")
        if not player_id or choice not in self.state.ballot:
            return
        if self.away.is_away(player_id):
            return

        self.state.votes.record_vote(player_id, choice)
        await self._broadcast_votes(self.timer.remaining)

    async def _handle_toggle_away(self, event: GameEvent) -> None:
        """Handle TOGGLE_AWAY event; a missing state toggles."""
        if not event.player_id:
            return
        state = self.away.set_away(event.player_id, event.data.get("state"))
        logger.info("%s is %s", event.player_id, "away" if state else "back")

    # --- Contact events ---

    def _is_stale(self, event: GameEvent) -> bool:
        return event.data.get("round_num") != self.state.round_num

    async def _handle_finish_contact(self, event: GameEvent) -> None:
        """Record a finisher, at most once per participant per round."""
        if self._phase != RoundPhase.RUN or self._is_stale(event):
            return

        player_id = event.player_id
        if not player_id:
            return

        async with self._finish_lock:
            if not self.state.finishers.add(player_id):
                return
            rank = len(self.state.finishers)

        reward = self.settings.finish_reward
        if rank == 1:
            reward += self.settings.first_finish_bonus
        logger.info("%s finished round %d in position %d", player_id, self.round_num, rank)

        await self.broadcast(player_finished_message(player_id, rank, reward))

        balance = self._guarded("award", self.economy.award, player_id, reward)
        if balance is not None:
            await self.send_to_player(player_id, balance_update_message(player_id, balance))

        self._guarded("record win", self.wins.record_win, player_id)

        unlocked = self._guarded("achievements", self.achievements.check_all, player_id) or []
        for achievement in unlocked:
            await self.send_to_player(player_id, achievement_unlocked_message(
                player_id, achievement.id, achievement.name, achievement.reward))
        if unlocked:
            await self.send_to_player(player_id, balance_update_message(
                player_id, self.economy.get(player_id)))

        await self._broadcast_leaderboard()

    async def _handle_hazard_contact(self, event: GameEvent) -> None:
        """Send the participant back to their last checkpoint, or the start."""
        if self._is_stale(event):
            return
        participant = self.participants.get(event.player_id)
        if participant is None or not participant.has_avatar:
            return

        respawn = self.checkpoints.respawn_pose(participant.player_id)
        if respawn is None:
            respawn = self.start_pose.shifted((0, TELEPORT_HEIGHT, 0))
        participant.position = respawn.position
        participant.velocity = np.zeros(3)
        await self.send_to_player(participant.player_id, player_reset_message(
            participant.player_id, respawn.to_list()))

    async def _handle_force_contact(self, event: GameEvent) -> None:
        """Add the field's impulse to the participant's velocity."""
        if self._is_stale(event):
            return
        participant = self.participants.get(event.player_id)
        impulse = event.data.get("impulse")
        if participant is None or not participant.has_avatar or impulse is None:
            return
        participant.velocity = participant.velocity + impulse

    async def _handle_checkpoint_contact(self, event: GameEvent) -> None:
        if self._is_stale(event) or event.player_id not in self.participants:
            return
        self.checkpoints.record(event.player_id, event.data["pose"])

    # --- Phase driver ---

    async def run_forever(self) -> None:
        """Cycle rounds until stop() is called."""
        self._stopped = False
        while not self._stopped:
            await self.run_round()

    def stop(self) -> None:
        self._stopped = True
        self.timer.cancel()
        self.runner.cancel_all()

    async def run_round(self) -> bool:
        """Run one pass of the cycle, Lobby through Cleanup.

        Returns:
            True if a course was built and played, False if the lobby held
            because nobody was eligible or the catalog is empty
        """
        await self._enter_lobby()
        if not self.eligible_players or not self.settings.catalog:
            await self._set_status(WAITING_TEXT, 0)
            await self._pause(self.settings.idle_wait_seconds)
            return False

        await self._enter_voting()
        chosen = tally_votes(
            self.state.ballot,
            self.state.votes.get_all_votes(),
            self.rng,
            excluded={pid for pid in self.participants if self.away.is_away(pid)},
        )
        await self._enter_build(chosen)
        await self._enter_run()
        await self._enter_results()
        await self._enter_cleanup()
        return True

    async def _enter_lobby(self) -> None:
        self._phase = RoundPhase.LOBBY
        self.state.reset()
        self._status_text = LOBBY_TEXT
        await self.timer.run(self._phase.value, self.settings.lobby_seconds)

    async def _enter_voting(self) -> None:
        self._phase = RoundPhase.VOTING
        self.state.ballot = draw_ballot(self.settings.catalog, self.rng, self.settings.ballot_size)
        self._status_text = VOTING_TEXT
        logger.info("Round %d ballot: %s", self.round_num, ", ".join(self.state.ballot))
        await self.timer.run(self._phase.value, self.settings.voting_seconds)

    async def _enter_build(self, chosen: str) -> None:
        self._phase = RoundPhase.BUILD
        self.last_choice = chosen
        await self._set_status(f"Building course: {chosen}", 0)

        self.checkpoints.reset()
        self.build = self.assembler.build_by_type(self.arena, self.center, chosen)
        attach_finish(self.build.finish, self._on_contact)

        await self.broadcast(course_built_message(
            chosen, self.build.start.to_list(), self.build.finish.to_public_dict(),
            len(self.build.elements)))

        target = self.build.start.shifted((0, TELEPORT_HEIGHT, 0))
        for participant in self.eligible_players:
            await self._relocate(participant, target, "start")

    async def _enter_run(self) -> None:
        self._phase = RoundPhase.RUN
        self._status_text = RUN_TEXT
        await self.timer.run(self._phase.value, self.settings.run_seconds)

    async def _enter_results(self) -> None:
        self._phase = RoundPhase.RESULTS
        await self._set_status(RESULTS_TEXT, 0)

        self.podium = build_podium(self.arena, self.center)
        for rank, player_id in enumerate(self.state.finishers.podium(PODIUM_SIZE), 1):
            participant = self.participants.get(player_id)
            pad = self.podium.get(rank)
            if participant is None or pad is None:
                continue
            await self._relocate(participant, pad.pose.shifted((0, TELEPORT_HEIGHT, 0)), f"podium_{rank}")

        await self._broadcast_leaderboard()
        await self._pause(self.settings.cleanup_seconds)

    async def _enter_cleanup(self) -> None:
        self._phase = RoundPhase.CLEANUP
        self._status_text = CLEANUP_TEXT
        clear_podium(self.arena)
        self.assembler.clear_arena(self.arena)
        self.podium = {}
        self.build = None

    # --- Helpers ---

    async def _on_tick(self, remaining: int) -> None:
        if self._phase == RoundPhase.VOTING:
            await self._broadcast_votes(remaining)
        await self._set_status(self._status_text, remaining)

    async def _pause(self, seconds: int) -> None:
        """Wait without a countdown broadcast, still draining events."""
        for _ in range(max(0, seconds)):
            await self.clock.sleep(1)
            await self.drain_events()

    async def _set_status(self, text: str, remaining: int) -> None:
        self._status_text = text
        await self.broadcast(round_status_message(
            self._phase.value, text, remaining, self.state.finishers.ordered()))

    async def _broadcast_votes(self, remaining: int) -> None:
        votes = self.state.votes.get_all_votes()
        await self.broadcast(vote_update_message(
            self.state.ballot, votes, count_votes(self.state.ballot, votes), remaining))

    async def _broadcast_leaderboard(self) -> None:
        top = self._guarded("leaderboard", self.wins.get_top_n, BOARD_SIZE) or []
        titles = {pid: title_for(n, self.settings.titles) for pid, n in top}
        await self.broadcast(leaderboard_update_message("wins", top, titles))

    async def _relocate(self, participant: ServerParticipant, pose: Pose, reason: str) -> bool:
        """Move an avatar; a participant without one is skipped."""
        if not participant.has_avatar:
            return False
        participant.position = pose.position
        participant.velocity = np.zeros(3)
        await self.send_to_player(participant.player_id, teleport_message(
            participant.player_id, pose.to_list(), reason))
        return True

    def _guarded(self, label: str, fn: Callable, *args):
        """Call a collaborator; log and swallow its failure."""
        try:
            return fn(*args)
        except Exception:
            logger.exception("%s failed for %s", label, args[0] if args else "-")
            return None

    def get_state_snapshot(self) -> Dict[str, Any]:
        """Summary for status displays and tests."""
        return {
            "phase": self._phase.value,
            "round_num": self.round_num,
            "status": self._status_text,
            "remaining": self.timer.remaining,
            "ballot": list(self.state.ballot),
            "votes": self.state.votes.get_all_votes(),
            "finishers": self.finishers,
            "course": self.build.course_type if self.build else None,
            "participants": [p.to_public_dict() for p in self.participants.values()],
            "motion_loops": self.runner.active_count,
        }
