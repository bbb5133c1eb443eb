"""Tests for server.round_engine module."""
import asyncio
from datetime import date

import numpy as np
import pytest

from course.elements import ElementKind
from game.achievements import AchievementEvaluator
from game.config_loader import ConfigLoader
from server.events import GameEvent, GameEventType
from server.protocol import RoundPhase, ServerMessageType
from server.round_engine import (
    LOBBY_TEXT, WAITING_TEXT, RoundEngine, RoundSettings,
)


@pytest.fixture
def settings():
    return RoundSettings(daily_bonus=0, catalog=["Maze", "GapRun", "Conveyor"])


@pytest.fixture
def engine(collector, economy, wins, rng, clock, settings):
    evaluator = AchievementEvaluator(economy, wins, achievements=[])
    return RoundEngine(
        collector.broadcast, collector.send_to_player, economy, wins, evaluator,
        settings=settings, rng=rng, clock=clock, today=lambda: date(2026, 3, 1),
    )


async def join(engine, player_id, username="runner"):
    await engine.handle_event(GameEvent(GameEventType.PLAYER_JOIN, {"username": username}, player_id))


async def leave(engine, player_id):
    await engine.handle_event(GameEvent(GameEventType.PLAYER_LEAVE, player_id=player_id))


async def start_run(engine, course_type="Maze"):
    """Build a course and open the run phase without the countdowns."""
    engine.state.reset()
    await engine._enter_build(course_type)
    engine._phase = RoundPhase.RUN


async def finish(engine, player_id):
    assert engine.report_contact(engine.build.finish.element_id, player_id)
    await engine.drain_events()


def element_named(engine, prefix):
    return next(e for e in engine.build.elements if e.name.startswith(prefix))


class TestParticipants:
    """Tests for join and leave handling."""

    @pytest.mark.asyncio
    async def test_join_places_avatar_at_start(self, engine):
        await join(engine, "p1", "ann")
        participant = engine.participants["p1"]
        assert participant.username == "ann"
        assert participant.connected
        assert np.allclose(participant.position, [0, 5, 22])
        assert engine.eligible_players == [participant]

    @pytest.mark.asyncio
    async def test_join_without_username(self, engine):
        await join(engine, "abcdef123456", "")
        assert engine.participants["abcdef123456"].username == "Player_abcdef12"

    @pytest.mark.asyncio
    async def test_leave(self, engine):
        await join(engine, "p1")
        engine.away.set_away("p1", True)
        engine.state.votes.record_vote("p1", "Maze")
        await leave(engine, "p1")
        participant = engine.participants["p1"]
        assert not participant.connected
        assert participant.position is None
        assert not engine.away.is_away("p1")
        assert engine.state.votes.get_vote("p1") is None
        assert engine.connected_players == []

    @pytest.mark.asyncio
    async def test_rejoin_reuses_participant(self, engine):
        await join(engine, "p1", "ann")
        await leave(engine, "p1")
        await join(engine, "p1", "other")
        assert engine.participants["p1"].username == "ann"
        assert engine.participants["p1"].has_avatar

    @pytest.mark.asyncio
    async def test_away_is_not_eligible(self, engine):
        await join(engine, "p1")
        await engine.handle_event(GameEvent(GameEventType.TOGGLE_AWAY, {"state": None}, "p1"))
        assert engine.eligible_players == []
        await engine.handle_event(GameEvent(GameEventType.TOGGLE_AWAY, {"state": None}, "p1"))
        assert len(engine.eligible_players) == 1


class TestDailyBonus:
    """Tests for the join bonus."""

    @pytest.mark.asyncio
    async def test_bonus_once_per_day(self, engine, collector, economy):
        engine.settings.daily_bonus = 50
        await join(engine, "p1")
        await leave(engine, "p1")
        await join(engine, "p1")
        assert economy.get("p1") == 50
        updates = collector.get_player_messages_of_type("p1", ServerMessageType.BALANCE_UPDATE.value)
        assert updates == [{"player_id": "p1", "balance": 50}]

    @pytest.mark.asyncio
    async def test_disabled_bonus(self, engine, economy):
        await join(engine, "p1")
        assert economy.get("p1") == 0


class TestVoting:
    """Tests for vote submission."""

    async def open_voting(self, engine):
        engine._phase = RoundPhase.VOTING
        engine.state.ballot = ["Maze", "GapRun", "Conveyor"]

    async def vote(self, engine, player_id, choice):
        await engine.handle_event(GameEvent(GameEventType.SUBMIT_VOTE, {"choice": choice}, player_id))

    @pytest.mark.asyncio
    async def test_vote_recorded_and_broadcast(self, engine, collector):
        await join(engine, "p1")
        await self.open_voting(engine)
        await self.vote(engine, "p1", "Maze")
        await self.vote(engine, "p1", "GapRun")
        assert engine.state.votes.get_all_votes() == {"p1": "GapRun"}
        update = collector.get_broadcasts_of_type(ServerMessageType.VOTE_UPDATE.value)[-1]
        assert update["counts"] == {"Maze": 0, "GapRun": 1, "Conveyor": 0}

    @pytest.mark.asyncio
    async def test_vote_outside_voting_ignored(self, engine):
        await join(engine, "p1")
        engine.state.ballot = ["Maze"]
        await self.vote(engine, "p1", "Maze")
        assert engine.state.votes.get_all_votes() == {}

    @pytest.mark.asyncio
    async def test_unlisted_choice_ignored(self, engine):
        await join(engine, "p1")
        await self.open_voting(engine)
        await self.vote(engine, "p1", "Volcano")
        assert engine.state.votes.get_all_votes() == {}

    @pytest.mark.asyncio
    async def test_away_voter_ignored(self, engine):
        await join(engine, "p1")
        engine.away.set_away("p1", True)
        await self.open_voting(engine)
        await self.vote(engine, "p1", "Maze")
        assert engine.state.votes.get_all_votes() == {}


class TestBuildPhase:
    """Tests for course build and relocation."""

    @pytest.mark.asyncio
    async def test_course_built_broadcast(self, engine, collector):
        await join(engine, "p1")
        await join(engine, "p2")
        engine.away.set_away("p2", True)
        await engine._enter_build("Maze")
        built = collector.get_broadcasts_of_type(ServerMessageType.COURSE_BUILT.value)
        assert len(built) == 1
        assert built[0]["course_type"] == "Maze"
        assert built[0]["element_count"] == len(engine.build.elements)
        assert built[0]["finish"]["kind"] == "finish"
        teleports = collector.get_player_messages_of_type("p1", ServerMessageType.TELEPORT.value)
        assert teleports[-1]["reason"] == "start"
        assert teleports[-1]["position"] == [0.0, 5.0, 22.0]
        assert collector.get_player_messages_of_type("p2", ServerMessageType.TELEPORT.value) == []

    @pytest.mark.asyncio
    async def test_finish_wired_once(self, engine):
        await engine._enter_build("Maze")
        assert engine.build.finish.handler_count == 1
        finishes = [e for e in engine.build.container.descendants() if e.kind == ElementKind.FINISH]
        assert finishes == [engine.build.finish]

    @pytest.mark.asyncio
    async def test_unknown_element_contact(self, engine):
        assert engine.report_contact("e-missing", "p1") is False
        await engine._enter_build("Maze")
        assert engine.report_contact("e-missing", "p1") is False


class TestFinishing:
    """Tests for finish handling."""

    @pytest.mark.asyncio
    async def test_first_finisher_gets_bonus(self, engine, collector, economy, wins):
        await join(engine, "p1")
        await start_run(engine)
        await finish(engine, "p1")
        assert engine.finishers == ["p1"]
        assert economy.get("p1") == 40
        assert wins.get_wins("p1") == 1
        announced = collector.get_broadcasts_of_type(ServerMessageType.PLAYER_FINISHED.value)
        assert announced == [{"player_id": "p1", "rank": 1, "reward": 40}]
        board = collector.get_broadcasts_of_type(ServerMessageType.LEADERBOARD_UPDATE.value)[-1]
        assert board["entries"] == [{"player_id": "p1", "value": 1, "title": "Rookie"}]

    @pytest.mark.asyncio
    async def test_second_finisher_gets_base_reward(self, engine, economy):
        await join(engine, "p1")
        await join(engine, "p2")
        await start_run(engine)
        await finish(engine, "p1")
        await finish(engine, "p2")
        assert engine.finishers == ["p1", "p2"]
        assert economy.get("p2") == 25

    @pytest.mark.asyncio
    async def test_repeat_contacts_count_once(self, engine, collector, economy):
        await join(engine, "p1")
        await start_run(engine)
        for _ in range(3):
            engine.report_contact(engine.build.finish.element_id, "p1")
        await engine.drain_events()
        await finish(engine, "p1")
        assert engine.finishers == ["p1"]
        assert economy.get("p1") == 40
        assert len(collector.get_broadcasts_of_type(ServerMessageType.PLAYER_FINISHED.value)) == 1

    @pytest.mark.asyncio
    async def test_concurrent_finish_events(self, engine, wins):
        await join(engine, "p1")
        await start_run(engine)
        event = GameEvent(GameEventType.FINISH_CONTACT, {"round_num": engine.round_num}, "p1")
        await asyncio.gather(engine.handle_event(event), engine.handle_event(event))
        assert engine.finishers == ["p1"]
        assert wins.get_wins("p1") == 1

    @pytest.mark.asyncio
    async def test_finish_outside_run_ignored(self, engine):
        await join(engine, "p1")
        engine.state.reset()
        await engine._enter_build("Maze")
        await finish(engine, "p1")
        assert engine.finishers == []

    @pytest.mark.asyncio
    async def test_stale_round_ignored(self, engine):
        await join(engine, "p1")
        await start_run(engine)
        engine.submit(GameEvent(GameEventType.FINISH_CONTACT,
                                {"round_num": engine.round_num - 1}, "p1"))
        await engine.drain_events()
        assert engine.finishers == []

    @pytest.mark.asyncio
    async def test_award_failure_is_contained(self, engine, economy, wins, collector,
                                              monkeypatch, caplog):
        def broken(identity, delta):
            raise OSError("disk full")

        monkeypatch.setattr(economy, "award", broken)
        await join(engine, "p1")
        await start_run(engine)
        await finish(engine, "p1")
        assert engine.finishers == ["p1"]
        assert wins.get_wins("p1") == 1
        assert collector.get_player_messages_of_type("p1", ServerMessageType.BALANCE_UPDATE.value) == []
        assert collector.get_broadcasts_of_type(ServerMessageType.LEADERBOARD_UPDATE.value)
        assert "award failed for p1" in caplog.text

    @pytest.mark.asyncio
    async def test_achievement_unlock_is_announced(self, collector, economy, wins, rng, clock):
        engine = RoundEngine(
            collector.broadcast, collector.send_to_player, economy, wins,
            AchievementEvaluator(economy, wins),
            settings=RoundSettings(daily_bonus=0), rng=rng, clock=clock,
        )
        await join(engine, "p1")
        await start_run(engine)
        await finish(engine, "p1")
        unlocked = collector.get_player_messages_of_type("p1", ServerMessageType.ACHIEVEMENT_UNLOCKED.value)
        assert [u["achievement_id"] for u in unlocked] == ["first_win"]
        assert economy.get("p1") == 50
        updates = collector.get_player_messages_of_type("p1", ServerMessageType.BALANCE_UPDATE.value)
        assert updates[-1]["balance"] == 50


class TestHazardsAndFields:
    """Tests for hazard resets, checkpoints and force fields."""

    @pytest.mark.asyncio
    async def test_hazard_resets_to_start(self, engine, collector):
        await join(engine, "p1")
        await start_run(engine, "Maze")
        engine.participants["p1"].position = np.array([5.0, 0.0, -30.0])
        engine.report_contact(element_named(engine, "MazeHazard_").element_id, "p1")
        await engine.drain_events()
        assert np.allclose(engine.participants["p1"].position, [0, 5, 22])
        resets = collector.get_player_messages_of_type("p1", ServerMessageType.PLAYER_RESET.value)
        assert resets == [{"player_id": "p1", "position": [0.0, 5.0, 22.0]}]

    @pytest.mark.asyncio
    async def test_hazard_resets_to_checkpoint(self, engine, clock):
        await join(engine, "p1")
        await start_run(engine, "GapRun")
        checkpoint = next(e for e in engine.build.elements if e.kind == ElementKind.CHECKPOINT)
        engine.report_contact(checkpoint.element_id, "p1")
        engine.report_contact(element_named(engine, "Lava").element_id, "p1")
        await engine.drain_events()
        expected = checkpoint.pose.position + np.array([0, 4, 0])
        assert np.allclose(engine.participants["p1"].position, expected)
        await engine._enter_cleanup()
        await clock.advance(3)

    @pytest.mark.asyncio
    async def test_hazard_without_avatar_is_skipped(self, engine, collector):
        await join(engine, "p1")
        await start_run(engine, "Maze")
        await leave(engine, "p1")
        engine.report_contact(element_named(engine, "MazeHazard_").element_id, "p1")
        await engine.drain_events()
        assert collector.get_player_messages_of_type("p1", ServerMessageType.PLAYER_RESET.value) == []
        assert engine.participants["p1"].position is None

    @pytest.mark.asyncio
    async def test_force_adds_impulse(self, engine):
        await join(engine, "p1")
        await start_run(engine, "Conveyor")
        tile = element_named(engine, "Conveyor")
        engine.report_contact(tile.element_id, "p1")
        engine.report_contact(tile.element_id, "p1")
        await engine.drain_events()
        assert np.allclose(engine.participants["p1"].velocity, [0, 0, 24])

    @pytest.mark.asyncio
    async def test_teleport_clears_velocity(self, engine):
        await join(engine, "p1")
        await start_run(engine, "Conveyor")
        engine.report_contact(element_named(engine, "Conveyor").element_id, "p1")
        engine.report_contact(element_named(engine, "Lava").element_id, "p1")
        await engine.drain_events()
        assert np.allclose(engine.participants["p1"].velocity, [0, 0, 0])


class TestDriver:
    """Tests for the phase driver."""

    @pytest.mark.asyncio
    async def test_lobby_holds_without_players(self, engine, clock, collector):
        task = asyncio.create_task(engine.run_round())
        await clock.settle()
        first = collector.get_broadcasts_of_type(ServerMessageType.ROUND_STATUS.value)[0]
        assert first == {"phase": "lobby", "text": LOBBY_TEXT, "seconds_remaining": 12, "finishers": []}
        await clock.advance(12)
        texts = [s["text"] for s in collector.get_broadcasts_of_type(ServerMessageType.ROUND_STATUS.value)]
        assert texts[-1] == WAITING_TEXT
        await clock.advance(3)
        assert task.result() is False
        assert engine.phase == RoundPhase.LOBBY
        assert engine.round_num == 1

    @pytest.mark.asyncio
    async def test_lobby_holds_when_everyone_is_away(self, engine, clock):
        await join(engine, "p1")
        engine.away.set_away("p1", True)
        task = asyncio.create_task(engine.run_round())
        await clock.advance(15)
        assert task.result() is False

    @pytest.mark.asyncio
    async def test_lobby_holds_with_empty_catalog(self, collector, economy, wins, rng, clock):
        engine = RoundEngine(
            collector.broadcast, collector.send_to_player, economy, wins,
            AchievementEvaluator(economy, wins, achievements=[]),
            settings=RoundSettings(daily_bonus=0, catalog=[]), rng=rng, clock=clock,
        )
        await join(engine, "p1")
        task = asyncio.create_task(engine.run_round())
        await clock.advance(15)
        assert task.result() is False

    @pytest.mark.asyncio
    async def test_lobby_holds_with_empty_configured_catalog(
            self, temp_config_dir, collector, economy, wins, rng, clock):
        """Test an explicit empty catalog in courses.json keeps the lobby waiting."""
        (temp_config_dir / "courses.json").write_text('{"course_types": []}')
        ConfigLoader._instance = None
        settings = RoundSettings.from_config(ConfigLoader())
        engine = RoundEngine(
            collector.broadcast, collector.send_to_player, economy, wins,
            AchievementEvaluator(economy, wins, achievements=[]),
            settings=settings, rng=rng, clock=clock, today=lambda: date(2026, 3, 1),
        )
        await join(engine, "p1")
        task = asyncio.create_task(engine.run_round())
        await clock.advance(settings.lobby_seconds + settings.idle_wait_seconds + 1)
        assert task.result() is False
        assert engine.phase == RoundPhase.LOBBY
        assert engine.build is None
        assert collector.get_broadcasts_of_type(ServerMessageType.COURSE_BUILT.value) == []

    @pytest.mark.asyncio
    async def test_events_drained_during_countdown(self, engine, clock):
        """Test events queued mid-phase are handled after the current second."""
        task = asyncio.create_task(engine.run_round())
        await clock.advance(2)
        engine.submit(GameEvent(GameEventType.PLAYER_JOIN, {"username": "late"}, "p9"))
        assert "p9" not in engine.participants
        await clock.advance(1)
        assert "p9" in engine.participants
        task.cancel()
        await clock.settle()
        assert task.cancelled()

    def test_snapshot(self, engine):
        snapshot = engine.get_state_snapshot()
        assert snapshot["phase"] == "lobby"
        assert snapshot["course"] is None
        assert snapshot["participants"] == []
        assert snapshot["motion_loops"] == 0
