"""Tests for the statistics pipeline."""

from __future__ import annotations

import pytest

from slpkit.analysis.statistics import StatisticsPipeline, compute_statistics
from slpkit.core.constants import Character, GameEndMethod, GameEventType
from slpkit.core.events import GameEndEvent
from slpkit.core.models import Player, Settings
from slpkit.core.parser import parse_replay

WAIT = 0x0E
DEAD_DOWN = 0x00
DAMAGE_HI_1 = 0x4B


def _settings(ports=(1, 2), is_teams=False):
    players = tuple(Player(port=p, character=Character.FOX) for p in ports)
    return Settings(version="3.14.0", players=players, is_teams=is_teams)


class TestKills:
    """Test stock loss attribution."""

    def test_scripted_kill_credited_via_last_hit_by(self, make_replay):
        """Test a kill is credited through last_hit_by."""
        replay = make_replay()
        for index in range(0, 900):
            replay.frame(index, states={1: {"stocks": 4}, 2: {"stocks": 4}})
        replay.frame(
            900,
            states={1: {"stocks": 4}, 2: {"stocks": 3, "action": DEAD_DOWN, "last_hit_by": 1}},
        )
        replay.game_end(method=2)

        statistics = parse_replay(replay.build()).statistics

        assert statistics.player_stats[1].kill_count == 1
        assert statistics.player_stats[2].death_count == 1
        assert statistics.player_stats[2].stocks_remaining == 3
        kills = statistics.events_by_type(GameEventType.KILL)
        assert len(kills) == 1
        assert kills[0].frame == 900
        assert kills[0].player == 1
        assert kills[0].data == {"victim": 2}
        assert statistics.total_kills() == 1

    def test_killer_from_previous_tick(self, frame_factory):
        """Test the killer can come from the previous tick."""
        frames = [
            frame_factory(0, {1: {"stocks": 4, "action_state": WAIT}, 2: {"stocks": 4, "last_hit_by": 1}}),
            frame_factory(1, {1: {"stocks": 4, "action_state": WAIT}, 2: {"stocks": 3, "action_state": DEAD_DOWN}}),
        ]
        statistics = compute_statistics(frames, _settings())

        assert statistics.player_stats[1].kill_count == 1

    def test_self_destruct_has_no_killer(self, frame_factory):
        """Test a self destruct has no killer."""
        frames = [
            frame_factory(0, {1: {"stocks": 4}, 2: {"stocks": 4}}),
            frame_factory(1, {1: {"stocks": 4}, 2: {"stocks": 3, "action_state": DEAD_DOWN, "last_hit_by": 2}}),
        ]
        statistics = compute_statistics(frames, _settings())

        assert statistics.player_stats[2].death_count == 1
        assert statistics.total_kills() == 0
        assert statistics.events_by_type(GameEventType.KILL)[0].player is None

    def test_stock_drop_outside_death_state_is_not_a_kill(self, frame_factory):
        """Test a stock drop outside a death state."""
        frames = [
            frame_factory(0, {1: {"stocks": 4, "action_state": WAIT}}),
            frame_factory(1, {1: {"stocks": 3, "action_state": WAIT}}),
        ]
        statistics = compute_statistics(frames, _settings(ports=(1,)))
        assert statistics.player_stats[1].death_count == 0


class TestDamage:
    """Test damage accumulation and attribution."""

    def test_damage_credited_to_last_hit_by(self, frame_factory):
        """Test damage is credited to last_hit_by."""
        frames = [
            frame_factory(0, {1: {"percent": 0.0}, 2: {"percent": 0.0}}),
            frame_factory(1, {1: {"percent": 0.0}, 2: {"percent": 10.5, "last_hit_by": 1}}),
            frame_factory(2, {1: {"percent": 0.0}, 2: {"percent": 14.0, "last_hit_by": 1}}),
        ]
        statistics = compute_statistics(frames, _settings())

        assert statistics.player_stats[1].damage_dealt == 14.0
        assert statistics.player_stats[2].damage_taken == 14.0
        assert statistics.player_stats[1].damage_taken == 0.0
        assert statistics.player_stats[1].opening_count == 1

    def test_singles_attacker_fallback(self, frame_factory):
        """Test singles damage falls back to the only opponent."""
        frames = [
            frame_factory(0, {1: {"percent": 0.0}, 2: {"percent": 0.0}}),
            frame_factory(1, {1: {"percent": 0.0}, 2: {"percent": 7.0}}),
        ]
        statistics = compute_statistics(frames, _settings())
        assert statistics.player_stats[1].damage_dealt == 7.0

    def test_no_fallback_with_more_opponents(self, frame_factory):
        """Test no fallback with several opponents."""
        frames = [
            frame_factory(0, {1: {"percent": 0.0}, 2: {"percent": 0.0}, 3: {"percent": 0.0}}),
            frame_factory(1, {1: {"percent": 0.0}, 2: {"percent": 7.0}, 3: {"percent": 0.0}}),
        ]
        statistics = compute_statistics(frames, _settings(ports=(1, 2, 3)))

        assert statistics.player_stats[2].damage_taken == 7.0
        assert statistics.total_damage_dealt() == 0.0

    def test_percent_reset_is_not_damage(self, frame_factory):
        """Test a percent reset is not damage."""
        frames = [
            frame_factory(0, {1: {"percent": 80.0}}),
            frame_factory(1, {1: {"percent": 0.0}}),
        ]
        statistics = compute_statistics(frames, _settings(ports=(1,)))
        assert statistics.player_stats[1].damage_taken == 0.0

    def test_unobserved_player_stays_unset(self, frame_factory):
        """Test a player never seen keeps unset damage."""
        statistics = compute_statistics([frame_factory(0, {1: {"percent": 0.0}})], _settings())

        assert statistics.player_stats[1].damage_dealt == 0.0
        assert statistics.player_stats[2].damage_dealt is None
        assert statistics.player_stats[2].stocks_remaining is None


class TestMatchFields:
    """Test counters and match-level results."""

    def test_action_count(self, frame_factory):
        """Test action state changes are counted."""
        actions = [WAIT, WAIT, 0x14, 0x14, WAIT]
        frames = [frame_factory(i, {1: {"action_state": a}}) for i, a in enumerate(actions)]
        statistics = compute_statistics(frames, _settings(ports=(1,)))
        assert statistics.player_stats[1].action_count == 2

    def test_winner_is_only_player_with_stocks(self, frame_factory):
        """Test the winner is the only player left."""
        frames = [frame_factory(0, {1: {"stocks": 2}, 2: {"stocks": 0}})]
        statistics = compute_statistics(frames, _settings())
        assert statistics.winner == 1

    def test_no_winner_when_several_alive(self, frame_factory):
        """Test no winner while several players have stocks."""
        frames = [frame_factory(0, {1: {"stocks": 2}, 2: {"stocks": 1}})]
        assert compute_statistics(frames, _settings()).winner is None

    def test_duration_and_end_method(self, frame_factory):
        """Test duration and game end method."""
        frames = [frame_factory(i, {1: {"stocks": 4}}) for i in range(90)]
        end = GameEndEvent(offset=0, method_code=2, lras_initiator=None)
        statistics = compute_statistics(frames, _settings(ports=(1,)), game_end=end)

        assert statistics.total_frames == 90
        assert statistics.match_duration == 1.5
        assert statistics.game_end_method == GameEndMethod.GAME

    def test_unknown_end_method(self, frame_factory):
        """Test an unknown end code leaves the method unset."""
        end = GameEndEvent(offset=0, method_code=5, lras_initiator=None)
        statistics = compute_statistics([frame_factory(0)], _settings(), game_end=end)
        assert statistics.game_end_method is None

    def test_lazy_frames(self, frame_factory):
        """Test folding a generator of frames."""
        frames = (frame_factory(i, {1: {"stocks": 4}}) for i in range(3))
        assert compute_statistics(frames, _settings(ports=(1,))).total_frames == 3

    def test_update_after_finish_rejected(self, frame_factory):
        """Test updates after finish are rejected."""
        pipeline = StatisticsPipeline(_settings())
        pipeline.update(frame_factory(0))
        statistics = pipeline.finish()

        assert pipeline.finish() is statistics
        with pytest.raises(RuntimeError):
            pipeline.update(frame_factory(1))

    def test_technique_events_are_recorded(self, frame_factory):
        """Test technique events reach the statistics."""
        frames = [
            frame_factory(0, {1: {"action_state": 0x1D}}),
            frame_factory(1, {1: {"action_state": 0xFC}}),
        ]
        statistics = compute_statistics(frames, _settings(ports=(1,)))

        assert statistics.player_stats[1].ledge_grab_count == 1
        assert statistics.events_by_player(1)[0].type == GameEventType.LEDGE_GRAB

    def test_statistics_validate(self, frame_factory):
        """Test computed statistics validate."""
        frames = [frame_factory(0, {1: {"stocks": 4}, 2: {"stocks": 4}})]
        assert compute_statistics(frames, _settings()).validate().ok
