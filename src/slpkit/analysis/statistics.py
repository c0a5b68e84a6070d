"""
Statistics Pipeline.

A single ordered fold over reconciled frames. Each port carries its own
rolling state from tick to tick; nothing looks ahead or back beyond the
windows configured in DetectionThresholds.

Per tick and per port the pipeline:
- counts action-state changes
- accumulates damage dealt/taken from positive percent deltas
- detects stock losses in a death state and credits the killer
- feeds the technique tracker (wavedash, dash dance, ledge grab, L-cancel)
and, across ports, feeds the interaction tracker with the tick's hits.

Usage:
    pipeline = StatisticsPipeline(settings)
    for frame in frames:
        pipeline.update(frame)
    pipeline.record_game_end(end_event)
    stats = pipeline.finish()
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass

from slpkit.analysis.interactions import Hit, InteractionTracker
from slpkit.analysis.techniques import TechniqueTracker
from slpkit.core.config import DetectionThresholds
from slpkit.core.constants import (
    FRAMES_PER_SECOND,
    ActionStateTable,
    GameEndMethod,
    GameEventType,
    action_state_table,
)
from slpkit.core.events import GameEndEvent
from slpkit.core.models import Frame, GameEvent, PlayerFrameState, PlayerStats, Settings, Statistics

logger = logging.getLogger(__name__)


@dataclass
class _PortState:
    """Values carried from the previous tick for one port."""

    technique: TechniqueTracker
    action_state: int | None = None
    stocks: int | None = None
    percent: float | None = None
    last_hit_by: int | None = None
    observed: bool = False


class StatisticsPipeline:
    """Incremental statistics over a frame stream."""

    def __init__(
        self,
        settings: Settings,
        thresholds: DetectionThresholds | None = None,
        action_states: ActionStateTable | None = None,
    ):
        self.settings = settings
        self.thresholds = thresholds or DetectionThresholds()
        self.action_states = action_states or action_state_table(settings.version)

        self.statistics = Statistics()
        self._ports: dict[int, _PortState] = {}
        for port in settings.ports():
            self.statistics.put_player_stats(port, PlayerStats())
            self._ports[port] = _PortState(
                technique=TechniqueTracker(port, self.thresholds, self.action_states)
            )

        self._interactions = InteractionTracker(self.thresholds)
        self._frames_seen = 0
        self._game_end: GameEndEvent | None = None
        self._finished = False

    # ------------------------------------------------------------------
    # Fold
    # ------------------------------------------------------------------

    def update(self, frame: Frame) -> None:
        if self._finished:
            raise RuntimeError("Statistics pipeline already finished")
        self._frames_seen += 1

        hits: list[Hit] = []
        for port, tracked in self._ports.items():
            state = frame.get_post_player_state(port)
            if state is None:
                continue
            stats = self.statistics.player_stats[port]
            self._observe(frame.index, port, state, tracked, stats, hits)
            for event in tracked.technique.update(
                frame.index, state, frame.get_player_inputs(port), stats
            ):
                self.statistics.add_event(event)
            self._carry(tracked, state)

        for event in self._interactions.update(frame.index, hits, self.statistics.player_stats):
            self.statistics.add_event(event)

    def _observe(
        self,
        index: int,
        port: int,
        state: PlayerFrameState,
        tracked: _PortState,
        stats: PlayerStats,
        hits: list[Hit],
    ) -> None:
        if not tracked.observed:
            tracked.observed = True
            stats.damage_dealt = stats.damage_dealt or 0.0
            stats.damage_taken = stats.damage_taken or 0.0

        if state.stocks is not None:
            stats.stocks_remaining = state.stocks

        if (
            tracked.action_state is not None
            and state.action_state is not None
            and state.action_state != tracked.action_state
        ):
            stats.action_count += 1

        if state.percent is not None and tracked.percent is not None:
            delta = state.percent - tracked.percent
            if delta > 0:
                stats.add_damage_taken(delta)
                attacker = self._attacker(port, state.last_hit_by)
                if attacker is not None:
                    self.statistics.player_stats[attacker].add_damage_dealt(delta)
                    hits.append(Hit(index, attacker, port, delta))

        if (
            state.stocks is not None
            and tracked.stocks is not None
            and state.stocks < tracked.stocks
            and (
                self.action_states.is_dead(state.action_state)
                or self.action_states.is_dead(tracked.action_state)
            )
        ):
            self._record_kill(index, port, state, tracked, stats)

    def _attacker(self, victim: int, last_hit_by: int | None) -> int | None:
        if last_hit_by is not None and last_hit_by != victim and last_hit_by in self._ports:
            return last_hit_by
        # In singles the only opponent is the only possible source
        opponents = [port for port in self._ports if port != victim]
        if len(opponents) == 1 and not self.settings.is_teams:
            return opponents[0]
        return None

    def _record_kill(
        self,
        index: int,
        victim: int,
        state: PlayerFrameState,
        tracked: _PortState,
        stats: PlayerStats,
    ) -> None:
        stats.death_count += 1
        killer = state.last_hit_by if state.last_hit_by is not None else tracked.last_hit_by
        if killer == victim or killer not in self._ports:
            killer = None
        if killer is not None:
            self.statistics.player_stats[killer].kill_count += 1

        logger.debug(f"Port {victim} lost a stock at frame {index} (killer: {killer})")
        self.statistics.add_event(
            GameEvent(GameEventType.KILL, index, killer, {"victim": victim})
        )

    @staticmethod
    def _carry(tracked: _PortState, state: PlayerFrameState) -> None:
        if state.action_state is not None:
            tracked.action_state = state.action_state
        if state.stocks is not None:
            tracked.stocks = state.stocks
        if state.percent is not None:
            tracked.percent = state.percent
        tracked.last_hit_by = state.last_hit_by

    # ------------------------------------------------------------------
    # Completion
    # ------------------------------------------------------------------

    def record_game_end(self, event: GameEndEvent) -> None:
        self._game_end = event

    def finish(self) -> Statistics:
        """Close open windows and fill in the match-level fields."""
        if self._finished:
            return self.statistics
        self._finished = True

        for event in self._interactions.finish(self.statistics.player_stats):
            self.statistics.add_event(event)

        statistics = self.statistics
        statistics.total_frames = self._frames_seen
        statistics.match_duration = round(self._frames_seen / float(FRAMES_PER_SECOND), 2)
        statistics.winner = self._winner()

        if self._game_end is not None:
            try:
                statistics.game_end_method = GameEndMethod(self._game_end.method_code)
            except ValueError:
                logger.debug(f"Unknown game end method {self._game_end.method_code}")

        logger.debug(
            f"Statistics complete: {self._frames_seen} frames, "
            f"{len(statistics.game_events)} events, winner {statistics.winner}"
        )
        return statistics

    def _winner(self) -> int | None:
        alive = [
            port
            for port, stats in self.statistics.player_stats.items()
            if stats.stocks_remaining is not None and stats.stocks_remaining > 0
        ]
        return alive[0] if len(alive) == 1 else None


def compute_statistics(
    frames: Iterable[Frame],
    settings: Settings,
    game_end: GameEndEvent | None = None,
    thresholds: DetectionThresholds | None = None,
) -> Statistics:
    """Fold a frame sequence (list or lazy iterator) into Statistics."""
    pipeline = StatisticsPipeline(settings, thresholds)
    for frame in frames:
        pipeline.update(frame)
    if game_end is not None:
        pipeline.record_game_end(game_end)
    return pipeline.finish()
