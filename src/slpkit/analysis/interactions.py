"""
Player interaction classification.

A hit is a tick on which a victim's percent rises and the damage is credited
to an attacker. Hits by the same attacker on the same victim belong to one
string until `punish_reset_ticks` pass without another hit; the first hit of a
string is an opening.

Openings are classified once `trade_tolerance` ticks have passed:
- beneficial_trade: both players opened each other within the tolerance;
  the side that dealt more damage in the exchange wins it
- counter_hit: the victim had a string running on the attacker
- neutral_win: anything else
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from slpkit.core.config import DetectionThresholds
from slpkit.core.constants import GameEventType
from slpkit.core.models import GameEvent, PlayerStats

logger = logging.getLogger(__name__)

TRADE = "trade"


@dataclass(frozen=True)
class Hit:
    """Damage credited to an attacker on one tick."""

    frame: int
    attacker: int
    victim: int
    damage: float


@dataclass
class Opening:
    """First hit of a string, awaiting classification."""

    frame: int
    attacker: int
    victim: int
    damage: float
    counter: bool


@dataclass
class InteractionTracker:
    """Tracks strings between every ordered pair of players."""

    thresholds: DetectionThresholds = field(default_factory=DetectionThresholds)

    _last_hit: dict[tuple[int, int], int] = field(default_factory=dict, init=False)
    _pending: list[Opening] = field(default_factory=list, init=False)

    def _string_active(self, attacker: int, victim: int, frame: int) -> bool:
        last = self._last_hit.get((attacker, victim))
        return last is not None and frame - last <= self.thresholds.punish_reset_ticks

    def update(
        self, frame: int, hits: list[Hit], stats: dict[int, PlayerStats]
    ) -> list[GameEvent]:
        """Register this tick's hits and classify openings whose window closed."""
        openings = []
        for hit in hits:
            if self._string_active(hit.attacker, hit.victim, frame - 1):
                continue
            openings.append(
                Opening(
                    frame=frame,
                    attacker=hit.attacker,
                    victim=hit.victim,
                    damage=hit.damage,
                    counter=self._string_active(hit.victim, hit.attacker, frame - 1),
                )
            )

        # String state is read as of the previous tick so simultaneous hits see each other
        for hit in hits:
            self._last_hit[(hit.attacker, hit.victim)] = frame

        self._pending.extend(openings)
        return self._resolve(frame - self.thresholds.trade_tolerance - 1, stats)

    def finish(self, stats: dict[int, PlayerStats]) -> list[GameEvent]:
        """Classify every opening still waiting on its trade window."""
        if not self._pending:
            return []
        return self._resolve(max(o.frame for o in self._pending), stats)

    def _resolve(self, through: int, stats: dict[int, PlayerStats]) -> list[GameEvent]:
        events: list[GameEvent] = []
        tolerance = self.thresholds.trade_tolerance

        while self._pending and self._pending[0].frame <= through:
            opening = self._pending.pop(0)
            partner = next(
                (
                    other
                    for other in self._pending
                    if other.attacker == opening.victim
                    and other.victim == opening.attacker
                    and other.frame - opening.frame <= tolerance
                ),
                None,
            )

            if partner is None:
                kind = GameEventType.COUNTER_HIT if opening.counter else GameEventType.NEUTRAL_WIN
                events.extend(self._record(opening, kind, stats))
                continue

            self._pending.remove(partner)
            events.extend(self._record_trade(opening, partner, stats))

        return events

    def _record(
        self, opening: Opening, kind: GameEventType, stats: dict[int, PlayerStats]
    ) -> list[GameEvent]:
        attacker_stats = stats.get(opening.attacker)
        if attacker_stats is not None:
            attacker_stats.opening_count += 1
            if kind == GameEventType.COUNTER_HIT:
                attacker_stats.counter_hit_count += 1
            elif kind == GameEventType.NEUTRAL_WIN:
                attacker_stats.neutral_win_count += 1

        data = {"victim": opening.victim, "damage": opening.damage, "opening_type": str(kind)}
        return [
            GameEvent(GameEventType.OPENING, opening.frame, opening.attacker, data),
            GameEvent(kind, opening.frame, opening.attacker, {"victim": opening.victim}),
        ]

    def _record_trade(
        self, first: Opening, second: Opening, stats: dict[int, PlayerStats]
    ) -> list[GameEvent]:
        events = []
        for opening in (first, second):
            attacker_stats = stats.get(opening.attacker)
            if attacker_stats is not None:
                attacker_stats.opening_count += 1
            events.append(
                GameEvent(
                    GameEventType.OPENING,
                    opening.frame,
                    opening.attacker,
                    {"victim": opening.victim, "damage": opening.damage, "opening_type": TRADE},
                )
            )

        if first.damage == second.damage:
            logger.debug(f"Even trade between ports {first.attacker} and {second.attacker}")
            return events

        winner = first if first.damage > second.damage else second
        loser = second if winner is first else first
        winner_stats = stats.get(winner.attacker)
        if winner_stats is not None:
            winner_stats.beneficial_trade_count += 1
        events.append(
            GameEvent(
                GameEventType.BENEFICIAL_TRADE,
                max(first.frame, second.frame),
                winner.attacker,
                {"victim": winner.victim, "damage": winner.damage, "damage_taken": loser.damage},
            )
        )
        return events
