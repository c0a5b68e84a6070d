"""
Per-player technique detection.

Each tracker is a small state machine over one player's action-state
sequence. It is fed one tick at a time by the statistics pipeline and
updates the player's counters in place:
- air dodges, wavedashes and wavelands
- dash dances
- ledge grabs
- L-cancel successes and failures

Action-state ids come from an ActionStateTable and every tick window from
DetectionThresholds, so detection logic never carries literal state codes.
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field

from slpkit.core.config import DetectionThresholds
from slpkit.core.constants import (
    L_CANCEL_FAIL,
    L_CANCEL_SUCCESS,
    LAG_REDUCTION_BUTTONS,
    MELEE_ACTION_STATES,
    ActionStateTable,
    GameEventType,
)
from slpkit.core.models import GameEvent, InputData, PlayerFrameState, PlayerStats

logger = logging.getLogger(__name__)


def lag_reduction_pressed(inputs: InputData | None, trigger_threshold: float) -> bool | None:
    """Whether L, R or Z is asserted; None when the tick carries no input data."""
    if inputs is None:
        return None
    if inputs.processed_buttons is None and inputs.trigger is None:
        return None
    if inputs.processed_buttons is not None and inputs.processed_buttons & LAG_REDUCTION_BUTTONS:
        return True
    return inputs.trigger is not None and inputs.trigger >= trigger_threshold


def _facing_sign(value: float | None) -> int:
    if value is None or value == 0:
        return 0
    return 1 if value > 0 else -1


@dataclass
class TechniqueTracker:
    """Rolling technique state for one port."""

    port: int
    thresholds: DetectionThresholds = field(default_factory=DetectionThresholds)
    states: ActionStateTable = MELEE_ACTION_STATES

    _previous_state: int | None = field(default=None, init=False)
    _previous_facing: int = field(default=0, init=False)
    _last_jumpsquat: int | None = field(default=None, init=False)
    _air_dodge_frame: int | None = field(default=None, init=False)
    _air_dodge_from_jump: bool = field(default=False, init=False)
    _reversals: deque[int] = field(default_factory=deque, init=False)
    _inputs: deque[tuple[int, bool]] = field(default_factory=deque, init=False)

    def update(
        self,
        frame: int,
        state: PlayerFrameState,
        inputs: InputData | None,
        stats: PlayerStats,
    ) -> list[GameEvent]:
        """Advance one tick and return the technique events it completed."""
        events: list[GameEvent] = []
        action = state.action_state
        entered = action is not None and action != self._previous_state

        self._record_input(frame, inputs)

        if action == self.states.knee_bend:
            self._last_jumpsquat = frame

        if entered and action == self.states.escape_air:
            stats.air_dodge_count += 1
            self._air_dodge_frame = frame
            self._air_dodge_from_jump = (
                self._last_jumpsquat is not None
                and frame - self._last_jumpsquat <= self.thresholds.jumpsquat_lookback
            )

        if entered and action == self.states.landing_fall_special:
            event = self._check_wavedash(frame, state, stats)
            if event is not None:
                events.append(event)

        if (
            self._air_dodge_frame is not None
            and frame - self._air_dodge_frame > self.thresholds.wavedash_landing_window
        ):
            self._air_dodge_frame = None

        dash_dance = self._check_dash_dance(frame, action, state.facing_direction, stats)
        if dash_dance is not None:
            events.append(dash_dance)

        if entered and action == self.states.cliff_catch:
            stats.ledge_grab_count += 1
            events.append(GameEvent(GameEventType.LEDGE_GRAB, frame, self.port))

        if (
            entered
            and self._previous_state in self.states.aerial_attacks
            and action in self.states.aerial_landings
        ):
            l_cancel = self._check_l_cancel(frame, state, stats)
            if l_cancel is not None:
                events.append(l_cancel)

        self._previous_state = action
        return events

    # ------------------------------------------------------------------
    # Detectors
    # ------------------------------------------------------------------

    def _check_wavedash(
        self, frame: int, state: PlayerFrameState, stats: PlayerStats
    ) -> GameEvent | None:
        if self._air_dodge_frame is None:
            return None
        if frame - self._air_dodge_frame > self.thresholds.wavedash_landing_window:
            return None
        if state.velocity_x is None or abs(state.velocity_x) < self.thresholds.wavedash_min_speed:
            return None

        started = self._air_dodge_frame
        self._air_dodge_frame = None
        if self._air_dodge_from_jump:
            stats.wavedash_count += 1
            event_type = GameEventType.WAVEDASH
        else:
            stats.waveland_count += 1
            event_type = GameEventType.WAVELAND
        return GameEvent(
            event_type,
            frame,
            self.port,
            {"air_dodge_frame": started, "velocity_x": state.velocity_x},
        )

    def _check_dash_dance(
        self, frame: int, action: int | None, facing: float | None, stats: PlayerStats
    ) -> GameEvent | None:
        if not self.states.is_dashing(action):
            self._previous_facing = 0
            self._reversals.clear()
            return None

        # Only flips between two dash/turn ticks count as reversals
        sign = _facing_sign(facing)
        previous_sign = self._previous_facing
        if sign != 0:
            self._previous_facing = sign

        if sign != 0 and previous_sign != 0 and sign != previous_sign:
            self._reversals.append(frame)

        window = self.thresholds.dash_dance_window
        while self._reversals and frame - self._reversals[0] > window:
            self._reversals.popleft()

        if len(self._reversals) < 2:
            return None

        self._reversals.clear()
        stats.dash_dance_count += 1
        return GameEvent(GameEventType.DASH_DANCE, frame, self.port)

    def _record_input(self, frame: int, inputs: InputData | None) -> None:
        pressed = lag_reduction_pressed(inputs, self.thresholds.l_cancel_trigger_threshold)
        if pressed is not None:
            self._inputs.append((frame, pressed))
        window = self.thresholds.l_cancel_window
        while self._inputs and frame - self._inputs[0][0] > window:
            self._inputs.popleft()

    def _check_l_cancel(
        self, frame: int, state: PlayerFrameState, stats: PlayerStats
    ) -> GameEvent | None:
        if self._inputs:
            success = any(pressed for _, pressed in self._inputs)
            source = "input"
        elif state.l_cancel_status in (L_CANCEL_SUCCESS, L_CANCEL_FAIL):
            success = state.l_cancel_status == L_CANCEL_SUCCESS
            source = "recorded"
        else:
            logger.debug(f"Port {self.port} landed an aerial at {frame} with no L-cancel data")
            return None

        if success:
            stats.l_cancel_success += 1
        else:
            stats.l_cancel_fail += 1
        return GameEvent(
            GameEventType.L_CANCEL, frame, self.port, {"success": success, "source": source}
        )
