"""
Frame Reconciliation Engine.

Rollback netcode re-simulates ticks and re-emits their frame events, so the
raw stream can contain the same frame index many times. The reconciler keeps
the last pre-frame and post-frame update seen for each (frame, port) and
emits one immutable Frame per index, in strictly increasing order.

A frame is closed when any of these holds:
- a bookend reports a latest finalised frame at or beyond it (recordings 3.7+)
- the newest index seen is more than `rollback_window` ticks ahead of it
- the event stream ends

A bookend that only names its own frame (recordings before 3.7) does not
close it, and neither does the start of the next index: a rollback can
re-simulate that frame after both. Such frames close through the window.

Updates that arrive for an already emitted index are reported as
LateRollback and dropped. Missing indices are reported as FrameGap; no
placeholder frames are created.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Iterator
from dataclasses import astuple, dataclass, field

from slpkit.core.errors import FrameGap, LateRollback, ParseIssue, PortOutOfRange
from slpkit.core.events import (
    FrameBookendEvent,
    FrameStartEvent,
    PostFrameEvent,
    PreFrameEvent,
    ReplayEvent,
)
from slpkit.core.models import (
    MAX_PORT,
    MIN_PORT,
    Frame,
    InputData,
    PlayerFrameState,
    PostFrameData,
    PreFrameData,
)

logger = logging.getLogger(__name__)

DEFAULT_ROLLBACK_WINDOW = 7


def _state_key(event: PreFrameEvent | PostFrameEvent) -> tuple:
    # Byte offset differs between re-emissions; compare the decoded state only
    return astuple(event)[1:]


@dataclass
class _PendingFrame:
    index: int
    pre: dict[int, PreFrameEvent] = field(default_factory=dict)
    post: dict[int, PostFrameEvent] = field(default_factory=dict)
    first_pre: dict[int, tuple] = field(default_factory=dict)
    first_post: dict[int, tuple] = field(default_factory=dict)

    def add_pre(self, event: PreFrameEvent) -> None:
        if event.port not in self.first_pre:
            self.first_pre[event.port] = _state_key(event)
        self.pre[event.port] = event

    def add_post(self, event: PostFrameEvent) -> None:
        if event.port not in self.first_post:
            self.first_post[event.port] = _state_key(event)
        self.post[event.port] = event

    def was_overwritten(self) -> bool:
        for port, event in self.pre.items():
            if self.first_pre[port] != _state_key(event):
                return True
        for port, event in self.post.items():
            if self.first_post[port] != _state_key(event):
                return True
        return False


def _recorded_velocity(event: PostFrameEvent) -> tuple[float, float] | None:
    if event.self_air_x_speed is None:
        return None
    if event.airborne is False and event.self_ground_x_speed is not None:
        self_x = event.self_ground_x_speed
    else:
        self_x = event.self_air_x_speed
    vx = self_x + (event.attack_x_speed or 0.0)
    vy = (event.self_y_speed or 0.0) + (event.attack_y_speed or 0.0)
    return vx, vy


class FrameReconciler:
    """
    Folds pre/post/bookend events into finalised frames.

    With the default window a frame stays open for 7 ticks after a newer
    index appears, so a bookend without a finalised frame index is only a
    frame boundary, not a finalisation point. Pass rollback_window=0 to
    close each frame as soon as the next one starts.

    Example:
        reconciler = FrameReconciler(rollback_window=7)
        for frame in reconciler.reconcile(demux.events()):
            ...
        reconciler.issues  # FrameGap / LateRollback / PortOutOfRange values
    """

    def __init__(self, rollback_window: int = DEFAULT_ROLLBACK_WINDOW):
        if rollback_window < 0:
            raise ValueError("rollback_window must be non-negative")
        self.rollback_window = rollback_window
        self.issues: list[ParseIssue] = []
        self.frames_emitted = 0
        self.rollback_frames = 0

        self._pending: dict[int, _PendingFrame] = {}
        self._newest: int | None = None
        self._last_emitted: int | None = None
        self._late_reported: set[int] = set()
        self._rejected_ports: set[int] = set()
        self._previous_positions: dict[int, tuple[float, float]] = {}

    @property
    def last_emitted(self) -> int | None:
        return self._last_emitted

    # ------------------------------------------------------------------
    # Event intake
    # ------------------------------------------------------------------

    def push(self, event: ReplayEvent) -> list[Frame]:
        """Feed one event and return any frames it closed."""
        if isinstance(event, (PreFrameEvent, PostFrameEvent)):
            # Nana's updates share her leader's port
            if event.is_follower:
                return []
            if not MIN_PORT <= event.port <= MAX_PORT:
                self._reject_port(event.port, event.frame)
                return []
            pending = self._pending_for(event.frame)
            if pending is None:
                return []
            if isinstance(event, PreFrameEvent):
                pending.add_pre(event)
            else:
                pending.add_post(event)
            return self._advance(event.frame)

        if isinstance(event, FrameStartEvent):
            if self._is_late(event.frame):
                return []
            return self._advance(event.frame)

        if isinstance(event, FrameBookendEvent):
            if event.latest_finalized_frame is not None:
                return self._close_through(event.latest_finalized_frame)
            return []

        return []

    def flush(self) -> list[Frame]:
        """Close every frame still in flight."""
        frames = [self._emit(self._pending.pop(i)) for i in sorted(self._pending)]
        logger.debug(
            f"Reconciled {self.frames_emitted} frames "
            f"({self.rollback_frames} rolled back, {len(self.issues)} issues)"
        )
        return frames

    def reconcile(
        self,
        events: Iterable[ReplayEvent],
        on_event: Callable[[ReplayEvent], None] | None = None,
    ) -> Iterator[Frame]:
        """
        Lazily turn an event stream into frames.

        Events that are not frame updates are handed to `on_event` in stream
        order. Stopping iteration early leaves the rest of the stream unread.
        """
        for event in events:
            if on_event is not None and not isinstance(
                event, (PreFrameEvent, PostFrameEvent, FrameStartEvent, FrameBookendEvent)
            ):
                on_event(event)
            yield from self.push(event)
        yield from self.flush()

    # ------------------------------------------------------------------
    # Finalisation
    # ------------------------------------------------------------------

    def _reject_port(self, port: int, index: int) -> None:
        if port in self._rejected_ports:
            return
        self._rejected_ports.add(port)
        self.issues.append(
            PortOutOfRange(
                f"Frame update for port {port} ignored, ports run from {MIN_PORT} to {MAX_PORT}",
                frame=index,
                port=port,
            )
        )
        logger.warning(f"Ignoring updates for out-of-range port {port} from frame {index}")

    def _is_late(self, index: int) -> bool:
        return self._last_emitted is not None and index <= self._last_emitted

    def _pending_for(self, index: int) -> _PendingFrame | None:
        if self._is_late(index):
            if index not in self._late_reported:
                self._late_reported.add(index)
                self.issues.append(
                    LateRollback(f"Update for frame {index} arrived after it was finalised", frame=index)
                )
                logger.warning(f"Late rollback for frame {index} ignored")
            return None
        pending = self._pending.get(index)
        if pending is None:
            pending = self._pending[index] = _PendingFrame(index)
        return pending

    def _advance(self, index: int) -> list[Frame]:
        if self._newest is not None and index <= self._newest:
            return []
        self._newest = index
        return self._close_through(index - self.rollback_window - 1)

    def _close_through(self, limit: int) -> list[Frame]:
        ready = sorted(i for i in self._pending if i <= limit)
        return [self._emit(self._pending.pop(i)) for i in ready]

    def _emit(self, pending: _PendingFrame) -> Frame:
        index = pending.index
        if self._last_emitted is not None and index != self._last_emitted + 1:
            expected = self._last_emitted + 1
            self.issues.append(
                FrameGap(
                    f"Expected frame {expected}, got {index}",
                    frame=index,
                    expected=expected,
                    actual=index,
                )
            )
            logger.warning(f"Frame gap: expected {expected}, got {index}")

        is_rollback = pending.was_overwritten()
        frame = Frame(
            index=index,
            pre_frame=self._build_pre(pending),
            post_frame=self._build_post(pending),
            is_rollback=is_rollback,
        )

        self._last_emitted = index
        self.frames_emitted += 1
        if is_rollback:
            self.rollback_frames += 1
        return frame

    # ------------------------------------------------------------------
    # Frame construction
    # ------------------------------------------------------------------

    def _build_pre(self, pending: _PendingFrame) -> PreFrameData:
        states: dict[int, PlayerFrameState] = {}
        inputs: dict[int, InputData] = {}
        for port in sorted(pending.pre):
            event = pending.pre[port]
            states[port] = PlayerFrameState(
                position_x=event.position_x,
                position_y=event.position_y,
                action_state=event.action_state,
                facing_direction=event.facing_direction,
                percent=event.percent,
            )
            inputs[port] = InputData(
                buttons=event.physical_buttons,
                joystick_x=event.joystick_x,
                joystick_y=event.joystick_y,
                c_stick_x=event.c_stick_x,
                c_stick_y=event.c_stick_y,
                trigger=event.trigger,
                processed_buttons=event.processed_buttons,
            )
        return PreFrameData(player_states=states, inputs=inputs)

    def _build_post(self, pending: _PendingFrame) -> PostFrameData:
        states: dict[int, PlayerFrameState] = {}
        positions: dict[int, tuple[float, float]] = {}
        velocities: dict[int, tuple[float, float]] = {}
        animations: dict[int, int] = {}

        for port in sorted(pending.post):
            event = pending.post[port]
            position = None
            if event.position_x is not None and event.position_y is not None:
                position = (event.position_x, event.position_y)

            velocity = _recorded_velocity(event)
            if velocity is None and position is not None:
                previous = self._previous_positions.get(port)
                if previous is not None:
                    velocity = (position[0] - previous[0], position[1] - previous[1])

            animation = event.animation_index if event.animation_index is not None else event.action_state

            states[port] = PlayerFrameState(
                position_x=event.position_x,
                position_y=event.position_y,
                velocity_x=velocity[0] if velocity else None,
                velocity_y=velocity[1] if velocity else None,
                animation_state=animation,
                action_state=event.action_state,
                facing_direction=event.facing_direction,
                percent=event.percent,
                shield_size=event.shield_size,
                last_attack_landed=event.last_attack_landed,
                combo_count=event.combo_count,
                last_hit_by=event.last_hit_by,
                stocks=event.stocks,
                character_id=event.character_id,
                airborne=event.airborne,
                l_cancel_status=event.l_cancel_status,
                hitlag_remaining=event.hitlag_remaining,
                jumps_remaining=event.jumps_remaining,
            )
            if position is not None:
                positions[port] = position
                self._previous_positions[port] = position
            if velocity is not None:
                velocities[port] = velocity
            if animation is not None:
                animations[port] = animation

        return PostFrameData(
            player_states=states,
            positions=positions,
            velocities=velocities,
            animation_states=animations,
        )


def reconcile_frames(
    events: Iterable[ReplayEvent],
    rollback_window: int = DEFAULT_ROLLBACK_WINDOW,
    issues: list[ParseIssue] | None = None,
) -> Iterator[Frame]:
    """Generator over reconciled frames; issues are appended to `issues` if given."""
    reconciler = FrameReconciler(rollback_window)
    try:
        yield from reconciler.reconcile(events)
    finally:
        if issues is not None:
            issues.extend(reconciler.issues)
