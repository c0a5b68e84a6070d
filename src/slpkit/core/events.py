"""
Event Demultiplexer for Slippi replay streams.

Wire format overview
--------------------
File (UBJSON container):
  {U\\x03raw[$U#l  <int32 big-endian raw length>
  <raw event stream of `length` bytes>
  U\\x08metadata{...}}

Raw event stream:
  0x35 <u8 n> (<u8 code> <u16 size>) x (n - 1) / 3     payload size table
  then repeated:
  <u8 code> <`size` bytes of body>

Event bodies are not self-delimiting, so the payload size table is required
to walk the stream. A raw length of zero means the recorder never finalised
the file; events then run until the metadata key or the end of input. A
stream that starts directly with 0x35 (no container) is also accepted.

All multi-byte values are big-endian. Fields appended by newer recorder
versions are decoded only when the body is long enough to contain them.
"""

from __future__ import annotations

import logging
import struct
from collections.abc import Iterator
from dataclasses import dataclass
from typing import Any

from slpkit.core.constants import CONTAINER_PREFIX, METADATA_KEY, EventType
from slpkit.core.cursor import ByteCursor, Cursor, open_cursor
from slpkit.core.errors import InvalidContainer, UnknownEventSize

logger = logging.getLogger(__name__)

_U8 = struct.Struct(">B")
_I8 = struct.Struct(">b")
_U16 = struct.Struct(">H")
_U32 = struct.Struct(">I")
_I32 = struct.Struct(">i")
_F32 = struct.Struct(">f")

# Events that carry nothing the decoder needs
_SKIPPED_EVENTS = {
    EventType.ITEM_UPDATE,
    EventType.GECKO_LIST,
    EventType.MESSAGE_SPLITTER,
}


def _field(body: bytes, offset: int, fmt: struct.Struct) -> Any:
    """Unpack one field, or None when the body predates it."""
    if offset + fmt.size > len(body):
        return None
    return fmt.unpack_from(body, offset)[0]


def _flag(body: bytes, offset: int) -> bool | None:
    value = _field(body, offset, _U8)
    return None if value is None else bool(value)


# ============================================================================
# Typed events
# ============================================================================


@dataclass(frozen=True, slots=True)
class GameStartEvent:
    """Raw game start body; decoded by slpkit.core.metadata (version dependent)."""

    offset: int
    body: bytes


@dataclass(frozen=True, slots=True)
class PreFrameEvent:
    offset: int
    frame: int
    port: int
    is_follower: bool
    random_seed: int | None
    action_state: int | None
    position_x: float | None
    position_y: float | None
    facing_direction: float | None
    joystick_x: float | None
    joystick_y: float | None
    c_stick_x: float | None
    c_stick_y: float | None
    trigger: float | None
    processed_buttons: int | None
    physical_buttons: int | None
    physical_l: float | None
    physical_r: float | None
    percent: float | None

    @classmethod
    def decode(cls, body: bytes, offset: int) -> PreFrameEvent:
        return cls(
            offset=offset,
            frame=_field(body, 0, _I32),
            port=_field(body, 4, _U8) + 1,
            is_follower=bool(_flag(body, 5)),
            random_seed=_field(body, 6, _U32),
            action_state=_field(body, 10, _U16),
            position_x=_field(body, 12, _F32),
            position_y=_field(body, 16, _F32),
            facing_direction=_field(body, 20, _F32),
            joystick_x=_field(body, 24, _F32),
            joystick_y=_field(body, 28, _F32),
            c_stick_x=_field(body, 32, _F32),
            c_stick_y=_field(body, 36, _F32),
            trigger=_field(body, 40, _F32),
            processed_buttons=_field(body, 44, _U32),
            physical_buttons=_field(body, 48, _U16),
            physical_l=_field(body, 50, _F32),
            physical_r=_field(body, 54, _F32),
            percent=_field(body, 59, _F32),
        )


@dataclass(frozen=True, slots=True)
class PostFrameEvent:
    offset: int
    frame: int
    port: int
    is_follower: bool
    character_id: int | None
    action_state: int | None
    position_x: float | None
    position_y: float | None
    facing_direction: float | None
    percent: float | None
    shield_size: float | None
    last_attack_landed: int | None
    combo_count: int | None
    last_hit_by: int | None
    stocks: int | None
    action_state_frame: float | None
    hitstun_remaining: float | None
    airborne: bool | None
    jumps_remaining: int | None
    l_cancel_status: int | None
    self_air_x_speed: float | None
    self_y_speed: float | None
    attack_x_speed: float | None
    attack_y_speed: float | None
    self_ground_x_speed: float | None
    hitlag_remaining: float | None
    animation_index: int | None

    @classmethod
    def decode(cls, body: bytes, offset: int) -> PostFrameEvent:
        last_hit_by = _field(body, 31, _U8)
        return cls(
            offset=offset,
            frame=_field(body, 0, _I32),
            port=_field(body, 4, _U8) + 1,
            is_follower=bool(_flag(body, 5)),
            character_id=_field(body, 6, _U8),
            action_state=_field(body, 7, _U16),
            position_x=_field(body, 9, _F32),
            position_y=_field(body, 13, _F32),
            facing_direction=_field(body, 17, _F32),
            percent=_field(body, 21, _F32),
            shield_size=_field(body, 25, _F32),
            last_attack_landed=_field(body, 29, _U8),
            combo_count=_field(body, 30, _U8),
            # Player index 0-3; anything else means nobody
            last_hit_by=last_hit_by + 1 if last_hit_by is not None and last_hit_by < 4 else None,
            stocks=_field(body, 32, _U8),
            action_state_frame=_field(body, 33, _F32),
            hitstun_remaining=_field(body, 42, _F32),
            airborne=_flag(body, 46),
            jumps_remaining=_field(body, 49, _U8),
            l_cancel_status=_field(body, 50, _U8),
            self_air_x_speed=_field(body, 52, _F32),
            self_y_speed=_field(body, 56, _F32),
            attack_x_speed=_field(body, 60, _F32),
            attack_y_speed=_field(body, 64, _F32),
            self_ground_x_speed=_field(body, 68, _F32),
            hitlag_remaining=_field(body, 72, _F32),
            animation_index=_field(body, 76, _U32),
        )


@dataclass(frozen=True, slots=True)
class FrameStartEvent:
    offset: int
    frame: int
    random_seed: int | None

    @classmethod
    def decode(cls, body: bytes, offset: int) -> FrameStartEvent:
        return cls(offset=offset, frame=_field(body, 0, _I32), random_seed=_field(body, 4, _U32))


@dataclass(frozen=True, slots=True)
class FrameBookendEvent:
    offset: int
    frame: int
    latest_finalized_frame: int | None

    @classmethod
    def decode(cls, body: bytes, offset: int) -> FrameBookendEvent:
        return cls(
            offset=offset,
            frame=_field(body, 0, _I32),
            latest_finalized_frame=_field(body, 4, _I32),
        )


@dataclass(frozen=True, slots=True)
class GameEndEvent:
    offset: int
    method_code: int
    lras_initiator: int | None

    @classmethod
    def decode(cls, body: bytes, offset: int) -> GameEndEvent:
        lras = _field(body, 1, _I8)
        return cls(
            offset=offset,
            method_code=_field(body, 0, _U8),
            # Player index of whoever pressed L+R+A+Start, -1 when nobody
            lras_initiator=lras + 1 if lras is not None and lras >= 0 else None,
        )


ReplayEvent = (
    GameStartEvent
    | PreFrameEvent
    | PostFrameEvent
    | FrameStartEvent
    | FrameBookendEvent
    | GameEndEvent
)

_DECODERS = {
    EventType.PRE_FRAME_UPDATE: PreFrameEvent.decode,
    EventType.POST_FRAME_UPDATE: PostFrameEvent.decode,
    EventType.FRAME_START: FrameStartEvent.decode,
    EventType.FRAME_BOOKEND: FrameBookendEvent.decode,
    EventType.GAME_END: GameEndEvent.decode,
}

# Smallest body each decoder can read its leading fields from
_MIN_BODY_SIZES = {
    EventType.PRE_FRAME_UPDATE: 5,
    EventType.POST_FRAME_UPDATE: 5,
    EventType.FRAME_START: 4,
    EventType.FRAME_BOOKEND: 4,
    EventType.GAME_END: 1,
}


# ============================================================================
# Container header and payload table
# ============================================================================


@dataclass(frozen=True)
class ContainerHeader:
    """Where the raw event stream sits inside the file."""

    has_container: bool
    raw_start: int
    raw_length: int  # 0 when unknown

    @property
    def raw_end(self) -> int | None:
        if not self.has_container or self.raw_length <= 0:
            return None
        return self.raw_start + self.raw_length


def read_container_header(cursor: Cursor) -> ContainerHeader:
    """Identify the container format and position the cursor at the raw stream."""
    start = cursor.offset
    prefix = cursor.peek(len(CONTAINER_PREFIX))

    if prefix == CONTAINER_PREFIX:
        cursor.skip(len(CONTAINER_PREFIX))
        raw_length = cursor.i32()
        return ContainerHeader(has_container=True, raw_start=cursor.offset, raw_length=raw_length)

    if prefix[:1] == bytes([EventType.EVENT_PAYLOADS]):
        logger.debug("No UBJSON container, treating input as a bare event stream")
        return ContainerHeader(has_container=False, raw_start=start, raw_length=0)

    raise InvalidContainer("Not a Slippi replay: unrecognised header", start)


def read_payload_sizes(cursor: Cursor) -> dict[int, int]:
    """Read the 0x35 event and return the event code -> body size table."""
    offset = cursor.offset
    code = cursor.u8()
    if code != EventType.EVENT_PAYLOADS:
        raise InvalidContainer(
            f"Expected payload size event 0x35, found 0x{code:02X}", offset
        )

    table_size = cursor.u8()
    if table_size < 1:
        raise InvalidContainer("Payload size event declares an empty table", offset)
    body = cursor.read(table_size - 1)
    sizes: dict[int, int] = {}
    for pos in range(0, len(body) - 2, 3):
        event_code = body[pos]
        sizes[event_code] = _U16.unpack_from(body, pos + 1)[0]

    logger.debug(f"Payload size table lists {len(sizes)} event types")
    return sizes


# ============================================================================
# Demultiplexer
# ============================================================================


class EventDemultiplexer:
    """
    Splits a replay into typed events.

    Usage:
        demux = EventDemultiplexer(data)
        for event in demux.events():
            ...
        blob = demux.metadata_blob()
    """

    def __init__(self, source: Any):
        self.cursor = open_cursor(source)
        self.header = read_container_header(self.cursor)
        self.payload_sizes = read_payload_sizes(self.cursor)
        self.event_count = 0
        self.skipped_count = 0
        self._exhausted = False

    def _at_raw_end(self) -> bool:
        raw_end = self.header.raw_end
        if raw_end is not None:
            return self.cursor.offset >= raw_end
        if self.cursor.at_end():
            return True
        return self.header.has_container and self.cursor.peek(len(METADATA_KEY)) == METADATA_KEY

    def events(self) -> Iterator[ReplayEvent]:
        """Yield typed events lazily, one body in memory at a time."""
        cursor = self.cursor
        sizes = self.payload_sizes

        while not self._at_raw_end():
            offset = cursor.offset
            code = cursor.u8()
            size = sizes.get(code)
            if size is None:
                raise UnknownEventSize(code, offset)

            body = cursor.read(size)
            self.event_count += 1

            if code == EventType.GAME_START:
                yield GameStartEvent(offset=offset, body=body)
                continue

            decoder = _DECODERS.get(code)
            if decoder is None or len(body) < _MIN_BODY_SIZES[code]:
                if code not in _SKIPPED_EVENTS:
                    logger.debug(f"Skipping event 0x{code:02X} ({size} bytes) at {offset}")
                self.skipped_count += 1
                continue

            yield decoder(body, offset)

        self._exhausted = True
        logger.debug(
            f"Event stream finished: {self.event_count} events, {self.skipped_count} skipped"
        )

    def skip_events(self) -> None:
        """Move past the raw stream without decoding event bodies."""
        if self._exhausted:
            return
        raw_end = self.header.raw_end
        if raw_end is not None and isinstance(self.cursor, ByteCursor):
            self.cursor.seek(raw_end)
            self._exhausted = True
            return
        for _ in self.events():
            pass

    def metadata_blob(self) -> bytes | None:
        """
        Return the trailing metadata object as a standalone UBJSON document.

        Must be called after the events have been consumed or skipped.
        """
        if not self.header.has_container:
            return None
        self.skip_events()
        rest = self.cursor.read_rest()
        if not rest.startswith(METADATA_KEY):
            logger.debug("Replay has no trailing metadata")
            return None
        return b"{" + rest


def iter_events(source: Any) -> Iterator[ReplayEvent]:
    """Convenience generator over every typed event in a replay source."""
    yield from EventDemultiplexer(source).events()
