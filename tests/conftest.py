"""Shared fixtures: a synthetic .slp writer and frame factories."""

from __future__ import annotations

import struct
from pathlib import Path
from typing import Any

import pytest
import ubjson

from slpkit.core.constants import CONTAINER_PREFIX, METADATA_KEY, Character, EventType, Stage
from slpkit.core.models import (
    Frame,
    InputData,
    PlayerFrameState,
    PostFrameData,
    PreFrameData,
)

GAME_START_SIZE = 0x2FC
PRE_FRAME_SIZE = 63
POST_FRAME_SIZE = 80
FRAME_START_SIZE = 8
FRAME_BOOKEND_SIZE = 8
GAME_END_SIZE = 2
ITEM_UPDATE_SIZE = 0x2B

DEFAULT_SIZES = {
    EventType.GAME_START: GAME_START_SIZE,
    EventType.PRE_FRAME_UPDATE: PRE_FRAME_SIZE,
    EventType.POST_FRAME_UPDATE: POST_FRAME_SIZE,
    EventType.GAME_END: GAME_END_SIZE,
    EventType.FRAME_START: FRAME_START_SIZE,
    EventType.ITEM_UPDATE: ITEM_UPDATE_SIZE,
    EventType.FRAME_BOOKEND: FRAME_BOOKEND_SIZE,
}

_PRE = struct.Struct(">iBBIH8fIHffbf")
_POST = struct.Struct(">iBBBH5f4Bf5sfBHBBB6fI")

DEFAULT_METADATA = {
    "startAt": "2023-01-01T12:00:00Z",
    "lastFrame": 120,
    "playedOn": "dolphin",
    "players": {
        "0": {"names": {"netplay": "Fox Main", "code": "FOX#123"}, "characters": {"2": 243}},
        "1": {"names": {"netplay": "Sword Guy", "code": "MAR#456"}, "characters": {"9": 243}},
    },
}


def _text(value: str | None, size: int) -> bytes:
    if value is None:
        return b"\x00" * size
    return value.encode("shift_jis")[:size].ljust(size, b"\x00")


class ReplayBuilder:
    """
    Writes syntactically valid Slippi replays event by event.

    Player dicts accept: port, character, type, stocks, costume, team, fix,
    tag, name, code.
    """

    def __init__(
        self,
        version: tuple[int, int, int] = (3, 14, 0),
        players: list[dict[str, Any]] | None = None,
        stage: int = Stage.BATTLEFIELD,
        is_teams: bool = False,
        sizes: dict[int, int] | None = None,
    ):
        self.version = version
        self.players = players if players is not None else [
            {"port": 1, "character": Character.FOX, "tag": "ＦＯＸ"},
            {"port": 2, "character": Character.MARTH},
        ]
        self.stage = stage
        self.is_teams = is_teams
        self.sizes = {**DEFAULT_SIZES, **(sizes or {})}
        self.events: list[bytes] = []

    # ------------------------------------------------------------------
    # Event bodies
    # ------------------------------------------------------------------

    def _sized(self, code: int, body: bytes) -> bytes:
        size = self.sizes[code]
        return bytes([code]) + body[:size].ljust(size, b"\x00")

    def add(self, code: int, body: bytes = b"") -> ReplayBuilder:
        self.events.append(self._sized(code, body))
        return self

    def game_start_body(self) -> bytes:
        body = bytearray(GAME_START_SIZE)
        body[0:4] = bytes([*self.version, 0])
        body[0xC] = int(self.is_teams)
        struct.pack_into(">b", body, 0xF, 0)
        struct.pack_into(">b", body, 0x10, -1)
        struct.pack_into(">H", body, 0x12, self.stage)
        struct.pack_into(">I", body, 0x14, 480)
        struct.pack_into(">I", body, 0x13C, 0xC0FFEE)

        for index in range(4):
            body[0x64 + 0x24 * index + 1] = 3

        for player in self.players:
            index = player["port"] - 1
            base = 0x64 + 0x24 * index
            body[base] = player.get("character", Character.FOX)
            body[base + 1] = player.get("type", 0)
            body[base + 2] = player.get("stocks", 4)
            body[base + 3] = player.get("costume", 0)
            body[base + 9] = player.get("team", 0)
            fix = player.get("fix", 1)
            struct.pack_into(">II", body, 0x140 + 8 * index, fix, fix)
            body[0x160 + 0x10 * index : 0x170 + 0x10 * index] = _text(player.get("tag"), 0x10)
            start = 0x1A4 + 0x1F * index
            body[start : start + 0x1F] = _text(player.get("name"), 0x1F)
            start = 0x220 + 0xA * index
            body[start : start + 0xA] = _text(player.get("code"), 0xA)

        body[0x1A0] = 0
        body[0x1A1] = 1
        body[0x2BD : 0x2BD + 0x33] = _text("mode.ranked-2023-01-01T12:00:00.00-0", 0x33)
        struct.pack_into(">I", body, 0x2F0, 3)
        struct.pack_into(">I", body, 0x2F4, 0)
        return bytes(body)

    def pre(
        self,
        frame: int,
        port: int,
        *,
        action: int = 0x0E,
        x: float = 0.0,
        y: float = 0.0,
        facing: float = 1.0,
        joystick: tuple[float, float] = (0.0, 0.0),
        c_stick: tuple[float, float] = (0.0, 0.0),
        trigger: float = 0.0,
        processed: int = 0,
        physical: int = 0,
        percent: float = 0.0,
        follower: bool = False,
    ) -> ReplayBuilder:
        body = _PRE.pack(
            frame, port - 1, int(follower), 0, action, x, y, facing,
            *joystick, *c_stick, trigger, processed, physical, trigger, 0.0, 0, percent,
        )
        return self.add(EventType.PRE_FRAME_UPDATE, body)

    def post(
        self,
        frame: int,
        port: int,
        *,
        character: int = Character.FOX,
        action: int = 0x0E,
        x: float = 0.0,
        y: float = 0.0,
        facing: float = 1.0,
        percent: float = 0.0,
        shield: float = 60.0,
        last_attack: int = 0,
        combo: int = 0,
        last_hit_by: int | None = None,
        stocks: int = 4,
        hitstun: float = 0.0,
        airborne: bool = False,
        jumps: int = 2,
        l_cancel: int = 0,
        air_x_speed: float = 0.0,
        y_speed: float = 0.0,
        attack_x_speed: float = 0.0,
        attack_y_speed: float = 0.0,
        ground_x_speed: float = 0.0,
        hitlag: float = 0.0,
        animation: int | None = None,
        follower: bool = False,
    ) -> ReplayBuilder:
        body = _POST.pack(
            frame, port - 1, int(follower), character, action,
            x, y, facing, percent, shield,
            last_attack, combo, 6 if last_hit_by is None else last_hit_by - 1, stocks,
            0.0, b"\x00" * 5, hitstun, int(airborne), 0, jumps, l_cancel, 0,
            air_x_speed, y_speed, attack_x_speed, attack_y_speed, ground_x_speed, hitlag,
            action if animation is None else animation,
        )
        return self.add(EventType.POST_FRAME_UPDATE, body)

    def frame_start(self, frame: int) -> ReplayBuilder:
        return self.add(EventType.FRAME_START, struct.pack(">iI", frame, 0))

    def bookend(self, frame: int, finalized: int | None = None) -> ReplayBuilder:
        body = struct.pack(">ii", frame, frame if finalized is None else finalized)
        return self.add(EventType.FRAME_BOOKEND, body)

    def item_update(self) -> ReplayBuilder:
        return self.add(EventType.ITEM_UPDATE)

    def game_end(self, method: int = 2, lras: int = -1) -> ReplayBuilder:
        return self.add(EventType.GAME_END, struct.pack(">Bb", method, lras))

    def frame(
        self,
        index: int,
        states: dict[int, dict[str, Any]] | None = None,
        inputs: dict[int, dict[str, Any]] | None = None,
        finalized: int | None = None,
    ) -> ReplayBuilder:
        """One complete tick: frame start, pre and post per port, bookend."""
        states = states or {}
        inputs = inputs or {}
        self.frame_start(index)
        for player in self.players:
            port = player["port"]
            post = {"character": player.get("character", Character.FOX), **states.get(port, {})}
            shared = {k: post[k] for k in ("action", "x", "y", "facing", "percent") if k in post}
            self.pre(index, port, **shared, **inputs.get(port, {}))
            self.post(index, port, **post)
        return self.bookend(index, finalized)

    # ------------------------------------------------------------------
    # Output
    # ------------------------------------------------------------------

    def payload_table(self) -> bytes:
        entries = b"".join(struct.pack(">BH", code, size) for code, size in self.sizes.items())
        return bytes([EventType.EVENT_PAYLOADS, len(entries) + 1]) + entries

    def raw_stream(self, include_start: bool = True) -> bytes:
        start = [self._sized(EventType.GAME_START, self.game_start_body())] if include_start else []
        return self.payload_table() + b"".join(start + self.events)

    def build(
        self,
        metadata: dict[str, Any] | None = DEFAULT_METADATA,
        raw_length: int | None = None,
        include_start: bool = True,
    ) -> bytes:
        raw = self.raw_stream(include_start)
        length = len(raw) if raw_length is None else raw_length
        data = CONTAINER_PREFIX + struct.pack(">i", length) + raw
        if metadata is not None:
            data += METADATA_KEY + ubjson.dumpb(metadata)
        return data + b"}"

    def write(self, path: Path, **kwargs: Any) -> Path:
        path.write_bytes(self.build(**kwargs))
        return path


def make_frame(
    index: int,
    states: dict[int, dict[str, Any]] | None = None,
    inputs: dict[int, dict[str, Any]] | None = None,
) -> Frame:
    """Build a Frame directly from post-frame state fields per port."""
    post = {port: PlayerFrameState(**values) for port, values in (states or {}).items()}
    pre_inputs = {port: InputData(**values) for port, values in (inputs or {}).items()}
    pre = {port: PlayerFrameState(action_state=s.action_state) for port, s in post.items()}
    return Frame(
        index=index,
        pre_frame=PreFrameData(player_states=pre, inputs=pre_inputs),
        post_frame=PostFrameData(player_states=post),
    )


@pytest.fixture
def make_replay():
    """Factory for ReplayBuilder instances."""
    return ReplayBuilder


@pytest.fixture
def frame_factory():
    return make_frame


@pytest.fixture
def short_game():
    """Two players, ten finalised ticks with a little movement, then game end."""
    replay = ReplayBuilder()
    for index in range(-123, -113):
        replay.frame(
            index,
            states={
                1: {"x": float(index + 123), "stocks": 4},
                2: {"x": -float(index + 123), "stocks": 4, "facing": -1.0},
            },
        )
    replay.game_end(method=2)
    return replay


@pytest.fixture
def short_game_bytes(short_game):
    return short_game.build()


@pytest.fixture
def replay_file(tmp_path, short_game):
    return short_game.write(tmp_path / "Game_20230101T120000.slp")
