"""
Data Models for Decoded Replays

Every structure that crosses a module boundary is defined here:
- Game: the top-level result returned by the parser
- Settings / Player: match configuration from the game start event
- Metadata: recording provenance from the trailing metadata blob
- Frame / PlayerFrameState / InputData: the reconciled per-tick timeline
- Statistics / PlayerStats / GameEvent: derived analysis

Each entity validates into a ValidationResult carrying either the entity or
a specific ValidationError subclass, so callers match on error types rather
than on message text.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, replace
from datetime import datetime
from typing import Any, Generic, TypeVar

from slpkit.core.constants import (
    CHARACTER_NAMES,
    CONSOLE_NAMES,
    FRAMES_PER_SECOND,
    Character,
    ConsoleType,
    GameEndMethod,
    GameEventType,
    PlayerType,
    Stage,
)
from slpkit.core.errors import (
    DuplicatePortError,
    InvalidFrame,
    InvalidMetadata,
    InvalidPlayerType,
    InvalidStatistics,
    MissingCharacter,
    MissingSettings,
    MissingVersion,
    ParseIssue,
    PlayerCountError,
    PlayerValidityError,
    PortOutOfRange,
    ValidationError,
)

T = TypeVar("T")

MIN_PORT = 1
MAX_PORT = 4
MAX_PLAYERS = 4


@dataclass(frozen=True)
class ValidationResult(Generic[T]):
    """Either a valid entity (error is None) or the first invariant it breaks."""

    value: T
    error: ValidationError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


def _valid_port(port: Any) -> bool:
    return isinstance(port, int) and MIN_PORT <= port <= MAX_PORT


# =============================================================================
# Players and Settings
# =============================================================================


@dataclass(frozen=True)
class Player:
    """One competitor slot."""

    port: int
    character: Character | None = None
    tag: str | None = None
    player_type: PlayerType | None = PlayerType.HUMAN
    controller_fix: str | None = None
    character_id: int | None = None
    costume: int | None = None
    start_stocks: int | None = None
    team: int | None = None
    display_name: str | None = None
    connect_code: str | None = None

    def validate(self) -> ValidationResult[Player]:
        if not _valid_port(self.port):
            return ValidationResult(
                self,
                PortOutOfRange(f"Player port must be between 1 and 4, got {self.port}", port=self.port),
            )
        if self.character is None:
            return ValidationResult(
                self, MissingCharacter(f"Player {self.port} has no character", port=self.port)
            )
        if not isinstance(self.player_type, PlayerType):
            return ValidationResult(
                self, InvalidPlayerType(f"Player {self.port} has an invalid type", port=self.port)
            )
        return ValidationResult(self)

    def is_human(self) -> bool:
        return self.player_type == PlayerType.HUMAN

    def is_cpu(self) -> bool:
        return self.player_type == PlayerType.CPU

    @property
    def character_name(self) -> str:
        if self.character is None:
            return "Unknown"
        return CHARACTER_NAMES.get(self.character, self.character.name.title())


@dataclass(frozen=True)
class Settings:
    """Match configuration from the game start event."""

    version: str | None = None
    players: tuple[Player, ...] = ()
    is_teams: bool = False
    item_spawn_behavior: int = 0
    self_destruct_score_value: int = -1
    stage_id: int | None = None
    stage: Stage | None = None
    game_timer: int = 480
    is_pal: bool | None = None
    is_frozen_stadium: bool | None = None
    random_seed: int | None = None
    match_id: str | None = None
    game_number: int | None = None
    tiebreak_number: int | None = None

    def validate(self) -> ValidationResult[Settings]:
        count = len(self.players)
        if count == 0:
            return ValidationResult(self, PlayerCountError("At least one player is required", count=0))
        if count > MAX_PLAYERS:
            return ValidationResult(
                self, PlayerCountError(f"Maximum of 4 players allowed, got {count}", count=count)
            )

        for player in self.players:
            result = player.validate()
            if not result.ok:
                return ValidationResult(
                    self,
                    PlayerValidityError(f"All players must be valid: {result.error}", cause=result.error),
                )

        seen: set[int] = set()
        for player in self.players:
            if player.port in seen:
                return ValidationResult(
                    self, DuplicatePortError(f"Port {player.port} is used twice", port=player.port)
                )
            seen.add(player.port)

        return ValidationResult(self)

    def player_count(self) -> int:
        return len(self.players)

    def is_teams_match(self) -> bool:
        return self.is_teams

    def get_player(self, port: int) -> Player | None:
        for player in self.players:
            if player.port == port:
                return player
        return None

    def ports(self) -> list[int]:
        return [player.port for player in self.players]


# =============================================================================
# Metadata
# =============================================================================


@dataclass(frozen=True)
class MetadataPlayer:
    """Per-port details that only the metadata blob carries."""

    port: int
    netplay_name: str | None = None
    connect_code: str | None = None
    character_frames: dict[int, int] = field(default_factory=dict)


@dataclass(frozen=True)
class Metadata:
    """Recording provenance."""

    start_at: datetime | None = None
    last_frame: int | None = None
    played_on: ConsoleType | None = None
    console_nick: str | None = None
    duration: float | None = None
    slippi_version: str | None = None
    players: dict[int, MetadataPlayer] = field(default_factory=dict)

    def duration_seconds(self) -> float | None:
        """Explicit duration when recorded, else derived from the last frame at 60 Hz."""
        if self.duration is not None:
            return self.duration
        if self.last_frame is not None:
            return round(self.last_frame / float(FRAMES_PER_SECOND), 2)
        return None

    def is_dolphin(self) -> bool:
        return self.played_on == ConsoleType.DOLPHIN

    def is_network(self) -> bool:
        return self.played_on == ConsoleType.NETWORK

    def console_name(self) -> str:
        if self.played_on is None:
            return "Not specified"
        return CONSOLE_NAMES[self.played_on]

    def validate(self) -> ValidationResult[Metadata]:
        if self.duration is not None and self.duration < 0:
            return ValidationResult(self, InvalidMetadata("duration must be non-negative"))
        if self.start_at is not None and not isinstance(self.start_at, datetime):
            return ValidationResult(self, InvalidMetadata("start_at must be a datetime"))
        return ValidationResult(self)


# =============================================================================
# Frames
# =============================================================================


@dataclass(frozen=True, slots=True)
class InputData:
    """Controller input snapshot from a pre-frame update."""

    buttons: int | None = None
    joystick_x: float | None = None
    joystick_y: float | None = None
    c_stick_x: float | None = None
    c_stick_y: float | None = None
    trigger: float | None = None
    processed_buttons: int | None = None


@dataclass(frozen=True, slots=True)
class PlayerFrameState:
    """Per-port character state for one tick (pre- or post-update)."""

    position_x: float | None = None
    position_y: float | None = None
    velocity_x: float | None = None
    velocity_y: float | None = None
    animation_state: int | None = None
    action_state: int | None = None
    facing_direction: float | None = None
    percent: float | None = None
    shield_size: float | None = None
    last_attack_landed: int | None = None
    combo_count: int | None = None
    last_hit_by: int | None = None
    stocks: int | None = None
    character_id: int | None = None
    airborne: bool | None = None
    l_cancel_status: int | None = None
    hitlag_remaining: float | None = None
    jumps_remaining: int | None = None


@dataclass(frozen=True)
class PreFrameData:
    player_states: dict[int, PlayerFrameState] = field(default_factory=dict)
    inputs: dict[int, InputData] = field(default_factory=dict)


@dataclass(frozen=True)
class PostFrameData:
    player_states: dict[int, PlayerFrameState] = field(default_factory=dict)
    positions: dict[int, tuple[float, float]] = field(default_factory=dict)
    velocities: dict[int, tuple[float, float]] = field(default_factory=dict)
    animation_states: dict[int, int] = field(default_factory=dict)


@dataclass(frozen=True)
class Frame:
    """One reconciled simulation tick."""

    index: int
    pre_frame: PreFrameData = field(default_factory=PreFrameData)
    post_frame: PostFrameData = field(default_factory=PostFrameData)
    is_rollback: bool = False

    def validate(self) -> ValidationResult[Frame]:
        if not isinstance(self.index, int) or isinstance(self.index, bool):
            return ValidationResult(self, InvalidFrame("Frame index must be an integer"))
        if not isinstance(self.is_rollback, bool):
            return ValidationResult(self, InvalidFrame("is_rollback must be a boolean", frame=self.index))
        if not isinstance(self.pre_frame.player_states, dict):
            return ValidationResult(self, InvalidFrame("Invalid pre-frame data structure", frame=self.index))
        if not isinstance(self.post_frame.player_states, dict):
            return ValidationResult(self, InvalidFrame("Invalid post-frame data structure", frame=self.index))
        return ValidationResult(self)

    def rollback(self) -> bool:
        return self.is_rollback

    def get_pre_player_state(self, port: int) -> PlayerFrameState | None:
        return self.pre_frame.player_states.get(port)

    def get_post_player_state(self, port: int) -> PlayerFrameState | None:
        return self.post_frame.player_states.get(port)

    def get_player_inputs(self, port: int) -> InputData | None:
        return self.pre_frame.inputs.get(port)

    def active_players(self) -> list[int]:
        ports = set(self.pre_frame.player_states) | set(self.post_frame.player_states)
        return sorted(ports)


# =============================================================================
# Statistics
# =============================================================================


@dataclass(frozen=True)
class GameEvent:
    """A detected gameplay event."""

    type: GameEventType
    frame: int
    player: int | None = None
    data: dict[str, Any] = field(default_factory=dict)


@dataclass
class PlayerStats:
    """Per-player counters. Stocks and damage stay None until first observed."""

    stocks_remaining: int | None = None
    damage_dealt: float | None = None
    damage_taken: float | None = None
    kill_count: int = 0
    death_count: int = 0
    action_count: int = 0
    l_cancel_success: int = 0
    l_cancel_fail: int = 0
    air_dodge_count: int = 0
    wavedash_count: int = 0
    waveland_count: int = 0
    dash_dance_count: int = 0
    ledge_grab_count: int = 0
    opening_count: int = 0
    neutral_win_count: int = 0
    counter_hit_count: int = 0
    beneficial_trade_count: int = 0

    @property
    def l_cancel_rate(self) -> float | None:
        """Percentage of successful L-cancels, None when no aerial landed."""
        total = self.l_cancel_success + self.l_cancel_fail
        if total == 0:
            return None
        return round(self.l_cancel_success / total * 100, 1)

    def add_damage_dealt(self, amount: float) -> None:
        self.damage_dealt = (self.damage_dealt or 0.0) + amount

    def add_damage_taken(self, amount: float) -> None:
        self.damage_taken = (self.damage_taken or 0.0) + amount


@dataclass
class Statistics:
    """Derived analysis for one game."""

    match_duration: float | None = None
    total_frames: int | None = None
    winner: int | None = None
    game_end_method: GameEndMethod | None = None
    player_stats: dict[int, PlayerStats] = field(default_factory=dict)
    game_events: list[GameEvent] = field(default_factory=list)

    def validate(self) -> ValidationResult[Statistics]:
        if self.match_duration is not None and (
            not isinstance(self.match_duration, (int, float)) or self.match_duration < 0
        ):
            return ValidationResult(self, InvalidStatistics("match_duration must be a non-negative number"))
        if self.total_frames is not None and (
            not isinstance(self.total_frames, int) or self.total_frames < 0
        ):
            return ValidationResult(self, InvalidStatistics("total_frames must be a non-negative integer"))
        if not all(_valid_port(port) for port in self.player_stats):
            return ValidationResult(self, InvalidStatistics("Invalid player statistics data"))
        if not all(isinstance(e.type, GameEventType) and isinstance(e.frame, int) for e in self.game_events):
            return ValidationResult(self, InvalidStatistics("Invalid game events data"))
        return ValidationResult(self)

    def get_player_stats(self, port: int) -> PlayerStats | None:
        return self.player_stats.get(port)

    def put_player_stats(self, port: int, stats: PlayerStats) -> None:
        self.player_stats[port] = stats

    def add_event(self, event: GameEvent) -> None:
        self.game_events.append(event)

    def events_by_type(self, event_type: GameEventType | str) -> list[GameEvent]:
        return [e for e in self.game_events if e.type == event_type]

    def events_by_player(self, port: int) -> list[GameEvent]:
        return [e for e in self.game_events if e.player == port]

    def total_kills(self) -> int:
        return sum(s.kill_count or 0 for s in self.player_stats.values())

    def total_damage_dealt(self) -> float:
        return sum(s.damage_dealt or 0.0 for s in self.player_stats.values())

    def has_winner(self) -> bool:
        return self.winner is not None

    def duration_seconds(self) -> float | None:
        if self.match_duration is not None:
            return self.match_duration
        if self.total_frames is not None:
            return round(self.total_frames / float(FRAMES_PER_SECOND), 2)
        return None


# =============================================================================
# Game
# =============================================================================


@dataclass(frozen=True)
class Game:
    """A decoded replay."""

    metadata: Metadata | None = None
    settings: Settings | None = None
    frames: tuple[Frame, ...] = ()
    statistics: Statistics | None = None
    version: str | None = None
    parsing_errors: tuple[ParseIssue, ...] = ()

    def validate(self) -> ValidationResult[Game]:
        if self.version is None:
            return ValidationResult(self, MissingVersion("Game version is required"))
        if self.settings is None:
            return ValidationResult(self, MissingSettings("Game settings are required"))
        return ValidationResult(self)

    def has_errors(self) -> bool:
        return len(self.parsing_errors) > 0

    def error_messages(self) -> list[str]:
        return [str(issue) for issue in self.parsing_errors]

    def duration_seconds(self) -> float | None:
        if self.statistics is not None:
            duration = self.statistics.duration_seconds()
            if duration is not None:
                return duration
        if self.metadata is not None:
            return self.metadata.duration_seconds()
        return None

    def frame(self, index: int) -> Frame | None:
        # Frames are contiguous in the common case, so try direct indexing first
        if self.frames:
            guess = index - self.frames[0].index
            if 0 <= guess < len(self.frames) and self.frames[guess].index == index:
                return self.frames[guess]
        for frame in self.frames:
            if frame.index == index:
                return frame
        return None

    def to_dict(self, include_frames: bool = False) -> dict[str, Any]:
        data = asdict(self if include_frames else replace(self, frames=()))
        data["parsing_errors"] = self.error_messages()
        if not include_frames:
            data.pop("frames")
        return data
