"""
slpkit - Constants

Defines Slippi event codes, Melee enumerations (characters, stages, player
types), action-state ids used by the statistics detectors, and other fixed
values of the replay format.

Action-state ids follow the NTSC 1.02 Melee state table that every Slippi
recording version reports. They are grouped into a versioned lookup table so
a future recording format with different ids can supply its own table without
touching the detectors.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, StrEnum
from typing import NamedTuple

# Melee runs its simulation at a fixed 60 ticks per second
FRAMES_PER_SECOND = 60

# Highest recording major version the decoder understands
MAX_SUPPORTED_MAJOR_VERSION = 3

# UBJSON prefix of a .slp file: an object whose first key is "raw",
# holding an optimized uint8 array with an int32 count.
CONTAINER_PREFIX = b"{U\x03raw[$U#l"
METADATA_KEY = b"U\x08metadata"


class EventType(int, Enum):
    """Slippi event codes that can appear in the raw event stream."""

    MESSAGE_SPLITTER = 0x10
    EVENT_PAYLOADS = 0x35
    GAME_START = 0x36
    PRE_FRAME_UPDATE = 0x37
    POST_FRAME_UPDATE = 0x38
    GAME_END = 0x39
    FRAME_START = 0x3A
    ITEM_UPDATE = 0x3B
    FRAME_BOOKEND = 0x3C
    GECKO_LIST = 0x3D


class Character(int, Enum):
    """Character ids as chosen on the character select screen (game start event)."""

    CAPTAIN_FALCON = 0
    DONKEY_KONG = 1
    FOX = 2
    GAME_AND_WATCH = 3
    KIRBY = 4
    BOWSER = 5
    LINK = 6
    LUIGI = 7
    MARIO = 8
    MARTH = 9
    MEWTWO = 10
    NESS = 11
    PEACH = 12
    PIKACHU = 13
    ICE_CLIMBERS = 14
    JIGGLYPUFF = 15
    SAMUS = 16
    YOSHI = 17
    ZELDA = 18
    SHEIK = 19
    FALCO = 20
    YOUNG_LINK = 21
    DR_MARIO = 22
    ROY = 23
    PICHU = 24
    GANONDORF = 25
    MASTER_HAND = 26
    WIREFRAME_MALE = 27
    WIREFRAME_FEMALE = 28
    GIGA_BOWSER = 29
    CRAZY_HAND = 30
    SANDBAG = 31
    POPO = 32


CHARACTER_NAMES = {
    Character.CAPTAIN_FALCON: "Captain Falcon",
    Character.DONKEY_KONG: "Donkey Kong",
    Character.FOX: "Fox",
    Character.GAME_AND_WATCH: "Mr. Game & Watch",
    Character.KIRBY: "Kirby",
    Character.BOWSER: "Bowser",
    Character.LINK: "Link",
    Character.LUIGI: "Luigi",
    Character.MARIO: "Mario",
    Character.MARTH: "Marth",
    Character.MEWTWO: "Mewtwo",
    Character.NESS: "Ness",
    Character.PEACH: "Peach",
    Character.PIKACHU: "Pikachu",
    Character.ICE_CLIMBERS: "Ice Climbers",
    Character.JIGGLYPUFF: "Jigglypuff",
    Character.SAMUS: "Samus",
    Character.YOSHI: "Yoshi",
    Character.ZELDA: "Zelda",
    Character.SHEIK: "Sheik",
    Character.FALCO: "Falco",
    Character.YOUNG_LINK: "Young Link",
    Character.DR_MARIO: "Dr. Mario",
    Character.ROY: "Roy",
    Character.PICHU: "Pichu",
    Character.GANONDORF: "Ganondorf",
    Character.MASTER_HAND: "Master Hand",
    Character.WIREFRAME_MALE: "Wireframe Male",
    Character.WIREFRAME_FEMALE: "Wireframe Female",
    Character.GIGA_BOWSER: "Giga Bowser",
    Character.CRAZY_HAND: "Crazy Hand",
    Character.SANDBAG: "Sandbag",
    Character.POPO: "Popo",
}


class Stage(int, Enum):
    """Stage ids from the game start event."""

    FOUNTAIN_OF_DREAMS = 2
    POKEMON_STADIUM = 3
    PRINCESS_PEACHS_CASTLE = 4
    KONGO_JUNGLE = 5
    BRINSTAR = 6
    CORNERIA = 7
    YOSHIS_STORY = 8
    ONETT = 9
    MUTE_CITY = 10
    RAINBOW_CRUISE = 11
    JUNGLE_JAPES = 12
    GREAT_BAY = 13
    HYRULE_TEMPLE = 14
    BRINSTAR_DEPTHS = 15
    YOSHIS_ISLAND = 16
    GREEN_GREENS = 17
    FOURSIDE = 18
    MUSHROOM_KINGDOM = 19
    MUSHROOM_KINGDOM_II = 20
    VENOM = 22
    POKE_FLOATS = 23
    BIG_BLUE = 24
    ICICLE_MOUNTAIN = 25
    ICETOP = 26
    FLAT_ZONE = 27
    DREAM_LAND_N64 = 28
    YOSHIS_ISLAND_N64 = 29
    KONGO_JUNGLE_N64 = 30
    BATTLEFIELD = 31
    FINAL_DESTINATION = 32


class PlayerType(int, Enum):
    """Who controls a port."""

    HUMAN = 0
    CPU = 1
    DEMO = 2


# Player type value marking an unused port in the game start event
EMPTY_SLOT = 3


class ConsoleType(StrEnum):
    """Platform the replay was recorded on (metadata playedOn)."""

    DOLPHIN = "dolphin"
    NETWORK = "network"
    NINTENDONT = "nintendont"


CONSOLE_NAMES = {
    ConsoleType.DOLPHIN: "Dolphin Emulator",
    ConsoleType.NETWORK: "Network Stream",
    ConsoleType.NINTENDONT: "Nintendont",
}


class GameEndMethod(int, Enum):
    """Game end method reported by the game end event."""

    UNRESOLVED = 0
    TIME = 1
    GAME = 2
    RESOLVED = 3
    NO_CONTEST = 7


class GameEventType(StrEnum):
    """Kinds of events recorded in Statistics.game_events."""

    KILL = "kill"
    OPENING = "opening"
    NEUTRAL_WIN = "neutral_win"
    COUNTER_HIT = "counter_hit"
    BENEFICIAL_TRADE = "beneficial_trade"
    WAVEDASH = "wavedash"
    WAVELAND = "waveland"
    DASH_DANCE = "dash_dance"
    LEDGE_GRAB = "ledge_grab"
    L_CANCEL = "l_cancel"


# Controller fix labels derived from the dashback/shield drop fields
CONTROLLER_FIX_LABELS = {0: "None", 1: "UCF", 2: "Dween"}
CONTROLLER_FIX_MIXED = "Mixed"

# Processed-button bits that trigger L-cancel lag reduction
BUTTON_Z = 0x0010
BUTTON_R = 0x0020
BUTTON_L = 0x0040
BUTTON_ANY_TRIGGER = 0x80000000
LAG_REDUCTION_BUTTONS = BUTTON_Z | BUTTON_R | BUTTON_L | BUTTON_ANY_TRIGGER

# Post-frame L-cancel status values (recording 2.0.0+)
L_CANCEL_SUCCESS = 1
L_CANCEL_FAIL = 2


# ============================================================================
# Format versions
# ============================================================================


class FormatVersion(NamedTuple):
    """Recording format version (major.minor.build) from the game start event."""

    major: int
    minor: int
    build: int = 0

    @classmethod
    def parse(cls, value: str) -> FormatVersion:
        parts = [int(p) for p in value.split(".")]
        while len(parts) < 3:
            parts.append(0)
        return cls(*parts[:3])

    def __str__(self) -> str:
        return f"{self.major}.{self.minor}.{self.build}"


# ============================================================================
# Action states
# ============================================================================


@dataclass(frozen=True)
class ActionStateTable:
    """Action-state ids the statistics detectors key on."""

    dead: frozenset[int]
    turn: int
    dash: int
    knee_bend: int
    landing_fall_special: int
    escape_air: int
    cliff_catch: int
    aerial_attacks: frozenset[int]
    aerial_landings: frozenset[int]

    def is_dead(self, state: int | None) -> bool:
        return state is not None and state in self.dead

    def is_dashing(self, state: int | None) -> bool:
        return state == self.dash or state == self.turn


MELEE_ACTION_STATES = ActionStateTable(
    dead=frozenset(range(0x00, 0x0B)),  # DeadDown .. DeadUpFallHitCameraIce
    turn=0x12,
    dash=0x14,
    knee_bend=0x18,  # jump squat
    landing_fall_special=0x2B,
    escape_air=0xEC,  # air dodge
    cliff_catch=0xFC,
    aerial_attacks=frozenset(range(0x41, 0x46)),  # AttackAirN .. AttackAirLw
    aerial_landings=frozenset(range(0x46, 0x4B)),  # LandingAirN .. LandingAirLw
)

# Minimum recording version -> action-state table
ACTION_STATE_TABLES: dict[FormatVersion, ActionStateTable] = {
    FormatVersion(0, 1, 0): MELEE_ACTION_STATES,
}


def action_state_table(version: str | FormatVersion | None) -> ActionStateTable:
    """Return the action-state table that applies to a recording version."""
    if version is None:
        return MELEE_ACTION_STATES
    if isinstance(version, str):
        version = FormatVersion.parse(version)

    selected = MELEE_ACTION_STATES
    for minimum in sorted(ACTION_STATE_TABLES):
        if version >= minimum:
            selected = ACTION_STATE_TABLES[minimum]
    return selected
