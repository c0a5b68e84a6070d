"""
slpkit Core - Replay decoding.

This module contains the fundamental components:
- constants: Event codes, Melee enums, action-state tables
- config: Application configuration management
- errors: Fatal decode errors and recoverable parse issues
- cursor: Buffer and stream byte cursors
- events: Event demultiplexer
- metadata: Settings and metadata decoding
- frames: Rollback-aware frame reconciliation
- parser: Game assembly
"""

from slpkit.core.constants import (
    FRAMES_PER_SECOND,
    Character,
    ConsoleType,
    EventType,
    GameEndMethod,
    GameEventType,
    PlayerType,
    Stage,
)
from slpkit.core.errors import (
    DecodeError,
    FrameGap,
    InvalidContainer,
    LateRollback,
    MissingGameStart,
    ParseIssue,
    TruncatedStream,
    UnknownEventSize,
    UnsupportedVersion,
    ValidationError,
)
from slpkit.core.models import (
    Frame,
    Game,
    Metadata,
    Player,
    PlayerStats,
    Settings,
    Statistics,
    ValidationResult,
)

__all__: list[str] = [
    "FRAMES_PER_SECOND",
    "Character",
    "ConsoleType",
    "EventType",
    "GameEndMethod",
    "GameEventType",
    "PlayerType",
    "Stage",
    "DecodeError",
    "FrameGap",
    "InvalidContainer",
    "LateRollback",
    "MissingGameStart",
    "ParseIssue",
    "TruncatedStream",
    "UnknownEventSize",
    "UnsupportedVersion",
    "ValidationError",
    "Frame",
    "Game",
    "Metadata",
    "Player",
    "PlayerStats",
    "Settings",
    "Statistics",
    "ValidationResult",
]
