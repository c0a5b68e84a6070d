"""
Error taxonomy for replay decoding.

Two families:
- DecodeError subclasses are raised. They mean the byte stream cannot be
  trusted past a given offset, so no Game is produced.
- ParseIssue subclasses are values. They are collected into
  Game.parsing_errors while decoding continues with best-effort defaults.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import ClassVar

# ============================================================================
# Fatal decode errors
# ============================================================================


class DecodeError(Exception):
    """A fatal decode failure at a known byte offset."""

    kind: ClassVar[str] = "DecodeError"

    def __init__(self, message: str, offset: int | None = None):
        self.offset = offset
        if offset is not None:
            message = f"{message} (at byte offset {offset})"
        super().__init__(message)


class TruncatedStream(DecodeError):
    """Fewer bytes remain than an event or header declares."""

    kind = "TruncatedStream"

    def __init__(self, expected: int, available: int, offset: int | None = None):
        self.expected = expected
        self.available = available
        super().__init__(
            f"Stream truncated: expected {expected} bytes, {available} available", offset
        )


class UnknownEventSize(DecodeError):
    """An event code has no entry in the payload size table."""

    kind = "UnknownEventSize"

    def __init__(self, code: int, offset: int | None = None):
        self.code = code
        super().__init__(f"No payload size registered for event code 0x{code:02X}", offset)


class UnsupportedVersion(DecodeError):
    """The recording's major format version is not implemented."""

    kind = "UnsupportedVersion"

    def __init__(self, version: str, offset: int | None = None):
        self.version = version
        super().__init__(f"Unsupported replay format version {version}", offset)


class InvalidContainer(DecodeError):
    """The file does not start with a Slippi container header and payload table."""

    kind = "InvalidContainer"


class MissingGameStart(DecodeError):
    """The event stream ended without a game start event, so no settings exist."""

    kind = "MissingGameStart"


# ============================================================================
# Recoverable issues
# ============================================================================


@dataclass(frozen=True)
class ParseIssue:
    """A non-fatal problem recorded while decoding."""

    message: str
    frame: int | None = None

    kind: ClassVar[str] = "ParseIssue"

    def __str__(self) -> str:
        return f"{self.kind}: {self.message}"


@dataclass(frozen=True)
class FrameGap(ParseIssue):
    """A finalised frame index does not follow the previous one."""

    expected: int | None = None
    actual: int | None = None

    kind: ClassVar[str] = "FrameGap"


@dataclass(frozen=True)
class LateRollback(ParseIssue):
    """A frame was re-emitted after it had already been finalised."""

    kind: ClassVar[str] = "LateRollback"


@dataclass(frozen=True)
class MetadataIssue(ParseIssue):
    """A metadata value could not be decoded and was left unset."""

    key: str | None = None

    kind: ClassVar[str] = "MetadataIssue"


@dataclass(frozen=True)
class ValidationError(ParseIssue):
    """A decoded entity fails a structural invariant."""

    kind: ClassVar[str] = "ValidationError"


@dataclass(frozen=True)
class PortOutOfRange(ValidationError):
    port: int | None = None

    kind: ClassVar[str] = "PortOutOfRange"


@dataclass(frozen=True)
class MissingCharacter(ValidationError):
    port: int | None = None

    kind: ClassVar[str] = "MissingCharacter"


@dataclass(frozen=True)
class InvalidPlayerType(ValidationError):
    port: int | None = None

    kind: ClassVar[str] = "InvalidPlayerType"


@dataclass(frozen=True)
class PlayerCountError(ValidationError):
    count: int = 0

    kind: ClassVar[str] = "PlayerCountError"


@dataclass(frozen=True)
class DuplicatePortError(ValidationError):
    port: int | None = None

    kind: ClassVar[str] = "DuplicatePortError"


@dataclass(frozen=True)
class PlayerValidityError(ValidationError):
    """One of the settings' players failed its own validation."""

    cause: ValidationError | None = None

    kind: ClassVar[str] = "PlayerValidityError"


@dataclass(frozen=True)
class UnknownStage(ValidationError):
    stage_id: int | None = None

    kind: ClassVar[str] = "UnknownStage"


@dataclass(frozen=True)
class UnknownGameEndMethod(ValidationError):
    code: int | None = None

    kind: ClassVar[str] = "UnknownGameEndMethod"


@dataclass(frozen=True)
class InvalidFrame(ValidationError):
    kind: ClassVar[str] = "InvalidFrame"


@dataclass(frozen=True)
class InvalidMetadata(ValidationError):
    kind: ClassVar[str] = "InvalidMetadata"


@dataclass(frozen=True)
class InvalidStatistics(ValidationError):
    kind: ClassVar[str] = "InvalidStatistics"


@dataclass(frozen=True)
class MissingVersion(ValidationError):
    kind: ClassVar[str] = "MissingVersion"


@dataclass(frozen=True)
class MissingSettings(ValidationError):
    kind: ClassVar[str] = "MissingSettings"
