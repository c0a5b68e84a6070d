"""
Metadata and settings decoding.

Turns the game start event body and the trailing UBJSON metadata object into
Settings and Metadata values. Every function here is a pure transform: it
returns the decoded value together with a list of recoverable issues and
raises only for an unsupported format version.

Game start field offsets are relative to the event body (the command byte is
already stripped). Fields appended by later recorder versions are read only
when the declared version is new enough and the body is long enough.
"""

from __future__ import annotations

import logging
import struct
import unicodedata
from datetime import UTC, datetime
from typing import Any

import ubjson

from slpkit.core.constants import (
    CONTROLLER_FIX_LABELS,
    CONTROLLER_FIX_MIXED,
    EMPTY_SLOT,
    MAX_SUPPORTED_MAJOR_VERSION,
    Character,
    ConsoleType,
    FormatVersion,
    PlayerType,
    Stage,
)
from slpkit.core.errors import (
    InvalidPlayerType,
    MetadataIssue,
    MissingCharacter,
    ParseIssue,
    PlayerValidityError,
    TruncatedStream,
    UnknownStage,
    UnsupportedVersion,
)
from slpkit.core.models import Metadata, MetadataPlayer, Player, Settings

logger = logging.getLogger(__name__)

_U8 = struct.Struct(">B")
_I8 = struct.Struct(">b")
_U16 = struct.Struct(">H")
_U32 = struct.Struct(">I")

PLAYER_SLOTS = 4

# Game start body layout
_VERSION = 0x0
_IS_TEAMS = 0xC
_ITEM_SPAWN = 0xF
_SELF_DESTRUCT = 0x10
_STAGE = 0x12
_TIMER = 0x14
_PLAYER_BLOCK = 0x64
_PLAYER_BLOCK_SIZE = 0x24
_RANDOM_SEED = 0x13C
_CONTROLLER_FIX = 0x140
_NAMETAG = 0x160
_NAMETAG_SIZE = 0x10
_IS_PAL = 0x1A0
_IS_FROZEN_PS = 0x1A1
_DISPLAY_NAME = 0x1A4
_DISPLAY_NAME_SIZE = 0x1F
_CONNECT_CODE = 0x220
_CONNECT_CODE_SIZE = 0xA
_MATCH_ID = 0x2BD
_MATCH_ID_SIZE = 0x33
_GAME_NUMBER = 0x2F0
_TIEBREAK_NUMBER = 0x2F4

# Version that introduced each optional block
_SINCE_CONTROLLER_FIX = FormatVersion(1, 0, 0)
_SINCE_NAMETAG = FormatVersion(1, 3, 0)
_SINCE_PAL = FormatVersion(1, 5, 0)
_SINCE_FROZEN_PS = FormatVersion(2, 0, 0)
_SINCE_NETPLAY_NAMES = FormatVersion(3, 9, 0)
_SINCE_MATCH_INFO = FormatVersion(3, 14, 0)


def _field(body: bytes, offset: int, fmt: struct.Struct) -> Any:
    if offset + fmt.size > len(body):
        return None
    return fmt.unpack_from(body, offset)[0]


def _text(body: bytes, offset: int, size: int) -> str | None:
    """Decode a fixed-width, null-padded Shift-JIS string."""
    raw = body[offset : offset + size]
    if not raw:
        return None
    raw = raw.split(b"\x00", 1)[0]
    # Melee stores tags as full-width characters; NFKC folds them to ASCII
    text = unicodedata.normalize("NFKC", raw.decode("shift_jis", errors="ignore")).strip()
    return text or None


# ============================================================================
# Version
# ============================================================================


def decode_version(body: bytes, offset: int | None = None) -> str:
    """Read the recording format version from a game start body."""
    if len(body) < 4:
        raise TruncatedStream(4, len(body), offset)

    major, minor, build = body[_VERSION], body[_VERSION + 1], body[_VERSION + 2]
    version = str(FormatVersion(major, minor, build))
    if major > MAX_SUPPORTED_MAJOR_VERSION:
        raise UnsupportedVersion(version, offset)
    return version


# ============================================================================
# Settings
# ============================================================================


def controller_fix_label(dashback: int | None, shield_drop: int | None) -> str | None:
    """Collapse the dashback and shield drop fix settings into one label."""
    if dashback is None or shield_drop is None:
        return None
    if dashback == shield_drop and dashback in CONTROLLER_FIX_LABELS:
        return CONTROLLER_FIX_LABELS[dashback]
    return CONTROLLER_FIX_MIXED


def _decode_player(
    body: bytes, index: int, version: FormatVersion, issues: list[ParseIssue]
) -> Player | None:
    base = _PLAYER_BLOCK + _PLAYER_BLOCK_SIZE * index
    raw_type = _field(body, base + 1, _U8)
    if raw_type is None or raw_type == EMPTY_SLOT:
        return None

    port = index + 1
    character_id = _field(body, base, _U8)
    try:
        character = Character(character_id)
    except ValueError:
        character = None
        issues.append(
            MissingCharacter(f"Player {port} has unknown character id {character_id}", port=port)
        )

    try:
        player_type = PlayerType(raw_type)
    except ValueError:
        player_type = None
        issues.append(
            InvalidPlayerType(f"Player {port} has unknown player type {raw_type}", port=port)
        )

    controller_fix = None
    if version >= _SINCE_CONTROLLER_FIX:
        controller_fix = controller_fix_label(
            _field(body, _CONTROLLER_FIX + 8 * index, _U32),
            _field(body, _CONTROLLER_FIX + 8 * index + 4, _U32),
        )

    tag = None
    if version >= _SINCE_NAMETAG:
        tag = _text(body, _NAMETAG + _NAMETAG_SIZE * index, _NAMETAG_SIZE)

    display_name = connect_code = None
    if version >= _SINCE_NETPLAY_NAMES:
        display_name = _text(body, _DISPLAY_NAME + _DISPLAY_NAME_SIZE * index, _DISPLAY_NAME_SIZE)
        connect_code = _text(body, _CONNECT_CODE + _CONNECT_CODE_SIZE * index, _CONNECT_CODE_SIZE)

    return Player(
        port=port,
        character=character,
        tag=tag,
        player_type=player_type,
        controller_fix=controller_fix,
        character_id=character_id,
        costume=_field(body, base + 3, _U8),
        start_stocks=_field(body, base + 2, _U8),
        team=_field(body, base + 9, _U8),
        display_name=display_name,
        connect_code=connect_code,
    )


def decode_settings(
    body: bytes, offset: int | None = None
) -> tuple[Settings, list[ParseIssue]]:
    """
    Decode a game start body into Settings.

    Raises UnsupportedVersion for a major version the decoder does not know.
    Unknown character or player type ids are kept as None and reported as
    issues; the Player is still returned.
    """
    version_str = decode_version(body, offset)
    version = FormatVersion.parse(version_str)
    issues: list[ParseIssue] = []

    players = []
    for index in range(PLAYER_SLOTS):
        player = _decode_player(body, index, version, issues)
        if player is not None:
            players.append(player)

    stage_id = _field(body, _STAGE, _U16)
    try:
        stage = Stage(stage_id) if stage_id is not None else None
    except ValueError:
        stage = None
        issues.append(UnknownStage(f"Stage id {stage_id} is not a known stage", stage_id=stage_id))

    is_teams = _field(body, _IS_TEAMS, _U8)
    item_spawn = _field(body, _ITEM_SPAWN, _I8)
    self_destruct = _field(body, _SELF_DESTRUCT, _I8)
    timer = _field(body, _TIMER, _U32)

    settings = Settings(
        version=version_str,
        players=tuple(players),
        is_teams=bool(is_teams) if is_teams is not None else False,
        item_spawn_behavior=item_spawn if item_spawn is not None else 0,
        self_destruct_score_value=self_destruct if self_destruct is not None else -1,
        stage_id=stage_id,
        stage=stage,
        game_timer=timer if timer is not None else 480,
        is_pal=_flag_since(body, _IS_PAL, version, _SINCE_PAL),
        is_frozen_stadium=_flag_since(body, _IS_FROZEN_PS, version, _SINCE_FROZEN_PS),
        random_seed=_field(body, _RANDOM_SEED, _U32),
        match_id=_text(body, _MATCH_ID, _MATCH_ID_SIZE) if version >= _SINCE_MATCH_INFO else None,
        game_number=_field(body, _GAME_NUMBER, _U32) if version >= _SINCE_MATCH_INFO else None,
        tiebreak_number=(
            _field(body, _TIEBREAK_NUMBER, _U32) if version >= _SINCE_MATCH_INFO else None
        ),
    )

    result = settings.validate()
    # Per-player problems were already reported with their raw ids
    if not result.ok and not isinstance(result.error, PlayerValidityError):
        issues.append(result.error)

    logger.debug(
        f"Decoded settings v{version_str}: {len(players)} players, stage {stage_id}"
    )
    return settings, issues


def _flag_since(
    body: bytes, offset: int, version: FormatVersion, since: FormatVersion
) -> bool | None:
    if version < since:
        return None
    value = _field(body, offset, _U8)
    return None if value is None else bool(value)


# ============================================================================
# Metadata
# ============================================================================


def _parse_start_at(value: Any) -> datetime:
    if not isinstance(value, str):
        raise ValueError(f"expected a string, got {type(value).__name__}")
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def _decode_metadata_players(raw: Any, issues: list[ParseIssue]) -> dict[int, MetadataPlayer]:
    if not isinstance(raw, dict):
        issues.append(MetadataIssue("players is not an object", key="players"))
        return {}

    players: dict[int, MetadataPlayer] = {}
    for key, entry in raw.items():
        try:
            port = int(key) + 1
        except (TypeError, ValueError):
            issues.append(MetadataIssue(f"Invalid player index {key!r}", key="players"))
            continue
        if not isinstance(entry, dict):
            continue

        names = entry.get("names")
        if not isinstance(names, dict):
            names = {}
        characters = entry.get("characters") or {}
        try:
            character_frames = {int(k): int(v) for k, v in characters.items()}
        except (AttributeError, TypeError, ValueError):
            issues.append(MetadataIssue(f"Invalid character usage for player {port}", key="players"))
            character_frames = {}

        players[port] = MetadataPlayer(
            port=port,
            netplay_name=names.get("netplay") or None,
            connect_code=names.get("code") or None,
            character_frames=character_frames,
        )
    return players


def decode_metadata(
    blob: bytes | None, version: str | None = None
) -> tuple[Metadata, list[ParseIssue]]:
    """
    Decode the trailing metadata object.

    Absent keys are left unset. Values of the wrong shape are dropped and
    reported as MetadataIssue; decoding never fails outright.
    """
    issues: list[ParseIssue] = []
    if blob is None:
        return Metadata(slippi_version=version), issues

    try:
        document = ubjson.loadb(blob)
    except ubjson.DecoderException as e:
        logger.warning(f"Could not decode replay metadata: {e}")
        issues.append(MetadataIssue(f"Metadata block is not valid UBJSON: {e}"))
        return Metadata(slippi_version=version), issues

    raw = document.get("metadata") if isinstance(document, dict) else None
    if not isinstance(raw, dict):
        issues.append(MetadataIssue("Metadata block has no metadata object", key="metadata"))
        return Metadata(slippi_version=version), issues

    fields: dict[str, Any] = {"slippi_version": version}

    if "startAt" in raw:
        try:
            fields["start_at"] = _parse_start_at(raw["startAt"])
        except ValueError as e:
            issues.append(MetadataIssue(f"Invalid startAt: {e}", key="startAt"))

    if "lastFrame" in raw:
        if isinstance(raw["lastFrame"], int):
            fields["last_frame"] = raw["lastFrame"]
        else:
            issues.append(MetadataIssue("lastFrame is not an integer", key="lastFrame"))

    if "playedOn" in raw:
        try:
            fields["played_on"] = ConsoleType(raw["playedOn"])
        except ValueError:
            issues.append(MetadataIssue(f"Unknown console {raw['playedOn']!r}", key="playedOn"))

    if isinstance(raw.get("consoleNick"), str):
        fields["console_nick"] = raw["consoleNick"]

    if "duration" in raw:
        duration = raw["duration"]
        if isinstance(duration, (int, float)) and duration >= 0:
            fields["duration"] = duration
        else:
            issues.append(MetadataIssue("duration is not a non-negative number", key="duration"))

    if "players" in raw:
        fields["players"] = _decode_metadata_players(raw["players"], issues)

    return Metadata(**fields), issues
