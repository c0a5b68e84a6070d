"""
Export Functionality for slpkit

Provides export formats for decoded games:
- JSON (default): complete game record, optionally with frames
- CSV: per-player statistics table
- pandas DataFrames: frames, player statistics and game events for analysis

Each format has its own advantages:
- JSON: Complete data, programmatic access
- CSV: Simple, widely compatible
- DataFrame: Filtering and aggregation across many frames or replays
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable
from dataclasses import asdict, fields, is_dataclass, replace
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any

import pandas as pd

from slpkit.core.config import ExportConfig
from slpkit.core.models import Frame, Game, PlayerStats, Statistics

logger = logging.getLogger(__name__)

EXPORT_FORMAT_VERSION = "1.0"


# ============================================================================
# Data Conversion Utilities
# ============================================================================


def dataclass_to_dict(obj: Any) -> Any:
    """Convert a dataclass (or nested dataclasses) to JSON-friendly values."""
    if is_dataclass(obj) and not isinstance(obj, type):
        return {key: dataclass_to_dict(value) for key, value in asdict(obj).items()}
    elif isinstance(obj, dict):
        return {str(k): dataclass_to_dict(v) for k, v in obj.items()}
    elif isinstance(obj, (list, tuple)):
        return [dataclass_to_dict(item) for item in obj]
    elif isinstance(obj, Enum):
        return obj.name.lower() if isinstance(obj.value, int) else obj.value
    elif isinstance(obj, datetime):
        return obj.isoformat()
    elif isinstance(obj, Path):
        return str(obj)
    else:
        return obj


def game_summary(game: Game) -> dict[str, Any]:
    """Compact, picklable description of a game without frames."""
    settings = game.settings
    statistics = game.statistics
    metadata = game.metadata

    players = []
    if settings is not None:
        for player in settings.players:
            entry: dict[str, Any] = {
                "port": player.port,
                "character": player.character_name,
                "tag": player.tag,
                "display_name": player.display_name,
                "connect_code": player.connect_code,
                "type": player.player_type.name.lower() if player.player_type else None,
                "controller_fix": player.controller_fix,
            }
            stats = statistics.get_player_stats(player.port) if statistics else None
            if stats is not None:
                entry["stats"] = dataclass_to_dict(stats)
                entry["stats"]["l_cancel_rate"] = stats.l_cancel_rate
            players.append(entry)

    return {
        "version": game.version,
        "stage": settings.stage.name.lower() if settings and settings.stage else None,
        "start_at": metadata.start_at.isoformat() if metadata and metadata.start_at else None,
        "played_on": metadata.played_on.value if metadata and metadata.played_on else None,
        "duration_seconds": game.duration_seconds(),
        "winner": statistics.winner if statistics else None,
        "game_end_method": (
            statistics.game_end_method.name.lower()
            if statistics and statistics.game_end_method is not None
            else None
        ),
        "players": players,
        "parsing_errors": game.error_messages(),
    }


# ============================================================================
# DataFrames
# ============================================================================

_STATE_FIELDS = [f.name for f in fields(PlayerStats)]


def frames_to_dataframe(frames: Iterable[Frame]) -> pd.DataFrame:
    """One row per (frame, port) with the post-frame state and the inputs."""
    rows = []
    for frame in frames:
        for port in frame.active_players():
            row: dict[str, Any] = {"frame": frame.index, "port": port, "is_rollback": frame.is_rollback}
            state = frame.get_post_player_state(port)
            if state is not None:
                row.update(asdict(state))
            inputs = frame.get_player_inputs(port)
            if inputs is not None:
                row.update({f"input_{k}": v for k, v in asdict(inputs).items()})
            rows.append(row)

    df = pd.DataFrame(rows)
    if not df.empty:
        df = df.sort_values(["frame", "port"], kind="stable").reset_index(drop=True)
    return df


def player_stats_to_dataframe(statistics: Statistics) -> pd.DataFrame:
    """Per-player counters indexed by port."""
    rows = []
    for port, stats in sorted(statistics.player_stats.items()):
        row = {"port": port, **asdict(stats), "l_cancel_rate": stats.l_cancel_rate}
        rows.append(row)

    columns = ["port", *_STATE_FIELDS, "l_cancel_rate"]
    return pd.DataFrame(rows, columns=columns).set_index("port")


def events_to_dataframe(statistics: Statistics) -> pd.DataFrame:
    """Game events in insertion order with their payload flattened."""
    rows = []
    for event in statistics.game_events:
        row = {"type": str(event.type), "frame": event.frame, "player": event.player}
        row.update(event.data)
        rows.append(row)

    df = pd.DataFrame(rows)
    if df.empty:
        df = pd.DataFrame(columns=["type", "frame", "player"])
    return df


# ============================================================================
# File Export
# ============================================================================


def export_to_json(
    game: Game,
    output_path: Path | None = None,
    indent: int = 2,
    include_frames: bool = False,
) -> str:
    """
    Export a game to JSON.

    Args:
        game: Decoded game
        output_path: Optional path to write the file
        indent: JSON indentation level
        include_frames: Whether to include every frame

    Returns:
        JSON string
    """
    if not include_frames:
        game = replace(game, frames=())
    data = dataclass_to_dict(game)
    data["parsing_errors"] = game.error_messages()
    if not include_frames:
        data.pop("frames", None)

    export_data = {
        "_metadata": {
            "exported_at": datetime.now().isoformat(),
            "format": "slpkit_json",
            "version": EXPORT_FORMAT_VERSION,
        },
        **data,
    }

    json_str = json.dumps(export_data, indent=indent, default=str)

    if output_path:
        output_path.write_text(json_str)
        logger.info(f"Exported JSON to: {output_path}")

    return json_str


def export_to_csv(
    game: Game,
    output_path: Path | None = None,
    delimiter: str = ",",
) -> str:
    """
    Export per-player statistics to CSV.

    Raises ValueError when the game was decoded without statistics.
    """
    if game.statistics is None:
        raise ValueError("Game has no statistics to export")

    df = player_stats_to_dataframe(game.statistics)
    if game.settings is not None:
        df.insert(0, "character", [
            p.character_name if (p := game.settings.get_player(port)) else None
            for port in df.index
        ])

    csv_str = df.to_csv(sep=delimiter)

    if output_path:
        output_path.write_text(csv_str)
        logger.info(f"Exported CSV to: {output_path}")

    return csv_str


def export_game(
    game: Game,
    output_path: Path,
    format: str | None = None,
    config: ExportConfig | None = None,
) -> None:
    """
    Export a game in the format implied by the file extension.

    Args:
        game: Decoded game
        output_path: Path to write the export
        format: Optional format override (json, csv)
        config: Export settings
    """
    config = config or ExportConfig()
    if format is None:
        format = output_path.suffix.lstrip(".").lower() or config.default_format

    if format == "json":
        export_to_json(game, output_path, config.json_indent, config.include_frames)
    elif format == "csv":
        export_to_csv(game, output_path, config.csv_delimiter)
    else:
        raise ValueError(f"Unsupported export format: {format}")
