"""Tests for JSON, CSV and DataFrame export."""

from __future__ import annotations

import json

import pandas as pd
import pytest

from slpkit.core.config import ExportConfig, ParserConfig
from slpkit.core.parser import parse_replay
from slpkit.export import (
    events_to_dataframe,
    export_game,
    export_to_csv,
    export_to_json,
    frames_to_dataframe,
    game_summary,
    player_stats_to_dataframe,
)


@pytest.fixture
def game(short_game_bytes):
    return parse_replay(short_game_bytes)


class TestGameSummary:
    """Test the compact per-game summary."""

    def test_summary_fields(self, game):
        """Test the summary is plain JSON-ready data."""
        summary = game_summary(game)

        assert summary["version"] == "3.14.0"
        assert summary["stage"] == "battlefield"
        assert summary["played_on"] == "dolphin"
        assert summary["game_end_method"] == "game"
        assert summary["winner"] is None
        assert [p["character"] for p in summary["players"]] == ["Fox", "Marth"]
        assert summary["players"][0]["stats"]["kill_count"] == 0
        json.dumps(summary)

    def test_summary_without_statistics(self, short_game_bytes):
        """Test the summary when statistics were skipped."""
        game = parse_replay(short_game_bytes, ParserConfig(compute_statistics=False))
        summary = game_summary(game)
        assert "stats" not in summary["players"][0]
        assert summary["duration_seconds"] == 2.0


class TestDataFrames:
    """Test pandas exports."""

    def test_frames_dataframe(self, game):
        """Test one row per frame and port."""
        df = frames_to_dataframe(game.frames)

        assert len(df) == 20
        assert list(df["port"].unique()) == [1, 2]
        assert df["frame"].min() == -123
        assert "input_trigger" in df.columns
        assert df.loc[(df["frame"] == -114) & (df["port"] == 1), "position_x"].iloc[0] == 9.0

    def test_empty_frames_dataframe(self):
        """Test exporting no frames."""
        assert frames_to_dataframe([]).empty

    def test_player_stats_dataframe(self, game):
        """Test player stats are indexed by port."""
        df = player_stats_to_dataframe(game.statistics)

        assert list(df.index) == [1, 2]
        assert "l_cancel_rate" in df.columns
        assert df.loc[1, "stocks_remaining"] == 4

    def test_events_dataframe_empty(self, game):
        """Test an empty event table keeps its columns."""
        df = events_to_dataframe(game.statistics)
        assert df.empty
        assert list(df.columns) == ["type", "frame", "player"]


class TestFileExport:
    """Test writing export files."""

    def test_json_export(self, game, tmp_path):
        """Test JSON export with the metadata header."""
        path = tmp_path / "game.json"
        export_to_json(game, path)
        data = json.loads(path.read_text())

        assert data["_metadata"]["format"] == "slpkit_json"
        assert data["version"] == "3.14.0"
        assert data["settings"]["stage"] == "battlefield"
        assert data["settings"]["players"][0]["tag"] == "FOX"
        assert "frames" not in data
        assert data["parsing_errors"] == []

    def test_json_with_frames(self, game):
        """Test JSON export including frames."""
        data = json.loads(export_to_json(game, include_frames=True))
        assert len(data["frames"]) == 10

    def test_csv_export(self, game, tmp_path):
        """Test CSV export of player stats."""
        path = tmp_path / "stats.csv"
        export_to_csv(game, path)
        df = pd.read_csv(path, index_col="port")

        assert list(df.index) == [1, 2]
        assert df.loc[2, "character"] == "Marth"

    def test_csv_requires_statistics(self, short_game_bytes):
        """Test CSV export needs statistics."""
        game = parse_replay(short_game_bytes, ParserConfig(compute_statistics=False))
        with pytest.raises(ValueError):
            export_to_csv(game)

    def test_export_game_by_extension(self, game, tmp_path):
        """Test the format is picked from the extension."""
        export_game(game, tmp_path / "a.json")
        export_game(game, tmp_path / "b.csv", config=ExportConfig(csv_delimiter=";"))

        assert json.loads((tmp_path / "a.json").read_text())["version"] == "3.14.0"
        assert "port;character" in (tmp_path / "b.csv").read_text()

    def test_unsupported_format(self, game, tmp_path):
        """Test an unsupported export extension."""
        with pytest.raises(ValueError):
            export_game(game, tmp_path / "game.xml")
