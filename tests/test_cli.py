"""Tests for the command line interface."""

from __future__ import annotations

import json
import logging

import pytest
from typer.testing import CliRunner

from slpkit import __version__
from slpkit.cli import app

runner = CliRunner()


@pytest.fixture(autouse=True)
def _reset_logging():
    yield
    root = logging.getLogger()
    for handler in [h for h in root.handlers if getattr(h, "_slpkit", False)]:
        root.removeHandler(handler)
        handler.close()
    root.setLevel(logging.WARNING)


class TestAnalyzeCommand:
    """Test `slpkit analyze`."""

    def test_analyze(self, replay_file):
        """Test analyze prints settings and statistics."""
        result = runner.invoke(app, ["analyze", str(replay_file)])

        assert result.exit_code == 0, result.output
        assert "Battlefield" in result.output
        assert "Statistics" in result.output

    def test_analyze_without_statistics(self, replay_file):
        """Test --no-stats hides the statistics table."""
        result = runner.invoke(app, ["analyze", str(replay_file), "--no-stats"])

        assert result.exit_code == 0, result.output
        assert "Statistics" not in result.output

    def test_analyze_exports_json(self, replay_file, tmp_path):
        """Test analyze writes a JSON export."""
        output = tmp_path / "out.json"
        result = runner.invoke(app, ["analyze", str(replay_file), "--output", str(output)])

        assert result.exit_code == 0, result.output
        assert json.loads(output.read_text())["version"] == "3.14.0"

    def test_analyze_invalid_file(self, tmp_path):
        """Test a bad file exits with the decode error kind."""
        bad = tmp_path / "bad.slp"
        bad.write_bytes(b"garbage bytes")
        result = runner.invoke(app, ["analyze", str(bad)])

        assert result.exit_code == 1
        assert "InvalidContainer" in result.output


class TestFramesCommand:
    """Test `slpkit frames`."""

    def test_frame_range(self, replay_file):
        """Test frames prints only the requested range."""
        result = runner.invoke(app, ["frames", str(replay_file), "--start=-120", "--end=-119"])

        assert result.exit_code == 0, result.output
        assert "-119" in result.output
        assert "-117" not in result.output


class TestBatchCommand:
    """Test `slpkit batch`."""

    def test_batch_threads(self, tmp_path, short_game):
        """Test batch decodes a folder on threads."""
        short_game.write(tmp_path / "a.slp")
        short_game.write(tmp_path / "b.slp")
        output = tmp_path / "results.json"

        result = runner.invoke(
            app, ["batch", str(tmp_path), "--threads", "--workers", "1", "--output", str(output)]
        )

        assert result.exit_code == 0, result.output
        data = json.loads(output.read_text())
        assert data["total_replays"] == 2
        assert data["successful"] == 2

    def test_batch_recursive_from_config(self, tmp_path, short_game):
        """Test the batch section of the config can turn on subfolder scanning."""
        replays = tmp_path / "replays"
        (replays / "nested").mkdir(parents=True)
        short_game.write(replays / "nested" / "a.slp")
        config = tmp_path / "slpkit.yaml"
        config.write_text("batch:\n  recursive: true\n")
        output = tmp_path / "results.json"

        flat = runner.invoke(app, ["batch", str(replays), "--threads"])
        assert "No replays" in flat.output

        result = runner.invoke(
            app,
            ["--config", str(config), "batch", str(replays), "--threads", "--output", str(output)],
        )
        assert result.exit_code == 0, result.output
        assert json.loads(output.read_text())["successful"] == 1

    def test_batch_empty_folder(self, tmp_path):
        """Test batch on a folder without replays."""
        result = runner.invoke(app, ["batch", str(tmp_path), "--threads"])
        assert result.exit_code == 0
        assert "No replays" in result.output


class TestMiscCommands:
    """Test version and info output."""

    def test_version(self):
        """Test --version output."""
        result = runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert __version__ in result.output

    def test_info(self):
        """Test info lists the environment."""
        result = runner.invoke(app, ["info"])
        assert result.exit_code == 0
        assert "Python" in result.output

    def test_config_option(self, replay_file, tmp_path):
        """Test --config settings reach the analyze command."""
        config = tmp_path / "slpkit.yaml"
        config.write_text("parser:\n  compute_statistics: false\n")
        result = runner.invoke(app, ["--config", str(config), "analyze", str(replay_file)])

        assert result.exit_code == 0, result.output
        assert "Statistics" not in result.output
