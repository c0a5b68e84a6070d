"""
slpkit - Slippi Replay Decoder

Decodes Slippi (.slp) recordings of Super Smash Bros. Melee matches into a
structured Game record and derives per-player statistics from the
reconciled frame timeline.

Usage:
    from slpkit import parse_replay

    game = parse_replay("Game_20230101T120000.slp")
    print(game.settings.stage, game.statistics.winner)

    for port, stats in game.statistics.player_stats.items():
        print(f"Port {port}: {stats.kill_count} kills, {stats.l_cancel_rate}% L-cancels")
"""

__version__ = "0.1.0"
__author__ = "slpkit Contributors"


def __getattr__(name):
    """Lazy import so the CLI and workers only load what they use."""
    # Parser
    if name == "ReplayParser":
        from slpkit.core.parser import ReplayParser
        return ReplayParser
    elif name == "parse_replay":
        from slpkit.core.parser import parse_replay
        return parse_replay
    elif name == "iter_frames":
        from slpkit.core.parser import iter_frames
        return iter_frames
    elif name == "ParserConfig":
        from slpkit.core.config import ParserConfig
        return ParserConfig
    elif name == "DetectionThresholds":
        from slpkit.core.config import DetectionThresholds
        return DetectionThresholds
    elif name == "load_config":
        from slpkit.core.config import load_config
        return load_config
    elif name == "Game":
        from slpkit.core.models import Game
        return Game
    elif name == "DecodeError":
        from slpkit.core.errors import DecodeError
        return DecodeError
    elif name == "compute_statistics":
        from slpkit.analysis.statistics import compute_statistics
        return compute_statistics
    elif name == "ParallelReplayAnalyzer":
        from slpkit.infra.parallel import ParallelReplayAnalyzer
        return ParallelReplayAnalyzer
    raise AttributeError(f"module 'slpkit' has no attribute '{name}'")


__all__ = [
    # Version
    "__version__",
    # Parser
    "ReplayParser",
    "parse_replay",
    "iter_frames",
    "ParserConfig",
    "DetectionThresholds",
    "load_config",
    "Game",
    "DecodeError",
    # Analysis
    "compute_statistics",
    "ParallelReplayAnalyzer",
]
