"""
slpkit CLI - Command Line Interface for Slippi replays

Provides commands for:
- Analyzing a replay (settings, metadata, per-player statistics)
- Printing a range of reconciled frames
- Decoding a folder of replays on a worker pool
"""

import logging
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.progress import BarColumn, Progress, SpinnerColumn, TextColumn
from rich.table import Table

from slpkit import __version__
from slpkit.core.config import ParserConfig, SlpkitConfig, configure_logging, load_config
from slpkit.core.errors import DecodeError
from slpkit.core.models import Game
from slpkit.core.parser import ReplayParser

app = typer.Typer(
    name="slpkit",
    help="Decode Slippi replays and derive Melee match statistics",
    add_completion=False,
)
console = Console()
logger = logging.getLogger(__name__)


def _config(ctx: typer.Context) -> SlpkitConfig:
    if not isinstance(ctx.obj, SlpkitConfig):
        ctx.obj = load_config()
    return ctx.obj


def version_callback(value: bool) -> None:
    """Show version and exit."""
    if value:
        console.print(f"[bold blue]slpkit[/bold blue] v{__version__}")
        raise typer.Exit()


@app.callback()
def main_callback(
    ctx: typer.Context,
    version: bool = typer.Option(
        None,
        "--version",
        "-v",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-V", help="Enable verbose output"),
    config_file: Optional[Path] = typer.Option(
        None,
        "--config",
        "-c",
        help="Configuration file (.yaml, .toml or .json)",
        exists=True,
        dir_okay=False,
    ),
) -> None:
    """slpkit - Slippi replay decoder"""
    config = load_config(config_file)
    ctx.obj = config
    configure_logging(config.logging, "DEBUG" if verbose else None)


def _fail(path: Path, error: DecodeError) -> None:
    console.print(f"[red]Failed to decode {path.name}:[/red] {error.kind}: {error}")
    raise typer.Exit(code=1)


# ============================================================================
# analyze
# ============================================================================


@app.command()
def analyze(
    ctx: typer.Context,
    replay_path: Path = typer.Argument(
        ...,
        help="Path to the .slp file to analyze",
        exists=True,
        dir_okay=False,
        resolve_path=True,
    ),
    output: Optional[Path] = typer.Option(
        None,
        "--output",
        "-o",
        help="Output file for results (format detected from extension: .json, .csv)",
    ),
    no_frames: bool = typer.Option(False, "--no-frames", help="Do not keep decoded frames"),
    no_stats: bool = typer.Option(False, "--no-stats", help="Skip the statistics pipeline"),
) -> None:
    """
    Decode a replay and display its settings, metadata and statistics.
    """
    config = _config(ctx)
    parser_config = ParserConfig(
        decode_frames=config.parser.decode_frames and not no_frames,
        compute_statistics=config.parser.compute_statistics and not no_stats,
        rollback_window=config.parser.rollback_window,
    )

    with console.status(f"Decoding {replay_path.name}..."):
        try:
            game = ReplayParser(replay_path, parser_config, config.thresholds).parse()
        except DecodeError as e:
            _fail(replay_path, e)

    _display_settings(game)
    if game.statistics is not None:
        _display_statistics(game)
    _display_issues(game)

    if output:
        from slpkit.export import export_game

        export_game(game, output, config=config.export)
        console.print(f"[green]Results exported to:[/green] {output}")


def _display_settings(game: Game) -> None:
    settings = game.settings
    metadata = game.metadata

    table = Table(title="Match", show_header=False)
    table.add_column("Property", style="cyan")
    table.add_column("Value", style="green")
    table.add_row("Format version", game.version or "?")
    table.add_row("Stage", settings.stage.name.replace("_", " ").title() if settings.stage else "Unknown")
    table.add_row("Teams", "Yes" if settings.is_teams_match() else "No")
    table.add_row("Timer", f"{settings.game_timer}s")
    if metadata is not None:
        table.add_row("Recorded on", metadata.console_name())
        if metadata.start_at:
            table.add_row("Started", metadata.start_at.isoformat())
        duration = game.duration_seconds()
        table.add_row("Duration", f"{duration:.2f}s" if duration is not None else "Unknown")
    console.print(table)

    players = Table(title="Players")
    players.add_column("Port", justify="right")
    players.add_column("Character", style="cyan")
    players.add_column("Tag")
    players.add_column("Code")
    players.add_column("Type")
    players.add_column("Controller fix")
    for player in settings.players:
        players.add_row(
            str(player.port),
            player.character_name,
            player.display_name or player.tag or "",
            player.connect_code or "",
            player.player_type.name.lower() if player.player_type else "?",
            player.controller_fix or "",
        )
    console.print(players)


def _display_statistics(game: Game) -> None:
    stats = game.statistics

    table = Table(title="Statistics")
    table.add_column("Port", justify="right")
    table.add_column("Stocks", justify="right")
    table.add_column("K", justify="right")
    table.add_column("D", justify="right")
    table.add_column("Dmg dealt", justify="right")
    table.add_column("Openings", justify="right")
    table.add_column("Neutral", justify="right")
    table.add_column("Counter", justify="right")
    table.add_column("Trades+", justify="right")
    table.add_column("WD/WL", justify="right")
    table.add_column("DD", justify="right")
    table.add_column("L-cancel", justify="right")

    for port, s in sorted(stats.player_stats.items()):
        rate = s.l_cancel_rate
        table.add_row(
            str(port),
            str(s.stocks_remaining) if s.stocks_remaining is not None else "-",
            str(s.kill_count),
            str(s.death_count),
            f"{s.damage_dealt:.1f}" if s.damage_dealt is not None else "-",
            str(s.opening_count),
            str(s.neutral_win_count),
            str(s.counter_hit_count),
            str(s.beneficial_trade_count),
            f"{s.wavedash_count}/{s.waveland_count}",
            str(s.dash_dance_count),
            f"{rate:.1f}%" if rate is not None else "-",
        )

    console.print(table)
    winner = f"Port {stats.winner}" if stats.has_winner() else "None"
    end = stats.game_end_method.name.lower() if stats.game_end_method is not None else "unknown"
    console.print(f"Winner: [bold]{winner}[/bold] (game end: {end})\n")


def _display_issues(game: Game) -> None:
    if not game.has_errors():
        return
    console.print(f"[yellow]{len(game.parsing_errors)} issue(s) while decoding:[/yellow]")
    for message in game.error_messages()[:20]:
        console.print(f"  - {message}")


# ============================================================================
# frames
# ============================================================================


@app.command()
def frames(
    ctx: typer.Context,
    replay_path: Path = typer.Argument(
        ..., help="Path to the .slp file", exists=True, dir_okay=False, resolve_path=True
    ),
    start: int = typer.Option(0, "--start", "-s", help="First frame index to show"),
    end: int = typer.Option(60, "--end", "-e", help="Last frame index to show"),
) -> None:
    """
    Print a range of reconciled frames. Decoding stops after the last one.
    """
    config = _config(ctx)
    parser = ReplayParser(replay_path, ParserConfig(rollback_window=config.parser.rollback_window))

    table = Table(title=f"{replay_path.name} frames {start}..{end}")
    table.add_column("Frame", justify="right")
    table.add_column("Port", justify="right")
    table.add_column("Action", justify="right")
    table.add_column("X", justify="right")
    table.add_column("Y", justify="right")
    table.add_column("%", justify="right")
    table.add_column("Stocks", justify="right")
    table.add_column("Rollback")

    try:
        for frame in parser.iter_frames():
            if frame.index > end:
                break
            if frame.index < start:
                continue
            for port in frame.active_players():
                state = frame.get_post_player_state(port)
                if state is None:
                    continue
                table.add_row(
                    str(frame.index),
                    str(port),
                    f"0x{state.action_state:03X}" if state.action_state is not None else "-",
                    f"{state.position_x:.2f}" if state.position_x is not None else "-",
                    f"{state.position_y:.2f}" if state.position_y is not None else "-",
                    f"{state.percent:.1f}" if state.percent is not None else "-",
                    str(state.stocks) if state.stocks is not None else "-",
                    "yes" if frame.is_rollback else "",
                )
    except DecodeError as e:
        _fail(replay_path, e)

    console.print(table)


# ============================================================================
# batch
# ============================================================================


@app.command()
def batch(
    ctx: typer.Context,
    directory: Path = typer.Argument(
        ..., help="Folder containing .slp files", exists=True, file_okay=False, resolve_path=True
    ),
    workers: Optional[int] = typer.Option(None, "--workers", "-w", help="Worker pool size"),
    threads: bool = typer.Option(False, "--threads", help="Use threads instead of processes"),
    recursive: bool = typer.Option(False, "--recursive", "-r", help="Scan subfolders"),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Write results as JSON"),
) -> None:
    """
    Decode every replay in a folder on a bounded worker pool.
    """
    import json

    from slpkit.infra.parallel import ParallelReplayAnalyzer

    config = _config(ctx)
    glob = directory.rglob if recursive or config.batch.recursive else directory.glob
    paths = sorted(glob(config.batch.file_pattern))
    if not paths:
        console.print(f"[yellow]No replays matching {config.batch.file_pattern} in {directory}[/yellow]")
        raise typer.Exit()

    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        TextColumn("{task.completed}/{task.total}"),
        console=console,
    ) as progress:
        task_id = progress.add_task("Decoding replays", total=len(paths))
        analyzer = ParallelReplayAnalyzer(
            workers=workers if workers is not None else config.batch.workers,
            use_processes=config.batch.use_processes and not threads,
            progress_callback=lambda p: progress.update(task_id, completed=p.completed_tasks),
            parser=config.parser,
            thresholds=config.thresholds,
        )
        result = analyzer.analyze_batch(paths, timeout_per_replay=config.batch.timeout_per_replay)

    table = Table(title="Batch results")
    table.add_column("Replay", style="cyan")
    table.add_column("Status")
    table.add_column("Stage")
    table.add_column("Winner", justify="right")
    table.add_column("Duration", justify="right")
    for r in sorted(result.results, key=lambda r: r.replay_path):
        data = r.analysis_data or {}
        duration = data.get("duration_seconds")
        table.add_row(
            Path(r.replay_path).name,
            "[green]ok[/green]" if r.success else f"[red]{r.error_kind}[/red]",
            str(data.get("stage") or "-"),
            str(data.get("winner") or "-"),
            f"{duration:.1f}s" if duration is not None else "-",
        )
    console.print(table)
    console.print(
        f"{result.successful}/{result.total_replays} decoded ({result.success_rate}%) "
        f"in {result.total_duration_seconds:.1f}s"
    )

    if output:
        output.write_text(json.dumps(result.to_dict(), indent=config.export.json_indent, default=str))
        console.print(f"[green]Results written to:[/green] {output}")


# ============================================================================
# info
# ============================================================================


@app.command()
def info() -> None:
    """
    Display information about slpkit and the environment.
    """
    import platform as plat
    from importlib.metadata import PackageNotFoundError, version

    console.print(f"\n[bold blue]slpkit[/bold blue] v{__version__}\n")

    table = Table(show_header=False)
    table.add_column("Property", style="cyan")
    table.add_column("Value", style="green")

    table.add_row("Python", plat.python_version())
    table.add_row("Platform", plat.system())
    table.add_row("Architecture", plat.machine())

    for dist in ("pandas", "py-ubjson", "pyyaml", "rich", "typer"):
        try:
            table.add_row(dist, version(dist))
        except PackageNotFoundError:
            table.add_row(dist, "[red]not installed[/red]")

    console.print(table)


def main() -> None:
    """Main entry point."""
    app()


if __name__ == "__main__":
    main()
