"""
Replay Parser (Game Assembler)

Sequences the decoding stages for one replay:

    bytes / stream
      -> EventDemultiplexer      typed events, lazily
      -> decode_settings         from the game start event
      -> FrameReconciler         one Frame per tick, lazily
      -> StatisticsPipeline      single fold over the frames
      -> decode_metadata         trailing UBJSON object
      -> Game

Recoverable problems from every stage are collected into
Game.parsing_errors. Fatal DecodeErrors propagate to the caller with their
byte offset and no Game is built.

Usage:
    game = parse_replay("Game_20230101T120000.slp")

    parser = ReplayParser(data, ParserConfig(compute_statistics=False))
    for frame in parser.iter_frames():
        if frame.index > 100:
            break
"""

from __future__ import annotations

import logging
import os
from collections.abc import Iterator
from contextlib import ExitStack
from pathlib import Path
from typing import Any, BinaryIO

from slpkit.analysis.statistics import StatisticsPipeline
from slpkit.core.config import DetectionThresholds, ParserConfig
from slpkit.core.constants import GameEndMethod
from slpkit.core.errors import DecodeError, MissingGameStart, ParseIssue, UnknownGameEndMethod
from slpkit.core.events import EventDemultiplexer, GameEndEvent, GameStartEvent, ReplayEvent
from slpkit.core.frames import FrameReconciler
from slpkit.core.metadata import decode_metadata, decode_settings
from slpkit.core.models import Frame, Game, Settings

logger = logging.getLogger(__name__)

ReplaySource = str | os.PathLike | bytes | bytearray | memoryview | BinaryIO


def _is_path(source: Any) -> bool:
    return isinstance(source, (str, os.PathLike))


class ReplayParser:
    """
    Decodes one replay.

    `source` may be a filesystem path, an in-memory buffer, or any object
    with read(n). Path errors surface as the usual OSError subclasses before
    any decoding starts.
    """

    def __init__(
        self,
        source: ReplaySource,
        config: ParserConfig | None = None,
        thresholds: DetectionThresholds | None = None,
    ):
        self.source = source
        self.config = config or ParserConfig()
        self.thresholds = thresholds or DetectionThresholds()

        self.settings: Settings | None = None
        self.issues: list[ParseIssue] = []
        self.game_end: GameEndEvent | None = None

    @property
    def name(self) -> str:
        if _is_path(self.source):
            return Path(self.source).name
        return type(self.source).__name__

    # ------------------------------------------------------------------
    # Stage helpers
    # ------------------------------------------------------------------

    def _open(self, source: Any) -> tuple[EventDemultiplexer, Iterator[ReplayEvent]]:
        """Read up to and including the game start event."""
        self.settings = None
        self.issues = []
        self.game_end = None

        demux = EventDemultiplexer(source)
        events = demux.events()

        for event in events:
            if isinstance(event, GameStartEvent):
                settings, issues = decode_settings(event.body, event.offset)
                self.settings = settings
                self._add_issues(issues)
                return demux, events
            logger.debug(f"Ignoring {type(event).__name__} before game start")

        raise MissingGameStart("Event stream ended before the game start event", demux.cursor.offset)

    def _add_issues(self, issues: list[ParseIssue]) -> None:
        for issue in issues:
            logger.warning(f"{self.name}: {issue}")
        self.issues.extend(issues)

    def _on_event(self, event: ReplayEvent) -> None:
        if isinstance(event, GameEndEvent):
            self.game_end = event

    def _check_game_end(self) -> None:
        if self.game_end is None:
            return
        code = self.game_end.method_code
        try:
            GameEndMethod(code)
        except ValueError:
            self._add_issues(
                [UnknownGameEndMethod(f"Unknown game end method {code}", code=code)]
            )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def iter_frames(self) -> Iterator[Frame]:
        """
        Yield reconciled frames one at a time.

        Decoding runs at most `rollback_window` ticks ahead of the last
        frame yielded, so breaking out early leaves the rest of the input
        unread. Settings are available on `self.settings` once the first
        frame is yielded.
        """
        with ExitStack() as stack:
            source = self.source
            if _is_path(source):
                source = stack.enter_context(open(source, "rb"))

            demux, events = self._open(source)
            reconciler = FrameReconciler(self.config.rollback_window)
            try:
                yield from reconciler.reconcile(events, on_event=self._on_event)
            finally:
                self._add_issues(reconciler.issues)
                self._check_game_end()

    def parse(self) -> Game:
        """Decode the whole replay into a Game."""
        source = Path(self.source).read_bytes() if _is_path(self.source) else self.source
        try:
            return self._parse(source)
        except DecodeError as e:
            logger.error(f"{self.name}: {e.kind}: {e}")
            raise

    def _parse(self, source: Any) -> Game:
        demux, events = self._open(source)
        settings = self.settings

        frames: list[Frame] = []
        statistics = None
        config = self.config

        if config.decode_frames or config.compute_statistics:
            reconciler = FrameReconciler(config.rollback_window)
            pipeline = (
                StatisticsPipeline(settings, self.thresholds) if config.compute_statistics else None
            )

            for frame in reconciler.reconcile(events, on_event=self._on_event):
                if pipeline is not None:
                    pipeline.update(frame)
                if config.decode_frames:
                    frames.append(frame)

            self._add_issues(reconciler.issues)
            self._check_game_end()
            if pipeline is not None:
                if self.game_end is not None:
                    pipeline.record_game_end(self.game_end)
                statistics = pipeline.finish()
                result = statistics.validate()
                if not result.ok:
                    self._add_issues([result.error])
        else:
            demux.skip_events()

        metadata, metadata_issues = decode_metadata(demux.metadata_blob(), settings.version)
        self._add_issues(metadata_issues)

        game = Game(
            metadata=metadata,
            settings=settings,
            frames=tuple(frames),
            statistics=statistics,
            version=settings.version,
            parsing_errors=tuple(self.issues),
        )
        logger.debug(
            f"{self.name}: decoded v{game.version}, {len(frames)} frames kept, "
            f"{len(self.issues)} issues"
        )
        return game


def parse_replay(
    source: ReplaySource,
    config: ParserConfig | None = None,
    thresholds: DetectionThresholds | None = None,
) -> Game:
    """Decode a replay from a path, buffer or stream."""
    return ReplayParser(source, config, thresholds).parse()


def iter_frames(source: ReplaySource, config: ParserConfig | None = None) -> Iterator[Frame]:
    """Lazily yield the reconciled frames of a replay."""
    yield from ReplayParser(source, config).iter_frames()
