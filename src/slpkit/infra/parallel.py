"""
Parallel Processing Module for Batch Replay Decoding

Implements:
- A fixed-size process (or thread) pool so peak memory stays bounded
- One independent decode per replay with no shared state
- Progress tracking and result aggregation
"""

from __future__ import annotations

import hashlib
import logging
import os
import time
from collections.abc import Callable
from concurrent.futures import ProcessPoolExecutor, ThreadPoolExecutor, as_completed
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any

from slpkit.core.config import BatchConfig, DetectionThresholds, ParserConfig

logger = logging.getLogger(__name__)

# Default to CPU count - 1, minimum 1
DEFAULT_WORKERS = max(1, (os.cpu_count() or 4) - 1)
MAX_WORKERS = os.cpu_count() or 8


@dataclass
class ReplayAnalysisTask:
    """A single replay decode task."""

    replay_path: Path
    task_id: str = ""
    parser: ParserConfig = field(default_factory=ParserConfig)
    thresholds: DetectionThresholds = field(default_factory=DetectionThresholds)

    def __post_init__(self):
        if not self.task_id:
            self.task_id = hashlib.md5(
                str(self.replay_path).encode(), usedforsecurity=False
            ).hexdigest()[:12]


@dataclass
class ReplayAnalysisResult:
    """Result of decoding a single replay."""

    task_id: str
    replay_path: str
    success: bool
    duration_seconds: float
    error_kind: str | None = None
    error_message: str | None = None
    error_offset: int | None = None
    analysis_data: dict | None = None

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class BatchAnalysisProgress:
    """Progress tracking for batch decoding."""

    total_tasks: int
    completed_tasks: int = 0
    failed_tasks: int = 0
    current_task: str = ""
    start_time: float = field(default_factory=time.time)

    @property
    def progress_percent(self) -> float:
        if self.total_tasks == 0:
            return 100.0
        return round((self.completed_tasks / self.total_tasks) * 100, 1)

    @property
    def elapsed_seconds(self) -> float:
        return time.time() - self.start_time

    @property
    def estimated_remaining_seconds(self) -> float:
        if self.completed_tasks == 0:
            return 0.0
        avg_time_per_task = self.elapsed_seconds / self.completed_tasks
        remaining_tasks = self.total_tasks - self.completed_tasks
        return avg_time_per_task * remaining_tasks


@dataclass
class BatchAnalysisResult:
    """Result of batch decoding."""

    total_replays: int
    successful: int
    failed: int
    total_duration_seconds: float
    results: list[ReplayAnalysisResult] = field(default_factory=list)

    @property
    def success_rate(self) -> float:
        if self.total_replays == 0:
            return 0.0
        return round((self.successful / self.total_replays) * 100, 1)

    def to_dict(self) -> dict:
        return {
            "total_replays": self.total_replays,
            "successful": self.successful,
            "failed": self.failed,
            "success_rate": self.success_rate,
            "total_duration_seconds": round(self.total_duration_seconds, 2),
            "results": [r.to_dict() for r in self.results],
        }


def analyze_replay(task: ReplayAnalysisTask) -> ReplayAnalysisResult:
    """
    Worker function to decode a single replay.
    This runs in a separate process when the pool uses processes.
    """
    start_time = time.time()

    # Import here to keep worker start-up light
    from slpkit.core.errors import DecodeError
    from slpkit.core.parser import parse_replay
    from slpkit.export import game_summary

    try:
        config = ParserConfig(
            decode_frames=False,
            compute_statistics=task.parser.compute_statistics,
            rollback_window=task.parser.rollback_window,
        )
        game = parse_replay(task.replay_path, config, task.thresholds)
        return ReplayAnalysisResult(
            task_id=task.task_id,
            replay_path=str(task.replay_path),
            success=True,
            duration_seconds=time.time() - start_time,
            analysis_data=game_summary(game),
        )

    except DecodeError as e:
        logger.error(f"Failed to decode {task.replay_path}: {e}")
        return ReplayAnalysisResult(
            task_id=task.task_id,
            replay_path=str(task.replay_path),
            success=False,
            duration_seconds=time.time() - start_time,
            error_kind=e.kind,
            error_message=str(e),
            error_offset=e.offset,
        )

    except OSError as e:
        logger.error(f"Failed to read {task.replay_path}: {e}")
        return ReplayAnalysisResult(
            task_id=task.task_id,
            replay_path=str(task.replay_path),
            success=False,
            duration_seconds=time.time() - start_time,
            error_kind=type(e).__name__,
            error_message=str(e),
        )


def _failed_result(task: ReplayAnalysisTask, error: BaseException) -> ReplayAnalysisResult:
    return ReplayAnalysisResult(
        task_id=task.task_id,
        replay_path=str(task.replay_path),
        success=False,
        duration_seconds=0.0,
        error_kind=type(error).__name__,
        error_message=str(error),
    )


class ParallelReplayAnalyzer:
    """
    Decodes many replays on a bounded worker pool.

    Usage:
        analyzer = ParallelReplayAnalyzer(workers=4)
        results = analyzer.analyze_batch([Path("a.slp"), Path("b.slp")])
    """

    def __init__(
        self,
        workers: int | None = None,
        use_processes: bool = True,
        progress_callback: Callable[[BatchAnalysisProgress], None] | None = None,
        parser: ParserConfig | None = None,
        thresholds: DetectionThresholds | None = None,
    ):
        """
        Initialize the parallel analyzer.

        Args:
            workers: Number of worker processes/threads (None = default)
            use_processes: If True, use ProcessPoolExecutor; if False, use ThreadPoolExecutor
            progress_callback: Optional callback for progress updates
            parser: Parser settings applied to every replay
            thresholds: Detection thresholds applied to every replay
        """
        self.workers = max(1, min(workers or DEFAULT_WORKERS, MAX_WORKERS))
        self.use_processes = use_processes
        self.progress_callback = progress_callback
        self.parser = parser or ParserConfig()
        self.thresholds = thresholds or DetectionThresholds()

        logger.info(f"ParallelReplayAnalyzer initialized with {self.workers} workers")

    @classmethod
    def from_config(
        cls,
        batch: BatchConfig,
        parser: ParserConfig | None = None,
        thresholds: DetectionThresholds | None = None,
        progress_callback: Callable[[BatchAnalysisProgress], None] | None = None,
    ) -> ParallelReplayAnalyzer:
        return cls(
            workers=batch.workers,
            use_processes=batch.use_processes,
            progress_callback=progress_callback,
            parser=parser,
            thresholds=thresholds,
        )

    def analyze_batch(
        self,
        replay_paths: list[Path],
        timeout_per_replay: float = 120.0,
    ) -> BatchAnalysisResult:
        """
        Decode multiple replays in parallel.

        Args:
            replay_paths: List of paths to replay files
            timeout_per_replay: Timeout in seconds per replay

        Returns:
            BatchAnalysisResult with all results
        """
        if not replay_paths:
            return BatchAnalysisResult(
                total_replays=0,
                successful=0,
                failed=0,
                total_duration_seconds=0.0,
            )

        tasks = [
            ReplayAnalysisTask(replay_path=path, parser=self.parser, thresholds=self.thresholds)
            for path in replay_paths
        ]

        progress = BatchAnalysisProgress(total_tasks=len(tasks))
        start_time = time.time()
        results: list[ReplayAnalysisResult] = []

        ExecutorClass = ProcessPoolExecutor if self.use_processes else ThreadPoolExecutor

        logger.info(f"Starting batch decode of {len(tasks)} replays with {self.workers} workers")

        executor = ExecutorClass(max_workers=self.workers)
        future_to_task = {executor.submit(analyze_replay, task): task for task in tasks}
        collected = set()
        timed_out = False

        try:
            for future in as_completed(future_to_task, timeout=timeout_per_replay * len(tasks)):
                collected.add(future)
                task = future_to_task[future]
                progress.current_task = str(task.replay_path)

                try:
                    result = future.result()
                except Exception as e:
                    logger.error(f"Task {task.task_id} failed: {e}")
                    result = _failed_result(task, e)

                self._record(progress, results, result)

        except TimeoutError:
            timed_out = True
            pending = [task for future, task in future_to_task.items() if future not in collected]
            logger.error(f"Batch timed out with {len(pending)} replays unfinished")
            for task in pending:
                error = TimeoutError(f"No result within {timeout_per_replay * len(tasks):.1f}s")
                self._record(progress, results, _failed_result(task, error))

        finally:
            # Hung workers are abandoned rather than joined
            executor.shutdown(wait=not timed_out, cancel_futures=True)

        total_duration = time.time() - start_time
        successful = sum(1 for r in results if r.success)
        failed = len(results) - successful

        logger.info(
            f"Batch decode complete: {successful}/{len(results)} successful in {total_duration:.1f}s"
        )

        return BatchAnalysisResult(
            total_replays=len(results),
            successful=successful,
            failed=failed,
            total_duration_seconds=total_duration,
            results=results,
        )

    def _record(
        self,
        progress: BatchAnalysisProgress,
        results: list[ReplayAnalysisResult],
        result: ReplayAnalysisResult,
    ) -> None:
        results.append(result)
        progress.completed_tasks += 1
        if not result.success:
            progress.failed_tasks += 1
        if self.progress_callback:
            self.progress_callback(progress)

    def analyze_directory(
        self,
        directory: Path,
        pattern: str = "*.slp",
        recursive: bool = False,
        timeout_per_replay: float = 120.0,
    ) -> BatchAnalysisResult:
        """
        Decode every replay in a directory.

        Args:
            directory: Directory to scan for replays
            pattern: Glob pattern for replay files
            recursive: Whether to scan subdirectories

        Returns:
            BatchAnalysisResult with all results
        """
        glob = directory.rglob if recursive else directory.glob
        replay_paths = sorted(glob(pattern))

        logger.info(f"Found {len(replay_paths)} replay files in {directory}")

        return self.analyze_batch(replay_paths, timeout_per_replay=timeout_per_replay)


def analyze_replays_parallel(
    replay_paths: list[Path],
    workers: int | None = None,
    **kwargs: Any,
) -> BatchAnalysisResult:
    """
    Convenience function to decode multiple replays in parallel.

    Args:
        replay_paths: List of replay file paths
        workers: Number of parallel workers

    Returns:
        BatchAnalysisResult
    """
    analyzer = ParallelReplayAnalyzer(workers=workers, **kwargs)
    return analyzer.analyze_batch(replay_paths)
