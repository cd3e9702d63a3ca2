"""
Run logging for indexing, retrieval and grading.

AssessmentLogger prefixes every line with the component name, filters by a
verbosity level (config.LOG_LEVEL unless given), and keeps the metrics and
timings recorded during a run.
"""
import time
import logging
from typing import Any, Callable, Dict, Optional
from enum import Enum
from contextlib import contextmanager

import config

logger = logging.getLogger(__name__)


class LogLevel(Enum):
    """Log verbosity levels."""
    MINIMAL = "minimal"      # errors and warnings that need action
    STANDARD = "standard"    # phases, successes, failed stages
    VERBOSE = "verbose"      # per-stage scores, timings, metrics

    @property
    def rank(self) -> int:
        return list(LogLevel).index(self)

    @classmethod
    def from_name(cls, name: Optional[str]) -> "LogLevel":
        """Parse a config value, falling back to STANDARD."""
        for level in cls:
            if level.value == (name or "").strip().lower():
                return level
        return cls.STANDARD


class PerformanceTimer:
    """Wall-clock timer for one operation; warns when it runs past the threshold."""

    def __init__(self, operation: str, warn_threshold_ms: float = 3000):
        self.operation = operation
        self.warn_threshold_ms = warn_threshold_ms
        self._start: Optional[float] = None
        self._end: Optional[float] = None

    def __enter__(self) -> "PerformanceTimer":
        self._start = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self._end = time.perf_counter()
        if self.is_slow:
            logger.warning(
                f"⚠️ {self.operation} took {self.elapsed_ms:.0f}ms "
                f"(limit {self.warn_threshold_ms:.0f}ms)"
            )

    @property
    def elapsed_ms(self) -> float:
        if self._start is None:
            return 0.0
        end = self._end if self._end is not None else time.perf_counter()
        return (end - self._start) * 1000

    @property
    def is_slow(self) -> bool:
        return self.elapsed_ms > self.warn_threshold_ms


class AssessmentLogger:
    """Component-scoped logger for indexing and grading runs."""

    def __init__(self, name: str, level: LogLevel = LogLevel.STANDARD, verbose: bool = False):
        self.name = name
        self.level = LogLevel.VERBOSE if verbose else level
        self.metrics: Dict[str, Any] = {}
        self.timings_ms: Dict[str, float] = {}

    def _emit(self, required: LogLevel, log: Callable[[str], None], message: str):
        if self.level.rank >= required.rank:
            log(f"[{self.name}] {message}")

    def info(self, message: str, level: LogLevel = LogLevel.STANDARD):
        self._emit(level, logger.info, message)

    def debug(self, message: str):
        self._emit(LogLevel.VERBOSE, logger.debug, message)

    def warning(self, message: str, level: LogLevel = LogLevel.MINIMAL):
        self._emit(level, logger.warning, f"⚠️ {message}")

    def error(self, message: str, exc: Optional[Exception] = None):
        """Errors are never filtered."""
        logger.error(f"[{self.name}] ❌ {message}" + (f": {exc}" if exc else ""))

    def phase(self, message: str):
        self._emit(LogLevel.STANDARD, logger.info, f"🔄 {message}")

    def success(self, message: str):
        self._emit(LogLevel.STANDARD, logger.info, f"✅ {message}")

    def metric(self, key: str, value: Any):
        self.metrics[key] = value
        self.debug(f"📊 {key}: {value}")

    @contextmanager
    def timer(self, operation: str, warn_threshold_ms: float = 3000):
        """Time a block; the duration lands in timings_ms."""
        with PerformanceTimer(operation, warn_threshold_ms) as timer:
            yield timer
        self.timings_ms[operation] = timer.elapsed_ms
        self.debug(f"⏱️ {operation}: {timer.elapsed_ms:.0f}ms")

    def retrieval_stats(self, method: str, results_count: int,
                        top_similarity: Optional[float] = None,
                        low_confidence: bool = False):
        """How tutor context was found."""
        msg = f"context via {method}: {results_count} results"
        if top_similarity is not None:
            msg += f", top sim {top_similarity:.2f}"
        if low_confidence:
            self.warning(f"Low-confidence context ({msg})", LogLevel.STANDARD)
        else:
            self.debug(msg)

    def stage_result(self, q_idx: int, stage: str, score: Optional[int],
                     error: Optional[str] = None):
        if error:
            self.warning(f"Q{q_idx} {stage} stage failed: {error}", LogLevel.STANDARD)
        else:
            self.debug(f"Q{q_idx} {stage}: {score}")

    def grade_decision(self, q_idx: int, score: Optional[int], stages: int):
        if score is None:
            self.warning(f"Q{q_idx}: no stage produced a score, left ungraded", LogLevel.STANDARD)
        else:
            self.debug(f"Q{q_idx}: {score} from {stages} stage(s)")


def create_logger(name: str, level: Optional[LogLevel] = None,
                  verbose: bool = False) -> AssessmentLogger:
    """Factory function to create an AssessmentLogger; level defaults to config.LOG_LEVEL."""
    if level is None:
        level = LogLevel.from_name(config.LOG_LEVEL)
    return AssessmentLogger(name, level, verbose)
