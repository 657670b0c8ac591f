"""Progress estimation for export jobs.

A job reports one 0-100 value. Each phase owns a fixed slice of that
scale:

    normalizing           5 -> 35
    strategy + graph     35 -> 40
    encoding             40 -> 95
    finalizing           95 -> 100

During encoding the engine's ``-progress`` stream is turned into ticks, and
each tick is run through a priority-ordered chain of estimators: a native
percent if the engine supplies one, then the elapsed output time against the
known timeline duration, then a wall-clock guess capped below completion.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, Protocol, Union

logger = logging.getLogger(__name__)


class ExportPhase(Enum):
    """Export job lifecycle."""

    CREATED = "created"
    NORMALIZING = "normalizing"
    ANALYZING_STRATEGY = "analyzing_strategy"
    SYNTHESIZING = "synthesizing"
    ENCODING = "encoding"
    FINALIZING = "finalizing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (ExportPhase.SUCCEEDED, ExportPhase.FAILED)


PHASE_BOUNDS: dict[ExportPhase, tuple[float, float]] = {
    ExportPhase.CREATED: (0.0, 5.0),
    ExportPhase.NORMALIZING: (5.0, 35.0),
    ExportPhase.ANALYZING_STRATEGY: (35.0, 37.0),
    ExportPhase.SYNTHESIZING: (37.0, 40.0),
    ExportPhase.ENCODING: (40.0, 95.0),
    ExportPhase.FINALIZING: (95.0, 100.0),
    ExportPhase.SUCCEEDED: (100.0, 100.0),
}


def phase_percent(phase: ExportPhase, fraction: float = 0.0) -> float:
    """Map a fraction of one phase onto the overall 0-100 scale."""
    start, end = PHASE_BOUNDS[phase]
    fraction = min(1.0, max(0.0, fraction))
    return start + (end - start) * fraction


# ============================================================================
# Engine progress stream
# ============================================================================


@dataclass
class ProgressTick:
    """One progress report from the engine."""

    elapsed_s: float
    percent: Optional[float] = None
    out_time_s: Optional[float] = None
    finished: bool = False


def parse_timemark(value: str) -> Optional[float]:
    """Parse an ``HH:MM:SS.fraction`` time marker into seconds."""
    parts = value.strip().split(":")
    if len(parts) != 3:
        return None
    try:
        hours, minutes, seconds = (float(p) for p in parts)
    except ValueError:
        return None
    return hours * 3600 + minutes * 60 + seconds


def _parse_float(value: str) -> Optional[float]:
    try:
        return float(value)
    except ValueError:
        return None  # "N/A" before the first frame


class ProgressParser:
    """Incremental parser for FFmpeg's ``-progress`` key=value output.

    FFmpeg writes a block of ``key=value`` lines terminated by
    ``progress=continue`` (or ``progress=end``). One tick is produced per
    block.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._started = clock()
        self._block: dict[str, str] = {}

    def elapsed(self) -> float:
        return self._clock() - self._started

    def heartbeat(self) -> ProgressTick:
        """A tick carrying only wall-clock time, for silent stretches."""
        return ProgressTick(elapsed_s=self.elapsed())

    def feed(self, line: str) -> Optional[ProgressTick]:
        line = line.strip()
        if not line or "=" not in line:
            return None
        key, _, value = line.partition("=")
        key = key.strip()
        value = value.strip()
        if key != "progress":
            self._block[key] = value
            return None

        block, self._block = self._block, {}
        return ProgressTick(
            elapsed_s=self.elapsed(),
            percent=_parse_float(block["percent"]) if "percent" in block else None,
            out_time_s=self._out_time(block),
            finished=value == "end",
        )

    @staticmethod
    def _out_time(block: dict[str, str]) -> Optional[float]:
        # out_time_ms is in microseconds as well (long-standing FFmpeg quirk)
        for key in ("out_time_us", "out_time_ms"):
            if key in block:
                micros = _parse_float(block[key])
                if micros is not None and micros >= 0:
                    return micros / 1_000_000
        if "out_time" in block:
            return parse_timemark(block["out_time"])
        return None


# ============================================================================
# Estimator chain
# ============================================================================


class EncodeEstimate(Protocol):
    def estimate(self, tick: ProgressTick) -> Optional[float]:
        """Return a percent for the encode phase, or None if unknown."""
        ...


class NativePercentEstimate:
    """Use the engine's own percent when it reports one."""

    def estimate(self, tick: ProgressTick) -> Optional[float]:
        if tick.percent:
            return tick.percent
        return None


class TimemarkEstimate:
    """Elapsed output time divided by the known timeline duration."""

    def __init__(self, total_duration_s: float):
        self.total_duration_s = total_duration_s

    def estimate(self, tick: ProgressTick) -> Optional[float]:
        if not tick.out_time_s or self.total_duration_s <= 0:
            return None
        return tick.out_time_s / self.total_duration_s * 100


class WallClockEstimate:
    """Guess from wall-clock time; capped so it never claims completion."""

    def __init__(self, total_duration_s: float, factor: float = 2.0, cap: float = 95.0):
        self.total_duration_s = total_duration_s
        self.factor = factor
        self.cap = cap

    def estimate(self, tick: ProgressTick) -> Optional[float]:
        expected_s = self.total_duration_s * self.factor
        if expected_s <= 0:
            return None
        return min(self.cap, tick.elapsed_s / expected_s * 100)


def default_estimators(
    total_duration_s: float,
    wallclock_factor: float = 2.0,
    wallclock_cap: float = 95.0,
) -> list[EncodeEstimate]:
    return [
        NativePercentEstimate(),
        TimemarkEstimate(total_duration_s),
        WallClockEstimate(total_duration_s, wallclock_factor, wallclock_cap),
    ]


def estimate_encode_percent(tick: ProgressTick, estimators: list[EncodeEstimate]) -> float:
    """First confident estimate in the chain, clamped to 0-100."""
    for estimator in estimators:
        value = estimator.estimate(tick)
        if value is not None:
            return min(100.0, max(0.0, value))
    return 0.0


# ============================================================================
# Reporting
# ============================================================================


ProgressCallback = Callable[[float], Union[None, Awaitable[None]]]


class ProgressReporter:
    """Forwards overall progress to the caller, never going backwards.

    Repeated equal values are forwarded as-is.
    """

    def __init__(self, callback: Optional[ProgressCallback] = None):
        self._callback = callback
        self.last_percent = 0.0

    async def report(self, percent: float) -> float:
        value = min(100.0, max(self.last_percent, percent))
        self.last_percent = value
        if self._callback is not None:
            result: Any = self._callback(value)
            if asyncio.iscoroutine(result):
                await result
        return value

    async def phase(self, phase: ExportPhase, fraction: float = 0.0) -> float:
        return await self.report(phase_percent(phase, fraction))

    async def complete(self) -> float:
        return await self.report(100.0)
