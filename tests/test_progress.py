"""Tests for progress parsing, estimation and reporting.

Features:
- FFmpeg -progress block parsing
- Estimator chain fall-through (native -> timemark -> wall clock)
- Phase slices of the overall 0-100 scale
- Monotonic reporting
"""

import pytest

from timeline_export.render.progress import (
    PHASE_BOUNDS,
    ExportPhase,
    NativePercentEstimate,
    ProgressParser,
    ProgressReporter,
    ProgressTick,
    TimemarkEstimate,
    WallClockEstimate,
    default_estimators,
    estimate_encode_percent,
    parse_timemark,
    phase_percent,
)


class FakeClock:
    def __init__(self):
        self.now = 100.0

    def __call__(self) -> float:
        return self.now


class TestParseTimemark:
    def test_parses_hours_minutes_seconds(self):
        assert parse_timemark("01:02:03.50") == pytest.approx(3723.5)

    @pytest.mark.parametrize("value", ["N/A", "12.5", "aa:bb:cc"])
    def test_invalid_returns_none(self, value):
        assert parse_timemark(value) is None


class TestProgressParser:
    """Tests for ProgressParser."""

    def test_one_tick_per_block(self):
        clock = FakeClock()
        parser = ProgressParser(clock=clock)
        clock.now += 3

        assert parser.feed("frame=30") is None
        assert parser.feed("out_time_us=2500000") is None
        tick = parser.feed("progress=continue")

        assert tick is not None
        assert tick.out_time_s == pytest.approx(2.5)
        assert tick.elapsed_s == pytest.approx(3)
        assert tick.finished is False

    def test_end_block_is_finished(self):
        parser = ProgressParser()
        parser.feed("out_time_ms=1000000")
        tick = parser.feed("progress=end")

        assert tick.finished is True
        assert tick.out_time_s == pytest.approx(1.0)

    def test_falls_back_to_out_time(self):
        parser = ProgressParser()
        parser.feed("out_time_us=N/A")
        parser.feed("out_time=00:00:04.000000")
        tick = parser.feed("progress=continue")

        assert tick.out_time_s == pytest.approx(4.0)

    def test_native_percent_is_read(self):
        parser = ProgressParser()
        parser.feed("percent=42.5")
        tick = parser.feed("progress=continue")

        assert tick.percent == 42.5

    def test_blocks_do_not_leak(self):
        parser = ProgressParser()
        parser.feed("out_time_us=1000000")
        parser.feed("progress=continue")
        tick = parser.feed("progress=continue")

        assert tick.out_time_s is None

    def test_ignores_noise(self):
        parser = ProgressParser()
        assert parser.feed("") is None
        assert parser.feed("garbage line") is None

    def test_heartbeat_has_only_elapsed(self):
        clock = FakeClock()
        parser = ProgressParser(clock=clock)
        clock.now += 7

        tick = parser.heartbeat()

        assert tick.elapsed_s == pytest.approx(7)
        assert tick.percent is None and tick.out_time_s is None


class TestEstimators:
    """Tests for the estimator chain."""

    def test_native_percent_preferred(self):
        tick = ProgressTick(elapsed_s=1, percent=60, out_time_s=1)
        assert estimate_encode_percent(tick, default_estimators(10)) == 60

    def test_zero_native_percent_falls_through(self):
        assert NativePercentEstimate().estimate(ProgressTick(elapsed_s=1, percent=0)) is None

    def test_timemark_used_without_native_percent(self):
        tick = ProgressTick(elapsed_s=1, out_time_s=5)
        assert estimate_encode_percent(tick, default_estimators(10)) == pytest.approx(50)

    def test_timemark_unknown_for_zero_duration(self):
        assert TimemarkEstimate(0).estimate(ProgressTick(elapsed_s=1, out_time_s=5)) is None

    def test_wall_clock_used_last_and_capped(self):
        estimators = default_estimators(10, wallclock_factor=2.0, wallclock_cap=95.0)

        assert estimate_encode_percent(ProgressTick(elapsed_s=5), estimators) == pytest.approx(25)
        assert estimate_encode_percent(ProgressTick(elapsed_s=500), estimators) == 95.0

    def test_wall_clock_unknown_without_duration(self):
        assert WallClockEstimate(0).estimate(ProgressTick(elapsed_s=5)) is None

    def test_all_unknown_is_zero(self):
        assert estimate_encode_percent(ProgressTick(elapsed_s=1), [NativePercentEstimate()]) == 0.0

    def test_estimate_clamped(self):
        tick = ProgressTick(elapsed_s=1, out_time_s=12)
        assert estimate_encode_percent(tick, [TimemarkEstimate(10)]) == 100.0


class TestPhasePercent:
    def test_phase_slices_are_contiguous(self):
        order = [
            ExportPhase.NORMALIZING,
            ExportPhase.ANALYZING_STRATEGY,
            ExportPhase.SYNTHESIZING,
            ExportPhase.ENCODING,
            ExportPhase.FINALIZING,
        ]
        for current, following in zip(order, order[1:]):
            assert PHASE_BOUNDS[current][1] == PHASE_BOUNDS[following][0]

    def test_encoding_fraction(self):
        assert phase_percent(ExportPhase.ENCODING, 0.5) == pytest.approx(67.5)

    def test_fraction_clamped(self):
        assert phase_percent(ExportPhase.NORMALIZING, 2) == 35.0
        assert phase_percent(ExportPhase.NORMALIZING, -1) == 5.0

    def test_terminal_phases(self):
        assert ExportPhase.SUCCEEDED.is_terminal
        assert ExportPhase.FAILED.is_terminal
        assert not ExportPhase.ENCODING.is_terminal


class TestProgressReporter:
    """Tests for ProgressReporter."""

    @pytest.mark.asyncio
    async def test_never_decreases(self):
        seen: list[float] = []
        reporter = ProgressReporter(seen.append)

        for value in [10, 30, 20, 30, 50]:
            await reporter.report(value)

        assert seen == [10, 30, 30, 30, 50]

    @pytest.mark.asyncio
    async def test_async_callback_awaited(self):
        seen: list[float] = []

        async def callback(percent):
            seen.append(percent)

        reporter = ProgressReporter(callback)
        await reporter.phase(ExportPhase.ENCODING)
        await reporter.complete()

        assert seen == [40.0, 100.0]

    @pytest.mark.asyncio
    async def test_capped_at_100(self):
        reporter = ProgressReporter()
        assert await reporter.report(140) == 100.0
        assert reporter.last_percent == 100.0
