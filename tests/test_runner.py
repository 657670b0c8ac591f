"""Tests for the engine runner.

A small Python child process stands in for FFmpeg so the subprocess
plumbing (progress pipe, stderr tail, exit codes) runs for real.
"""

import sys

import pytest

from timeline_export.exceptions import EncodeError, SpawnError
from timeline_export.render.runner import EngineRunner


def _script(source: str) -> list[str]:
    return [sys.executable, "-c", source]


PROGRESS_SCRIPT = """
import sys
for us in (1000000, 2000000):
    print(f"frame=1\\nout_time_us={us}\\nprogress=continue", flush=True)
print("out_time_us=3000000\\nprogress=end", flush=True)
print("encoder noise", file=sys.stderr)
"""

FAILING_SCRIPT = """
import sys
for i in range(10):
    print(f"line {i}", file=sys.stderr)
print("Conversion failed!", file=sys.stderr)
sys.exit(3)
"""


class TestRun:
    """Tests for the blocking run() used by normalization."""

    def test_success(self):
        EngineRunner(stderr_tail_lines=5).run(_script("pass"), phase="normalize")

    def test_nonzero_exit_raises_with_tail(self):
        runner = EngineRunner(stderr_tail_lines=3)

        with pytest.raises(EncodeError) as exc_info:
            runner.run(_script(FAILING_SCRIPT), phase="normalize")

        error = exc_info.value
        assert error.returncode == 3
        assert error.phase == "normalize"
        assert error.stderr_tail.splitlines() == ["line 8", "line 9", "Conversion failed!"]
        assert error.message == "FFmpeg normalize failed with exit code 3: Conversion failed!"

    def test_missing_binary_raises_spawn_error(self, tmp_path):
        missing = str(tmp_path / "no-ffmpeg")

        with pytest.raises(SpawnError) as exc_info:
            EngineRunner(stderr_tail_lines=5).run([missing, "-version"], phase="normalize")

        assert exc_info.value.binary == missing


class TestRunWithProgress:
    """Tests for the streaming run_with_progress() used by encoding."""

    @pytest.mark.asyncio
    async def test_ticks_from_progress_blocks(self):
        ticks = []

        await EngineRunner(stderr_tail_lines=5).run_with_progress(
            _script(PROGRESS_SCRIPT), ticks.append
        )

        timed = [t for t in ticks if t.out_time_s is not None]
        assert [t.out_time_s for t in timed] == [1.0, 2.0, 3.0]
        assert timed[-1].finished is True

    @pytest.mark.asyncio
    async def test_async_tick_callback(self):
        ticks = []

        async def on_tick(tick):
            ticks.append(tick)

        await EngineRunner(stderr_tail_lines=5).run_with_progress(
            _script(PROGRESS_SCRIPT), on_tick
        )

        assert any(t.finished for t in ticks)

    @pytest.mark.asyncio
    async def test_failure_raises_encode_error(self):
        with pytest.raises(EncodeError) as exc_info:
            await EngineRunner(stderr_tail_lines=2).run_with_progress(
                _script(FAILING_SCRIPT), lambda tick: None
            )

        assert exc_info.value.phase == "encode"
        assert exc_info.value.stderr_tail == "line 9\nConversion failed!"

    @pytest.mark.asyncio
    async def test_missing_binary(self, tmp_path):
        with pytest.raises(SpawnError):
            await EngineRunner(stderr_tail_lines=2).run_with_progress(
                [str(tmp_path / "no-ffmpeg")], lambda tick: None
            )

    @pytest.mark.asyncio
    async def test_silent_engine_gets_heartbeats(self, monkeypatch):
        monkeypatch.setattr(EngineRunner, "HEARTBEAT_INTERVAL_S", 0.05)
        ticks = []

        await EngineRunner(stderr_tail_lines=2).run_with_progress(
            _script("import time; time.sleep(0.3)"), ticks.append
        )

        assert ticks
        assert all(t.out_time_s is None for t in ticks)
        assert ticks[-1].elapsed_s > 0
