"""Invocation of the external transcoding engine."""

import asyncio
import logging
import subprocess
from collections import deque
from typing import Any, Awaitable, Callable, Optional, Union

from timeline_export.config import get_settings
from timeline_export.exceptions import EncodeError, SpawnError
from timeline_export.render.progress import ProgressParser, ProgressTick

logger = logging.getLogger(__name__)

TickCallback = Callable[[ProgressTick], Union[None, Awaitable[None]]]


class EngineRunner:
    """Runs FFmpeg commands and turns failures into export errors."""

    # Emit a wall-clock-only tick when the engine has been silent this long
    HEARTBEAT_INTERVAL_S = 1.0

    def __init__(self, stderr_tail_lines: Optional[int] = None):
        if stderr_tail_lines is None:
            stderr_tail_lines = get_settings().export_stderr_tail_lines
        self.stderr_tail_lines = stderr_tail_lines

    def _tail(self, text: str) -> str:
        lines = text.splitlines()
        return "\n".join(lines[-self.stderr_tail_lines:])

    def run(self, cmd: list[str], phase: str) -> None:
        """Run a command to completion (blocking).

        Raises:
            SpawnError: If the binary cannot be executed
            EncodeError: If the process exits non-zero
        """
        logger.info(f"[ENGINE] {phase}: {' '.join(cmd)}")
        try:
            result = subprocess.run(cmd, capture_output=True, text=True)
        except (FileNotFoundError, PermissionError) as e:
            raise SpawnError(cmd[0], str(e)) from e

        if result.returncode != 0:
            tail = self._tail(result.stderr or "")
            logger.error(f"[ENGINE] {phase} failed (exit {result.returncode}): {tail}")
            raise EncodeError(phase, result.returncode, tail)

    async def run_with_progress(
        self,
        cmd: list[str],
        on_tick: TickCallback,
        phase: str = "encode",
    ) -> None:
        """Run a command that writes ``-progress pipe:1`` output.

        stdout is parsed into progress ticks while stderr is drained
        concurrently (keeping only a tail for error reporting).
        """
        logger.info(f"[ENGINE] {phase}: {' '.join(cmd)}")
        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except (FileNotFoundError, PermissionError) as e:
            raise SpawnError(cmd[0], str(e)) from e

        stderr_tail: deque[str] = deque(maxlen=self.stderr_tail_lines)

        async def drain_stderr() -> None:
            assert proc.stderr is not None
            async for raw_line in proc.stderr:
                stderr_tail.append(raw_line.decode("utf-8", errors="replace").rstrip())

        stderr_task = asyncio.create_task(drain_stderr())
        parser = ProgressParser()
        try:
            await self._read_progress(proc, parser, on_tick)
            await stderr_task
            await proc.wait()
        except BaseException:
            if proc.returncode is None:
                proc.kill()
                await proc.wait()
            stderr_task.cancel()
            raise

        if proc.returncode != 0:
            tail = "\n".join(stderr_tail)
            logger.error(f"[ENGINE] {phase} failed (exit {proc.returncode}): {tail}")
            raise EncodeError(phase, proc.returncode, tail)

    async def _read_progress(
        self,
        proc: asyncio.subprocess.Process,
        parser: ProgressParser,
        on_tick: TickCallback,
    ) -> None:
        assert proc.stdout is not None
        while True:
            try:
                raw_line = await asyncio.wait_for(
                    proc.stdout.readline(), timeout=self.HEARTBEAT_INTERVAL_S
                )
            except asyncio.TimeoutError:
                await _call(on_tick, parser.heartbeat())
                continue
            if not raw_line:
                break
            tick = parser.feed(raw_line.decode("utf-8", errors="replace"))
            if tick is not None:
                await _call(on_tick, tick)


async def _call(callback: TickCallback, tick: ProgressTick) -> None:
    result: Any = callback(tick)
    if asyncio.iscoroutine(result):
        await result
