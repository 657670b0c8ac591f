"""Clip normalization into self-contained intermediate segments.

Every timeline clip is re-encoded on its own into the job's scratch
directory before composition:

- video: constant frame rate + yuv420p, speed via setpts
- image: looped for the clip duration, even dimensions, no audio
- audio: tempo via chained atempo stages, gain via volume
- fades: linear fade in/out in frame units at the normalized frame rate
"""

import asyncio
import logging
import math
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Awaitable, Callable, Optional

from timeline_export.config import get_settings
from timeline_export.render.filter_graph import fmt_number
from timeline_export.render.runner import EngineRunner
from timeline_export.render.scratch import ScratchDirectory
from timeline_export.schemas.export import ClipProcessing
from timeline_export.schemas.timeline import Clip, MediaAsset

logger = logging.getLogger(__name__)

# atempo accepts factors in this range per stage
ATEMPO_MIN = 0.5
ATEMPO_MAX = 2.0


def atempo_chain(speed: float) -> list[float]:
    """Decompose a playback speed into atempo stage factors.

    Each factor lies in [0.5, 2.0] and their product equals ``speed``.
    A speed of 1 needs no stage.

    >>> atempo_chain(3)
    [2.0, 1.5]
    """
    if speed <= 0:
        raise ValueError(f"Speed must be positive, got {speed}")

    stages: list[float] = []
    remaining = float(speed)
    while remaining > ATEMPO_MAX:
        stages.append(ATEMPO_MAX)
        remaining /= ATEMPO_MAX
    while remaining < ATEMPO_MIN:
        stages.append(ATEMPO_MIN)
        remaining /= ATEMPO_MIN
    if not math.isclose(remaining, 1.0, rel_tol=1e-9):
        stages.append(round(remaining, 9))
    return stages


@dataclass
class NormalizeTask:
    """One clip waiting to be normalized."""

    clip: Clip
    media: MediaAsset
    track_order: int


class ClipNormalizer:
    """Builds and runs the per-clip FFmpeg normalization commands."""

    def __init__(
        self,
        runner: Optional[EngineRunner] = None,
        fps: Optional[int] = None,
        image_crf: Optional[int] = None,
        preset: Optional[str] = None,
    ):
        settings = get_settings()
        self.runner = runner or EngineRunner()
        self.ffmpeg_path = settings.ffmpeg_path
        self.fps = fps or settings.export_fps
        self.image_crf = image_crf if image_crf is not None else settings.export_image_crf
        self.preset = preset or settings.export_preset
        self.audio_codec = settings.export_audio_codec

    def _frames(self, seconds: float) -> int:
        return math.floor(seconds * self.fps)

    def build_video_filters(self, clip: Clip, media: MediaAsset) -> list[str]:
        """Video filter chain (empty for audio-only media)."""
        filters: list[str] = []
        if media.kind == "video":
            filters.append(f"fps={self.fps}")
            filters.append("format=yuv420p")
            if clip.speed != 1:
                # Full float precision; a rounded factor drifts on long clips
                filters.append(f"setpts={1 / clip.speed!r}*PTS")
        elif media.kind == "image":
            # 4:2:0 chroma subsampling needs even dimensions
            filters.append("scale=trunc(iw/2)*2:trunc(ih/2)*2")
            filters.append("format=yuv420p")
        else:
            return filters

        if clip.fade_in > 0:
            filters.append(f"fade=in:0:{self._frames(clip.fade_in)}")
        if clip.fade_out > 0:
            fade_out_start = max(0, self._frames(clip.duration - clip.fade_out))
            filters.append(f"fade=out:{fade_out_start}:{self._frames(clip.fade_out)}")
        return filters

    def build_audio_filters(self, clip: Clip, media: MediaAsset) -> list[str]:
        """Audio filter chain (always empty for images)."""
        if media.kind == "image":
            return []
        filters = [f"atempo={fmt_number(f)}" for f in atempo_chain(clip.speed)]
        if clip.volume != 1:
            filters.append(f"volume={fmt_number(clip.volume)}")
        return filters

    @staticmethod
    def segment_name(clip: Clip) -> str:
        return f"clip_{clip.id}.mp4"

    def build_command(self, clip: Clip, media: MediaAsset, segment_path: Path) -> list[str]:
        """Build the FFmpeg command that writes one clip's segment."""
        cmd = [self.ffmpeg_path, "-y"]

        if media.kind == "image":
            cmd.extend([
                "-loop", "1",
                "-framerate", str(self.fps),
                "-t", fmt_number(clip.duration),
                "-i", media.path,
            ])
        else:
            cmd.extend([
                "-ss", fmt_number(clip.trim_start),
                "-i", media.path,
                "-t", fmt_number(clip.duration),
            ])

        video_filters = self.build_video_filters(clip, media)
        if video_filters:
            cmd.extend(["-vf", ",".join(video_filters)])

        audio_filters = self.build_audio_filters(clip, media)
        if audio_filters:
            cmd.extend(["-af", ",".join(audio_filters)])

        if media.kind == "image":
            cmd.extend([
                "-c:v", "libx264",
                "-preset", self.preset,
                "-crf", str(self.image_crf),
                "-an",
            ])
        elif media.kind == "video":
            cmd.extend(["-c:v", "libx264", "-c:a", self.audio_codec])
        else:
            cmd.extend(["-vn", "-c:a", self.audio_codec])

        cmd.extend(["-f", "mp4", str(segment_path)])
        return cmd

    def normalize(
        self,
        clip: Clip,
        media: MediaAsset,
        track_order: int,
        scratch: ScratchDirectory,
    ) -> ClipProcessing:
        """Write one clip's segment (blocking).

        Raises:
            SpawnError: FFmpeg binary missing
            EncodeError: FFmpeg exited non-zero
        """
        segment_path = scratch.path(self.segment_name(clip))
        logger.info(
            f"[NORMALIZE] clip={clip.id} kind={media.kind} trim_start={clip.trim_start} "
            f"duration={clip.duration} speed={clip.speed}"
        )
        self.runner.run(self.build_command(clip, media, segment_path), phase="normalize")
        return ClipProcessing(
            clip=clip,
            media=media,
            segment_path=segment_path,
            track_order=track_order,
        )

    async def normalize_all(
        self,
        tasks: list[NormalizeTask],
        scratch: ScratchDirectory,
        on_done: Optional[Callable[[int, int], Awaitable[None]]] = None,
        workers: Optional[int] = None,
    ) -> list[ClipProcessing]:
        """Normalize every task on a bounded pool of worker threads.

        Results are returned in task order. The first failure cancels the
        tasks that have not started, waits for the running ones and is
        re-raised.

        Args:
            tasks: Clips to normalize
            scratch: Job scratch directory receiving the segments
            on_done: Awaited with (completed, total) after each clip
            workers: Pool size (default: settings, then CPU count)
        """
        if workers is None or workers <= 0:
            workers = get_settings().export_normalize_workers or os.cpu_count() or 1
        semaphore = asyncio.Semaphore(workers)
        aborted = asyncio.Event()
        total = len(tasks)
        logger.info(f"[NORMALIZE] {total} clips on {workers} workers")

        async def run_one(task: NormalizeTask) -> Optional[ClipProcessing]:
            async with semaphore:
                if aborted.is_set():
                    return None
                return await asyncio.to_thread(
                    self.normalize, task.clip, task.media, task.track_order, scratch
                )

        pending = [asyncio.create_task(run_one(task)) for task in tasks]
        completed = 0
        try:
            for next_done in asyncio.as_completed(pending):
                await next_done
                completed += 1
                if on_done is not None:
                    await on_done(completed, total)
        except BaseException:
            # Worker threads cannot be interrupted; let them finish before
            # the caller removes the scratch directory.
            aborted.set()
            await asyncio.gather(*pending, return_exceptions=True)
            raise

        return [task.result() for task in pending]
