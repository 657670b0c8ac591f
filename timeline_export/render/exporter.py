"""
Timeline export orchestration.

This module sequences one export job:
1. Create the job's scratch directory
2. Normalize every clip into a segment (bounded worker pool)
3. Probe the segments for audio streams
4. Choose concatenation or the multi-track overlay graph
5. Build the final FFmpeg command
6. Encode, forwarding engine progress
7. Finalize: report 100% and remove the scratch directory

Any failure removes the scratch directory and the partially written
output file, then re-raises a single error to the caller.
"""

import asyncio
import logging
import os
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Optional
from uuid import uuid4

from timeline_export.config import Settings, get_settings
from timeline_export.exceptions import NoRenderableClipsError
from timeline_export.render.composer import (
    build_concat_command,
    build_overlay_command,
    write_concat_list,
)
from timeline_export.render.filter_graph import build_overlay_graph
from timeline_export.render.normalizer import ClipNormalizer, NormalizeTask
from timeline_export.render.progress import (
    ExportPhase,
    ProgressCallback,
    ProgressReporter,
    ProgressTick,
    default_estimators,
    estimate_encode_percent,
    phase_percent,
)
from timeline_export.render.runner import EngineRunner
from timeline_export.render.scratch import ScratchDirectory
from timeline_export.render.strategy import (
    CompositionStrategy,
    choose_strategy,
    split_by_kind,
    timeline_duration,
)
from timeline_export.schemas.export import ClipProcessing, ExportResult
from timeline_export.schemas.timeline import ExportRequest
from timeline_export.utils import media_info

logger = logging.getLogger(__name__)

RENDERABLE_KINDS = ("video", "audio", "image")

PhaseListener = Callable[[ExportPhase], None]


def collect_clips(request: ExportRequest) -> list[NormalizeTask]:
    """Resolve every renderable clip on the timeline.

    Clips on hidden tracks and clips whose asset is unknown are skipped.

    Raises:
        NoRenderableClipsError: If nothing on the timeline can be rendered
    """
    assets = request.asset_map()
    tasks: list[NormalizeTask] = []
    for track in request.tracks:
        if not track.visible:
            logger.info(f"[EXPORT] Track {track.id} is hidden, skipping {len(track.clips)} clips")
            continue
        for clip in track.clips:
            media = assets.get(clip.asset_id)
            if media is None or media.kind not in RENDERABLE_KINDS:
                logger.info(f"[EXPORT] Clip {clip.id} has no renderable asset ({clip.asset_id}), skipping")
                continue
            tasks.append(NormalizeTask(clip=clip, media=media, track_order=track.order))

    if not tasks:
        raise NoRenderableClipsError()
    return tasks


@dataclass
class ExportJob:
    """State of one export; lives only as long as the export call."""

    id: str
    request: ExportRequest
    reporter: ProgressReporter
    phase: ExportPhase = ExportPhase.CREATED
    strategy: Optional[CompositionStrategy] = None
    started_at: float = field(default_factory=time.monotonic)
    _listener: Optional[PhaseListener] = None

    def enter(self, phase: ExportPhase) -> None:
        logger.info(f"[EXPORT] job={self.id} {self.phase.value} -> {phase.value}")
        self.phase = phase
        if self._listener is not None:
            self._listener(phase)


class TimelineExporter:
    """Renders an ExportRequest into one output file via FFmpeg."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        runner: Optional[EngineRunner] = None,
        normalizer: Optional[ClipNormalizer] = None,
        probe: Optional[Callable[[str], bool]] = None,
    ):
        self.settings = settings or get_settings()
        self.runner = runner or EngineRunner(self.settings.export_stderr_tail_lines)
        self.normalizer = normalizer or ClipNormalizer(runner=self.runner)
        self.probe = probe or media_info.has_audio_stream

    async def export(
        self,
        request: ExportRequest,
        progress_callback: Optional[ProgressCallback] = None,
        job_id: Optional[str] = None,
        on_phase: Optional[PhaseListener] = None,
    ) -> ExportResult:
        """
        Execute a full export.

        Args:
            request: Timeline snapshot and output settings
            progress_callback: Receives overall percent (0-100), non-decreasing
            job_id: Optional id used in the scratch directory name
            on_phase: Optional listener for lifecycle transitions

        Returns:
            ExportResult on success

        Raises:
            ValidationError: Nothing renderable on the timeline
            SpawnError: FFmpeg could not be started
            EncodeError: FFmpeg failed during normalization or encoding
        """
        job = ExportJob(
            id=job_id or uuid4().hex[:12],
            request=request,
            reporter=ProgressReporter(progress_callback),
            _listener=on_phase,
        )
        scratch = ScratchDirectory(job.id, prefix=self.settings.export_scratch_prefix)
        output_path = Path(request.output_path)

        try:
            tasks = collect_clips(request)
            scratch.create()
            result = await self._run(job, tasks, scratch)
        except BaseException as e:
            failed_in = job.phase
            job.enter(ExportPhase.FAILED)
            logger.error(f"[EXPORT] job={job.id} failed during {failed_in.value}: {e}")
            if failed_in in (ExportPhase.ENCODING, ExportPhase.FINALIZING):
                self._remove_partial_output(output_path)
            raise
        finally:
            scratch.cleanup()

        job.enter(ExportPhase.SUCCEEDED)
        return result

    async def _run(
        self,
        job: ExportJob,
        tasks: list[NormalizeTask],
        scratch: ScratchDirectory,
    ) -> ExportResult:
        request = job.request
        reporter = job.reporter

        # Normalize
        job.enter(ExportPhase.NORMALIZING)
        await reporter.phase(ExportPhase.NORMALIZING)

        async def on_clip_done(done: int, total: int) -> None:
            await reporter.phase(ExportPhase.NORMALIZING, done / total)

        processed = await self.normalizer.normalize_all(
            tasks,
            scratch,
            on_done=on_clip_done,
            workers=self.settings.export_normalize_workers or None,
        )

        # Probe + strategy
        job.enter(ExportPhase.ANALYZING_STRATEGY)
        await reporter.phase(ExportPhase.ANALYZING_STRATEGY)
        audio_flags = await self._probe_audio(processed)
        video_clips, audio_clips = split_by_kind(processed)
        job.strategy = choose_strategy(video_clips, audio_clips)
        total_duration = timeline_duration(processed)
        logger.info(
            f"[EXPORT] job={job.id} strategy={job.strategy.value} "
            f"video={len(video_clips)} audio={len(audio_clips)} duration={total_duration:.3f}s"
        )

        # Synthesize
        job.enter(ExportPhase.SYNTHESIZING)
        await reporter.phase(ExportPhase.SYNTHESIZING)
        crf = self.settings.crf_for_quality(request.quality)
        if job.strategy is CompositionStrategy.OVERLAY:
            overlay = build_overlay_graph(
                video_clips, audio_clips, audio_flags, request.target_resolution
            )
            logger.info(f"[GRAPH] filter_complex:\n{overlay.filter_complex}")
            cmd = build_overlay_command(
                overlay,
                request.target_resolution,
                request.canvas_background_color,
                total_duration,
                crf,
                request.output_path,
                self.settings,
            )
        else:
            list_path = scratch.path("concat_list.txt")
            write_concat_list(video_clips, list_path)
            cmd = build_concat_command(
                list_path,
                audio_clips,
                audio_flags,
                request.target_resolution,
                crf,
                request.output_path,
                self.settings,
            )

        # Encode
        job.enter(ExportPhase.ENCODING)
        await reporter.phase(ExportPhase.ENCODING)
        estimators = default_estimators(
            total_duration,
            self.settings.export_wallclock_factor,
            self.settings.export_wallclock_cap,
        )

        async def on_tick(tick: ProgressTick) -> None:
            percent = estimate_encode_percent(tick, estimators)
            await reporter.report(phase_percent(ExportPhase.ENCODING, percent / 100))

        await self.runner.run_with_progress(cmd, on_tick, phase="encode")

        # Finalize
        job.enter(ExportPhase.FINALIZING)
        await reporter.phase(ExportPhase.FINALIZING)
        duration_s = await self._output_duration(request.output_path)
        await reporter.complete()

        elapsed = time.monotonic() - job.started_at
        logger.info(f"[EXPORT] job={job.id} completed in {elapsed:.1f}s -> {request.output_path}")
        return ExportResult(success=True, output_path=request.output_path, duration_s=duration_s)

    async def _probe_audio(self, processed: list[ClipProcessing]) -> dict[str, bool]:
        flags = await asyncio.gather(
            *(asyncio.to_thread(self.probe, str(p.segment_path)) for p in processed)
        )
        return {p.clip.id: flag for p, flag in zip(processed, flags)}

    async def _output_duration(self, output_path: str) -> Optional[float]:
        try:
            return await asyncio.to_thread(media_info.get_media_duration, output_path)
        except RuntimeError as e:
            logger.warning(f"[EXPORT] Could not read output duration: {e}")
            return None

    @staticmethod
    def _remove_partial_output(output_path: Path) -> None:
        try:
            if output_path.exists():
                os.remove(output_path)
                logger.info(f"[EXPORT] Removed partial output {output_path}")
        except OSError as e:
            logger.warning(f"[EXPORT] Could not remove partial output {output_path}: {e}")
