"""
Pytest fixtures for timeline export tests.

Most tests build timelines in memory and mock the FFmpeg runner, so they
need no binaries. Tests that really invoke ffmpeg/ffprobe are marked with
@pytest.mark.requires_ffmpeg and skipped when the binaries are missing:

    pytest -m "not requires_ffmpeg"
"""

import shutil
from pathlib import Path
from typing import Any, Optional

import pytest

from timeline_export.render.progress import ProgressTick
from timeline_export.schemas.export import ClipProcessing
from timeline_export.schemas.timeline import Clip, ClipPosition, ExportRequest, MediaAsset


def _ffmpeg_available() -> bool:
    return shutil.which("ffmpeg") is not None and shutil.which("ffprobe") is not None


requires_ffmpeg = pytest.mark.skipif(
    not _ffmpeg_available(),
    reason="ffmpeg/ffprobe not found on PATH",
)


def make_asset(asset_id: str, kind: str = "video", duration: float = 10.0) -> MediaAsset:
    return MediaAsset(id=asset_id, type=kind, path=f"/media/{asset_id}.{_ext(kind)}", duration=duration)


def _ext(kind: str) -> str:
    return {"video": "mp4", "audio": "mp3", "image": "png"}[kind]


def make_clip(
    clip_id: str,
    start: float,
    duration: float,
    asset_id: Optional[str] = None,
    position: Optional[ClipPosition] = None,
    **kwargs: Any,
) -> Clip:
    return Clip(
        id=clip_id,
        asset_id=asset_id or f"asset_{clip_id}",
        start_time=start,
        duration=duration,
        position=position,
        **kwargs,
    )


def make_processed(
    clip_id: str,
    start: float,
    duration: float,
    kind: str = "video",
    track_order: int = 0,
    position: Optional[ClipPosition] = None,
    **kwargs: Any,
) -> ClipProcessing:
    clip = make_clip(clip_id, start, duration, position=position, **kwargs)
    return ClipProcessing(
        clip=clip,
        media=make_asset(clip.asset_id, kind),
        segment_path=Path(f"/scratch/clip_{clip_id}.mp4"),
        track_order=track_order,
    )


@pytest.fixture
def make_request(tmp_path: Path):
    """Factory for ExportRequest payloads in the editor's camelCase shape."""

    def _make(tracks: list[dict], assets: list[dict], **overrides: Any) -> ExportRequest:
        payload = {
            "tracks": tracks,
            "mediaAssets": assets,
            "outputPath": str(tmp_path / "out.mp4"),
            "targetResolution": {"width": 1920, "height": 1080},
            "quality": "medium",
        }
        payload.update(overrides)
        return ExportRequest.model_validate(payload)

    return _make


@pytest.fixture
def single_video_request(make_request) -> ExportRequest:
    """One visible track with two back-to-back video clips."""
    return make_request(
        tracks=[
            {
                "id": "t1",
                "order": 0,
                "clips": [
                    {"id": "c1", "assetId": "a1", "startTime": 0, "duration": 5},
                    {"id": "c2", "assetId": "a1", "startTime": 5, "duration": 5},
                ],
            }
        ],
        assets=[{"id": "a1", "type": "video", "path": "/media/a1.mp4", "duration": 30}],
    )


class FakeRunner:
    """Stands in for EngineRunner: writes placeholder files instead of encoding."""

    def __init__(self, fail_normalize: Optional[Exception] = None, fail_encode: Optional[Exception] = None):
        self.fail_normalize = fail_normalize
        self.fail_encode = fail_encode
        self.normalize_commands: list[list[str]] = []
        self.encode_commands: list[list[str]] = []

    def run(self, cmd: list[str], phase: str) -> None:
        self.normalize_commands.append(cmd)
        if self.fail_normalize is not None:
            raise self.fail_normalize
        Path(cmd[-1]).write_bytes(b"segment")

    async def run_with_progress(self, cmd: list[str], on_tick, phase: str = "encode") -> None:
        self.encode_commands.append(cmd)
        Path(cmd[-1]).write_bytes(b"partial")
        for out_time in (1.0, 0.5, 4.0):  # out of order on purpose
            await on_tick(ProgressTick(elapsed_s=out_time, out_time_s=out_time))
        if self.fail_encode is not None:
            raise self.fail_encode
        await on_tick(ProgressTick(elapsed_s=5.0, out_time_s=5.0, finished=True))


@pytest.fixture
def fake_runner() -> FakeRunner:
    return FakeRunner()
