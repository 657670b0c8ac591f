from dataclasses import dataclass
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field

from timeline_export.schemas.timeline import Clip, MediaAsset


@dataclass
class ClipProcessing:
    """A clip after normalization into a scratch-directory segment."""

    clip: Clip
    media: MediaAsset
    segment_path: Path
    track_order: int

    @property
    def is_video_like(self) -> bool:
        return self.media.kind in ("video", "image")


class ProgressEvent(BaseModel):
    percent: float = Field(ge=0, le=100)


class ExportResult(BaseModel):
    success: bool = True
    output_path: str
    duration_s: float | None = None


ExportStatus = Literal["queued", "processing", "completed", "failed"]


class ExportJobResponse(BaseModel):
    """Status record for an export job, as exposed by the service."""

    id: str
    status: ExportStatus
    phase: str
    percent: float = 0.0
    output_path: str
    error_code: str | None = None
    error_message: str | None = None
