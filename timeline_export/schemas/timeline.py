import re
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from timeline_export.config import get_settings

MediaKind = Literal["video", "audio", "image"]
Quality = Literal["low", "medium", "high"]

DEFAULT_CANVAS_COLOR = "#000000"
_HEX_COLOR_RE = re.compile(r"^#[0-9A-Fa-f]{6}$")


class TimelineModel(BaseModel):
    """Base for timeline input models.

    The editor sends camelCase keys; snake_case is accepted as well.
    Input snapshots are read-only once received.
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
        extra="ignore",
    )


# =============================================================================
# Media library
# =============================================================================


class MediaAsset(TimelineModel):
    id: str
    kind: MediaKind = Field(alias="type")
    path: str
    duration: float = Field(default=0, ge=0)  # 0 for images
    width: int = 0
    height: int = 0
    file_size: int = 0
    name: str = ""


# =============================================================================
# Timeline
# =============================================================================


class ClipPosition(TimelineModel):
    """Overlay placement; spatial fields are fractions of the output canvas."""

    x: float = Field(default=0, ge=0, le=1)
    y: float = Field(default=0, ge=0, le=1)
    width: float = Field(default=1, ge=0, le=1)
    height: float = Field(default=1, ge=0, le=1)
    rotation: float = 0  # degrees
    z_index: int = 0


class Clip(TimelineModel):
    id: str
    asset_id: str
    track_id: str = ""
    start_time: float = Field(ge=0)  # timeline seconds
    duration: float = Field(gt=0)

    # Trimming (source-relative seconds)
    trim_start: float = Field(default=0, ge=0)
    trim_end: float = Field(default=0, ge=0)

    # Effects
    speed: float = Field(default=1.0, gt=0)
    volume: float = Field(default=1.0, ge=0)
    fade_in: float = Field(default=0, ge=0)
    fade_out: float = Field(default=0, ge=0)

    # None = full canvas
    position: ClipPosition | None = None

    @property
    def end_time(self) -> float:
        return self.start_time + self.duration


class Track(TimelineModel):
    id: str
    order: int  # lower order renders on top
    clips: list[Clip] = Field(default_factory=list)
    visible: bool = True
    locked: bool = False
    name: str = ""


class Resolution(TimelineModel):
    width: int = Field(gt=0)
    height: int = Field(gt=0)


def _default_resolution() -> Resolution:
    settings = get_settings()
    return Resolution(width=settings.export_default_width, height=settings.export_default_height)


class ExportRequest(TimelineModel):
    """Job input contract for one export."""

    tracks: list[Track]
    media_assets: list[MediaAsset]
    output_path: str
    target_resolution: Resolution = Field(default_factory=_default_resolution)
    quality: Quality = "medium"
    canvas_background_color: str = DEFAULT_CANVAS_COLOR

    @field_validator("canvas_background_color", mode="before")
    @classmethod
    def _valid_color_or_black(cls, v: object) -> str:
        if isinstance(v, str) and _HEX_COLOR_RE.match(v):
            return v
        return DEFAULT_CANVAS_COLOR

    def asset_map(self) -> dict[str, MediaAsset]:
        return {asset.id: asset for asset in self.media_assets}
