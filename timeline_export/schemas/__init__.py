from timeline_export.schemas.export import (
    ClipProcessing,
    ExportJobResponse,
    ExportResult,
    ProgressEvent,
)
from timeline_export.schemas.timeline import (
    Clip,
    ClipPosition,
    ExportRequest,
    MediaAsset,
    Resolution,
    Track,
)

__all__ = [
    "Clip",
    "ClipPosition",
    "ClipProcessing",
    "ExportJobResponse",
    "ExportRequest",
    "ExportResult",
    "MediaAsset",
    "ProgressEvent",
    "Resolution",
    "Track",
]
