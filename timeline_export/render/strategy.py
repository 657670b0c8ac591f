"""Composition strategy selection.

Linear concatenation is one cheap re-encode of the segments played back to
back. It is only correct when no two picture clips are ever on screen at
the same time, none is positioned on the canvas, and there is no separate
audio to lay under the picture. Anything else needs the overlay graph.
"""

from enum import Enum

from timeline_export.schemas.export import ClipProcessing


class CompositionStrategy(Enum):
    CONCAT = "simple_concat"
    OVERLAY = "multi_track_overlay"


def intervals_overlap(start1: float, duration1: float, start2: float, duration2: float) -> bool:
    """Whether ``[start1, start1+duration1)`` and ``[start2, start2+duration2)`` intersect."""
    return start1 < start2 + duration2 and start2 < start1 + duration1


def detect_overlaps(clips: list[ClipProcessing]) -> bool:
    """True if any two clips overlap in time, regardless of track."""
    for i in range(len(clips)):
        a = clips[i].clip
        for j in range(i + 1, len(clips)):
            b = clips[j].clip
            if intervals_overlap(a.start_time, a.duration, b.start_time, b.duration):
                return True
    return False


def split_by_kind(
    processed: list[ClipProcessing],
) -> tuple[list[ClipProcessing], list[ClipProcessing]]:
    """Split into (video and image clips, audio-only clips)."""
    video = [p for p in processed if p.is_video_like]
    audio = [p for p in processed if not p.is_video_like]
    return video, audio


def timeline_duration(processed: list[ClipProcessing]) -> float:
    """Timeline length: the latest clip end time."""
    return max((p.clip.end_time for p in processed), default=0.0)


def choose_strategy(
    video_clips: list[ClipProcessing],
    audio_clips: list[ClipProcessing],
) -> CompositionStrategy:
    if detect_overlaps(video_clips):
        return CompositionStrategy.OVERLAY
    if any(p.clip.position is not None for p in video_clips):
        return CompositionStrategy.OVERLAY
    if audio_clips:
        return CompositionStrategy.OVERLAY
    return CompositionStrategy.CONCAT
