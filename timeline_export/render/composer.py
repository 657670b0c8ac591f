"""Final FFmpeg command construction for both composition strategies."""

from pathlib import Path
from typing import Optional

from timeline_export.config import Settings, get_settings
from timeline_export.render.filter_graph import (
    AUDIO_OUTPUT_LABEL,
    Delay,
    FilterGraph,
    InputRef,
    Mix,
    OverlayGraph,
    Source,
    audio_delay_ms,
    fmt_number,
)
from timeline_export.schemas.export import ClipProcessing
from timeline_export.schemas.timeline import Resolution


# Progress is read from stdout; -nostats keeps stderr for errors only
PROGRESS_ARGS = ["-progress", "pipe:1", "-nostats"]


def canvas_color_value(hex_color: str) -> str:
    """Convert ``#rrggbb`` to FFmpeg's ``0xRRGGBB``."""
    return f"0x{hex_color.lstrip('#').upper()}"


def canvas_source(
    hex_color: str,
    resolution: Resolution,
    fps: int,
) -> str:
    return f"color={canvas_color_value(hex_color)}:s={resolution.width}x{resolution.height}:r={fps}"


def _encoder_args(settings: Settings, crf: int, with_audio: bool) -> list[str]:
    args = [
        "-c:v", "libx264",
        "-preset", settings.export_preset,
        "-crf", str(crf),
        "-pix_fmt", "yuv420p",
    ]
    if with_audio:
        args.extend(["-c:a", settings.export_audio_codec, "-b:a", settings.export_audio_bitrate])
    return args


def build_overlay_command(
    overlay: OverlayGraph,
    resolution: Resolution,
    canvas_color: str,
    total_duration: float,
    crf: int,
    output_path: str,
    settings: Optional[Settings] = None,
) -> list[str]:
    """Build the single FFmpeg invocation for the multi-track overlay graph."""
    settings = settings or get_settings()
    duration = fmt_number(total_duration)

    cmd = [
        settings.ffmpeg_path,
        "-y",
        "-f", "lavfi",
        "-t", duration,
        "-i", canvas_source(canvas_color, resolution, settings.export_fps),
    ]
    for item in overlay.video_inputs + overlay.audio_inputs:
        cmd.extend(["-i", str(item.segment_path)])

    cmd.extend(["-filter_complex", overlay.filter_complex])
    cmd.extend(["-map", f"[{overlay.video_label}]"])
    if overlay.audio_label:
        cmd.extend(["-map", f"[{overlay.audio_label}]"])

    cmd.extend(_encoder_args(settings, crf, with_audio=overlay.audio_label is not None))
    cmd.extend([
        "-t", duration,
        # Tolerate any stream the graph could not account for
        "-ignore_unknown",
        *PROGRESS_ARGS,
        output_path,
    ])
    return cmd


def _escape_concat_path(path: Path) -> str:
    # concat demuxer: single-quoted, forward slashes, ' written as '\''
    return str(path).replace("\\", "/").replace("'", "'\\''")


def write_concat_list(clips: list[ClipProcessing], list_path: Path) -> list[ClipProcessing]:
    """Write the concat demuxer file list in timeline order.

    Returns:
        The clips in the order they were written
    """
    ordered = sorted(clips, key=lambda p: p.clip.start_time)
    lines = [f"file '{_escape_concat_path(p.segment_path)}'" for p in ordered]
    list_path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    return ordered


def build_concat_command(
    list_path: Path,
    audio_clips: list[ClipProcessing],
    audio_flags: dict[str, bool],
    resolution: Resolution,
    crf: int,
    output_path: str,
    settings: Optional[Settings] = None,
) -> list[str]:
    """Build the FFmpeg invocation for linear concatenation.

    The video is scaled to the output resolution, which forces a re-encode
    so the requested CRF applies. Separate audio clips, if any, are delayed
    to their timeline positions and mixed.
    """
    settings = settings or get_settings()
    cmd = [
        settings.ffmpeg_path,
        "-y",
        "-f", "concat",
        "-safe", "0",
        "-i", str(list_path),
    ]

    mixed = [p for p in audio_clips if audio_flags.get(p.clip.id, False)]
    for item in mixed:
        cmd.extend(["-i", str(item.segment_path)])

    cmd.extend(["-vf", f"scale={resolution.width}:{resolution.height}"])

    if mixed:
        graph = FilterGraph()
        delayed: list[Source] = [
            graph.add_chain(
                [InputRef(i + 1, "a")],
                [Delay(audio_delay_ms(item.clip.start_time))],
                output=f"adelayed{i}",
            )
            for i, item in enumerate(mixed)
        ]
        graph.add_chain(delayed, [Mix(len(delayed))], output=AUDIO_OUTPUT_LABEL)
        cmd.extend([
            "-filter_complex", graph.serialize(),
            "-map", "0:v",
            "-map", f"[{AUDIO_OUTPUT_LABEL}]",
        ])

    cmd.extend(_encoder_args(settings, crf, with_audio=True))
    cmd.extend([*PROGRESS_ARGS, output_path])
    return cmd
