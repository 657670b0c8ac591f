"""Media file information utilities using FFprobe."""

import json
import logging
import subprocess
import warnings

from timeline_export.config import get_settings
from timeline_export.exceptions import ProbeDegradation

logger = logging.getLogger(__name__)


def _run_ffprobe(file_path: str, *args) -> dict:
    """Run ffprobe and return parsed JSON."""
    settings = get_settings()
    cmd = [
        settings.ffprobe_path,
        "-v", "quiet",
        "-print_format", "json",
        *args,
        file_path,
    ]

    try:
        result = subprocess.run(cmd, capture_output=True, text=True, errors="replace")
    except OSError as e:
        raise RuntimeError(f"ffprobe could not be started: {e}") from e
    except UnicodeDecodeError as e:
        raise RuntimeError(f"ffprobe output is not decodable: {e}") from e
    if result.returncode != 0:
        raise RuntimeError(f"ffprobe failed: {result.stderr}")

    try:
        data = json.loads(result.stdout)
    except json.JSONDecodeError as e:
        raise RuntimeError(f"Failed to parse ffprobe output: {e}") from e
    if not isinstance(data, dict):
        raise RuntimeError(f"Unexpected ffprobe output: {result.stdout[:200]}")
    return data


def get_media_duration(file_path: str) -> float:
    """
    Get media file duration in seconds.

    Raises:
        RuntimeError: If ffprobe fails or duration not found
    """
    data = _run_ffprobe(file_path, "-show_format")
    format_info = data.get("format", {})

    if "duration" not in format_info:
        raise RuntimeError(f"Duration not found in: {file_path}")

    return float(format_info["duration"])


def has_audio_stream(file_path: str) -> bool:
    """
    Check if a media file carries at least one audio stream.

    Probe failures are not fatal: the file is reported as silent and a
    ProbeDegradation warning is emitted, so one unreadable segment never
    blocks an export.

    Args:
        file_path: Path to media file

    Returns:
        True if an audio stream exists, False otherwise
    """
    try:
        data = _run_ffprobe(file_path, "-show_streams", "-select_streams", "a")
    except RuntimeError as e:
        message = f"Audio probe failed for {file_path}, treating as silent: {e}"
        logger.warning(f"[PROBE] {message}")
        warnings.warn(message, ProbeDegradation, stacklevel=2)
        return False

    streams = data.get("streams") or []
    return any(stream.get("codec_type", "audio") == "audio" for stream in streams)


def probe_audio_streams(file_paths: list[str]) -> list[bool]:
    """Probe several files; results are in input order."""
    flags = [has_audio_stream(path) for path in file_paths]
    logger.info(f"[PROBE] Audio streams: {sum(flags)}/{len(flags)} segments")
    return flags
