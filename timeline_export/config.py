import json
from functools import lru_cache
from typing import Literal

from pydantic import computed_field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Application
    app_name: str = "Timeline Export API"
    app_version: str = "0.1.0"
    environment: Literal["development", "staging", "production"] = "development"
    debug: bool = True
    log_level: str = "INFO"

    # CORS - stored as string, parsed via computed property
    cors_origins_raw: str = "http://localhost:5173,http://localhost:3000"

    @computed_field
    @property
    def cors_origins(self) -> list[str]:
        """Parse CORS origins from comma-separated string or JSON array."""
        v = self.cors_origins_raw
        if v.startswith("["):
            try:
                return json.loads(v)
            except json.JSONDecodeError:
                pass
        return [origin.strip() for origin in v.split(",") if origin.strip()]

    # FFmpeg
    ffmpeg_path: str = "ffmpeg"
    ffprobe_path: str = "ffprobe"

    # Export settings
    export_fps: int = 30
    export_default_width: int = 1920
    export_default_height: int = 1080
    export_preset: str = "medium"
    export_audio_codec: str = "aac"
    export_audio_bitrate: str = "192k"

    # Quality tiers (x264 CRF, lower = higher quality)
    export_crf_high: int = 18
    export_crf_medium: int = 20
    export_crf_low: int = 23
    # Image segments are intermediates, re-encoded again by the final pass
    export_image_crf: int = 23

    # Clip normalization worker pool. 0 = one worker per CPU core.
    export_normalize_workers: int = 0

    # Scratch directory naming (job id is appended)
    export_scratch_prefix: str = "timeline-export-"

    # Wall-clock progress fallback: assume encoding takes duration * factor
    export_wallclock_factor: float = 2.0
    export_wallclock_cap: float = 95.0

    # Number of engine stderr lines kept for error messages
    export_stderr_tail_lines: int = 40

    # Finished job records kept for polling; older ones are dropped first
    export_registry_max_settled: int = 100

    def crf_for_quality(self, quality: str) -> int:
        """Map a quality tier to its CRF value (unknown tiers use medium)."""
        tiers = {
            "high": self.export_crf_high,
            "medium": self.export_crf_medium,
            "low": self.export_crf_low,
        }
        return tiers.get(quality, self.export_crf_medium)


@lru_cache
def get_settings() -> Settings:
    return Settings()
