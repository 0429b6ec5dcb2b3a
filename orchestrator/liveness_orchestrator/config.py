"""Central configuration for the liveness orchestrator service."""
from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

ROOT_DIR = Path(__file__).resolve().parents[2]
DEFAULT_ENV_FILE = ROOT_DIR / ".env"


# ============================================================
# Nested Configuration Classes
# ============================================================

class CaptureSettings(BaseModel):
    """Camera capture configuration."""
    camera_id: int = Field(0, description="OpenCV device index for the user-facing camera")
    resolution_width: int = Field(640, description="Camera stream width (pixels)")
    resolution_height: int = Field(480, description="Camera stream height (pixels)")
    fps: int = Field(30, description="Requested hardware capture frame rate")
    frame_jpeg_quality: int = Field(60, ge=1, le=100, description="JPEG quality for streamed challenge frames")
    reference_jpeg_quality: int = Field(80, ge=1, le=100, description="JPEG quality for the reference image")
    ready_timeout_seconds: float = Field(10.0, gt=0, description="Max wait for the camera to deliver a first frame")
    warmup_seconds: float = Field(0.5, ge=0, description="Stabilization delay before the reference image is taken")
    mirror_preview: bool = Field(True, description="Flip the preview horizontally (selfie view)")


class SchedulerSettings(BaseModel):
    """Frame submission and status polling cadence."""
    min_submit_interval_seconds: float = Field(0.05, ge=0, description="Minimum time between frame submissions")
    tick_interval_seconds: float = Field(0.016, gt=0, description="How often the capture loop checks for work")
    max_consecutive_frame_errors: int = Field(10, ge=1, description="Consecutive failed submissions before giving up")
    status_poll_interval_seconds: float = Field(0.0, ge=0, description="Status poll period (0 disables polling)")
    max_attempt_seconds: float = Field(120.0, gt=0, description="Upper bound for one challenge sequence")


class EnrollmentSettings(BaseModel):
    """Post-liveness face match / enroll configuration."""
    display_name_prefix: str = Field("User", description="Prefix for generated display names")
    source_tag: str = Field("web_liveness", description="Metadata source tag sent on enrollment")
    completion_delay_seconds: float = Field(1.0, ge=0, description="Pause between liveness pass and face search")


class PerformanceSettings(BaseModel):
    """Queue and stream tuning."""
    ui_event_queue_size: int = Field(8, ge=1, description="Max buffered UI events per subscriber")
    preview_queue_size: int = Field(2, ge=1, description="Max buffered preview JPEG frames")
    preview_fps_limit: float = Field(0.033, gt=0, description="Minimum time between preview frames (seconds)")
    heartbeat_interval_seconds: float = Field(30.0, gt=0, description="Heartbeat period for UI subscribers")


class Settings(BaseSettings):
    """Environment-driven settings for orchestrator subsystems."""

    # Verification service
    backend_api_url: str = Field(..., description="Verification service base URL (e.g. https://verify.example.com)")
    faces_api_key: str = Field("", description="API key sent as X-API-Key on face search/enroll calls")
    request_timeout_seconds: float = Field(15.0, gt=0, description="Per-request HTTP timeout")

    # Controller HTTP Server
    controller_host: str = Field("0.0.0.0", description="Host interface for local FastAPI server")
    controller_port: int = Field(5000, description="Port for FastAPI server")

    # Logging
    log_level: str = Field("INFO", description="Logging level")
    log_directory: Path = Field(ROOT_DIR / "logs", description="Log directory path")
    log_retention_days: int = Field(14, description="Number of log files to retain")

    # Nested Configuration Objects
    capture: CaptureSettings = Field(default_factory=CaptureSettings, description="Camera capture settings")
    scheduler: SchedulerSettings = Field(default_factory=SchedulerSettings, description="Capture/poll cadence")
    enrollment: EnrollmentSettings = Field(default_factory=EnrollmentSettings, description="Face match/enroll step")
    performance: PerformanceSettings = Field(default_factory=PerformanceSettings, description="Performance tuning")

    @field_validator("backend_api_url")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("BACKEND_API_URL must not be empty")
        return value.rstrip("/")

    @field_validator("log_level", mode="before")
    @classmethod
    def _normalize_log_level(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip().upper()
        return value

    model_config = SettingsConfigDict(
        env_file=str(DEFAULT_ENV_FILE),
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )


@lru_cache()
def get_settings(override_env_file: Optional[Path] = None) -> Settings:
    """Cached Settings instance; accepts optional env override for tests."""

    if override_env_file:
        return Settings(_env_file=str(override_env_file))
    return Settings()
