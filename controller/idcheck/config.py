"""Central configuration for the liveness controller service."""
from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Literal, Optional

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

ROOT_DIR = Path(__file__).resolve().parents[2]
DEFAULT_ENV_FILE = ROOT_DIR / ".env"


# ============================================================
# Nested Configuration Classes
# ============================================================

class CameraSettings(BaseModel):
    """Front-facing capture device configuration."""
    camera_id: int = Field(0, description="OpenCV device index (/dev/video<N>)")
    ideal_width: int = Field(1280, description="Preferred capture width (pixels)")
    ideal_height: int = Field(720, description="Preferred capture height (pixels)")
    facing_mode: Literal["user", "environment"] = Field("user", description="Requested camera orientation")
    jpeg_quality: int = Field(92, ge=1, le=100, description="JPEG quality for captured stills")


class LivenessSettings(BaseModel):
    """Liveness step timing (milliseconds)."""
    baseline_step_ms: int = Field(3000, ge=0, description="Hold duration for neutral and turn-right steps")
    blink_step_ms: int = Field(2000, ge=0, description="Window for the blink step")


class PerformanceSettings(BaseModel):
    """Queue tuning."""
    ui_event_queue_size: int = Field(16, ge=1, description="Max buffered status events per UI client")


class Settings(BaseSettings):
    """Environment-driven settings for controller subsystems."""

    # Controller HTTP Server
    controller_host: str = Field("0.0.0.0", description="Host interface for local FastAPI server")
    controller_port: int = Field(5000, description="Port for FastAPI server")

    # Judgment oracle (Generative Language API)
    oracle_api_url: str = Field(
        "https://generativelanguage.googleapis.com/v1beta",
        description="Base URL of the generative judgment service",
    )
    oracle_api_key: str = Field("", description="API key sent with every oracle request")
    oracle_model: str = Field("gemini-2.5-flash", description="Model used for photo and liveness judgments")
    oracle_timeout_seconds: float = Field(30.0, gt=0, description="Per-request timeout for oracle calls")

    # Logging
    log_level: str = Field("INFO", description="Logging level")
    log_directory: Path = Field(ROOT_DIR / "logs", description="Log directory path")
    log_retention_days: int = Field(14, description="Number of log files to retain")

    # Nested Configuration Objects
    camera: CameraSettings = Field(default_factory=CameraSettings, description="Camera settings")
    liveness: LivenessSettings = Field(default_factory=LivenessSettings, description="Liveness step timing")
    performance: PerformanceSettings = Field(default_factory=PerformanceSettings, description="Performance tuning")

    @field_validator("log_level", mode="before")
    @classmethod
    def _normalise_log_level(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip().upper() or "INFO"
        return value

    @field_validator("oracle_api_url")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")

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
