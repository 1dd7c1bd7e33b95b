"""Configuration for the capture service.

Uses Pydantic Settings for environment variable and .env file support.
"""

from pathlib import Path
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class CaptureSettings(BaseSettings):
    """Capture tool and device settings."""

    model_config = SettingsConfigDict(
        env_prefix="CAMERA_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    save_dir: Path = Field(
        default=Path(__file__).resolve().parents[1] / "photos",
        description="Directory photos and videos are written to (created on first use)"
    )
    windows_device_name: str = Field(
        default="HD Pro Webcam C920",
        description="DirectShow device name; Windows has no enumeration"
    )

    # Finite captures
    photo_timeout_ms: int = Field(
        default=10_000,
        gt=0,
        description="Default timeout for a single-frame capture"
    )
    photo_warmup_seconds: float = Field(
        default=1.0,
        ge=0,
        description="imagesnap warm-up delay before grabbing the frame"
    )
    video_duration_ms: int = Field(
        default=10_000,
        gt=0,
        description="Fixed video duration"
    )
    video_timeout_grace_ms: int = Field(
        default=15_000,
        ge=0,
        description="Added to the video duration to derive its timeout"
    )
    enumeration_timeout_ms: int = Field(
        default=5_000,
        gt=0,
        description="Timeout for device listing tools"
    )

    # Streaming
    stream_chunk_size: int = Field(
        default=64 * 1024,
        gt=0,
        description="Maximum bytes per relayed stream chunk"
    )
    stream_stop_timeout_seconds: float = Field(
        default=5.0,
        gt=0,
        description="How long to wait for a killed stream process to exit"
    )

    stderr_excerpt_chars: int = Field(
        default=2_000,
        gt=0,
        description="Tail of tool stderr kept in ExecutionFailed errors"
    )

    # Tool locations
    ffmpeg_path: str = "ffmpeg"
    imagesnap_path: str = "imagesnap"
    v4l2_ctl_path: str = "v4l2-ctl"

    def ensure_save_dir(self) -> Path:
        self.save_dir.mkdir(parents=True, exist_ok=True)
        return self.save_dir


class ServerSettings(BaseSettings):
    """HTTP server settings."""

    model_config = SettingsConfigDict(
        env_prefix="CAMERA_SERVER_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    host: str = Field(
        default="0.0.0.0",
        description="Host to bind to"
    )
    port: int = Field(
        default=3000,
        description="Port to listen on"
    )
    log_level: str = Field(
        default="INFO",
        description="Logging level"
    )


class Settings(BaseSettings):
    """Root settings.

    Example environment variables:
        CAMERA_SAVE_DIR=/var/lib/camera/photos
        CAMERA_WINDOWS_DEVICE_NAME="Integrated Camera"
        CAMERA_SERVER_PORT=3000
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    capture: CaptureSettings = Field(default_factory=CaptureSettings)
    server: ServerSettings = Field(default_factory=ServerSettings)


# Global settings instance (lazy loaded)
_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get or create the global settings instance."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings
