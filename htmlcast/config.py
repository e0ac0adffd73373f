"""
Central configuration for the render service.
Uses environment variables with sensible defaults.
"""

import sys
import tempfile
from pathlib import Path
from typing import Optional

from loguru import logger
from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Listener
    host: str = Field(default="0.0.0.0", alias="HOST")
    port: int = Field(default=3000, alias="PORT")

    # Directories (root for every request-scoped temp asset)
    temp_dir: Path = Field(default=Path(tempfile.gettempdir()) / "htmlcast", alias="TEMP_DIR")

    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    # Encoder
    ffmpeg_binary: str = Field(default="ffmpeg", alias="FFMPEG_BINARY")
    video_quality: str = Field(default="balanced", alias="VIDEO_QUALITY")
    output_chunk_size: int = Field(default=64 * 1024, alias="OUTPUT_CHUNK_SIZE")

    # Frames buffered between capture and encoder before writes block
    bridge_capacity: int = Field(default=8, alias="BRIDGE_CAPACITY")

    # Renderer
    render_timeout_ms: int = Field(default=30_000, alias="RENDER_TIMEOUT_MS")
    chromium_args: list[str] = Field(
        default=[
            "--no-sandbox",
            "--disable-setuid-sandbox",
            "--disable-dev-shm-usage",
        ],
        alias="CHROMIUM_ARGS",
    )

    # Overlay viewport for /composite (full-page capture may exceed it)
    overlay_width: int = Field(default=1920, alias="OVERLAY_WIDTH")
    overlay_height: int = Field(default=1920, alias="OVERLAY_HEIGHT")

    # Request limits
    max_dimension: int = Field(default=4096, alias="MAX_DIMENSION")
    max_fps: int = Field(default=60, alias="MAX_FPS")
    max_duration_seconds: float = Field(default=120.0, alias="MAX_DURATION_SECONDS")
    max_upload_bytes: int = Field(default=500 * 1024 * 1024, alias="MAX_UPLOAD_BYTES")

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "populate_by_name": True,
    }


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get settings, initializing if needed."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def setup_logging(level: str = "INFO"):
    """Route loguru output to a single stderr sink at the given level."""
    logger.remove()
    logger.add(
        sys.stderr,
        level=level.upper(),
        format="<green>{time:HH:mm:ss}</green> | <level>{level: <7}</level> | <level>{message}</level>",
    )
