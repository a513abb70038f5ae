"""
Worker Configuration

Environment-based configuration for the PixelForge worker. Every field can
be overridden with an environment variable of the same name, prefixed with
``PIXELFORGE_`` (for example ``PIXELFORGE_WATERMARK_METHOD=inpaint``).
"""

from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Worker settings loaded from environment variables."""

    # Worker identity
    worker_id: str = "pixelforge-worker-1"

    # Output
    interpolation: str = "bicubic"  # nearest, bilinear, bicubic, lanczos
    scale: float = 1.0
    quality: float = 0.9  # 0-1, lossy formats only
    output_format: str = "png"  # jpeg, png, webp
    output_background: str = "#ffffff"  # Fill behind transparency for JPEG

    # Background removal
    remove_background: bool = False
    background_mode: str = "ai"  # ai, advanced
    color_tolerance: float = 30
    edge_threshold: float = 50
    smoothing: int = 1
    background_color: str = "auto"  # auto or #rrggbb
    segmentation_threshold: float = 0.7
    mask_blur: float = 0
    edge_blur: float = 0
    flip_horizontal: bool = False
    internal_resolution: str = "medium"  # low, medium, high, full
    segmentation_provider: str = "rembg"  # rembg, mediapipe

    # Watermark removal
    remove_watermark: bool = False
    watermark_method: str = "blur"  # blur, inpaint, clone, frequency, ai
    blur_intensity: float = 10
    inpaint_radius: int = 5
    iterations: int = 3
    auto_detect: bool = True
    dilate_mask: bool = False

    # Worker limits
    max_workers: int = 4
    segmentation_timeout: Optional[float] = 30.0  # seconds per segmentation call
    max_output_pixels: int = 100_000_000

    # Metrics
    metrics_port: int = 0  # 0 = no exporter

    log_level: str = "INFO"

    class Config:
        env_prefix = "PIXELFORGE_"
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
