"""Environment-based configuration for LesionScan."""

from __future__ import annotations

import tempfile
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _default_crop_dir() -> str:
    return str(Path(tempfile.gettempdir()) / "lesionscan")


class Settings(BaseSettings):
    """Application settings loaded from LESIONSCAN_* environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="LESIONSCAN_",
        case_sensitive=False,
        protected_namespaces=(),
    )

    # Server
    host: str = "0.0.0.0"  # noqa: S104
    port: int = 8083

    # Authentication (None = disabled)
    api_key: str | None = None

    # ML device
    device: Literal["cpu", "cuda"] = "cpu"

    # Model selection
    model_name: str = "skin_cancer_binary"
    models_dir: str = "models"
    model_repo_id: str | None = None

    # Classification
    input_side_length: int | None = Field(default=None, ge=1)
    malignant_threshold: float = Field(default=0.3, ge=0.0, le=1.0)

    # Cropping (display units)
    minimum_crop_size: float = Field(default=60.0, gt=0)
    target_box_size: float = Field(default=220.0, gt=0)
    jpeg_quality: int = Field(default=95, ge=1, le=100)
    crop_output_dir: str = Field(default_factory=_default_crop_dir)

    # ONNX Runtime threading
    intra_op_threads: int = Field(default=0, ge=0)
    inter_op_threads: int = Field(default=1, ge=1)

    # Concurrency: the shared session serves one inference at a time
    max_concurrent: int = Field(default=1, ge=1)

    # Input limits
    max_image_pixels: int = Field(default=16_777_216, ge=1)
    max_file_size: int = Field(default=209_715_200, ge=1)


def get_settings() -> Settings:
    """Create and return application settings."""
    return Settings()
