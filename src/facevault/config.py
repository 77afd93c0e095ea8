"""Environment-based configuration for FaceVault."""

from __future__ import annotations

from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from FACEVAULT_* environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="FACEVAULT_",
        case_sensitive=False,
    )

    # Server
    host: str = "0.0.0.0"  # noqa: S104
    port: int = 3000

    # ML device
    device: Literal["cpu", "cuda", "openvino"] = "cpu"

    # Model selection
    recognition_model: str = "auraface_v1"
    recognition_model_path: str | None = None
    accept_insightface_license: bool = False
    models_dir: str = "models"

    # ONNX Runtime threading
    intra_op_threads: int = Field(default=0, ge=0)
    inter_op_threads: int = Field(default=1, ge=1)
    gpu_mem_limit: int = Field(default=2_147_483_648, ge=0)

    # Concurrency
    max_concurrent: int = Field(default=2, ge=1)
    queue_timeout: float = Field(default=5.0, gt=0)

    # Input limits
    max_image_pixels: int = Field(default=16_777_216, ge=1)
    max_file_size: int = Field(default=20_971_520, ge=1)
    max_enroll_images: int = Field(default=5, ge=1)

    # Profile storage
    profiles_dir: str = "data"

    # Augmentation: centered square crops, as a fraction of the shorter side
    crop_ratios: list[float] = Field(default_factory=lambda: [0.92, 0.85])

    # Match decision
    distance_threshold: float = Field(default=0.95, ge=0)
    cosine_threshold: float = Field(default=0.62)
    required_variant_matches: int = Field(default=1, ge=1)

    @field_validator("crop_ratios")
    @classmethod
    def _check_crop_ratios(cls, value: list[float]) -> list[float]:
        for ratio in value:
            if not 0 < ratio <= 1:
                raise ValueError(f"crop ratio must be in (0, 1], got {ratio}")
        return value


def get_settings() -> Settings:
    """Create and return application settings."""
    return Settings()
