"""Environment-based configuration for ClassifyX."""

from __future__ import annotations

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from CLASSIFYX_* environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="CLASSIFYX_",
        case_sensitive=False,
    )

    # Server
    host: str = "0.0.0.0"  # noqa: S104
    port: int = 8083

    # Authentication (None = disabled)
    api_key: str | None = None

    # ML device
    device: Literal["cpu", "cuda", "openvino"] = "cpu"

    # ONNX Runtime threading
    intra_op_threads: int = Field(default=0, ge=0)
    inter_op_threads: int = Field(default=1, ge=1)
    gpu_mem_limit: int = Field(default=2_147_483_648, ge=0)

    # Concurrency
    max_concurrent: int = Field(default=2, ge=1)
    queue_timeout: float = Field(default=5.0, gt=0)

    # Input limits
    max_image_pixels: int = Field(default=16_777_216, ge=1)

    # Classification
    input_size: int = Field(default=224, ge=1)
    top_k: int = Field(default=5, ge=1, le=5)
    default_num_classes: int = Field(default=1000, ge=1)
    apply_softmax: bool = True


def get_settings() -> Settings:
    """Create and return application settings."""
    return Settings()
