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
        protected_namespaces=(),
        env_parse_none_str="none",
    )

    # Server
    host: str = "0.0.0.0"  # noqa: S104
    port: int = 8083
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"

    # Authentication (None = disabled)
    api_key: str | None = None

    # ML execution provider (explicit, no auto-detection)
    device: Literal["cpu", "cuda", "openvino", "directml"] = "cpu"
    openvino_device_type: Literal["CPU", "GPU", "NPU"] = "CPU"

    # Model selection
    classification_model: str = "mobilenetv2_10"
    models_dir: str = "models"
    # HuggingFace repo holding the ONNX files (None = local files only)
    model_repo_id: str | None = None

    # Labels (None = built-in table)
    labels_file: str | None = None
    num_classes: int | None = Field(default=1000, ge=1)

    # Network input and output
    input_width: int = Field(default=224, ge=1)
    input_height: int = Field(default=224, ge=1)
    top_k: int = Field(default=5, ge=1)

    # ONNX Runtime threading
    intra_op_threads: int = Field(default=0, ge=0)
    inter_op_threads: int = Field(default=1, ge=1)

    # Concurrency
    max_concurrent: int = Field(default=2, ge=1)

    # Input limits
    max_image_pixels: int = Field(default=16_777_216, ge=1)
    max_file_size: int = Field(default=209_715_200, ge=1)

    # Model management
    model_ttl: int = Field(default=300, ge=0)
    gpu_mem_limit: int = Field(default=2_147_483_648, ge=0)


def get_settings() -> Settings:
    """Create and return application settings."""
    return Settings()
