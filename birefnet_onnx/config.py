"""
Configuration loader for the BiRefNet ONNX segmentation tool.

Environment variables (prefixed with ``BIREFNET_``) are centralized here so
the command line, the batch driver and the library API share one set of
defaults. Command-line flags override whatever is loaded here.
"""

from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# ImageNet statistics used by BiRefNet during training.
IMAGENET_MEAN = (0.485, 0.456, 0.406)
IMAGENET_STD = (0.229, 0.224, 0.225)

OPTIMIZATION_LEVELS = ("disabled", "basic", "extended", "all")


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="BIREFNET_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Model + runtime
    onnx_path: Path = Field(default=Path("../models/onnx/model_fp16.onnx"))
    device: str = Field(default="cpu")
    default_input_size: int = Field(default=512)
    graph_optimization_level: str = Field(default="extended")

    # Batch driver
    input_dir: Path = Field(default=Path("./"))
    output_dir: Path = Field(default=Path("../output"))
    keep_tree: bool = Field(default=False)
    threshold: float = Field(default=0.1)
    workers: int = Field(default=1)
    file_timeout_seconds: Optional[float] = Field(default=None)

    # Library API
    mask_smooth_sigma: float = Field(default=2.0)

    log_level: str = Field(default="INFO")

    @field_validator("threshold")
    @classmethod
    def validate_threshold(cls, v: float) -> float:
        if not 0.0 < v <= 1.0:
            raise ValueError("threshold must be in range (0, 1]")
        return v

    @field_validator("device")
    @classmethod
    def normalize_device(cls, v: str) -> str:
        return v.strip().lower()

    @field_validator("graph_optimization_level")
    @classmethod
    def validate_optimization_level(cls, v: str) -> str:
        v = v.strip().lower()
        if v not in OPTIMIZATION_LEVELS:
            raise ValueError("graph_optimization_level must be one of disabled|basic|extended|all")
        return v

    @field_validator("workers")
    @classmethod
    def validate_workers(cls, v: int) -> int:
        if v < 1:
            raise ValueError("workers must be >= 1")
        return v

    @field_validator("file_timeout_seconds")
    @classmethod
    def validate_file_timeout(cls, v: Optional[float]) -> Optional[float]:
        if v is not None and not v > 0:
            raise ValueError("file_timeout_seconds must be positive")
        return v

    @field_validator("default_input_size")
    @classmethod
    def validate_input_size(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("default_input_size must be positive")
        return v


@lru_cache()
def get_settings() -> Settings:
    """Return cached settings to avoid reparsing env on every call."""
    return Settings()

