from __future__ import annotations

from collections.abc import Callable, Generator
from pathlib import Path
from typing import Any

import numpy as np
import pytest
from PIL import Image

from birefnet_onnx.config import get_settings
from birefnet_onnx.model_loader import reset_model


class FakeModel:
    """In-memory stand-in for the ONNX session (SegmentationModel protocol)."""

    def __init__(
        self: FakeModel,
        output: np.ndarray | Callable[[np.ndarray], np.ndarray] | None = None,
        input_size: tuple[int, int] = (64, 48),
    ) -> None:
        self.output = output if output is not None else np.zeros((1, 1, 2, 2), dtype=np.float32)
        self.size = input_size
        self.calls: list[tuple[int, ...]] = []
        self.closed = False

    def input_name(self: FakeModel) -> str:
        return "input_image"

    def input_spatial_size(self: FakeModel) -> tuple[int, int]:
        return self.size

    def run(self: FakeModel, tensor: np.ndarray) -> np.ndarray:
        self.calls.append(tensor.shape)
        if callable(self.output):
            return self.output(tensor)
        return self.output

    def providers(self: FakeModel) -> list[str]:
        return ["CPUExecutionProvider"]

    def __enter__(self: FakeModel) -> FakeModel:
        return self

    def __exit__(self: FakeModel, *exc: Any) -> None:
        self.closed = True


@pytest.fixture(autouse=True)
def clean_settings(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    """Isolate tests from BIREFNET_* env vars and cached settings/models."""
    import os

    for key in list(os.environ):
        if key.upper().startswith("BIREFNET_"):
            monkeypatch.delenv(key, raising=False)
    get_settings.cache_clear()
    reset_model()
    yield
    get_settings.cache_clear()
    reset_model()


@pytest.fixture
def fake_model() -> FakeModel:
    return FakeModel()


@pytest.fixture
def make_image(tmp_path: Path) -> Callable[..., Path]:
    """Write a solid-colour image under tmp_path and return its path."""

    def _make(
        relative: str = "image.png",
        size: tuple[int, int] = (100, 100),
        color: tuple[int, int, int] = (0, 0, 0),
    ) -> Path:
        path = tmp_path / relative
        path.parent.mkdir(parents=True, exist_ok=True)
        Image.new("RGB", size, color=color).save(path)
        return path

    return _make


@pytest.fixture
def fake_onnx_file(tmp_path: Path) -> Path:
    path = tmp_path / "model.onnx"
    path.write_bytes(b"not-a-real-model")
    return path
