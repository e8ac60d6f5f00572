"""Error kinds raised by the segmentation pipeline and the batch driver."""

from __future__ import annotations

from typing import Sequence


class BiRefNetError(Exception):
    pass


class ModelNotFoundError(BiRefNetError, FileNotFoundError):
    def __init__(self, path) -> None:
        self.path = path
        super().__init__(f"ONNX model not found: {path}")


class InputDirNotFoundError(BiRefNetError, FileNotFoundError):
    def __init__(self, path) -> None:
        self.path = path
        super().__init__(f"input_dir not found: {path}")


class InvalidImageError(BiRefNetError, ValueError):
    """Image could not be decoded or has zero width/height."""


class UnsupportedOutputShapeError(BiRefNetError):
    def __init__(self, shape: Sequence[int]) -> None:
        self.shape = tuple(shape)
        dims = ",".join(str(d) for d in self.shape)
        super().__init__(f"Unexpected output shape: [{dims}]")


class CompositeSaveError(BiRefNetError):
    def __init__(self, path, message: str) -> None:
        self.path = path
        self.message = message
        super().__init__(f"failed to save masked image {path}: {message}")


class ProcessingTimeoutError(BiRefNetError):
    def __init__(self, stage: str) -> None:
        self.stage = stage
        super().__init__(f"deadline exceeded before {stage}")


class ModelLoadError(BiRefNetError):
    def __init__(self, path, message: str) -> None:
        self.path = path
        self.message = message
        super().__init__(f"failed to load ONNX model {path}: {message}")
