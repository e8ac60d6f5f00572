"""
Model loading utilities for BiRefNet ONNX exports.

The loader:
 - opens an ONNX Runtime session for the model at ``onnx_path``,
 - discovers the input layer name and spatial size from model metadata,
 - keeps a single shared session per process via ``get_model()``.

Pipeline code depends only on the ``SegmentationModel`` protocol so tests
and alternative runtimes can stand in for the ONNX session.
"""

from __future__ import annotations

import logging
from pathlib import Path
from threading import Lock
from typing import List, Optional, Protocol, Tuple, Union

import numpy as np
import onnxruntime as ort

from . import config
from .errors import ModelLoadError, ModelNotFoundError

logger = logging.getLogger(__name__)

CPU_PROVIDERS = ["CPUExecutionProvider"]

_OPTIMIZATION_LEVELS = {
    "disabled": ort.GraphOptimizationLevel.ORT_DISABLE_ALL,
    "basic": ort.GraphOptimizationLevel.ORT_ENABLE_BASIC,
    "extended": ort.GraphOptimizationLevel.ORT_ENABLE_EXTENDED,
    "all": ort.GraphOptimizationLevel.ORT_ENABLE_ALL,
}


class ModelDescriptor(Protocol):
    def input_name(self) -> str:
        ...

    def input_spatial_size(self) -> Tuple[int, int]:
        """Return the expected input size as (width, height)."""
        ...


class SegmentationModel(ModelDescriptor, Protocol):
    def run(self, tensor: np.ndarray) -> np.ndarray:
        ...


def _spatial_size_from_shape(shape) -> Optional[Tuple[int, int]]:
    """Read (W, H) from an NCHW input shape; None when missing or symbolic."""
    try:
        dims = list(shape)
        if len(dims) >= 4:
            height, width = dims[2], dims[3]
            if isinstance(height, int) and isinstance(width, int) and height > 0 and width > 0:
                return width, height
    except TypeError:
        pass
    return None


class OnnxSegmentationModel:
    """
    ONNX Runtime session wrapper for BiRefNet.

    Only CPU execution is supported; any other device is accepted with a
    warning. Use as a context manager (or call ``close()``) to release the
    session.
    """

    def __init__(
        self,
        onnx_path: Union[str, Path],
        device: str = "cpu",
        settings: Optional[config.Settings] = None,
    ):
        settings = settings or config.get_settings()
        self.onnx_path = Path(onnx_path)
        if not self.onnx_path.is_file():
            raise ModelNotFoundError(self.onnx_path)

        self._session = self._build_session(self.onnx_path, device, settings.graph_optimization_level)
        model_input = self._session.get_inputs()[0]
        self._input_name = model_input.name
        self._input_type = getattr(model_input, "type", "tensor(float)")

        size = _spatial_size_from_shape(model_input.shape)
        if size is None:
            fallback = settings.default_input_size
            size = (fallback, fallback)
            logger.info("model input size not declared, using %dx%d", fallback, fallback)
        else:
            logger.info("model input size detected: %dx%d (W x H)", size[0], size[1])
        self._input_w, self._input_h = size

    @staticmethod
    def _build_session(onnx_path: Path, device: str, optimization_level: str) -> ort.InferenceSession:
        if device.strip().lower() != "cpu":
            logger.warning("Only CPU execution is supported in this build; forcing CPU providers.")

        options = ort.SessionOptions()
        options.graph_optimization_level = _OPTIMIZATION_LEVELS.get(
            optimization_level, ort.GraphOptimizationLevel.ORT_ENABLE_EXTENDED
        )
        logger.info("Loading ONNX model from %s", onnx_path)
        try:
            return ort.InferenceSession(str(onnx_path), sess_options=options, providers=CPU_PROVIDERS)
        except Exception as exc:  # onnxruntime raises its own pybind error types
            raise ModelLoadError(onnx_path, str(exc)) from exc

    def input_name(self) -> str:
        return self._input_name

    def input_spatial_size(self) -> Tuple[int, int]:
        return self._input_w, self._input_h

    def providers(self) -> List[str]:
        if self._session is None:
            return []
        return list(self._session.get_providers())

    def run(self, tensor: np.ndarray) -> np.ndarray:
        """Run the model and return its last output as float32."""
        if self._session is None:
            raise RuntimeError("ONNX session has been closed")
        if self._input_type == "tensor(float16)":
            tensor = tensor.astype(np.float16)
        outputs = self._session.run(None, {self._input_name: tensor})
        return np.asarray(outputs[-1], dtype=np.float32)

    def close(self) -> None:
        self._session = None

    def __enter__(self) -> "OnnxSegmentationModel":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


_MODEL: Optional[OnnxSegmentationModel] = None
_LOCK = Lock()


def get_model() -> OnnxSegmentationModel:
    """
    Return a process-wide model loaded from settings.

    The session is created on first access and reused by the library API.
    """
    global _MODEL
    if _MODEL is not None:
        return _MODEL

    with _LOCK:
        if _MODEL is None:
            settings = config.get_settings()
            _MODEL = OnnxSegmentationModel(settings.onnx_path, settings.device, settings=settings)
            logger.info("BiRefNet loaded with providers: %s", ", ".join(_MODEL.providers()))
    return _MODEL


def reset_model() -> None:
    """Drop the shared model so the next ``get_model()`` reloads it."""
    global _MODEL
    with _LOCK:
        if _MODEL is not None:
            _MODEL.close()
        _MODEL = None
