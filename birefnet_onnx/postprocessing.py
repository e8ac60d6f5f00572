"""Post-processing for BiRefNet logits: activation, resampling and byte masks."""

from __future__ import annotations

import logging
from typing import Tuple

import cv2
import numpy as np

from .errors import UnsupportedOutputShapeError

logger = logging.getLogger(__name__)


def extract_first_channel(output: np.ndarray) -> Tuple[np.ndarray, int, int]:
    """
    Pull the first channel of the first batch item out of a model output.

    Accepts ``(N, C, H, W)``, ``(1, H, W)`` and ``(H, W)`` layouts and always
    returns a fresh float32 ``(H, W)`` array plus its width and height, read
    from the tensor shape.
    """
    output = np.asarray(output)
    if output.ndim == 4:
        height, width = output.shape[2], output.shape[3]
        plane = output[0, 0]
    elif output.ndim == 3:
        height, width = output.shape[1], output.shape[2]
        plane = output[0]
    elif output.ndim == 2:
        height, width = output.shape
        plane = output
    else:
        raise UnsupportedOutputShapeError(output.shape)
    return np.array(plane, dtype=np.float32), int(width), int(height)


def sigmoid_inplace(buf: np.ndarray) -> np.ndarray:
    """Replace every element ``x`` with ``1 / (1 + exp(-x))``."""
    with np.errstate(over="ignore", under="ignore"):
        np.negative(buf, out=buf)
        np.exp(buf, out=buf)
        buf += 1.0
        np.reciprocal(buf, out=buf)
    return buf


def clamp01_inplace(buf: np.ndarray) -> np.ndarray:
    np.clip(buf, 0.0, 1.0, out=buf)
    return buf


def to_bytes(buf: np.ndarray) -> np.ndarray:
    """Map probabilities in [0, 1] to uint8 with add-0.5-then-truncate rounding."""
    scaled = np.floor(np.asarray(buf, dtype=np.float32) * 255.0 + 0.5)
    return np.clip(scaled, 0, 255).astype(np.uint8)


def threshold_to_byte(threshold: float) -> int:
    """
    Convert a (0, 1] threshold into the 8-bit value masks are compared to.

    Never returns 0, so even a tiny threshold keeps fully transparent
    pixels in the background.
    """
    if not 0.0 < threshold <= 1.0:
        raise ValueError(f"threshold must be in range (0, 1], got {threshold}")
    return min(max(int(threshold * 255.0 + 0.5), 1), 255)


def resize(src: np.ndarray, src_w: int, src_h: int, dst_w: int, dst_h: int) -> np.ndarray:
    """
    Bilinear resize of a float grid from ``src_w x src_h`` to ``dst_w x dst_h``.

    Source coordinates are ``i * src_w / dst_w`` (no half-pixel offset) and
    neighbours are clamped to the last row/column. Same-size calls return
    ``src`` itself.
    """
    if src_w == dst_w and src_h == dst_h:
        return src
    if dst_w <= 0 or dst_h <= 0:
        raise ValueError("Target dimensions must be positive")

    grid = np.asarray(src, dtype=np.float32).reshape(src_h, src_w)

    sx = np.arange(dst_w, dtype=np.float64) * (src_w / dst_w)
    sy = np.arange(dst_h, dtype=np.float64) * (src_h / dst_h)
    x0 = np.clip(np.floor(sx).astype(np.int64), 0, src_w - 1)
    y0 = np.clip(np.floor(sy).astype(np.int64), 0, src_h - 1)
    x1 = np.minimum(x0 + 1, src_w - 1)
    y1 = np.minimum(y0 + 1, src_h - 1)
    wx = (sx - x0).astype(np.float32)[np.newaxis, :]
    wy = (sy - y0).astype(np.float32)[:, np.newaxis]

    top = grid[y0][:, x0] * (1.0 - wx) + grid[y0][:, x1] * wx
    bottom = grid[y1][:, x0] * (1.0 - wx) + grid[y1][:, x1] * wx
    return (top * (1.0 - wy) + bottom * wy).astype(np.float32)


def postprocess_output(
    output: np.ndarray,
    output_width: int,
    output_height: int,
    target_width: int,
    target_height: int,
) -> np.ndarray:
    """
    Turn raw logits of known size into a uint8 mask at the target size.

    The probability map is resized in the float domain before quantization
    to keep edge detail.
    """
    if output_width <= 0 or output_height <= 0:
        raise ValueError("Output dimensions must be positive")
    if target_width <= 0 or target_height <= 0:
        raise ValueError("Target dimensions must be positive")
    prob = np.array(output, dtype=np.float32)
    if prob.size != output_width * output_height:
        raise ValueError(
            f"Output array length ({prob.size}) does not match expected dimensions "
            f"({output_width}x{output_height}={output_width * output_height})"
        )
    prob = prob.reshape(output_height, output_width)

    sigmoid_inplace(prob)
    clamp01_inplace(prob)
    prob = resize(prob, output_width, output_height, target_width, target_height)
    logger.debug(
        "postprocess: %dx%d -> %dx%d mean prob=%.4f",
        output_width,
        output_height,
        target_width,
        target_height,
        float(prob.mean()) if prob.size else 0.0,
    )
    return to_bytes(prob)


def smooth_mask(mask: np.ndarray, sigma: float = 2.0) -> np.ndarray:
    """Gaussian-blur a uint8 mask; returns a new array."""
    mask = np.ascontiguousarray(mask, dtype=np.uint8)
    if sigma <= 0:
        return mask.copy()
    return cv2.GaussianBlur(mask, (0, 0), sigmaX=sigma, sigmaY=sigma)


def apply_threshold(mask: np.ndarray, threshold: int = 128) -> np.ndarray:
    """Binary mask: 255 where ``mask >= threshold``, else 0."""
    return np.where(np.asarray(mask) >= threshold, 255, 0).astype(np.uint8)
