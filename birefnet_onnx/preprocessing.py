"""
Image loading and preprocessing for BiRefNet.

Images are stretched to the model's fixed input size (no aspect-ratio
preservation), normalized with ImageNet statistics and packed into a
channel-first ``(1, 3, H, W)`` float32 tensor.
"""

from __future__ import annotations

from dataclasses import dataclass
from io import BytesIO
from pathlib import Path
from typing import Tuple, Union

import numpy as np
from PIL import Image

from .config import IMAGENET_MEAN, IMAGENET_STD
from .errors import InvalidImageError

_MEAN = np.array(IMAGENET_MEAN, dtype=np.float32)
_STD = np.array(IMAGENET_STD, dtype=np.float32)

ImageSource = Union[str, Path, bytes]


@dataclass
class PreprocessResult:
    tensor: np.ndarray
    original_image: Image.Image
    orig_size: Tuple[int, int]  # (width, height)
    resized_size: Tuple[int, int]


def load_image(source: ImageSource) -> Image.Image:
    """Decode a file path or raw bytes into an RGB image."""
    try:
        if isinstance(source, (bytes, bytearray)):
            image = Image.open(BytesIO(source))
        else:
            image = Image.open(source)
        image = image.convert("RGB")
    except Exception as exc:  # noqa: BLE001
        raise InvalidImageError(f"Invalid image data: {exc}") from exc

    if image.width <= 0 or image.height <= 0:
        raise InvalidImageError("Image has zero width or height")
    return image


def resize_image(image: Image.Image, size: Tuple[int, int]) -> Image.Image:
    """Bicubic stretch to ``size`` (width, height); returns a new image."""
    if image.size == tuple(size):
        return image.copy()
    return image.resize(size, Image.BICUBIC)


def pack(image: Image.Image, target_w: int, target_h: int) -> PreprocessResult:
    """
    Resize, normalize and pack an image into the model's input layout.

    The tensor holds every R value row-major, then every G, then every B,
    behind a leading batch dimension of 1.
    """
    if target_w <= 0 or target_h <= 0:
        raise ValueError("Target dimensions must be positive")
    orig_w, orig_h = image.size
    if orig_w <= 0 or orig_h <= 0:
        raise InvalidImageError("Image has zero width or height")

    if image.mode != "RGB":
        image = image.convert("RGB")
    resized = resize_image(image, (target_w, target_h))

    im_np = np.asarray(resized).astype("float32") / 255.0
    im_np = (im_np - _MEAN) / _STD
    im_np = np.transpose(im_np, (2, 0, 1))  # HWC -> CHW
    tensor = np.ascontiguousarray(im_np[np.newaxis, ...], dtype=np.float32)

    return PreprocessResult(
        tensor=tensor,
        original_image=image,
        orig_size=(orig_w, orig_h),
        resized_size=(target_w, target_h),
    )


def load_and_pack(source: ImageSource, target_w: int, target_h: int) -> PreprocessResult:
    return pack(load_image(source), target_w, target_h)
