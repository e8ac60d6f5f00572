"""
Mask rendering and compositing.

Two composite paths exist and are kept apart on purpose:
 - ``apply_mask``: hard cutout, background pixels replaced with opaque white;
 - ``apply_mask_alpha``: the mask becomes the alpha channel, no threshold.
"""

from __future__ import annotations

from io import BytesIO
import logging
from pathlib import Path
from typing import Union

import numpy as np
from PIL import Image

from .postprocessing import threshold_to_byte
from .preprocessing import resize_image

logger = logging.getLogger(__name__)

WHITE = (255, 255, 255)

PathLike = Union[str, Path]


def _as_mask_array(mask: Union[np.ndarray, Image.Image]) -> np.ndarray:
    if isinstance(mask, Image.Image):
        mask = np.asarray(mask.convert("L"))
    mask = np.asarray(mask, dtype=np.uint8)
    if mask.ndim != 2:
        raise ValueError(f"Mask must be 2-D, got shape {mask.shape}")
    return mask


def mask_to_image(mask: Union[np.ndarray, Image.Image]) -> Image.Image:
    """Render a mask as an RGB image with R = G = B = mask value."""
    mask = _as_mask_array(mask)
    rgb = np.repeat(mask[..., np.newaxis], 3, axis=2)
    return Image.fromarray(rgb)


def apply_mask(
    original: Image.Image,
    mask: Union[np.ndarray, Image.Image],
    threshold: float,
) -> Image.Image:
    """
    Replace background pixels with white and keep foreground colours.

    Pixels whose mask value is below the byte threshold are background. The
    original is resized (bicubic stretch) when its size differs from the
    mask's; the caller's image is never modified.
    """
    mask = _as_mask_array(mask)
    height, width = mask.shape
    byte_threshold = threshold_to_byte(threshold)

    rgb_image = original.convert("RGB") if original.mode != "RGB" else original
    if rgb_image.size != (width, height):
        logger.debug(
            "composite: resizing original %dx%d to mask size %dx%d",
            rgb_image.width,
            rgb_image.height,
            width,
            height,
        )
        rgb_image = resize_image(rgb_image, (width, height))

    rgb_np = np.array(rgb_image, dtype=np.uint8)
    rgb_np[mask < byte_threshold] = WHITE
    return Image.fromarray(rgb_np)


def apply_mask_alpha(original: Image.Image, mask: Union[np.ndarray, Image.Image]) -> Image.Image:
    """Attach the mask as alpha channel; produces a soft matte."""
    mask = _as_mask_array(mask)
    height, width = mask.shape
    if original.size != (width, height):
        raise ValueError("Input image and mask must have the same dimensions.")

    rgb_np = np.asarray(original.convert("RGB"), dtype=np.uint8)
    rgba = np.dstack((rgb_np, mask))
    return Image.fromarray(rgba)


def encode_png(image: Image.Image) -> bytes:
    buf = BytesIO()
    image.save(buf, format="PNG")
    return buf.getvalue()


def save_mask_png(mask: Union[np.ndarray, Image.Image], path: PathLike) -> Path:
    path = Path(path)
    mask_to_image(mask).save(path, format="PNG")
    return path


def save_masked_png(
    original: Image.Image,
    mask: Union[np.ndarray, Image.Image],
    path: PathLike,
    threshold: float,
) -> Path:
    path = Path(path)
    apply_mask(original, mask, threshold).save(path, format="PNG")
    return path
