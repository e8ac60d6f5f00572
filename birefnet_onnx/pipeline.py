"""
High-level BiRefNet processing pipeline.

`predict_mask` is the core used by the batch driver and the library helpers:
image -> preprocessing -> model -> post-processing -> uint8 mask at the
original resolution. The helpers below wrap it for the common file and
bytes workflows.
"""

from __future__ import annotations

from dataclasses import dataclass
import logging
from pathlib import Path
import time
from typing import Optional, Union

import numpy as np
from PIL import Image

from . import config
from .compositing import apply_mask_alpha, encode_png, mask_to_image
from .errors import ProcessingTimeoutError
from .model_loader import SegmentationModel, get_model
from .postprocessing import extract_first_channel, postprocess_output, smooth_mask as _smooth_mask
from .preprocessing import ImageSource, load_image, pack

logger = logging.getLogger(__name__)


@dataclass
class MaskResult:
    mask: np.ndarray  # uint8 (height, width)
    width: int
    height: int


def _check_deadline(deadline: Optional[float], stage: str) -> None:
    if deadline is not None and time.monotonic() > deadline:
        raise ProcessingTimeoutError(stage)


def predict_mask(
    image: Image.Image,
    model: SegmentationModel,
    deadline: Optional[float] = None,
) -> MaskResult:
    """
    Segment ``image`` and return a uint8 mask at its original size.

    ``deadline`` is a ``time.monotonic()`` timestamp checked between stages.
    """
    _check_deadline(deadline, "preprocessing")
    input_w, input_h = model.input_spatial_size()
    preprocessed = pack(image, input_w, input_h)
    orig_w, orig_h = preprocessed.orig_size

    _check_deadline(deadline, "inference")
    output = model.run(preprocessed.tensor)

    _check_deadline(deadline, "postprocessing")
    prob, out_w, out_h = extract_first_channel(output)
    mask = postprocess_output(prob, out_w, out_h, orig_w, orig_h)
    logger.debug("predict: input=%dx%d model_out=%dx%d", orig_w, orig_h, out_w, out_h)
    return MaskResult(mask=mask, width=orig_w, height=orig_h)


def infer_file(
    image_path: Union[str, Path],
    model: SegmentationModel,
    deadline: Optional[float] = None,
) -> MaskResult:
    return predict_mask(load_image(image_path), model, deadline=deadline)


def _validate_paths(image_path, output_path) -> Path:
    if not image_path or not str(image_path).strip():
        raise ValueError("Image path cannot be null or empty.")
    if not output_path or not str(output_path).strip():
        raise ValueError("Output path cannot be null or empty.")
    image_path = Path(image_path)
    if not image_path.is_file():
        raise FileNotFoundError(f"Image file not found: {image_path}")
    return image_path


def remove_background(
    model: SegmentationModel,
    image_path: Union[str, Path],
    output_path: Union[str, Path],
    smooth_mask: bool = True,
    mask_sigma: float = 2.0,
) -> Path:
    """Write an RGBA PNG whose alpha channel is the (optionally smoothed) mask."""
    image_path = _validate_paths(image_path, output_path)
    image = load_image(image_path)
    result = predict_mask(image, model)
    mask = _smooth_mask(result.mask, mask_sigma) if smooth_mask else result.mask.copy()

    output_path = Path(output_path)
    apply_mask_alpha(image, mask).save(output_path, format="PNG")
    logger.info("Wrote RGBA cutout to %s", output_path)
    return output_path


def get_mask(
    model: SegmentationModel,
    image_path: Union[str, Path],
    output_path: Union[str, Path],
    smooth_mask: bool = True,
    mask_sigma: float = 2.0,
) -> Path:
    """Write only the segmentation mask as a PNG."""
    image_path = _validate_paths(image_path, output_path)
    result = infer_file(image_path, model)
    mask = _smooth_mask(result.mask, mask_sigma) if smooth_mask else result.mask.copy()

    output_path = Path(output_path)
    mask_to_image(mask).save(output_path, format="PNG")
    logger.info("Wrote mask to %s", output_path)
    return output_path


def process_image_bytes(
    image_bytes: ImageSource,
    model: Optional[SegmentationModel] = None,
    smooth_mask: bool = False,
    mask_sigma: Optional[float] = None,
) -> bytes:
    """
    Full pipeline from raw bytes to RGBA PNG bytes.

    Uses the shared model from ``get_model()`` when none is given and the
    configured ``mask_smooth_sigma`` when smoothing without an explicit sigma.

    Raises:
        InvalidImageError: when the input cannot be decoded.
    """
    if model is None:
        model = get_model()
    image = load_image(image_bytes)
    result = predict_mask(image, model)
    if smooth_mask:
        sigma = mask_sigma if mask_sigma is not None else config.get_settings().mask_smooth_sigma
        mask = _smooth_mask(result.mask, sigma)
    else:
        mask = result.mask
    return encode_png(apply_mask_alpha(image, mask))
