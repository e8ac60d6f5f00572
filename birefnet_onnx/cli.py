"""
Command-line entry point: segment a directory of images with BiRefNet.

Defaults come from ``config.Settings`` (``BIREFNET_*`` environment variables
or ``.env``); flags override them.
"""

from __future__ import annotations

import argparse
import logging
from pathlib import Path
import sys
from typing import List, Optional

from pydantic import ValidationError

from . import config
from .batch import process_directory
from .errors import InputDirNotFoundError, ModelLoadError, ModelNotFoundError
from .model_loader import OnnxSegmentationModel

logger = logging.getLogger(__name__)

MODEL_DOWNLOAD_URL = "https://modelscope.cn/models/onnx-community/BiRefNet-ONNX"

_TRUE = {"1", "true", "yes", "y", "on"}
_FALSE = {"0", "false", "no", "n", "off"}


def _str2bool(value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in _TRUE:
        return True
    if lowered in _FALSE:
        return False
    raise argparse.ArgumentTypeError(f"expected a boolean, got {value!r}")


def _threshold(value: str) -> float:
    try:
        parsed = float(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"invalid threshold {value!r}") from exc
    if not 0.0 < parsed <= 1.0:
        raise argparse.ArgumentTypeError("threshold must be in range (0, 1]")
    return parsed


def _positive_int(value: str) -> int:
    parsed = int(value)
    if parsed < 1:
        raise argparse.ArgumentTypeError("must be >= 1")
    return parsed


def _positive_float(value: str) -> float:
    try:
        parsed = float(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"invalid number {value!r}") from exc
    if not parsed > 0.0:
        raise argparse.ArgumentTypeError("must be > 0")
    return parsed


def build_parser(settings: config.Settings) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="birefnet-onnx",
        description="Run BiRefNet (ONNX) segmentation over a folder of images",
    )
    parser.add_argument("--onnx_path", default=str(settings.onnx_path), help="ONNX model path")
    parser.add_argument("--input_dir", default=str(settings.input_dir), help="Input images folder")
    parser.add_argument("--output_dir", default=str(settings.output_dir), help="Output folder")
    parser.add_argument("--device", default=settings.device, help="cpu/cuda (only cpu is honored)")
    parser.add_argument(
        "--keep_tree",
        type=_str2bool,
        nargs="?",
        const=True,
        default=settings.keep_tree,
        help="Keep input subfolder structure under output_dir",
    )
    parser.add_argument(
        "--threshold",
        type=_threshold,
        default=settings.threshold,
        help="Mask threshold in range (0, 1], lower values = more aggressive foreground extraction",
    )
    parser.add_argument("--workers", type=_positive_int, default=settings.workers, help="Parallel files")
    parser.add_argument(
        "--file_timeout",
        type=_positive_float,
        default=settings.file_timeout_seconds,
        help="Per-file deadline in seconds (skips the file when exceeded)",
    )
    parser.add_argument("--log_level", default=settings.log_level, help="Logging level")
    return parser


def parse_args(argv: Optional[List[str]] = None, settings: Optional[config.Settings] = None) -> argparse.Namespace:
    settings = settings or config.get_settings()
    return build_parser(settings).parse_args(argv)


def _log_config(args: argparse.Namespace) -> None:
    logger.info("Model path: %s", Path(args.onnx_path).resolve())
    logger.info("Input directory: %s", Path(args.input_dir).resolve())
    logger.info("Output directory: %s", Path(args.output_dir).resolve())
    logger.info("Device: %s", args.device)
    logger.info("Keep tree structure: %s", "yes" if args.keep_tree else "no")
    logger.info("Mask threshold: %.2f (0-1]", args.threshold)


def main(argv: Optional[List[str]] = None) -> int:
    try:
        settings = config.get_settings()
    except ValidationError as exc:
        logging.basicConfig(level=logging.INFO)
        logger.error("Invalid configuration: %s", exc)
        return 1

    try:
        args = parse_args(argv, settings=settings)
    except SystemExit as exc:
        # argparse exits 0 for --help and 2 for usage errors.
        return 0 if exc.code in (0, None) else 1

    logging.basicConfig(
        level=getattr(logging, str(args.log_level).upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    _log_config(args)

    onnx_path = Path(args.onnx_path)
    input_dir = Path(args.input_dir)
    output_dir = Path(args.output_dir)

    if not onnx_path.is_file():
        logger.error("%s", ModelNotFoundError(onnx_path))
        logger.error("Please download the model from %s and place it at %s", MODEL_DOWNLOAD_URL, onnx_path)
        return 1
    if not input_dir.is_dir():
        logger.error("%s", InputDirNotFoundError(input_dir))
        return 1

    try:
        with OnnxSegmentationModel(onnx_path, args.device, settings=settings) as model:
            logger.info("providers: %s", ", ".join(model.providers()))
            report = process_directory(
                model,
                input_dir,
                output_dir,
                keep_tree=args.keep_tree,
                threshold=args.threshold,
                workers=args.workers,
                file_timeout=args.file_timeout,
            )
    except (ModelNotFoundError, ModelLoadError, InputDirNotFoundError) as exc:
        logger.error("%s", exc)
        return 1

    logger.info("done in %.2fs", report.elapsed_seconds)
    logger.info("output: %s", output_dir.resolve())
    return 0


if __name__ == "__main__":
    sys.exit(main())
