"""
Batch driver: segment every image under a directory.

Each file is processed independently; a failure only skips that file. The
masked composite is a secondary output, so its failure is logged without
touching the grayscale mask already written.
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
import logging
from pathlib import Path
import time
from typing import Dict, List, Optional, Tuple, Union

from .compositing import save_mask_png, save_masked_png
from .errors import CompositeSaveError, InputDirNotFoundError
from .model_loader import SegmentationModel
from .pipeline import predict_mask
from .postprocessing import threshold_to_byte
from .preprocessing import load_image

logger = logging.getLogger(__name__)

VALID_EXTENSIONS = frozenset({".jpg", ".jpeg", ".png", ".bmp", ".tif", ".tiff", ".webp"})

PathLike = Union[str, Path]


@dataclass
class FileOutcome:
    source: Path
    mask_path: Optional[Path] = None
    masked_path: Optional[Path] = None
    error: Optional[str] = None
    composite_error: Optional[str] = None


@dataclass
class BatchReport:
    total: int = 0
    processed: int = 0
    skipped: int = 0
    composite_failures: int = 0
    elapsed_seconds: float = 0.0
    outputs: List[Path] = field(default_factory=list)
    failures: Dict[Path, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.skipped == 0


def collect_files(input_dir: PathLike) -> List[Path]:
    """Recursively list supported images, sorted by full path."""
    root = Path(input_dir)
    files = [p for p in root.rglob("*") if p.is_file() and p.suffix.lower() in VALID_EXTENSIONS]
    return sorted(files, key=str)


def build_output_path(file: PathLike, input_dir: PathLike, output_dir: PathLike, keep_tree: bool) -> Path:
    file = Path(file)
    if keep_tree:
        rel = file.relative_to(Path(input_dir))
        return Path(output_dir) / rel.with_suffix(".png")
    return Path(output_dir) / (file.stem + ".png")


def masked_output_path(mask_path: PathLike) -> Path:
    mask_path = Path(mask_path)
    return mask_path.with_name(mask_path.stem + "_masked.png")


def claim_outputs(
    files: List[Path], input_dir: Path, output_dir: Path, keep_tree: bool
) -> Tuple[List[Path], Dict[Path, str]]:
    """
    Split ``files`` into those with unique outputs and those that would
    overwrite an output already claimed by an earlier file.

    In flat mode ``x/a.jpg`` and ``y/a.jpg`` both map to ``a.png``; the first
    in sorted order wins and the rest are reported as collisions.
    """
    owners: Dict[Path, Path] = {}
    accepted: List[Path] = []
    collisions: Dict[Path, str] = {}
    for file in files:
        mask_path = build_output_path(file, input_dir, output_dir, keep_tree)
        targets = (mask_path, masked_output_path(mask_path))
        owner = next((owners[t] for t in targets if t in owners), None)
        if owner is not None:
            message = f"output path collides with {owner}"
            logger.warning("skip %s: %s", file, message)
            collisions[file] = message
            continue
        for target in targets:
            owners[target] = file
        accepted.append(file)
    return accepted, collisions


def _process_file(
    file: Path,
    model: SegmentationModel,
    input_dir: Path,
    output_dir: Path,
    keep_tree: bool,
    threshold: float,
    file_timeout: Optional[float],
) -> FileOutcome:
    outcome = FileOutcome(source=file)
    deadline = time.monotonic() + file_timeout if file_timeout is not None else None
    try:
        image = load_image(file)
        result = predict_mask(image, model, deadline=deadline)
        out_path = build_output_path(file, input_dir, output_dir, keep_tree)
        out_path.parent.mkdir(parents=True, exist_ok=True)
        outcome.mask_path = save_mask_png(result.mask, out_path)
    except Exception as exc:  # noqa: BLE001
        logger.warning("skip %s: %s", file, exc)
        outcome.error = str(exc)
        return outcome

    masked_path = masked_output_path(out_path)
    try:
        outcome.masked_path = save_masked_png(image, result.mask, masked_path, threshold)
    except Exception as exc:  # noqa: BLE001
        error = CompositeSaveError(masked_path, str(exc))
        logger.warning("failed to save masked image for %s: %s", file, error)
        outcome.composite_error = str(error)
    return outcome


def process_directory(
    model: SegmentationModel,
    input_dir: PathLike,
    output_dir: PathLike,
    keep_tree: bool = False,
    threshold: float = 0.1,
    workers: int = 1,
    file_timeout: Optional[float] = None,
) -> BatchReport:
    """
    Segment every supported image under ``input_dir`` into ``output_dir``.

    Writes ``name.png`` (mask) and ``name_masked.png`` (white-background
    cutout) per input. With ``workers > 1`` files run on a thread pool that
    shares ``model``; outcomes are still reported in sorted order.

    Raises:
        InputDirNotFoundError: when ``input_dir`` does not exist.
        ValueError: when ``threshold`` is outside (0, 1] or
            ``file_timeout`` is not positive.
    """
    input_dir = Path(input_dir)
    output_dir = Path(output_dir)
    threshold_to_byte(threshold)
    if file_timeout is not None and not file_timeout > 0:
        raise ValueError("file_timeout must be positive")
    if not input_dir.is_dir():
        raise InputDirNotFoundError(input_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    report = BatchReport()
    files = collect_files(input_dir)
    if not files:
        logger.warning("no images found.")
        return report

    report.total = len(files)
    logger.info("total images: %d", report.total)

    files, collisions = claim_outputs(files, input_dir, output_dir, keep_tree)
    report.skipped += len(collisions)
    report.failures.update(collisions)

    def run(file: Path) -> FileOutcome:
        return _process_file(file, model, input_dir, output_dir, keep_tree, threshold, file_timeout)

    started = time.perf_counter()
    if workers > 1:
        with ThreadPoolExecutor(max_workers=workers) as pool:
            outcomes = list(pool.map(run, files))
    else:
        outcomes = [run(f) for f in files]
    report.elapsed_seconds = time.perf_counter() - started

    for outcome in outcomes:
        if outcome.error is not None:
            report.skipped += 1
            report.failures[outcome.source] = outcome.error
            continue
        report.processed += 1
        report.outputs.append(outcome.mask_path)
        if outcome.masked_path is not None:
            report.outputs.append(outcome.masked_path)
        if outcome.composite_error is not None:
            report.composite_failures += 1

    logger.info(
        "done %d/%d images in %.2fs (skipped=%d, composite failures=%d)",
        report.processed,
        report.total,
        report.elapsed_seconds,
        report.skipped,
        report.composite_failures,
    )
    return report
