"""Normalize raw screenshots into OCR-friendly grayscale images."""
from __future__ import annotations

import logging
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Union

import cv2
import numpy as np
from PIL import Image, ImageFilter, ImageOps

from .errors import PreprocessError
from .storage import normalized_name

log = logging.getLogger(__name__)

PathLike = Union[str, Path]


@dataclass
class NormalizationOptions:
    """Tuning knobs for :func:`normalize_image`."""

    target_size: int = 1600
    fallback_size: int = 1000
    sharpen_sigma: float = 1.2
    sharpen_sigma_resized: float = 1.5
    white_point: float = 25.0
    white_point_resized: float = 30.0
    despeckle: bool = True


def _contrast_stretch(gray: np.ndarray, white_pct: float) -> np.ndarray:
    """Map the brightest ``white_pct`` percent of pixels to white."""

    low = float(gray.min())
    high = float(np.percentile(gray, 100.0 - white_pct))
    if high <= low:
        return gray
    stretched = (gray.astype(np.float32) - low) * (255.0 / (high - low))
    return np.clip(stretched, 0, 255).astype(np.uint8)


def _unsharp(gray: np.ndarray, sigma: float) -> np.ndarray:
    blurred = cv2.GaussianBlur(gray, (0, 0), sigma)
    return cv2.addWeighted(gray, 1.5, blurred, -0.5, 0)


def enhance_for_text(image: np.ndarray, options: NormalizationOptions) -> np.ndarray:
    """Return a grayscale, contrast-boosted and sharpened copy of ``image``.

    Images larger than ``options.target_size`` on either side are scaled
    down to fit; smaller images keep their size.
    """

    height, width = image.shape[:2]
    resized = width > options.target_size or height > options.target_size
    if resized:
        scale = options.target_size / float(max(width, height))
        new_size = (max(1, int(width * scale)), max(1, int(height * scale)))
        image = cv2.resize(image, new_size, interpolation=cv2.INTER_AREA)
        log.debug("Resized %sx%s capture to %s", width, height, new_size)

    if image.ndim == 3:
        code = cv2.COLOR_BGRA2GRAY if image.shape[2] == 4 else cv2.COLOR_BGR2GRAY
        gray = cv2.cvtColor(image, code)
    else:
        gray = image

    gray = cv2.normalize(gray, None, 0, 255, cv2.NORM_MINMAX, dtype=cv2.CV_8U)
    gray = _unsharp(gray, options.sharpen_sigma_resized if resized else options.sharpen_sigma)
    gray = _contrast_stretch(gray, options.white_point_resized if resized else options.white_point)
    if options.despeckle:
        gray = cv2.medianBlur(gray, 3)
    return gray


def _primary(source: Path, target: Path, options: NormalizationOptions) -> None:
    image = cv2.imread(str(source), cv2.IMREAD_UNCHANGED)
    if image is None:
        raise PreprocessError(f"Unable to load image: {source}")
    processed = enhance_for_text(image, options)
    if not cv2.imwrite(str(target), processed):
        raise PreprocessError(f"OpenCV could not write {target}")


def _simplified(source: Path, target: Path, options: NormalizationOptions) -> None:
    with Image.open(source) as img:
        gray = ImageOps.grayscale(img)
    gray.thumbnail((options.fallback_size, options.fallback_size))
    gray = ImageOps.autocontrast(gray)
    gray.filter(ImageFilter.SHARPEN).save(target, format="PNG")


def _verbatim(source: Path, target: Path, options: NormalizationOptions) -> None:
    shutil.copyfile(source, target)


def _is_valid(path: Path) -> bool:
    return path.is_file() and path.stat().st_size > 0


def _discard(path: Path) -> None:
    try:
        path.unlink()
    except FileNotFoundError:
        pass


_STRATEGIES = (
    ("text-optimized", _primary),
    ("simplified grayscale", _simplified),
    ("verbatim copy", _verbatim),
)


def normalize_image(
    image_path: PathLike,
    output_dir: PathLike,
    *,
    options: NormalizationOptions | None = None,
) -> Path:
    """Write a normalized copy of ``image_path`` into ``output_dir``.

    The result is named by :func:`~snapsolve.storage.normalized_name`, so it
    is reused only for the same file with the same contents. Strategies are
    tried from best to most degraded;
    :class:`~snapsolve.errors.PreprocessError` is raised only after the
    verbatim copy failed as well.
    """

    source = Path(image_path)
    opts = options or NormalizationOptions()
    if not source.is_file():
        raise PreprocessError(f"Capture not found: {source}")
    target_dir = Path(output_dir)
    target_dir.mkdir(parents=True, exist_ok=True)
    try:
        target = target_dir / normalized_name(source)
    except OSError as exc:
        raise PreprocessError(f"Unable to read capture {source}: {exc}") from exc

    if _is_valid(target):
        log.debug("Image already normalized: %s", target)
        return target

    failures = []
    for index, (name, strategy) in enumerate(_STRATEGIES):
        try:
            strategy(source, target, opts)
        except (OSError, ValueError, cv2.error, PreprocessError) as exc:
            log.warning("Normalization strategy '%s' failed for %s: %s", name, source.name, exc)
            failures.append(f"{name}: {exc}")
            _discard(target)
            continue
        if not _is_valid(target):
            log.warning("Normalization strategy '%s' produced no output for %s", name, source.name)
            failures.append(f"{name}: empty output")
            _discard(target)
            continue
        if index:
            log.warning("Using degraded normalization (%s) for %s", name, source.name)
        else:
            log.info("Image optimized for text OCR: %s", target)
        return target

    raise PreprocessError(
        f"All normalization strategies failed for {source}: " + "; ".join(failures)
    )


__all__ = ["NormalizationOptions", "enhance_for_text", "normalize_image"]
