"""Text recognition for code screenshots built on top of pytesseract.

:func:`ocr_detailed` returns per-word metadata as a DataFrame and
:func:`ocr_image` rebuilds plain text from it, restoring the leading
indentation of each line from the word boxes so code keeps its shape.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union

import pandas as pd
import pytesseract
from PIL import Image
from pytesseract import Output

from .errors import RecognitionError

log = logging.getLogger(__name__)

PathLike = Union[str, Path]

# Quote characters are left out because pytesseract splits ``config`` with shlex.
CODE_CHAR_WHITELIST = (
    "abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789"
    ".,;:(){}[]<>=+-*/_|&$#@!?%`"
)

_LINE_COLS = ["page_num", "block_num", "par_num", "line_num"]
_WORD_SORT_COLS = _LINE_COLS + ["word_num"]

_FULL_WIDTH = str.maketrans({
    "＝": "=",
    "［": "[",
    "］": "]",
    "（": "(",
    "）": ")",
    "；": ";",
    "：": ":",
    "，": ",",
})


def _build_config(psm: int, whitelist: Optional[str]) -> str:
    parts = [f"--psm {psm}", "-c preserve_interword_spaces=1"]
    if whitelist:
        parts.append(f"-c tessedit_char_whitelist={whitelist}")
    return " ".join(parts)


def ocr_detailed(
    image_path: PathLike,
    *,
    lang: str = "eng",
    psm: int = 6,
    whitelist: Optional[str] = None,
) -> pd.DataFrame:
    """Run Tesseract on ``image_path`` and return word-level rows.

    Columns follow ``pytesseract.image_to_data`` with ``conf`` renamed to
    ``confidence``.
    """

    image_path = Path(image_path)
    log.info("Running OCR on %s", image_path)
    config = _build_config(psm, whitelist)
    try:
        with Image.open(image_path) as pil_image:
            data = pytesseract.image_to_data(
                pil_image, lang=lang, config=config, output_type=Output.DICT
            )
    except pytesseract.TesseractError as exc:
        raise RecognitionError(f"Tesseract failed on {image_path}: {exc}") from exc
    except OSError as exc:
        # Also covers TesseractNotFoundError.
        raise RecognitionError(f"Unable to run OCR on {image_path}: {exc}") from exc

    detailed = pd.DataFrame(data)
    if detailed.empty:
        return detailed

    detailed = detailed[detailed.get("level") == 5].copy()
    if detailed.empty:
        return detailed

    detailed.rename(columns={"conf": "confidence"}, inplace=True)
    detailed["confidence"] = pd.to_numeric(detailed["confidence"], errors="coerce")
    for column in ["left", "top", "width", "height"] + _WORD_SORT_COLS:
        if column in detailed.columns:
            detailed[column] = pd.to_numeric(detailed[column], errors="coerce")

    return detailed.reset_index(drop=True)


def _char_width(tokens: pd.DataFrame) -> float:
    lengths = tokens["text"].str.len()
    widths = (tokens["width"] / lengths.where(lengths > 0)).dropna()
    if widths.empty:
        return 0.0
    return float(widths.median())


def tokens_to_text(tokens: pd.DataFrame, *, min_confidence: float = 0.0) -> str:
    """Join words back into lines, indenting by each line's left offset.

    Words scored below ``min_confidence`` are dropped; Tesseract marks boxes
    it could not read with ``-1``.
    """

    if tokens.empty:
        return ""
    data = tokens.copy()
    data["text"] = data["text"].fillna("").astype(str).str.strip()
    data = data[data["text"].ne("")]
    if "confidence" in data.columns:
        data = data[data["confidence"].fillna(-1) >= min_confidence]
    if data.empty:
        return ""

    data = data.sort_values(_WORD_SORT_COLS)
    has_boxes = {"left", "width"}.issubset(data.columns)
    char_width = _char_width(data) if has_boxes else 0.0
    margin = float(data["left"].min()) if has_boxes else 0.0

    lines = []
    for _, words in data.groupby(_LINE_COLS, sort=True):
        indent = 0
        if char_width > 0:
            indent = max(0, int(round((float(words["left"].min()) - margin) / char_width)))
        lines.append(" " * indent + " ".join(words["text"]))
    return "\n".join(lines).strip("\n")


def clean_code_text(text: str) -> str:
    """Repair OCR artefacts that commonly break source code.

    Full-width punctuation becomes ASCII, other non-ASCII noise is dropped
    and leading indentation is snapped to a multiple of the smallest indent.
    """

    cleaned = text.translate(_FULL_WIDTH)
    cleaned = re.sub(r"[^\x00-\x7F]+", "", cleaned)

    indents = [len(m) for m in re.findall(r"^( +)\S", cleaned, flags=re.MULTILINE)]
    unit = min(max(min(indents), 2), 4) if indents else 2

    lines = []
    for line in cleaned.split("\n"):
        leading = re.match(r"^ +", line)
        if leading:
            level = int(len(leading.group(0)) / unit + 0.5)
            line = " " * (level * unit) + line.lstrip(" ")
        lines.append(line)
    return "\n".join(lines)


def ocr_image(
    image_path: PathLike,
    *,
    lang: str = "eng",
    psm: int = 6,
    whitelist: Optional[str] = None,
    min_confidence: float = 0.0,
) -> str:
    """Recognise ``image_path`` and return cleaned, indentation-aware text."""

    detailed = ocr_detailed(image_path, lang=lang, psm=psm, whitelist=whitelist)
    text = clean_code_text(tokens_to_text(detailed, min_confidence=min_confidence))
    log.debug("OCR extracted text (first 100 chars): %s", text[:100])
    return text


@dataclass
class TesseractRecognizer:
    """Recognizer used by the coordinator; runs to completion once started."""

    lang: str = "eng"
    psm: int = 6
    whitelist: Optional[str] = None
    min_confidence: float = 0.0
    tesseract_cmd: Optional[str] = None

    def __post_init__(self) -> None:
        if self.tesseract_cmd:
            pytesseract.pytesseract.tesseract_cmd = self.tesseract_cmd

    def recognize(self, image_path: PathLike) -> str:
        return ocr_image(
            image_path,
            lang=self.lang,
            psm=self.psm,
            whitelist=self.whitelist,
            min_confidence=self.min_confidence,
        )


__all__ = [
    "CODE_CHAR_WHITELIST",
    "TesseractRecognizer",
    "clean_code_text",
    "ocr_detailed",
    "ocr_image",
    "tokens_to_text",
]
