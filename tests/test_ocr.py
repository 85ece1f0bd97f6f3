from unittest.mock import patch

import pandas as pd
import pytest
import pytesseract

from conftest import write_image
from snapsolve import ocr
from snapsolve.errors import RecognitionError


def _dummy_data_dict():
    return {
        "level": [4, 5, 5, 5],
        "page_num": [1, 1, 1, 1],
        "block_num": [1, 1, 1, 1],
        "par_num": [1, 1, 1, 1],
        "line_num": [1, 1, 1, 2],
        "word_num": [0, 1, 2, 1],
        "left": [10, 10, 70, 50],
        "top": [20, 20, 20, 40],
        "width": [100, 40, 50, 60],
        "height": [10, 10, 12, 10],
        "conf": ["-1", "95", "85", "90"],
        "text": ["", "def", "foo():", "return"],
    }


def test_ocr_detailed_keeps_words_and_confidence(tmp_path):
    image = write_image(tmp_path / "shot.png")

    with patch.object(ocr.pytesseract, "image_to_data", return_value=_dummy_data_dict()) as data_mock:
        detailed = ocr.ocr_detailed(image, psm=6)

    data_mock.assert_called_once()
    config = data_mock.call_args.kwargs["config"]
    assert "--psm 6" in config
    assert "preserve_interword_spaces=1" in config
    assert "tessedit_char_whitelist" not in config

    assert list(detailed["text"]) == ["def", "foo():", "return"]
    assert detailed.loc[0, "confidence"] == 95
    assert "right" not in detailed.columns


def test_low_confidence_words_are_dropped(tmp_path):
    image = write_image(tmp_path / "shot.png")
    data = _dummy_data_dict()
    data["level"].append(5)
    for column, value in [
        ("page_num", 1), ("block_num", 1), ("par_num", 1), ("line_num", 2),
        ("word_num", 2), ("left", 120), ("top", 40), ("width", 20), ("height", 10),
    ]:
        data[column].append(value)
    data["conf"].append("-1")
    data["text"].append("~~")

    with patch.object(ocr.pytesseract, "image_to_data", return_value=data):
        detailed = ocr.ocr_detailed(image)

    assert "~~" not in ocr.tokens_to_text(detailed)
    strict = ocr.tokens_to_text(detailed, min_confidence=90)
    assert "foo" not in strict
    assert strict.startswith("def")
    assert "return" in strict


def test_whitelist_is_passed_to_tesseract(tmp_path):
    image = write_image(tmp_path / "shot.png")

    with patch.object(ocr.pytesseract, "image_to_data", return_value=_dummy_data_dict()) as data_mock:
        ocr.ocr_detailed(image, whitelist=ocr.CODE_CHAR_WHITELIST)

    assert "tessedit_char_whitelist=" in data_mock.call_args.kwargs["config"]


def test_ocr_image_restores_indentation(tmp_path):
    image = write_image(tmp_path / "shot.png")

    with patch.object(ocr.pytesseract, "image_to_data", return_value=_dummy_data_dict()):
        text = ocr.ocr_image(image)

    assert text == "def foo():\n    return"


def test_tokens_to_text_handles_empty_frame():
    assert ocr.tokens_to_text(pd.DataFrame()) == ""


def test_tesseract_failure_becomes_recognition_error(tmp_path):
    image = write_image(tmp_path / "shot.png")

    with patch.object(
        ocr.pytesseract,
        "image_to_data",
        side_effect=pytesseract.TesseractError(1, "bad language"),
    ):
        with pytest.raises(RecognitionError):
            ocr.ocr_detailed(image)


def test_missing_image_becomes_recognition_error(tmp_path):
    with pytest.raises(RecognitionError):
        ocr.ocr_detailed(tmp_path / "missing.png")


def test_clean_code_text_fixes_full_width_and_indentation():
    raw = "if x ＝＝ 1：\n    y（）✓"

    assert ocr.clean_code_text(raw) == "if x == 1:\n    y()"


def test_clean_code_text_snaps_ragged_indent():
    raw = "def f():\n    a = 1\n     b = 2\n        return a"

    assert ocr.clean_code_text(raw) == "def f():\n    a = 1\n    b = 2\n        return a"


def test_recognizer_uses_configured_options(tmp_path):
    image = write_image(tmp_path / "shot.png")
    recognizer = ocr.TesseractRecognizer(lang="eng", psm=4)

    with patch.object(ocr, "ocr_image", return_value="text") as ocr_mock:
        assert recognizer.recognize(image) == "text"

    ocr_mock.assert_called_once_with(image, lang="eng", psm=4, whitelist=None, min_confidence=0.0)
