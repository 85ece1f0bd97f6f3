"""Full-screen capture through Pillow's ``ImageGrab``."""
from __future__ import annotations

import logging
from pathlib import Path

from PIL import ImageGrab

from .errors import StorageError
from .storage import CaptureStorage

log = logging.getLogger(__name__)


class ScreenCaptureError(StorageError):
    """Raised when the operating system refuses to produce a screenshot."""


def capture_full_screen(storage: CaptureStorage) -> Path:
    """Grab every monitor and store the result as a new raw capture.

    Hiding overlay windows before the grab is the caller's job.
    """

    log.info("Taking full-screen screenshot")
    try:
        image = ImageGrab.grab(all_screens=True)
    except OSError as exc:
        raise ScreenCaptureError(f"Screenshot capture failed: {exc}") from exc
    if image is None or image.width == 0 or image.height == 0:
        raise ScreenCaptureError("Screenshot capture returned an empty image")
    return storage.write_capture(image)


__all__ = ["ScreenCaptureError", "capture_full_screen"]
