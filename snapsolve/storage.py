"""File storage for raw captures and their derived artefacts."""
from __future__ import annotations

import base64
import hashlib
import logging
import mimetypes
import uuid
from datetime import datetime
from pathlib import Path
from typing import Union

from PIL import Image

from .errors import StorageError

log = logging.getLogger(__name__)

PathLike = Union[str, Path]

SCREENSHOTS_DIRNAME = "screenshots"
NORMALIZED_DIRNAME = "normalized"
SUPPORTED_IMAGE_EXTENSIONS = {".jpg", ".jpeg", ".png", ".bmp", ".tif", ".tiff"}


def normalized_name(source: PathLike) -> str:
    """File name of the normalized copy of ``source``.

    The name carries a digest of the resolved path and the file contents, so
    a new image written under a reused name never maps onto the artefact of
    an older one. Raises :class:`OSError` when ``source`` cannot be read.
    """

    source = Path(source)
    digest = hashlib.sha1(str(source.resolve()).encode("utf-8"))
    digest.update(source.read_bytes())
    return f"{source.stem}-{digest.hexdigest()[:12]}{source.suffix}"


class CaptureStorage:
    """Own the on-disk layout below ``root``.

    Raw screenshots live in ``root/screenshots``; normalized copies produced
    by :mod:`snapsolve.preprocessing` live in ``root/normalized`` under the
    name given by :func:`normalized_name`, so a raw file is never modified
    in place.
    """

    def __init__(self, root: PathLike) -> None:
        self.root = Path(root)
        self.screenshots_dir = self.root / SCREENSHOTS_DIRNAME
        self.normalized_dir = self.root / NORMALIZED_DIRNAME
        for directory in (self.screenshots_dir, self.normalized_dir):
            try:
                directory.mkdir(parents=True, exist_ok=True)
            except OSError as exc:
                raise StorageError(f"Unable to create storage directory {directory}: {exc}") from exc

    def new_capture_path(self, suffix: str = ".png") -> Path:
        timestamp = datetime.now().strftime("%Y-%m-%dT%H-%M-%S")
        return self.screenshots_dir / f"screenshot-{timestamp}-{uuid.uuid4()}{suffix}"

    def normalized_path_for(self, source: PathLike) -> Path:
        try:
            return self.normalized_dir / normalized_name(source)
        except OSError as exc:
            raise StorageError(f"Unable to read {source}: {exc}") from exc

    def write_capture(self, image: Image.Image) -> Path:
        """Persist ``image`` as a new PNG capture and return its path."""

        target = self.new_capture_path()
        try:
            image.save(target, format="PNG")
        except OSError as exc:
            raise StorageError(f"Unable to write capture {target}: {exc}") from exc
        if not self.file_exists(target) or target.stat().st_size == 0:
            raise StorageError(f"Capture file {target} is missing or empty")
        log.info("Capture saved to %s (%d bytes)", target, target.stat().st_size)
        return target

    def delete_file(self, path: PathLike) -> None:
        path = Path(path)
        try:
            path.unlink()
        except OSError as exc:
            raise StorageError(f"Unable to delete {path}: {exc}") from exc
        log.debug("Deleted %s", path)

    def delete_capture_files(self, path: PathLike) -> None:
        """Delete a raw capture together with its normalized copy.

        The raw file must be removable; failing to remove the normalized copy
        is only logged.
        """

        derived = self.normalized_path_for(path) if self.file_exists(path) else None
        self.delete_file(path)
        if derived is None or not derived.exists():
            return
        try:
            self.delete_file(derived)
        except StorageError as exc:
            log.warning("Normalized copy left behind: %s", exc)

    def read_file(self, path: PathLike) -> bytes:
        path = Path(path)
        try:
            return path.read_bytes()
        except OSError as exc:
            raise StorageError(f"Unable to read {path}: {exc}") from exc

    def file_exists(self, path: PathLike) -> bool:
        return Path(path).is_file()

    def preview(self, path: PathLike) -> str:
        mime, _ = mimetypes.guess_type(str(path))
        encoded = base64.b64encode(self.read_file(path)).decode("utf-8")
        return f"data:{mime or 'image/png'};base64,{encoded}"


__all__ = ["CaptureStorage", "SUPPORTED_IMAGE_EXTENSIONS", "normalized_name"]
