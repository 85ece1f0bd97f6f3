import base64

import pytest
from PIL import Image

from conftest import write_image
from snapsolve import screenshot
from snapsolve.errors import StorageError
from snapsolve.screenshot import ScreenCaptureError, capture_full_screen
from snapsolve.storage import CaptureStorage


def test_layout_is_created(tmp_path):
    storage = CaptureStorage(tmp_path / "root")

    assert storage.screenshots_dir.is_dir()
    assert storage.normalized_dir.is_dir()


def test_normalized_path_changes_with_file_contents(storage, make_capture):
    path = make_capture("shot")
    first = storage.normalized_path_for(path)

    assert first.parent == storage.normalized_dir
    assert first.name.startswith("shot-") and first.suffix == ".png"
    assert storage.normalized_path_for(path) == first

    write_image(path, color="black")

    assert storage.normalized_path_for(path) != first


def test_normalized_path_of_missing_file_raises(storage):
    with pytest.raises(StorageError):
        storage.normalized_path_for(storage.screenshots_dir / "missing.png")


def test_delete_capture_files_removes_normalized_copy(storage, make_capture):
    path = make_capture("shot")
    derived = storage.normalized_path_for(path)
    derived.write_bytes(b"normalized")

    storage.delete_capture_files(path)

    assert not path.exists()
    assert not derived.exists()


def test_delete_capture_files_requires_the_raw_file(storage, make_capture):
    path = make_capture("shot")

    storage.delete_capture_files(path)

    assert not path.exists()
    with pytest.raises(StorageError):
        storage.delete_capture_files(path)


def test_write_capture_creates_unique_png(storage):
    image = Image.new("RGB", (10, 10), color="red")

    first = storage.write_capture(image)
    second = storage.write_capture(image)

    assert first != second
    assert first.parent == storage.screenshots_dir
    assert first.name.startswith("screenshot-") and first.suffix == ".png"
    assert storage.file_exists(first)


def test_preview_is_a_png_data_url(storage):
    path = storage.write_capture(Image.new("RGB", (4, 4)))

    preview = storage.preview(path)

    assert preview.startswith("data:image/png;base64,")
    assert base64.b64decode(preview.split(",", 1)[1]) == path.read_bytes()


def test_preview_labels_jpeg_captures(storage):
    path = write_image(storage.screenshots_dir / "photo.jpg")

    assert storage.preview(path).startswith("data:image/jpeg;base64,")


def test_missing_files_raise_storage_error(storage):
    missing = storage.screenshots_dir / "missing.png"

    assert not storage.file_exists(missing)
    with pytest.raises(StorageError):
        storage.delete_file(missing)
    with pytest.raises(StorageError):
        storage.read_file(missing)


def test_capture_full_screen_saves_grab(storage, monkeypatch):
    monkeypatch.setattr(screenshot.ImageGrab, "grab", lambda all_screens: Image.new("RGB", (8, 6)))

    path = capture_full_screen(storage)

    with Image.open(path) as img:
        assert img.size == (8, 6)


def test_capture_full_screen_reports_os_failure(storage, monkeypatch):
    def _grab(all_screens):
        raise OSError("no display")

    monkeypatch.setattr(screenshot.ImageGrab, "grab", _grab)

    with pytest.raises(ScreenCaptureError):
        capture_full_screen(storage)
