from __future__ import annotations

import sys
import threading
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Union

import pytest
from PIL import Image

ROOT = Path(__file__).resolve().parents[1]

if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from snapsolve.cancellation import CancellationToken
from snapsolve.errors import InferenceBackendError, InferenceCancelled
from snapsolve.events import EventBus, EventRecorder
from snapsolve.inference import InferenceRequest
from snapsolve.storage import CaptureStorage


class FakeRecognizer:
    """Returns canned text per file name and records every call."""

    def __init__(self, texts: Optional[Dict[str, str]] = None, default: str = "") -> None:
        self.texts = texts or {}
        self.default = default
        self.calls: List[Path] = []

    def recognize(self, image_path) -> str:
        path = Path(image_path)
        self.calls.append(path)
        return self.texts.get(path.name, self.default)


class ScriptedBackend:
    """Pops one scripted response per call; exceptions in the script are raised.

    When ``gate`` is given every call blocks until the gate opens or the
    token is cancelled, which lets tests cancel a run mid-call.
    """

    def __init__(
        self,
        responses: Sequence[Union[str, Exception]] = (),
        *,
        gate: Optional[threading.Event] = None,
    ) -> None:
        self.responses = list(responses)
        self.requests: List[InferenceRequest] = []
        self.gate = gate
        self.entered = threading.Event()

    def infer(self, request: InferenceRequest, token: CancellationToken, timeout: float) -> str:
        self.requests.append(request)
        self.entered.set()
        if self.gate is not None:
            while not self.gate.is_set():
                if token.wait(0.01):
                    raise InferenceCancelled("scripted call cancelled")
        token.raise_if_cancelled("scripted")
        if not self.responses:
            raise InferenceBackendError("no scripted response left")
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return item


def write_image(path: Path, size=(64, 32), color="white") -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    Image.new("RGB", size, color=color).save(path)
    return path


@pytest.fixture
def storage(tmp_path) -> CaptureStorage:
    return CaptureStorage(tmp_path / "data")


@pytest.fixture
def make_capture(storage):
    def _make(name: str) -> Path:
        return write_image(storage.screenshots_dir / f"{name}.png")

    return _make


@pytest.fixture
def bus() -> EventBus:
    return EventBus()


@pytest.fixture
def recorder(bus) -> EventRecorder:
    return EventRecorder(bus)
