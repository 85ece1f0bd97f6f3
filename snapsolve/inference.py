"""Generative backend client with local timeouts and cancellation.

The default backend talks to a local Ollama server:
- POST ``/generate`` with either a text prompt or base64 images
- GET ``/tags`` to check that the configured model is installed

Every call runs on a short-lived daemon thread so the caller can stop
waiting the moment its :class:`~snapsolve.cancellation.CancellationToken`
fires or the local deadline passes, independent of the server's own
timeouts. The HTTP session of an abandoned call is closed to abort it.
"""
from __future__ import annotations

import base64
import logging
import subprocess
import threading
import time
from concurrent.futures import Future
from concurrent.futures import TimeoutError as FutureTimeout
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Protocol, TypeVar

import requests

from .cancellation import CancellationToken
from .errors import (
    InferenceBackendError,
    InferenceCancelled,
    InferenceTimeout,
    StorageError,
)

log = logging.getLogger(__name__)

DEFAULT_BASE = "http://localhost:11434/api"
DEFAULT_MODEL = "SudoSaturn/Shellper"
ANALYSIS_TIMEOUT = 90.0
SOLUTION_TIMEOUT = 180.0
CONNECT_TIMEOUT = 10.0
_POLL_INTERVAL = 0.1

T = TypeVar("T")


@dataclass
class InferenceRequest:
    """A text prompt, or images with no prompt; never both empty."""

    prompt: Optional[str] = None
    images: List[Path] = field(default_factory=list)
    temperature: Optional[float] = None
    num_predict: Optional[int] = None

    def __post_init__(self) -> None:
        if not self.prompt and not self.images:
            raise ValueError("An inference request needs a prompt or at least one image")


class InferenceBackend(Protocol):
    def infer(
        self,
        request: InferenceRequest,
        token: CancellationToken,
        timeout: float,
    ) -> str:
        ...


def encode_image(path: Path) -> str:
    return base64.b64encode(Path(path).read_bytes()).decode("utf-8")


def call_with_cancellation(
    func: Callable[[], T],
    token: CancellationToken,
    timeout: float,
    *,
    abort: Optional[Callable[[], None]] = None,
    label: str = "inference",
) -> T:
    """Run ``func`` on a worker thread, honouring ``token`` and ``timeout``.

    Raises :class:`InferenceCancelled` or :class:`InferenceTimeout` when the
    wait is given up, after invoking ``abort`` so the worker can unwind.
    """

    token.raise_if_cancelled(label)
    future: "Future[T]" = Future()

    def _target() -> None:
        if not future.set_running_or_notify_cancel():
            return
        try:
            future.set_result(func())
        except BaseException as exc:  # handed to the waiting caller
            future.set_exception(exc)

    worker = threading.Thread(target=_target, name=f"{label}-call", daemon=True)
    worker.start()

    deadline = time.monotonic() + timeout
    while True:
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            if abort is not None:
                abort()
            raise InferenceTimeout(f"{label} call exceeded {timeout:.0f}s")
        try:
            return future.result(timeout=min(_POLL_INTERVAL, remaining))
        except FutureTimeout:
            pass
        if token.cancelled:
            if abort is not None:
                abort()
            raise InferenceCancelled(f"{label} call cancelled")


class OllamaBackend:
    def __init__(
        self,
        model: str = DEFAULT_MODEL,
        *,
        base_url: str = DEFAULT_BASE,
        session_factory: Callable[[], requests.Session] = requests.Session,
        max_retries: int = 2,
    ) -> None:
        """
        model: model name as listed by ``ollama list``
        base_url: API root, including the ``/api`` suffix
        session_factory: builds one session per call so a cancelled call can
            be aborted without disturbing concurrent ones
        max_retries: retries on connection errors, 429 and 5xx responses
        """
        self.model = model
        self.base_url = base_url.rstrip("/")
        self._session_factory = session_factory
        self.max_retries = max(0, int(max_retries))

    def _build_payload(self, request: InferenceRequest) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"model": self.model, "stream": False}
        if request.prompt:
            payload["prompt"] = request.prompt
        if request.images:
            try:
                payload["images"] = [encode_image(path) for path in request.images]
            except OSError as exc:
                raise StorageError(f"Unable to read image for inference: {exc}") from exc
        options: Dict[str, Any] = {}
        if request.temperature is not None:
            options["temperature"] = request.temperature
        if request.num_predict is not None:
            options["num_predict"] = request.num_predict
        if options:
            payload["options"] = options
        return payload

    def _post_with_backoff(
        self,
        session: requests.Session,
        payload: Dict[str, Any],
        timeout: float,
        token: CancellationToken,
    ) -> requests.Response:
        url = f"{self.base_url}/generate"
        backoff = 1.0
        last_error = "no attempt made"
        for attempt in range(self.max_retries + 1):
            if attempt:
                if token.wait(backoff):
                    raise InferenceCancelled("Inference cancelled during backoff")
                backoff *= 2
            try:
                resp = session.post(url, json=payload, timeout=(CONNECT_TIMEOUT, timeout))
            except requests.Timeout as exc:
                raise InferenceTimeout(f"Ollama did not answer within {timeout:.0f}s") from exc
            except requests.RequestException as exc:
                if token.cancelled:
                    raise InferenceCancelled("Inference aborted") from exc
                log.warning("Ollama request exception, retrying: %s", exc)
                last_error = str(exc)
                continue
            if resp.status_code == 429 or 500 <= resp.status_code < 600:
                log.warning("Ollama returned %d, backing off %.1fs", resp.status_code, backoff)
                last_error = f"status {resp.status_code}: {_error_message(resp)}"
                continue
            return resp
        raise InferenceBackendError(f"Request to {url} failed after retries ({last_error})")

    def infer(
        self,
        request: InferenceRequest,
        token: CancellationToken,
        timeout: float = ANALYSIS_TIMEOUT,
    ) -> str:
        """Send ``request`` to ``/generate`` and return the response text."""

        payload = self._build_payload(request)
        session = self._session_factory()
        kind = "image" if request.images else "text"
        log.info("Sending %s request to Ollama model %s", kind, self.model)

        def _call() -> str:
            resp = self._post_with_backoff(session, payload, timeout, token)
            if resp.status_code != 200:
                raise InferenceBackendError(
                    f"Ollama request failed: {resp.status_code} {_error_message(resp)}"
                )
            try:
                body = resp.json()
            except ValueError as exc:
                raise InferenceBackendError("Ollama returned a non-JSON body") from exc
            if body.get("error"):
                raise InferenceBackendError(f"Ollama error: {body['error']}")
            text = body.get("response")
            if not isinstance(text, str):
                raise InferenceBackendError(f"Ollama response missing text: {body}")
            return text

        try:
            text = call_with_cancellation(
                _call, token, timeout, abort=session.close, label="ollama"
            )
        finally:
            session.close()
        log.debug("Response (first 300 chars): %s", text[:300])
        return text

    def list_models(self) -> List[str]:
        session = self._session_factory()
        try:
            resp = session.get(f"{self.base_url}/tags", timeout=CONNECT_TIMEOUT)
            resp.raise_for_status()
            return [m.get("name", "") for m in resp.json().get("models") or []]
        except (requests.RequestException, ValueError) as exc:
            raise InferenceBackendError(f"Unable to list Ollama models: {exc}") from exc
        finally:
            session.close()

    def has_model(self, names: List[str]) -> bool:
        wanted = self.model.lower()
        return any(n.lower() == wanted or n.lower().startswith(f"{wanted}:") for n in names)

    def ensure_model(self, *, pull: bool = False) -> bool:
        """Return whether the model is installed, optionally pulling it."""

        try:
            names = self.list_models()
        except InferenceBackendError as exc:
            log.error("%s", exc)
            return False
        log.info("Available local Ollama models: %s", ", ".join(names) or "(none)")
        if self.has_model(names):
            return True
        log.warning("Model %s is not installed; run 'ollama pull %s'", self.model, self.model)
        if not pull:
            return False
        try:
            subprocess.run(["ollama", "pull", self.model], check=True)
        except FileNotFoundError:
            log.error("The 'ollama' executable was not found on PATH")
            return False
        except subprocess.CalledProcessError as exc:
            log.error("Failed to pull %s: %s", self.model, exc)
            return False
        log.info("Pulled model %s", self.model)
        return True


def _error_message(resp: requests.Response) -> str:
    try:
        body = resp.json()
    except ValueError:
        return resp.text[:200]
    if isinstance(body, dict) and body.get("error"):
        return str(body["error"])
    return resp.text[:200]


__all__ = [
    "ANALYSIS_TIMEOUT",
    "DEFAULT_BASE",
    "DEFAULT_MODEL",
    "InferenceBackend",
    "InferenceRequest",
    "OllamaBackend",
    "SOLUTION_TIMEOUT",
    "call_with_cancellation",
    "encode_image",
]
