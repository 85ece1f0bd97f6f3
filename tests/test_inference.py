import base64
import threading
import time
from types import SimpleNamespace

import pytest
import requests

from conftest import write_image
from snapsolve import gpt_inference, inference
from snapsolve.cancellation import CancellationToken
from snapsolve.errors import (
    InferenceBackendError,
    InferenceCancelled,
    InferenceTimeout,
    PipelineCancelled,
)
from snapsolve.inference import InferenceRequest, OllamaBackend, call_with_cancellation


class StubResponse:
    def __init__(self, status_code=200, body=None, text=""):
        self.status_code = status_code
        self._body = body
        self.text = text

    def json(self):
        if self._body is None:
            raise ValueError("no json")
        return self._body

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"status {self.status_code}")


class StubSession:
    """Plays back scripted responses; ``block`` makes posts hang until closed."""

    def __init__(self, responses=(), *, block=False):
        self.responses = list(responses)
        self.posts = []
        self.block = block
        self._closed = threading.Event()

    @property
    def closed(self):
        return self._closed.is_set()

    def post(self, url, json=None, timeout=None):
        self.posts.append((url, json, timeout))
        if self.block:
            self._closed.wait(5)
            raise requests.ConnectionError("connection closed")
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    def get(self, url, timeout=None):
        return self.responses.pop(0)

    def close(self):
        self._closed.set()


def _backend(session, **kwargs):
    return OllamaBackend("coder", base_url="http://ollama:11434/api/", session_factory=lambda: session, **kwargs)


def test_request_needs_prompt_or_images():
    with pytest.raises(ValueError):
        InferenceRequest()


def test_text_request_payload_and_response():
    session = StubSession([StubResponse(body={"response": "answer"})])
    backend = _backend(session)

    text = backend.infer(
        InferenceRequest(prompt="hello", temperature=0.1, num_predict=2048),
        CancellationToken(),
        5,
    )

    assert text == "answer"
    url, payload, timeout = session.posts[0]
    assert url == "http://ollama:11434/api/generate"
    assert payload == {
        "model": "coder",
        "stream": False,
        "prompt": "hello",
        "options": {"temperature": 0.1, "num_predict": 2048},
    }
    assert timeout[1] == 5
    assert session.closed


def test_image_request_sends_base64_without_prompt(tmp_path):
    image = write_image(tmp_path / "shot.png")
    session = StubSession([StubResponse(body={"response": "seen"})])

    _backend(session).infer(InferenceRequest(images=[image]), CancellationToken(), 5)

    payload = session.posts[0][1]
    assert "prompt" not in payload
    assert base64.b64decode(payload["images"][0]) == image.read_bytes()


def test_server_errors_are_retried(monkeypatch):
    session = StubSession([
        StubResponse(status_code=503, text="busy"),
        StubResponse(body={"response": "ok"}),
    ])
    token = CancellationToken()
    monkeypatch.setattr(token, "wait", lambda timeout=None: False)

    assert _backend(session, max_retries=1).infer(InferenceRequest(prompt="x"), token, 5) == "ok"
    assert len(session.posts) == 2


def test_persistent_server_error_is_backend_error():
    session = StubSession([StubResponse(status_code=500, body={"error": "model crashed"})])

    with pytest.raises(InferenceBackendError, match="model crashed"):
        _backend(session, max_retries=0).infer(InferenceRequest(prompt="x"), CancellationToken(), 5)


def test_error_body_is_backend_error():
    session = StubSession([StubResponse(body={"error": "model not found"})])

    with pytest.raises(InferenceBackendError, match="model not found"):
        _backend(session).infer(InferenceRequest(prompt="x"), CancellationToken(), 5)


def test_http_timeout_is_inference_timeout():
    session = StubSession([requests.Timeout("read timed out")])

    with pytest.raises(InferenceTimeout):
        _backend(session).infer(InferenceRequest(prompt="x"), CancellationToken(), 5)


def test_cancellation_aborts_in_flight_call():
    session = StubSession(block=True)
    token = CancellationToken()
    threading.Timer(0.1, token.cancel).start()

    started = time.monotonic()
    with pytest.raises(InferenceCancelled):
        _backend(session).infer(InferenceRequest(prompt="x"), token, 30)

    assert time.monotonic() - started < 5
    assert session.closed


def test_local_deadline_applies_even_if_server_hangs():
    session = StubSession(block=True)

    with pytest.raises(InferenceTimeout):
        _backend(session).infer(InferenceRequest(prompt="x"), CancellationToken(), 0.2)
    assert session.closed


def test_cancelled_token_skips_the_call():
    session = StubSession([StubResponse(body={"response": "never"})])
    token = CancellationToken()
    token.cancel()

    with pytest.raises(PipelineCancelled):
        _backend(session).infer(InferenceRequest(prompt="x"), token, 5)
    assert session.posts == []


def test_call_with_cancellation_propagates_worker_errors():
    def _boom():
        raise InferenceBackendError("bad")

    with pytest.raises(InferenceBackendError):
        call_with_cancellation(_boom, CancellationToken(), 5)


def test_ensure_model_checks_tags():
    session = StubSession([StubResponse(body={"models": [{"name": "coder:latest"}]})])

    assert _backend(session).ensure_model() is True


def test_ensure_model_can_pull_missing_model(monkeypatch):
    session = StubSession([
        StubResponse(body={"models": [{"name": "other"}]}),
        StubResponse(body={"models": [{"name": "other"}]}),
    ])
    calls = []
    monkeypatch.setattr(inference.subprocess, "run", lambda cmd, check: calls.append(cmd))
    backend = _backend(session)

    assert backend.ensure_model() is False
    assert backend.ensure_model(pull=True) is True
    assert calls == [["ollama", "pull", "coder"]]


def test_ensure_model_reports_unreachable_server():
    session = StubSession([StubResponse(status_code=502)])

    assert _backend(session).ensure_model() is False


class _FakeResponses:
    def __init__(self, output_text):
        self.output_text = output_text
        self.bodies = []

    def create(self, **body):
        self.bodies.append(body)
        return SimpleNamespace(output_text=self.output_text)


class _FakeOpenAI:
    responses = _FakeResponses("  solved  ")

    def with_options(self, **kwargs):
        return self


def test_gpt_backend_builds_multimodal_input(tmp_path, monkeypatch):
    monkeypatch.setattr(gpt_inference, "OpenAI", _FakeOpenAI)
    _FakeOpenAI.responses = _FakeResponses("  solved  ")
    image = write_image(tmp_path / "shot.png")
    backend = gpt_inference.GPTInferenceBackend(model="gpt-test")

    text = backend.infer(InferenceRequest(prompt="why", images=[image], temperature=0.7), CancellationToken(), 5)

    assert text == "solved"
    body = _FakeOpenAI.responses.bodies[0]
    content = body["input"][0]["content"]
    assert content[0] == {"type": "input_text", "text": "why"}
    assert content[1]["image_url"].startswith("data:image/png;base64,")
    assert body["temperature"] == 0.7
    assert body["max_output_tokens"] == 2048


def test_gpt_backend_rejects_empty_output(monkeypatch):
    monkeypatch.setattr(gpt_inference, "OpenAI", _FakeOpenAI)
    _FakeOpenAI.responses = _FakeResponses("")

    with pytest.raises(InferenceBackendError):
        gpt_inference.GPTInferenceBackend().infer(InferenceRequest(prompt="x"), CancellationToken(), 5)
