"""Inference backend that uses the OpenAI Responses API instead of Ollama."""
from __future__ import annotations

import logging
import mimetypes
from dataclasses import dataclass, field
from pathlib import Path
from typing import List

from openai import APITimeoutError, OpenAI, OpenAIError

from .cancellation import CancellationToken
from .errors import InferenceBackendError, InferenceTimeout, StorageError
from .inference import ANALYSIS_TIMEOUT, InferenceRequest, call_with_cancellation, encode_image

log = logging.getLogger(__name__)

DEFAULT_GPT_MODEL = "gpt-4o-mini"


@dataclass
class GPTInferenceBackend:
    """Thin wrapper around ``client.responses.create`` for text and images."""

    model: str = DEFAULT_GPT_MODEL
    max_output_tokens: int = 2048
    _client: object = field(init=False, repr=False)

    def __post_init__(self) -> None:
        try:
            self._client = OpenAI()
        except OpenAIError as exc:
            raise InferenceBackendError(
                "Failed to initialise the OpenAI client. Ensure OPENAI_API_KEY is set."
            ) from exc

    def _content(self, request: InferenceRequest) -> List[dict]:
        content: List[dict] = []
        if request.prompt:
            content.append({"type": "input_text", "text": request.prompt})
        for image_path in request.images:
            image_path = Path(image_path)
            try:
                encoded = encode_image(image_path)
            except OSError as exc:
                raise StorageError(f"Unable to read image for inference: {exc}") from exc
            mime_type, _ = mimetypes.guess_type(str(image_path))
            content.append({
                "type": "input_image",
                "image_url": f"data:{mime_type or 'image/png'};base64,{encoded}",
            })
        return content

    def infer(
        self,
        request: InferenceRequest,
        token: CancellationToken,
        timeout: float = ANALYSIS_TIMEOUT,
    ) -> str:
        body: dict = {
            "model": self.model,
            "input": [{"role": "user", "content": self._content(request)}],
            "max_output_tokens": request.num_predict or self.max_output_tokens,
        }
        if request.temperature is not None:
            body["temperature"] = request.temperature
        client = self._client.with_options(timeout=timeout, max_retries=0)  # type: ignore[attr-defined]
        log.info("Sending request to OpenAI model %s", self.model)

        def _call() -> str:
            try:
                response = client.responses.create(**body)
            except APITimeoutError as exc:
                raise InferenceTimeout(f"OpenAI did not answer within {timeout:.0f}s") from exc
            except OpenAIError as exc:
                raise InferenceBackendError(f"OpenAI request failed: {exc}") from exc
            text = (response.output_text or "").strip()
            if not text:
                raise InferenceBackendError("Received an empty response from OpenAI.")
            return text

        # The SDK call cannot be interrupted; an abandoned call ends at ``timeout``.
        return call_with_cancellation(_call, token, timeout, label="openai")


__all__ = ["DEFAULT_GPT_MODEL", "GPTInferenceBackend"]
