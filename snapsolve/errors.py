"""Exception hierarchy shared by the capture and analysis pipeline."""
from __future__ import annotations


class SnapSolveError(RuntimeError):
    """Base class for failures that abort a pipeline run."""


class StorageError(SnapSolveError):
    """Raised when a capture file cannot be written, read or deleted."""


class PreprocessError(SnapSolveError):
    """Raised when every normalization strategy failed for a capture."""


class RecognitionError(SnapSolveError):
    """Raised when the OCR engine cannot extract text from a capture."""


class InferenceError(SnapSolveError):
    """Raised when the generative backend does not return a usable answer."""


class InferenceTimeout(InferenceError):
    """Raised when a backend call exceeds its local time budget."""


class InferenceBackendError(InferenceError):
    """Raised for transport failures and error responses from the backend."""


class InterpretationError(SnapSolveError):
    """Reserved for the response interpreter.

    :mod:`snapsolve.interpret` absorbs malformed model output into a degraded
    :class:`~snapsolve.models.ProblemInfo` and never raises this.
    """


class PipelineCancelled(Exception):
    """Raised inside a run that was superseded or reset.

    Deliberately outside :class:`SnapSolveError`: a cancelled run stops
    quietly instead of reporting a failure.
    """


class InferenceCancelled(PipelineCancelled):
    """Raised when an in-flight backend call was aborted by its token."""


__all__ = [
    "InferenceBackendError",
    "InferenceCancelled",
    "InferenceError",
    "InferenceTimeout",
    "InterpretationError",
    "PipelineCancelled",
    "PreprocessError",
    "RecognitionError",
    "SnapSolveError",
    "StorageError",
]
