"""Screenshot capture queue and code-analysis pipeline."""

from .config import SnapSolveConfig
from .coordinator import Coordinator
from .events import EventBus, EventRecorder, PipelineEvent
from .models import (
    Capture,
    Example,
    PipelineKind,
    PipelineState,
    ProblemInfo,
    QueueKind,
    SolutionResult,
    ViewState,
)

__all__ = [
    "Capture",
    "Coordinator",
    "EventBus",
    "EventRecorder",
    "Example",
    "PipelineEvent",
    "PipelineKind",
    "PipelineState",
    "ProblemInfo",
    "QueueKind",
    "SnapSolveConfig",
    "SolutionResult",
    "ViewState",
]
