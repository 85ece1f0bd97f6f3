"""Records exchanged between the capture queue, the pipeline and the UI."""
from __future__ import annotations

from dataclasses import asdict, dataclass, field, replace
from enum import Enum
from pathlib import Path
from typing import List, Optional


class ViewState(str, Enum):
    """Which screen the UI shows; decides queue routing and pipeline choice."""

    QUEUE = "queue"
    SOLUTIONS = "solutions"
    DEBUG = "debug"


class QueueKind(str, Enum):
    PRIMARY = "primary"
    SECONDARY = "secondary"
    ALL = "all"


class PipelineKind(str, Enum):
    INITIAL = "initial"
    DEBUG = "debug"


class PipelineState(str, Enum):
    IDLE = "idle"
    INITIAL_RUNNING = "initial-running"
    SOLUTIONS_READY = "solutions-ready"
    DEBUG_RUNNING = "debug-running"
    DEBUG_READY = "debug-ready"


@dataclass(frozen=True)
class Capture:
    """Reference to a stored screenshot; ``id`` is its storage path."""

    path: Path

    @property
    def id(self) -> str:
        return str(self.path)


@dataclass
class Example:
    input: str = ""
    output: str = ""
    explanation: str = ""


@dataclass
class ProblemInfo:
    """Structured problem statement extracted from one or more captures."""

    title: str = ""
    description: str = ""
    code: str = ""
    examples: List[Example] = field(default_factory=list)
    constraints: List[str] = field(default_factory=list)
    function_signature: str = ""
    extra_info: Optional[str] = None
    original_problem: str = ""

    def with_extra_info(self, extra_info: str) -> "ProblemInfo":
        return replace(
            self,
            examples=list(self.examples),
            constraints=list(self.constraints),
            extra_info=extra_info,
        )

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class SolutionResult:
    """Generated solution for the live :class:`ProblemInfo`."""

    code: str
    thoughts: List[str] = field(default_factory=list)
    time_complexity: str = "O(n)"
    space_complexity: str = "O(n)"
    solution: str = ""
    language: str = "auto"

    def to_dict(self) -> dict:
        return asdict(self)


__all__ = [
    "Capture",
    "Example",
    "PipelineKind",
    "PipelineState",
    "ProblemInfo",
    "QueueKind",
    "SolutionResult",
    "ViewState",
]
