"""Typed notifications from the coordinator to the UI boundary."""
from __future__ import annotations

import logging
import threading
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple, Type

from .models import Capture, ProblemInfo, SolutionResult

log = logging.getLogger(__name__)

Listener = Callable[[Any], None]


class PipelineEvent(str, Enum):
    NO_CAPTURES = "no-captures"
    INITIAL_START = "initial-start"
    PROBLEM_EXTRACTED = "problem-extracted"
    SOLUTION_READY = "solution-ready"
    SOLUTION_ERROR = "solution-error"
    DEBUG_START = "debug-start"
    DEBUG_READY = "debug-ready"
    DEBUG_ERROR = "debug-error"
    CAPTURE_IN_PROGRESS = "capture-in-progress"
    CAPTURE_TAKEN = "capture-taken"
    RESET = "reset"


# ``None`` means the event carries no payload.
EVENT_PAYLOADS: Dict[PipelineEvent, Optional[Type]] = {
    PipelineEvent.NO_CAPTURES: None,
    PipelineEvent.INITIAL_START: None,
    PipelineEvent.PROBLEM_EXTRACTED: ProblemInfo,
    PipelineEvent.SOLUTION_READY: SolutionResult,
    PipelineEvent.SOLUTION_ERROR: str,
    PipelineEvent.DEBUG_START: None,
    PipelineEvent.DEBUG_READY: ProblemInfo,
    PipelineEvent.DEBUG_ERROR: str,
    PipelineEvent.CAPTURE_IN_PROGRESS: bool,
    PipelineEvent.CAPTURE_TAKEN: Capture,
    PipelineEvent.RESET: None,
}


class EventBus:
    """Fire-and-forget dispatcher; a failing listener never affects the sender."""

    def __init__(self) -> None:
        self._listeners: Dict[PipelineEvent, List[Listener]] = {}
        self._lock = threading.Lock()

    def subscribe(self, event: PipelineEvent, listener: Listener) -> Callable[[], None]:
        """Register ``listener`` and return a callable that removes it."""

        with self._lock:
            self._listeners.setdefault(event, []).append(listener)

        def _unsubscribe() -> None:
            with self._lock:
                listeners = self._listeners.get(event, [])
                if listener in listeners:
                    listeners.remove(listener)

        return _unsubscribe

    def subscribe_all(self, listener: Callable[[PipelineEvent, Any], None]) -> Callable[[], None]:
        removers = [
            self.subscribe(event, lambda payload, _event=event: listener(_event, payload))
            for event in PipelineEvent
        ]

        def _unsubscribe() -> None:
            for remove in removers:
                remove()

        return _unsubscribe

    def emit(self, event: PipelineEvent, payload: Any = None) -> None:
        expected = EVENT_PAYLOADS[event]
        if expected is None and payload is not None:
            raise TypeError(f"{event.value} carries no payload")
        if expected is not None and not isinstance(payload, expected):
            raise TypeError(f"{event.value} expects {expected.__name__}, got {type(payload).__name__}")

        with self._lock:
            listeners = list(self._listeners.get(event, []))
        log.debug("Emitting %s to %d listener(s)", event.value, len(listeners))
        for listener in listeners:
            try:
                listener(payload)
            except Exception:
                log.exception("Listener for %s failed", event.value)


class EventRecorder:
    """Listener that keeps every event in order; used by the CLI and tests."""

    def __init__(self, bus: Optional[EventBus] = None) -> None:
        self.events: List[Tuple[PipelineEvent, Any]] = []
        self._lock = threading.Lock()
        self._changed = threading.Condition(self._lock)
        if bus is not None:
            bus.subscribe_all(self)

    def __call__(self, event: PipelineEvent, payload: Any) -> None:
        with self._changed:
            self.events.append((event, payload))
            self._changed.notify_all()

    def kinds(self) -> List[PipelineEvent]:
        with self._lock:
            return [event for event, _ in self.events]

    def payloads(self, event: PipelineEvent) -> List[Any]:
        with self._lock:
            return [payload for kind, payload in self.events if kind == event]

    def wait_for(self, event: PipelineEvent, timeout: float = 5.0) -> bool:
        with self._changed:
            return self._changed.wait_for(
                lambda: any(kind == event for kind, _ in self.events), timeout
            )


__all__ = ["EVENT_PAYLOADS", "EventBus", "EventRecorder", "Listener", "PipelineEvent"]
