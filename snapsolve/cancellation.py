"""Cooperative cancellation for pipeline runs."""
from __future__ import annotations

import threading
from typing import Optional

from .errors import PipelineCancelled


class CancellationToken:
    """One-shot cancellation flag shared by every stage of a run.

    Stages call :meth:`raise_if_cancelled` at their checkpoints (before each
    capture, before each network call). Blocking adapters can use
    :meth:`wait` to sleep until either the token fires or a timeout elapses.
    """

    def __init__(self, label: str = "") -> None:
        self.label = label
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block up to ``timeout`` seconds; return ``True`` once cancelled."""

        return self._event.wait(timeout)

    def raise_if_cancelled(self, stage: str = "") -> None:
        if self._event.is_set():
            where = f" before {stage}" if stage else ""
            raise PipelineCancelled(f"Run {self.label or '<anonymous>'} cancelled{where}")

    def __repr__(self) -> str:  # pragma: no cover - debugging helper
        state = "cancelled" if self.cancelled else "live"
        return f"CancellationToken({self.label!r}, {state})"


__all__ = ["CancellationToken"]
