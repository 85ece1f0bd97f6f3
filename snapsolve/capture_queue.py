"""View-routed queues of pending captures."""
from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Union

from .errors import StorageError
from .models import Capture, QueueKind, ViewState
from .storage import CaptureStorage

log = logging.getLogger(__name__)

PathLike = Union[str, Path]

DEFAULT_PRIMARY_CAPACITY = 2


class CaptureQueue:
    """Two FIFO queues of :class:`Capture` references.

    The primary queue holds the captures of the current problem and is
    bounded; the secondary queue collects follow-up captures taken while a
    solution is displayed and is unbounded. A path lives in at most one of
    them. All mutation happens under a lock and readers receive copies, so a
    running pipeline can iterate a snapshot while new captures arrive.
    """

    def __init__(
        self,
        storage: CaptureStorage,
        *,
        primary_capacity: int = DEFAULT_PRIMARY_CAPACITY,
    ) -> None:
        if primary_capacity < 1:
            raise ValueError("primary_capacity must be at least 1")
        self._storage = storage
        self._capacity = primary_capacity
        self._queues: Dict[QueueKind, List[Capture]] = {
            QueueKind.PRIMARY: [],
            QueueKind.SECONDARY: [],
        }
        self._lock = threading.Lock()

    @property
    def primary_capacity(self) -> int:
        return self._capacity

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------
    def enqueue(self, capture: Capture, view: ViewState) -> Optional[QueueKind]:
        """Append ``capture`` to the queue selected by ``view``.

        Returns the queue that received the capture, or ``None`` when the
        path was already queued.
        """

        target = QueueKind.PRIMARY if view == ViewState.QUEUE else QueueKind.SECONDARY
        evicted: Optional[Capture] = None
        with self._lock:
            if self._find(capture.id) is not None:
                log.warning("Capture already queued, ignoring: %s", capture.id)
                return None
            queue = self._queues[target]
            if target == QueueKind.PRIMARY and len(queue) >= self._capacity:
                evicted = queue.pop(0)
            queue.append(capture)
            log.info("Queued %s in %s queue (%d item(s))", capture.id, target.value, len(queue))

        if evicted is not None:
            log.info("Primary queue at capacity, evicted oldest capture %s", evicted.id)
            self._delete_quietly(evicted)
        return target

    def remove(self, path: PathLike) -> bool:
        """Drop the reference to ``path`` without touching the file."""

        key = str(path)
        with self._lock:
            kind = self._find(key)
            if kind is None:
                return False
            self._queues[kind] = [c for c in self._queues[kind] if c.id != key]
            return True

    def delete(self, path: PathLike) -> bool:
        """Delete a queued capture's files and then forget the reference.

        Returns ``False`` without touching storage when ``path`` is not
        queued. :class:`~snapsolve.errors.StorageError` propagates when the
        file cannot be deleted; the reference stays queued in that case.
        """

        if not self.contains(path):
            log.warning("Refusing to delete %s, which is not queued", path)
            return False
        self._storage.delete_capture_files(path)
        return self.remove(path)

    def clear(self, kind: QueueKind = QueueKind.ALL) -> None:
        """Empty ``kind`` and delete the files behind it, best effort."""

        kinds = self._kinds(kind)
        with self._lock:
            dropped: List[Capture] = []
            for k in kinds:
                dropped.extend(self._queues[k])
                self._queues[k] = []
        for capture in dropped:
            self._delete_quietly(capture)
        log.info("Cleared %s queue(s), %d capture(s) dropped", kind.value, len(dropped))

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------
    def list(self, kind: QueueKind = QueueKind.PRIMARY) -> List[Capture]:
        with self._lock:
            items: List[Capture] = []
            for k in self._kinds(kind):
                items.extend(self._queues[k])
            return items

    def size(self, kind: QueueKind = QueueKind.PRIMARY) -> int:
        with self._lock:
            return sum(len(self._queues[k]) for k in self._kinds(kind))

    def contains(self, path: PathLike) -> bool:
        with self._lock:
            return self._find(str(path)) is not None

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    @staticmethod
    def _kinds(kind: QueueKind) -> Iterable[QueueKind]:
        if kind == QueueKind.ALL:
            return (QueueKind.PRIMARY, QueueKind.SECONDARY)
        return (kind,)

    def _find(self, key: str) -> Optional[QueueKind]:
        for kind, queue in self._queues.items():
            if any(c.id == key for c in queue):
                return kind
        return None

    def _delete_quietly(self, capture: Capture) -> None:
        if not self._storage.file_exists(capture.path):
            return
        try:
            self._storage.delete_capture_files(capture.path)
        except StorageError as exc:
            log.error("Error deleting capture %s: %s", capture.id, exc)


__all__ = ["CaptureQueue", "DEFAULT_PRIMARY_CAPACITY"]
