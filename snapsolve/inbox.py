"""Folder watcher that queues images dropped into an inbox directory."""
from __future__ import annotations

import logging
import threading
import time
from pathlib import Path
from typing import Callable, Optional

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from .coordinator import Coordinator
from .storage import SUPPORTED_IMAGE_EXTENSIONS

log = logging.getLogger(__name__)


class DebouncedRunner:
    """Run ``callback`` after a quiet period to coalesce rapid file events."""

    def __init__(self, callback: Callable[[], None], delay: float = 1.5) -> None:
        self._callback = callback
        self._delay = delay
        self._timer: Optional[threading.Timer] = None
        self._lock = threading.Lock()

    def trigger(self) -> None:
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
            self._timer = threading.Timer(self._delay, self._run)
            self._timer.daemon = True
            self._timer.start()

    def cancel(self) -> None:
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None

    def _run(self) -> None:
        try:
            self._callback()
        finally:
            with self._lock:
                self._timer = None


def is_image(path: Path) -> bool:
    return path.suffix.lower() in SUPPORTED_IMAGE_EXTENSIONS


class InboxHandler(FileSystemEventHandler):
    """Watchdog handler that hands new image files to ``on_image``."""

    def __init__(
        self,
        on_image: Callable[[Path], None],
        on_change: Optional[Callable[[], None]] = None,
    ) -> None:
        super().__init__()
        self._on_image = on_image
        self._on_change = on_change

    def on_created(self, event: FileSystemEvent) -> None:  # noqa: D401 - watchdog API
        self._handle(event)

    def on_moved(self, event: FileSystemEvent) -> None:  # noqa: D401 - watchdog API
        self._handle(event)

    def _handle(self, event: FileSystemEvent) -> None:
        if event.is_directory:
            return
        path = Path(getattr(event, "dest_path", None) or event.src_path)
        if not is_image(path):
            return
        log.info("Detected new capture: %s", path.name)
        self._on_image(path)
        if self._on_change is not None:
            self._on_change()


def build_handler(
    coordinator: Coordinator,
    *,
    auto_process: bool = False,
    delay: float = 1.5,
) -> InboxHandler:
    """Wire an :class:`InboxHandler` to ``coordinator``.

    With ``auto_process`` a burst of new files starts a single pipeline run
    once the folder has been quiet for ``delay`` seconds.
    """

    runner = DebouncedRunner(coordinator.trigger_process, delay) if auto_process else None
    return InboxHandler(
        lambda path: coordinator.add_capture(path),
        runner.trigger if runner is not None else None,
    )


def queue_existing(coordinator: Coordinator, inbox: Path) -> int:
    """Queue images already sitting in ``inbox``, oldest first."""

    pending = sorted(
        (p for p in inbox.iterdir() if p.is_file() and is_image(p)),
        key=lambda p: p.stat().st_mtime,
    )
    queued = sum(1 for path in pending if coordinator.add_capture(path) is not None)
    if pending:
        log.info("Queued %d of %d pending image(s) from %s", queued, len(pending), inbox)
    return queued


def watch_inbox(
    coordinator: Coordinator,
    inbox: Path,
    *,
    auto_process: bool = False,
    delay: float = 1.5,
    stop: Optional[threading.Event] = None,
) -> None:
    """Block while watching ``inbox`` until interrupted or ``stop`` is set."""

    inbox.mkdir(parents=True, exist_ok=True)
    queue_existing(coordinator, inbox)

    handler = build_handler(coordinator, auto_process=auto_process, delay=delay)
    observer = Observer()
    observer.schedule(handler, str(inbox), recursive=False)
    observer.start()
    log.info("Watching %s for new captures...", inbox)

    try:
        while stop is None or not stop.is_set():
            time.sleep(0.5)
    except KeyboardInterrupt:  # pragma: no cover - manual interruption
        log.info("Shutting down inbox watcher...")
    finally:
        observer.stop()
        observer.join()


__all__ = ["DebouncedRunner", "InboxHandler", "build_handler", "queue_existing", "watch_inbox"]
