"""Capture-to-solution orchestration.

The :class:`Coordinator` owns the capture queues, the view state, the live
problem and solution, and one cancellation token per pipeline kind. Two
pipelines exist:

initial
    normalize -> OCR every primary capture in queue order -> analysis call
    -> parse ProblemInfo -> publish, switch to the solutions view -> solution
    call -> parse SolutionResult -> publish.
debug
    normalize -> image analysis call for every secondary capture in queue
    order -> merge the analyses into ``ProblemInfo.extra_info`` -> publish.

Starting a run cancels the previous run of the same kind. A run checks its
token before each capture and before each network call, and it publishes
only while it is still the registered run of its kind, so a superseded or
reset run goes quiet without emitting errors.
"""
from __future__ import annotations

import itertools
import json
import logging
import threading
from dataclasses import dataclass, field
from functools import partial
from pathlib import Path
from typing import Callable, Dict, List, Optional, Protocol, Tuple, Union

from .cancellation import CancellationToken
from .capture_queue import CaptureQueue
from .config import SnapSolveConfig
from .errors import PipelineCancelled, SnapSolveError, StorageError
from .events import EventBus, PipelineEvent
from .inference import InferenceBackend, InferenceRequest, OllamaBackend
from .interpret import interpret_problem, interpret_solution
from .models import (
    Capture,
    PipelineKind,
    PipelineState,
    ProblemInfo,
    QueueKind,
    SolutionResult,
    ViewState,
)
from .ocr import CODE_CHAR_WHITELIST, TesseractRecognizer
from .preprocessing import normalize_image
from .screenshot import capture_full_screen
from .storage import CaptureStorage

log = logging.getLogger(__name__)

PathLike = Union[str, Path]

NO_PROBLEM_MESSAGE = "No problem information available to enhance."
NO_EXTRA_CAPTURES_MESSAGE = "No extra captures to process. Take additional screenshots first."


class Recognizer(Protocol):
    def recognize(self, image_path: PathLike) -> str:
        ...


@dataclass
class PipelineRun:
    """One execution of a pipeline over a snapshot of its queue."""

    kind: PipelineKind
    token: CancellationToken
    captures: List[Capture]
    _done: threading.Event = field(default_factory=threading.Event, repr=False)

    @property
    def done(self) -> bool:
        return self._done.is_set()

    def join(self, timeout: Optional[float] = None) -> bool:
        return self._done.wait(timeout)


def solution_prompt(problem: ProblemInfo) -> str:
    """Minimal JSON context sent with the solution request."""

    context = {"title": problem.title, "description": problem.description, "code": problem.code}
    if problem.extra_info:
        context["extra_info"] = problem.extra_info
    return json.dumps(context, ensure_ascii=False)


class Coordinator:
    def __init__(
        self,
        storage: CaptureStorage,
        recognizer: Recognizer,
        backend: InferenceBackend,
        *,
        config: Optional[SnapSolveConfig] = None,
        events: Optional[EventBus] = None,
        queue: Optional[CaptureQueue] = None,
        normalizer: Optional[Callable[[Path], Path]] = None,
        screen_capturer: Optional[Callable[[CaptureStorage], Path]] = None,
        run_async: bool = True,
    ) -> None:
        self.config = config or SnapSolveConfig(data_dir=storage.root)
        self.storage = storage
        self.recognizer = recognizer
        self.backend = backend
        self.events = events or EventBus()
        self.queue = queue or CaptureQueue(storage, primary_capacity=self.config.primary_capacity)
        self._normalize = normalizer or partial(
            normalize_image,
            output_dir=storage.normalized_dir,
            options=self.config.normalization_options(),
        )
        self._capture_screen = screen_capturer or capture_full_screen
        self._run_async = run_async

        self._lock = threading.RLock()
        self._view = ViewState.QUEUE
        self._stable = PipelineState.IDLE
        self._runs: Dict[PipelineKind, PipelineRun] = {}
        self._problem: Optional[ProblemInfo] = None
        self._solution: Optional[SolutionResult] = None
        self._capture_in_progress = False
        self._has_debugged = False
        self._run_ids = itertools.count(1)

    @classmethod
    def from_config(cls, config: SnapSolveConfig, *, events: Optional[EventBus] = None) -> "Coordinator":
        storage = CaptureStorage(config.data_dir)
        recognizer = TesseractRecognizer(
            lang=config.ocr_lang,
            psm=config.psm,
            whitelist=CODE_CHAR_WHITELIST if config.ocr_whitelist else None,
            min_confidence=config.ocr_min_confidence,
            tesseract_cmd=config.tesseract_cmd,
        )
        if config.backend == "openai":
            from .gpt_inference import GPTInferenceBackend

            backend: InferenceBackend = GPTInferenceBackend(
                model=config.openai_model, max_output_tokens=config.num_predict
            )
        else:
            backend = OllamaBackend(config.model, base_url=config.ollama_url)
        return cls(storage, recognizer, backend, config=config, events=events)

    # ------------------------------------------------------------------
    # Read-only state
    # ------------------------------------------------------------------
    @property
    def view(self) -> ViewState:
        with self._lock:
            return self._view

    @property
    def state(self) -> PipelineState:
        with self._lock:
            if PipelineKind.INITIAL in self._runs:
                return PipelineState.INITIAL_RUNNING
            if PipelineKind.DEBUG in self._runs:
                return PipelineState.DEBUG_RUNNING
            return self._stable

    @property
    def problem_info(self) -> Optional[ProblemInfo]:
        with self._lock:
            return self._problem

    @property
    def solution(self) -> Optional[SolutionResult]:
        with self._lock:
            return self._solution

    @property
    def has_debugged(self) -> bool:
        with self._lock:
            return self._has_debugged

    def active_run(self, kind: PipelineKind) -> Optional[PipelineRun]:
        with self._lock:
            return self._runs.get(kind)

    def wait_until_idle(self, timeout: Optional[float] = None) -> bool:
        with self._lock:
            runs = list(self._runs.values())
        return all(run.join(timeout) for run in runs)

    # ------------------------------------------------------------------
    # Commands from the UI boundary
    # ------------------------------------------------------------------
    def trigger_capture(self) -> Optional[Capture]:
        """Take a screenshot and queue it; ``None`` if one is already running."""

        with self._lock:
            if self._capture_in_progress:
                log.info("Capture already in progress, ignoring trigger")
                return None
            self._capture_in_progress = True
        self.events.emit(PipelineEvent.CAPTURE_IN_PROGRESS, True)
        try:
            path = self._capture_screen(self.storage)
            capture = Capture(Path(path))
            self.add_capture(capture)
        finally:
            with self._lock:
                self._capture_in_progress = False
            self.events.emit(PipelineEvent.CAPTURE_IN_PROGRESS, False)
        return capture

    def add_capture(self, capture: Union[Capture, PathLike]) -> Optional[QueueKind]:
        """Queue an existing image; routing follows the current view."""

        if not isinstance(capture, Capture):
            capture = Capture(Path(capture))
        with self._lock:
            view = self._view
        target = self.queue.enqueue(capture, view)
        if target is not None:
            self.events.emit(PipelineEvent.CAPTURE_TAKEN, capture)
        return target

    def trigger_process(self) -> Optional[PipelineRun]:
        with self._lock:
            view = self._view
        if view == ViewState.QUEUE:
            return self.start_initial()
        if self.queue.size(QueueKind.SECONDARY):
            return self.start_debug()
        log.info("No extra captures queued; regenerating the solution")
        return self.start_initial()

    def trigger_reset(self) -> None:
        """Cancel everything, drop all captures and return to the queue view."""

        with self._lock:
            for run in self._runs.values():
                run.token.cancel()
            self._runs.clear()
            self._problem = None
            self._solution = None
            self._stable = PipelineState.IDLE
            self._view = ViewState.QUEUE
            self._has_debugged = False
            self.queue.clear(QueueKind.ALL)
        log.info("Coordinator reset")
        self.events.emit(PipelineEvent.RESET)

    def delete_capture(self, capture_id: PathLike) -> Tuple[bool, Optional[str]]:
        try:
            removed = self.queue.delete(capture_id)
        except StorageError as exc:
            log.error("Error deleting capture: %s", exc)
            return False, str(exc)
        if not removed:
            return False, f"Capture not queued: {capture_id}"
        return True, None

    def list_captures(self, kind: QueueKind = QueueKind.PRIMARY) -> List[Capture]:
        return self.queue.list(kind)

    def capture_preview(self, capture_id: PathLike) -> str:
        """Data URL of a queued capture for display."""

        if not self.queue.contains(capture_id):
            raise StorageError(f"Capture not queued: {capture_id}")
        return self.storage.preview(capture_id)

    # ------------------------------------------------------------------
    # Run management
    # ------------------------------------------------------------------
    def start_initial(self) -> Optional[PipelineRun]:
        with self._lock:
            captures = self.queue.list(QueueKind.PRIMARY)
            if not captures:
                log.info("No captures to process")
                self.events.emit(PipelineEvent.NO_CAPTURES)
                return None
            run = self._register(PipelineKind.INITIAL, captures)
            self.events.emit(PipelineEvent.INITIAL_START)
        self._launch(run, self._run_initial)
        return run

    def start_debug(self) -> Optional[PipelineRun]:
        with self._lock:
            if self._problem is None:
                self.events.emit(PipelineEvent.DEBUG_ERROR, NO_PROBLEM_MESSAGE)
                return None
            captures = self.queue.list(QueueKind.SECONDARY)
            if not captures:
                self.events.emit(PipelineEvent.DEBUG_ERROR, NO_EXTRA_CAPTURES_MESSAGE)
                return None
            run = self._register(PipelineKind.DEBUG, captures)
            self.events.emit(PipelineEvent.DEBUG_START)
        self._launch(run, self._run_debug)
        return run

    def _register(self, kind: PipelineKind, captures: List[Capture]) -> PipelineRun:
        previous = self._runs.get(kind)
        if previous is not None:
            log.info("Cancelling previous %s run %s", kind.value, previous.token.label)
            previous.token.cancel()
        token = CancellationToken(f"{kind.value}-{next(self._run_ids)}")
        run = PipelineRun(kind=kind, token=token, captures=captures)
        self._runs[kind] = run
        log.info("Starting %s run %s over %d capture(s)", kind.value, token.label, len(captures))
        return run

    def _launch(self, run: PipelineRun, target: Callable[[PipelineRun], None]) -> None:
        def _body() -> None:
            try:
                target(run)
            except PipelineCancelled:
                log.info("Run %s cancelled", run.token.label)
            except SnapSolveError as exc:
                log.exception("Run %s failed", run.token.label)
                self._fail(run, str(exc))
            except Exception as exc:
                log.exception("Unexpected failure in run %s", run.token.label)
                self._fail(run, str(exc) or type(exc).__name__)
            finally:
                run._done.set()

        if self._run_async:
            threading.Thread(target=_body, name=run.token.label, daemon=True).start()
        else:
            _body()

    def _is_current(self, run: PipelineRun) -> bool:
        return not run.token.cancelled and self._runs.get(run.kind) is run

    def _fail(self, run: PipelineRun, message: str) -> None:
        with self._lock:
            if not self._is_current(run):
                return
            del self._runs[run.kind]
            if run.kind == PipelineKind.INITIAL:
                if self._problem is None:
                    self._stable = PipelineState.IDLE
                    self._view = ViewState.QUEUE
                elif self._stable == PipelineState.IDLE:
                    self._stable = PipelineState.SOLUTIONS_READY
                self.events.emit(PipelineEvent.SOLUTION_ERROR, message)
            else:
                self.events.emit(PipelineEvent.DEBUG_ERROR, message)

    # ------------------------------------------------------------------
    # Pipelines
    # ------------------------------------------------------------------
    def _run_initial(self, run: PipelineRun) -> None:
        token = run.token
        normalized: List[Path] = []
        texts: List[str] = []
        for index, capture in enumerate(run.captures, start=1):
            token.raise_if_cancelled("preprocessing")
            log.info("Processing capture %d of %d: %s", index, len(run.captures), capture.id)
            path = self._normalize(capture.path)
            normalized.append(path)
            token.raise_if_cancelled("recognition")
            text = self.recognizer.recognize(path)
            log.debug("Recognized %d characters from %s", len(text), capture.id)
            texts.append(text)

        combined = "\n\n".join(text.strip() for text in texts if text.strip())
        if combined:
            request = InferenceRequest(prompt=combined, temperature=self.config.analysis_temperature)
        else:
            log.warning("OCR found no text; sending the images for analysis instead")
            request = InferenceRequest(images=normalized, temperature=self.config.analysis_temperature)

        token.raise_if_cancelled("analysis")
        raw = self.backend.infer(request, token, self.config.analysis_timeout)
        problem = interpret_problem(raw)

        with self._lock:
            if not self._is_current(run):
                raise PipelineCancelled(f"Run {token.label} superseded")
            self._problem = problem
            self._solution = None
            self._view = ViewState.SOLUTIONS
            self.events.emit(PipelineEvent.PROBLEM_EXTRACTED, problem)

        token.raise_if_cancelled("solution")
        log.info("Generating solution for: %s", problem.title)
        raw_solution = self.backend.infer(
            InferenceRequest(
                prompt=solution_prompt(problem),
                temperature=self.config.solution_temperature,
                num_predict=self.config.num_predict,
            ),
            token,
            self.config.solution_timeout,
        )
        solution = interpret_solution(raw_solution)

        with self._lock:
            if not self._is_current(run):
                raise PipelineCancelled(f"Run {token.label} superseded")
            self._solution = solution
            self._stable = PipelineState.SOLUTIONS_READY
            del self._runs[run.kind]
            self.events.emit(PipelineEvent.SOLUTION_READY, solution)

    def _run_debug(self, run: PipelineRun) -> None:
        token = run.token
        analyses: List[str] = []
        for index, capture in enumerate(run.captures, start=1):
            token.raise_if_cancelled("preprocessing")
            log.info("Processing extra capture %d of %d: %s", index, len(run.captures), capture.id)
            path = self._normalize(capture.path)
            token.raise_if_cancelled("analysis")
            analyses.append(
                self.backend.infer(
                    InferenceRequest(images=[path], temperature=self.config.analysis_temperature),
                    token,
                    self.config.analysis_timeout,
                )
            )

        extra_info = "\n\n".join(text.strip() for text in analyses if text.strip())
        with self._lock:
            if not self._is_current(run):
                raise PipelineCancelled(f"Run {token.label} superseded")
            if self._problem is None:
                raise PipelineCancelled(f"Run {token.label} lost its problem")
            self._problem = self._problem.with_extra_info(extra_info)
            self._stable = PipelineState.DEBUG_READY
            self._view = ViewState.DEBUG
            self._has_debugged = True
            del self._runs[run.kind]
            self.events.emit(PipelineEvent.DEBUG_READY, self._problem)


__all__ = ["Coordinator", "PipelineRun", "Recognizer", "solution_prompt"]
