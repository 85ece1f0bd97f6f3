"""Command-line interface for the screenshot analysis pipeline."""
from __future__ import annotations

import argparse
import json
import logging
import shutil
import sys
from pathlib import Path
from typing import Any, Iterable, List, Optional, TextIO

from snapsolve.config import SnapSolveConfig
from snapsolve.coordinator import Coordinator
from snapsolve.errors import SnapSolveError
from snapsolve.events import EventBus, EventRecorder, PipelineEvent
from snapsolve.inbox import watch_inbox
from snapsolve.inference import OllamaBackend
from snapsolve.models import Capture, PipelineState, QueueKind
from snapsolve.storage import SUPPORTED_IMAGE_EXTENSIONS


SESSION_HELP = """Commands:
  c            take a screenshot
  a PATH       queue an existing image
  p            process (solve, debug or regenerate)
  l            list queued captures
  v ID         print a queued capture as a data URL
  d ID         delete a queued capture
  r            reset everything
  q            quit"""


def setup_logging(verbose: bool = False, log_file: Optional[Path] = None) -> None:
    """Configure the root logger."""
    level = logging.DEBUG if verbose else logging.INFO
    handlers: List[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file, encoding="utf-8"))
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(levelname)s - %(message)s",
        handlers=handlers,
        force=True,
    )

    # PIL and urllib3 are chatty at DEBUG; keep them quiet by default.
    if not verbose:
        logging.getLogger("PIL").setLevel(logging.WARNING)
        logging.getLogger("urllib3").setLevel(logging.WARNING)


def payload_to_json(payload: Any) -> Any:
    if payload is None or isinstance(payload, (str, bool)):
        return payload
    if isinstance(payload, Capture):
        return payload.id
    return payload.to_dict()


def print_events(bus: EventBus, stream: TextIO = sys.stdout) -> None:
    """Echo every pipeline event to ``stream`` as one JSON object per line."""

    def _print(event: PipelineEvent, payload: Any) -> None:
        record = {"event": event.value, "payload": payload_to_json(payload)}
        stream.write(json.dumps(record, ensure_ascii=False) + "\n")
        stream.flush()

    bus.subscribe_all(_print)


def load_config(args: argparse.Namespace) -> SnapSolveConfig:
    config = SnapSolveConfig.from_env(env_file=args.env_file)
    return config.replace(
        data_dir=args.data_dir,
        backend=args.backend,
        model=args.model,
        ollama_url=args.ollama_url,
        ocr_whitelist=True if args.ocr_whitelist else None,
    )


def build_coordinator(args: argparse.Namespace, *, echo: bool = True) -> Coordinator:
    config = load_config(args)
    bus = EventBus()
    if echo:
        print_events(bus)
    return Coordinator.from_config(config, events=bus)


def import_images(coordinator: Coordinator, images: Iterable[Path]) -> List[Capture]:
    """Copy ``images`` into capture storage and queue the copies.

    Queued files are owned by the pipeline and may be deleted on eviction or
    reset, so the caller's originals are never queued directly.
    """

    captures = []
    for image in images:
        if not image.is_file():
            raise FileNotFoundError(f"Image not found: {image}")
        if image.suffix.lower() not in SUPPORTED_IMAGE_EXTENSIONS:
            raise ValueError(f"Unsupported image type: {image}")
        target = coordinator.storage.new_capture_path(image.suffix.lower())
        shutil.copy2(image, target)
        capture = Capture(target)
        if coordinator.add_capture(capture) is not None:
            captures.append(capture)
    return captures


def wait_for_run(run: Any, timeout: float) -> None:
    if run is not None and not run.join(timeout):
        logging.error("Pipeline did not finish within %.0f seconds", timeout)


def handle_capture(args: argparse.Namespace) -> int:
    coordinator = build_coordinator(args, echo=False)
    capture = coordinator.trigger_capture()
    if capture is None:
        return 1
    print(capture.path)
    return 0


def handle_solve(args: argparse.Namespace) -> int:
    coordinator = build_coordinator(args)
    recorder = EventRecorder(coordinator.events)
    config = coordinator.config
    run_timeout = config.analysis_timeout + config.solution_timeout + 60

    import_images(coordinator, args.images)
    wait_for_run(coordinator.start_initial(), run_timeout)
    if coordinator.state != PipelineState.SOLUTIONS_READY:
        return 1

    if args.extra:
        import_images(coordinator, args.extra)
        wait_for_run(coordinator.start_debug(), run_timeout)
        if PipelineEvent.DEBUG_ERROR in recorder.kinds():
            return 1

    if args.output is not None:
        result = {
            "problem": payload_to_json(coordinator.problem_info),
            "solution": payload_to_json(coordinator.solution),
        }
        args.output.parent.mkdir(parents=True, exist_ok=True)
        args.output.write_text(json.dumps(result, indent=2, ensure_ascii=False), encoding="utf-8")
        logging.info("Wrote result to %s", args.output)
    return 0


def run_session(coordinator: Coordinator, stream: TextIO = sys.stdin) -> None:
    """Drive ``coordinator`` from line commands read from ``stream``."""

    print(SESSION_HELP, file=sys.stderr)
    for line in stream:
        command, _, argument = line.strip().partition(" ")
        argument = argument.strip()
        try:
            if command == "c":
                coordinator.trigger_capture()
            elif command == "a" and argument:
                import_images(coordinator, [Path(argument).expanduser()])
            elif command == "p":
                coordinator.trigger_process()
            elif command == "l":
                for kind in (QueueKind.PRIMARY, QueueKind.SECONDARY):
                    for capture in coordinator.list_captures(kind):
                        print(f"{kind.value}\t{capture.id}")
            elif command == "v" and argument:
                print(coordinator.capture_preview(argument))
            elif command == "d" and argument:
                ok, error = coordinator.delete_capture(argument)
                if not ok:
                    print(f"delete failed: {error}", file=sys.stderr)
            elif command == "r":
                coordinator.trigger_reset()
            elif command == "q":
                break
            elif command:
                print(SESSION_HELP, file=sys.stderr)
        except (SnapSolveError, FileNotFoundError, ValueError) as exc:
            logging.error("%s", exc)


def handle_session(args: argparse.Namespace) -> int:
    coordinator = build_coordinator(args)
    try:
        run_session(coordinator)
    except KeyboardInterrupt:  # pragma: no cover - manual interruption
        pass
    if args.clear_on_exit:
        coordinator.trigger_reset()
    return 0


def handle_watch(args: argparse.Namespace) -> int:
    coordinator = build_coordinator(args)
    inbox = args.inbox or coordinator.config.data_dir / "inbox"
    watch_inbox(coordinator, inbox, auto_process=args.auto_process, delay=args.delay)
    return 0


def handle_check_model(args: argparse.Namespace) -> int:
    config = load_config(args)
    if config.backend != "ollama":
        logging.info("Backend %s needs no local model", config.backend)
        return 0
    backend = OllamaBackend(config.model, base_url=config.ollama_url)
    if backend.ensure_model(pull=args.pull):
        print(f"Model {config.model} is available")
        return 0
    print(f"Model {config.model} is not available", file=sys.stderr)
    return 1


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging.")
    parser.add_argument("--log-file", type=Path, help="Also write logs to this file.")
    parser.add_argument(
        "--env-file",
        type=Path,
        default=Path(".env"),
        help="File with SNAPSOLVE_* settings (default: .env).",
    )
    parser.add_argument(
        "--data-dir",
        type=Path,
        help="Where screenshots and normalized images are kept (default: ~/.snapsolve).",
    )
    parser.add_argument(
        "--backend",
        choices=["ollama", "openai"],
        help="Inference backend (default: ollama).",
    )
    parser.add_argument("--model", help="Ollama model name.")
    parser.add_argument("--ollama-url", help="Ollama API base URL.")
    parser.add_argument(
        "--ocr-whitelist",
        action="store_true",
        help="Restrict OCR to characters common in source code.",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    capture_parser = subparsers.add_parser("capture", help="Take a screenshot and print its path.")
    capture_parser.set_defaults(func=handle_capture)

    solve_parser = subparsers.add_parser(
        "solve",
        help="Analyse one or more screenshots and generate a solution.",
    )
    solve_parser.add_argument("images", nargs="+", type=Path, help="Screenshots of the problem.")
    solve_parser.add_argument(
        "--extra",
        nargs="+",
        type=Path,
        help="Follow-up screenshots merged into the problem after the first solution.",
    )
    solve_parser.add_argument("--output", type=Path, help="Write the final problem and solution as JSON.")
    solve_parser.set_defaults(func=handle_solve)

    session_parser = subparsers.add_parser("session", help="Interactive capture session on stdin.")
    session_parser.add_argument(
        "--clear-on-exit",
        action="store_true",
        help="Reset and delete all captures when the session ends.",
    )
    session_parser.set_defaults(func=handle_session)

    watch_parser = subparsers.add_parser("watch", help="Queue images dropped into an inbox folder.")
    watch_parser.add_argument("--inbox", type=Path, help="Folder to watch (default: <data-dir>/inbox).")
    watch_parser.add_argument(
        "--auto-process",
        action="store_true",
        help="Start processing once new files stop arriving.",
    )
    watch_parser.add_argument(
        "--delay",
        type=float,
        default=1.5,
        help="Quiet period in seconds before auto-processing (default: 1.5).",
    )
    watch_parser.set_defaults(func=handle_watch)

    check_parser = subparsers.add_parser("check-model", help="Verify the Ollama model is installed.")
    check_parser.add_argument("--pull", action="store_true", help="Pull the model when missing.")
    check_parser.set_defaults(func=handle_check_model)

    return parser


def main(argv: List[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    setup_logging(args.verbose, args.log_file)
    try:
        return args.func(args)
    except (SnapSolveError, FileNotFoundError, ValueError) as exc:
        logging.error("%s", exc)
        return 1


if __name__ == "__main__":
    sys.exit(main())
