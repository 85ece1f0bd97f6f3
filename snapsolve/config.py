"""Runtime configuration assembled from defaults, ``.env`` and the environment."""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

from .capture_queue import DEFAULT_PRIMARY_CAPACITY
from .inference import ANALYSIS_TIMEOUT, DEFAULT_BASE, DEFAULT_MODEL, SOLUTION_TIMEOUT
from .preprocessing import NormalizationOptions

log = logging.getLogger(__name__)

ENV_PREFIX = "SNAPSOLVE_"
DEFAULT_DATA_DIR = Path.home() / ".snapsolve"


def load_dotenv(env_path: Path = Path(".env")) -> None:
    """Populate :mod:`os.environ` with variables declared in ``env_path``.

    Only ``KEY=VALUE`` assignments are supported and existing environment
    variables always take precedence.
    """

    try:
        if not env_path.exists():
            return
        lines = env_path.read_text(encoding="utf-8").splitlines()
    except OSError as exc:
        log.warning("Unable to read %s: %s", env_path, exc)
        return
    for line in lines:
        line = line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        key = key.strip()
        if not key or key in os.environ:
            continue
        os.environ[key] = value.strip().strip('"').strip("'")


@dataclass
class SnapSolveConfig:
    """Every tunable of the capture and analysis pipeline."""

    data_dir: Path = DEFAULT_DATA_DIR
    backend: str = "ollama"
    model: str = DEFAULT_MODEL
    ollama_url: str = DEFAULT_BASE
    openai_model: str = "gpt-4o-mini"
    analysis_timeout: float = ANALYSIS_TIMEOUT
    solution_timeout: float = SOLUTION_TIMEOUT
    analysis_temperature: float = 0.1
    solution_temperature: float = 0.7
    num_predict: int = 2048
    primary_capacity: int = DEFAULT_PRIMARY_CAPACITY
    target_size: int = 1600
    fallback_size: int = 1000
    psm: int = 6
    ocr_lang: str = "eng"
    ocr_whitelist: bool = False
    ocr_min_confidence: float = 0.0
    tesseract_cmd: Optional[str] = None

    def __post_init__(self) -> None:
        self.data_dir = Path(self.data_dir).expanduser()
        if self.backend not in ("ollama", "openai"):
            raise ValueError(f"Unknown backend {self.backend!r}; expected 'ollama' or 'openai'")
        if self.analysis_timeout <= 0 or self.solution_timeout <= 0:
            raise ValueError("Timeouts must be positive")

    def normalization_options(self) -> NormalizationOptions:
        return NormalizationOptions(target_size=self.target_size, fallback_size=self.fallback_size)

    def replace(self, **overrides: Any) -> "SnapSolveConfig":
        """Return a copy with every non-``None`` override applied."""

        values = {f.name: getattr(self, f.name) for f in fields(self)}
        values.update({k: v for k, v in overrides.items() if v is not None})
        return SnapSolveConfig(**values)

    @classmethod
    def from_env(
        cls,
        environ: Optional[Mapping[str, str]] = None,
        *,
        env_file: Optional[Path] = Path(".env"),
    ) -> "SnapSolveConfig":
        """Build a config from ``SNAPSOLVE_*`` variables.

        ``SNAPSOLVE_ANALYSIS_TIMEOUT=60`` sets ``analysis_timeout`` and so on.
        """

        if environ is None:
            if env_file is not None:
                load_dotenv(env_file)
            environ = os.environ

        values: Dict[str, Any] = {}
        for f in fields(cls):
            raw = environ.get(ENV_PREFIX + f.name.upper())
            if raw is None or raw == "":
                continue
            default = getattr(cls, f.name, None)
            try:
                if isinstance(default, bool):
                    values[f.name] = raw.lower() in ("1", "true", "yes", "on")
                elif isinstance(default, int):
                    values[f.name] = int(raw)
                elif isinstance(default, float):
                    values[f.name] = float(raw)
                elif isinstance(default, Path):
                    values[f.name] = Path(raw)
                else:
                    values[f.name] = raw
            except ValueError as exc:
                raise ValueError(f"Invalid value for {ENV_PREFIX}{f.name.upper()}: {raw!r}") from exc
        return cls(**values)


__all__ = ["DEFAULT_DATA_DIR", "ENV_PREFIX", "SnapSolveConfig", "load_dotenv"]
