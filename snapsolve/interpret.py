"""Turn raw model output into :class:`ProblemInfo` and :class:`SolutionResult`.

Problem parsing tries an ordered list of strategies and keeps the first one
that produces a result:

1. ``json``       an embedded JSON object that parses cleanly
2. ``heuristic``  labelled sections, code fences and example blocks
3. ``fallback``   the first 1000 characters as the description

Each strategy is a plain ``str -> Optional[ProblemInfo]`` function so it can
be exercised on its own. :func:`interpret_problem` never raises; malformed
input degrades to a less structured result instead.
"""
from __future__ import annotations

import json
import logging
import re
from typing import Any, Callable, List, Optional, Sequence, Tuple

from .models import Example, ProblemInfo, SolutionResult

log = logging.getLogger(__name__)

DEFAULT_TITLE = "Code Analysis"
DEFAULT_COMPLEXITY = "O(n)"
FALLBACK_DESCRIPTION_CHARS = 1000
EMPTY_RESPONSE_DESCRIPTION = "The model returned no readable content."

Strategy = Callable[[str], Optional[ProblemInfo]]

_JSON_OBJECT = re.compile(r"\{[\s\S]*\}")
# A JSON object counts as a problem only if it carries one of these.
_PROBLEM_KEYS = {"title", "description", "problem_statement", "code"}
_FENCE = re.compile(r"```([\w\-+.#]*)[ \t]*\n?([\s\S]*?)```")
_TITLE_LABEL = re.compile(r"(?:Title:|Problem:|Question:|Exercise:)\s*([^\n]+)", re.I)
_DESCRIPTION_LABEL = re.compile(
    r"(?:Description:|Problem Statement:|Instructions:)\s*([\s\S]*?)"
    r"(?=Examples?\s*\d*:|Input:|Output:|Constraints:|Code:|Function|$)",
    re.I,
)
_SECTION_MARKER = re.compile(r"Examples?:|Example \d+:|Input:|Output:", re.I)
_EXAMPLE = re.compile(
    r"example\s*\d*\s*:?\s*\n?\s*input\s*:(?P<input>[\s\S]*?)output\s*:(?P<output>[\s\S]*?)"
    r"(?:explanation\s*:(?P<explanation>[\s\S]*?))?(?=example|\n\s*\n|$)",
    re.I,
)
_SIGNATURE = re.compile(r"\"?function[_ ]signature\"?\s*:\s*\"?([^\"\n]*)\"?", re.I)
_LIST_ITEM = re.compile(r"^\s*(?:\d+[.)\-]|[-*•])\s+(.+?)\s*$")
_CODISH = re.compile(r"[{};=\[\]<>]")
_CODE_KEYWORD = re.compile(
    r"^\s*(?:def|func|function|fn|class|return|if|elif|else|for|while|public|private|"
    r"protected|static|void|int|var|let|const|import|from|package|#include)\b"
)
_COMPLEXITY_VALUE = re.compile(r"O\((?:[^()]|\([^()]*\))*\)")
_REFLECTIVE_SECTIONS = (
    re.compile(r"# My Thoughts[\s\S]*?(?=# |## |$)", re.I),
    re.compile(r"## My Thoughts[\s\S]*?(?=# |## |$)", re.I),
    re.compile(r"My Thoughts:[\s\S]*?(?=\n\n|$)", re.I),
    re.compile(r"My Analysis:[\s\S]*?(?=\n\n|$)", re.I),
    re.compile(r"My Approach:[\s\S]*?(?=\n\n|$)", re.I),
    re.compile(r"Thoughts:[\s\S]*?(?=\n\n|$)", re.I),
    re.compile(r"Problem Understanding:[\s\S]*?(?=\n\n|$)", re.I),
    re.compile(r"Problem Analysis:[\s\S]*?(?=\n\n|$)", re.I),
)


# ---------------------------------------------------------------------------
# Field extractors
# ---------------------------------------------------------------------------


def extract_title(text: str) -> Optional[str]:
    match = _TITLE_LABEL.search(text)
    if match and match.group(1).strip():
        return match.group(1).strip()
    for line in text.split("\n")[:3]:
        line = line.strip()
        if 10 < len(line) < 100:
            return line
    return None


def extract_description(text: str) -> Optional[str]:
    match = _DESCRIPTION_LABEL.search(text)
    if match and match.group(1).strip():
        return match.group(1).strip()

    end = len(text)
    fence = text.find("```")
    if fence > 0:
        end = min(end, fence)
    marker = _SECTION_MARKER.search(text)
    if marker and marker.start() > 0:
        end = min(end, marker.start())
    return text[:end].strip() or None


def fenced_blocks(text: str) -> List[Tuple[str, str]]:
    """Return ``(language, body)`` for every fenced code block."""

    return [(m.group(1).strip(), m.group(2).strip()) for m in _FENCE.finditer(text)]


def _looks_like_code(line: str) -> bool:
    if not line.strip():
        return False
    if line.startswith("    ") or line.startswith("\t"):
        return True
    return bool(_CODISH.search(line) or _CODE_KEYWORD.match(line))


def unfenced_code_blocks(text: str) -> List[str]:
    """Group contiguous indented or symbol-heavy lines into code blocks."""

    blocks: List[str] = []
    current: List[str] = []
    for line in text.split("\n"):
        if _looks_like_code(line):
            current.append(line)
        elif current and not line.strip():
            current.append(line)
        elif current:
            blocks.append("\n".join(current).rstrip())
            current = []
    if current:
        blocks.append("\n".join(current).rstrip())
    return [block for block in blocks if block.strip()]


def extract_code(text: str) -> str:
    blocks = fenced_blocks(text)
    if blocks:
        return "\n\n".join(body for _, body in blocks)
    return "\n\n".join(unfenced_code_blocks(text))


def extract_examples(text: str) -> List[Example]:
    return [
        Example(
            input=(m.group("input") or "").strip(),
            output=(m.group("output") or "").strip(),
            explanation=(m.group("explanation") or "").strip(),
        )
        for m in _EXAMPLE.finditer(text)
    ]


def extract_list(text: str, field_name: str) -> List[str]:
    """Read ``field_name`` as an inline array or as a labelled bullet list."""

    inline = re.search(rf"\"?{re.escape(field_name)}\"?\s*:\s*\[(.*?)\]", text, re.I | re.S)
    if inline:
        raw = inline.group(1)
        try:
            parsed = json.loads(f"[{raw}]")
        except ValueError:
            parsed = [item.strip().strip("\"'") for item in raw.split(",")]
        return [str(item).strip() for item in parsed if str(item).strip()]

    # "Constraints", "**Constraints:**" or "Constraints: 1 <= n <= 10"
    pattern = (
        rf"^[ \t]*#*[ \t]*[*_]*{re.escape(field_name)}[*_]*[ \t]*(?P<colon>:?)"
        r"[ \t]*[*_]*[ \t]*(?P<rest>.*?)[ \t]*$"
    )
    label = next(
        (m for m in re.finditer(pattern, text, re.I | re.M) if m.group("colon") or not m.group("rest")),
        None,
    )
    if not label:
        return []
    items: List[str] = [label.group("rest")] if label.group("rest") else []
    for line in text[label.end():].split("\n")[1:]:
        if not line.strip():
            if items:
                break
            continue
        match = _LIST_ITEM.match(line)
        if not match:
            break
        items.append(match.group(1))
    return items


def extract_function_signature(text: str) -> str:
    match = _SIGNATURE.search(text)
    return match.group(1).strip() if match else ""


# ---------------------------------------------------------------------------
# Problem strategies
# ---------------------------------------------------------------------------


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value.strip()
    return json.dumps(value, ensure_ascii=False)


def _as_examples(value: Any) -> List[Example]:
    if not isinstance(value, list):
        return []
    examples: List[Example] = []
    for item in value:
        if isinstance(item, dict):
            examples.append(
                Example(
                    input=_as_text(item.get("input")),
                    output=_as_text(item.get("output")),
                    explanation=_as_text(item.get("explanation")),
                )
            )
        elif item is not None:
            examples.append(Example(input=_as_text(item)))
    return examples


def _as_strings(value: Any) -> List[str]:
    if isinstance(value, list):
        return [_as_text(item) for item in value if _as_text(item)]
    if isinstance(value, str) and value.strip():
        return [value.strip()]
    return []


def parse_json(text: str) -> Optional[ProblemInfo]:
    match = _JSON_OBJECT.search(text)
    if not match:
        return None
    try:
        data = json.loads(match.group(0))
    except ValueError:
        log.debug("Embedded JSON did not parse cleanly")
        return None
    if not isinstance(data, dict) or not _PROBLEM_KEYS.intersection(data):
        return None
    description = _as_text(data.get("description") or data.get("problem_statement"))
    return ProblemInfo(
        title=_as_text(data.get("title")) or DEFAULT_TITLE,
        description=description or text.strip()[:FALLBACK_DESCRIPTION_CHARS],
        code=_as_text(data.get("code")),
        examples=_as_examples(data.get("examples")),
        constraints=_as_strings(data.get("constraints")),
        function_signature=_as_text(data.get("function_signature")),
        original_problem=text,
    )


def parse_heuristic(text: str) -> Optional[ProblemInfo]:
    if not text.strip():
        return None
    return ProblemInfo(
        title=extract_title(text) or DEFAULT_TITLE,
        description=extract_description(text) or text.strip(),
        code=extract_code(text),
        examples=extract_examples(text),
        constraints=extract_list(text, "constraints"),
        function_signature=extract_function_signature(text),
        original_problem=text,
    )


def parse_fallback(text: str) -> Optional[ProblemInfo]:
    description = text.strip()[:FALLBACK_DESCRIPTION_CHARS]
    return ProblemInfo(
        title=DEFAULT_TITLE,
        description=description or EMPTY_RESPONSE_DESCRIPTION,
        original_problem=text,
    )


PROBLEM_STRATEGIES: Sequence[Tuple[str, Strategy]] = (
    ("json", parse_json),
    ("heuristic", parse_heuristic),
    ("fallback", parse_fallback),
)


def interpret_problem(
    text: Optional[str],
    strategies: Sequence[Tuple[str, Strategy]] = PROBLEM_STRATEGIES,
) -> ProblemInfo:
    """Return the first successful strategy's result for ``text``."""

    text = text or ""
    for name, strategy in strategies:
        try:
            result = strategy(text)
        except Exception:  # a strategy bug must not fail the pipeline
            log.exception("Problem strategy '%s' crashed; trying the next one", name)
            continue
        if result is not None:
            log.info("Problem info extracted with '%s' strategy", name)
            return result
    return ProblemInfo(title=DEFAULT_TITLE, description=EMPTY_RESPONSE_DESCRIPTION, original_problem=text)


# ---------------------------------------------------------------------------
# Solutions
# ---------------------------------------------------------------------------


def strip_reflective_sections(text: str) -> str:
    """Remove "My Thoughts"/"Analysis"/"Approach" style sections."""

    cleaned = text
    for pattern in _REFLECTIVE_SECTIONS:
        stripped = pattern.sub("", cleaned)
        if stripped != cleaned:
            log.debug("Removed reflective section matching %s", pattern.pattern)
        cleaned = stripped
    return cleaned.strip()


def extract_complexity(text: str, kind: str) -> str:
    match = re.search(rf"{kind}\s+complexity[^\n:]*?[:\-=]?\s*([^\n]*)", text, re.I)
    if not match:
        return DEFAULT_COMPLEXITY
    value = _COMPLEXITY_VALUE.search(match.group(1))
    if value:
        return value.group(0)
    remainder = match.group(1).strip(" *`.")
    return remainder[:80] if remainder else DEFAULT_COMPLEXITY


def extract_thoughts(text: str) -> List[str]:
    fence = text.find("```")
    prose = text if fence < 0 else text[:fence]
    paragraphs = (p.strip() for p in re.split(r"\n\s*\n", prose))
    return [p for p in paragraphs if len(p) > 10]


def interpret_solution(text: Optional[str]) -> SolutionResult:
    """Build a :class:`SolutionResult`; never raises."""

    text = text or ""
    language = "auto"
    blocks = fenced_blocks(text)
    if blocks:
        language, code = max(blocks, key=lambda block: len(block[1]))
        language = language or "auto"
    else:
        unfenced = unfenced_code_blocks(text)
        code = max(unfenced, key=len) if unfenced else text.strip()

    return SolutionResult(
        code=code,
        thoughts=extract_thoughts(text),
        time_complexity=extract_complexity(text, "time"),
        space_complexity=extract_complexity(text, "space"),
        solution=strip_reflective_sections(text),
        language=language,
    )


__all__ = [
    "PROBLEM_STRATEGIES",
    "extract_code",
    "extract_complexity",
    "extract_description",
    "extract_examples",
    "extract_function_signature",
    "extract_list",
    "extract_thoughts",
    "extract_title",
    "fenced_blocks",
    "interpret_problem",
    "interpret_solution",
    "parse_fallback",
    "parse_heuristic",
    "parse_json",
    "strip_reflective_sections",
    "unfenced_code_blocks",
]
