"""
JSON extraction from raw model output.

Model output routinely arrives wrapped in markdown fences, prefixed with
labels ("JSON:", "תוכנית:") or surrounded by prose. `extract_json` locates
the JSON object inside that noise without trying to parse it.

Strategy, in order:
1. Trim whitespace and strip a leading byte-order mark
2. Already a bare object: return as-is
3. First fenced code block holding an object (```json preferred over other fences)
4. Strip known label prefixes and any prose before the first "{"
5. Longest balanced {...} span, scanning left to right
6. Otherwise raise JsonExtractError with a truncated sample
"""

import logging
import re
from typing import Optional, Tuple

from coachplan.errors import JsonExtractError, truncate_sample

logger = logging.getLogger(__name__)

BOM = "\ufeff"

FENCE_PATTERNS = [
    re.compile(r"```json\s*\n?(.*?)\n?```", re.DOTALL | re.IGNORECASE),
    re.compile(r"```(?:[A-Za-z]+)?\s*\n?(.*?)\n?```", re.DOTALL),
]

KNOWN_PREFIXES = ["JSON:", "Output:", "Response:", "תזונה:", "תוכנית:"]


def _log_step(debug: bool, step: str, before: str, after: str) -> None:
    if debug:
        logger.debug(
            "extract: %s | before=%r | after=%r", step, before[:100], after[:100]
        )


def _is_bare_object(text: str) -> bool:
    return text.startswith("{") and text.endswith("}")


def _match_from(text: str, start: int) -> Optional[int]:
    """
    Walk forward from the "{" at `start` until brace depth returns to zero.

    Braces inside double-quoted strings are ignored. Returns the index one
    past the closing brace, or None when the object never closes.
    """
    depth = 0
    in_string = False
    escaped = False

    for j in range(start, len(text)):
        ch = text[j]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue

        if ch == '"':
            in_string = True
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return j + 1

    return None


def longest_balanced_span(text: str) -> Optional[Tuple[int, int]]:
    """
    Find the longest balanced {...} span in `text`.

    Spans nested inside an already matched span are shorter than it, so the
    scan resumes after the end of each match.

    Returns:
        (start, end) slice bounds, or None if no "{" ever closes
    """
    best: Optional[Tuple[int, int]] = None
    i = 0
    n = len(text)

    while i < n:
        if text[i] != "{":
            i += 1
            continue

        end = _match_from(text, i)
        if end is None:
            i += 1
            continue

        if best is None or (end - i) > (best[1] - best[0]):
            best = (i, end)
        i = end

    return best


def _from_fence(text: str) -> Optional[str]:
    for pattern in FENCE_PATTERNS:
        for match in pattern.finditer(text):
            inner = match.group(1).strip()
            if _is_bare_object(inner):
                return inner
            # Fence with prose around the object: narrow to the object itself
            span = longest_balanced_span(inner)
            if span is not None:
                return inner[span[0]:span[1]]
    # No fence holds an object; the caller falls back to brace scanning
    return None


def extract_json(raw: str, debug: bool = False) -> str:
    """
    Pull a JSON object out of noisy model output.

    Args:
        raw: Text returned by the generation call
        debug: Log every strategy that changed the text

    Returns:
        Brace-balanced text believed to hold a JSON object

    Raises:
        JsonExtractError: If no balanced object exists in the text
    """
    text = (raw or "").strip()

    if text.startswith(BOM):
        before = text
        text = text.lstrip(BOM).strip()
        _log_step(debug, "removed BOM", before, text)

    if _is_bare_object(text):
        return text

    fenced = _from_fence(text)
    if fenced is not None:
        _log_step(debug, "extracted from code fence", text, fenced)
        return fenced

    for prefix in KNOWN_PREFIXES:
        if text.startswith(prefix):
            before = text
            text = text[len(prefix):].strip()
            _log_step(debug, f"removed prefix {prefix!r}", before, text)
            break

    first_brace = text.find("{")
    if first_brace > 0:
        before = text
        text = text[first_brace:]
        _log_step(debug, "removed text before first brace", before, text)

    span = longest_balanced_span(text)
    if span is not None:
        extracted = text[span[0]:span[1]]
        _log_step(debug, "extracted via brace matching", text, extracted)
        return extracted

    raise JsonExtractError(
        "Could not extract valid JSON from model output",
        sample=truncate_sample(text),
    )
