"""
Deterministic textual repairs applied before JSON parsing.

Every step is triggered only when its pattern matches, and the whole stage
is idempotent: repairing already-repaired text changes nothing.
"""

import logging
import re
from typing import Callable, List, Tuple, Union

logger = logging.getLogger(__name__)

SMART_DOUBLE_QUOTES = re.compile("[“”„‟″]")
SMART_SINGLE_QUOTES = re.compile("[‘’‚‛′]")

# One or more commas followed only by whitespace and a closing bracket.
TRAILING_COMMAS = re.compile(r"(?:,\s*)+([}\]])")

# A quoted number with a unit, as the value of a key that should be numeric:
#   "calories": "2200 kcal"  ->  "calories": 2200
NUMBER_WITH_UNIT = re.compile(
    r'("(?:calories|kcal|total_calories|quantity|sets|water_l|amount|amount_g'
    r'|[A-Za-z]+_g|[A-Za-z]+_seconds)"\s*:\s*)'
    r'"(\d+(?:\.\d+)?)\s*[^\W\d_]+\.?"'
)

MULTI_NEWLINES = re.compile(r"\n{3,}")

Replacement = Union[str, Callable[[re.Match], str]]


def _number_only(match: re.Match) -> str:
    return f"{match.group(1)}{match.group(2)}"


REPAIR_STEPS: List[Tuple[str, re.Pattern, Replacement]] = [
    ("normalized smart double quotes", SMART_DOUBLE_QUOTES, '"'),
    ("normalized smart single quotes", SMART_SINGLE_QUOTES, "'"),
    ("removed trailing commas", TRAILING_COMMAS, r"\1"),
    ("stripped unit from quoted number", NUMBER_WITH_UNIT, _number_only),
    ("collapsed blank lines", MULTI_NEWLINES, "\n\n"),
]


def repair_json_with_steps(text: str, debug: bool = False) -> Tuple[str, List[str]]:
    """
    Repair common formatting issues in extracted JSON text.

    Args:
        text: Extracted JSON text
        debug: Log a before/after preview for every applied step

    Returns:
        Tuple of (repaired text, names of the steps that changed it)
    """
    repaired = text
    applied: List[str] = []

    for name, pattern, replacement in REPAIR_STEPS:
        if not pattern.search(repaired):
            continue

        before = repaired
        if pattern is NUMBER_WITH_UNIT:
            # Best-effort heuristic: record each value it rewrites
            for match in pattern.finditer(repaired):
                logger.info("repair: %s: %s", name, match.group(0)[:80])

        repaired = pattern.sub(replacement, repaired)
        if repaired != before:
            applied.append(name)
            if debug:
                logger.debug(
                    "repair: %s | before=%r | after=%r", name, before[:100], repaired[:100]
                )

    return repaired, applied


def repair_json(text: str, debug: bool = False) -> str:
    """Repair extracted JSON text; never fails."""
    repaired, _ = repair_json_with_steps(text, debug=debug)
    return repaired
