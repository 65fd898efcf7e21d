"""
Field coercion for loosely typed model output.

Each field category is an explicit field type with its own `coerce()`:

- EnumField: open set of synonyms mapped onto a closed set of values
- BoundedNumber: numeric value clamped to [minimum, maximum] and rounded
- FreeText: non-empty string with a default
- TextList: list of trimmed, de-duplicated strings with a size cap
- RangeText: "A-B" range strings (rep ranges)
- TempoText: "d-d-d" tempo strings or the hold token

Coercion never raises. It returns the canonical value plus an optional
warning describing what changed.
"""

import math
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union


@dataclass(frozen=True)
class Coerced:
    """Result of coercing one field value."""

    value: Any
    warning: Optional[str] = None

    @property
    def changed(self) -> bool:
        return self.warning is not None


def _describe(value: Any) -> str:
    if isinstance(value, str):
        return f'"{value}"'
    return repr(value) if value is None else str(value)


def _prefix(label: str) -> str:
    return f"{label} " if label else ""


def _float_text(value: float) -> str:
    return str(int(value)) if value.is_integer() else str(value)


def round_half_up(value: float, decimals: int = 0) -> float:
    """Round like a person would: 2.5 -> 3, not banker's rounding."""
    factor = 10 ** decimals
    return math.floor(value * factor + 0.5) / factor


def parse_number(value: Any) -> Optional[float]:
    """
    Read a finite number from an int, float or numeric string.

    Booleans, NaN, infinities and integers too large for a float are
    treated as missing.
    """
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        try:
            number = float(value)
        except OverflowError:
            return None
    elif isinstance(value, str):
        match = re.fullmatch(r"\s*(-?\d+(?:\.\d+)?)\s*", value)
        if not match:
            return None
        number = float(match.group(1))
    else:
        return None
    return number if math.isfinite(number) else None


# ============================================================================
# Field Specs
# ============================================================================


@dataclass(frozen=True)
class EnumField:
    """Closed enum fed by an open set of localized synonyms."""

    name: str
    values: Tuple[str, ...]
    synonyms: Dict[str, str]
    default: str
    kind: str = field(default="enum", init=False)

    def lookup(self, raw: Any) -> Optional[str]:
        if not isinstance(raw, str):
            return None
        key = raw.strip().lower()
        if not key:
            return None
        for value in self.values:
            if value.lower() == key:
                return value
        return self.synonyms.get(key)

    def coerce(self, value: Any, hint: Optional[str] = None, label: str = "") -> Coerced:
        """
        Map `value` onto the closed set.

        Unmapped input falls back to `hint` (mapped the same way), then to the
        fixed default.
        """
        canonical = self.lookup(value) or self.lookup(hint) or self.default
        if canonical == value:
            return Coerced(canonical)
        return Coerced(
            canonical,
            f"{_prefix(label)}{self.name} normalized: {_describe(value)} → \"{canonical}\"",
        )


@dataclass(frozen=True)
class BoundedNumber:
    """Numeric field with documented bounds and granularity."""

    name: str
    minimum: float
    maximum: float
    default: float
    decimals: int = 0
    kind: str = field(default="bounded_number", init=False)

    def _finish(self, number: float) -> Union[int, float]:
        rounded = round_half_up(number, self.decimals)
        return int(rounded) if self.decimals == 0 else rounded

    def coerce(self, value: Any, label: str = "") -> Coerced:
        number = parse_number(value)
        if number is None:
            default = self._finish(self.default)
            return Coerced(default, f"{_prefix(label)}{self.name} defaulted to {default}")

        clamped = self._finish(min(self.maximum, max(self.minimum, number)))
        if isinstance(value, (int, float)) and not isinstance(value, bool) and clamped == value:
            return Coerced(clamped)
        verb = "clamped" if number != clamped else "coerced"
        return Coerced(
            clamped, f"{_prefix(label)}{self.name} {verb}: {_describe(value)} → {clamped}"
        )

    def contains(self, value: Any) -> bool:
        number = parse_number(value)
        return number is not None and self.minimum <= number <= self.maximum


@dataclass(frozen=True)
class FreeText:
    """Free-form string that must not be empty."""

    name: str
    default: str = ""
    kind: str = field(default="free_text", init=False)

    def coerce(self, value: Any, default: Optional[str] = None, label: str = "") -> Coerced:
        if isinstance(value, str) and value.strip():
            text = value.strip()
            return Coerced(text)
        fallback = default if default is not None else self.default
        if value is None and not fallback:
            return Coerced(fallback)
        return Coerced(fallback, f"{_prefix(label)}{self.name} defaulted to \"{fallback}\"")


@dataclass(frozen=True)
class TextList:
    """List of short strings, trimmed, de-duplicated and capped."""

    name: str
    max_items: int
    kind: str = field(default="text_list", init=False)

    def clean(self, value: Any) -> List[str]:
        if not isinstance(value, list):
            return []
        seen: List[str] = []
        for item in value:
            if isinstance(item, str) and item.strip() and item.strip() not in seen:
                seen.append(item.strip())
        return seen[: self.max_items]

    def coerce(self, value: Any, default: Sequence[str] = (), label: str = "") -> Coerced:
        cleaned = self.clean(value)
        if not cleaned and default:
            cleaned = list(default)
            return Coerced(
                cleaned, f"{_prefix(label)}{self.name} defaulted to [{', '.join(cleaned)}]"
            )
        if cleaned == value:
            return Coerced(cleaned)
        if not isinstance(value, list):
            return Coerced(cleaned, f"{_prefix(label)}{self.name} replaced non-list value")
        return Coerced(cleaned, f"{_prefix(label)}{self.name} cleaned: {len(value)} → {len(cleaned)} items")


SECONDS_SUFFIX = " שניות"
RANGE_PATTERN = re.compile(r"^(\d+)-(\d+)( שניות)?$")


@dataclass(frozen=True)
class RangeText:
    """
    Canonical "A-B" range string, optionally suffixed with seconds.

    Separators ("8–12", "8 - 12", "8 to 12", "8 עד 12") collapse to a single
    hyphen; a bare number expands to the caller-supplied range.
    """

    name: str
    kind: str = field(default="range_text", init=False)

    @staticmethod
    def canonicalize(text: str) -> str:
        text = text.strip()
        seconds = bool(re.search(r"(שניות|seconds?|secs?)\s*$", text, re.IGNORECASE))
        text = re.sub(r"\s*(שניות|seconds?|secs?|reps?|חזרות)\s*$", "", text, flags=re.IGNORECASE)
        text = text.replace("–", "-").replace("—", "-")
        text = re.sub(r"\s+(?:to|עד)\s+", "-", text, flags=re.IGNORECASE)
        text = re.sub(r"\s*-\s*", "-", text).strip()
        match = re.fullmatch(r"(\d+)-(\d+)", text)
        if match:
            low, high = int(match.group(1)), int(match.group(2))
            if low > high:
                low, high = high, low
            text = f"{low}-{high}"
        return text + SECONDS_SUFFIX if seconds and match else text

    def coerce(self, value: Any, bare_number_range: str, label: str = "") -> Coerced:
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            value_text = str(value) if isinstance(value, int) else _float_text(value)
        elif isinstance(value, str):
            value_text = value
        else:
            return Coerced(
                bare_number_range,
                f"{_prefix(label)}{self.name} normalized: {_describe(value)} → \"{bare_number_range}\"",
            )

        canonical = self.canonicalize(value_text)
        match = RANGE_PATTERN.match(canonical)
        if not match or int(match.group(2)) == 0:
            canonical = bare_number_range

        if canonical == value:
            return Coerced(canonical)
        return Coerced(
            canonical,
            f"{_prefix(label)}{self.name} normalized: {_describe(value)} → \"{canonical}\"",
        )


HOLD_TOKEN = "החזק"
DEFAULT_TEMPO = "2-0-2"
TEMPO_PATTERN = re.compile(r"^\d-\d-\d$")


@dataclass(frozen=True)
class TempoText:
    """Tempo in "eccentric-pause-concentric" digits, or the hold token."""

    name: str = "tempo"
    default: str = DEFAULT_TEMPO
    kind: str = field(default="tempo", init=False)

    def canonicalize(self, value: Any) -> str:
        if isinstance(value, int) and not isinstance(value, bool):
            value = str(value)
        if not isinstance(value, str):
            return self.default

        text = value.strip()
        if re.fullmatch(r"hold", text, re.IGNORECASE) or text in (HOLD_TOKEN, "החזקה") or "החזק/" in text:
            return HOLD_TOKEN

        text = text.replace("–", "-").replace("—", "-")
        text = re.sub(r"[\s./]+", "-", text)
        text = re.sub(r"-+", "-", text).strip("-")

        if re.fullmatch(r"\d{3}", text):
            text = f"{text[0]}-{text[1]}-{text[2]}"

        return text if TEMPO_PATTERN.match(text) else self.default

    def coerce(self, value: Any, label: str = "") -> Coerced:
        canonical = self.canonicalize(value)
        if canonical == value:
            return Coerced(canonical)
        return Coerced(
            canonical,
            f"{_prefix(label)}{self.name} normalized: {_describe(value)} → \"{canonical}\"",
        )


FieldSpec = Union[EnumField, BoundedNumber, FreeText, TextList, RangeText, TempoText]
