"""
Error taxonomy for the plan pipeline.

Extraction and parse failures are recovered by the retry controller,
validation failures are recovered exactly once, generation failures are
surfaced to the caller unchanged.
"""

from typing import Dict, List, Optional

from coachplan.schemas import ErrorKind, ValidationViolation

SAMPLE_CHARS = 300


def truncate_sample(text: Optional[str], limit: int = SAMPLE_CHARS) -> Optional[str]:
    """Cut diagnostic text down to `limit` characters."""
    if text is None:
        return None
    return text if len(text) <= limit else text[:limit] + "..."


class PlanPipelineError(Exception):
    """Base class for every pipeline failure."""

    kind: ErrorKind = ErrorKind.VALIDATION

    def __init__(self, message: str, sample: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.sample = truncate_sample(sample)

    def issues(self) -> List[Dict[str, str]]:
        return [{"path": "", "message": self.message}]


class JsonExtractError(PlanPipelineError):
    """No balanced JSON object could be located in the model output."""

    kind = ErrorKind.EXTRACTION


class JsonParseError(PlanPipelineError):
    """Repaired text is still not valid JSON."""

    kind = ErrorKind.VALIDATION

    def issues(self) -> List[Dict[str, str]]:
        return [{"path": "$", "message": self.message}]


class PlanValidationError(PlanPipelineError):
    """Validation produced violations that could not be auto-corrected."""

    kind = ErrorKind.VALIDATION

    def __init__(
        self,
        message: str,
        violations: List[ValidationViolation],
        sample: Optional[str] = None,
    ):
        super().__init__(message, sample)
        self.violations = violations

    def issues(self) -> List[Dict[str, str]]:
        return [v.as_issue() for v in self.violations]


class GenerationError(PlanPipelineError):
    """The external generation call failed before returning text."""

    kind = ErrorKind.GENERATION


class GenerationTimeoutError(GenerationError):
    """The external generation call exceeded its timeout."""
