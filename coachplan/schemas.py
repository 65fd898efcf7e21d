"""
Pydantic models for the plan post-processing pipeline.

This module defines the core data structures for:
- Request context: what the user asked for (goal, frequency, diet)
- Validation records: violations and soft-mode warnings
- Pipeline outcomes: accepted plans, consolidated failures, attempt diagnostics
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator


# ============================================================================
# Enumerations
# ============================================================================

class PlanKind(str, Enum):
    """Kind of plan produced by a generation request."""
    WORKOUT = "workout"
    NUTRITION = "nutrition"


class WorkoutGoal(str, Enum):
    """Closed goal set for workout plans."""
    MASS = "mass"
    CUT = "cut"
    STRENGTH = "strength"


class NutritionGoal(str, Enum):
    """Closed goal set for nutrition plans."""
    LOSS = "loss"
    GAIN = "gain"
    RECOMP = "recomp"
    MAINTAIN = "maintain"


class DietType(str, Enum):
    """Diet restriction applied to nutrition plans."""
    REGULAR = "regular"
    VEGAN = "vegan"
    VEGETARIAN = "vegetarian"
    KETO = "keto"
    PALEO = "paleo"


class MealType(str, Enum):
    """Allowed meal names."""
    BREAKFAST = "Breakfast"
    SNACK = "Snack"
    LUNCH = "Lunch"
    DINNER = "Dinner"


class ShoppingUnit(str, Enum):
    """Allowed shopping list units."""
    GRAMS = "g"
    MILLILITERS = "ml"
    PIECES = "pcs"


class ValidationMode(str, Enum):
    """Soft mode auto-corrects a subset of violations; hard mode rejects all."""
    SOFT = "soft"
    HARD = "hard"


class PipelineState(str, Enum):
    """States of the retry controller."""
    FIRST_ATTEMPT = "first_attempt"
    RETRYING = "retrying"
    VALID = "valid"
    FAILED = "failed"


class PipelineStage(str, Enum):
    """Stage an attempt reached before it stopped."""
    GENERATION = "generation"
    EXTRACTION = "extraction"
    REPAIR = "repair"
    PARSE = "parse"
    NORMALIZATION = "normalization"
    VALIDATION = "validation"
    ACCEPTED = "accepted"


class ErrorKind(str, Enum):
    """Error kinds surfaced to callers."""
    EXTRACTION = "ExtractionError"
    VALIDATION = "ValidationError"
    GENERATION = "GenerationError"


# ============================================================================
# Request Context
# ============================================================================


class GenerationContext(BaseModel):
    """
    What the user asked for.

    The normalizer uses `goal` as the fallback hint for unmapped goal labels
    and `frequency` as the fallback for missing counts. For workout plans
    `frequency` is workouts per week; for nutrition plans it is meals per day.
    """

    plan_kind: PlanKind = Field(PlanKind.WORKOUT, description="Kind of plan requested")
    user_id: str = Field("anonymous", min_length=1, description="Requesting user identifier")
    goal: str = Field("", description="Goal as the user stated it (Hebrew or English)")
    frequency: int = Field(
        ..., ge=1, le=7, description="Workouts per week or meals per day"
    )
    days: int = Field(1, ge=1, le=7, description="Days the plan must cover (nutrition only)")
    diet: DietType = Field(DietType.REGULAR, description="Diet restriction (nutrition only)")
    gender: Optional[str] = Field(None, description="Gender as provided by onboarding")
    age: Optional[int] = Field(None, ge=10, le=100, description="Age in years")
    weight_kg: Optional[float] = Field(None, gt=0, description="Current weight")
    target_weight_kg: Optional[float] = Field(None, gt=0, description="Target weight")
    height_cm: Optional[float] = Field(None, gt=0, description="Height")
    experience_level: Optional[str] = Field(None, description="Training experience")
    equipment: List[str] = Field(default_factory=list, description="Available equipment")

    @field_validator("goal")
    @classmethod
    def strip_goal(cls, v: str) -> str:
        """Goal labels arrive with stray whitespace from onboarding forms."""
        return v.strip()


# ============================================================================
# Validation Records
# ============================================================================


class ValidationViolation(BaseModel):
    """
    A single rule breach found by validation.

    Consumed by the retry controller to build the corrective prompt, and by
    callers as the `issues` list of a failure.
    """

    path: str = Field(..., description="Dotted path of the offending field, e.g. plan.0.exercises")
    rule: str = Field(..., description="Rule identifier, e.g. exercises_per_day")
    message: str = Field(..., description="Human-readable description of the breach")
    observed: Any = Field(None, description="Value found in the plan")
    expected: Optional[str] = Field(None, description="Constraint the value must satisfy")

    def as_issue(self) -> Dict[str, str]:
        """Return the `{path, message}` form used in failure payloads."""
        return {"path": self.path, "message": self.message}

    def as_constraint_line(self) -> str:
        """One line of the corrective prompt."""
        expected = f" Required: {self.expected}." if self.expected else ""
        return f"- {self.path}: {self.message}.{expected}"


class NormalizationResult(BaseModel):
    """Normalized plan object plus every auto-correction that was made."""

    plan: Dict[str, Any] = Field(..., description="Normalized plan object")
    warnings: List[str] = Field(default_factory=list, description="Auto-corrections made")


class ValidationResult(BaseModel):
    """Outcome of validating a normalized plan."""

    plan: Dict[str, Any] = Field(..., description="Plan after soft-mode corrections")
    mode: ValidationMode = Field(..., description="Mode the validator ran in")
    warnings: List[str] = Field(default_factory=list, description="Soft-mode corrections and notices")
    violations: List[ValidationViolation] = Field(
        default_factory=list, description="Unresolved rule breaches"
    )

    @property
    def valid(self) -> bool:
        return not self.violations


# ============================================================================
# Pipeline Outcomes
# ============================================================================


class AttemptRecord(BaseModel):
    """Diagnostics for one pass through extraction → validation."""

    attempt: int = Field(..., ge=1, le=2, description="Attempt number (1 or 2)")
    temperature: Optional[float] = Field(None, description="Sampling temperature used")
    stage: PipelineStage = Field(..., description="Last stage reached")
    error_kind: Optional[ErrorKind] = Field(None, description="Error kind if the attempt failed")
    error_message: Optional[str] = Field(None, description="Error summary if the attempt failed")
    violations: List[ValidationViolation] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
    repair_steps: List[str] = Field(default_factory=list, description="Repair steps applied")
    sample: Optional[str] = Field(None, description="Truncated sample of the offending text")
    elapsed_ms: int = Field(0, ge=0, description="Wall time for the attempt")

    @property
    def succeeded(self) -> bool:
        return self.stage == PipelineStage.ACCEPTED


class PipelineResult(BaseModel):
    """Accepted plan returned by the pipeline."""

    ok: bool = Field(True, description="Always true for accepted plans")
    state: PipelineState = Field(PipelineState.VALID, description="Terminal state")
    plan_kind: PlanKind = Field(..., description="Kind of plan")
    plan: Dict[str, Any] = Field(..., description="Validated plan document")
    warnings: List[str] = Field(default_factory=list, description="All auto-corrections")
    attempts: List[AttemptRecord] = Field(default_factory=list, description="Attempt diagnostics")
    created_at: datetime = Field(default_factory=datetime.utcnow)


class PipelineFailure(BaseModel):
    """
    Consolidated failure returned when the pipeline gives up.

    Carries the violations of both attempts for diagnostics, but only a
    truncated sample of the offending text.
    """

    ok: bool = Field(False, description="Always false for failures")
    state: PipelineState = Field(PipelineState.FAILED, description="Terminal state")
    error: ErrorKind = Field(..., description="Kind of the final failure")
    message: str = Field(..., description="Summary of the final failure")
    issues: List[Dict[str, str]] = Field(default_factory=list, description="Final {path, message} list")
    sample: Optional[str] = Field(None, description="Truncated sample of the offending text")
    first_attempt_issues: List[Dict[str, str]] = Field(default_factory=list)
    retry_issues: List[Dict[str, str]] = Field(default_factory=list)
    timed_out: bool = Field(False, description="The final failure was a generation timeout")
    attempts: List[AttemptRecord] = Field(default_factory=list, description="Attempt diagnostics")


# ============================================================================
# Traces
# ============================================================================


class PipelineTrace(BaseModel):
    """
    Audit trail of one pipeline run.

    Records every attempt with the stage it reached, the repairs applied,
    the auto-corrections made and the violations that triggered a retry.
    """

    user_id: str = Field(..., description="Requesting user")
    plan_kind: PlanKind = Field(..., description="Kind of plan requested")
    timestamp: datetime = Field(default_factory=datetime.utcnow)
    state: PipelineState = Field(PipelineState.FIRST_ATTEMPT, description="Last state reached")
    attempts: List[AttemptRecord] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list, description="Warnings of the accepted attempt")
    issues: List[Dict[str, str]] = Field(default_factory=list, description="Final failure issues")
