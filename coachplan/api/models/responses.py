"""
API Response Models

Pydantic models for API responses.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from coachplan.schemas import PlanKind

MAX_ISSUES = 5


class PlanResponse(BaseModel):
    """Response for an accepted plan."""

    ok: bool = Field(True, description="Always true")
    id: Optional[int] = Field(None, description="Stored plan id (null when not saved)")
    plan_kind: PlanKind = Field(..., description="Kind of plan")
    plan: Dict[str, Any] = Field(..., description="Validated plan document")
    warnings: List[str] = Field(default_factory=list, description="Auto-corrections made")
    attempts: int = Field(1, ge=1, le=2, description="Generation attempts used")


class FailureResponse(BaseModel):
    """Response for a rejected plan. Never carries the full model output."""

    ok: bool = Field(False, description="Always false")
    error: str = Field(..., description="ValidationError, ExtractionError or GenerationError")
    message: str = Field(..., description="Summary of the failure")
    issues: List[Dict[str, str]] = Field(
        default_factory=list, description=f"First {MAX_ISSUES} {{path, message}} issues"
    )
    sample: Optional[str] = Field(None, description="Truncated sample of the offending text")


class StoredPlanResponse(BaseModel):
    """Response for GET /api/plans/{id}."""

    id: int = Field(..., description="Stored plan id")
    request_key: str = Field(..., description="Idempotency key")
    user_id: str = Field(..., description="Requesting user")
    plan_kind: PlanKind = Field(..., description="Kind of plan")
    goal: str = Field(..., description="Canonical goal")
    diet: Optional[str] = Field(None, description="Diet token (nutrition only)")
    plan: Dict[str, Any] = Field(..., description="Validated plan document")
    warnings: List[str] = Field(default_factory=list, description="Auto-corrections made")
    created_at: datetime = Field(..., description="When the plan was first saved")
    updated_at: datetime = Field(..., description="When the plan was last replaced")
