"""
API Request Models

Pydantic models for API request validation.
"""

from typing import List, Optional

from pydantic import BaseModel, Field

from coachplan.diets import map_diet
from coachplan.schemas import GenerationContext, PlanKind, ValidationMode


class ProfileFields(BaseModel):
    """Profile fields shared by every generation request."""

    user_id: str = Field(..., min_length=1, description="Requesting user identifier")
    goal: str = Field(..., description="Goal as the user stated it (Hebrew or English)")
    gender: Optional[str] = Field(None, description="Gender")
    age: Optional[int] = Field(None, ge=10, le=100, description="Age in years")
    weight_kg: Optional[float] = Field(None, gt=0, description="Current weight")
    target_weight_kg: Optional[float] = Field(None, gt=0, description="Target weight")
    height_cm: Optional[float] = Field(None, gt=0, description="Height")
    mode: Optional[ValidationMode] = Field(
        None, description="Validation mode (server default if omitted)"
    )
    save: bool = Field(True, description="Persist the accepted plan")
    request_key: Optional[str] = Field(
        None, description="Idempotency key; saving twice under one key replaces the plan"
    )


class WorkoutPlanRequest(ProfileFields):
    """Request model for workout plan generation."""

    days_per_week: int = Field(..., ge=2, le=7, description="Workouts per week")
    experience_level: Optional[str] = Field(None, description="Training experience")
    equipment: List[str] = Field(default_factory=list, description="Available equipment")

    def to_context(self) -> GenerationContext:
        return GenerationContext(
            plan_kind=PlanKind.WORKOUT,
            user_id=self.user_id,
            goal=self.goal,
            frequency=self.days_per_week,
            gender=self.gender,
            age=self.age,
            weight_kg=self.weight_kg,
            target_weight_kg=self.target_weight_kg,
            height_cm=self.height_cm,
            experience_level=self.experience_level,
            equipment=self.equipment,
        )


class NutritionPlanRequest(ProfileFields):
    """Request model for nutrition plan generation."""

    diet: str = Field("regular", description="Diet label in Hebrew or English token")
    meals_per_day: int = Field(4, ge=3, le=6, description="Meals per day")
    days: int = Field(1, ge=1, le=7, description="Days the plan covers")

    def to_context(self) -> GenerationContext:
        return GenerationContext(
            plan_kind=PlanKind.NUTRITION,
            user_id=self.user_id,
            goal=self.goal,
            frequency=self.meals_per_day,
            days=self.days,
            diet=map_diet(self.diet),
            gender=self.gender,
            age=self.age,
            weight_kg=self.weight_kg,
            target_weight_kg=self.target_weight_kg,
            height_cm=self.height_cm,
        )


class NormalizeRequest(BaseModel):
    """Request model for post-processing already generated text."""

    raw: str = Field(..., min_length=1, description="Model output to process")
    plan_kind: PlanKind = Field(PlanKind.WORKOUT, description="Kind of plan in the text")
    user_id: str = Field("anonymous", min_length=1, description="Requesting user identifier")
    goal: str = Field("", description="Requested goal")
    frequency: int = Field(..., ge=1, le=7, description="Workouts per week or meals per day")
    days: int = Field(1, ge=1, le=7, description="Days the plan covers (nutrition only)")
    diet: str = Field("regular", description="Diet label (nutrition only)")
    mode: Optional[ValidationMode] = Field(None, description="Validation mode")

    def to_context(self) -> GenerationContext:
        return GenerationContext(
            plan_kind=self.plan_kind,
            user_id=self.user_id,
            goal=self.goal,
            frequency=self.frequency,
            days=self.days,
            diet=map_diet(self.diet),
        )
