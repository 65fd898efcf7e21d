"""
Data schemas for generated plan documents.

This module contains the strict Pydantic models a normalized plan must satisfy:
workout plans (days of ordered exercises) and nutrition plans (days of ordered
meals with food items, macros and a shopping list).

Cardinality limits (exercises per day, meals per day) are deliberately not
encoded here. They are configurable business rules checked by the validator.
"""

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from coachplan.schemas import (
    DietType,
    MealType,
    NutritionGoal,
    ShoppingUnit,
    WorkoutGoal,
)

REPS_PATTERN = r"^\d+-\d+( שניות)?$"
TEMPO_PATTERN = r"^\d-\d-\d$|^החזק$"


# ============================================================================
# Workout Plans
# ============================================================================


class Exercise(BaseModel):
    """Single exercise within a workout day."""

    model_config = ConfigDict(extra="ignore")

    name_he: str = Field(..., min_length=1, description="Exercise name (Hebrew)")
    sets: int = Field(..., ge=2, le=4, description="Working sets")
    reps: str = Field(..., pattern=REPS_PATTERN, description="Rep range, e.g. '8-12' or '30-45 שניות'")
    rest_seconds: int = Field(..., ge=30, le=240, description="Rest between sets")
    tempo: str = Field(..., pattern=TEMPO_PATTERN, description="Tempo '2-0-2' or 'החזק'")
    target_muscles: List[str] = Field(
        ..., min_length=1, max_length=4, description="Muscles worked"
    )
    order: int = Field(..., ge=1, description="Position within the day (1-based)")
    id: Optional[str] = Field(None, description="Exercise library identifier, if resolved")


class WorkoutDay(BaseModel):
    """
    One training day.

    `total_sets` is an aggregate of the exercises' sets. The normalizer always
    recomputes it; the validator checks the equality and the daily cap.
    """

    model_config = ConfigDict(extra="ignore")

    day_name: str = Field(..., min_length=1, description="Display name of the day")
    order: int = Field(..., ge=1, description="Position within the week (1-based)")
    muscles_focus: List[str] = Field(
        ..., min_length=1, max_length=5, description="Primary muscle groups"
    )
    total_sets: int = Field(..., ge=0, description="Sum of exercise sets")
    exercises: List[Exercise] = Field(..., description="Ordered exercises")


class WorkoutPlan(BaseModel):
    """Complete weekly workout plan."""

    model_config = ConfigDict(extra="ignore")

    user_id: str = Field(..., min_length=1, description="Owner of the plan")
    goal: WorkoutGoal = Field(..., description="Training goal")
    days_per_week: int = Field(..., ge=2, le=7, description="Training days per week")
    plan: List[WorkoutDay] = Field(..., description="Ordered training days")

    def total_exercises(self) -> int:
        return sum(len(day.exercises) for day in self.plan)


# ============================================================================
# Nutrition Plans
# ============================================================================


class DailyTargets(BaseModel):
    """Daily nutrition targets."""

    calories: int = Field(..., ge=1000, le=5000, description="Daily calorie target (kcal)")
    protein_g: float = Field(..., ge=0, le=500)
    carbs_g: float = Field(..., ge=0, le=500)
    fat_g: float = Field(..., ge=0, le=500)
    fiber_g: float = Field(..., ge=0, le=100)
    water_l: float = Field(..., ge=0, le=10)


class Macros(BaseModel):
    """Macronutrients of a meal or a whole day."""

    calories: int = Field(..., ge=0, description="Energy (kcal)")
    protein_g: float = Field(..., ge=0)
    carbs_g: float = Field(..., ge=0)
    fat_g: float = Field(..., ge=0)


class FoodItem(BaseModel):
    """Single food item within a meal."""

    model_config = ConfigDict(extra="ignore")

    food: str = Field(..., min_length=1, description="Food name")
    amount_g: int = Field(..., ge=1, le=2000, description="Portion in grams")
    notes: Optional[str] = Field(None, description="Preparation or brand notes")


class MealSwap(BaseModel):
    """Equivalent alternative for a meal."""

    option: str = Field(..., min_length=1)
    equivalence_note: Optional[str] = None


class Meal(BaseModel):
    """Single meal within a nutrition day."""

    model_config = ConfigDict(extra="ignore")

    order: int = Field(..., ge=1, description="Position within the day (1-based)")
    name: MealType = Field(..., description="Meal slot")
    items: List[FoodItem] = Field(..., description="Food items")
    macros: Macros = Field(..., description="Macros for the whole meal")
    prep: Optional[str] = Field(None, description="Preparation instructions")
    swaps: List[MealSwap] = Field(default_factory=list)

    @field_validator("macros")
    @classmethod
    def validate_meal_calories(cls, v: Macros) -> Macros:
        """A single meal above 3000 kcal is never a sensible portion."""
        if v.calories > 3000:
            raise ValueError("Meal calories cannot exceed 3000 kcal")
        return v


class NutritionDay(BaseModel):
    """One day of meals. `totals` is the sum of the meals' macros."""

    model_config = ConfigDict(extra="ignore")

    day: int = Field(..., ge=1, description="Day number (1-based)")
    meals: List[Meal] = Field(..., description="Ordered meals")
    totals: Macros = Field(..., description="Sum of meal macros")


class ShoppingItem(BaseModel):
    """Weekly shopping list entry."""

    item: str = Field(..., min_length=1)
    quantity: float = Field(..., ge=0, le=100000, description="Weekly quantity")
    unit: ShoppingUnit = Field(..., description="g, ml or pcs")


class NutritionPlan(BaseModel):
    """Complete nutrition plan."""

    model_config = ConfigDict(extra="ignore")

    user_id: str = Field(..., min_length=1, description="Owner of the plan")
    goal: NutritionGoal = Field(..., description="Nutrition goal")
    diet: DietType = Field(DietType.REGULAR, description="Diet restriction the plan follows")
    summary: str = Field("", description="Short description of the plan's principles")
    daily_targets: DailyTargets = Field(..., description="Daily targets")
    days: List[NutritionDay] = Field(..., description="Ordered days")
    shopping_list: List[ShoppingItem] = Field(default_factory=list)
    tips: List[str] = Field(default_factory=list)

    def average_daily_calories(self) -> float:
        if not self.days:
            return 0.0
        return sum(day.totals.calories for day in self.days) / len(self.days)
