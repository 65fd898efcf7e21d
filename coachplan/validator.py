"""
Plan validation with soft and hard modes.

This module implements the last gate before a plan is accepted. It checks a
normalized plan against three rule categories:

1. Schema/type rules (the strict models in plan_schemas), always hard
2. Cardinality rules (items per day, days per plan), configurable thresholds
3. Cross-field business rules (goal and frequency match the request, rep
   ranges match the goal, aggregates match their children, diet compliance)

In soft mode a subset of breaches (ordering, aggregates, small rep drift) is
corrected in place and reported as a warning. In hard mode every breach is a
violation and the plan is returned untouched.
"""

import copy
import json
import logging
import re
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, Field
from pydantic import ValidationError as SchemaError

from coachplan.diets import KETO_MAX_DAILY_CARBS_G, check_diet_compliance
from coachplan.normalizer import (
    NUTRITION_GOAL,
    WORKOUT_GOAL,
    is_core_exercise,
    sum_meal_macros,
)
from coachplan.plan_schemas import NutritionPlan, WorkoutPlan
from coachplan.schemas import (
    DietType,
    GenerationContext,
    PlanKind,
    ValidationMode,
    ValidationResult,
    ValidationViolation,
)

logger = logging.getLogger(__name__)

RANGE_PREFIX = re.compile(r"^(\d+)-(\d+)")


# ============================================================================
# Rules
# ============================================================================


class WorkoutRules(BaseModel):
    """Thresholds for workout plans."""

    min_exercises_per_day: int = Field(6, ge=1)
    max_exercises_per_day: int = Field(10, ge=1)
    min_days: int = Field(1, ge=1)
    max_total_sets_per_day: int = Field(25, ge=1)
    goal_rep_ranges: Dict[str, Tuple[int, int]] = Field(
        default_factory=lambda: {"mass": (8, 12), "cut": (12, 15), "strength": (5, 8)},
        description="Expected rep range per goal",
    )
    tolerated_rep_ranges: Dict[str, Tuple[int, int]] = Field(
        default_factory=lambda: {"mass": (6, 15), "cut": (10, 18), "strength": (3, 12)},
        description="Drift soft mode corrects instead of rejecting",
    )


class NutritionRules(BaseModel):
    """Thresholds for nutrition plans."""

    min_days: int = Field(1, ge=1)
    max_days: int = Field(7, ge=1)
    min_meals_per_day: int = Field(3, ge=1)
    max_meals_per_day: int = Field(6, ge=1)
    min_items_per_meal: int = Field(1, ge=1)
    max_items_per_meal: int = Field(8, ge=1)
    calorie_tolerance: float = Field(
        0.15, gt=0, le=1, description="Allowed relative drift of day calories from the target"
    )
    soft_calorie_tolerance: float = Field(
        0.30, gt=0, le=1, description="Drift soft mode still accepts with a warning"
    )
    diet_violation_threshold: float = Field(
        0.80, ge=0, le=1, description="Share of affected meals soft mode still accepts"
    )
    keto_max_daily_carbs_g: float = Field(KETO_MAX_DAILY_CARBS_G, ge=0)


class ValidationRules(BaseModel):
    """Configurable thresholds for both plan kinds."""

    workout: WorkoutRules = Field(default_factory=WorkoutRules)
    nutrition: NutritionRules = Field(default_factory=NutritionRules)

    @classmethod
    def from_file(cls, rules_path: Path) -> "ValidationRules":
        """
        Load rules from a JSON file.

        Args:
            rules_path: Path to the rules JSON file

        Returns:
            ValidationRules instance

        Raises:
            FileNotFoundError: If the rules file doesn't exist
            ValueError: If the rules JSON is invalid
        """
        if not rules_path.exists():
            raise FileNotFoundError(f"Rules file not found: {rules_path}")

        with open(rules_path, "r", encoding="utf-8") as f:
            rules_data = json.load(f)

        try:
            return cls(**rules_data)
        except Exception as e:
            raise ValueError(f"Invalid rules file: {e}")


# ============================================================================
# Findings
# ============================================================================


class _Findings:
    """Accumulates warnings and violations for one validation run."""

    def __init__(self, mode: ValidationMode):
        self.mode = mode
        self.warnings: List[str] = []
        self.violations: List[ValidationViolation] = []

    @property
    def soft(self) -> bool:
        return self.mode == ValidationMode.SOFT

    def violation(
        self,
        path: str,
        rule: str,
        message: str,
        observed: Any = None,
        expected: Optional[str] = None,
    ) -> None:
        self.violations.append(
            ValidationViolation(
                path=path, rule=rule, message=message, observed=observed, expected=expected
            )
        )

    def breach(
        self,
        path: str,
        rule: str,
        message: str,
        observed: Any = None,
        expected: Optional[str] = None,
    ) -> None:
        """A breach soft mode tolerates with a warning."""
        if self.soft:
            self.warnings.append(message)
        else:
            self.violation(path, rule, message, observed, expected)


def _scalar(value: Any) -> Any:
    return value if isinstance(value, (str, int, float, bool)) or value is None else None


def schema_violations(exc: SchemaError) -> List[ValidationViolation]:
    """Convert pydantic errors into violations with dotted paths."""
    violations = []
    for error in exc.errors():
        path = ".".join(str(part) for part in error["loc"])
        violations.append(
            ValidationViolation(
                path=path,
                rule="schema",
                message=error["msg"],
                observed=_scalar(error.get("input")),
                expected=None,
            )
        )
    return violations


def parse_rep_range(reps: Any) -> Optional[Tuple[int, int]]:
    """Extract (low, high) from "8-12"; None for timed ranges and junk."""
    if not isinstance(reps, str) or reps.endswith("שניות"):
        return None
    match = RANGE_PREFIX.match(reps)
    if not match:
        return None
    return int(match.group(1)), int(match.group(2))


# ============================================================================
# Validator
# ============================================================================


class PlanValidator:
    """
    Validates normalized plans against structural and business rules.

    The validator checks every rule even after the first breach, so the
    retry controller can list all of them in a single corrective prompt.
    """

    def __init__(
        self,
        rules: Optional[ValidationRules] = None,
        mode: ValidationMode = ValidationMode.SOFT,
    ):
        """
        Initialize validator.

        Args:
            rules: Thresholds to validate against (defaults if omitted)
            mode: Soft mode auto-corrects a subset of breaches; hard rejects all
        """
        self.rules = rules or ValidationRules()
        self.mode = mode

    def validate(self, plan: Dict[str, Any], context: GenerationContext) -> ValidationResult:
        """
        Validate a normalized plan.

        Args:
            plan: Normalized plan document
            context: Request context the plan must match

        Returns:
            ValidationResult with the (soft-corrected) plan, warnings and violations
        """
        findings = _Findings(self.mode)
        checked = copy.deepcopy(plan) if findings.soft else plan

        if context.plan_kind == PlanKind.NUTRITION:
            self._validate_nutrition(checked, context, findings)
        else:
            self._validate_workout(checked, context, findings)

        logger.info(
            "Validated %s plan in %s mode: %d warnings, %d violations",
            context.plan_kind.value,
            self.mode.value,
            len(findings.warnings),
            len(findings.violations),
        )
        return ValidationResult(
            plan=checked,
            mode=self.mode,
            warnings=findings.warnings,
            violations=findings.violations,
        )

    # ------------------------------------------------------------------
    # Workout
    # ------------------------------------------------------------------

    def _validate_workout(
        self, plan: Dict[str, Any], context: GenerationContext, findings: _Findings
    ) -> None:
        rules = self.rules.workout
        days = plan.get("plan") if isinstance(plan.get("plan"), list) else []

        if findings.soft:
            self._fix_workout_ordering(days, findings)
            self._fix_total_sets(days, findings)
            self._fix_rep_drift(plan, days, findings)

        try:
            WorkoutPlan.model_validate(plan)
        except SchemaError as e:
            findings.violations.extend(schema_violations(e))

        expected_goal = WORKOUT_GOAL.lookup(context.goal)
        if expected_goal and plan.get("goal") != expected_goal:
            findings.breach(
                "goal", "goal_match",
                f'Plan goal "{plan.get("goal")}" doesn\'t match expected goal "{expected_goal}"',
                observed=plan.get("goal"), expected=f'"{expected_goal}"',
            )

        if plan.get("days_per_week") != context.frequency:
            findings.breach(
                "days_per_week", "frequency_match",
                f"Plan days_per_week {plan.get('days_per_week')} doesn't match expected {context.frequency}",
                observed=plan.get("days_per_week"), expected=str(context.frequency),
            )

        if len(days) < rules.min_days:
            findings.violation(
                "plan", "day_count", f"Plan has {len(days)} days - cannot generate workout",
                observed=len(days), expected=f"at least {rules.min_days} day",
            )
        elif len(days) != context.frequency:
            findings.breach(
                "plan", "day_count", f"Expected {context.frequency} days but got {len(days)}",
                observed=len(days), expected=f"exactly {context.frequency} days",
            )

        for i, day in enumerate(days):
            self._check_workout_day(plan, day, i, findings)

    def _check_workout_day(
        self, plan: Dict[str, Any], day: Dict[str, Any], i: int, findings: _Findings
    ) -> None:
        rules = self.rules.workout
        name = day.get("day_name", f"#{i + 1}")
        exercises = day.get("exercises") or []
        path = f"plan.{i}"

        if day.get("order") != i + 1:
            findings.violation(
                f"{path}.order", "ordering",
                f'Day "{name}" order is {day.get("order")}, expected {i + 1}',
                observed=day.get("order"), expected=str(i + 1),
            )

        count = len(exercises)
        if not rules.min_exercises_per_day <= count <= rules.max_exercises_per_day:
            findings.violation(
                f"{path}.exercises", "exercises_per_day",
                f'Day "{name}" has {count} exercises. Must be '
                f"{rules.min_exercises_per_day}-{rules.max_exercises_per_day} per day",
                observed=count,
                expected=f"{rules.min_exercises_per_day}-{rules.max_exercises_per_day} exercises",
            )

        total = sum(ex.get("sets") or 0 for ex in exercises)
        if day.get("total_sets") != total:
            findings.violation(
                f"{path}.total_sets", "aggregate",
                f'Day "{name}" total_sets is {day.get("total_sets")} but sum of exercise sets is {total}',
                observed=day.get("total_sets"), expected=str(total),
            )
        if total > rules.max_total_sets_per_day:
            findings.violation(
                f"{path}.total_sets", "total_sets_cap",
                f'Day "{name}" has {total} sets, exceeds maximum of {rules.max_total_sets_per_day}',
                observed=total, expected=f"at most {rules.max_total_sets_per_day} sets",
            )

        goal_range = rules.goal_rep_ranges.get(plan.get("goal"))
        for j, exercise in enumerate(exercises):
            if exercise.get("order") != j + 1:
                findings.violation(
                    f"{path}.exercises.{j}.order", "ordering",
                    f'Day "{name}": exercise "{exercise.get("name_he")}" order is '
                    f"{exercise.get('order')}, expected {j + 1}",
                    observed=exercise.get("order"), expected=str(j + 1),
                )
            if goal_range is None or is_core_exercise(
                exercise.get("name_he") or "", exercise.get("target_muscles") or []
            ):
                continue
            reps = parse_rep_range(exercise.get("reps"))
            if reps and not (reps[0] >= goal_range[0] and reps[1] <= goal_range[1]):
                findings.violation(
                    f"{path}.exercises.{j}.reps", "rep_range",
                    f'Day "{name}": exercise "{exercise.get("name_he")}" has reps '
                    f'{exercise.get("reps")}, outside {goal_range[0]}-{goal_range[1]} '
                    f'for {plan.get("goal")}',
                    observed=exercise.get("reps"), expected=f'"{goal_range[0]}-{goal_range[1]}"',
                )

    def _fix_workout_ordering(self, days: List[Dict[str, Any]], findings: _Findings) -> None:
        for i, day in enumerate(days, start=1):
            if day.get("order") != i:
                findings.warnings.append(
                    f'Day "{day.get("day_name")}": order was {day.get("order")}, auto-corrected to {i}'
                )
                day["order"] = i
            for j, exercise in enumerate(day.get("exercises") or [], start=1):
                if exercise.get("order") != j:
                    findings.warnings.append(
                        f'Day "{day.get("day_name")}", exercise "{exercise.get("name_he")}": '
                        f"order was {exercise.get('order')}, auto-corrected to {j}"
                    )
                    exercise["order"] = j

    def _fix_total_sets(self, days: List[Dict[str, Any]], findings: _Findings) -> None:
        for day in days:
            total = sum(ex.get("sets") or 0 for ex in day.get("exercises") or [])
            if day.get("total_sets") != total:
                findings.warnings.append(
                    f'Day "{day.get("day_name")}": total_sets was {day.get("total_sets")}, '
                    f"auto-corrected to {total} (sum of exercise sets)"
                )
                day["total_sets"] = total

    def _fix_rep_drift(
        self, plan: Dict[str, Any], days: List[Dict[str, Any]], findings: _Findings
    ) -> None:
        """Clamp range endpoints into the goal range when drift is tolerated."""
        goal = plan.get("goal")
        goal_range = self.rules.workout.goal_rep_ranges.get(goal)
        tolerated = self.rules.workout.tolerated_rep_ranges.get(goal)
        if goal_range is None or tolerated is None:
            return

        low_bound, high_bound = goal_range
        for day in days:
            for exercise in day.get("exercises") or []:
                if is_core_exercise(exercise.get("name_he") or "", exercise.get("target_muscles") or []):
                    continue
                reps = parse_rep_range(exercise.get("reps"))
                if reps is None or (reps[0] >= low_bound and reps[1] <= high_bound):
                    continue
                if not (reps[0] >= tolerated[0] and reps[1] <= tolerated[1]):
                    continue
                low = min(max(reps[0], low_bound), high_bound)
                high = max(min(reps[1], high_bound), low)
                corrected = f"{low}-{high}"
                findings.warnings.append(
                    f'Day "{day.get("day_name")}": exercise "{exercise.get("name_he")}" reps '
                    f"{exercise.get('reps')} slightly outside {low_bound}-{high_bound} for {goal}, "
                    f"auto-corrected to {corrected}"
                )
                exercise["reps"] = corrected

    # ------------------------------------------------------------------
    # Nutrition
    # ------------------------------------------------------------------

    def _validate_nutrition(
        self, plan: Dict[str, Any], context: GenerationContext, findings: _Findings
    ) -> None:
        rules = self.rules.nutrition
        days = plan.get("days") if isinstance(plan.get("days"), list) else []

        if findings.soft:
            self._fix_nutrition_ordering(days, findings)
            self._fix_day_totals(days, findings)

        try:
            NutritionPlan.model_validate(plan)
        except SchemaError as e:
            findings.violations.extend(schema_violations(e))

        expected_goal = NUTRITION_GOAL.lookup(context.goal)
        if expected_goal and plan.get("goal") != expected_goal:
            findings.breach(
                "goal", "goal_match",
                f'Plan goal "{plan.get("goal")}" doesn\'t match expected goal "{expected_goal}"',
                observed=plan.get("goal"), expected=f'"{expected_goal}"',
            )

        if not rules.min_days <= len(days) <= rules.max_days:
            findings.violation(
                "days", "day_count",
                f"Plan has {len(days)} days. Must be {rules.min_days}-{rules.max_days}",
                observed=len(days), expected=f"{rules.min_days}-{rules.max_days} days",
            )
        elif len(days) != context.days:
            findings.breach(
                "days", "day_count", f"Expected {context.days} days but got {len(days)}",
                observed=len(days), expected=f"exactly {context.days} days",
            )

        target = (plan.get("daily_targets") or {}).get("calories")
        for i, day in enumerate(days):
            self._check_nutrition_day(day, i, context, target, findings)

        self._check_diet(plan, context, findings)

    def _check_nutrition_day(
        self,
        day: Dict[str, Any],
        i: int,
        context: GenerationContext,
        target: Any,
        findings: _Findings,
    ) -> None:
        rules = self.rules.nutrition
        meals = day.get("meals") or []
        path = f"days.{i}"

        if day.get("day") != i + 1:
            findings.violation(
                f"{path}.day", "ordering", f"Day number is {day.get('day')}, expected {i + 1}",
                observed=day.get("day"), expected=str(i + 1),
            )

        if not rules.min_meals_per_day <= len(meals) <= rules.max_meals_per_day:
            findings.violation(
                f"{path}.meals", "meals_per_day",
                f"Day {i + 1} has {len(meals)} meals. Must be "
                f"{rules.min_meals_per_day}-{rules.max_meals_per_day} per day",
                observed=len(meals),
                expected=f"{rules.min_meals_per_day}-{rules.max_meals_per_day} meals",
            )
        elif len(meals) != context.frequency:
            findings.breach(
                f"{path}.meals", "frequency_match",
                f"Day {i + 1} has {len(meals)} meals, expected {context.frequency}",
                observed=len(meals), expected=f"exactly {context.frequency} meals",
            )

        for j, meal in enumerate(meals):
            items = meal.get("items") or []
            if meal.get("order") != j + 1:
                findings.violation(
                    f"{path}.meals.{j}.order", "ordering",
                    f"Day {i + 1} meal order is {meal.get('order')}, expected {j + 1}",
                    observed=meal.get("order"), expected=str(j + 1),
                )
            if not rules.min_items_per_meal <= len(items) <= rules.max_items_per_meal:
                findings.violation(
                    f"{path}.meals.{j}.items", "items_per_meal",
                    f"Day {i + 1} {meal.get('name')} has {len(items)} items. Must be "
                    f"{rules.min_items_per_meal}-{rules.max_items_per_meal}",
                    observed=len(items),
                    expected=f"{rules.min_items_per_meal}-{rules.max_items_per_meal} items",
                )

        totals = sum_meal_macros(meals)
        if day.get("totals") != totals:
            findings.violation(
                f"{path}.totals", "aggregate",
                f"Day {i + 1} totals don't match the sum of meal macros",
                observed=_scalar((day.get("totals") or {}).get("calories")),
                expected=str(totals["calories"]),
            )

        if isinstance(target, (int, float)) and target > 0:
            self._check_calories(day, i, target, findings)

    def _check_calories(
        self, day: Dict[str, Any], i: int, target: float, findings: _Findings
    ) -> None:
        rules = self.rules.nutrition
        calories = (day.get("totals") or {}).get("calories") or 0
        drift = abs(calories - target) / target
        if drift <= rules.calorie_tolerance:
            return

        message = (
            f"Day {i + 1} has {calories} kcal, {drift:.0%} away from the {target} kcal target"
        )
        expected = (
            f"{round(target * (1 - rules.calorie_tolerance))}-"
            f"{round(target * (1 + rules.calorie_tolerance))} kcal"
        )
        if findings.soft and drift <= rules.soft_calorie_tolerance:
            findings.warnings.append(message)
        else:
            findings.violation(
                f"days.{i}.totals.calories", "calorie_target", message,
                observed=calories, expected=expected,
            )

    def _check_diet(
        self, plan: Dict[str, Any], context: GenerationContext, findings: _Findings
    ) -> None:
        """
        Check forbidden ingredients and keto carbs.

        Soft mode is lenient: the plan passes with warnings unless more than
        the threshold share of meals is affected.
        """
        if context.diet == DietType.REGULAR:
            return

        rules = self.rules.nutrition
        report = check_diet_compliance(plan, context.diet, rules.keto_max_daily_carbs_g)
        if report.ok:
            return

        expected = f"no forbidden ingredients for a {context.diet.value} diet"

        if report.findings:
            reasons = [finding.describe(context.diet) for finding in report.findings]
            if findings.soft and report.violation_rate <= rules.diet_violation_threshold:
                findings.warnings.extend(reasons)
            elif findings.soft:
                findings.violation(
                    "days", "diet_compliance",
                    f"Diet violation in {report.affected_meals}/{report.total_meals} meals: "
                    + ", ".join(reasons[:3])
                    + (f" ({len(reasons) - 3} more...)" if len(reasons) > 3 else ""),
                    observed=report.affected_meals, expected=expected,
                )
            else:
                for finding in report.findings:
                    findings.violation(
                        finding.path, "diet_compliance", finding.describe(context.diet),
                        observed=finding.food, expected=expected,
                    )

        if report.carbs_exceeded:
            findings.breach(
                "days", "keto_carbs",
                f"Keto diet violation: Average daily carbs ({round(report.average_daily_carbs)}g) "
                f"exceeds {rules.keto_max_daily_carbs_g:g}g limit",
                observed=round(report.average_daily_carbs, 1),
                expected=f"at most {rules.keto_max_daily_carbs_g:g} g carbs per day",
            )

    def _fix_nutrition_ordering(self, days: List[Dict[str, Any]], findings: _Findings) -> None:
        for i, day in enumerate(days, start=1):
            if day.get("day") != i:
                findings.warnings.append(f"Day number was {day.get('day')}, auto-corrected to {i}")
                day["day"] = i
            meals = day.get("meals") or []
            for j, meal in enumerate(meals, start=1):
                if meal.get("order") != j:
                    findings.warnings.append(
                        f"Day {i} meal order was {meal.get('order')}, auto-corrected to {j}"
                    )
                    meal["order"] = j

    def _fix_day_totals(self, days: List[Dict[str, Any]], findings: _Findings) -> None:
        for i, day in enumerate(days, start=1):
            totals = sum_meal_macros(day.get("meals") or [])
            if day.get("totals") != totals:
                findings.warnings.append(f"Day {i} totals auto-corrected to the sum of meal macros")
                day["totals"] = totals
