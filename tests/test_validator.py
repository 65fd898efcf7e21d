"""
Tests for the PlanValidator soft and hard modes.

Test scenarios:
1. Valid plans pass in both modes
2. Cardinality breaches are violations in both modes
3. Ordering, aggregate and small rep drift are fixed in soft mode only
4. Request mismatches are warnings in soft mode, violations in hard mode
5. Diet compliance is lenient in soft mode and strict in hard mode
"""

import copy
import json
from pathlib import Path

import pytest

from coachplan.schemas import DietType, GenerationContext, PlanKind, ValidationMode
from coachplan.validator import (
    NutritionRules,
    PlanValidator,
    ValidationRules,
    WorkoutRules,
    parse_rep_range,
)

RULES_PATH = Path(__file__).parent.parent / "rules" / "default_rules.json"


@pytest.fixture
def soft():
    return PlanValidator(mode=ValidationMode.SOFT)


@pytest.fixture
def hard():
    return PlanValidator(mode=ValidationMode.HARD)


def rules_of(result):
    return {v.rule for v in result.violations}


def overload_day(plan, day_index=0, count=15):
    """Repeat a day's exercises until it holds `count` of them, keeping aggregates exact."""
    day = plan["plan"][day_index]
    exercises = [copy.deepcopy(day["exercises"][i % len(day["exercises"])]) for i in range(count)]
    for order, exercise in enumerate(exercises, start=1):
        exercise["order"] = order
    day["exercises"] = exercises
    day["total_sets"] = sum(ex["sets"] for ex in exercises)


def diet_context(diet: DietType) -> GenerationContext:
    return GenerationContext(
        plan_kind=PlanKind.NUTRITION, user_id="user-1", goal="maintain", frequency=4, diet=diet
    )


# ============================================================================
# Workout
# ============================================================================


def test_valid_workout_passes(soft, hard, workout_plan, workout_context):
    """
    TEST_CASE_001: Valid Input Acceptance

    Expected: no violations and no warnings in either mode
    """
    for validator in (soft, hard):
        result = validator.validate(workout_plan, workout_context)

        assert result.valid is True
        assert result.violations == []
        assert result.warnings == []


def test_too_many_exercises_rejected(soft, hard, workout_plan, workout_context):
    """
    TEST_CASE_002: Cardinality Breach

    A 15-exercise day is rejected in both modes; its 45 sets also exceed the cap.
    """
    overload_day(workout_plan)

    for validator in (soft, hard):
        result = validator.validate(workout_plan, workout_context)

        assert result.valid is False
        by_rule = {v.rule: v for v in result.violations}
        assert by_rule["exercises_per_day"].path == "plan.0.exercises"
        assert by_rule["exercises_per_day"].observed == 15
        assert by_rule["exercises_per_day"].expected == "6-10 exercises"
        assert by_rule["total_sets_cap"].path == "plan.0.total_sets"


def test_too_few_exercises_rejected(soft, workout_plan, workout_context):
    day = workout_plan["plan"][1]
    day["exercises"] = day["exercises"][:3]
    day["total_sets"] = 9

    result = soft.validate(workout_plan, workout_context)

    assert rules_of(result) == {"exercises_per_day"}
    assert result.violations[0].path == "plan.1.exercises"
    assert "has 3 exercises" in result.violations[0].message


def test_empty_plan_rejected(soft, workout_plan, workout_context):
    workout_plan["plan"] = []

    result = soft.validate(workout_plan, workout_context)

    assert rules_of(result) == {"day_count"}
    assert result.violations[0].path == "plan"


def test_total_sets_fixed_in_soft_mode(soft, hard, workout_plan, workout_context):
    """
    TEST_CASE_003: Aggregate Auto-Correction

    Soft mode recomputes the aggregate and warns; hard mode rejects it.
    """
    workout_plan["plan"][0]["total_sets"] = 99

    soft_result = soft.validate(workout_plan, workout_context)
    assert soft_result.valid is True
    assert soft_result.plan["plan"][0]["total_sets"] == 18
    assert any("auto-corrected to 18" in w for w in soft_result.warnings)
    # Soft mode works on a copy
    assert workout_plan["plan"][0]["total_sets"] == 99

    hard_result = hard.validate(workout_plan, workout_context)
    assert hard_result.valid is False
    assert hard_result.violations[0].rule == "aggregate"
    assert hard_result.violations[0].path == "plan.0.total_sets"
    assert hard_result.plan["plan"][0]["total_sets"] == 99


def test_ordering_fixed_in_soft_mode(soft, hard, workout_plan, workout_context):
    workout_plan["plan"][1]["order"] = 5
    workout_plan["plan"][0]["exercises"][2]["order"] = 9

    soft_result = soft.validate(workout_plan, workout_context)
    assert soft_result.valid is True
    assert soft_result.plan["plan"][1]["order"] == 2
    assert soft_result.plan["plan"][0]["exercises"][2]["order"] == 3
    assert len(soft_result.warnings) == 2

    hard_result = hard.validate(workout_plan, workout_context)
    assert {v.path for v in hard_result.violations} == {"plan.1.order", "plan.0.exercises.2.order"}


def test_small_rep_drift_fixed_in_soft_mode(soft, hard, workout_plan, workout_context):
    workout_plan["plan"][0]["exercises"][0]["reps"] = "6-10"

    soft_result = soft.validate(workout_plan, workout_context)
    assert soft_result.valid is True
    assert soft_result.plan["plan"][0]["exercises"][0]["reps"] == "8-10"
    assert any("auto-corrected to 8-10" in w for w in soft_result.warnings)

    hard_result = hard.validate(workout_plan, workout_context)
    assert rules_of(hard_result) == {"rep_range"}
    assert hard_result.violations[0].path == "plan.0.exercises.0.reps"
    assert hard_result.violations[0].expected == '"8-12"'


def test_large_rep_drift_rejected_in_soft_mode(soft, workout_plan, workout_context):
    workout_plan["plan"][0]["exercises"][0]["reps"] = "3-5"

    result = soft.validate(workout_plan, workout_context)

    assert rules_of(result) == {"rep_range"}


def test_core_exercises_exempt_from_goal_reps(hard, workout_plan, workout_context):
    # "כפיפות בטן" at 15-20 is outside the mass range but exempt
    assert workout_plan["plan"][1]["exercises"][5]["reps"] == "15-20"

    assert hard.validate(workout_plan, workout_context).valid is True


def test_request_mismatch_soft_warning_hard_violation(soft, hard, workout_plan):
    """
    TEST_CASE_004: Request Mismatch

    Goal and frequency mismatches are tolerated with warnings in soft mode.
    """
    context = GenerationContext(
        plan_kind=PlanKind.WORKOUT, user_id="user-1", goal="strength", frequency=3
    )

    soft_result = soft.validate(workout_plan, context)
    assert soft_result.valid is True
    assert len(soft_result.warnings) == 3

    hard_result = hard.validate(workout_plan, context)
    # Plan reps follow its own goal, so only the mismatches are reported
    assert rules_of(hard_result) == {"goal_match", "frequency_match", "day_count"}


def test_schema_violation_has_dotted_path(soft, workout_plan, workout_context):
    workout_plan["plan"][0]["exercises"][1]["tempo"] = "fast"

    result = soft.validate(workout_plan, workout_context)

    assert result.valid is False
    violation = result.violations[0]
    assert violation.rule == "schema"
    assert violation.path == "plan.0.exercises.1.tempo"
    assert violation.observed == "fast"


def test_all_violations_reported_together(hard, workout_plan, workout_context):
    overload_day(workout_plan, day_index=0)
    workout_plan["plan"][1]["exercises"][0]["reps"] = "1-3"

    result = hard.validate(workout_plan, workout_context)

    assert {"exercises_per_day", "total_sets_cap", "rep_range"} <= rules_of(result)


# ============================================================================
# Nutrition
# ============================================================================


def test_valid_nutrition_passes(soft, hard, nutrition_plan, nutrition_context):
    for validator in (soft, hard):
        result = validator.validate(nutrition_plan, nutrition_context)

        assert result.valid is True
        assert result.warnings == []


def test_meal_count_mismatch(soft, hard, nutrition_plan):
    context = GenerationContext(
        plan_kind=PlanKind.NUTRITION, user_id="user-1", goal="maintain", frequency=3
    )

    assert soft.validate(nutrition_plan, context).valid is True

    hard_result = hard.validate(nutrition_plan, context)
    assert rules_of(hard_result) == {"frequency_match"}
    assert hard_result.violations[0].path == "days.0.meals"


def test_too_few_meals_rejected(soft, nutrition_plan, nutrition_context):
    day = nutrition_plan["days"][0]
    day["meals"] = day["meals"][:2]
    nutrition_plan["daily_targets"]["calories"] = 1100
    day["totals"] = {"calories": 1100, "protein_g": 80.0, "carbs_g": 125.0, "fat_g": 25.0}

    result = soft.validate(nutrition_plan, nutrition_context)

    assert rules_of(result) == {"meals_per_day"}


def test_day_count_mismatch(soft, hard, nutrition_plan):
    context = GenerationContext(
        plan_kind=PlanKind.NUTRITION, user_id="user-1", goal="maintain", frequency=4, days=2
    )

    assert soft.validate(nutrition_plan, context).valid is True
    assert rules_of(hard.validate(nutrition_plan, context)) == {"day_count"}


def test_day_totals_fixed_in_soft_mode(soft, hard, nutrition_plan, nutrition_context):
    nutrition_plan["days"][0]["totals"]["calories"] = 1900

    soft_result = soft.validate(nutrition_plan, nutrition_context)
    assert soft_result.valid is True
    assert soft_result.plan["days"][0]["totals"]["calories"] == 2000

    hard_result = hard.validate(nutrition_plan, nutrition_context)
    assert rules_of(hard_result) == {"aggregate"}
    assert hard_result.violations[0].path == "days.0.totals"


def test_calorie_drift(soft, hard, nutrition_plan, nutrition_context):
    # 2000 kcal against a 2500 target drifts 20%: soft tolerates, hard rejects
    nutrition_plan["daily_targets"]["calories"] = 2500

    soft_result = soft.validate(nutrition_plan, nutrition_context)
    assert soft_result.valid is True
    assert soft_result.warnings == ["Day 1 has 2000 kcal, 20% away from the 2500 kcal target"]

    hard_result = hard.validate(nutrition_plan, nutrition_context)
    assert rules_of(hard_result) == {"calorie_target"}
    assert hard_result.violations[0].path == "days.0.totals.calories"
    assert hard_result.violations[0].expected == "2125-2875 kcal"


def test_large_calorie_drift_rejected_in_soft_mode(soft, nutrition_plan, nutrition_context):
    nutrition_plan["daily_targets"]["calories"] = 3000

    assert rules_of(soft.validate(nutrition_plan, nutrition_context)) == {"calorie_target"}


def test_meal_calorie_cap_is_schema_violation(soft, nutrition_plan, nutrition_context):
    nutrition_plan["days"][0]["meals"][1]["macros"]["calories"] = 3500

    result = soft.validate(nutrition_plan, nutrition_context)

    schema = [v for v in result.violations if v.rule == "schema"]
    assert schema
    assert schema[0].path == "days.0.meals.1.macros"


# ============================================================================
# Diet Compliance
# ============================================================================


def test_vegan_soft_mode_warns(soft, nutrition_plan):
    """
    TEST_CASE_005: Lenient Diet Compliance

    3 of 4 meals break the vegan diet; soft mode accepts with warnings.
    """
    result = soft.validate(nutrition_plan, diet_context(DietType.VEGAN))

    assert result.valid is True
    diet_warnings = [w for w in result.warnings if "forbidden ingredient" in w]
    assert len(diet_warnings) == 3
    assert any('"Greek yogurt"' in w for w in diet_warnings)


def test_vegan_hard_mode_rejects_each_item(hard, nutrition_plan):
    result = hard.validate(nutrition_plan, diet_context(DietType.VEGAN))

    assert rules_of(result) == {"diet_compliance"}
    assert [v.path for v in result.violations] == [
        "days.0.meals.0",
        "days.0.meals.1",
        "days.0.meals.3",
    ]
    assert result.violations[1].observed == "Chicken breast"


def test_vegan_soft_mode_rejects_above_threshold(soft, nutrition_plan):
    snack = nutrition_plan["days"][0]["meals"][2]
    snack["items"].append({"food": "Cheese", "amount_g": 30, "notes": None})

    result = soft.validate(nutrition_plan, diet_context(DietType.VEGAN))

    assert result.valid is False
    assert len(result.violations) == 1
    violation = result.violations[0]
    assert violation.rule == "diet_compliance"
    assert violation.path == "days"
    assert violation.message.startswith("Diet violation in 4/4 meals")


def test_keto_soft_mode_warns_on_carbs(soft, nutrition_plan):
    result = soft.validate(nutrition_plan, diet_context(DietType.KETO))

    assert result.valid is True
    assert any(w.startswith("Keto diet violation: Average daily carbs (205g)") for w in result.warnings)


def test_keto_hard_mode_rejects_carbs(hard, nutrition_plan):
    result = hard.validate(nutrition_plan, diet_context(DietType.KETO))

    assert rules_of(result) == {"diet_compliance", "keto_carbs"}
    keto = next(v for v in result.violations if v.rule == "keto_carbs")
    assert keto.observed == 205.0


def test_keto_carb_ceiling_from_rules(nutrition_plan):
    rules = ValidationRules(nutrition=NutritionRules(keto_max_daily_carbs_g=250))
    validator = PlanValidator(rules=rules, mode=ValidationMode.HARD)

    result = validator.validate(nutrition_plan, diet_context(DietType.KETO))

    assert rules_of(result) == {"diet_compliance"}


# ============================================================================
# Rules
# ============================================================================


def test_custom_rules_applied(workout_plan, workout_context):
    rules = ValidationRules(workout=WorkoutRules(max_exercises_per_day=5))

    result = PlanValidator(rules=rules).validate(workout_plan, workout_context)

    assert rules_of(result) == {"exercises_per_day"}
    assert [v.path for v in result.violations] == ["plan.0.exercises", "plan.1.exercises"]


def test_rules_loaded_from_default_file():
    rules = ValidationRules.from_file(RULES_PATH)

    assert rules == ValidationRules()


def test_rules_file_errors(tmp_path):
    with pytest.raises(FileNotFoundError):
        ValidationRules.from_file(tmp_path / "missing.json")

    bad = tmp_path / "bad.json"
    bad.write_text(json.dumps({"workout": {"max_total_sets_per_day": 0}}))
    with pytest.raises(ValueError):
        ValidationRules.from_file(bad)


def test_parse_rep_range():
    assert parse_rep_range("8-12") == (8, 12)
    assert parse_rep_range("30-45 שניות") is None
    assert parse_rep_range("many") is None
    assert parse_rep_range(None) is None
