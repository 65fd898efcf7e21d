"""
Plan normalization.

Maps a parsed-but-unvalidated plan object onto canonical form before
validation: free-text enums to closed sets, numbers into bounds, ranges and
tempos to one format, ordering fields renumbered from 1, aggregates
recomputed from their children.

Normalizers are pure. They deep-copy the input, never raise, and report
every change as a human-readable warning.
"""

import copy
import logging
from collections import Counter
from typing import Any, Dict, List, Optional, Tuple

from coachplan.diets import map_diet
from coachplan.fields import (
    BoundedNumber,
    Coerced,
    EnumField,
    FreeText,
    RangeText,
    TempoText,
    TextList,
    parse_number,
    round_half_up,
)
from coachplan.schemas import GenerationContext, NormalizationResult, PlanKind

logger = logging.getLogger(__name__)

FULL_BODY = "גוף מלא"


# ============================================================================
# Workout Field Specs
# ============================================================================

WORKOUT_GOAL = EnumField(
    name="goal",
    values=("mass", "cut", "strength"),
    synonyms={
        # Mass / muscle building
        "העלאת מסת שריר": "mass",
        "עלייה במסת שריר": "mass",
        "הגדלת מסה": "mass",
        "מסה": "mass",
        "היפרטרופיה": "mass",
        "muscle_gain": "mass",
        "muscle gain": "mass",
        "gain": "mass",
        "bulk": "mass",
        "hypertrophy": "mass",
        # Cut / fat loss; maintenance trains like a cut
        "שריפת שומן": "cut",
        "חיטוב": "cut",
        "ירידה במשקל": "cut",
        "הורדה באחוזי שומן": "cut",
        "weight_loss": "cut",
        "weight loss": "cut",
        "fat_loss": "cut",
        "loss": "cut",
        "shred": "cut",
        "body_maintenance": "cut",
        "maintenance": "cut",
        "maintain": "cut",
        # Strength
        "כוח": "strength",
        "כוח מרבי": "strength",
        "עוצמה": "strength",
        "power": "strength",
    },
    default="mass",
)

GOAL_REPS: Dict[str, str] = {"mass": "8-12", "cut": "12-15", "strength": "5-8"}
CORE_REPS = "15-20"

CORE_KEYWORDS = ["בטן", "ליבה", "פלאנק", "קור", "plank", "hollow", "dead bug", "core", "abs"]

DAYS_PER_WEEK = BoundedNumber("days_per_week", minimum=2, maximum=7, default=3)
SETS = BoundedNumber("sets", minimum=2, maximum=4, default=3)
REST_SECONDS = BoundedNumber("rest_seconds", minimum=30, maximum=240, default=60)
REPS = RangeText("reps")
TEMPO = TempoText()
TARGET_MUSCLES = TextList("target_muscles", max_items=4)
MUSCLES_FOCUS = TextList("muscles_focus", max_items=5)
EXERCISE_NAME = FreeText("name_he")
DAY_NAME = FreeText("day_name")


# ============================================================================
# Nutrition Field Specs
# ============================================================================

NUTRITION_GOAL = EnumField(
    name="goal",
    values=("loss", "gain", "recomp", "maintain"),
    synonyms={
        "ירידה במשקל": "loss",
        "שריפת שומן": "loss",
        "הורדה באחוזי שומן": "loss",
        "חיטוב": "loss",
        "weight_loss": "loss",
        "weight loss": "loss",
        "fat_loss": "loss",
        "cut": "loss",
        "עלייה במסת שריר": "gain",
        "העלאת מסת שריר": "gain",
        "הגדלת מסה": "gain",
        "מסה": "gain",
        "muscle_gain": "gain",
        "muscle gain": "gain",
        "mass": "gain",
        "bulk": "gain",
        "recomposition": "recomp",
        "body_recomposition": "recomp",
        "body recomposition": "recomp",
        "שמירה על המשקל": "maintain",
        "שמירה על משקל": "maintain",
        "body_maintenance": "maintain",
        "maintenance": "maintain",
    },
    default="loss",
)

MEAL_NAME = EnumField(
    name="name",
    values=("Breakfast", "Snack", "Lunch", "Dinner"),
    synonyms={
        "ארוחת בוקר": "Breakfast",
        "בוקר": "Breakfast",
        "ארוחת ביניים": "Snack",
        "ביניים": "Snack",
        "נשנוש": "Snack",
        "ארוחת צהריים": "Lunch",
        "צהריים": "Lunch",
        "ארוחת ערב": "Dinner",
        "ערב": "Dinner",
        "morning snack": "Snack",
        "afternoon snack": "Snack",
        "evening snack": "Snack",
        "pre-workout": "Snack",
        "post-workout": "Snack",
        "brunch": "Lunch",
        "supper": "Dinner",
    },
    default="Snack",
)

SHOPPING_UNIT = EnumField(
    name="unit",
    values=("g", "ml", "pcs"),
    synonyms={
        "גרם": "g",
        "גרמים": "g",
        "ג": "g",
        "ג׳": "g",
        "ג'": "g",
        'מ"ל': "ml",
        "מיליליטר": "ml",
        "מל": "ml",
        "יחידות": "pcs",
        "יחידה": "pcs",
        "יח": "pcs",
        "יח׳": "pcs",
        "יח'": "pcs",
        "פריטים": "pcs",
        "gram": "g",
        "grams": "g",
        "gr": "g",
        "milliliter": "ml",
        "milliliters": "ml",
        "piece": "pcs",
        "pieces": "pcs",
        "pc": "pcs",
        "unit": "pcs",
        "units": "pcs",
    },
    default="g",
)

TARGET_CALORIES = BoundedNumber("calories", minimum=1000, maximum=5000, default=2000)
TARGET_PROTEIN = BoundedNumber("protein_g", minimum=0, maximum=500, default=150, decimals=1)
TARGET_CARBS = BoundedNumber("carbs_g", minimum=0, maximum=500, default=200, decimals=1)
TARGET_FAT = BoundedNumber("fat_g", minimum=0, maximum=500, default=70, decimals=1)
TARGET_FIBER = BoundedNumber("fiber_g", minimum=0, maximum=100, default=30, decimals=1)
TARGET_WATER = BoundedNumber("water_l", minimum=0, maximum=10, default=2.5, decimals=1)

MEAL_CALORIES = BoundedNumber("calories", minimum=0, maximum=3000, default=0)
MEAL_GRAMS = {
    key: BoundedNumber(key, minimum=0, maximum=400, default=0, decimals=1)
    for key in ("protein_g", "carbs_g", "fat_g")
}

# Units converted to the base unit before coercion (quantity x 1000).
SCALED_UNITS = {"kg": "g", 'ק"ג': "g", "קילו": "g", "l": "ml", "liter": "ml", "ליטר": "ml"}

AMOUNT_G = BoundedNumber("amount_g", minimum=1, maximum=2000, default=100)
QUANTITY = BoundedNumber("quantity", minimum=0, maximum=100000, default=0, decimals=1)
FOOD = FreeText("food")
TIPS = TextList("tips", max_items=10)

CAMEL_CASE_KEYS = {"dailyTargets": "daily_targets", "shoppingList": "shopping_list"}


# ============================================================================
# Helpers
# ============================================================================


def _as_dict(value: Any) -> Dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _dict_entries(value: Any, what: str, warnings: List[str]) -> List[Dict[str, Any]]:
    """Keep the object entries of a list, warning about anything else."""
    if value is None:
        return []
    if not isinstance(value, list):
        warnings.append(f"{what} was not a list; replaced with an empty list")
        return []
    entries = [entry for entry in value if isinstance(entry, dict)]
    if len(entries) != len(value):
        warnings.append(f"{what}: dropped {len(value) - len(entries)} non-object entries")
    return entries


def _apply(
    target: Dict[str, Any], key: str, coerced: Coerced, warnings: List[str]
) -> Any:
    target[key] = coerced.value
    if coerced.warning:
        warnings.append(coerced.warning)
    return coerced.value


def _renumber(
    entry: Dict[str, Any], key: str, expected: int, label: str, warnings: List[str]
) -> None:
    original = entry.get(key)
    if original != expected or isinstance(original, bool):
        warnings.append(f"{label} {key} corrected: {original} → {expected}")
    entry[key] = expected


def is_core_exercise(name: str, target_muscles: List[str]) -> bool:
    """Core and ab work is exempt from goal rep ranges and defaults to 15-20."""
    name_lower = (name or "").lower()
    muscles_lower = [m.lower() for m in target_muscles or [] if isinstance(m, str)]
    return any(
        keyword in name_lower or any(keyword in m for m in muscles_lower)
        for keyword in CORE_KEYWORDS
    )


def infer_muscles_focus(exercises: List[Dict[str, Any]], top_n: int = 3) -> List[str]:
    """
    Most frequent target muscles across a day's exercises.

    Ties keep first-seen order. Returns the full-body token when no exercise
    names a muscle.
    """
    counts: Counter = Counter()
    for exercise in exercises:
        for muscle in exercise.get("target_muscles") or []:
            if isinstance(muscle, str) and muscle.strip():
                counts[muscle.strip()] += 1
    top = [muscle for muscle, _ in counts.most_common(top_n)]
    return top or [FULL_BODY]


# ============================================================================
# Workout Normalization
# ============================================================================


def _normalize_exercise(
    exercise: Dict[str, Any], index: int, goal: str, day_label: str, warnings: List[str]
) -> Dict[str, Any]:
    fallback_name = exercise.get("name") if isinstance(exercise.get("name"), str) else None
    name_default = (fallback_name or "").strip() or f"תרגיל {index}"
    name = _apply(
        exercise, "name_he",
        EXERCISE_NAME.coerce(exercise.get("name_he"), default=name_default, label=day_label),
        warnings,
    )
    label = f'Exercise "{name}"'

    _renumber(exercise, "order", index, label, warnings)

    exercise_id = exercise.get("id")
    if isinstance(exercise_id, int) and not isinstance(exercise_id, bool):
        exercise["id"] = str(exercise_id)
    elif not isinstance(exercise_id, str):
        exercise["id"] = None

    _apply(exercise, "sets", SETS.coerce(exercise.get("sets"), label=label), warnings)

    muscles = _apply(
        exercise, "target_muscles",
        TARGET_MUSCLES.coerce(exercise.get("target_muscles"), default=[FULL_BODY], label=label),
        warnings,
    )

    expanded = CORE_REPS if is_core_exercise(name, muscles) else GOAL_REPS[goal]
    _apply(exercise, "reps", REPS.coerce(exercise.get("reps"), expanded, label=label), warnings)
    _apply(exercise, "tempo", TEMPO.coerce(exercise.get("tempo"), label=label), warnings)
    _apply(
        exercise, "rest_seconds", REST_SECONDS.coerce(exercise.get("rest_seconds"), label=label),
        warnings,
    )
    return exercise


def _normalize_workout_day(
    day: Dict[str, Any], index: int, goal: str, warnings: List[str]
) -> Dict[str, Any]:
    day_name = _apply(
        day, "day_name", DAY_NAME.coerce(day.get("day_name"), default=f"יום {index}"), warnings
    )
    label = f'Day "{day_name}"'

    _renumber(day, "order", index, label, warnings)

    exercises = _dict_entries(day.get("exercises"), f"{label} exercises", warnings)
    day["exercises"] = [
        _normalize_exercise(exercise, j, goal, label, warnings)
        for j, exercise in enumerate(exercises, start=1)
    ]

    focus = MUSCLES_FOCUS.clean(day.get("muscles_focus"))
    if not focus:
        focus = infer_muscles_focus(day["exercises"])
        warnings.append(f"{label} muscles_focus inferred: [{', '.join(focus)}]")
    elif focus != day.get("muscles_focus"):
        warnings.append(f"{label} muscles_focus cleaned: {len(focus)} items kept")
    day["muscles_focus"] = focus

    computed = sum(exercise["sets"] for exercise in day["exercises"])
    if day.get("total_sets") != computed or isinstance(day.get("total_sets"), bool):
        warnings.append(f"{label} total_sets recomputed: {day.get('total_sets')} → {computed}")
    day["total_sets"] = computed
    return day


def normalize_workout_plan(raw: Any, context: GenerationContext) -> NormalizationResult:
    """
    Normalize a parsed workout plan.

    Args:
        raw: Parsed JSON value (expected to be an object)
        context: Request context; `goal` is the fallback hint for the plan
            goal and `frequency` the fallback for `days_per_week`

    Returns:
        NormalizationResult with the canonical plan and every correction made
    """
    warnings: List[str] = []
    if not isinstance(raw, dict):
        warnings.append("Plan root was not an object; started from an empty plan")
    plan = copy.deepcopy(raw) if isinstance(raw, dict) else {}

    _normalize_user_id(plan, context, warnings)

    goal = _apply(
        plan, "goal", WORKOUT_GOAL.coerce(plan.get("goal"), hint=context.goal), warnings
    )

    if parse_number(plan.get("days_per_week")) is None:
        days_per_week = DAYS_PER_WEEK.coerce(context.frequency).value
        warnings.append(f"days_per_week set to {days_per_week}")
        plan["days_per_week"] = days_per_week
    else:
        _apply(plan, "days_per_week", DAYS_PER_WEEK.coerce(plan.get("days_per_week")), warnings)

    days = _dict_entries(plan.get("plan"), "plan", warnings)
    plan["plan"] = [
        _normalize_workout_day(day, i, goal, warnings) for i, day in enumerate(days, start=1)
    ]

    logger.debug("Workout normalization made %d corrections", len(warnings))
    return NormalizationResult(plan=plan, warnings=warnings)


# ============================================================================
# Nutrition Normalization
# ============================================================================


def meal_name_for_position(index: int, count: int) -> str:
    """First meal is breakfast, last is dinner, everything between a snack."""
    if index == 1:
        return "Breakfast"
    if index == count:
        return "Dinner"
    return "Snack"


def _normalize_food_item(
    item: Dict[str, Any], index: int, label: str, warnings: List[str]
) -> Dict[str, Any]:
    food = _apply(item, "food", FOOD.coerce(item.get("food"), default=f"Item {index}", label=label), warnings)
    item_label = f'{label} item "{food}"'
    _apply(item, "amount_g", AMOUNT_G.coerce(item.get("amount_g"), label=item_label), warnings)
    notes = item.get("notes")
    item["notes"] = notes.strip() if isinstance(notes, str) and notes.strip() else None
    return item


def _normalize_macros(value: Any, label: str, warnings: List[str]) -> Dict[str, Any]:
    macros = dict(_as_dict(value))
    if not isinstance(value, dict):
        warnings.append(f"{label} macros missing; defaulted to zeros")
        return {"calories": 0, "protein_g": 0.0, "carbs_g": 0.0, "fat_g": 0.0}
    _apply(macros, "calories", MEAL_CALORIES.coerce(macros.get("calories"), label=f"{label} macros"), warnings)
    for key, spec in MEAL_GRAMS.items():
        _apply(macros, key, spec.coerce(macros.get(key), label=f"{label} macros"), warnings)
    return macros


def sum_meal_macros(meals: List[Dict[str, Any]]) -> Dict[str, Any]:
    """Day totals as the sum of the meals' macros."""
    def total(key: str) -> float:
        return sum(parse_number(_as_dict(meal.get("macros")).get(key)) or 0 for meal in meals)

    return {
        "calories": int(round_half_up(total("calories"))),
        "protein_g": round_half_up(total("protein_g"), 1),
        "carbs_g": round_half_up(total("carbs_g"), 1),
        "fat_g": round_half_up(total("fat_g"), 1),
    }


def _normalize_meal(
    meal: Dict[str, Any], index: int, count: int, day_label: str, warnings: List[str]
) -> Dict[str, Any]:
    name = _apply(
        meal, "name",
        MEAL_NAME.coerce(meal.get("name"), hint=meal_name_for_position(index, count), label=day_label),
        warnings,
    )
    label = f"{day_label} meal {index} ({name})"

    _renumber(meal, "order", index, label, warnings)

    items = _dict_entries(meal.get("items"), f"{label} items", warnings)
    meal["items"] = [
        _normalize_food_item(item, k, label, warnings) for k, item in enumerate(items, start=1)
    ]
    meal["macros"] = _normalize_macros(meal.get("macros"), label, warnings)

    prep = meal.get("prep")
    meal["prep"] = prep.strip() if isinstance(prep, str) and prep.strip() else None
    meal["swaps"] = [
        {"option": swap["option"].strip(), "equivalence_note": swap.get("equivalence_note")
         if isinstance(swap.get("equivalence_note"), str) else None}
        for swap in _dict_entries(meal.get("swaps"), f"{label} swaps", warnings)
        if isinstance(swap.get("option"), str) and swap["option"].strip()
    ]
    return meal


def _normalize_nutrition_day(
    day: Dict[str, Any], index: int, warnings: List[str]
) -> Dict[str, Any]:
    label = f"Day {index}"
    _renumber(day, "day", index, label, warnings)

    meals = _dict_entries(day.get("meals"), f"{label} meals", warnings)
    day["meals"] = [
        _normalize_meal(meal, j, len(meals), label, warnings)
        for j, meal in enumerate(meals, start=1)
    ]

    totals = sum_meal_macros(day["meals"])
    if day.get("totals") != totals:
        if "totals" in day:
            warnings.append(f"{label} totals recomputed from meal macros")
    day["totals"] = totals
    return day


def _duplicate_template_day(
    days: List[Dict[str, Any]], requested: int, warnings: List[str]
) -> List[Dict[str, Any]]:
    if len(days) != 1 or requested <= 1:
        return days
    warnings.append(f"Single template day duplicated across {requested} days")
    return [dict(copy.deepcopy(days[0]), day=i) for i in range(1, requested + 1)]


def _normalize_daily_targets(
    value: Any, days: List[Dict[str, Any]], warnings: List[str]
) -> Dict[str, Any]:
    """
    Clamp the daily targets.

    Missing calorie and macro targets fall back to the average of the day
    totals before the fixed defaults.
    """
    targets = dict(_as_dict(value))
    if not isinstance(value, dict):
        warnings.append("daily_targets missing; derived from day totals")

    averages: Dict[str, float] = {}
    if days:
        for key in ("calories", "protein_g", "carbs_g", "fat_g"):
            averages[key] = sum(day["totals"][key] for day in days) / len(days)

    specs = (TARGET_CALORIES, TARGET_PROTEIN, TARGET_CARBS, TARGET_FAT, TARGET_FIBER, TARGET_WATER)
    for spec in specs:
        current = targets.get(spec.name)
        if parse_number(current) is None and averages.get(spec.name):
            current = averages[spec.name]
        _apply(targets, spec.name, spec.coerce(current, label="daily_targets"), warnings)
    return targets


def _normalize_shopping_list(value: Any, warnings: List[str]) -> List[Dict[str, Any]]:
    items: List[Dict[str, Any]] = []
    for entry in _dict_entries(value, "shopping_list", warnings):
        name = FreeText("item").coerce(entry.get("item")).value
        if not name:
            warnings.append("shopping_list: dropped entry without an item name")
            continue
        entry["item"] = name
        label = f'Shopping item "{name}"'

        unit = entry.get("unit")
        scaled = SCALED_UNITS.get(unit.strip().lower()) if isinstance(unit, str) else None
        quantity = parse_number(entry.get("quantity"))
        if scaled and quantity is not None:
            entry["quantity"], entry["unit"] = quantity * 1000, scaled
            warnings.append(f"{label} converted: {quantity} {unit} → {quantity * 1000:g} {scaled}")

        _apply(entry, "quantity", QUANTITY.coerce(entry.get("quantity"), label=label), warnings)
        _apply(entry, "unit", SHOPPING_UNIT.coerce(entry.get("unit"), label=label), warnings)
        items.append(entry)
    return items


def normalize_nutrition_plan(raw: Any, context: GenerationContext) -> NormalizationResult:
    """
    Normalize a parsed nutrition plan.

    Args:
        raw: Parsed JSON value (expected to be an object)
        context: Request context; `goal` is the fallback hint for the plan
            goal, `diet` is the diet the plan is held to and `days` the number
            of days a single template day is expanded to

    Returns:
        NormalizationResult with the canonical plan and every correction made
    """
    warnings: List[str] = []
    if not isinstance(raw, dict):
        warnings.append("Plan root was not an object; started from an empty plan")
    plan = copy.deepcopy(raw) if isinstance(raw, dict) else {}

    for camel, snake in CAMEL_CASE_KEYS.items():
        if camel in plan:
            value = plan.pop(camel)
            if snake not in plan:
                plan[snake] = value
                warnings.append(f"Renamed {camel} → {snake}")

    _normalize_user_id(plan, context, warnings)
    _apply(plan, "goal", NUTRITION_GOAL.coerce(plan.get("goal"), hint=context.goal), warnings)

    stated_diet = plan.get("diet")
    if stated_diet is not None and map_diet(str(stated_diet)) != context.diet:
        warnings.append(f'diet normalized: "{stated_diet}" → "{context.diet.value}"')
    plan["diet"] = context.diet.value

    plan["summary"] = FreeText("summary").coerce(plan.get("summary")).value

    days = _dict_entries(plan.get("days"), "days", warnings)
    days = _duplicate_template_day(days, context.days, warnings)
    plan["days"] = [_normalize_nutrition_day(day, i, warnings) for i, day in enumerate(days, start=1)]

    plan["daily_targets"] = _normalize_daily_targets(plan.get("daily_targets"), plan["days"], warnings)
    plan["shopping_list"] = _normalize_shopping_list(plan.get("shopping_list"), warnings)
    plan["tips"] = TIPS.coerce(plan.get("tips")).value

    logger.debug("Nutrition normalization made %d corrections", len(warnings))
    return NormalizationResult(plan=plan, warnings=warnings)


# ============================================================================
# Shared
# ============================================================================


def _normalize_user_id(plan: Dict[str, Any], context: GenerationContext, warnings: List[str]) -> None:
    stated = plan.get("user_id")
    if isinstance(stated, str) and stated.strip() and stated.strip() != context.user_id:
        warnings.append(f'user_id replaced: "{stated}" → "{context.user_id}"')
    plan["user_id"] = context.user_id


def goal_range(goal: str) -> Optional[Tuple[int, int]]:
    """Expected (low, high) rep range for a workout goal."""
    reps = GOAL_REPS.get(goal)
    if reps is None:
        return None
    low, high = reps.split("-")
    return int(low), int(high)


def normalize_plan(raw: Any, context: GenerationContext) -> NormalizationResult:
    """Dispatch to the normalizer for the requested plan kind."""
    if context.plan_kind == PlanKind.NUTRITION:
        return normalize_nutrition_plan(raw, context)
    return normalize_workout_plan(raw, context)
