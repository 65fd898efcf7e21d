"""
Prompt builders for plan generation.

Workout prompts are written in Hebrew (the plan text is Hebrew); nutrition
prompts are written in English. The corrective prompt used on retry lists
every violated constraint with its path.
"""

from typing import List, Optional, Tuple

from coachplan.diets import DIET_GUIDELINES
from coachplan.errors import PlanPipelineError, PlanValidationError
from coachplan.normalizer import GOAL_REPS, NUTRITION_GOAL, WORKOUT_GOAL
from coachplan.schemas import GenerationContext, PlanKind, ValidationViolation

# Suggested split per gender and training frequency
DAY_SPLITS = {
    "male": {
        2: "Full Body, Full Body",
        3: "Upper Body, Lower Body, Full Body",
        4: "Push, Pull, Legs, Core/Cardio",
        5: "Chest/Triceps, Back/Biceps, Legs, Shoulders/Abs, Full Body",
        6: "Push, Pull, Legs, Push, Pull, Legs",
        7: "Chest, Back, Legs, Shoulders, Arms, Core, Full Body",
    },
    "female": {
        2: "Full Body, Full Body",
        3: "Upper Body, Lower Body, Full Body",
        4: "Upper Body, Lower Body, Full Body, Core/Cardio",
        5: "Chest/Back, Legs, Shoulders/Arms, Lower Body, Full Body",
        6: "Upper Body, Lower Body, Full Body, Upper Body, Lower Body, Core",
        7: "Chest, Back, Legs, Shoulders, Arms, Lower Body, Full Body",
    },
}

DEFAULT_EQUIPMENT = ["משקולות חופשיות", "מכונות", "משקל גוף"]

NUTRITION_GOAL_LABELS = {
    "loss": "Weight Loss",
    "gain": "Muscle Gain",
    "recomp": "Body Recomposition",
    "maintain": "Weight Maintenance",
}


def _gender_key(gender: Optional[str]) -> str:
    return "female" if (gender or "").strip().lower() in ("female", "נקבה", "f") else "male"


# ============================================================================
# Workout
# ============================================================================


def workout_system_prompt() -> str:
    """System prompt describing the workout plan JSON schema."""
    return """אתה מאמן כושר מקצועי. החזר JSON בלבד (ללא טקסט חופשי) בהתאם לסכימה:
{
  "user_id": string,
  "goal": "mass" | "cut" | "strength",
  "days_per_week": number (2-7),
  "plan": [
    {
      "day_name": string,
      "order": number (1..N),
      "muscles_focus": string[] (1-5 פריטים),
      "exercises": [
        {
          "name_he": string,
          "sets": number (2-4),
          "reps": string (טווח עם '-', לדוגמה "8-12"),
          "rest_seconds": number (30-240),
          "tempo": string ("2-0-2" בלבד או "החזק"),
          "target_muscles": string[] (1-4),
          "order": number (1..M)
        }
      ],
      "total_sets": number (סכום הסטים של כל התרגילים ≤ 25)
    }
  ]
}
כל תרגיל: 2-4 סטים; **לפחות 6 תרגילים ביום** (עד 10); ≤25 סטים ביום.
טמפו: רק "2-0-2" או "החזק".
לפי המטרה:
- mass: רוב החזרות "8-12"
- cut: רוב החזרות "12-15"
- strength: רוב החזרות "5-8"
שרירי ליבה/בטן יכולים להיות "15-20" או "החזק".
פלט JSON תקין בלבד, ללא טקסט נוסף."""


def workout_user_prompt(context: GenerationContext) -> str:
    """User prompt with the profile, the goal enum and a suggested split."""
    goal = WORKOUT_GOAL.coerce(context.goal).value
    gender = _gender_key(context.gender)
    split = DAY_SPLITS[gender].get(context.frequency, "Full Body")
    equipment = ", ".join(context.equipment or DEFAULT_EQUIPMENT)

    def show(value) -> str:
        return "—" if value is None else str(value)

    return f"""צור תוכנית אימונים מותאמת אישית למשתמש הבא:

פרופיל:
- מזהה משתמש: {context.user_id}
- מגדר: {"נקבה" if gender == "female" else "זכר"}
- גיל: {show(context.age)}
- משקל נוכחי: {show(context.weight_kg)} ק"ג
- יעד משקל: {show(context.target_weight_kg)} ק"ג
- גובה: {show(context.height_cm)} ס"מ
- רמת ניסיון: {show(context.experience_level)}
- מטרה: {context.goal or goal}
- **goal enum: "{goal}"** (השתמש בדיוק בערך זה בשדה goal ב-JSON)
- מספר אימונים בשבוע: {context.frequency}
- סוג ציוד זמין: {equipment}

חלוקת ימים מוצעת:
{split}

חשוב מאוד:
- goal חייב להיות "{goal}" (בדיוק כך)
- days_per_week חייב להיות {context.frequency}
- muscles_focus חייב לכלול 1-5 פריטים לכל יום
- tempo רק '2-0-2' או 'החזק' (שום דבר אחר)
- reps חייב להיות טווח עם מקף '-' (לדוגמה "{GOAL_REPS[goal]}")

החזר JSON תקני בלבד לפי ההנחיות."""


# ============================================================================
# Nutrition
# ============================================================================


def nutrition_system_prompt() -> str:
    """System prompt describing the nutrition plan JSON schema."""
    return """You are a professional nutritionist creating PERSONALIZED meal plans.
Return a SINGLE valid JSON object. Start your response with { and end with }. Nothing else.
No markdown, no code fences, no labels, no comments, no trailing commas, no NaN/Infinity.

HARD DIET COMPLIANCE RULES:
- You MUST comply with the requested diet. This is NON-NEGOTIABLE.
- If an ingredient conflicts with the diet, replace it with a compliant alternative.

EXACT JSON STRUCTURE REQUIRED:
{
  "user_id": string,
  "goal": "loss" | "gain" | "recomp" | "maintain",
  "summary": "short summary of the plan's principles",
  "daily_targets": {
    "calories": number, "protein_g": number, "carbs_g": number,
    "fat_g": number, "fiber_g": number, "water_l": number
  },
  "days": [
    {
      "day": number (1, 2, 3...),
      "meals": [
        {
          "order": number (1..M),
          "name": "Breakfast" | "Snack" | "Lunch" | "Dinner",
          "items": [{"food": string, "amount_g": number, "notes": string}],
          "macros": {"calories": number, "protein_g": number, "carbs_g": number, "fat_g": number},
          "prep": string,
          "swaps": [{"option": string, "equivalence_note": string}]
        }
      ]
    }
  ],
  "shopping_list": [{"item": string, "quantity": number (WEEKLY total), "unit": "g" | "ml" | "pcs"}],
  "tips": [string]
}

MEAL NAME MUST BE EXACTLY ONE OF: "Breakfast", "Snack", "Lunch", "Dinner".
Shopping list units MUST be EXACTLY "g", "ml" or "pcs".
Units: metric. Keep 1-8 items per meal."""


def nutrition_user_prompt(context: GenerationContext) -> str:
    """User prompt with the profile, diet guidelines and calorie method."""
    goal = NUTRITION_GOAL.coerce(context.goal).value

    def show(value) -> str:
        return "—" if value is None else str(value)

    return f"""
User Profile:
User ID: {context.user_id}
Gender: {show(context.gender)}
Age: {show(context.age)}
Height: {show(context.height_cm)} cm
Weight: {show(context.weight_kg)} kg
Target Weight: {show(context.target_weight_kg)} kg
Goal: {NUTRITION_GOAL_LABELS[goal]} (goal enum: "{goal}")
Diet Token: {context.diet.value}
Number of Days: {context.days}
Meals per Day: {context.frequency}

CRITICAL DIET COMPLIANCE REQUIREMENT:
{DIET_GUIDELINES[context.diet]}

Instructions:
1. Calculate personalized calories with Mifflin-St Jeor and an activity factor,
   then adjust for the goal (loss -500 kcal, gain +300 kcal, recomp and maintain 0).
2. Create {context.days} day(s) with exactly {context.frequency} meals each.
3. Each day's meal calories must add up to the daily calorie target.
4. Generate a shopping list with WEEKLY quantities.
5. Return ONLY valid JSON."""


# ============================================================================
# Dispatch and Retry
# ============================================================================


def build_prompts(context: GenerationContext) -> Tuple[str, str]:
    """Return the (system, user) prompt pair for the requested plan kind."""
    if context.plan_kind == PlanKind.NUTRITION:
        return nutrition_system_prompt(), nutrition_user_prompt(context)
    return workout_system_prompt(), workout_user_prompt(context)


def corrective_note(error: PlanPipelineError) -> str:
    """
    Follow-up instructions listing what the previous attempt got wrong.

    Args:
        error: Failure of the previous attempt

    Returns:
        Text appended to the system prompt for the retry
    """
    lines: List[str] = ["CRITICAL: The previous answer was rejected."]

    if isinstance(error, PlanValidationError) and error.violations:
        lines.append("Fix every one of these violations:")
        violations: List[ValidationViolation] = error.violations
        lines.extend(v.as_constraint_line() for v in violations)
    else:
        lines.append(f"- $: {error.message}.")

    lines.append(
        "Output MUST be a single JSON object matching the schema EXACTLY. "
        "No markdown, no code fences, no labels or text outside the JSON."
    )
    return "\n".join(lines)


def build_retry_prompts(system: str, user: str, error: PlanPipelineError) -> Tuple[str, str]:
    """Append the corrective note to the original system prompt."""
    return f"{system}\n\n{corrective_note(error)}", user
