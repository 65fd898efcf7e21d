"""
Diet restrictions for nutrition plans.

Holds the forbidden-ingredient keywords per diet, the prompt guidelines, and
the compliance check used by the validator. Hebrew keywords match as whole
words with an optional one-letter prefix (ה, ו, ב...); English keywords match
on word boundaries with an optional plural suffix.
"""

import re
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Any, Dict, List, Optional, Tuple

from coachplan.schemas import DietType

KETO_MAX_DAILY_CARBS_G = 50.0

FORBIDDEN_KEYWORDS: Dict[DietType, Dict[str, List[str]]] = {
    DietType.VEGAN: {
        "hebrew": [
            "בשר", "עוף", "תרנגול", "הודו", "בקר", "עגל", "כבש", "טלה", "חזיר",
            "דג", "דגים", "טונה", "סלמון", "בקלה", "קרפיון", "שרימפס", "סרטן", "פירות ים",
            "ביצה", "ביצים", "חלמון", "חלבון ביצה",
            "חלב", "גבינה", "יוגורט", "חמאה", "שמנת", "קוטג'", "מוצרלה", "פטה", "חלבי",
            "דבש",
        ],
        "english": [
            "meat", "beef", "pork", "lamb", "veal", "chicken", "turkey", "duck", "goose",
            "fish", "tuna", "salmon", "cod", "tilapia", "shrimp", "crab", "lobster", "seafood",
            "egg", "yolk",
            "milk", "cheese", "yogurt", "yoghurt", "butter", "cream", "cottage", "mozzarella",
            "feta", "cheddar", "parmesan", "dairy", "whey",
            "honey",
        ],
    },
    DietType.VEGETARIAN: {
        # Fish is acceptable (pescatarian)
        "hebrew": [
            "בשר", "עוף", "חזה עוף", "תרנגול", "הודו", "בקר", "עגל", "כבש", "טלה", "חזיר",
            "נקניק", "המבורגר",
        ],
        "english": [
            "meat", "beef", "pork", "lamb", "veal", "chicken", "turkey", "duck", "goose",
            "sausage", "burger", "ham", "bacon",
        ],
    },
    DietType.KETO: {
        "hebrew": [
            "לחם", "פיתה", "בורקס", "פסטה", "ספגטי", "אטריות", "אורז", "קוסקוס", "בורגול",
            "שיבולת שועל", "קוואקר", "דגנים", "חיטה", "קמח", "שיפון",
            "תפוח אדמה", "תפוד", "בטטה", "תירס", "קורנפלקס",
            "סוכר", "דבש", "ריבה", "שוקולד", "עוגה", "עוגיה",
            "בננה", "ענבים", "מנגו", "תמר", "צימוקים",
            "שעועית", "עדשים", "חומוס", "אפונה", "קטניות",
        ],
        "english": [
            "bread", "pita", "pasta", "spaghetti", "noodle", "rice", "couscous", "bulgur",
            "oats", "oatmeal", "cereal", "grain", "wheat", "flour",
            "potato", "sweet potato", "corn", "cornflakes",
            "sugar", "honey", "jam", "chocolate", "cake", "cookie",
            "banana", "grape", "mango", "dates", "raisin",
            "bean", "lentil", "chickpea", "peas", "legume",
        ],
    },
    DietType.PALEO: {
        "hebrew": [
            "לחם", "פיתה", "פסטה", "אורז", "קוסקוס", "שיבולת שועל", "דגנים", "חיטה", "קמח",
            "שעועית", "עדשים", "חומוס", "אפונה", "בוטנים", "קטניות",
            "חלב", "גבינה", "יוגורט", "חמאה", "שמנת", "חלבי",
            "סוכר",
            "שמן צמחי", "שמן חמניות", "מרגרינה",
        ],
        "english": [
            "bread", "pasta", "rice", "couscous", "oats", "oatmeal", "cereal", "grain", "wheat",
            "flour",
            "bean", "lentil", "chickpea", "peas", "peanut", "legume",
            "milk", "cheese", "yogurt", "yoghurt", "butter", "cream", "dairy",
            "sugar",
            "vegetable oil", "sunflower oil", "margarine", "canola oil",
        ],
    },
    DietType.REGULAR: {"hebrew": [], "english": []},
}

# Plant-based products whose names contain a dairy keyword.
SAFE_PHRASES: Dict[DietType, List[str]] = {
    DietType.VEGAN: [
        "almond milk", "soy milk", "oat milk", "rice milk", "coconut milk", "plant milk",
        "coconut cream", "peanut butter", "almond butter", "nut butter", "cocoa butter",
        "חלב סויה", "חלב שקדים", "חלב שיבולת שועל", "חלב קוקוס", "חמאת בוטנים", "חמאת שקדים",
    ],
    DietType.PALEO: [
        "almond milk", "coconut milk", "coconut cream", "almond butter",
        "חלב שקדים", "חלב קוקוס", "חמאת שקדים",
    ],
}

DIET_GUIDELINES: Dict[DietType, str] = {
    DietType.VEGAN: (
        "VEGAN DIET RULES:\n"
        "- ALLOWED: All plant-based foods (vegetables, fruits, grains, legumes, nuts, seeds, "
        "tofu, tempeh, plant milk)\n"
        "- STRICTLY AVOID: ALL animal products (meat, poultry, fish, seafood, eggs, dairy, "
        "milk, cheese, yogurt, butter, honey)"
    ),
    DietType.VEGETARIAN: (
        "VEGETARIAN DIET RULES (PESCATARIAN):\n"
        "- ALLOWED: Plant-based foods, dairy products, eggs, fish and seafood\n"
        "- STRICTLY AVOID: Meat, poultry (chicken, turkey, beef, pork, lamb)"
    ),
    DietType.KETO: (
        "KETOGENIC DIET RULES:\n"
        "- ALLOWED: High-fat foods (meat, fish, eggs, cheese, avocado, nuts, seeds, oils, "
        "low-carb vegetables)\n"
        "- STRICTLY AVOID: Grains, sugar, high-carb fruits, legumes, starchy vegetables\n"
        "- REQUIREMENT: Keep net carbs under 30-50g per day"
    ),
    DietType.PALEO: (
        "PALEO DIET RULES:\n"
        "- ALLOWED: Whole foods (meat, fish, eggs, vegetables, fruits, nuts, seeds)\n"
        "- STRICTLY AVOID: Grains, legumes, dairy, refined sugar, processed oils"
    ),
    DietType.REGULAR: (
        "REGULAR/BALANCED DIET:\n"
        "- No specific restrictions\n"
        "- Focus on whole foods, balanced macros, and variety"
    ),
}

HEBREW_LETTER = "\u0590-\u05ff"


def map_diet(text: Optional[str]) -> DietType:
    """
    Map a Hebrew diet label or English token to a DietType.

    Hebrew labels match by substring ("תזונה טבעונית" is vegan); English
    tokens must match exactly. Anything else is a regular diet.
    """
    normalized = (text or "").strip().lower()
    if "טבעונ" in normalized:
        return DietType.VEGAN
    if "צמחונ" in normalized:
        return DietType.VEGETARIAN
    if "קטו" in normalized:
        return DietType.KETO
    if "פלאו" in normalized or "פליאו" in normalized:
        return DietType.PALEO
    try:
        return DietType(normalized)
    except ValueError:
        return DietType.REGULAR


@lru_cache(maxsize=None)
def _keyword_patterns(diet: DietType) -> Tuple[Tuple[str, re.Pattern], ...]:
    keywords = FORBIDDEN_KEYWORDS[diet]
    patterns = []
    for keyword in keywords["hebrew"]:
        patterns.append((
            keyword,
            re.compile(
                rf"(?<![{HEBREW_LETTER}])[והבלמשכ]?{re.escape(keyword)}(?![{HEBREW_LETTER}])"
            ),
        ))
    for keyword in keywords["english"]:
        patterns.append((keyword, re.compile(rf"\b{re.escape(keyword)}(?:s|es)?\b")))
    return tuple(patterns)


def find_forbidden(text: str, diet: DietType) -> Optional[str]:
    """Return the first forbidden keyword found in `text`, or None."""
    combined = (text or "").lower()
    for phrase in SAFE_PHRASES.get(diet, []):
        combined = combined.replace(phrase, " ")
    for keyword, pattern in _keyword_patterns(diet):
        if pattern.search(combined):
            return keyword
    return None


@dataclass
class DietFinding:
    """A food item that breaks the diet."""

    day: int
    meal_order: int
    meal_name: str
    food: str
    keyword: str

    @property
    def path(self) -> str:
        return f"days.{self.day - 1}.meals.{self.meal_order - 1}"

    def describe(self, diet: DietType) -> str:
        return (
            f'{self.meal_name}: "{self.food}" contains forbidden ingredient '
            f"({self.keyword}) for {diet.value} diet"
        )


@dataclass
class DietComplianceReport:
    """Outcome of checking a whole plan against one diet."""

    diet: DietType
    findings: List[DietFinding] = field(default_factory=list)
    total_meals: int = 0
    average_daily_carbs: float = 0.0
    max_daily_carbs_g: float = KETO_MAX_DAILY_CARBS_G

    @property
    def affected_meals(self) -> int:
        return len({(f.day, f.meal_order) for f in self.findings})

    @property
    def violation_rate(self) -> float:
        return self.affected_meals / self.total_meals if self.total_meals else 0.0

    @property
    def carbs_exceeded(self) -> bool:
        return self.diet == DietType.KETO and self.average_daily_carbs > self.max_daily_carbs_g

    @property
    def ok(self) -> bool:
        return not self.findings and not self.carbs_exceeded


def check_diet_compliance(
    plan: Dict[str, Any],
    diet: DietType,
    max_daily_carbs_g: float = KETO_MAX_DAILY_CARBS_G,
) -> DietComplianceReport:
    """
    Scan every food item of a normalized nutrition plan for forbidden ingredients.

    Args:
        plan: Normalized nutrition plan document
        diet: Diet the plan must follow
        max_daily_carbs_g: Keto ceiling on average daily carbs

    Returns:
        DietComplianceReport with one finding per offending item
    """
    report = DietComplianceReport(diet=diet, max_daily_carbs_g=max_daily_carbs_g)
    if diet == DietType.REGULAR:
        return report

    days = plan.get("days") or []
    total_carbs = 0.0

    for day in days:
        for meal in day.get("meals") or []:
            report.total_meals += 1
            total_carbs += float((meal.get("macros") or {}).get("carbs_g") or 0)
            for item in meal.get("items") or []:
                text = f"{item.get('food') or ''} {item.get('notes') or ''}"
                keyword = find_forbidden(text, diet)
                if keyword:
                    report.findings.append(
                        DietFinding(
                            day=day.get("day", 1),
                            meal_order=meal.get("order", 1),
                            meal_name=str(meal.get("name", "Unknown meal")),
                            food=str(item.get("food", "")),
                            keyword=keyword,
                        )
                    )

    if days:
        report.average_daily_carbs = total_carbs / len(days)
    return report
