"""
Plan generators: the external text-generation collaborator of the pipeline.

The pipeline only depends on the `PlanGenerator` protocol. Production code
uses `OpenAIPlanGenerator`; tests, demos and the CLI `--mock` mode use
`ScriptedGenerator` with canned responses.
"""

import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import List, Optional, Protocol, Sequence, Union

from openai import APIConnectionError, APIError, APITimeoutError, AsyncOpenAI

from coachplan.config import Settings
from coachplan.errors import GenerationError, GenerationTimeoutError
from coachplan.schemas import GenerationContext, PlanKind

logger = logging.getLogger(__name__)


class PlanGenerator(Protocol):
    """Anything that turns a (system, user) prompt pair into raw model text."""

    async def generate(self, system: str, user: str, temperature: float) -> str:
        ...


# ============================================================================
# OpenAI
# ============================================================================


class OpenAIPlanGenerator:
    """
    Chat-completions generator requesting a JSON object response.

    Transport failures are mapped to GenerationError so the pipeline can
    surface them without retrying.
    """

    def __init__(self, settings: Settings, client: Optional[AsyncOpenAI] = None):
        if client is None:
            if not settings.openai_api_key:
                raise GenerationError("COACHPLAN_OPENAI_API_KEY is not set")
            client = AsyncOpenAI(
                api_key=settings.openai_api_key,
                timeout=settings.generation_timeout_seconds,
            )
        self.client = client
        self.model = settings.openai_model
        self.max_tokens = settings.max_output_tokens

    async def generate(self, system: str, user: str, temperature: float) -> str:
        try:
            response = await self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": system},
                    {"role": "user", "content": user},
                ],
                temperature=temperature,
                max_tokens=self.max_tokens,
                response_format={"type": "json_object"},
            )
        except APITimeoutError as e:
            raise GenerationTimeoutError(f"OpenAI request timed out: {e}") from e
        except APIConnectionError as e:
            raise GenerationError(f"OpenAI connection failed: {e}") from e
        except APIError as e:
            raise GenerationError(f"OpenAI request failed: {e}") from e

        choice = response.choices[0] if response.choices else None
        content = choice.message.content if choice else None
        if not content:
            raise GenerationError("OpenAI returned an empty response")

        if response.usage:
            logger.info(
                "OpenAI %s: %d prompt tokens, %d completion tokens",
                self.model,
                response.usage.prompt_tokens,
                response.usage.completion_tokens,
            )
        return content


# ============================================================================
# Scripted
# ============================================================================


@dataclass
class GenerationCall:
    """One recorded call to a scripted generator."""

    system: str
    user: str
    temperature: float


@dataclass
class ScriptedGenerator:
    """
    Returns canned responses in order.

    A response may be an exception instance, which is raised instead of
    returned. `delay_seconds` makes every call sleep first, for timeout tests.
    """

    responses: Sequence[Union[str, Exception]]
    delay_seconds: float = 0.0
    calls: List[GenerationCall] = field(default_factory=list)

    async def generate(self, system: str, user: str, temperature: float) -> str:
        self.calls.append(GenerationCall(system=system, user=user, temperature=temperature))
        if self.delay_seconds:
            await asyncio.sleep(self.delay_seconds)

        index = len(self.calls) - 1
        if index >= len(self.responses):
            raise GenerationError(f"No scripted response left for call {index + 1}")

        response = self.responses[index]
        if isinstance(response, Exception):
            raise response
        return response


# ============================================================================
# Sample Responses
# ============================================================================

_SAMPLE_EXERCISES = [
    ("סקוואט עם מוט", ["ארבע ראשי", "ישבן"]),
    ("לחיצת חזה במוט", ["חזה", "יד אחורית"]),
    ("חתירה במוט", ["גב", "יד קדמית"]),
    ("לחיצת כתפיים עם משקולות", ["כתפיים"]),
    ("דדליפט רומני", ["ירך אחורית", "ישבן"]),
    ("מתח", ["גב", "יד קדמית"]),
    ("כפיפות בטן", ["בטן"]),
]

_SAMPLE_MEALS = [
    ("Breakfast", [("Oatmeal", 60), ("Greek yogurt", 150), ("Blueberries", 80)], 450, 30, 55, 10),
    ("Lunch", [("Chicken breast", 150), ("Brown rice", 180), ("Salad", 150)], 650, 50, 70, 15),
    ("Snack", [("Apple", 150), ("Almonds", 25)], 250, 6, 25, 14),
    ("Dinner", [("Salmon", 150), ("Sweet potato", 200), ("Broccoli", 150)], 650, 40, 55, 25),
    ("Snack", [("Cottage cheese", 200)], 200, 24, 8, 8),
    ("Snack", [("Banana", 120)], 110, 1, 27, 0),
]


def sample_workout_text(context: GenerationContext) -> str:
    """Model-style workout answer: fenced, with label and loosely typed fields."""
    days = []
    for d in range(context.frequency):
        exercises = []
        for i, (name, muscles) in enumerate(_SAMPLE_EXERCISES, start=1):
            exercises.append({
                "name_he": name,
                "sets": "3",
                "reps": "15-20" if "בטן" in muscles else "10",
                "rest_seconds": "90 seconds",
                "tempo": "2 – 0 – 2",
                "target_muscles": muscles,
                "order": i,
            })
        days.append({"day_name": f"אימון {chr(ord('A') + d)}", "exercises": exercises})

    body = json.dumps(
        {"user_id": context.user_id, "goal": context.goal or "mass",
         "days_per_week": context.frequency, "plan": days},
        ensure_ascii=False,
        indent=2,
    )
    return f"Here is your plan:\n```json\n{body}\n```"


def sample_nutrition_text(context: GenerationContext) -> str:
    """Model-style nutrition answer with camelCase keys and a trailing comma."""
    meals = []
    for order, (name, items, kcal, protein, carbs, fat) in enumerate(
        _SAMPLE_MEALS[: max(context.frequency, 3)], start=1
    ):
        meals.append({
            "order": order,
            "name": name,
            "items": [{"food": food, "amount_g": grams} for food, grams in items],
            "macros": {"calories": kcal, "protein_g": protein, "carbs_g": carbs, "fat_g": fat},
        })
    calories = sum(m["macros"]["calories"] for m in meals)

    body = json.dumps(
        {
            "user_id": context.user_id,
            "goal": context.goal or "maintain",
            "summary": "Balanced whole-food plan",
            "dailyTargets": {"calories": calories, "protein_g": 130, "carbs_g": 200,
                             "fat_g": 60, "fiber_g": 30, "water_l": 3},
            "days": [{"day": 1, "meals": meals}],
            "shoppingList": [{"item": "Oatmeal", "quantity": 0.5, "unit": "kg"}],
            "tips": ["Drink water with every meal"],
        },
        ensure_ascii=False,
        indent=2,
    )
    return body[:-1].rstrip() + ",\n}"


def sample_generator(context: GenerationContext) -> ScriptedGenerator:
    """ScriptedGenerator answering both attempts with a sample plan for `context`."""
    if context.plan_kind == PlanKind.NUTRITION:
        text = sample_nutrition_text(context)
    else:
        text = sample_workout_text(context)
    return ScriptedGenerator([text, text])
