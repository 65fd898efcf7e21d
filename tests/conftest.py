"""Shared fixtures: canned plans, raw model answers and request contexts."""

import json
from pathlib import Path

import pytest

from coachplan.config import Settings
from coachplan.schemas import DietType, GenerationContext, PlanKind

FIXTURES_DIR = Path(__file__).parent / "fixtures"


@pytest.fixture
def fixtures_dir():
    return FIXTURES_DIR


@pytest.fixture
def workout_plan():
    """Normalized, valid two-day mass plan."""
    with open(FIXTURES_DIR / "workout_valid.json", encoding="utf-8") as f:
        return json.load(f)


@pytest.fixture
def nutrition_plan():
    """Normalized, valid one-day, four-meal maintenance plan."""
    with open(FIXTURES_DIR / "nutrition_valid.json", encoding="utf-8") as f:
        return json.load(f)


@pytest.fixture
def raw_workout_text():
    """Fenced workout answer with a Hebrew goal, a bare rep count and a stale total."""
    return (FIXTURES_DIR / "raw_workout_fenced.txt").read_text(encoding="utf-8")


@pytest.fixture
def raw_nutrition_text():
    """Labelled nutrition answer with camelCase keys, units and trailing commas."""
    return (FIXTURES_DIR / "raw_nutrition_noisy.txt").read_text(encoding="utf-8")


@pytest.fixture
def workout_context():
    return GenerationContext(
        plan_kind=PlanKind.WORKOUT, user_id="user-1", goal="mass", frequency=2
    )


@pytest.fixture
def nutrition_context():
    return GenerationContext(
        plan_kind=PlanKind.NUTRITION,
        user_id="user-1",
        goal="maintain",
        frequency=4,
        days=1,
        diet=DietType.REGULAR,
    )


@pytest.fixture
def settings():
    """Settings isolated from the environment's database and API key."""
    return Settings(database_url="sqlite://", openai_api_key=None)
