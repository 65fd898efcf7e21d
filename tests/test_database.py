"""Tests for plan persistence."""

import copy

import pytest

from coachplan.database import PlanRepository, init_database


@pytest.fixture
def session():
    # In-memory engines are cached per URL, so request keys must be unique per test.
    db = init_database("sqlite://")
    yield db
    db.close()


@pytest.fixture
def repository(session):
    return PlanRepository(session)


def test_save_workout_plan(repository, workout_plan, workout_context):
    saved = repository.save(
        workout_plan, workout_context, request_key="db-workout-1", warnings=["fixed"]
    )

    record = repository.get(saved["id"])
    assert record.request_key == "db-workout-1"
    assert record.user_id == "user-1"
    assert record.plan_kind == "workout"
    assert record.goal == "mass"
    assert record.diet is None
    assert record.warnings == ["fixed"]
    assert record.plan_data == workout_plan

    assert [day.day_index for day in record.days] == [1, 2]
    assert record.days[0].title == "יום A - דחיפה"
    assert record.days[0].total == 18
    assert len(record.days[0].items) == 6
    assert record.days[0].items[0].name == "לחיצת חזה במוט"


def test_save_nutrition_plan(repository, nutrition_plan, nutrition_context):
    saved = repository.save(nutrition_plan, nutrition_context, request_key="db-nutrition-1")

    record = repository.get(saved["id"])
    assert record.plan_kind == "nutrition"
    assert record.goal == "maintain"
    assert record.diet == "regular"
    assert record.days[0].title == "Day 1"
    assert record.days[0].total == 2000
    assert [item.name for item in record.days[0].items] == ["Breakfast", "Lunch", "Snack", "Dinner"]
    assert record.days[0].details["totals"]["calories"] == 2000


def test_save_same_request_key_replaces_plan(repository, workout_plan, workout_context):
    first = repository.save(workout_plan, workout_context, request_key="db-upsert-1")

    replacement = copy.deepcopy(workout_plan)
    replacement["plan"] = replacement["plan"][:1]
    second = repository.save(replacement, workout_context, request_key="db-upsert-1")

    assert second["id"] == first["id"]
    record = repository.get(first["id"])
    assert len(record.days) == 1
    assert record.plan_data == replacement
    assert record.updated_at >= record.created_at


def test_save_without_key_creates_new_records(repository, workout_plan, workout_context):
    first = repository.save(workout_plan, workout_context)
    second = repository.save(workout_plan, workout_context)

    assert first["id"] != second["id"]
    assert repository.get(first["id"]).request_key != repository.get(second["id"]).request_key


def test_to_dict(repository, workout_plan, workout_context):
    saved = repository.save(workout_plan, workout_context, request_key="db-dict-1")

    data = repository.get(saved["id"]).to_dict()

    assert data["id"] == saved["id"]
    assert data["plan"] == workout_plan
    assert data["warnings"] == []


def test_get_unknown_plan(repository):
    assert repository.get(999999) is None
