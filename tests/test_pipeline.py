"""
Tests for the single-pass processor and the retry controller.

Test scenarios:
1. Noisy but salvageable answers are accepted on the first attempt
2. Unusable output on the first attempt triggers one corrective retry
3. Two unusable answers end in a structured failure carrying both issue lists
4. Generation failures and timeouts surface unchanged on the first attempt,
   and end the run as a failure on the retry
5. Valid JSON that exceeds decoder or float limits still feeds the retry
"""

import asyncio
import copy
import json

import pytest

from coachplan.config import Settings
from coachplan.errors import (
    GenerationError,
    GenerationTimeoutError,
    JsonExtractError,
    JsonParseError,
    PlanValidationError,
)
from coachplan.llm import ScriptedGenerator, sample_workout_text
from coachplan.pipeline import PlanGenerationPipeline, process_text
from coachplan.schemas import (
    ErrorKind,
    PipelineFailure,
    PipelineResult,
    PipelineStage,
    PipelineState,
    ValidationMode,
)


def overloaded_text(plan, count=15) -> str:
    """Workout answer whose first day holds `count` exercises."""
    plan = copy.deepcopy(plan)
    day = plan["plan"][0]
    day["exercises"] = [
        copy.deepcopy(day["exercises"][i % len(day["exercises"])]) for i in range(count)
    ]
    return json.dumps(plan, ensure_ascii=False)


def run(pipeline, context, **kwargs):
    return asyncio.run(pipeline.run(context, **kwargs))


# ============================================================================
# Scenario 1: Single Pass
# ============================================================================


def test_sample_workout_answer_accepted(settings, workout_context):
    """
    TEST_CASE_001: Fenced Workout Answer

    Expected:
    - Fence and label removed, units stripped from quoted numbers
    - Bare rep counts expanded to the mass range
    - Plan accepted with normalization warnings
    """
    result = process_text(sample_workout_text(workout_context), workout_context, settings)

    assert isinstance(result, PipelineResult)
    assert result.ok is True
    assert result.state == PipelineState.VALID
    assert len(result.plan["plan"]) == 2

    first = result.plan["plan"][0]["exercises"][0]
    assert first["rest_seconds"] == 90
    assert first["reps"] == "8-12"
    assert first["tempo"] == "2-0-2"
    assert result.plan["plan"][0]["total_sets"] == 21

    record = result.attempts[0]
    assert record.succeeded
    assert "stripped unit from quoted number" in record.repair_steps
    assert result.warnings


def test_noisy_nutrition_answer_accepted(settings, raw_nutrition_text, nutrition_context):
    result = process_text(raw_nutrition_text, nutrition_context, settings)

    assert result.ok is True
    assert result.plan["days"][0]["totals"]["calories"] == 2000
    assert "removed trailing commas" in result.attempts[0].repair_steps


def test_no_json_raises_extract_error(settings, workout_context):
    with pytest.raises(JsonExtractError) as exc_info:
        process_text("I cannot build a plan today.", workout_context, settings)

    assert exc_info.value.kind == ErrorKind.EXTRACTION


def test_broken_json_raises_parse_error(settings, workout_context):
    with pytest.raises(JsonParseError) as exc_info:
        process_text('{"a": 1 "b": 2}', workout_context, settings)

    assert exc_info.value.message.startswith("Invalid JSON after repair:")
    assert exc_info.value.issues()[0]["path"] == "$"
    assert exc_info.value.sample == '{"a": 1 "b": 2}'


def test_hard_mode_raises_validation_error(settings, workout_plan, workout_context):
    with pytest.raises(PlanValidationError) as exc_info:
        process_text(
            overloaded_text(workout_plan), workout_context, settings, mode=ValidationMode.HARD
        )

    paths = [issue["path"] for issue in exc_info.value.issues()]
    assert "plan.0.exercises" in paths


# ============================================================================
# Scenario 2: Corrective Retry
# ============================================================================


def test_first_attempt_accepted_without_retry(settings, workout_context):
    generator = ScriptedGenerator([sample_workout_text(workout_context)])

    outcome = run(PlanGenerationPipeline(generator, settings), workout_context)

    assert outcome.ok is True
    assert len(generator.calls) == 1
    assert generator.calls[0].temperature == settings.temperature
    assert len(outcome.attempts) == 1


def test_retry_recovers_from_unparseable_output(settings, workout_context):
    """
    TEST_CASE_002: Garbage Then Valid

    Expected:
    - First attempt stops at extraction
    - Retry prompt carries the corrective note, at the retry temperature
    - Second attempt accepted
    """
    generator = ScriptedGenerator(
        ["Sorry, I cannot help with that.", sample_workout_text(workout_context)]
    )

    outcome = run(PlanGenerationPipeline(generator, settings), workout_context)

    assert outcome.ok is True
    assert [a.attempt for a in outcome.attempts] == [1, 2]
    assert outcome.attempts[0].stage == PipelineStage.EXTRACTION
    assert outcome.attempts[0].error_kind == ErrorKind.EXTRACTION
    assert outcome.attempts[1].succeeded

    retry = generator.calls[1]
    assert "CRITICAL: The previous answer was rejected." in retry.system
    assert "Could not extract valid JSON from model output" in retry.system
    assert retry.user == generator.calls[0].user
    assert retry.temperature == settings.retry_temperature


def test_explicit_prompts_are_used(settings, workout_context):
    generator = ScriptedGenerator([sample_workout_text(workout_context)])

    run(PlanGenerationPipeline(generator, settings), workout_context, system="SYS", user="USR")

    assert generator.calls[0].system == "SYS"
    assert generator.calls[0].user == "USR"


# ============================================================================
# Scenario 3: Final Failure
# ============================================================================


def test_two_invalid_answers_fail(settings, workout_plan, workout_context):
    """
    TEST_CASE_003: Fifteen Exercises Twice

    Expected:
    - Exactly two generation calls, the second with the corrective note
    - Failure carries the issues of both attempts
    """
    text = overloaded_text(workout_plan)
    generator = ScriptedGenerator([text, text])

    outcome = run(PlanGenerationPipeline(generator, settings), workout_context)

    assert isinstance(outcome, PipelineFailure)
    assert outcome.ok is False
    assert outcome.state == PipelineState.FAILED
    assert outcome.error == ErrorKind.VALIDATION
    assert outcome.message.startswith("Plan failed validation with")

    assert len(generator.calls) == 2
    assert "CRITICAL" in generator.calls[1].system
    assert "plan.0.exercises" in generator.calls[1].system
    assert [call.temperature for call in generator.calls] == [0.2, 0.0]

    assert "plan.0.exercises" in [i["path"] for i in outcome.first_attempt_issues]
    assert "plan.0.exercises" in [i["path"] for i in outcome.retry_issues]
    assert outcome.issues == outcome.retry_issues
    assert all(a.stage == PipelineStage.VALIDATION for a in outcome.attempts)


def test_failure_sample_truncated(workout_context):
    settings = Settings(database_url="sqlite://", openai_api_key=None, sample_chars=100)
    garbage = "x" * 500
    generator = ScriptedGenerator([garbage, garbage])

    outcome = run(PlanGenerationPipeline(generator, settings), workout_context)

    assert outcome.error == ErrorKind.EXTRACTION
    assert len(outcome.sample) == 103
    assert outcome.sample.endswith("...")
    assert outcome.issues == [
        {"path": "", "message": "Could not extract valid JSON from model output"}
    ]


# ============================================================================
# Scenario 4: Generation Failures
# ============================================================================


def test_generation_error_not_retried(settings, workout_context):
    generator = ScriptedGenerator(
        [GenerationError("upstream down"), sample_workout_text(workout_context)]
    )

    with pytest.raises(GenerationError, match="upstream down"):
        run(PlanGenerationPipeline(generator, settings), workout_context)

    assert len(generator.calls) == 1


def test_generation_timeout(workout_context):
    settings = Settings(
        database_url="sqlite://", openai_api_key=None, generation_timeout_seconds=0.05
    )
    generator = ScriptedGenerator(
        [sample_workout_text(workout_context)], delay_seconds=0.5
    )

    with pytest.raises(GenerationTimeoutError) as exc_info:
        run(PlanGenerationPipeline(generator, settings), workout_context)

    assert exc_info.value.kind == ErrorKind.GENERATION
    assert len(generator.calls) == 1


def test_generation_timeout_on_retry_keeps_first_attempt_issues(settings, workout_context):
    """
    TEST_CASE_004: Unparseable Answer Then Timeout

    Expected:
    - Run ends as a failure instead of raising
    - Failure keeps the first attempt's issues and the timeout as the final error
    """
    generator = ScriptedGenerator(
        ["no json here", GenerationTimeoutError("Generation timed out after 60s")]
    )

    outcome = run(PlanGenerationPipeline(generator, settings), workout_context)

    assert isinstance(outcome, PipelineFailure)
    assert outcome.error == ErrorKind.GENERATION
    assert outcome.timed_out is True
    assert outcome.first_attempt_issues == [
        {"path": "", "message": "Could not extract valid JSON from model output"}
    ]
    assert outcome.issues == [{"path": "", "message": "Generation timed out after 60s"}]
    assert outcome.sample == "no json here"
    assert len(generator.calls) == 2
    assert outcome.attempts[1].stage == PipelineStage.GENERATION


def test_generation_error_on_retry_is_not_a_timeout(settings, workout_context):
    generator = ScriptedGenerator(["no json here", GenerationError("upstream down")])

    outcome = run(PlanGenerationPipeline(generator, settings), workout_context)

    assert outcome.ok is False
    assert outcome.error == ErrorKind.GENERATION
    assert outcome.timed_out is False


# ============================================================================
# Scenario 5: Hostile JSON
# ============================================================================


def test_integer_digit_limit_raises_parse_error(settings, workout_context):
    text = '{"plan": [{"exercises": [{"sets": 1' + "0" * 5000 + "}]}]}"

    with pytest.raises(JsonParseError) as exc_info:
        process_text(text, workout_context, settings)

    assert exc_info.value.message.startswith("Invalid JSON after repair:")
    assert len(exc_info.value.sample) == 303


def test_deep_nesting_raises_parse_error(settings, workout_context):
    text = '{"plan": ' + "[" * 100000 + "]" * 100000 + "}"

    with pytest.raises(JsonParseError):
        process_text(text, workout_context, settings)


def test_parse_limits_consume_the_retry(settings, workout_context):
    text = '{"plan": [{"exercises": [{"sets": 1' + "0" * 5000 + "}]}]}"
    generator = ScriptedGenerator([text, sample_workout_text(workout_context)])

    outcome = run(PlanGenerationPipeline(generator, settings), workout_context)

    assert outcome.ok is True
    assert outcome.attempts[0].stage == PipelineStage.PARSE
    assert len(generator.calls) == 2


def test_huge_integer_reaches_validation(settings, workout_context):
    # Parses fine but does not fit a float; the normalizer falls back to defaults
    text = '{"plan": [{"exercises": [{"sets": 1' + "0" * 400 + "}]}]}"
    generator = ScriptedGenerator([text, sample_workout_text(workout_context)])

    outcome = run(PlanGenerationPipeline(generator, settings), workout_context)

    assert outcome.ok is True
    assert outcome.attempts[0].stage == PipelineStage.VALIDATION
    assert outcome.attempts[0].error_kind == ErrorKind.VALIDATION
