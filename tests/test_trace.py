"""
Tests for pipeline trace generation and export.

Ensures that traces are properly built from pipeline outcomes and can be
exported to JSON and Markdown.
"""

import json
from pathlib import Path
import tempfile

import pytest

from coachplan.schemas import (
    AttemptRecord,
    ErrorKind,
    PipelineFailure,
    PipelineResult,
    PipelineStage,
    PipelineState,
    PlanKind,
    ValidationViolation,
)
from coachplan.trace import PipelineTraceBuilder, load_trace_from_file


# Fixtures

@pytest.fixture
def trace_builder():
    """Create a basic trace builder."""
    return PipelineTraceBuilder(user_id="user-1", plan_kind=PlanKind.WORKOUT)


@pytest.fixture
def too_many_exercises():
    return ValidationViolation(
        path="plan.0.exercises",
        rule="exercises_per_day",
        message='Day "A" has 15 exercises. Must be 6-10 per day',
        observed=15,
        expected="6-10 exercises",
    )


@pytest.fixture
def retried_result(workout_plan, too_many_exercises):
    """Accepted outcome whose first attempt failed validation."""
    return PipelineResult(
        plan_kind=PlanKind.WORKOUT,
        plan=workout_plan,
        warnings=['Day "A" total_sets recomputed: 99 → 18'],
        attempts=[
            AttemptRecord(
                attempt=1,
                temperature=0.2,
                stage=PipelineStage.VALIDATION,
                error_kind=ErrorKind.VALIDATION,
                error_message="Plan failed validation with 1 violation(s)",
                violations=[too_many_exercises],
                repair_steps=["removed trailing commas"],
                sample='{"plan": [',
            ),
            AttemptRecord(attempt=2, temperature=0.0, stage=PipelineStage.ACCEPTED),
        ],
    )


@pytest.fixture
def failure():
    """Outcome rejected after both attempts."""
    attempts = [
        AttemptRecord(
            attempt=n,
            stage=PipelineStage.EXTRACTION,
            error_kind=ErrorKind.EXTRACTION,
            error_message="Could not extract valid JSON from model output",
        )
        for n in (1, 2)
    ]
    issues = [{"path": "", "message": "Could not extract valid JSON from model output"}]
    return PipelineFailure(
        error=ErrorKind.EXTRACTION,
        message="Could not extract valid JSON from model output",
        issues=issues,
        first_attempt_issues=issues,
        retry_issues=issues,
        attempts=attempts,
    )


# Builder Tests

def test_trace_builder_initialization(trace_builder):
    """Test that trace builder initializes correctly."""
    trace = trace_builder.trace

    assert trace.user_id == "user-1"
    assert trace.plan_kind == PlanKind.WORKOUT
    assert trace.state == PipelineState.FIRST_ATTEMPT
    assert trace.attempts == []


def test_second_attempt_moves_to_retrying(trace_builder):
    """Test that recording a second attempt marks the run as retrying."""
    trace_builder.add_attempt(AttemptRecord(attempt=1, stage=PipelineStage.PARSE))
    assert trace_builder.trace.state == PipelineState.FIRST_ATTEMPT

    trace_builder.add_attempt(AttemptRecord(attempt=2, stage=PipelineStage.GENERATION))
    assert trace_builder.trace.state == PipelineState.RETRYING


def test_set_result(trace_builder):
    trace_builder.set_result(PipelineState.VALID, warnings=["fixed"])

    assert trace_builder.trace.state == PipelineState.VALID
    assert trace_builder.trace.warnings == ["fixed"]
    assert trace_builder.trace.issues == []


def test_from_accepted_outcome(retried_result, workout_context):
    builder = PipelineTraceBuilder.from_outcome(retried_result, workout_context)

    assert builder.trace.state == PipelineState.VALID
    assert len(builder.trace.attempts) == 2
    assert builder.trace.warnings == retried_result.warnings


def test_from_failed_outcome(failure, workout_context):
    builder = PipelineTraceBuilder.from_outcome(failure, workout_context)

    assert builder.trace.state == PipelineState.FAILED
    assert builder.trace.issues == failure.issues
    assert builder.trace.warnings == []


# Export Tests

def test_export_to_json(retried_result, workout_context):
    """Test exporting trace to JSON."""
    data = PipelineTraceBuilder.from_outcome(retried_result, workout_context).export_to_json()

    assert data["user_id"] == "user-1"
    assert data["plan_kind"] == "workout"
    assert data["state"] == "valid"
    assert data["attempts"][0]["violations"][0]["path"] == "plan.0.exercises"

    # Should be JSON-serializable
    json.dumps(data)


def test_export_to_markdown_accepted(retried_result, workout_context):
    """Test exporting an accepted run to Markdown."""
    markdown = PipelineTraceBuilder.from_outcome(retried_result, workout_context).export_to_markdown()

    assert "# Pipeline Trace" in markdown
    assert "## Attempts" in markdown
    assert "### Attempt 1: ❌ stopped at validation" in markdown
    assert "### Attempt 2: ✅ accepted" in markdown
    assert "- **Repairs:** removed trailing commas" in markdown
    assert "`plan.0.exercises`" in markdown
    assert "(required: 6-10 exercises)" in markdown
    assert "✅ **ACCEPTED**" in markdown
    assert "**Auto-corrections (1):**" in markdown


def test_export_to_markdown_failed(failure, workout_context):
    """Test exporting a failed run to Markdown."""
    markdown = PipelineTraceBuilder.from_outcome(failure, workout_context).export_to_markdown()

    assert "⛔ **FAILED**" in markdown
    assert "`ExtractionError`" in markdown
    assert "Could not extract valid JSON from model output" in markdown


def test_export_to_markdown_in_progress(trace_builder):
    markdown = trace_builder.export_to_markdown()

    assert "*No attempts recorded*" in markdown
    assert "⏳ **IN PROGRESS**" in markdown


# File Tests

def test_save_to_file_json(retried_result, workout_context):
    """Test saving trace to JSON file."""
    builder = PipelineTraceBuilder.from_outcome(retried_result, workout_context)
    with tempfile.TemporaryDirectory() as tmpdir:
        filepath = builder.save_to_file(Path(tmpdir), format="json")

        assert filepath.exists()
        assert filepath.suffix == ".json"
        assert filepath.name.startswith("trace_workout_user-1_")

        with open(filepath, encoding="utf-8") as f:
            data = json.load(f)

        assert data["state"] == "valid"


def test_save_to_file_markdown(failure, workout_context):
    """Test saving trace to Markdown file."""
    builder = PipelineTraceBuilder.from_outcome(failure, workout_context)
    with tempfile.TemporaryDirectory() as tmpdir:
        filepath = builder.save_to_file(Path(tmpdir) / "traces", format="markdown")

        assert filepath.exists()
        assert filepath.suffix == ".md"
        assert "# Pipeline Trace" in filepath.read_text(encoding="utf-8")


def test_save_to_file_invalid_format(trace_builder):
    """Test that invalid format raises error."""
    with tempfile.TemporaryDirectory() as tmpdir:
        with pytest.raises(ValueError):
            trace_builder.save_to_file(Path(tmpdir), format="xml")


def test_load_trace_from_file(retried_result, workout_context):
    """Test loading trace from saved JSON file."""
    builder = PipelineTraceBuilder.from_outcome(retried_result, workout_context)
    with tempfile.TemporaryDirectory() as tmpdir:
        filepath = builder.save_to_file(Path(tmpdir), format="json")

        loaded = load_trace_from_file(filepath)

        assert loaded.state == PipelineState.VALID
        assert len(loaded.attempts) == 2
        assert loaded.attempts[0].violations[0].rule == "exercises_per_day"


def test_load_trace_from_nonexistent_file():
    """Test that loading from nonexistent file raises error."""
    with pytest.raises(FileNotFoundError):
        load_trace_from_file(Path("nonexistent_trace.json"))


def test_load_invalid_trace_file(tmp_path):
    filepath = tmp_path / "trace.json"
    filepath.write_text('{"state": "valid"}', encoding="utf-8")

    with pytest.raises(ValueError, match="Invalid trace file"):
        load_trace_from_file(filepath)
