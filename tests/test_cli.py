"""Tests for the command-line interface."""

import json

from typer.testing import CliRunner

from coachplan.cli import app

runner = CliRunner()


def test_process_valid_workout_file(fixtures_dir, tmp_path):
    output = tmp_path / "plan.json"

    result = runner.invoke(
        app,
        [
            "process", str(fixtures_dir / "workout_valid.json"),
            "--goal", "mass", "--frequency", "2", "--user-id", "user-1",
            "--output", str(output),
        ],
    )

    assert result.exit_code == 0
    assert "Plan accepted" in result.output
    assert "12 exercises in total" in result.output
    assert json.loads(output.read_text(encoding="utf-8"))["goal"] == "mass"


def test_process_noisy_nutrition_file(fixtures_dir):
    result = runner.invoke(
        app,
        [
            "process", str(fixtures_dir / "raw_nutrition_noisy.txt"),
            "--kind", "nutrition", "--goal", "maintain", "--frequency", "4",
            "--user-id", "user-1",
        ],
    )

    assert result.exit_code == 0
    assert "Auto-corrections" in result.output
    assert "Average 2000 kcal per day" in result.output


def test_process_rejected_file_exits_with_error(fixtures_dir):
    # Three exercises on a single day is below the daily minimum
    result = runner.invoke(
        app,
        ["process", str(fixtures_dir / "raw_workout_fenced.txt"), "--goal", "cut", "--frequency", "5"],
    )

    assert result.exit_code == 1
    assert "ValidationError" in result.output


def test_generate_with_sample_response():
    result = runner.invoke(app, ["generate", "--mock", "--no-trace", "--frequency", "3"])

    assert result.exit_code == 0
    assert "Plan accepted" in result.output


def test_generate_nutrition_with_trace(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)

    result = runner.invoke(
        app,
        ["generate", "--mock", "--kind", "nutrition", "--goal", "maintain", "--frequency", "4",
         "--trace-format", "json"],
    )

    assert result.exit_code == 0
    assert len(list((tmp_path / "pipeline_logs").glob("trace_nutrition_*.json"))) == 1


def test_show_rules():
    result = runner.invoke(app, ["show-rules"])

    assert result.exit_code == 0
    assert "Validation Rules" in result.output
    assert "Default validation mode" in result.output
