"""
Command-line interface for the plan pipeline.

Provides commands for:
- Post-processing model output saved to a file
- Generating a plan end to end (OpenAI or a canned sample response)
- Viewing the validation rules
"""

import asyncio
import json
from pathlib import Path
from typing import List, Optional, Union

import typer
from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from coachplan.config import get_settings
from coachplan.database import PlanRepository, init_database
from coachplan.diets import map_diet
from coachplan.errors import GenerationError, PlanPipelineError
from coachplan.llm import OpenAIPlanGenerator, sample_generator
from coachplan.logging_config import configure_logging
from coachplan.pipeline import PlanGenerationPipeline, process_text
from coachplan.plan_schemas import NutritionPlan, WorkoutPlan
from coachplan.schemas import (
    GenerationContext,
    PipelineFailure,
    PipelineResult,
    PlanKind,
    ValidationMode,
)
from coachplan.trace import PipelineTraceBuilder
from coachplan.validator import ValidationRules

app = typer.Typer(help="Coach Plan - post-processing and validation of AI-generated plans")
console = Console()


# ===== DISPLAY HELPER FUNCTIONS =====


def _display_issues(issues: List[dict], title: str) -> None:
    table = Table(title=title, box=box.ROUNDED)
    table.add_column("Path", style="cyan")
    table.add_column("Message")
    for issue in issues:
        table.add_row(issue.get("path", ""), issue.get("message", ""))
    console.print(table)


def _display_result(result: PipelineResult) -> None:
    """
    Display an accepted plan with its auto-corrections.

    Args:
        result: PipelineResult from the pipeline
    """
    plan = result.plan
    if result.plan_kind == PlanKind.WORKOUT:
        table = Table(
            title=f"Workout plan ({plan.get('goal')})",
            box=box.ROUNDED,
            caption=f"{WorkoutPlan.model_validate(plan).total_exercises()} exercises in total",
        )
        table.add_column("#", justify="right")
        table.add_column("Day", style="cyan")
        table.add_column("Exercises", justify="right")
        table.add_column("Sets", justify="right", style="yellow")
        table.add_column("Focus")
        for day in plan.get("plan", []):
            table.add_row(
                str(day["order"]),
                day["day_name"],
                str(len(day["exercises"])),
                str(day["total_sets"]),
                ", ".join(day["muscles_focus"]),
            )
    else:
        targets = plan.get("daily_targets", {})
        table = Table(
            title=f"Nutrition plan ({plan.get('goal')}, {plan.get('diet')}, "
                  f"target {targets.get('calories')} kcal)",
            box=box.ROUNDED,
            caption=f"Average {NutritionPlan.model_validate(plan).average_daily_calories():.0f} kcal per day",
        )
        table.add_column("Day", justify="right")
        table.add_column("Meals", justify="right")
        table.add_column("Calories", justify="right", style="yellow")
        table.add_column("Protein (g)", justify="right")
        for day in plan.get("days", []):
            totals = day.get("totals", {})
            table.add_row(
                str(day["day"]),
                str(len(day["meals"])),
                str(totals.get("calories")),
                str(totals.get("protein_g")),
            )
    console.print(table)

    attempts = len(result.attempts)
    console.print(f"\n[green]✓ Plan accepted[/green] after {attempts} attempt(s)")
    if result.warnings:
        console.print(f"\n[bold]Auto-corrections ({len(result.warnings)}):[/bold]")
        for warning in result.warnings:
            console.print(f"  • {warning}")


def _display_failure(failure: PipelineFailure) -> None:
    console.print(
        Panel(
            f"[bold]{failure.error.value}[/bold]: {failure.message}",
            title="[red]✗ Plan rejected[/red]",
            border_style="red",
        )
    )
    if failure.first_attempt_issues:
        _display_issues(failure.first_attempt_issues, "First attempt")
    if failure.retry_issues:
        _display_issues(failure.retry_issues, "Retry")
    if failure.sample:
        console.print(f"\n[dim]Sample: {failure.sample}[/dim]")


def _build_context(
    kind: PlanKind,
    user_id: str,
    goal: str,
    frequency: int,
    days: int,
    diet: str,
) -> GenerationContext:
    try:
        return GenerationContext(
            plan_kind=kind,
            user_id=user_id,
            goal=goal,
            frequency=frequency,
            days=days,
            diet=map_diet(diet),
        )
    except Exception as e:
        console.print(f"[red]✗ Invalid request: {e}[/red]")
        raise typer.Exit(1)


def _load_rules(rules: Optional[Path]) -> ValidationRules:
    if rules is None:
        return ValidationRules()
    try:
        return ValidationRules.from_file(rules)
    except Exception as e:
        console.print(f"[red]✗ Failed to load rules: {e}[/red]")
        raise typer.Exit(1)


def _save_trace(
    outcome: Union[PipelineResult, PipelineFailure],
    context: GenerationContext,
    trace_format: str,
) -> None:
    builder = PipelineTraceBuilder.from_outcome(outcome, context)
    trace_path = builder.save_to_file(Path("pipeline_logs"), format=trace_format)
    console.print(f"✓ Trace saved: [cyan]{trace_path}[/cyan]")


# ===== COMMANDS =====


@app.command()
def process(
    input_file: Path = typer.Argument(..., help="File holding raw model output", exists=True),
    kind: PlanKind = typer.Option(PlanKind.WORKOUT, "--kind", "-k", help="Plan kind"),
    goal: str = typer.Option("", "--goal", "-g", help="Requested goal (Hebrew or English)"),
    frequency: int = typer.Option(
        4, "--frequency", "-n", help="Workouts per week or meals per day"
    ),
    days: int = typer.Option(1, "--days", help="Days the nutrition plan covers"),
    diet: str = typer.Option("regular", "--diet", help="Diet label (nutrition only)"),
    user_id: str = typer.Option("cli-user", "--user-id", help="User identifier"),
    hard: bool = typer.Option(False, "--hard", help="Hard validation (no auto-corrections)"),
    rules: Optional[Path] = typer.Option(
        None, "--rules", "-r", help="Path to validation rules JSON file", exists=True
    ),
    output: Optional[Path] = typer.Option(
        None, "--output", "-o", help="Write the accepted plan to this JSON file"
    ),
):
    """
    Extract, repair, normalize and validate model output saved to a file.

    Runs a single pass; nothing is generated or retried.
    """
    settings = get_settings()
    configure_logging(log_level=settings.log_level)
    context = _build_context(kind, user_id, goal, frequency, days, diet)
    mode = ValidationMode.HARD if hard else ValidationMode.SOFT

    raw = input_file.read_text(encoding="utf-8")
    try:
        result = process_text(raw, context, settings, rules=_load_rules(rules), mode=mode)
    except PlanPipelineError as e:
        console.print(f"[red]✗ {e.kind.value}: {e.message}[/red]")
        _display_issues(e.issues(), "Issues")
        if e.sample:
            console.print(f"\n[dim]Sample: {e.sample}[/dim]")
        raise typer.Exit(1)

    _display_result(result)

    if output:
        with open(output, "w", encoding="utf-8") as f:
            json.dump(result.plan, f, indent=2, ensure_ascii=False)
        console.print(f"\n✓ Plan saved: [cyan]{output}[/cyan]")


@app.command()
def generate(
    kind: PlanKind = typer.Option(PlanKind.WORKOUT, "--kind", "-k", help="Plan kind"),
    goal: str = typer.Option("mass", "--goal", "-g", help="Requested goal (Hebrew or English)"),
    frequency: int = typer.Option(
        4, "--frequency", "-n", help="Workouts per week or meals per day"
    ),
    days: int = typer.Option(1, "--days", help="Days the nutrition plan covers"),
    diet: str = typer.Option("regular", "--diet", help="Diet label (nutrition only)"),
    user_id: str = typer.Option("cli-user", "--user-id", help="User identifier"),
    mock: bool = typer.Option(
        False, "--mock", help="Use a canned sample response instead of OpenAI"
    ),
    hard: bool = typer.Option(False, "--hard", help="Hard validation (no auto-corrections)"),
    rules: Optional[Path] = typer.Option(
        None, "--rules", "-r", help="Path to validation rules JSON file", exists=True
    ),
    save: bool = typer.Option(False, "--save/--no-save", help="Persist the accepted plan"),
    save_trace: bool = typer.Option(
        True, "--save-trace/--no-trace", help="Save pipeline trace to file"
    ),
    trace_format: str = typer.Option(
        "markdown", "--trace-format", "-f", help="Trace output format (json or markdown)"
    ),
):
    """
    Generate a plan end to end with one corrective retry.

    Workflow:
    1. Build prompts from the request
    2. Generate (OpenAI, or a sample response with --mock)
    3. Extract, repair, normalize, validate; retry once if rejected
    4. Display, persist and trace the outcome
    """
    settings = get_settings()
    configure_logging(log_level=settings.log_level)
    context = _build_context(kind, user_id, goal, frequency, days, diet)
    mode = ValidationMode.HARD if hard else ValidationMode.SOFT

    console.print(f"\n[bold cyan]Coach Plan: {kind.value} plan[/bold cyan]\n")

    try:
        generator = sample_generator(context) if mock else OpenAIPlanGenerator(settings)
        pipeline = PlanGenerationPipeline(
            generator, settings, rules=_load_rules(rules), mode=mode
        )
        outcome = asyncio.run(pipeline.run(context))
    except GenerationError as e:
        console.print(f"[red]✗ {e.kind.value}: {e.message}[/red]")
        raise typer.Exit(1)

    if save_trace:
        _save_trace(outcome, context, trace_format)

    if isinstance(outcome, PipelineFailure):
        _display_failure(outcome)
        raise typer.Exit(1)

    _display_result(outcome)

    if save:
        session = init_database(settings.database_url)
        try:
            saved = PlanRepository(session).save(
                outcome.plan, context, warnings=outcome.warnings
            )
        finally:
            session.close()
        console.print(f"✓ Plan stored with id [cyan]{saved['id']}[/cyan]")


@app.command()
def show_rules(
    rules: Optional[Path] = typer.Option(
        None, "--rules", "-r", help="Path to validation rules JSON file", exists=True
    ),
):
    """Display the validation thresholds in effect."""
    loaded = _load_rules(rules)

    table = Table(title="Validation Rules", box=box.ROUNDED)
    table.add_column("Plan", style="cyan")
    table.add_column("Rule")
    table.add_column("Value", justify="right", style="yellow")

    for name, value in loaded.workout.model_dump().items():
        table.add_row("workout", name, str(value))
    for name, value in loaded.nutrition.model_dump().items():
        table.add_row("nutrition", name, str(value))

    console.print(table)
    settings = get_settings()
    mode = "soft" if settings.soft_validate else "hard"
    console.print(f"\nDefault validation mode: [bold]{mode}[/bold]")


if __name__ == "__main__":
    app()
