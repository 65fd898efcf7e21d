#!/usr/bin/env python3
"""
Quick start script to demonstrate the plan post-processing pipeline.

This script shows the complete workflow, without calling any external model:
1. Post-process a noisy workout answer (fences, Hebrew goal, loose types)
2. Post-process a noisy nutrition answer (camelCase keys, trailing comma)
3. Run the retry controller on a first answer that breaks the rules
4. Save the pipeline trace
"""

import asyncio
import json
from pathlib import Path

from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from coachplan.config import Settings
from coachplan.llm import ScriptedGenerator, sample_nutrition_text, sample_workout_text
from coachplan.pipeline import PlanGenerationPipeline, process_text
from coachplan.schemas import DietType, GenerationContext, PlanKind
from coachplan.trace import PipelineTraceBuilder

console = Console()


def print_header(title: str):
    """Print a formatted header."""
    console.print(f"\n[bold cyan]{title}[/bold cyan]")
    console.print("=" * len(title))


def print_warnings(warnings):
    console.print(f"\n[bold]Auto-corrections ({len(warnings)}):[/bold]")
    for warning in warnings[:10]:
        console.print(f"  • {warning}")
    if len(warnings) > 10:
        console.print(f"  [dim]... and {len(warnings) - 10} more[/dim]")


def main():
    """Run the complete demonstration workflow."""
    console.print("\n[bold magenta]Coach Plan pipeline[/bold magenta]")
    console.print("[dim]Demonstration of complete workflow[/dim]\n")

    settings = Settings(database_url="sqlite://")

    # ===== STEP 1: Workout =====
    print_header("Step 1: Post-process a Workout Answer")

    workout_context = GenerationContext(
        plan_kind=PlanKind.WORKOUT, user_id="demo-user", goal="שריפת שומן", frequency=3
    )
    raw_workout = sample_workout_text(workout_context)
    console.print(f"[dim]{raw_workout[:160]}...[/dim]")

    workout = process_text(raw_workout, workout_context, settings)
    plan = workout.plan
    console.print(f"\n✓ Accepted: goal [green]{plan['goal']}[/green], "
                  f"{plan['days_per_week']} days/week")

    table = Table(title="Workout Days", box=box.ROUNDED)
    table.add_column("Day", style="cyan")
    table.add_column("Exercises", justify="right")
    table.add_column("Total Sets", justify="right", style="yellow")
    table.add_column("Reps (first)")
    for day in plan["plan"]:
        table.add_row(
            day["day_name"],
            str(len(day["exercises"])),
            str(day["total_sets"]),
            day["exercises"][0]["reps"],
        )
    console.print(table)
    print_warnings(workout.warnings)

    # ===== STEP 2: Nutrition =====
    print_header("Step 2: Post-process a Nutrition Answer")

    nutrition_context = GenerationContext(
        plan_kind=PlanKind.NUTRITION,
        user_id="demo-user",
        goal="maintain",
        frequency=4,
        days=2,
        diet=DietType.REGULAR,
    )
    nutrition = process_text(sample_nutrition_text(nutrition_context), nutrition_context, settings)
    targets = nutrition.plan["daily_targets"]
    console.print(f"✓ Accepted: {len(nutrition.plan['days'])} days, "
                  f"target [green]{targets['calories']} kcal[/green]")
    for day in nutrition.plan["days"]:
        console.print(f"  Day {day['day']}: {day['totals']['calories']} kcal "
                      f"over {len(day['meals'])} meals")
    print_warnings(nutrition.warnings)

    # ===== STEP 3: Retry =====
    print_header("Step 3: Retry Controller")

    overloaded = json.loads(sample_workout_text(workout_context).split("```json\n")[1].split("\n```")[0])
    overloaded["plan"][0]["exercises"] = overloaded["plan"][0]["exercises"] * 2
    generator = ScriptedGenerator([json.dumps(overloaded, ensure_ascii=False), raw_workout])

    pipeline = PlanGenerationPipeline(generator, settings)
    outcome = asyncio.run(pipeline.run(workout_context))

    for record in outcome.attempts:
        status = "[green]accepted[/green]" if record.succeeded else f"[red]{record.stage.value}[/red]"
        console.print(f"  Attempt {record.attempt} (temperature {record.temperature}): {status}")
        for violation in record.violations:
            console.print(f"    - {violation.path}: {violation.message}")
    console.print(f"  Generation calls: {len(generator.calls)}")

    # ===== STEP 4: Trace =====
    print_header("Step 4: Save Trace")

    builder = PipelineTraceBuilder.from_outcome(outcome, workout_context)
    trace_path = builder.save_to_file(Path("pipeline_logs"), format="markdown")
    console.print(f"✓ Trace saved to: [cyan]{trace_path}[/cyan]")

    # ===== COMPLETION =====
    console.print("\n")
    panel = Panel(
        "[green]✓[/green] Demonstration complete!\n\n"
        "The pipeline successfully:\n"
        "  1. Extracted and repaired JSON from noisy answers\n"
        "  2. Normalized goals, ranges, tempos and aggregates\n"
        "  3. Rejected an overloaded day and recovered on retry\n\n"
        "Every correction is listed as a warning and in the trace.",
        title="[bold green]Success[/bold green]",
        border_style="green"
    )
    console.print(panel)

    console.print("\n[bold cyan]Next Steps:[/bold cyan]")
    console.print("  • Check pipeline traces in pipeline_logs/")
    console.print("  • Run CLI: python3 -m coachplan.cli generate --mock --goal mass")
    console.print("  • Run API: uvicorn coachplan.api.main:app --reload")
    console.print("  • Run tests: python3 -m pytest\n")


if __name__ == "__main__":
    try:
        main()
    except Exception as e:
        console.print(f"\n[red]Error: {e}[/red]")
        console.print("\n[dim]Make sure you have installed dependencies: pip install -e .[/dim]")
        raise
