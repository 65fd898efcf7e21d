"""
Pipeline trace generation and export.

A trace documents how a plan got accepted or rejected: which attempt
reached which stage, what was repaired and auto-corrected, and which
violations drove the retry. Traces are exported to JSON and Markdown for
server-side review; they are never returned to end users.
"""

import json
from pathlib import Path
from typing import Dict, List, Optional, Union

from coachplan.schemas import (
    AttemptRecord,
    GenerationContext,
    PipelineFailure,
    PipelineResult,
    PipelineState,
    PipelineTrace,
    PlanKind,
)


class PipelineTraceBuilder:
    """
    Builds and exports traces of pipeline runs.

    The trace shows, per attempt:
    - The temperature used and the last stage reached
    - The repair steps applied
    - The violations found
    And, for the run as a whole, the final state with its warnings or issues.
    """

    def __init__(self, user_id: str, plan_kind: PlanKind):
        """
        Initialize trace builder.

        Args:
            user_id: Requesting user
            plan_kind: Kind of plan requested
        """
        self.trace = PipelineTrace(user_id=user_id, plan_kind=plan_kind)

    def add_attempt(self, record: AttemptRecord) -> None:
        """Append one attempt's diagnostics."""
        self.trace.attempts.append(record)
        if record.attempt > 1 and self.trace.state == PipelineState.FIRST_ATTEMPT:
            self.trace.state = PipelineState.RETRYING

    def set_result(
        self,
        state: PipelineState,
        warnings: Optional[List[str]] = None,
        issues: Optional[List[Dict[str, str]]] = None,
    ) -> None:
        """
        Set the terminal state.

        Args:
            state: VALID or FAILED
            warnings: Auto-corrections of the accepted attempt
            issues: Final issues of a failed run
        """
        self.trace.state = state
        self.trace.warnings = list(warnings or [])
        self.trace.issues = list(issues or [])

    @classmethod
    def from_outcome(
        cls,
        outcome: Union[PipelineResult, PipelineFailure],
        context: GenerationContext,
    ) -> "PipelineTraceBuilder":
        """
        Create a trace builder from a finished pipeline run.

        Args:
            outcome: PipelineResult or PipelineFailure
            context: Request context of the run

        Returns:
            PipelineTraceBuilder with every attempt and the final state
        """
        builder = cls(context.user_id, context.plan_kind)
        for record in outcome.attempts:
            builder.add_attempt(record)

        if isinstance(outcome, PipelineFailure):
            builder.set_result(PipelineState.FAILED, issues=outcome.issues)
        else:
            builder.set_result(PipelineState.VALID, warnings=outcome.warnings)
        return builder

    def export_to_json(self) -> dict:
        """
        Export trace to JSON-serializable dictionary.

        Returns:
            Dictionary representation of the trace
        """
        return self.trace.model_dump(mode="json")

    def export_to_markdown(self) -> str:
        """
        Export trace to human-readable Markdown format.

        Returns:
            Markdown-formatted trace report
        """
        lines = []

        lines.append("# Pipeline Trace")
        lines.append("")
        lines.append(f"**Timestamp:** {self.trace.timestamp.strftime('%Y-%m-%d %H:%M:%S')}")
        lines.append(f"**User:** `{self.trace.user_id}`")
        lines.append(f"**Plan:** `{self.trace.plan_kind.value}`")
        lines.append(f"**State:** **{self.trace.state.value.upper()}**")
        lines.append("")
        lines.append("---")
        lines.append("")

        lines.append("## Attempts")
        lines.append("")

        if not self.trace.attempts:
            lines.append("*No attempts recorded*")
            lines.append("")

        for record in self.trace.attempts:
            status = "✅ accepted" if record.succeeded else f"❌ stopped at {record.stage.value}"
            lines.append(f"### Attempt {record.attempt}: {status}")
            if record.temperature is not None:
                lines.append(f"- **Temperature:** {record.temperature}")
            lines.append(f"- **Elapsed:** {record.elapsed_ms} ms")
            if record.repair_steps:
                lines.append(f"- **Repairs:** {', '.join(record.repair_steps)}")
            if record.error_kind:
                lines.append(f"- **Error:** `{record.error_kind.value}`: {record.error_message}")
            if record.violations:
                lines.append(f"- **Violations ({len(record.violations)}):**")
                for violation in record.violations:
                    expected = f" (required: {violation.expected})" if violation.expected else ""
                    lines.append(f"  - `{violation.path}` {violation.message}{expected}")
            if record.sample:
                lines.append("- **Sample:**")
                lines.append("")
                lines.append("```")
                lines.append(record.sample)
                lines.append("```")
            lines.append("")

        lines.append("---")
        lines.append("")

        lines.append("## Final Decision")
        lines.append("")

        if self.trace.state == PipelineState.VALID:
            lines.append("✅ **ACCEPTED**")
            lines.append("")
            if self.trace.warnings:
                lines.append(f"**Auto-corrections ({len(self.trace.warnings)}):**")
                for warning in self.trace.warnings:
                    lines.append(f"- {warning}")
            else:
                lines.append("No auto-corrections were needed.")
        elif self.trace.state == PipelineState.FAILED:
            lines.append("⛔ **FAILED**")
            lines.append("")
            for issue in self.trace.issues:
                lines.append(f"- `{issue.get('path', '')}` {issue.get('message', '')}")
        else:
            lines.append("⏳ **IN PROGRESS**")

        lines.append("")
        return "\n".join(lines)

    def save_to_file(self, output_dir: Path, format: str = "json") -> Path:
        """
        Save trace to file in specified format.

        Args:
            output_dir: Directory to save trace file
            format: Output format ("json" or "markdown")

        Returns:
            Path to saved file

        Raises:
            ValueError: If format is not supported
        """
        if format not in ("json", "markdown"):
            raise ValueError(f"Unsupported format: {format}. Use 'json' or 'markdown'")

        output_dir.mkdir(parents=True, exist_ok=True)

        timestamp_str = self.trace.timestamp.strftime("%Y%m%d_%H%M%S")
        user_id = self.trace.user_id.replace(" ", "_")
        stem = f"trace_{self.trace.plan_kind.value}_{user_id}_{timestamp_str}"

        if format == "json":
            filepath = output_dir / f"{stem}.json"
            with open(filepath, "w", encoding="utf-8") as f:
                json.dump(self.export_to_json(), f, indent=2, ensure_ascii=False)
        else:
            filepath = output_dir / f"{stem}.md"
            with open(filepath, "w", encoding="utf-8") as f:
                f.write(self.export_to_markdown())

        return filepath


def load_trace_from_file(filepath: Path) -> PipelineTrace:
    """
    Load a pipeline trace from JSON file.

    Args:
        filepath: Path to trace JSON file

    Returns:
        PipelineTrace object

    Raises:
        FileNotFoundError: If file doesn't exist
        ValueError: If the file is not a valid trace
    """
    if not filepath.exists():
        raise FileNotFoundError(f"Trace file not found: {filepath}")

    with open(filepath, "r", encoding="utf-8") as f:
        data = json.load(f)

    try:
        return PipelineTrace(**data)
    except Exception as e:
        raise ValueError(f"Invalid trace file: {e}") from e
