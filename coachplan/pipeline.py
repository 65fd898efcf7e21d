"""
Plan generation pipeline with a single corrective retry.

One attempt runs extract → repair → parse → normalize → validate over the
text returned by the generation call. The controller is a three-state
machine:

    FIRST_ATTEMPT ──ok──▶ VALID
          │
        fails
          ▼
       RETRYING ──ok──▶ VALID
          │
        fails
          ▼
        FAILED

Extraction, parse and validation failures move the controller forward.
A generation failure or timeout on the first attempt is raised to the caller
unchanged and never consumes the retry. On the retry it ends the run as a
PipelineFailure that keeps the first attempt's issues.
"""

import asyncio
import json
import logging
import time
from typing import List, Optional, Tuple, Union

from coachplan.config import Settings, get_settings
from coachplan.errors import (
    GenerationError,
    GenerationTimeoutError,
    JsonParseError,
    PlanPipelineError,
    PlanValidationError,
    truncate_sample,
)
from coachplan.extraction import extract_json
from coachplan.llm import PlanGenerator
from coachplan.normalizer import normalize_plan
from coachplan.prompts import build_prompts, build_retry_prompts
from coachplan.repair import repair_json_with_steps
from coachplan.schemas import (
    AttemptRecord,
    GenerationContext,
    PipelineFailure,
    PipelineResult,
    PipelineStage,
    PipelineState,
    ValidationMode,
    ValidationResult,
)
from coachplan.validator import PlanValidator, ValidationRules

logger = logging.getLogger(__name__)

MAX_ATTEMPTS = 2

PipelineOutcome = Union[PipelineResult, PipelineFailure]


# ============================================================================
# Stages
# ============================================================================


def run_stages(
    raw: str,
    context: GenerationContext,
    validator: PlanValidator,
    record: AttemptRecord,
    debug: bool = False,
) -> Tuple[ValidationResult, List[str]]:
    """
    Run one pass of extract → repair → parse → normalize → validate.

    `record` is updated as each stage is reached, so on failure it shows
    where the attempt stopped.

    Args:
        raw: Text returned by the generation call
        context: Request context the plan must match
        validator: Validator configured with rules and mode
        record: Attempt diagnostics to fill in
        debug: Log before/after previews of every extraction and repair step

    Returns:
        Tuple of (validation result, all warnings from normalization and validation)

    Raises:
        JsonExtractError: No JSON object in the text
        JsonParseError: Repaired text is still invalid JSON
        PlanValidationError: Violations remained after normalization
    """
    if debug:
        logger.debug("raw model output: %r", raw[:2000] if raw else raw)

    record.stage = PipelineStage.EXTRACTION
    extracted = extract_json(raw, debug=debug)

    record.stage = PipelineStage.REPAIR
    repaired, steps = repair_json_with_steps(extracted, debug=debug)
    record.repair_steps = steps

    record.stage = PipelineStage.PARSE
    try:
        parsed = json.loads(repaired)
    except json.JSONDecodeError as e:
        raise JsonParseError(
            f"Invalid JSON after repair: {e.msg} (line {e.lineno}, column {e.colno})",
            sample=repaired,
        ) from e
    except (ValueError, RecursionError) as e:
        # Integer digit limit or nesting too deep for the decoder
        raise JsonParseError(f"Invalid JSON after repair: {e}", sample=repaired) from e

    record.stage = PipelineStage.NORMALIZATION
    normalized = normalize_plan(parsed, context)

    record.stage = PipelineStage.VALIDATION
    result = validator.validate(normalized.plan, context)
    warnings = normalized.warnings + result.warnings
    record.warnings = warnings

    if not result.valid:
        record.violations = result.violations
        raise PlanValidationError(
            f"Plan failed validation with {len(result.violations)} violation(s)",
            result.violations,
            sample=repaired,
        )

    record.stage = PipelineStage.ACCEPTED
    return result, warnings


def _validator_for(
    settings: Settings,
    rules: Optional[ValidationRules],
    mode: Optional[ValidationMode],
) -> PlanValidator:
    if mode is None:
        mode = ValidationMode.SOFT if settings.soft_validate else ValidationMode.HARD
    return PlanValidator(rules=rules, mode=mode)


def process_text(
    raw: str,
    context: GenerationContext,
    settings: Optional[Settings] = None,
    rules: Optional[ValidationRules] = None,
    mode: Optional[ValidationMode] = None,
) -> PipelineResult:
    """
    Post-process already generated text in a single pass, without retry.

    Args:
        raw: Model output to process
        context: Request context the plan must match
        settings: Settings (cached defaults if omitted)
        rules: Validation thresholds (defaults if omitted)
        mode: Validation mode (from settings.soft_validate if omitted)

    Returns:
        PipelineResult with the accepted plan

    Raises:
        PlanPipelineError: Extraction, parse or validation failure
    """
    settings = settings or get_settings()
    validator = _validator_for(settings, rules, mode)
    record = AttemptRecord(attempt=1, stage=PipelineStage.EXTRACTION)

    started = time.perf_counter()
    result, warnings = run_stages(raw, context, validator, record, debug=settings.repair_log)
    record.elapsed_ms = int((time.perf_counter() - started) * 1000)

    return PipelineResult(
        plan_kind=context.plan_kind,
        plan=result.plan,
        warnings=warnings,
        attempts=[record],
    )


# ============================================================================
# Retry Controller
# ============================================================================


class PlanGenerationPipeline:
    """
    Drives generation and post-processing with at most one corrective retry.

    Example:
        >>> pipeline = PlanGenerationPipeline(ScriptedGenerator([text]))
        >>> outcome = asyncio.run(pipeline.run(context))
        >>> outcome.ok
        True
    """

    def __init__(
        self,
        generator: PlanGenerator,
        settings: Optional[Settings] = None,
        rules: Optional[ValidationRules] = None,
        mode: Optional[ValidationMode] = None,
    ):
        """
        Initialize pipeline.

        Args:
            generator: External text-generation collaborator
            settings: Settings (cached defaults if omitted)
            rules: Validation thresholds (defaults if omitted)
            mode: Validation mode (from settings.soft_validate if omitted)
        """
        self.generator = generator
        self.settings = settings or get_settings()
        self.validator = _validator_for(self.settings, rules, mode)

    async def _generate(self, system: str, user: str, temperature: float) -> str:
        timeout = self.settings.generation_timeout_seconds
        try:
            return await asyncio.wait_for(
                self.generator.generate(system, user, temperature), timeout=timeout
            )
        except asyncio.TimeoutError as e:
            raise GenerationTimeoutError(f"Generation timed out after {timeout:g}s") from e

    async def run(
        self,
        context: GenerationContext,
        system: Optional[str] = None,
        user: Optional[str] = None,
    ) -> PipelineOutcome:
        """
        Generate a plan and post-process it, retrying once on unusable output.

        Args:
            context: Request context the plan must match
            system: System prompt (built from the context if omitted)
            user: User prompt (built from the context if omitted)

        Returns:
            PipelineResult when an attempt is accepted, otherwise a
            PipelineFailure carrying the issues of both attempts

        Raises:
            GenerationError: The first generation call failed or timed out
        """
        if system is None or user is None:
            built_system, built_user = build_prompts(context)
            system = system if system is not None else built_system
            user = user if user is not None else built_user

        state = PipelineState.FIRST_ATTEMPT
        attempts: List[AttemptRecord] = []
        errors: List[PlanPipelineError] = []
        prompt_system, prompt_user = system, user

        for attempt in range(1, MAX_ATTEMPTS + 1):
            temperature = (
                self.settings.temperature if attempt == 1 else self.settings.retry_temperature
            )
            record = AttemptRecord(
                attempt=attempt, temperature=temperature, stage=PipelineStage.GENERATION
            )
            attempts.append(record)
            logger.info(
                "%s: generating %s plan (attempt %d, temperature %.1f)",
                state.value, context.plan_kind.value, attempt, temperature,
            )

            started = time.perf_counter()
            try:
                raw = await self._generate(prompt_system, prompt_user, temperature)
                result, warnings = run_stages(
                    raw, context, self.validator, record, debug=self.settings.repair_log
                )
            except GenerationError as e:
                record.error_kind = e.kind
                record.error_message = e.message
                logger.error("Generation failed on attempt %d: %s", attempt, e.message)
                if not errors:
                    raise
                errors.append(e)
                break
            except PlanPipelineError as e:
                record.error_kind = e.kind
                record.error_message = e.message
                record.sample = truncate_sample(e.sample, self.settings.sample_chars)
                errors.append(e)
                logger.warning(
                    "Attempt %d stopped at %s: %s", attempt, record.stage.value, e.message
                )
                if attempt < MAX_ATTEMPTS:
                    state = PipelineState.RETRYING
                    prompt_system, prompt_user = build_retry_prompts(system, user, e)
                continue
            finally:
                record.elapsed_ms = int((time.perf_counter() - started) * 1000)

            state = PipelineState.VALID
            logger.info(
                "%s: %s plan accepted on attempt %d with %d warnings",
                state.value, context.plan_kind.value, attempt, len(warnings),
            )
            return PipelineResult(
                plan_kind=context.plan_kind,
                plan=result.plan,
                warnings=warnings,
                attempts=attempts,
            )

        state = PipelineState.FAILED
        final = errors[-1]
        logger.error(
            "%s: %s plan rejected after %d attempts: %s",
            state.value, context.plan_kind.value, len(attempts), final.message,
        )
        return PipelineFailure(
            error=final.kind,
            message=final.message,
            issues=final.issues(),
            sample=truncate_sample(
                final.sample if final.sample is not None else errors[0].sample,
                self.settings.sample_chars,
            ),
            first_attempt_issues=errors[0].issues(),
            retry_issues=errors[1].issues() if len(errors) > 1 else [],
            timed_out=isinstance(final, GenerationTimeoutError),
            attempts=attempts,
        )
