"""
Plans API Routes

Endpoints for plan generation, offline post-processing and retrieval.
"""

from typing import Union

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import JSONResponse

from coachplan.api.dependencies import get_generator, get_repository
from coachplan.api.models.requests import (
    NormalizeRequest,
    NutritionPlanRequest,
    WorkoutPlanRequest,
)
from coachplan.api.models.responses import (
    MAX_ISSUES,
    FailureResponse,
    PlanResponse,
    StoredPlanResponse,
)
from coachplan.config import Settings, get_settings
from coachplan.database import PlanRepository
from coachplan.errors import (
    SAMPLE_CHARS,
    GenerationError,
    GenerationTimeoutError,
    PlanPipelineError,
    truncate_sample,
)
from coachplan.llm import PlanGenerator
from coachplan.pipeline import PlanGenerationPipeline, process_text
from coachplan.schemas import ErrorKind, PipelineFailure

router = APIRouter()

FAILURE_RESPONSES = {
    422: {"model": FailureResponse, "description": "Plan failed extraction or validation"},
    502: {"model": FailureResponse, "description": "Generation call failed"},
    504: {"model": FailureResponse, "description": "Generation call timed out"},
}


def failure_response(failure: PipelineFailure) -> JSONResponse:
    """Response for a plan rejected after retry: 422, or 502/504 when the retry call failed."""
    if failure.timed_out:
        status_code = status.HTTP_504_GATEWAY_TIMEOUT
    elif failure.error == ErrorKind.GENERATION:
        status_code = status.HTTP_502_BAD_GATEWAY
    else:
        status_code = status.HTTP_422_UNPROCESSABLE_ENTITY

    body = FailureResponse(
        error=failure.error.value,
        message=failure.message,
        issues=failure.issues[:MAX_ISSUES],
        sample=failure.sample,
    )
    return JSONResponse(status_code=status_code, content=body.model_dump())


def pipeline_error_response(
    error: PlanPipelineError, sample_chars: int = SAMPLE_CHARS
) -> JSONResponse:
    """Map a pipeline exception to 422, 502 or 504."""
    if isinstance(error, GenerationTimeoutError):
        status_code = status.HTTP_504_GATEWAY_TIMEOUT
    elif isinstance(error, GenerationError):
        status_code = status.HTTP_502_BAD_GATEWAY
    else:
        status_code = status.HTTP_422_UNPROCESSABLE_ENTITY

    body = FailureResponse(
        error=error.kind.value,
        message=error.message,
        issues=error.issues()[:MAX_ISSUES],
        sample=truncate_sample(error.sample, sample_chars),
    )
    return JSONResponse(status_code=status_code, content=body.model_dump())


async def _generate_plan(
    request: Union[WorkoutPlanRequest, NutritionPlanRequest],
    generator: PlanGenerator,
    repository: PlanRepository,
    settings: Settings,
) -> Union[PlanResponse, JSONResponse]:
    context = request.to_context()
    pipeline = PlanGenerationPipeline(generator, settings, mode=request.mode)
    outcome = await pipeline.run(context)

    if isinstance(outcome, PipelineFailure):
        return failure_response(outcome)

    plan_id = None
    if request.save:
        plan_id = repository.save(
            outcome.plan, context, request.request_key, warnings=outcome.warnings
        )["id"]

    return PlanResponse(
        id=plan_id,
        plan_kind=outcome.plan_kind,
        plan=outcome.plan,
        warnings=outcome.warnings,
        attempts=len(outcome.attempts),
    )


@router.post("/plans/workout", response_model=PlanResponse, responses=FAILURE_RESPONSES)
async def generate_workout_plan(
    request: WorkoutPlanRequest,
    generator: PlanGenerator = Depends(get_generator),
    repository: PlanRepository = Depends(get_repository),
    settings: Settings = Depends(get_settings),
):
    """
    Generate a workout plan.

    Complete workflow:
    1. Build prompts from the profile
    2. Generate, extract, repair, normalize and validate
    3. Retry once with a corrective prompt if the output is unusable
    4. Persist the accepted plan (unless save=false)

    Args:
        request: WorkoutPlanRequest with profile and days per week

    Returns:
        PlanResponse, or a FailureResponse with status 422/502/504
    """
    try:
        return await _generate_plan(request, generator, repository, settings)
    except (HTTPException, PlanPipelineError):
        raise
    except Exception as e:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Workout plan generation failed: {str(e)}",
        )


@router.post("/plans/nutrition", response_model=PlanResponse, responses=FAILURE_RESPONSES)
async def generate_nutrition_plan(
    request: NutritionPlanRequest,
    generator: PlanGenerator = Depends(get_generator),
    repository: PlanRepository = Depends(get_repository),
    settings: Settings = Depends(get_settings),
):
    """
    Generate a nutrition plan.

    The diet label is mapped to a diet token (Hebrew labels match by
    substring) and enforced by the validator.

    Args:
        request: NutritionPlanRequest with profile, diet, meals and days

    Returns:
        PlanResponse, or a FailureResponse with status 422/502/504
    """
    try:
        return await _generate_plan(request, generator, repository, settings)
    except (HTTPException, PlanPipelineError):
        raise
    except Exception as e:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Nutrition plan generation failed: {str(e)}",
        )


@router.post("/plans/normalize", response_model=PlanResponse, responses=FAILURE_RESPONSES)
async def normalize_plan_text(
    request: NormalizeRequest,
    settings: Settings = Depends(get_settings),
):
    """
    Post-process already generated text without calling the model.

    Runs extraction, repair, normalization and validation once. Nothing is
    persisted.

    Args:
        request: NormalizeRequest with the raw text and request context

    Returns:
        PlanResponse, or a FailureResponse with status 422
    """
    try:
        result = process_text(request.raw, request.to_context(), settings, mode=request.mode)
    except PlanPipelineError as e:
        return pipeline_error_response(e, settings.sample_chars)
    except Exception as e:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Normalization failed: {str(e)}",
        )

    return PlanResponse(
        plan_kind=result.plan_kind,
        plan=result.plan,
        warnings=result.warnings,
        attempts=1,
    )


@router.get("/plans/{plan_id}", response_model=StoredPlanResponse)
async def get_plan(
    plan_id: int,
    repository: PlanRepository = Depends(get_repository),
) -> StoredPlanResponse:
    """
    Get a stored plan.

    Args:
        plan_id: Stored plan id

    Returns:
        StoredPlanResponse

    Raises:
        HTTPException: 404 if the plan does not exist
    """
    record = repository.get(plan_id)
    if record is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Plan '{plan_id}' not found",
        )
    return StoredPlanResponse(**record.to_dict())
