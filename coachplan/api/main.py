"""
FastAPI Application

Main entry point for the plan post-processing web API.
"""

import logging
from typing import Dict

from fastapi import FastAPI, HTTPException, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from coachplan.api.routes import plans
from coachplan.config import get_settings
from coachplan.errors import PlanPipelineError
from coachplan.logging_config import configure_logging

configure_logging(log_level=get_settings().log_level)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Coach Plan API",
    description="Generation and post-processing of AI workout and nutrition plans",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
)

# CORS configuration - allow frontend to access API
app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:3000",  # React dev server
        "http://localhost:5173",  # Vite dev server
        "http://127.0.0.1:3000",
        "http://127.0.0.1:5173",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(plans.router, prefix="/api", tags=["Plans"])


@app.get("/")
async def root() -> Dict[str, str]:
    """Root endpoint - API information."""
    return {
        "name": "Coach Plan API",
        "version": "1.0.0",
        "docs": "/docs",
        "health": "/health",
    }


@app.get("/health")
async def health_check() -> Dict[str, str]:
    """Health check endpoint."""
    return {"status": "healthy", "service": "coachplan-api"}


@app.exception_handler(PlanPipelineError)
async def plan_pipeline_exception_handler(request, exc: PlanPipelineError):
    """Generation failures map to 502/504; unusable output maps to 422."""
    logger.warning("%s on %s: %s", exc.kind.value, request.url.path, exc.message)
    return plans.pipeline_error_response(exc, get_settings().sample_chars)


@app.exception_handler(HTTPException)
async def http_exception_handler(request, exc: HTTPException):
    """Handle HTTP exceptions with consistent error format."""
    return JSONResponse(
        status_code=exc.status_code,
        content={"ok": False, "error": exc.detail, "message": str(exc.detail)},
    )


@app.exception_handler(Exception)
async def general_exception_handler(request, exc: Exception):
    """Handle unexpected exceptions."""
    logger.exception("Unhandled error on %s", request.url.path)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "ok": False,
            "error": "Internal Server Error",
            "message": str(exc),
        },
    )


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "coachplan.api.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
        log_level="info",
    )
