"""
FastAPI dependencies.

Tests override `get_settings` and `get_generator` through
`app.dependency_overrides`.
"""

from fastapi import Depends
from sqlalchemy.orm import Session

from coachplan.config import Settings, get_settings
from coachplan.database import PlanRepository, get_db_session
from coachplan.llm import OpenAIPlanGenerator, PlanGenerator


def get_db(settings: Settings = Depends(get_settings)):
    """Database session dependency."""
    yield from get_db_session(settings.database_url)


def get_repository(db: Session = Depends(get_db)) -> PlanRepository:
    return PlanRepository(db)


def get_generator(settings: Settings = Depends(get_settings)) -> PlanGenerator:
    """OpenAI generator; fails with GenerationError when no API key is configured."""
    return OpenAIPlanGenerator(settings)
