"""Pipeline configuration managed via environment variables."""

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="COACHPLAN_", env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    app_name: str = "coachplan"
    log_level: str = "INFO"

    # Soft mode auto-corrects ordering, aggregates and small rep drift.
    soft_validate: bool = True
    # Log every repair step with a before/after preview.
    repair_log: bool = False
    # Failure samples are cut at 300 characters before this limit applies.
    sample_chars: int = Field(300, ge=50, le=300)

    openai_api_key: Optional[str] = None
    openai_model: str = "gpt-4o"
    max_output_tokens: int = Field(4096, ge=256)
    temperature: float = Field(0.2, ge=0.0, le=2.0)
    retry_temperature: float = Field(0.0, ge=0.0, le=2.0)
    generation_timeout_seconds: float = Field(60.0, gt=0)

    database_url: str = "sqlite:///coachplan.db"


@lru_cache
def get_settings() -> Settings:
    """Return a cached Settings instance."""
    return Settings()
