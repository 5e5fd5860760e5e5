"""Application configuration managed via environment variables."""
from functools import lru_cache
from typing import List

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    app_name: str = "NextStep Backend"
    debug: bool = False
    log_level: str = "INFO"
    database_url: str = "postgresql+psycopg2://nextstep@localhost:5432/nextstep"
    opik_enabled: bool = False
    opik_api_key: str | None = None
    opik_project: str = "nextstep"
    openai_api_key: str | None = None
    openai_model: str = "gpt-4o"
    openai_fallback_models: List[str] = Field(default_factory=lambda: ["gpt-4o-mini", "gpt-4.1-mini"])
    default_hours_per_week: int = 5
    default_timeline_weeks: int = 6


@lru_cache
def get_settings() -> Settings:
    """Return a cached Settings instance."""
    return Settings()


settings = get_settings()
