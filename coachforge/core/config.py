"""Application configuration managed via environment variables."""
from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    app_name: str = "CoachForge Backend"
    debug: bool = False
    log_level: str = "INFO"
    database_url: str = "postgresql+psycopg2://coachforge@localhost:5432/coachforge"
    opik_enabled: bool = False
    opik_api_key: str | None = None
    opik_project: str = "coachforge"

    # Generation service
    generation_provider: str = "openai"
    openai_api_key: str | None = None
    openai_model: str = "gpt-4o"
    generation_timeout_seconds: float = 180.0
    workflow_timeout_seconds: float = 1800.0

    # Storage collaborators
    object_store_dir: str = ".data/objects"
    vector_provider: str = "noop"
    debug_snapshots_enabled: bool = True

    # Program generation rules
    default_program_days: int = 56
    max_program_days: int = 180
    default_training_frequency: int = 4
    prune_tolerance: float = 0.2
    normalize_confidence_threshold: float = 0.9
    context_top_k: int = 8
    context_min_score: float = 0.7

    # Progress sync worker
    scheduler_enabled: bool = False
    scheduler_timezone: str = "UTC"
    progress_sync_hour: int = 3
    progress_sync_minute: int = 0
    jobs_run_on_startup: bool = False


@lru_cache
def get_settings() -> Settings:
    """Return a cached Settings instance."""
    return Settings()


settings = get_settings()
