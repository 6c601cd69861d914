"""Generation service factory."""
from __future__ import annotations

from functools import lru_cache

from coachforge.core.config import settings
from coachforge.core.errors import ConfigurationMissing
from coachforge.services.generation.base import GenerationService
from coachforge.services.generation.openai_service import OpenAIGenerationService


@lru_cache
def get_generation_service() -> GenerationService:
    provider = settings.generation_provider.lower()
    if provider != "openai":
        raise ConfigurationMissing(f"Unknown generation provider '{settings.generation_provider}'")
    if not settings.openai_api_key:
        raise ConfigurationMissing("OPENAI_API_KEY missing; program generation is unavailable")
    return OpenAIGenerationService(
        api_key=settings.openai_api_key,
        model=settings.openai_model,
        timeout=settings.generation_timeout_seconds,
    )
