"""OpenAI-backed generation provider."""
from __future__ import annotations

import json
import logging

import openai

from coachforge.services.generation.base import GenerationRequest, GenerationService


logger = logging.getLogger(__name__)


class OpenAIGenerationService(GenerationService):
    def __init__(self, *, api_key: str, model: str, timeout: float) -> None:
        # Retries belong to the run, not the transport: a failed run restarts from scratch.
        self._client = openai.AsyncOpenAI(api_key=api_key, timeout=timeout, max_retries=0)
        self._model = model

    async def generate(self, request: GenerationRequest) -> str:
        system_prompt = request.system_prompt
        if request.schema:
            system_prompt = (
                f"{system_prompt}\n\n"
                f"Return strictly valid JSON for `{request.schema_name}` matching this schema:\n"
                f"{json.dumps(request.schema, indent=2)}"
            )
        logger.debug("Calling %s for step=%s", self._model, request.step)
        completion = await self._client.chat.completions.create(
            model=self._model,
            response_format={"type": "json_object"},
            messages=[
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": request.user_prompt},
            ],
        )
        choice = completion.choices[0]
        if choice.finish_reason == "length":
            logger.warning("Generation for step=%s hit the token limit; output is likely truncated", request.step)
        return choice.message.content or ""
