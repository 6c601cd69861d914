"""Single entry point for generation calls: timeout, parse/repair, schema validation."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from time import perf_counter
from typing import Any, Dict, Generic, List, Optional, Type, TypeVar

from pydantic import BaseModel, ValidationError

from coachforge.core.config import settings
from coachforge.core.errors import (
    GenerationServiceError,
    GenerationTimeout,
    GenerationUnparseable,
    ProgramGenerationError,
)
from coachforge.observability.metrics import log_metric
from coachforge.observability.tracing import trace
from coachforge.services.generation.base import GenerationRequest, GenerationService
from coachforge.services.generation.schemas import drop_clarification_keys, model_schema
from coachforge.services.response_parser import parse_generation_output

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)


@dataclass
class StructuredResult(Generic[ModelT]):
    value: ModelT
    confidence: float
    repaired: bool = False
    repairs: List[str] = field(default_factory=list)


async def generate_structured(
    service: GenerationService,
    *,
    step: str,
    system_prompt: str,
    user_prompt: str,
    response_model: Type[ModelT],
    schema: Optional[Dict[str, Any]] = None,
    metadata: Optional[Dict[str, Any]] = None,
    user_id: Optional[str] = None,
    timeout: Optional[float] = None,
) -> StructuredResult[ModelT]:
    """Call the generation service and return a validated model.

    Raises GenerationTimeout when the call exceeds its budget,
    GenerationServiceError when the provider itself raises, and
    GenerationUnparseable when the output neither parses (after one repair
    pass) nor validates against `response_model`.
    """
    request = GenerationRequest(
        step=step,
        system_prompt=system_prompt,
        user_prompt=user_prompt,
        schema=schema or model_schema(response_model),
        schema_name=response_model.__name__,
        metadata=dict(metadata or {}),
    )
    trace_metadata = {"step": step, **request.metadata, "llm_input_text": user_prompt[:500]}
    budget = timeout or settings.generation_timeout_seconds
    start = perf_counter()
    with trace(f"generation.{step}", metadata=trace_metadata, user_id=user_id) as generation_trace:
        try:
            raw = await asyncio.wait_for(service.generate(request), timeout=budget)
        except asyncio.TimeoutError as exc:
            log_metric("generation.timeout", 1, metadata={"step": step})
            raise GenerationTimeout(f"Generation step '{step}' exceeded {budget:.0f}s", step=step) from exc
        except ProgramGenerationError:
            raise
        except Exception as exc:
            logger.warning("Generation step %s failed in the provider: %s", step, exc)
            log_metric("generation.failed", 1, metadata={"step": step, "cause": type(exc).__name__})
            raise GenerationServiceError(
                f"Generation step '{step}' failed: {exc}",
                step=step,
                cause=type(exc).__name__,
            ) from exc

        parsed = parse_generation_output(raw, step=step)
        data = drop_clarification_keys(parsed.data)
        try:
            value = response_model.model_validate(data)
        except ValidationError as exc:
            logger.warning("Step %s returned data not matching %s: %s", step, response_model.__name__, exc)
            raise GenerationUnparseable(
                f"Generation output for '{step}' did not match {response_model.__name__}",
                step=step,
                raw_excerpt=raw if isinstance(raw, str) else str(raw),
            ) from exc

        if generation_trace:
            generation_trace.update(
                metadata={**trace_metadata, "repaired": parsed.repaired, "repairs": parsed.repairs}
            )

    latency_ms = (perf_counter() - start) * 1000
    log_metric("generation.latency_ms", latency_ms, metadata={"step": step, "repaired": parsed.repaired})
    if parsed.repaired:
        log_metric("generation.repaired", 1, metadata={"step": step, "repairs": ",".join(parsed.repairs)})
    return StructuredResult(
        value=value,
        confidence=parsed.confidence,
        repaired=parsed.repaired,
        repairs=parsed.repairs,
    )
