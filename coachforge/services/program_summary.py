"""Natural-language program summary used for semantic indexing."""
from __future__ import annotations

import json
import logging

from coachforge.observability.tracing import trace
from coachforge.services.generation.base import GenerationService
from coachforge.services.generation.client import generate_structured
from coachforge.services.program_models import Program, SummaryResponse

logger = logging.getLogger(__name__)


def fallback_summary(program: Program) -> str:
    goals = ", ".join(program.training_goals[:2]) or "general fitness"
    return (
        f"{program.name}: {program.total_days}-day program ({program.training_frequency}x/week) "
        f"with {len(program.phases)} phase(s). Goals: {goals}."
    )


async def generate_program_summary(program: Program, service: GenerationService) -> str:
    """One call over the finalized program; falls back to a templated sentence on failure."""
    phases = [
        {"name": phase.name, "days": f"{phase.start_day}-{phase.end_day}", "focus_areas": phase.focus_areas}
        for phase in program.phases
    ]
    system_prompt = (
        "You write concise training program summaries for later search. Write 3-4 sentences covering the "
        "program's purpose, its phase progression, weekly structure and equipment. Plain prose, no lists."
    )
    user_prompt = json.dumps(
        {
            "name": program.name,
            "description": program.description,
            "total_days": program.total_days,
            "training_frequency": program.training_frequency,
            "training_goals": program.training_goals,
            "equipment_constraints": program.equipment_constraints,
            "category": program.category,
            "phases": phases,
        },
        indent=2,
    )
    try:
        with trace("program.summary", metadata={"program_id": program.program_id}, user_id=program.user_id):
            result = await generate_structured(
                service,
                step="summary",
                system_prompt=system_prompt,
                user_prompt=user_prompt,
                response_model=SummaryResponse,
                metadata={"program_id": program.program_id},
                user_id=program.user_id,
            )
    except Exception as exc:
        logger.warning("Summary generation failed for program %s; using fallback: %s", program.program_id, exc)
        return fallback_summary(program)

    summary = result.value.summary.strip()
    return summary or fallback_summary(program)
