"""Decompose a program's duration into contiguous training phases."""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import List, Sequence

from coachforge.core.errors import PhaseStructureInvalid
from coachforge.observability.tracing import trace
from coachforge.services.generation.base import GenerationService
from coachforge.services.generation.client import generate_structured
from coachforge.services.program_models import Phase, PhaseDraft, PhaseStructureResponse
from coachforge.services.program_validator import coverage_problems
from coachforge.services.requirements_loader import ProgramContext

logger = logging.getLogger(__name__)

MAX_PHASES = 5


@dataclass
class PhaseStructure:
    program_name: str
    program_description: str
    phases: List[Phase]
    confidence: float


def phase_count_guidance(total_days: int) -> str:
    weeks = total_days / 7
    if weeks < 8:
        return "2-3 phases"
    if weeks < 12:
        return "3-4 phases"
    return "4-5 phases"


def estimate_phase_workouts(start_day: int, end_day: int, training_frequency: int) -> int:
    """floor(days/7) x frequency, counted on absolute week boundaries.

    Counting completed weeks at the phase end minus those at the phase start keeps
    the per-phase estimates summing to floor(total_days/7) x frequency.
    """
    return (end_day // 7 - (start_day - 1) // 7) * training_frequency


def build_phase_prompts(context: ProgramContext) -> tuple[str, str]:
    system_prompt = (
        "You are an expert strength and conditioning coach designing the macro structure of a "
        "training program. Split the program into sequential phases with a clear training focus each. "
        "The program runs as a background job: never ask questions, decide with the information given."
    )
    if context.coach_name or context.coach_style:
        system_prompt += f"\nCoach persona: {context.coach_name or 'Coach'} ({context.coach_style or 'balanced'})."
    history = context.context_excerpt or "None available"
    user_prompt = (
        f"Program requirements:\n{json.dumps(context.prompt_summary(), indent=2)}\n\n"
        f"Relevant history:\n{history}\n\n"
        "### PHASE RULES\n"
        f"- The program is {context.total_days} days long; use {phase_count_guidance(context.total_days)} "
        f"and never more than {MAX_PHASES}.\n"
        "- Phases are consecutive: the first starts on day 1, each next phase starts the day after the "
        f"previous one ends, and the last ends on day {context.total_days}.\n"
        "- Every phase spans at least two days (start_day < end_day).\n"
        "- Give each phase a short name, a one-sentence description and 2-4 focus areas.\n"
        "- Also return a program_name and a 1-2 sentence program_description."
    )
    return system_prompt, user_prompt


async def structure_phases(context: ProgramContext, service: GenerationService) -> PhaseStructure:
    """Single generation call producing the ordered phase list.

    Raises PhaseStructureInvalid when the phases do not tile [1, total_days].
    """
    system_prompt, user_prompt = build_phase_prompts(context)
    with trace(
        "program.phase_structure",
        metadata={"program_id": context.program_id, "total_days": context.total_days},
        user_id=context.user_id,
    ):
        result = await generate_structured(
            service,
            step="phase_structure",
            system_prompt=system_prompt,
            user_prompt=user_prompt,
            response_model=PhaseStructureResponse,
            metadata={"program_id": context.program_id},
            user_id=context.user_id,
        )
        phases = assemble_phases(result.value.phases, context.total_days, context.training_frequency)

    logger.info(
        "Structured program %s into %d phase(s): %s",
        context.program_id,
        len(phases),
        ", ".join(f"{phase.start_day}-{phase.end_day}" for phase in phases),
    )
    response = result.value
    return PhaseStructure(
        program_name=response.program_name.strip() or _default_program_name(context),
        program_description=response.program_description.strip(),
        phases=phases,
        confidence=result.confidence,
    )


def assemble_phases(drafts: Sequence[PhaseDraft], total_days: int, training_frequency: int) -> List[Phase]:
    if not drafts:
        raise PhaseStructureInvalid("Generation returned no phases", step="phase_structure")
    ordered = sorted(drafts, key=lambda draft: (draft.start_day, draft.end_day))
    problems = coverage_problems([(draft.start_day, draft.end_day) for draft in ordered], total_days)
    if problems:
        raise PhaseStructureInvalid("; ".join(problems), step="phase_structure")
    if len(ordered) > MAX_PHASES:
        logger.warning("Generated %d phases (guidance is at most %d)", len(ordered), MAX_PHASES)

    phases: List[Phase] = []
    seen_ids: set[str] = set()
    for index, draft in enumerate(ordered, start=1):
        phase_id = draft.phase_id.strip() or f"phase_{index}"
        if phase_id in seen_ids:
            phase_id = f"{phase_id}_{index}"
        seen_ids.add(phase_id)
        phases.append(
            Phase(
                phase_id=phase_id,
                name=draft.name.strip() or f"Phase {index}",
                description=draft.description.strip(),
                start_day=draft.start_day,
                end_day=draft.end_day,
                focus_areas=[area.strip() for area in draft.focus_areas if area.strip()],
                estimated_workouts=estimate_phase_workouts(draft.start_day, draft.end_day, training_frequency),
            )
        )
    return phases


def _default_program_name(context: ProgramContext) -> str:
    focus = context.goals[0] if context.goals else "Training"
    return f"{context.total_days}-Day {focus.title()} Program"
