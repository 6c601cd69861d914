"""Per-phase workout template generation, fanned out concurrently across phases."""
from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Sequence

from pydantic import ValidationError

from coachforge.core.errors import GenerationUnparseable
from coachforge.observability.metrics import log_metric
from coachforge.observability.tracing import trace
from coachforge.services.category_fragments import coerce_discipline_payload
from coachforge.services.generation.base import GenerationService
from coachforge.services.generation.client import generate_structured
from coachforge.services.generation.schemas import compose_phase_workouts_schema
from coachforge.services.program_models import (
    Phase,
    PhaseWorkoutsResponse,
    WorkoutTemplate,
    ensure_supported_template_format,
)
from coachforge.services.requirements_loader import ProgramContext

logger = logging.getLogger(__name__)

MAX_TEMPLATES_PER_DAY = 5


@dataclass
class PhaseWorkouts:
    phase_id: str
    templates: List[WorkoutTemplate]
    rest_days: List[int] = field(default_factory=list)
    confidence: float = 1.0


def build_phase_workout_prompts(
    phase: Phase,
    phases: Sequence[Phase],
    context: ProgramContext,
) -> tuple[str, str]:
    fragment = context.fragment
    system_prompt = (
        "You are an expert coach writing the day-by-day workouts for one phase of a training program. "
        "Write each workout description in natural language, the way a coach would brief an athlete. "
        f"Discipline: {fragment.discipline}. {fragment.fragment.guidance} "
        "This runs as a background job: never ask questions, decide with the information given."
    )
    outline = [
        {"phase_id": item.phase_id, "name": item.name, "start_day": item.start_day, "end_day": item.end_day}
        for item in phases
    ]
    weeks = max(1, round(phase.duration_days / 7))
    user_prompt = (
        f"Requirements (context {context.context_id}):\n{json.dumps(context.prompt_summary(), indent=2)}\n\n"
        f"Program outline:\n{json.dumps(outline, indent=2)}\n\n"
        f"### CURRENT PHASE: {phase.name} ({phase.phase_id})\n"
        f"- Days {phase.start_day}-{phase.end_day} ({phase.duration_days} days, about {weeks} week(s)).\n"
        f"- Focus areas: {', '.join(phase.focus_areas) or 'as appropriate'}.\n"
        f"- Description: {phase.description or 'n/a'}\n\n"
        "### RULES\n"
        f"- Train {context.training_frequency} days per week; roughly {phase.estimated_workouts} training days "
        "in this phase. List every other day number in rest_days.\n"
        f"- day_number must stay within {phase.start_day}-{phase.end_day}.\n"
        f"- A training day has 1-{MAX_TEMPLATES_PER_DAY} templates; templates on the same day share one group_id "
        f"of the form group_{context.user_id}_{phase.phase_id}_day<N>.\n"
        f"- template_id values look like template_{context.user_id}_{phase.phase_id}_<unique>.\n"
        "- Only use the listed equipment."
    )
    return system_prompt, user_prompt


async def generate_phase_workouts(
    phase: Phase,
    phases: Sequence[Phase],
    context: ProgramContext,
    service: GenerationService,
) -> PhaseWorkouts:
    """Generate the templates for one phase.

    Reads only its own phase plus the shared read-only context, so calls for
    different phases can run concurrently. Calling it again for the same phase
    returns a fresh result that replaces the previous one.
    """
    system_prompt, user_prompt = build_phase_workout_prompts(phase, phases, context)
    with trace(
        "program.phase_workouts",
        metadata={"program_id": context.program_id, "phase_id": phase.phase_id},
        user_id=context.user_id,
    ):
        result = await generate_structured(
            service,
            step="phase_workouts",
            system_prompt=system_prompt,
            user_prompt=user_prompt,
            response_model=PhaseWorkoutsResponse,
            schema=compose_phase_workouts_schema(context.fragment),
            metadata={"program_id": context.program_id, "phase_id": phase.phase_id},
            user_id=context.user_id,
        )
        templates = build_phase_templates(result.value.workout_templates, phase, context)

    rest_days = sorted(
        {day for day in result.value.rest_days if phase.start_day <= day <= phase.end_day}
        - {template.day_number for template in templates if not template.is_rest}
    )
    logger.info(
        "Phase %s generated %d template(s) over %d training day(s)",
        phase.phase_id,
        len(templates),
        len({template.day_number for template in templates if not template.is_rest}),
    )
    return PhaseWorkouts(
        phase_id=phase.phase_id,
        templates=templates,
        rest_days=rest_days,
        confidence=result.confidence,
    )


async def generate_all_phase_workouts(
    phases: Sequence[Phase],
    context: ProgramContext,
    service: GenerationService,
) -> List[PhaseWorkouts]:
    """Fan out one call per phase and fan in once all complete; any failure aborts the batch."""
    tasks = [
        asyncio.ensure_future(generate_phase_workouts(phase, phases, context, service))
        for phase in phases
    ]
    try:
        results = await asyncio.gather(*tasks)
    except BaseException:
        for task in tasks:
            task.cancel()
        raise
    log_metric("program.phase_workouts.fan_out", len(phases), metadata={"program_id": context.program_id})
    return list(results)


def build_phase_templates(
    raw_templates: Sequence[Dict[str, Any]],
    phase: Phase,
    context: ProgramContext,
) -> List[WorkoutTemplate]:
    """Validate raw templates, clip them to the phase and normalise ids and grouping."""
    templates: List[WorkoutTemplate] = []
    for index, raw in enumerate(raw_templates, start=1):
        if not isinstance(raw, dict):
            logger.warning("Skipping non-object template #%d in phase %s", index, phase.phase_id)
            continue
        ensure_supported_template_format(raw)
        payload = dict(raw)
        for key in ("status", "phaseId", "scheduledDate", "scheduled_date"):
            payload.pop(key, None)
        payload["phase_id"] = phase.phase_id
        discipline = payload.pop("discipline_specific", payload.pop("disciplineSpecific", None))
        payload["discipline_specific"] = coerce_discipline_payload(discipline, context.fragment)
        template = _validate_template(payload, index, phase, raw)
        if not phase.start_day <= template.day_number <= phase.end_day:
            logger.warning(
                "Dropping template on day %s outside phase %s (%s-%s)",
                template.day_number,
                phase.phase_id,
                phase.start_day,
                phase.end_day,
            )
            continue
        templates.append(template)

    by_day: Dict[int, List[WorkoutTemplate]] = {}
    for template in templates:
        by_day.setdefault(template.day_number, []).append(template)

    normalized: List[WorkoutTemplate] = []
    used_ids: set[str] = set()
    used_groups: set[str] = set()
    for day_number in sorted(by_day):
        day_templates = by_day[day_number]
        if len(day_templates) > MAX_TEMPLATES_PER_DAY:
            logger.warning("Day %s has %d templates; keeping %d", day_number, len(day_templates), MAX_TEMPLATES_PER_DAY)
            day_templates = day_templates[:MAX_TEMPLATES_PER_DAY]
        group_id = next((item.group_id for item in day_templates if item.group_id), "")
        if not group_id or group_id in used_groups:
            group_id = f"group_{context.user_id}_{phase.phase_id}_day{day_number}"
        used_groups.add(group_id)
        for position, template in enumerate(day_templates, start=1):
            template_id = template.template_id or f"template_{context.user_id}_{phase.phase_id}_{day_number}_{position}"
            if template_id in used_ids:
                template_id = f"{template_id}_{day_number}_{position}"
            used_ids.add(template_id)
            normalized.append(template.model_copy(update={"template_id": template_id, "group_id": group_id}))

    normalized.sort(key=lambda item: (item.day_number, item.template_id))
    return normalized


def _validate_template(payload: Dict[str, Any], index: int, phase: Phase, raw: Dict[str, Any]) -> WorkoutTemplate:
    try:
        return WorkoutTemplate.model_validate(payload)
    except ValidationError as exc:
        fragment_only = payload.get("discipline_specific") is not None and all(
            error["loc"] and error["loc"][0] in ("discipline_specific", "disciplineSpecific")
            for error in exc.errors()
        )
        if not fragment_only:
            raise GenerationUnparseable(
                f"Template #{index} in phase {phase.phase_id} is malformed: {exc.error_count()} error(s)",
                step="phase_workouts",
                raw_excerpt=json.dumps(raw, default=str),
            ) from exc
    # The discipline fragment is optional enrichment; a malformed one is dropped.
    logger.warning("Dropping malformed discipline_specific on template #%d in phase %s", index, phase.phase_id)
    return WorkoutTemplate.model_validate({**payload, "discipline_specific": None})
