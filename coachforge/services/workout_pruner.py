"""Trim excess training days down to the requested frequency."""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Sequence

from coachforge.observability.metrics import log_metric
from coachforge.observability.tracing import trace
from coachforge.services.generation.base import GenerationService
from coachforge.services.generation.client import generate_structured
from coachforge.services.phase_structurer import estimate_phase_workouts
from coachforge.services.program_models import ProgramDraft, PruneSelection, WorkoutTemplate

logger = logging.getLogger(__name__)


@dataclass
class PruneResult:
    draft: ProgramDraft
    removed_days: List[int]
    reasoning: str = ""
    affected_phase_ids: List[str] = field(default_factory=list)
    adjusted: bool = False

    def to_dict(self) -> Dict[str, object]:
        return {
            "removed_days": self.removed_days,
            "reasoning": self.reasoning,
            "affected_phase_ids": self.affected_phase_ids,
            "adjusted": self.adjusted,
            "training_days": len(self.draft.training_days()),
        }


def affected_phases(draft: ProgramDraft) -> List[str]:
    """Phases holding more training days than their estimated share; every phase when none stands out."""
    training_days = draft.training_days()
    frequency = draft.program.training_frequency
    affected = []
    for phase in draft.program.phases:
        actual = sum(1 for day in training_days if phase.start_day <= day <= phase.end_day)
        estimate = phase.estimated_workouts or estimate_phase_workouts(phase.start_day, phase.end_day, frequency)
        if actual > estimate:
            affected.append(phase.phase_id)
    return affected or [phase.phase_id for phase in draft.program.phases]


def build_prune_prompts(
    draft: ProgramDraft,
    current: int,
    target: int,
    phase_ids: Sequence[str],
) -> tuple[str, str]:
    program = draft.program
    by_day: Dict[int, List[str]] = {}
    for template in draft.templates:
        if not template.is_rest:
            by_day.setdefault(template.day_number, []).append(f"{template.name} ({template.type})")
    schedule = [
        {"day": day, "week": (day - 1) // 7 + 1, "templates": names}
        for day, names in sorted(by_day.items())
    ]
    system_prompt = (
        "You are a coach trimming a training program that schedules too many training days. "
        "Choose whole days to convert into rest days. Keep key sessions, spread rest evenly across weeks "
        "and keep recovery between hard sessions. Return only day numbers and a short reasoning."
    )
    user_prompt = (
        f"Program: {program.name} ({program.total_days} days, {program.training_frequency} training days/week)\n"
        f"Affected phases: {', '.join(phase_ids)}\n"
        f"Current training days: {current}. Target: {target}. Remove exactly {current - target} day(s).\n\n"
        f"Training schedule:\n{json.dumps(schedule, indent=2)}"
    )
    return system_prompt, user_prompt


async def prune_workouts(
    draft: ProgramDraft,
    *,
    target: int,
    service: GenerationService,
) -> PruneResult:
    """Ask the service which days to drop, then enforce exactly `target` training days.

    The service only names days; template payloads never round-trip. Invalid or
    duplicate selections are ignored, a surplus is trimmed and a shortfall is
    topped up from the densest weeks, latest day first.
    """
    original_days = draft.training_days()
    current = len(original_days)
    if target >= current:
        return PruneResult(draft=draft, removed_days=[], reasoning="No pruning needed")

    phase_ids = affected_phases(draft)
    system_prompt, user_prompt = build_prune_prompts(draft, current, target, phase_ids)
    metadata = {"program_id": draft.program.program_id, "current": current, "target": target}
    with trace("program.prune", metadata=metadata, user_id=draft.program.user_id):
        result = await generate_structured(
            service,
            step="prune",
            system_prompt=system_prompt,
            user_prompt=user_prompt,
            response_model=PruneSelection,
            metadata={"program_id": draft.program.program_id},
            user_id=draft.program.user_id,
        )

    requested = result.value.days_to_remove
    removed = select_days_to_remove(original_days, requested, current - target)
    adjusted = removed != sorted(set(requested))
    if adjusted:
        logger.info(
            "Adjusted prune selection for program %s: requested %s, removing %s",
            draft.program.program_id,
            requested,
            removed,
        )

    pruned = apply_removal(draft, removed)
    pruned.step_confidences["prune"] = result.confidence
    log_metric("program.prune.days_removed", len(removed), metadata={**metadata, "adjusted": adjusted})
    return PruneResult(
        draft=pruned,
        removed_days=removed,
        reasoning=result.value.reasoning,
        affected_phase_ids=phase_ids,
        adjusted=adjusted,
    )


def select_days_to_remove(training_days: Sequence[int], requested: Sequence[int], count: int) -> List[int]:
    """Exactly `count` days drawn from `training_days`, honouring `requested` where valid."""
    available = set(training_days)
    selected: List[int] = []
    for day in requested:
        if day in available and day not in selected:
            selected.append(day)
    selected = selected[:count]

    remaining = [day for day in training_days if day not in selected]
    while len(selected) < count and remaining:
        weeks: Dict[int, List[int]] = {}
        for day in remaining:
            weeks.setdefault((day - 1) // 7, []).append(day)
        # Densest week first; ties go to the later week.
        week = max(weeks, key=lambda index: (len(weeks[index]), index))
        day = max(weeks[week])
        selected.append(day)
        remaining.remove(day)
    return sorted(selected)


def apply_removal(draft: ProgramDraft, removed_days: Sequence[int]) -> ProgramDraft:
    removed = set(removed_days)
    templates: List[WorkoutTemplate] = [
        template for template in draft.templates if template.day_number not in removed
    ]
    return ProgramDraft(
        program=draft.program.model_copy(),
        templates=templates,
        rest_days=sorted(set(draft.rest_days) | removed),
        step_confidences=dict(draft.step_confidences),
    )
