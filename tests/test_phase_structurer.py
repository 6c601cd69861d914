from __future__ import annotations

import asyncio
import random

import pytest

from coachforge.core.errors import PhaseStructureInvalid
from coachforge.services.phase_structurer import (
    assemble_phases,
    build_phase_prompts,
    estimate_phase_workouts,
    phase_count_guidance,
    structure_phases,
)
from coachforge.services.program_models import PhaseDraft
from tests.fakes import THREE_PHASES_42, ScriptedGenerationService, build_context, phase_structure_response


def test_structure_phases_tiles_the_program() -> None:
    context = build_context()
    service = ScriptedGenerationService({"phase_structure": phase_structure_response(THREE_PHASES_42)})

    structure = asyncio.run(structure_phases(context, service))

    assert structure.program_name == "Engine Builder"
    assert [(phase.start_day, phase.end_day) for phase in structure.phases] == THREE_PHASES_42
    assert [phase.phase_id for phase in structure.phases] == ["phase_1", "phase_2", "phase_3"]
    assert [phase.duration_days for phase in structure.phases] == [14, 14, 14]
    assert sum(phase.estimated_workouts for phase in structure.phases) == 24
    assert structure.confidence == 1.0
    assert len(service.calls("phase_structure")) == 1


def test_unordered_phases_are_sorted_and_blank_fields_defaulted() -> None:
    drafts = [
        PhaseDraft(phase_id="peak", name="", start_day=15, end_day=28),
        PhaseDraft(phase_id="peak", name="Base", start_day=1, end_day=14),
    ]

    phases = assemble_phases(drafts, 28, 3)

    assert [phase.start_day for phase in phases] == [1, 15]
    assert [phase.phase_id for phase in phases] == ["peak", "peak_2"]
    assert phases[1].name == "Phase 2"


@pytest.mark.parametrize(
    "ranges",
    [
        [(1, 14), (16, 42)],
        [(1, 20), (15, 42)],
        [(2, 42)],
        [(1, 14), (15, 40)],
        [(1, 1), (2, 42)],
    ],
)
def test_invalid_coverage_raises(ranges) -> None:
    context = build_context()
    service = ScriptedGenerationService({"phase_structure": phase_structure_response(ranges)})

    with pytest.raises(PhaseStructureInvalid) as excinfo:
        asyncio.run(structure_phases(context, service))

    assert excinfo.value.step == "phase_structure"


def test_empty_phase_list_raises() -> None:
    with pytest.raises(PhaseStructureInvalid):
        assemble_phases([], 42, 4)


def test_default_program_name_when_blank() -> None:
    context = build_context()
    response = phase_structure_response(THREE_PHASES_42)
    response["programName"] = "  "
    service = ScriptedGenerationService({"phase_structure": response})

    structure = asyncio.run(structure_phases(context, service))

    assert structure.program_name == "42-Day Improve Conditioning Program"


def test_estimates_use_absolute_week_boundaries() -> None:
    assert estimate_phase_workouts(1, 10, 3) + estimate_phase_workouts(11, 20, 3) == 6
    assert estimate_phase_workouts(1, 14, 4) == 8
    assert estimate_phase_workouts(1, 6, 4) == 0


def test_phase_count_guidance_and_prompt() -> None:
    assert phase_count_guidance(42) == "2-3 phases"
    assert phase_count_guidance(70) == "3-4 phases"
    assert phase_count_guidance(84) == "4-5 phases"

    system_prompt, user_prompt = build_phase_prompts(build_context())

    assert "never ask questions" in system_prompt
    assert "Coach Riley" in system_prompt
    assert "last ends on day 42" in user_prompt


@pytest.mark.parametrize("frequency", range(1, 8))
def test_estimates_sum_to_whole_weeks_for_any_split(frequency) -> None:
    rng = random.Random(frequency)
    for total_days in range(7, 366):
        cuts = sorted(rng.sample(range(2, total_days), k=min(4, total_days - 2)))
        starts = [1] + cuts
        ends = [cut - 1 for cut in cuts] + [total_days]

        estimates = [estimate_phase_workouts(start, end, frequency) for start, end in zip(starts, ends)]

        assert sum(estimates) == (total_days // 7) * frequency, (total_days, starts)
