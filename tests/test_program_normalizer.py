from __future__ import annotations

import asyncio

from coachforge.core.errors import GenerationTimeout
from coachforge.services.program_models import Phase
from coachforge.services.program_normalizer import (
    build_normalization_prompts,
    merge_normalized,
    normalize_program,
)
from tests.fakes import ScriptedGenerationService, build_draft

DETAIL_KEY = "programs/user-1/program-1_1767571200000.json"


def _gapped_program():
    program = build_draft().program
    program.phases[1] = Phase(phase_id="phase_2", name="Block 2", start_day=15, end_day=27)
    return program


def _fixed_phases():
    return [
        {"phaseId": "phase_1", "name": "Block 1", "startDay": 1, "endDay": 14},
        {"phaseId": "phase_2", "name": "Block 2", "startDay": 15, "endDay": 28},
        {"phaseId": "phase_3", "name": "Block 3", "startDay": 29, "endDay": 42},
    ]


def test_normalizer_repairs_phases_and_keeps_detail_key() -> None:
    program = _gapped_program()
    service = ScriptedGenerationService(
        {
            "normalize": {
                "isValid": True,
                "normalizedData": {**program.lightweight_dict(), "phases": _fixed_phases()},
                "issues": [
                    {
                        "type": "phase_logic",
                        "severity": "error",
                        "field": "phases[1].end_day",
                        "description": "Gap between day 27 and 29",
                        "corrected": True,
                    }
                ],
                "confidence": 0.95,
                "summary": "Closed the phase gap.",
            }
        }
    )

    result = asyncio.run(normalize_program(program, service, findings=["gap between day 27 and day 29"]))

    assert result.is_valid
    assert result.method == "service"
    assert result.confidence == 0.95
    assert result.corrected_count == 1
    assert result.uncorrected_issues == []
    assert [(phase.start_day, phase.end_day) for phase in result.program.phases] == [(1, 14), (15, 28), (29, 42)]
    assert [phase.estimated_workouts for phase in result.program.phases] == [8, 8, 8]
    assert result.program.detail_key == DETAIL_KEY
    assert result.detail_key_restored is False
    assert program.phases[1].end_day == 27


def test_dropped_or_changed_detail_key_is_restored() -> None:
    program = build_draft().program

    dropped, dropped_restored, _ = merge_normalized(program, {"name": "Engine Builder"})
    changed, changed_restored, _ = merge_normalized(
        program,
        {"detailKey": "programs/other.json", "programId": "hijacked", "userId": "someone-else"},
    )

    assert dropped_restored and changed_restored
    assert dropped.detail_key == DETAIL_KEY
    assert changed.detail_key == DETAIL_KEY
    assert changed.program_id == "program-1"
    assert changed.user_id == "user-1"


def test_empty_normalized_data_keeps_program() -> None:
    program = build_draft().program

    merged, restored, phases_kept = merge_normalized(program, None)

    assert merged is program
    assert restored is False
    assert phases_kept is False


def test_long_name_is_truncated_and_confidence_defaulted() -> None:
    program = build_draft().program
    long_name = "Progressive Conditioning and Strength Development Block for Busy Athletes"
    service = ScriptedGenerationService(
        {"normalize": {"isValid": True, "normalizedData": {"name": long_name, "detailKey": DETAIL_KEY}, "issues": []}}
    )

    result = asyncio.run(normalize_program(program, service))

    assert len(result.program.name) <= 60
    assert long_name.startswith(result.program.name)
    assert result.confidence == 0.8
    assert result.summary == "Normalization completed"


def test_invalid_merged_data_keeps_original() -> None:
    program = build_draft().program
    service = ScriptedGenerationService(
        {"normalize": {"isValid": True, "normalizedData": {"totalDays": "many", "detailKey": DETAIL_KEY}}}
    )

    result = asyncio.run(normalize_program(program, service))

    assert result.is_valid is False
    assert result.program == program
    assert result.uncorrected_issues[0].type == "data_quality"


def test_failed_call_returns_fallback_result() -> None:
    program = build_draft().program
    service = ScriptedGenerationService({"normalize": GenerationTimeout("slow", step="normalize")})

    result = asyncio.run(normalize_program(program, service))

    assert result.is_valid is False
    assert result.confidence == 0.3
    assert result.method == "fallback"
    assert result.program is program
    assert result.issues[0].field == "normalization_system"
    assert result.to_dict()["summary"] == "Normalization failed due to system error"


def test_unparseable_response_is_a_failed_normalization() -> None:
    service = ScriptedGenerationService({"normalize": "Sorry, I cannot do that."})

    result = asyncio.run(normalize_program(build_draft().program, service))

    assert result.method == "fallback"


def test_prompt_carries_findings_and_detail_key() -> None:
    system_prompt, user_prompt = build_normalization_prompts(build_draft().program, ["phase gap"])

    assert "Keep detail_key exactly as given" in system_prompt
    assert "- phase gap" in user_prompt
    assert DETAIL_KEY in user_prompt


def test_renamed_phases_are_mapped_back_to_original_ids() -> None:
    program = build_draft().program
    renamed = [{**phase, "phaseId": f"p{index}"} for index, phase in enumerate(_fixed_phases(), start=1)]

    merged, _, phases_kept = merge_normalized(program, {"phases": renamed, "detailKey": DETAIL_KEY})

    assert phases_kept is False
    assert [phase.phase_id for phase in merged.phases] == ["phase_1", "phase_2", "phase_3"]
    assert [(phase.start_day, phase.end_day) for phase in merged.phases] == [(1, 14), (15, 28), (29, 42)]


def test_regrouped_phases_keep_the_original_phase_list() -> None:
    program = build_draft().program
    regrouped = [
        {"phaseId": "base", "name": "Base", "startDay": 1, "endDay": 21},
        {"phaseId": "peak", "name": "Peak", "startDay": 22, "endDay": 42},
    ]
    service = ScriptedGenerationService(
        {"normalize": {"isValid": True, "normalizedData": {"phases": regrouped, "detailKey": DETAIL_KEY}, "issues": []}}
    )

    result = asyncio.run(normalize_program(program, service))

    assert result.is_valid
    assert [phase.phase_id for phase in result.program.phases] == ["phase_1", "phase_2", "phase_3"]
    assert result.uncorrected_issues[0].type == "cross_reference"
    assert result.uncorrected_issues[0].severity == "warning"
