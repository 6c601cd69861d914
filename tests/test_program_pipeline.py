from __future__ import annotations

import asyncio
import json
from datetime import datetime, timezone

import httpx
import openai

from coachforge.core.config import settings
from coachforge.services import program_pipeline
from coachforge.services.generation.base import GenerationService
from coachforge.services.program_committer import allocate_detail_key
from coachforge.services.program_pipeline import (
    REQUIREMENTS_INCOMPLETE_REASON,
    ProgramGenerationTrigger,
    run_program_generation,
    validate_trigger,
)
from tests.fakes import (
    PHASE_RANGES_42,
    REQUIREMENTS_42,
    THREE_PHASES_42,
    MemoryDocumentStore,
    MemoryObjectStore,
    MemoryProfileSource,
    MemoryVectorIndex,
    ScriptedGenerationService,
    default_profile_source,
    phase_structure_response,
    phase_workouts_responder,
)

NOW = datetime(2026, 1, 5, 8, 0, tzinfo=timezone.utc)
DETAIL_KEY = allocate_detail_key("user-1", "program-1", NOW)
FOUR_DAY_WEEK = (0, 1, 3, 4)
SUMMARY = {"summary": "Six weeks of engine and strength work across three blocks."}


def _trigger(todo_list=REQUIREMENTS_42, **overrides) -> ProgramGenerationTrigger:
    payload = {
        "userId": "user-1",
        "coachId": "coach-1",
        "conversationId": "conv-1",
        "programId": "program-1",
        "todoList": todo_list,
    }
    payload.update(overrides)
    return ProgramGenerationTrigger.model_validate(payload)


def _script(weekdays=FOUR_DAY_WEEK, **steps):
    script = {
        "phase_structure": phase_structure_response(THREE_PHASES_42),
        "phase_workouts": phase_workouts_responder(PHASE_RANGES_42, weekdays),
        "summary": SUMMARY,
    }
    script.update(steps)
    return script


class _Stores:
    def __init__(self, vector_index=None, profile_source=None) -> None:
        self.documents = MemoryDocumentStore()
        self.objects = MemoryObjectStore()
        self.vectors = vector_index or MemoryVectorIndex()
        self.profiles = profile_source or default_profile_source()


def _run(trigger, service, stores=None):
    stores = stores or _Stores()
    result = asyncio.run(
        run_program_generation(
            trigger,
            service=service,
            profile_source=stores.profiles,
            document_store=stores.documents,
            object_store=stores.objects,
            vector_index=stores.vectors,
            now=NOW,
        )
    )
    return result, stores


def test_happy_path_commits_without_prune_or_normalize() -> None:
    service = ScriptedGenerationService(_script())

    result, stores = _run(_trigger(), service)

    assert result.success
    assert result.detail_key == DETAIL_KEY
    assert result.pruned is False
    assert result.normalized is False
    assert service.calls("prune") == [] and service.calls("normalize") == []
    assert len(service.calls("phase_workouts")) == 3
    program = stores.documents.get_program("user-1", "program-1")
    assert program.status == "active"
    assert program.total_workouts == 24
    assert program.summary == SUMMARY["summary"]
    assert program.category == "crossfit"
    blob = stores.objects.objects[DETAIL_KEY]
    assert len(blob["workout_templates"]) == 24
    assert blob["generation_metadata"]["frequency_compliance"]["target_training_days"] == 24
    assert stores.vectors.upserts[0]["record_id"] == "program_summary_program-1"
    assert "debug/programs/user-1/" + DETAIL_KEY.split("/")[-1] in stores.objects.objects
    assert set(result.steps_ms) >= {"requirements", "phase_structure", "phase_workouts", "summary", "commit"}


class _OverlapTrackingService(ScriptedGenerationService):
    def __init__(self, script) -> None:
        super().__init__(script)
        self.in_flight = 0
        self.peak = 0

    async def generate(self, request):
        if request.step != "phase_workouts":
            return await super().generate(request)
        self.in_flight += 1
        self.peak = max(self.peak, self.in_flight)
        try:
            await asyncio.sleep(0.02)
            return await super().generate(request)
        finally:
            self.in_flight -= 1


def test_phase_calls_run_concurrently() -> None:
    service = _OverlapTrackingService(_script())

    result, _ = _run(_trigger(), service)

    assert result.success
    assert service.peak == 3


def test_excess_training_days_are_pruned_to_target() -> None:
    requirements = {**REQUIREMENTS_42, "trainingFrequency": {"value": 3, "status": "complete"}}
    remove = [day for day in range(1, 43) if (day - 1) % 7 in (2, 4)]
    service = ScriptedGenerationService(
        _script(weekdays=(0, 1, 2, 3, 4), prune={"daysToRemove": remove, "reasoning": "Rest Wed and Fri."})
    )

    result, stores = _run(_trigger(requirements), service)

    assert result.success
    assert result.pruned is True
    assert result.normalized is False
    assert result.validation["frequency_compliance"]["actual_training_days"] == 18
    blob = stores.objects.objects[DETAIL_KEY]
    assert len(blob["workout_templates"]) == 18
    assert set(remove) <= set(blob["rest_days"])
    assert stores.documents.get_program("user-1", "program-1").total_workouts == 18


def test_low_confidence_triggers_normalization_and_keeps_detail_key() -> None:
    repaired = json.dumps(phase_structure_response(THREE_PHASES_42))[:-1] + ",}"
    service = ScriptedGenerationService(
        _script(
            phase_structure=repaired,
            normalize={
                "isValid": True,
                "normalizedData": {"name": "Engine Builder", "detailKey": "programs/user-1/renamed.json"},
                "issues": [
                    {
                        "type": "data_quality",
                        "severity": "warning",
                        "field": "description",
                        "description": "Description trimmed",
                        "corrected": True,
                    },
                    {
                        "type": "date_logic",
                        "severity": "warning",
                        "field": "end_date",
                        "description": "End date recomputed",
                        "corrected": True,
                    },
                ],
                "confidence": 0.9,
                "summary": "Corrected 2 issues.",
            },
        )
    )

    result, stores = _run(_trigger(), service)

    assert result.success
    assert result.normalized is True
    assert result.detail_key == DETAIL_KEY
    assert stores.documents.get_program("user-1", "program-1").detail_key == DETAIL_KEY
    assert DETAIL_KEY in service.calls("normalize")[0].user_prompt
    assert "programs/user-1/renamed.json" not in stores.objects.objects
    snapshot = stores.objects.objects["debug/programs/user-1/" + DETAIL_KEY.split("/")[-1]]
    assert sum(issue["corrected"] for issue in snapshot["normalization"]["issues"]) == 2
    assert stores.objects.objects[DETAIL_KEY]["generation_metadata"]["normalization_summary"] == "Corrected 2 issues."


def test_normalized_phases_with_new_ids_keep_template_references() -> None:
    repaired = json.dumps(phase_structure_response(THREE_PHASES_42))[:-1] + ",}"
    renamed = [
        {"phaseId": f"p{index}", "name": f"Block {index}", "startDay": start, "endDay": end}
        for index, (start, end) in enumerate(THREE_PHASES_42, start=1)
    ]
    service = ScriptedGenerationService(
        _script(
            phase_structure=repaired,
            normalize={
                "isValid": True,
                "normalizedData": {"phases": renamed, "detailKey": DETAIL_KEY},
                "issues": [],
                "confidence": 0.9,
            },
        )
    )

    result, stores = _run(_trigger(), service)

    assert result.success
    phase_ids = {phase.phase_id for phase in stores.documents.get_program("user-1", "program-1").phases}
    template_phase_ids = {template["phase_id"] for template in stores.objects.objects[DETAIL_KEY]["workout_templates"]}
    assert phase_ids == {"phase_1", "phase_2", "phase_3"}
    assert template_phase_ids <= phase_ids


def test_failed_normalization_blocks_persistence() -> None:
    repaired = json.dumps(phase_structure_response(THREE_PHASES_42))[:-1] + ",}"
    service = ScriptedGenerationService(
        _script(phase_structure=repaired, normalize=ConnectionError("service unavailable"))
    )

    result, stores = _run(_trigger(), service)

    assert result.status == "failed"
    assert result.error["error_type"] == "validation_blocked"
    assert result.error["step"] == "normalize"
    assert result.error["issues"][0]["field"] == "normalization_system"
    assert stores.documents.saves == 0
    assert stores.objects.objects == {}
    assert stores.vectors.upserts == []


def test_structural_errors_still_present_after_normalization_block() -> None:
    def without_descriptions(request):
        response = phase_workouts_responder(PHASE_RANGES_42, FOUR_DAY_WEEK)(request)
        for template in response["workoutTemplates"]:
            template["description"] = ""
        return response

    service = ScriptedGenerationService(
        _script(
            phase_workouts=without_descriptions,
            normalize={"isValid": True, "issues": [], "confidence": 0.9, "summary": "No metadata changes."},
        )
    )

    result, stores = _run(_trigger(), service)

    assert result.status == "failed"
    assert result.normalized is True
    assert result.error["error_type"] == "validation_blocked"
    assert result.error["step"] == "validation"
    assert result.error["blocking_flags"]["is_valid"] is False
    assert service.calls("summary") == []
    assert stores.documents.saves == 0


def test_unparseable_phase_structure_fails_without_side_effects() -> None:
    service = ScriptedGenerationService(_script(phase_structure="I need more information first."))

    result, stores = _run(_trigger(), service)

    assert result.status == "failed"
    assert result.error["error_type"] == "generation_unparseable"
    assert result.error["step"] == "phase_structure"
    assert service.calls("phase_workouts") == []
    assert stores.objects.objects == {}


class _SlowService(GenerationService):
    async def generate(self, request):
        await asyncio.sleep(1)
        return {}


def test_workflow_timeout_is_reported(monkeypatch) -> None:
    monkeypatch.setattr(settings, "workflow_timeout_seconds", 0.05)

    result, stores = _run(_trigger(), _SlowService())

    assert result.status == "failed"
    assert result.error == {
        "error_type": "generation_timeout",
        "message": "Program generation exceeded 0s",
        "step": "workflow",
    }
    assert stores.documents.saves == 0


def test_missing_configuration_fails() -> None:
    stores = _Stores(profile_source=MemoryProfileSource(coach_config=None, profile={"timezone": "UTC"}))

    result, _ = _run(_trigger(), ScriptedGenerationService(), stores)

    assert result.status == "failed"
    assert result.error["error_type"] == "configuration_missing"


def test_vector_index_failure_does_not_fail_the_run() -> None:
    stores = _Stores(vector_index=MemoryVectorIndex(fail_upsert=True))

    result, stores = _run(_trigger(), ScriptedGenerationService(_script()), stores)

    assert result.success
    assert stores.documents.get_program("user-1", "program-1") is not None


def test_unknown_category_is_labelled_as_fallback() -> None:
    stores = _Stores(profile_source=default_profile_source("underwater basket weaving"))

    result, stores = _run(_trigger(), ScriptedGenerationService(_script()), stores)

    assert result.success
    assert stores.documents.get_program("user-1", "program-1").category == "crossfit_fallback"
    assert stores.objects.objects[DETAIL_KEY]["generation_metadata"]["category"] == "crossfit_fallback"


def test_incomplete_requirements_are_skipped() -> None:
    service = ScriptedGenerationService()

    result, stores = _run(_trigger(todo_list={"equipmentAccess": {"value": "dumbbells", "status": "complete"}}), service)

    assert result.skipped
    assert result.reason == REQUIREMENTS_INCOMPLETE_REASON
    assert service.requests == []
    assert stores.documents.saves == 0


def test_invalid_trigger_is_rejected() -> None:
    trigger = _trigger(todo_list=None, coachId="")

    assert validate_trigger(trigger) == ["coach_id", "todo_list"]
    result, _ = _run(trigger, ScriptedGenerationService())
    assert result.status == "failed"
    assert result.error == {"error_type": "invalid_trigger", "missing": ["coach_id", "todo_list"]}


def test_explicit_requirements_override_todo_items() -> None:
    trigger = _trigger(requirements={"trainingFrequency": 5})

    assert trigger.requirement_bag()["trainingFrequency"] == 5
    assert trigger.requirement_bag()["programDuration"] == {"value": "6 weeks", "status": "complete"}


def test_provider_error_in_a_phase_call_fails_the_run(monkeypatch) -> None:
    recorded = []
    monkeypatch.setattr(program_pipeline, "log_metric", lambda name, value, metadata=None: recorded.append((name, metadata)))
    request = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")
    service = ScriptedGenerationService(_script(phase_workouts=openai.APIConnectionError(request=request)))

    result, stores = _run(_trigger(), service)

    assert result.status == "failed"
    assert result.error["error_type"] == "generation_service_error"
    assert result.error["step"] == "phase_workouts"
    assert stores.documents.saves == 0
    assert stores.objects.objects == {}
    outcome = [metadata for name, metadata in recorded if name == "program.pipeline.outcome"]
    assert outcome[0]["status"] == "failed"


def test_blob_write_failure_is_reported_without_a_document() -> None:
    stores = _Stores()
    stores.objects = MemoryObjectStore(fail_prefix="programs/")
    service = ScriptedGenerationService(_script())

    result, stores = _run(_trigger(), service, stores)

    assert result.status == "failed"
    assert result.error["error_type"] == "commit_failed"
    assert result.error["step"] == "commit"
    assert stores.documents.saves == 0
