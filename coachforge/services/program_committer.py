"""Persist a validated program: detail blob, metadata document, then best-effort side effects."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from coachforge.core.config import settings
from coachforge.core.errors import NonCriticalSideEffectFailure
from coachforge.observability.metrics import log_metric
from coachforge.observability.tracing import trace
from coachforge.services.calendar_engine import calculate_end_date, calculate_scheduled_date
from coachforge.services.program_models import Program, ProgramDetail, ProgramDraft, WorkoutTemplate
from coachforge.services.requirements_loader import ProgramContext
from coachforge.services.storage.base import DocumentStore, ObjectStore, VectorIndex

logger = logging.getLogger(__name__)


@dataclass
class CommitResult:
    program: Program
    detail_key: str
    vector_indexed: bool = False
    snapshot_key: Optional[str] = None
    side_effect_failures: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "program_id": self.program.program_id,
            "detail_key": self.detail_key,
            "vector_indexed": self.vector_indexed,
            "snapshot_key": self.snapshot_key,
            "side_effect_failures": self.side_effect_failures,
        }


def allocate_detail_key(user_id: str, program_id: str, now: Optional[datetime] = None) -> str:
    """Reference for the detail blob; allocated before normalization and never changed after."""
    moment = now or datetime.now(timezone.utc)
    return f"programs/{user_id}/{program_id}_{int(moment.timestamp() * 1000)}.json"


def prepare_for_commit(draft: ProgramDraft, summary: str) -> ProgramDraft:
    """Fill the defaults of a freshly generated program and schedule its templates."""
    program = draft.program.model_copy(deep=True)
    program.status = "active"
    program.current_day = 1
    program.paused_at = None
    program.paused_duration = 0
    program.completed_workouts = 0
    program.skipped_workouts = 0
    program.adherence_rate = 0.0
    program.end_date = calculate_end_date(program.start_date, program.total_days)
    program.summary = summary

    templates: List[WorkoutTemplate] = [
        template.model_copy(
            update={
                "status": "pending",
                "scheduled_date": calculate_scheduled_date(program.start_date, template.day_number),
            }
        )
        for template in draft.templates
    ]
    program.total_workouts = sum(1 for template in templates if not template.is_rest)
    return ProgramDraft(
        program=program,
        templates=templates,
        rest_days=list(draft.rest_days),
        step_confidences=dict(draft.step_confidences),
    )


def build_vector_metadata(program: Program) -> Dict[str, Any]:
    focus_areas = sorted({area for phase in program.phases for area in phase.focus_areas})
    return {
        "record_type": "program_summary",
        "program_id": program.program_id,
        "coach_id": program.coach_id,
        "program_name": program.name,
        "status": program.status,
        "start_date": program.start_date.isoformat(),
        "end_date": program.end_date.isoformat() if program.end_date else None,
        "total_days": program.total_days,
        "training_frequency": program.training_frequency,
        "total_workouts": program.total_workouts,
        "phase_count": len(program.phases),
        "phase_names": [phase.name for phase in program.phases],
        "focus_areas": focus_areas,
        "training_goals": program.training_goals,
        "equipment": program.equipment_constraints,
        "category": program.category,
    }


def commit_program(
    draft: ProgramDraft,
    context: ProgramContext,
    summary: str,
    *,
    document_store: DocumentStore,
    object_store: ObjectStore,
    vector_index: VectorIndex,
    generation_metadata: Optional[Dict[str, Any]] = None,
    debug_payload: Optional[Dict[str, Any]] = None,
) -> CommitResult:
    """Write the blob, then the metadata document, then the vector record and debug snapshot.

    The blob and document writes propagate their errors; the vector record and
    debug snapshot are logged and swallowed.
    """
    prepared = prepare_for_commit(draft, summary)
    program = prepared.program
    if not program.detail_key:
        program.detail_key = allocate_detail_key(program.user_id, program.program_id)
    metadata = {"program_id": program.program_id, "detail_key": program.detail_key}

    with trace("program.commit", metadata=metadata, user_id=program.user_id):
        detail = ProgramDetail(
            program_id=program.program_id,
            program_context=context.to_dict(),
            workout_templates=prepared.templates,
            rest_days=prepared.rest_days,
            generation_metadata=dict(generation_metadata or {}),
        )
        object_store.put_json(program.detail_key, detail.model_dump(mode="json"))
        document_store.save_program(program)
        result = CommitResult(program=program, detail_key=program.detail_key)

        result.vector_indexed = _best_effort(
            result,
            "vector_index",
            lambda: vector_index.upsert(
                user_id=program.user_id,
                record_id=f"program_summary_{program.program_id}",
                text=summary,
                metadata=build_vector_metadata(program),
            ),
        )
        if settings.debug_snapshots_enabled and debug_payload is not None:
            snapshot_key = program.detail_key.replace("programs/", "debug/programs/", 1)
            if _best_effort(result, "debug_snapshot", lambda: object_store.put_json(snapshot_key, debug_payload)):
                result.snapshot_key = snapshot_key

    logger.info(
        "Committed program %s for user %s (%d template(s), key=%s)",
        program.program_id,
        program.user_id,
        len(prepared.templates),
        program.detail_key,
    )
    log_metric("program.committed", 1, metadata={**metadata, "templates": len(prepared.templates)})
    return result


def _best_effort(result: CommitResult, name: str, action: Callable[[], Any]) -> bool:
    try:
        action()
    except Exception as exc:
        failure = NonCriticalSideEffectFailure(f"{name} failed: {exc}", step="commit")
        logger.warning("Non-critical side effect %s failed for program %s: %s", name, result.program.program_id, exc)
        result.side_effect_failures.append(failure.to_record())
        return False
    return True
