"""Runtime lifecycle of a committed program: pause/resume, template outcomes, progress sync."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone as dt_timezone
from typing import List, Optional, Tuple

from coachforge.services.calendar_engine import (
    calculate_current_day,
    calculate_end_date,
    calculate_pause_duration,
    recalculate_workout_dates,
    today_in_timezone,
)
from coachforge.services.program_models import Program, ProgramDetail, TemplateStatus, WorkoutTemplate
from coachforge.services.storage.base import DocumentStore, ObjectStore

logger = logging.getLogger(__name__)

# Allowed template status transitions; completed and skipped are final.
_TRANSITIONS = {
    "pending": {"completed", "skipped", "regenerated"},
    "regenerated": {"completed", "skipped", "regenerated"},
    "completed": set(),
    "skipped": set(),
}


@dataclass
class LoadedProgram:
    program: Program
    detail: ProgramDetail

    @property
    def templates(self) -> List[WorkoutTemplate]:
        return self.detail.workout_templates


def load_program(
    document_store: DocumentStore,
    object_store: ObjectStore,
    user_id: str,
    program_id: str,
) -> LoadedProgram:
    program = document_store.get_program(user_id, program_id)
    if program is None:
        raise LookupError(f"Program {program_id} not found")
    detail = ProgramDetail.model_validate(object_store.get_json(program.detail_key))
    return LoadedProgram(program=program, detail=detail)


def save_program(document_store: DocumentStore, object_store: ObjectStore, loaded: LoadedProgram) -> None:
    """Rewrite the blob under its existing key, then the metadata document."""
    object_store.put_json(loaded.program.detail_key, loaded.detail.model_dump(mode="json"))
    document_store.save_program(loaded.program)


def _now(now: Optional[datetime]) -> datetime:
    return now or datetime.now(dt_timezone.utc)


def pause_program(program: Program, *, now: Optional[datetime] = None) -> Program:
    if program.status != "active":
        raise ValueError(f"Only active programs can be paused (status={program.status})")
    return program.model_copy(update={"status": "paused", "paused_at": _now(now)})


def resume_program(
    program: Program,
    templates: List[WorkoutTemplate],
    *,
    timezone: str = "UTC",
    now: Optional[datetime] = None,
) -> Tuple[Program, List[WorkoutTemplate]]:
    """Add the paused civil days and shift every scheduled date; phases and day numbers stay put."""
    if program.status != "paused" or program.paused_at is None:
        raise ValueError(f"Only paused programs can be resumed (status={program.status})")
    moment = _now(now)
    paused_days = calculate_pause_duration(program.paused_at, moment, timezone)
    paused_duration = program.paused_duration + paused_days
    resumed = program.model_copy(
        update={
            "status": "active",
            "paused_at": None,
            "paused_duration": paused_duration,
            "end_date": calculate_end_date(program.start_date, program.total_days + paused_duration),
            "current_day": calculate_current_day(
                program.start_date, paused_duration, program.total_days, timezone, moment
            ),
        }
    )
    logger.info("Resumed program %s after %d paused day(s)", program.program_id, paused_days)
    return resumed, recalculate_workout_dates(templates, program.start_date, paused_duration)


def update_template_status(
    program: Program,
    templates: List[WorkoutTemplate],
    template_id: str,
    status: TemplateStatus,
    *,
    linked_workout_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Tuple[Program, List[WorkoutTemplate]]:
    """Apply a complete/skip/regenerate event and refresh the adherence counters."""
    index = next((i for i, template in enumerate(templates) if template.template_id == template_id), None)
    if index is None:
        raise LookupError(f"Template {template_id} not found")
    current = templates[index]
    if status not in _TRANSITIONS.get(current.status, set()):
        raise ValueError(f"Cannot move template {template_id} from {current.status} to {status}")

    moment = _now(now)
    update = {"status": status}
    if status == "completed":
        update["completed_at"] = moment
        update["linked_workout_id"] = linked_workout_id
    updated = list(templates)
    updated[index] = current.model_copy(update=update)
    return refresh_counters(program, updated, now=moment), updated


def refresh_counters(program: Program, templates: List[WorkoutTemplate], *, now: Optional[datetime] = None) -> Program:
    workouts = [template for template in templates if not template.is_rest]
    completed = sum(1 for template in workouts if template.status == "completed")
    skipped = sum(1 for template in workouts if template.status == "skipped")
    total = len(workouts)
    return program.model_copy(
        update={
            "total_workouts": total,
            "completed_workouts": completed,
            "skipped_workouts": skipped,
            "adherence_rate": completed / total if total else 0.0,
            "last_activity_at": _now(now),
        }
    )


def sync_progress(program: Program, *, timezone: str = "UTC", now: Optional[datetime] = None) -> Program:
    """Advance current_day for an active program and complete it once its last day has passed."""
    if program.status != "active":
        return program
    current_day = calculate_current_day(
        program.start_date, program.paused_duration, program.total_days, timezone, now
    )
    last_day = calculate_end_date(program.start_date, program.total_days + program.paused_duration)
    status = "completed" if today_in_timezone(timezone, now) > last_day else program.status
    if current_day == program.current_day and status == program.status:
        return program
    return program.model_copy(update={"current_day": current_day, "status": status})
