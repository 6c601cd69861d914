from __future__ import annotations

from datetime import date, datetime, timezone

import pytest

from coachforge.services.calendar_engine import calculate_current_day
from coachforge.services.program_committer import commit_program, prepare_for_commit
from coachforge.services.program_lifecycle import (
    load_program,
    pause_program,
    resume_program,
    save_program,
    sync_progress,
    update_template_status,
)
from tests.fakes import MemoryDocumentStore, MemoryObjectStore, MemoryVectorIndex, build_context, build_draft


def _committed():
    prepared = prepare_for_commit(build_draft(), "summary")
    return prepared.program, prepared.templates


def _at(day: int, hour: int = 12) -> datetime:
    return datetime(2026, 1, day, hour, tzinfo=timezone.utc)


def test_pause_then_resume_shifts_the_schedule() -> None:
    program, templates = _committed()

    paused = pause_program(program, now=_at(10))
    resumed, shifted = resume_program(paused, templates, timezone="UTC", now=_at(13))

    assert paused.status == "paused"
    assert paused.paused_at == _at(10)
    assert resumed.status == "active"
    assert resumed.paused_at is None
    assert resumed.paused_duration == 3
    assert resumed.end_date == date(2026, 2, 18)
    assert resumed.current_day == 6
    assert shifted[0].scheduled_date == date(2026, 1, 8)
    assert templates[0].scheduled_date == date(2026, 1, 5)
    assert [phase.start_day for phase in resumed.phases] == [1, 15, 29]


def test_pause_and_resume_reject_wrong_status() -> None:
    program, templates = _committed()

    with pytest.raises(ValueError):
        resume_program(program, templates, now=_at(13))
    paused = pause_program(program, now=_at(10))
    with pytest.raises(ValueError):
        pause_program(paused, now=_at(11))


def test_template_outcomes_update_adherence() -> None:
    program, templates = _committed()
    first, second = templates[0].template_id, templates[1].template_id

    program, templates = update_template_status(
        program, templates, first, "completed", linked_workout_id="workout-9", now=_at(5, 18)
    )
    program, templates = update_template_status(program, templates, second, "skipped", now=_at(6, 18))

    assert program.completed_workouts == 1
    assert program.skipped_workouts == 1
    assert program.total_workouts == 24
    assert program.adherence_rate == program.completed_workouts / program.total_workouts == 1 / 24
    assert program.last_activity_at == _at(6, 18)
    assert templates[0].linked_workout_id == "workout-9"
    assert templates[0].completed_at == _at(5, 18)


def test_template_transitions_are_enforced() -> None:
    program, templates = _committed()
    template_id = templates[0].template_id

    program, templates = update_template_status(program, templates, template_id, "regenerated", now=_at(5))
    program, templates = update_template_status(program, templates, template_id, "regenerated", now=_at(5))
    program, templates = update_template_status(program, templates, template_id, "completed", now=_at(5))

    with pytest.raises(ValueError):
        update_template_status(program, templates, template_id, "skipped", now=_at(6))
    with pytest.raises(LookupError):
        update_template_status(program, templates, "template_missing", "completed", now=_at(6))


def test_sync_progress_advances_and_completes() -> None:
    program, _ = _committed()

    advanced = sync_progress(program, now=_at(14))
    finished = sync_progress(program, now=datetime(2026, 3, 1, tzinfo=timezone.utc))

    assert advanced.current_day == 10
    assert advanced.status == "active"
    assert finished.current_day == 42
    assert finished.status == "completed"
    assert sync_progress(program, now=_at(5)) is program


def test_sync_progress_ignores_paused_programs() -> None:
    program, _ = _committed()
    paused = pause_program(program, now=_at(10))

    assert sync_progress(paused, now=_at(20)) is paused


def test_load_and_save_round_trip_through_stores() -> None:
    documents, objects = MemoryDocumentStore(), MemoryObjectStore()
    commit_program(
        build_draft(),
        build_context(),
        "summary",
        document_store=documents,
        object_store=objects,
        vector_index=MemoryVectorIndex(),
    )

    loaded = load_program(documents, objects, "user-1", "program-1")
    loaded.program = pause_program(loaded.program, now=_at(10))
    save_program(documents, objects, loaded)

    assert len(loaded.templates) == 24
    assert documents.get_program("user-1", "program-1").status == "paused"
    with pytest.raises(LookupError):
        load_program(documents, objects, "user-1", "program-404")


def test_pauses_with_equal_net_days_land_on_the_same_current_day() -> None:
    program, templates = _committed()
    early, _ = resume_program(pause_program(program, now=_at(8)), templates, now=_at(11))
    late, _ = resume_program(pause_program(program, now=_at(20)), templates, now=_at(23))

    today = _at(27)
    early = sync_progress(early, now=today)
    late = sync_progress(late, now=today)

    assert early.paused_duration == late.paused_duration == 3
    assert early.current_day == late.current_day == calculate_current_day(program.start_date, 3, 42, "UTC", today)
    assert early.current_day == 20
