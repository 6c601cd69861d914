"""Program generation trigger and program lifecycle API routes."""
from __future__ import annotations

from time import perf_counter
from typing import Any, Callable, Dict
from uuid import UUID, uuid4

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, Request, status
from sqlalchemy.orm import Session

from coachforge.api.schemas.programs import (
    CalendarResponse,
    GenerationRunResponse,
    ProgramGenerateRequest,
    ProgramGenerateResponse,
    ProgramResponse,
    TemplateStatusRequest,
    TemplateStatusResponse,
)
from coachforge.db.deps import get_db, get_session_factory
from coachforge.db.models.program_generation_run import ProgramGenerationRun
from coachforge.observability.metrics import log_metric
from coachforge.observability.tracing import trace
from coachforge.services.calendar_engine import (
    generate_program_calendar,
    get_days_remaining,
    get_phase_for_day,
    get_progress_percentage,
)
from coachforge.services.job_runner import ProgramGenerationTask, create_generation_run
from coachforge.services.program_lifecycle import (
    LoadedProgram,
    load_program,
    pause_program,
    resume_program,
    save_program,
    update_template_status,
)
from coachforge.services.program_models import Program
from coachforge.services.program_pipeline import ProgramGenerationTrigger
from coachforge.services.storage.base import ObjectStore, VectorIndex
from coachforge.services.storage.factory import get_object_store, get_vector_index
from coachforge.services.storage.sql_store import SqlDocumentStore, SqlProfileSource

router = APIRouter()


@router.post(
    "/programs/generate",
    response_model=ProgramGenerateResponse,
    status_code=status.HTTP_202_ACCEPTED,
    tags=["programs"],
)
def generate_program_endpoint(
    payload: ProgramGenerateRequest,
    http_request: Request,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    session_factory: Callable[[], Session] = Depends(get_session_factory),
    object_store: ObjectStore = Depends(get_object_store),
    vector_index: VectorIndex = Depends(get_vector_index),
) -> ProgramGenerateResponse:
    """Queue a background generation run; the outcome lands on the run record."""
    request_id = getattr(http_request.state, "request_id", None)
    program_id = payload.program_id or f"program_{uuid4().hex[:12]}"
    trigger = ProgramGenerationTrigger(
        user_id=payload.user_id,
        coach_id=payload.coach_id,
        conversation_id=payload.conversation_id,
        program_id=program_id,
        todo_list=payload.todo_list,
        requirements=payload.requirements,
    )
    metadata = {"route": "/programs/generate", "program_id": program_id, "request_id": request_id}
    with trace("programs.generate", metadata=metadata, user_id=payload.user_id, request_id=request_id):
        run = create_generation_run(db, trigger)
        background_tasks.add_task(
            ProgramGenerationTask(
                run_id=run.id,
                trigger=trigger,
                session_factory=session_factory,
                object_store=object_store,
                vector_index=vector_index,
            )
        )
    log_metric("programs.generate.queued", 1, metadata={"program_id": program_id})
    return ProgramGenerateResponse(
        run_id=run.id,
        program_id=program_id,
        status="queued",
        request_id=request_id or "",
    )


@router.get("/programs/runs/{run_id}", response_model=GenerationRunResponse, tags=["programs"])
def get_generation_run_endpoint(
    run_id: UUID,
    http_request: Request,
    db: Session = Depends(get_db),
) -> GenerationRunResponse:
    run = db.get(ProgramGenerationRun, run_id)
    if not run:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Generation run not found")
    request_id = getattr(http_request.state, "request_id", None)
    return GenerationRunResponse(
        run_id=run.id,
        program_id=run.program_id,
        status=run.status,
        reason=run.reason,
        error=run.error,
        created_at=run.created_at,
        finished_at=run.finished_at,
        request_id=request_id or "",
    )


@router.get("/programs/{program_id}", response_model=ProgramResponse, tags=["programs"])
def get_program_endpoint(
    program_id: str,
    http_request: Request,
    user_id: str = Query(..., min_length=1),
    db: Session = Depends(get_db),
) -> ProgramResponse:
    program = SqlDocumentStore(db).get_program(user_id, program_id)
    if not program:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Program not found")
    return _program_response(program, http_request)


@router.get("/programs/{program_id}/calendar", response_model=CalendarResponse, tags=["programs"])
def get_program_calendar_endpoint(
    program_id: str,
    http_request: Request,
    user_id: str = Query(..., min_length=1),
    db: Session = Depends(get_db),
    object_store: ObjectStore = Depends(get_object_store),
) -> CalendarResponse:
    loaded = _load_or_404(db, object_store, user_id, program_id)
    timezone = _timezone_for(db, user_id)
    request_id = getattr(http_request.state, "request_id", None)
    with trace("programs.calendar", metadata={"program_id": program_id}, user_id=user_id, request_id=request_id):
        days = generate_program_calendar(loaded.program, loaded.templates, timezone)
    return CalendarResponse(
        program_id=program_id,
        timezone=timezone,
        days=[day.to_dict() for day in days],
        request_id=request_id or "",
    )


@router.post("/programs/{program_id}/pause", response_model=ProgramResponse, tags=["programs"])
def pause_program_endpoint(
    program_id: str,
    http_request: Request,
    user_id: str = Query(..., min_length=1),
    db: Session = Depends(get_db),
) -> ProgramResponse:
    documents = SqlDocumentStore(db)
    program = documents.get_program(user_id, program_id)
    if not program:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Program not found")
    try:
        paused = pause_program(program)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    documents.save_program(paused)
    log_metric("programs.paused", 1, metadata={"program_id": program_id})
    return _program_response(paused, http_request)


@router.post("/programs/{program_id}/resume", response_model=ProgramResponse, tags=["programs"])
def resume_program_endpoint(
    program_id: str,
    http_request: Request,
    user_id: str = Query(..., min_length=1),
    db: Session = Depends(get_db),
    object_store: ObjectStore = Depends(get_object_store),
) -> ProgramResponse:
    loaded = _load_or_404(db, object_store, user_id, program_id)
    try:
        program, templates = resume_program(loaded.program, loaded.templates, timezone=_timezone_for(db, user_id))
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    loaded.program = program
    loaded.detail.workout_templates = templates
    save_program(SqlDocumentStore(db), object_store, loaded)
    log_metric("programs.resumed", 1, metadata={"program_id": program_id, "paused_duration": program.paused_duration})
    return _program_response(program, http_request)


@router.post(
    "/programs/{program_id}/templates/{template_id}/status",
    response_model=TemplateStatusResponse,
    tags=["programs"],
)
def update_template_status_endpoint(
    program_id: str,
    template_id: str,
    payload: TemplateStatusRequest,
    http_request: Request,
    user_id: str = Query(..., min_length=1),
    db: Session = Depends(get_db),
    object_store: ObjectStore = Depends(get_object_store),
) -> TemplateStatusResponse:
    loaded = _load_or_404(db, object_store, user_id, program_id)
    request_id = getattr(http_request.state, "request_id", None)
    metadata: Dict[str, Any] = {"program_id": program_id, "template_id": template_id, "status": payload.status}
    start = perf_counter()
    with trace("programs.template_status", metadata=metadata, user_id=user_id, request_id=request_id):
        try:
            program, templates = update_template_status(
                loaded.program,
                loaded.templates,
                template_id,
                payload.status,
                linked_workout_id=payload.linked_workout_id,
            )
        except LookupError as exc:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
        except ValueError as exc:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
        loaded.program = program
        loaded.detail.workout_templates = templates
        save_program(SqlDocumentStore(db), object_store, loaded)

    log_metric("programs.template_status.latency_ms", (perf_counter() - start) * 1000, metadata=metadata)
    template = next(item for item in templates if item.template_id == template_id)
    return TemplateStatusResponse(
        program=program.model_dump(mode="json"),
        template=template.model_dump(mode="json"),
        request_id=request_id or "",
    )


def _load_or_404(db: Session, object_store: ObjectStore, user_id: str, program_id: str) -> LoadedProgram:
    try:
        return load_program(SqlDocumentStore(db), object_store, user_id, program_id)
    except (LookupError, FileNotFoundError) as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Program not found") from exc


def _timezone_for(db: Session, user_id: str) -> str:
    profile = SqlProfileSource(db).get_user_profile(user_id) or {}
    return str(profile.get("timezone") or "UTC")


def _program_response(program: Program, http_request: Request) -> ProgramResponse:
    phase = get_phase_for_day(program, program.current_day)
    return ProgramResponse(
        program=program.model_dump(mode="json"),
        progress_percentage=get_progress_percentage(program.current_day, program.total_days),
        days_remaining=get_days_remaining(program.current_day, program.total_days),
        current_phase_id=phase.phase_id if phase else None,
        request_id=getattr(http_request.state, "request_id", None) or "",
    )
