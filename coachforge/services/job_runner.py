"""Background runners: program generation tasks and the daily progress sync."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Iterable, Optional
from uuid import UUID

from sqlalchemy.orm import Session

from coachforge.core.context import bind_request_id
from coachforge.core.errors import ProgramGenerationError
from coachforge.db.models.program_generation_run import ProgramGenerationRun
from coachforge.db.session import SessionLocal
from coachforge.observability.metrics import log_metric
from coachforge.services.generation.base import GenerationService
from coachforge.services.generation.factory import get_generation_service
from coachforge.services.program_lifecycle import sync_progress
from coachforge.services.program_pipeline import (
    PipelineRunResult,
    ProgramGenerationTrigger,
    run_program_generation,
)
from coachforge.services.storage.base import ObjectStore, VectorIndex
from coachforge.services.storage.factory import get_object_store, get_vector_index
from coachforge.services.storage.sql_store import SqlDocumentStore, SqlProfileSource


logger = logging.getLogger(__name__)


@dataclass
class JobRunResult:
    programs_processed: int
    programs_updated: int
    failures: int = 0


def create_generation_run(db: Session, trigger: ProgramGenerationTrigger) -> ProgramGenerationRun:
    run = ProgramGenerationRun(
        user_id=trigger.user_id or None,
        coach_id=trigger.coach_id or None,
        conversation_id=trigger.conversation_id or None,
        program_id=trigger.program_id or None,
        status="queued",
    )
    db.add(run)
    db.commit()
    db.refresh(run)
    return run


@dataclass
class ProgramGenerationTask:
    """One fire-and-forget generation run, recorded on `program_generation_runs`.

    Failures never propagate out of the task; they end up on the run record.
    """

    run_id: UUID
    trigger: ProgramGenerationTrigger
    session_factory: Callable[[], Session] = SessionLocal
    service: Optional[GenerationService] = None
    object_store: Optional[ObjectStore] = None
    vector_index: Optional[VectorIndex] = None
    now: Optional[datetime] = None
    result: Optional[PipelineRunResult] = field(default=None, init=False)

    async def __call__(self) -> Optional[PipelineRunResult]:
        with bind_request_id(str(self.run_id)):
            db = self.session_factory()
            try:
                self._mark_running(db)
                try:
                    self.result = await self._run(db)
                except ProgramGenerationError as exc:
                    logger.error("Generation run %s could not start: %s", self.run_id, exc.message)
                    self.result = PipelineRunResult(
                        status="failed",
                        program_id=self.trigger.program_id,
                        reason=exc.message,
                        error=exc.to_record(),
                    )
                except Exception as exc:  # pragma: no cover - defensive guard
                    logger.exception("Generation run %s crashed", self.run_id)
                    self.result = PipelineRunResult(
                        status="failed",
                        program_id=self.trigger.program_id,
                        reason=str(exc),
                        error={"error_type": "internal_error", "message": str(exc)},
                    )
                self._record(db, self.result)
            finally:
                db.close()
        return self.result

    async def _run(self, db: Session) -> PipelineRunResult:
        return await run_program_generation(
            self.trigger,
            service=self.service or get_generation_service(),
            profile_source=SqlProfileSource(db),
            document_store=SqlDocumentStore(db),
            object_store=self.object_store or get_object_store(),
            vector_index=self.vector_index or get_vector_index(),
            now=self.now,
        )

    def _mark_running(self, db: Session) -> None:
        run = db.get(ProgramGenerationRun, self.run_id)
        if run is None:
            logger.warning("Generation run %s not found; result will not be recorded", self.run_id)
            return
        run.status = "running"
        db.commit()

    def _record(self, db: Session, result: PipelineRunResult) -> None:
        run = db.get(ProgramGenerationRun, self.run_id)
        if run is None:
            return
        run.status = result.status
        run.reason = result.reason
        run.error = result.error
        run.result = result.to_dict()
        run.finished_at = datetime.now(timezone.utc)
        try:
            db.commit()
        except Exception:  # pragma: no cover - defensive guard
            db.rollback()
            logger.exception("Failed to record generation run %s", self.run_id)
            return
        log_metric("program.generation_run.finished", 1, metadata={"status": result.status})
        logger.info("Generation run %s finished with status %s", self.run_id, result.status)


def sync_program_progress_for_all(
    db: Session,
    *,
    user_ids: Optional[Iterable[str]] = None,
    now: Optional[datetime] = None,
) -> JobRunResult:
    """Advance current_day on every active program in its owner's timezone."""
    documents = SqlDocumentStore(db)
    profiles = SqlProfileSource(db)
    wanted = set(user_ids) if user_ids is not None else None
    programs = [
        program
        for program in documents.list_programs(status="active")
        if wanted is None or program.user_id in wanted
    ]
    timezones: dict[str, str] = {}
    processed = 0
    updated = 0
    failures = 0
    for program in programs:
        try:
            if program.user_id not in timezones:
                profile = profiles.get_user_profile(program.user_id) or {}
                timezones[program.user_id] = str(profile.get("timezone") or "UTC")
            synced = sync_progress(program, timezone=timezones[program.user_id], now=now)
            if synced is not program:
                documents.save_program(synced)
                updated += 1
        except Exception:  # pragma: no cover - defensive guard
            failures += 1
            logger.exception("Progress sync failed for program %s", program.program_id)
            continue
        processed += 1
    log_metric("jobs.progress_sync.updated", updated, metadata={"processed": processed})
    return JobRunResult(programs_processed=processed, programs_updated=updated, failures=failures)
