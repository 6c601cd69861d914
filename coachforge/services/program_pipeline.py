"""Orchestrates one non-interactive program generation run end to end."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from functools import partial
from datetime import datetime, timezone
from time import perf_counter
from typing import Any, Callable, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from coachforge.core.config import settings
from coachforge.core.errors import CommitFailed, GenerationTimeout, ProgramGenerationError, ValidationBlocked
from coachforge.observability.metrics import log_metric
from coachforge.observability.tracing import trace
from coachforge.services.calendar_engine import calculate_end_date
from coachforge.services.generation.base import GenerationService
from coachforge.services.phase_structurer import structure_phases
from coachforge.services.phase_workout_generator import generate_all_phase_workouts
from coachforge.services.program_committer import CommitResult, allocate_detail_key, commit_program
from coachforge.services.program_models import Program, ProgramDraft
from coachforge.services.program_normalizer import NormalizationResult, normalize_program
from coachforge.services.program_summary import generate_program_summary
from coachforge.services.program_validator import ValidationResult, validate_program
from coachforge.services.requirements_loader import ProgramContext, load_requirements, requirements_incomplete
from coachforge.services.storage.base import DocumentStore, ObjectStore, ProfileSource, VectorIndex
from coachforge.services.workout_pruner import prune_workouts

logger = logging.getLogger(__name__)

REQUIREMENTS_INCOMPLETE_REASON = "Program requirements incomplete"


class ProgramGenerationTrigger(BaseModel):
    """Fire-and-forget generation request; there is no channel back to the requester."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    user_id: str = ""
    coach_id: str = ""
    conversation_id: str = ""
    program_id: str = ""
    todo_list: Optional[Dict[str, Any]] = None
    requirements: Dict[str, Any] = Field(default_factory=dict)

    def requirement_bag(self) -> Dict[str, Any]:
        """Collected todo items, overridden by any explicit requirements."""
        return {**(self.todo_list or {}), **self.requirements}


@dataclass
class PipelineRunResult:
    status: str
    program_id: str
    reason: Optional[str] = None
    detail_key: Optional[str] = None
    error: Optional[Dict[str, Any]] = None
    validation: Optional[Dict[str, Any]] = None
    pruned: bool = False
    normalized: bool = False
    steps_ms: Dict[str, float] = field(default_factory=dict)

    @property
    def success(self) -> bool:
        return self.status == "completed"

    @property
    def skipped(self) -> bool:
        return self.status == "skipped"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status,
            "program_id": self.program_id,
            "reason": self.reason,
            "detail_key": self.detail_key,
            "error": self.error,
            "validation": self.validation,
            "pruned": self.pruned,
            "normalized": self.normalized,
            "steps_ms": self.steps_ms,
        }


def validate_trigger(trigger: ProgramGenerationTrigger) -> List[str]:
    """Names of required trigger fields that are missing."""
    missing = [
        name
        for name in ("user_id", "coach_id", "conversation_id", "program_id")
        if not getattr(trigger, name).strip()
    ]
    if trigger.todo_list is None:
        missing.append("todo_list")
    return missing


async def run_program_generation(
    trigger: ProgramGenerationTrigger,
    *,
    service: GenerationService,
    profile_source: ProfileSource,
    document_store: DocumentStore,
    object_store: ObjectStore,
    vector_index: VectorIndex,
    now: Optional[datetime] = None,
) -> PipelineRunResult:
    """Run the pipeline and describe the outcome; pipeline failures are returned, not raised.

    Step order is fixed: load, structure, per-phase generation, validate, prune,
    normalize, summarize, commit. Nothing is persisted unless validation passes.
    """
    missing = validate_trigger(trigger)
    if missing:
        logger.warning("Rejecting generation trigger; missing %s", ", ".join(missing))
        return PipelineRunResult(
            status="failed",
            program_id=trigger.program_id,
            reason=f"Missing required trigger fields: {', '.join(missing)}",
            error={"error_type": "invalid_trigger", "missing": missing},
        )
    requirements = trigger.requirement_bag()
    if requirements_incomplete(requirements):
        logger.info("Skipping generation for program %s: %s", trigger.program_id, REQUIREMENTS_INCOMPLETE_REASON)
        log_metric("program.pipeline.outcome", 1, metadata={"status": "skipped"})
        return PipelineRunResult(status="skipped", program_id=trigger.program_id, reason=REQUIREMENTS_INCOMPLETE_REASON)

    run = _PipelineRun(
        trigger=trigger,
        requirements=requirements,
        service=service,
        profile_source=profile_source,
        document_store=document_store,
        object_store=object_store,
        vector_index=vector_index,
        now=now,
    )
    metadata = {"program_id": trigger.program_id, "coach_id": trigger.coach_id}
    start = perf_counter()
    try:
        with trace("program.pipeline", metadata=metadata, user_id=trigger.user_id):
            await asyncio.wait_for(run.execute(), timeout=settings.workflow_timeout_seconds)
            result = await asyncio.to_thread(run.commit)
    except asyncio.TimeoutError:
        error = GenerationTimeout(
            f"Program generation exceeded {settings.workflow_timeout_seconds:.0f}s",
            step="workflow",
        )
        result = run.failed(error)
    except ProgramGenerationError as exc:
        result = run.failed(exc)

    log_metric("program.pipeline.latency_ms", (perf_counter() - start) * 1000, metadata=metadata)
    log_metric(
        "program.pipeline.outcome",
        1,
        metadata={**metadata, "status": result.status, "pruned": result.pruned, "normalized": result.normalized},
    )
    return result


class _PipelineRun:
    def __init__(
        self,
        *,
        trigger: ProgramGenerationTrigger,
        requirements: Dict[str, Any],
        service: GenerationService,
        profile_source: ProfileSource,
        document_store: DocumentStore,
        object_store: ObjectStore,
        vector_index: VectorIndex,
        now: Optional[datetime],
    ) -> None:
        self.trigger = trigger
        self.requirements = requirements
        self.service = service
        self.profile_source = profile_source
        self.document_store = document_store
        self.object_store = object_store
        self.vector_index = vector_index
        self.now = now
        self.pruned = False
        self.normalized = False
        self.validation: Optional[ValidationResult] = None
        self.steps_ms: Dict[str, float] = {}
        self._step_start = perf_counter()
        self._pending_commit: Optional[Callable[[], CommitResult]] = None

    def _mark(self, step: str) -> None:
        now = perf_counter()
        self.steps_ms[step] = round((now - self._step_start) * 1000, 2)
        self._step_start = now

    async def execute(self) -> None:
        trigger = self.trigger
        context = load_requirements(
            user_id=trigger.user_id,
            coach_id=trigger.coach_id,
            conversation_id=trigger.conversation_id,
            program_id=trigger.program_id,
            requirements=self.requirements,
            profile_source=self.profile_source,
            vector_index=self.vector_index,
            now=self.now,
        )
        self._mark("requirements")

        structure = await structure_phases(context, self.service)
        self._mark("phase_structure")

        program = Program(
            program_id=context.program_id,
            user_id=context.user_id,
            coach_id=context.coach_id,
            creation_conversation_id=context.conversation_id,
            name=structure.program_name,
            description=structure.program_description,
            start_date=context.start_date,
            end_date=calculate_end_date(context.start_date, context.total_days),
            total_days=context.total_days,
            training_frequency=context.training_frequency,
            phases=structure.phases,
            training_goals=list(context.goals),
            equipment_constraints=list(context.equipment),
            category=context.category_label,
            detail_key=allocate_detail_key(context.user_id, context.program_id, self.now),
        )

        phase_results = await generate_all_phase_workouts(structure.phases, context, self.service)
        self._mark("phase_workouts")
        templates = [template for result in phase_results for template in result.templates]
        templates.sort(key=lambda template: (template.day_number, template.template_id))
        draft = ProgramDraft(
            program=program,
            templates=templates,
            rest_days=sorted({day for result in phase_results for day in result.rest_days}),
            step_confidences={
                "phase_structure": structure.confidence,
                "phase_workouts": min((result.confidence for result in phase_results), default=1.0),
            },
        )

        validation = self._validate(draft)
        if validation.should_prune:
            target = validation.frequency_compliance["target_training_days"]
            prune = await prune_workouts(draft, target=target, service=self.service)
            draft = prune.draft
            self.pruned = True
            self._mark("prune")
            validation = self._validate(draft)

        normalization: Optional[NormalizationResult] = None
        if validation.should_normalize or validation.confidence < settings.normalize_confidence_threshold:
            normalization = await normalize_program(
                draft.program,
                self.service,
                findings=[issue.message for issue in validation.issues],
            )
            self.normalized = True
            self._mark("normalize")
            if not normalization.is_valid and normalization.uncorrected_issues:
                raise ValidationBlocked(
                    "Normalization left uncorrected issues",
                    issues=[issue.model_dump() for issue in normalization.uncorrected_issues],
                    blocking_flags=self._blocking_flags(validation, normalization),
                    step="normalize",
                )
            draft = ProgramDraft(
                program=normalization.program,
                templates=draft.templates,
                rest_days=draft.rest_days,
                step_confidences={**draft.step_confidences, "normalize": normalization.confidence},
            )
            validation = self._validate(draft)

        if not validation.is_valid:
            raise ValidationBlocked(
                "Program failed structural validation",
                issues=[issue.to_dict() for issue in validation.issues],
                blocking_flags=self._blocking_flags(validation, normalization),
            )

        summary = await generate_program_summary(draft.program, self.service)
        self._mark("summary")

        self._pending_commit = partial(
            commit_program,
            draft,
            context,
            summary,
            document_store=self.document_store,
            object_store=self.object_store,
            vector_index=self.vector_index,
            generation_metadata=self._generation_metadata(context, validation, normalization),
            debug_payload={
                "program_id": context.program_id,
                "context": context.to_dict(),
                "validation": validation.to_dict(),
                "normalization": normalization.to_dict() if normalization else None,
                "steps_ms": self.steps_ms,
            },
        )

    def commit(self) -> PipelineRunResult:
        """Blocking store writes; run in a worker thread after generation has finished."""
        if self._pending_commit is None:  # pragma: no cover - defensive guard
            raise RuntimeError("commit() called before execute() finished")
        try:
            commit = self._pending_commit()
        except ProgramGenerationError:
            raise
        except Exception as exc:
            logger.exception("Persisting program %s failed", self.trigger.program_id)
            raise CommitFailed(f"Program could not be persisted: {exc}", step="commit") from exc
        self._mark("commit")
        return self._completed(commit)

    def _validate(self, draft: ProgramDraft) -> ValidationResult:
        self.validation = validate_program(draft, prune_tolerance=settings.prune_tolerance)
        logger.info(
            "Validation for program %s: valid=%s prune=%s normalize=%s confidence=%.2f issues=%d",
            draft.program.program_id,
            self.validation.is_valid,
            self.validation.should_prune,
            self.validation.should_normalize,
            self.validation.confidence,
            len(self.validation.issues),
        )
        return self.validation

    def _blocking_flags(
        self,
        validation: ValidationResult,
        normalization: Optional[NormalizationResult],
    ) -> Dict[str, bool]:
        return {
            "is_valid": validation.is_valid,
            "should_prune": validation.should_prune,
            "should_normalize": validation.should_normalize,
            "pruned": self.pruned,
            "normalized": self.normalized,
            "normalization_valid": bool(normalization and normalization.is_valid),
        }

    def _generation_metadata(
        self,
        context: ProgramContext,
        validation: ValidationResult,
        normalization: Optional[NormalizationResult],
    ) -> Dict[str, Any]:
        return {
            "context_id": context.context_id,
            "category": context.category_label,
            "confidence": validation.confidence,
            "frequency_compliance": validation.frequency_compliance,
            "metrics": validation.metrics,
            "pruned": self.pruned,
            "normalized": self.normalized,
            "normalization_summary": normalization.summary if normalization else None,
            "generated_at": (self.now or datetime.now(timezone.utc)).isoformat(),
        }

    def _completed(self, commit: CommitResult) -> PipelineRunResult:
        logger.info("Program %s generated and committed", commit.program.program_id)
        return PipelineRunResult(
            status="completed",
            program_id=commit.program.program_id,
            detail_key=commit.detail_key,
            validation=self.validation.to_dict() if self.validation else None,
            pruned=self.pruned,
            normalized=self.normalized,
            steps_ms=self.steps_ms,
        )

    def failed(self, exc: ProgramGenerationError) -> PipelineRunResult:
        logger.error(
            "Program generation failed for %s at step %s: %s",
            self.trigger.program_id,
            exc.step,
            exc.message,
        )
        return PipelineRunResult(
            status="failed",
            program_id=self.trigger.program_id,
            reason=exc.message,
            error=exc.to_record(),
            validation=self.validation.to_dict() if self.validation else None,
            pruned=self.pruned,
            normalized=self.normalized,
            steps_ms=self.steps_ms,
        )
