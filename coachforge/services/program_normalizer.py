"""Repair soft structural defects in program metadata via one generation call."""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from pydantic import ValidationError

from coachforge.observability.metrics import log_metric
from coachforge.observability.tracing import trace
from coachforge.services.generation.base import GenerationService
from coachforge.services.generation.client import generate_structured
from coachforge.services.phase_structurer import estimate_phase_workouts
from coachforge.services.program_models import (
    LIGHTWEIGHT_FIELDS,
    NormalizationIssue,
    NormalizationResponse,
    Phase,
    Program,
)

logger = logging.getLogger(__name__)

FAILED_NORMALIZATION_CONFIDENCE = 0.3
DEFAULT_NORMALIZATION_CONFIDENCE = 0.8
MAX_PROGRAM_NAME_LENGTH = 60


@dataclass
class NormalizationResult:
    is_valid: bool
    program: Program
    issues: List[NormalizationIssue] = field(default_factory=list)
    confidence: float = 0.0
    summary: str = ""
    method: str = "service"
    detail_key_restored: bool = False

    @property
    def uncorrected_issues(self) -> List[NormalizationIssue]:
        return [issue for issue in self.issues if not issue.corrected]

    @property
    def corrected_count(self) -> int:
        return sum(1 for issue in self.issues if issue.corrected)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "is_valid": self.is_valid,
            "issues": [issue.model_dump() for issue in self.issues],
            "confidence": self.confidence,
            "summary": self.summary,
            "method": self.method,
            "detail_key_restored": self.detail_key_restored,
        }


def build_normalization_prompts(program: Program, findings: Sequence[str] = ()) -> tuple[str, str]:
    system_prompt = (
        "You are a training program data normalizer. Analyze the program metadata, fix structural, "
        "data and logical problems, and return the corrected program.\n"
        "- is_valid is true when no issues were found or every issue was corrected; false only when a "
        "critical issue could not be corrected.\n"
        "- Phases must be sequential with no gaps or overlaps, start on day 1 and end on total_days.\n"
        f"- The program name must be at most {MAX_PROGRAM_NAME_LENGTH} characters.\n"
        "- Keep detail_key exactly as given. Never invent workout templates; they are not part of this data.\n"
        "- Report every issue with type, severity, field, description and corrected."
    )
    known = "\n".join(f"- {finding}" for finding in findings) or "- none reported"
    user_prompt = (
        f"Known validation findings:\n{known}\n\n"
        f"Program data to normalize:\n{json.dumps(program.lightweight_dict(), indent=2, default=str)}"
    )
    return system_prompt, user_prompt


async def normalize_program(
    program: Program,
    service: GenerationService,
    *,
    findings: Sequence[str] = (),
) -> NormalizationResult:
    """Normalize lightweight program metadata.

    Only the lightweight fields are merged back; `detail_key` and identity fields
    always come from the input. A failed call yields an invalid result with
    confidence 0.3 instead of raising.
    """
    system_prompt, user_prompt = build_normalization_prompts(program, findings)
    metadata = {"program_id": program.program_id, "findings": len(findings)}
    try:
        with trace("program.normalize", metadata=metadata, user_id=program.user_id):
            result = await generate_structured(
                service,
                step="normalize",
                system_prompt=system_prompt,
                user_prompt=user_prompt,
                response_model=NormalizationResponse,
                metadata={"program_id": program.program_id},
                user_id=program.user_id,
            )
    except Exception as exc:
        logger.warning("Normalization of program %s failed: %s", program.program_id, exc)
        log_metric("program.normalize.failed", 1, metadata=metadata)
        return failed_normalization(program, exc)

    response = result.value
    merged, restored, phases_kept = merge_normalized(program, response.normalized_data)
    issues = list(response.issues)
    is_valid = response.is_valid
    if phases_kept:
        issues.append(
            NormalizationIssue(
                type="cross_reference",
                severity="warning",
                field="phases",
                description="Normalized phase list changed the phase ids templates refer to; original phases kept",
                corrected=False,
            )
        )
    if merged is None:
        merged = program
        is_valid = False
        issues.append(
            NormalizationIssue(
                type="data_quality",
                severity="error",
                field="normalized_data",
                description="Normalized data did not form a valid program; original kept",
                corrected=False,
            )
        )
    normalization = NormalizationResult(
        is_valid=is_valid,
        program=merged,
        issues=issues,
        confidence=response.confidence or DEFAULT_NORMALIZATION_CONFIDENCE,
        summary=response.summary or "Normalization completed",
        detail_key_restored=restored,
    )
    logger.info(
        "Normalized program %s: valid=%s corrected=%d uncorrected=%d",
        program.program_id,
        normalization.is_valid,
        normalization.corrected_count,
        len(normalization.uncorrected_issues),
    )
    log_metric(
        "program.normalize.issues",
        len(issues),
        metadata={**metadata, "corrected": normalization.corrected_count, "is_valid": normalization.is_valid},
    )
    return normalization


def merge_normalized(
    program: Program, normalized: Optional[Dict[str, Any]]
) -> tuple[Optional[Program], bool, bool]:
    """Merge lightweight fields from `normalized` onto `program`.

    Returns the merged program (None when the merge is not a valid program),
    whether the detail key had to be restored, and whether the returned phase
    list was discarded. Renamed phases are mapped back onto the original ids by
    position; a phase list of a different length keeps the original phases.
    """
    if not normalized:
        return program, False, False

    restored = False
    returned_key = normalized.get("detail_key", normalized.get("detailKey"))
    if returned_key != program.detail_key:
        restored = True
        logger.warning(
            "Normalizer changed detail_key for program %s (%r); restoring %r",
            program.program_id,
            returned_key,
            program.detail_key,
        )

    base = program.model_dump()
    for name in LIGHTWEIGHT_FIELDS:
        camel = _camel(name)
        if name in normalized:
            base[name] = normalized[name]
        elif camel in normalized:
            base[name] = normalized[camel]
    base["detail_key"] = program.detail_key
    try:
        merged = Program.model_validate(base)
    except ValidationError as exc:
        logger.warning("Discarding normalized data for program %s: %s", program.program_id, exc)
        return None, restored, False

    if len(merged.name) > MAX_PROGRAM_NAME_LENGTH:
        merged.name = merged.name[:MAX_PROGRAM_NAME_LENGTH].rstrip()
    phases_kept = False
    original_ids = [phase.phase_id for phase in program.phases]
    if sorted(phase.phase_id for phase in merged.phases) != sorted(original_ids):
        if len(merged.phases) == len(original_ids):
            merged.phases = _map_phase_ids(program.phases, merged.phases)
            logger.warning("Normalizer renamed phases of program %s; original phase ids mapped back", program.program_id)
        else:
            # Templates reference phase ids; a regrouped phase list would orphan them.
            merged.phases = [phase.model_copy() for phase in program.phases]
            phases_kept = True
            logger.warning("Normalizer regrouped phases of program %s; original phases kept", program.program_id)
    merged.phases = [_with_estimate(phase, merged.training_frequency) for phase in merged.phases]
    return merged, restored, phases_kept


def failed_normalization(program: Program, exc: Exception) -> NormalizationResult:
    return NormalizationResult(
        is_valid=False,
        program=program,
        issues=[
            NormalizationIssue(
                type="structure",
                severity="error",
                field="normalization_system",
                description=f"Normalization error: {exc}",
                corrected=False,
            )
        ],
        confidence=FAILED_NORMALIZATION_CONFIDENCE,
        summary="Normalization failed due to system error",
        method="fallback",
    )


def _map_phase_ids(original: Sequence[Phase], returned: Sequence[Phase]) -> List[Phase]:
    ordered = sorted(returned, key=lambda phase: phase.start_day)
    source_ids = [phase.phase_id for phase in sorted(original, key=lambda phase: phase.start_day)]
    return [phase.model_copy(update={"phase_id": phase_id}) for phase, phase_id in zip(ordered, source_ids)]


def _with_estimate(phase: Phase, training_frequency: int) -> Phase:
    if phase.estimated_workouts:
        return phase
    return phase.model_copy(
        update={"estimated_workouts": estimate_phase_workouts(phase.start_day, phase.end_day, training_frequency)}
    )


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.title() for part in rest)
