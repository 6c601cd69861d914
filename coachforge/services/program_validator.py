"""Structural validation of an assembled program; the gate before anything is persisted."""
from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

from coachforge.services.calendar_engine import calculate_end_date
from coachforge.services.program_models import Phase, Program, ProgramDraft, WorkoutTemplate

DEFAULT_PRUNE_TOLERANCE = 0.2
CONFIDENCE_PENALTY_PER_ISSUE = 0.1

# Issue categories the normalizer can act on.
NORMALIZABLE_CATEGORIES = frozenset({"phase_logic", "structure", "template", "date_logic"})


@dataclass
class ValidationIssue:
    category: str
    severity: str
    field: str
    message: str

    def to_dict(self) -> Dict[str, str]:
        return {
            "category": self.category,
            "severity": self.severity,
            "field": self.field,
            "message": self.message,
        }


@dataclass
class ValidationResult:
    is_valid: bool
    should_prune: bool
    should_normalize: bool
    confidence: float
    issues: List[ValidationIssue] = field(default_factory=list)
    metrics: Dict[str, Any] = field(default_factory=dict)
    frequency_compliance: Dict[str, Any] = field(default_factory=dict)

    @property
    def errors(self) -> List[ValidationIssue]:
        return [issue for issue in self.issues if issue.severity == "error"]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "is_valid": self.is_valid,
            "should_prune": self.should_prune,
            "should_normalize": self.should_normalize,
            "confidence": self.confidence,
            "issues": [issue.to_dict() for issue in self.issues],
            "metrics": self.metrics,
            "frequency_compliance": self.frequency_compliance,
        }


def training_day_target(total_days: int, training_frequency: int) -> int:
    return training_frequency * math.ceil(total_days / 7)


def coverage_problems(ranges: Sequence[Tuple[int, int]], total_days: int) -> List[str]:
    """Describe gaps, overlaps and bound violations for sorted (start, end) day ranges."""
    if not ranges:
        return ["no phases"]
    problems: List[str] = []
    if ranges[0][0] != 1:
        problems.append(f"first phase starts on day {ranges[0][0]}, expected 1")
    for index, (start, end) in enumerate(ranges):
        if start >= end:
            problems.append(f"phase {index + 1} has start_day {start} >= end_day {end}")
        if index > 0:
            previous_end = ranges[index - 1][1]
            if start > previous_end + 1:
                problems.append(f"gap between day {previous_end} and day {start}")
            elif start <= previous_end:
                problems.append(f"phase {index + 1} overlaps the previous phase at day {start}")
    if ranges[-1][1] != total_days:
        problems.append(f"last phase ends on day {ranges[-1][1]}, expected {total_days}")
    return problems


def validate_program(
    draft: ProgramDraft,
    *,
    prune_tolerance: float = DEFAULT_PRUNE_TOLERANCE,
) -> ValidationResult:
    """Pure aggregation over the draft; no external calls.

    Checks run in order: phase coverage, day coverage, training-day frequency,
    required fields, then the aggregate confidence.
    """
    program = draft.program
    templates = draft.templates
    issues: List[ValidationIssue] = []

    issues.extend(_check_phases(program))
    issues.extend(_check_day_coverage(program, templates, draft.rest_days))
    compliance, frequency_issue = _check_frequency(program, draft.training_days(), prune_tolerance)
    if frequency_issue:
        issues.append(frequency_issue)
    issues.extend(_check_required_fields(program, templates))
    issues.extend(_check_template_grouping(program, templates))

    step_confidence = min(draft.step_confidences.values()) if draft.step_confidences else 1.0
    confidence = step_confidence * (1.0 - CONFIDENCE_PENALTY_PER_ISSUE * len(issues))
    confidence = round(max(0.0, min(1.0, confidence)), 3)

    return ValidationResult(
        is_valid=not any(issue.severity == "error" for issue in issues),
        should_prune=compliance["should_prune"],
        should_normalize=any(issue.category in NORMALIZABLE_CATEGORIES for issue in issues),
        confidence=confidence,
        issues=issues,
        metrics=_metrics(program, templates, draft.rest_days),
        frequency_compliance=compliance,
    )


def _check_phases(program: Program) -> List[ValidationIssue]:
    issues: List[ValidationIssue] = []
    ordered = list(program.phases)
    if ordered != sorted(ordered, key=lambda phase: phase.start_day):
        issues.append(ValidationIssue("phase_logic", "error", "phases", "phases are not sorted by start_day"))
        ordered.sort(key=lambda phase: phase.start_day)
    for problem in coverage_problems([(phase.start_day, phase.end_day) for phase in ordered], program.total_days):
        issues.append(ValidationIssue("phase_logic", "error", "phases", problem))
    total = sum(phase.duration_days for phase in ordered)
    if ordered and total != program.total_days:
        issues.append(
            ValidationIssue(
                "phase_logic",
                "error",
                "phases",
                f"phase durations sum to {total}, expected {program.total_days}",
            )
        )
    if program.end_date and program.end_date != calculate_end_date(program.start_date, program.total_days):
        issues.append(
            ValidationIssue(
                "date_logic",
                "warning",
                "end_date",
                f"end_date {program.end_date} does not match start_date + total_days - 1",
            )
        )
    return issues


def _check_day_coverage(
    program: Program,
    templates: Sequence[WorkoutTemplate],
    rest_days: Sequence[int],
) -> List[ValidationIssue]:
    issues: List[ValidationIssue] = []
    covered = {template.day_number for template in templates} | set(rest_days)
    outside = sorted({day for day in covered if day < 1 or day > program.total_days})
    if outside:
        issues.append(
            ValidationIssue("structure", "error", "workout_templates", f"days outside the program: {outside[:10]}")
        )
    missing = [day for day in range(1, program.total_days + 1) if day not in covered]
    if missing:
        issues.append(
            ValidationIssue(
                "coverage",
                "warning",
                "workout_templates",
                f"{len(missing)} day(s) have no template and are not rest days (first: {missing[:5]})",
            )
        )
    return issues


def _check_frequency(
    program: Program,
    training_days: Sequence[int],
    prune_tolerance: float,
) -> Tuple[Dict[str, Any], Optional[ValidationIssue]]:
    actual = len(training_days)
    target = training_day_target(program.total_days, program.training_frequency)
    difference = actual - target
    excess_ratio = (difference / target) if target else 0.0
    should_prune = target > 0 and difference > 0 and excess_ratio > prune_tolerance
    compliance = {
        "actual_training_days": actual,
        "target_training_days": target,
        "difference": difference,
        "excess_ratio": round(excess_ratio, 3),
        "should_prune": should_prune,
    }
    if should_prune:
        return compliance, ValidationIssue(
            "frequency",
            "warning",
            "workout_templates",
            f"{actual} training days scheduled, target is {target}",
        )
    if target and actual < target * (1 - prune_tolerance):
        return compliance, ValidationIssue(
            "frequency",
            "warning",
            "workout_templates",
            f"only {actual} training days scheduled, target is {target}",
        )
    return compliance, None


def _check_required_fields(program: Program, templates: Sequence[WorkoutTemplate]) -> List[ValidationIssue]:
    issues: List[ValidationIssue] = []
    for name in ("program_id", "name", "detail_key"):
        if not str(getattr(program, name) or "").strip():
            issues.append(ValidationIssue("structure", "error", name, f"program {name} is missing"))
    if program.total_days < 1:
        issues.append(ValidationIssue("structure", "error", "total_days", "total_days must be positive"))
    if program.end_date is None:
        issues.append(ValidationIssue("structure", "error", "end_date", "program end_date is missing"))
    if not program.phases:
        issues.append(ValidationIssue("structure", "error", "phases", "program has no phases"))
    if not any(not template.is_rest for template in templates):
        issues.append(ValidationIssue("template", "error", "workout_templates", "program has no workout templates"))

    for index, phase in enumerate(program.phases):
        issues.extend(_missing(phase, ("phase_id", "name"), f"phases[{index}]", "phase_logic"))
    for template in templates:
        label = f"workout_templates[{template.template_id or template.day_number}]"
        issues.extend(_missing(template, ("template_id", "group_id", "phase_id", "name", "description"), label, "template"))
    return issues


def _missing(item: Phase | WorkoutTemplate, names: Sequence[str], label: str, category: str) -> List[ValidationIssue]:
    return [
        ValidationIssue(category, "error", f"{label}.{name}", f"{name} is missing")
        for name in names
        if not str(getattr(item, name) or "").strip()
    ]


def _check_template_grouping(program: Program, templates: Sequence[WorkoutTemplate]) -> List[ValidationIssue]:
    issues: List[ValidationIssue] = []
    groups: Dict[int, set] = {}
    for template in templates:
        groups.setdefault(template.day_number, set()).add(template.group_id)
    split_days = sorted(day for day, group_ids in groups.items() if len(group_ids) > 1)
    if split_days:
        issues.append(
            ValidationIssue(
                "template",
                "error",
                "workout_templates.group_id",
                f"templates on the same day use different group ids (days {split_days[:10]})",
            )
        )
    phase_by_id = {phase.phase_id: phase for phase in program.phases}
    unknown = sorted(
        {template.phase_id for template in templates if template.phase_id and template.phase_id not in phase_by_id}
    )
    if unknown:
        issues.append(
            ValidationIssue(
                "cross_reference",
                "error",
                "workout_templates.phase_id",
                f"templates reference phases that are not in the program ({unknown[:10]})",
            )
        )
    mismatched = sorted(
        {
            template.day_number
            for template in templates
            if template.phase_id in phase_by_id
            and not phase_by_id[template.phase_id].start_day <= template.day_number <= phase_by_id[template.phase_id].end_day
        }
    )
    if mismatched:
        issues.append(
            ValidationIssue(
                "cross_reference",
                "warning",
                "workout_templates.phase_id",
                f"templates reference a phase that does not contain their day (days {mismatched[:10]})",
            )
        )
    return issues


def _metrics(program: Program, templates: Sequence[WorkoutTemplate], rest_days: Sequence[int]) -> Dict[str, Any]:
    training = {template.day_number for template in templates if not template.is_rest}
    per_phase: Dict[str, int] = {}
    for template in templates:
        per_phase[template.phase_id] = per_phase.get(template.phase_id, 0) + 1
    return {
        "phase_count": len(program.phases),
        "total_templates": len(templates),
        "unique_training_days": len(training),
        "rest_days": len(set(rest_days) - training),
        "templates_per_phase": per_phase,
        "average_templates_per_training_day": round(len(templates) / len(training), 2) if training else 0.0,
    }
