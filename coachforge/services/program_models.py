"""Pydantic models for programs, phases, workout templates and generation responses."""
from __future__ import annotations

from dataclasses import dataclass, field as dataclass_field
from datetime import date, datetime
from typing import Any, Dict, List, Literal, Optional, get_args

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from coachforge.core.errors import UnsupportedTemplateFormat
from coachforge.services.category_fragments import DisciplineDetails

ProgramStatus = Literal["active", "paused", "completed", "archived"]
TemplateStatus = Literal["pending", "completed", "skipped", "regenerated"]
TemplateType = Literal[
    "strength",
    "accessory",
    "conditioning",
    "skill",
    "mobility",
    "warmup",
    "cooldown",
    "recovery",
    "power",
    "olympic",
    "endurance",
    "flexibility",
    "balance",
    "core",
    "stability",
    "mixed",
    "rest",
]
ScoringType = Literal["load", "time", "amrap", "reps", "rounds", "distance", "quality", "completion", "none"]
IssueType = Literal["structure", "data_quality", "cross_reference", "date_logic", "phase_logic"]

TEMPLATE_TYPES = frozenset(get_args(TemplateType))
SCORING_TYPES = frozenset(get_args(ScoringType))

# Markers of the superseded structured-exercise template shape.
LEGACY_TEMPLATE_KEYS = ("workoutContent", "workout_content", "coachingNotes", "coaching_notes", "templateType", "template_type")

# Fields of the lightweight program the normalizer is allowed to rewrite.
LIGHTWEIGHT_FIELDS = (
    "name",
    "description",
    "start_date",
    "end_date",
    "total_days",
    "training_frequency",
    "phases",
    "training_goals",
    "equipment_constraints",
)


class _Model(BaseModel):
    # Generated payloads arrive in either snake_case or camelCase.
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class Phase(_Model):
    phase_id: str = ""
    name: str = ""
    description: str = ""
    start_day: int
    end_day: int
    duration_days: int = 0
    focus_areas: List[str] = Field(default_factory=list)
    estimated_workouts: int = 0

    @model_validator(mode="after")
    def _derive_duration(self) -> "Phase":
        self.duration_days = self.end_day - self.start_day + 1
        return self


class WorkoutTemplateDraft(_Model):
    """Template fields the generation service fills in for one phase."""

    template_id: str = ""
    group_id: str = ""
    day_number: int
    name: str = ""
    type: TemplateType = "mixed"
    description: str = Field(default="", description="Natural-language workout, written like a coach would")
    prescribed_exercises: List[str] = Field(default_factory=list)
    scoring_type: ScoringType = "completion"
    time_cap: Optional[int] = None
    estimated_duration: int = 0
    rest_after: int = 0
    equipment: List[str] = Field(default_factory=list)
    notes: Optional[str] = None

    @field_validator("type", mode="before")
    @classmethod
    def _coerce_type(cls, value: Any) -> str:
        # "Warm-up" / "cool down" style labels collapse onto the canonical names.
        text = "".join(ch for ch in str(value or "").lower() if ch.isalpha())
        return text if text in TEMPLATE_TYPES else "mixed"

    @field_validator("scoring_type", mode="before")
    @classmethod
    def _coerce_scoring(cls, value: Any) -> str:
        text = str(value or "").strip().lower()
        return text if text in SCORING_TYPES else "completion"

    @field_validator("estimated_duration", "rest_after", mode="before")
    @classmethod
    def _coerce_minutes(cls, value: Any) -> int:
        try:
            return max(0, int(round(float(value))))
        except (TypeError, ValueError):
            return 0

    @field_validator("prescribed_exercises", mode="before")
    @classmethod
    def _coerce_exercises(cls, value: Any) -> List[str]:
        if isinstance(value, str):
            return [part.strip() for part in value.split(",") if part.strip()]
        return [str(item).strip() for item in value or [] if str(item).strip()]


class WorkoutTemplate(WorkoutTemplateDraft):
    phase_id: str = ""
    discipline_specific: Optional[DisciplineDetails] = None
    status: TemplateStatus = "pending"
    scheduled_date: Optional[date] = None
    completed_at: Optional[datetime] = None
    linked_workout_id: Optional[str] = None

    @property
    def is_rest(self) -> bool:
        return self.type == "rest"


class Program(_Model):
    program_id: str
    user_id: str
    coach_id: str = ""
    creation_conversation_id: str = ""
    name: str = ""
    description: str = ""
    status: ProgramStatus = "active"
    start_date: date
    end_date: Optional[date] = None
    total_days: int
    current_day: int = 1
    paused_at: Optional[datetime] = None
    paused_duration: int = 0
    training_frequency: int
    phases: List[Phase] = Field(default_factory=list)
    training_goals: List[str] = Field(default_factory=list)
    equipment_constraints: List[str] = Field(default_factory=list)
    category: str = ""
    total_workouts: int = 0
    completed_workouts: int = 0
    skipped_workouts: int = 0
    adherence_rate: float = 0.0
    last_activity_at: Optional[datetime] = None
    detail_key: str = ""
    summary: str = ""

    def lightweight_dict(self) -> Dict[str, Any]:
        """Program metadata without template bodies, as sent to the normalizer."""
        return self.model_dump(mode="json")


class ProgramDetail(_Model):
    """Object-store blob holding the full per-day workout templates."""

    program_id: str
    program_context: Dict[str, Any] = Field(default_factory=dict)
    workout_templates: List[WorkoutTemplate] = Field(default_factory=list)
    rest_days: List[int] = Field(default_factory=list)
    generation_metadata: Dict[str, Any] = Field(default_factory=dict)


class NormalizationIssue(_Model):
    type: IssueType = "structure"
    severity: Literal["error", "warning"] = "warning"
    field: str = ""
    description: str = ""
    corrected: bool = False

    @field_validator("type", mode="before")
    @classmethod
    def _coerce_issue_type(cls, value: Any) -> str:
        text = str(value or "").strip().lower()
        return text if text in get_args(IssueType) else "structure"

    @field_validator("severity", mode="before")
    @classmethod
    def _coerce_severity(cls, value: Any) -> str:
        return "error" if str(value or "").strip().lower() == "error" else "warning"


# Generation response contracts. None of them carries a clarification field:
# generation runs in the background with nobody to answer a question.


class PhaseDraft(_Model):
    phase_id: str = ""
    name: str = ""
    description: str = ""
    start_day: int
    end_day: int
    focus_areas: List[str] = Field(default_factory=list)


class PhaseStructureResponse(_Model):
    program_name: str = ""
    program_description: str = ""
    phases: List[PhaseDraft]


class PhaseWorkoutsResponse(_Model):
    workout_templates: List[Dict[str, Any]] = Field(default_factory=list)
    rest_days: List[int] = Field(default_factory=list)


class PruneSelection(_Model):
    days_to_remove: List[int] = Field(default_factory=list)
    reasoning: str = ""

    @field_validator("days_to_remove", mode="before")
    @classmethod
    def _coerce_days(cls, value: Any) -> List[int]:
        days: List[int] = []
        for item in value or []:
            try:
                days.append(int(item))
            except (TypeError, ValueError):
                continue
        return days


class NormalizationResponse(_Model):
    is_valid: bool = False
    normalized_data: Optional[Dict[str, Any]] = None
    issues: List[NormalizationIssue] = Field(default_factory=list)
    confidence: float = 0.0
    summary: str = ""

    @field_validator("confidence", mode="before")
    @classmethod
    def _clamp_confidence(cls, value: Any) -> float:
        try:
            return max(0.0, min(1.0, float(value)))
        except (TypeError, ValueError):
            return 0.0


class SummaryResponse(_Model):
    summary: str = ""


def ensure_supported_template_format(raw: Dict[str, Any]) -> None:
    """Reject templates in the legacy structured-exercise format; they are never migrated."""
    legacy_keys = [key for key in LEGACY_TEMPLATE_KEYS if key in raw]
    exercises = raw.get("prescribedExercises", raw.get("prescribed_exercises"))
    if isinstance(exercises, list) and any(isinstance(item, dict) for item in exercises):
        legacy_keys.append("prescribed_exercises[object]")
    if legacy_keys:
        raise UnsupportedTemplateFormat(
            f"Legacy structured-exercise template format is not supported (keys: {', '.join(legacy_keys)})",
            step="phase_workouts",
        )


@dataclass
class ProgramDraft:
    """A program under construction: metadata plus the templates destined for the detail blob."""

    program: Program
    templates: List[WorkoutTemplate]
    rest_days: List[int] = dataclass_field(default_factory=list)
    step_confidences: Dict[str, float] = dataclass_field(default_factory=dict)

    def training_days(self) -> List[int]:
        return sorted({template.day_number for template in self.templates if not template.is_rest})
