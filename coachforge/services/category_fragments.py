"""Discipline-specific template fragments, keyed by training category.

Each discipline contributes a small `discipline_specific` payload to workout
templates. The payloads form a tagged union on `discipline`; categories that
are not registered resolve to the explicit fallback fragment.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Annotated, Dict, List, Literal, Optional, Tuple, Type, Union

from pydantic import BaseModel, ConfigDict, Field


class _DetailsBase(BaseModel):
    model_config = ConfigDict(extra="ignore")


class CrossfitDetails(_DetailsBase):
    discipline: Literal["crossfit"] = "crossfit"
    workout_format: Optional[str] = Field(default=None, description="for_time, amrap, emom, chipper, intervals")
    benchmark_name: Optional[str] = None
    scaling_notes: Optional[str] = None


class PowerliftingDetails(_DetailsBase):
    discipline: Literal["powerlifting"] = "powerlifting"
    primary_lift: Optional[str] = Field(default=None, description="squat, bench, deadlift or a variation")
    intensity_scheme: Optional[str] = Field(default=None, description="%1RM or RPE prescription")
    top_set: Optional[str] = None


class BodybuildingDetails(_DetailsBase):
    discipline: Literal["bodybuilding"] = "bodybuilding"
    muscle_groups: List[str] = Field(default_factory=list)
    split_label: Optional[str] = None
    rep_range: Optional[str] = None


class RunningDetails(_DetailsBase):
    discipline: Literal["running"] = "running"
    run_type: Optional[str] = Field(default=None, description="easy, tempo, intervals, long, recovery")
    distance_km: Optional[float] = None
    target_pace: Optional[str] = None


class HyroxDetails(_DetailsBase):
    discipline: Literal["hyrox"] = "hyrox"
    stations: List[str] = Field(default_factory=list)
    run_segments: Optional[int] = None
    race_simulation: bool = False


class OlympicWeightliftingDetails(_DetailsBase):
    discipline: Literal["olympic_weightlifting"] = "olympic_weightlifting"
    primary_lift: Optional[str] = Field(default=None, description="snatch, clean and jerk or a complex")
    complex: Optional[str] = None
    percentage_of_max: Optional[str] = None


class FunctionalBodybuildingDetails(_DetailsBase):
    discipline: Literal["functional_bodybuilding"] = "functional_bodybuilding"
    movement_patterns: List[str] = Field(default_factory=list)
    tempo: Optional[str] = None


class CalisthenicsDetails(_DetailsBase):
    discipline: Literal["calisthenics"] = "calisthenics"
    skill_focus: Optional[str] = None
    progression_level: Optional[str] = None


class CircuitTrainingDetails(_DetailsBase):
    discipline: Literal["circuit_training"] = "circuit_training"
    station_count: Optional[int] = None
    work_rest: Optional[str] = Field(default=None, description="e.g. 40s on / 20s off")
    rounds: Optional[int] = None


class HybridDetails(_DetailsBase):
    discipline: Literal["hybrid"] = "hybrid"
    modalities: List[str] = Field(default_factory=list)
    emphasis: Optional[str] = None


DisciplineDetails = Annotated[
    Union[
        CrossfitDetails,
        PowerliftingDetails,
        BodybuildingDetails,
        RunningDetails,
        HyroxDetails,
        OlympicWeightliftingDetails,
        FunctionalBodybuildingDetails,
        CalisthenicsDetails,
        CircuitTrainingDetails,
        HybridDetails,
    ],
    Field(discriminator="discipline"),
]


@dataclass(frozen=True)
class CategoryFragment:
    discipline: str
    details_model: Type[BaseModel]
    guidance: str
    aliases: Tuple[str, ...] = ()


FRAGMENT_REGISTRY: Dict[str, CategoryFragment] = {
    fragment.discipline: fragment
    for fragment in (
        CategoryFragment(
            "crossfit",
            CrossfitDetails,
            "Mix strength, gymnastics and metcons; name the workout format and give scaling options.",
            ("cross_fit", "functional_fitness", "metcon"),
        ),
        CategoryFragment(
            "powerlifting",
            PowerliftingDetails,
            "Anchor each training day on squat, bench or deadlift with explicit %1RM or RPE targets.",
            ("powerlifter", "strength_training"),
        ),
        CategoryFragment(
            "bodybuilding",
            BodybuildingDetails,
            "Organise days by muscle group split and keep most work in hypertrophy rep ranges.",
            ("hypertrophy", "physique"),
        ),
        CategoryFragment(
            "running",
            RunningDetails,
            "Balance easy volume with one or two quality sessions; include distance and pace targets.",
            ("run", "endurance_running", "marathon", "half_marathon", "5k", "10k"),
        ),
        CategoryFragment(
            "hyrox",
            HyroxDetails,
            "Pair running segments with Hyrox stations and add periodic race simulations.",
            (),
        ),
        CategoryFragment(
            "olympic_weightlifting",
            OlympicWeightliftingDetails,
            "Prioritise snatch and clean and jerk technique with percentage-based loading.",
            ("olympic_lifting", "weightlifting", "oly"),
        ),
        CategoryFragment(
            "functional_bodybuilding",
            FunctionalBodybuildingDetails,
            "Use tempo-controlled movement patterns and quality-scored accessory work.",
            ("functional_bb",),
        ),
        CategoryFragment(
            "calisthenics",
            CalisthenicsDetails,
            "Progress bodyweight skills through clear levels; note the skill focus per day.",
            ("bodyweight", "street_workout", "gymnastics"),
        ),
        CategoryFragment(
            "circuit_training",
            CircuitTrainingDetails,
            "Structure sessions as timed stations with explicit work/rest and round counts.",
            ("circuits", "bootcamp", "hiit"),
        ),
        CategoryFragment(
            "hybrid",
            HybridDetails,
            "Blend strength and endurance modalities and state which one each day emphasises.",
            ("hybrid_athlete", "concurrent_training"),
        ),
    )
}

FALLBACK_DISCIPLINE = "crossfit"

_ALIAS_INDEX: Dict[str, str] = {
    alias: fragment.discipline for fragment in FRAGMENT_REGISTRY.values() for alias in fragment.aliases
}


@dataclass(frozen=True)
class ResolvedFragment:
    fragment: CategoryFragment
    requested: Optional[str]
    is_fallback: bool

    @property
    def discipline(self) -> str:
        return self.fragment.discipline

    @property
    def label(self) -> str:
        """Label recorded in generation metadata, e.g. "crossfit_fallback"."""
        return f"{self.fragment.discipline}_fallback" if self.is_fallback else self.fragment.discipline


def normalize_category(value: Optional[str]) -> str:
    return re.sub(r"[\s\-/]+", "_", (value or "").strip().lower())


def resolve_category(category: Optional[str]) -> ResolvedFragment:
    key = normalize_category(category)
    discipline = key if key in FRAGMENT_REGISTRY else _ALIAS_INDEX.get(key)
    if discipline:
        return ResolvedFragment(FRAGMENT_REGISTRY[discipline], category, is_fallback=False)
    return ResolvedFragment(FRAGMENT_REGISTRY[FALLBACK_DISCIPLINE], category, is_fallback=True)


def coerce_discipline_payload(payload: object, resolved: ResolvedFragment) -> Optional[dict]:
    """Tag a generated `discipline_specific` payload with the program's discipline.

    Payloads that are not objects are dropped. The generated tag is overwritten so
    the union always validates against the fragment the program resolved to.
    """
    if not isinstance(payload, dict):
        return None
    tagged = dict(payload)
    tagged["discipline"] = resolved.discipline
    return tagged
