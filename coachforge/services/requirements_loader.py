"""Assemble the immutable generation context from the requirement bag and history."""
from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from datetime import date, datetime
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple
from uuid import uuid4

from coachforge.core.config import settings
from coachforge.core.errors import ConfigurationMissing
from coachforge.observability.tracing import trace
from coachforge.services.calendar_engine import to_date, today_in_timezone
from coachforge.services.category_fragments import ResolvedFragment, resolve_category
from coachforge.services.duration_parser import can_parse_duration, parse_duration_days, parse_training_frequency
from coachforge.services.storage.base import ProfileSource, VectorIndex

logger = logging.getLogger(__name__)

CONTEXT_EXCERPT_MAX_CHARS = 4000


@dataclass(frozen=True)
class ProgramContext:
    """Write-once context shared by every pipeline step; nothing mutates it after loading."""

    context_id: str
    user_id: str
    coach_id: str
    conversation_id: str
    program_id: str
    total_days: int
    training_frequency: int
    goals: Tuple[str, ...]
    equipment: Tuple[str, ...]
    start_date: date
    timezone: str
    category: str
    category_label: str
    experience_level: Optional[str] = None
    methodology: Optional[str] = None
    session_duration: Optional[str] = None
    injury_considerations: Optional[str] = None
    coach_name: Optional[str] = None
    coach_style: Optional[str] = None
    context_excerpt: str = ""

    @property
    def fragment(self) -> ResolvedFragment:
        return resolve_category(self.category)

    def prompt_summary(self) -> Dict[str, Any]:
        """Compact view for per-phase prompts; the historical excerpt stays out."""
        return {
            "context_id": self.context_id,
            "total_days": self.total_days,
            "training_frequency": self.training_frequency,
            "goals": list(self.goals),
            "equipment": list(self.equipment),
            "experience_level": self.experience_level,
            "session_duration": self.session_duration,
            "injury_considerations": self.injury_considerations,
            "discipline": self.category,
        }

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["goals"] = list(self.goals)
        data["equipment"] = list(self.equipment)
        data["start_date"] = self.start_date.isoformat()
        return data


def load_requirements(
    *,
    user_id: str,
    coach_id: str,
    conversation_id: str,
    program_id: str,
    requirements: Mapping[str, Any],
    profile_source: ProfileSource,
    vector_index: VectorIndex,
    now: Optional[datetime] = None,
) -> ProgramContext:
    """Resolve coach/profile configuration and turn the requirement bag into a ProgramContext.

    Raises ConfigurationMissing when the coach config or user profile is absent.
    """
    with trace("program.requirements", metadata={"coach_id": coach_id, "program_id": program_id}, user_id=user_id):
        coach_config = profile_source.get_coach_config(user_id, coach_id)
        if not coach_config:
            raise ConfigurationMissing(f"Coach config {coach_id} not found for user {user_id}", step="requirements")
        profile = profile_source.get_user_profile(user_id)
        if not profile:
            raise ConfigurationMissing(f"User profile not found for user {user_id}", step="requirements")

        timezone = str(profile.get("timezone") or "UTC")
        goals = split_list(_pick(requirements, "training_goals", "trainingGoals", "goals"))
        equipment = split_list(_pick(requirements, "equipment_access", "equipmentAccess", "equipment"))
        duration = _pick(requirements, "program_duration", "programDuration", "duration")
        if not can_parse_duration(duration):
            logger.warning("Unrecognised program duration %r; using %s days", duration, settings.default_program_days)
        total_days = parse_duration_days(
            duration,
            default_days=settings.default_program_days,
            max_days=settings.max_program_days,
        )
        frequency = parse_training_frequency(
            _pick(requirements, "training_frequency", "trainingFrequency", "frequency"),
            default=settings.default_training_frequency,
        )
        methodology = _as_text(_pick(requirements, "methodology", "training_methodology", "programFocus"))
        category_source = methodology or coach_config.get("methodology") or coach_config.get("primary_methodology")
        resolved = resolve_category(category_source)
        if resolved.is_fallback:
            logger.info("Category %r not registered; using %s", category_source, resolved.label)

        start_value = _pick(requirements, "start_date", "startDate")
        start_date = _parse_start_date(start_value) or today_in_timezone(timezone, now)
        excerpt = _load_context_excerpt(vector_index, user_id, goals)

        context = ProgramContext(
            context_id=f"ctx_{uuid4().hex[:12]}",
            user_id=user_id,
            coach_id=coach_id,
            conversation_id=conversation_id,
            program_id=program_id,
            total_days=total_days,
            training_frequency=frequency,
            goals=tuple(goals),
            equipment=tuple(equipment),
            start_date=start_date,
            timezone=timezone,
            category=resolved.discipline,
            category_label=resolved.label,
            experience_level=_as_text(_pick(requirements, "experience_level", "experienceLevel")),
            methodology=methodology,
            session_duration=_as_text(_pick(requirements, "session_duration", "sessionDuration")),
            injury_considerations=_as_text(_pick(requirements, "injury_considerations", "injuryConsiderations")),
            coach_name=_as_text(coach_config.get("coach_name") or coach_config.get("name")),
            coach_style=_as_text(coach_config.get("coaching_style")),
            context_excerpt=excerpt,
        )
    logger.info(
        "Loaded requirements program=%s days=%s frequency=%s category=%s",
        program_id,
        total_days,
        frequency,
        resolved.label,
    )
    return context


def split_list(value: Any) -> List[str]:
    """Accept a list or a comma-separated string and return trimmed, non-empty entries."""
    if value is None:
        return []
    items: Iterable[Any] = value.split(",") if isinstance(value, str) else value
    if not isinstance(items, (list, tuple)) and not isinstance(value, str):
        items = [items]
    return [str(item).strip() for item in items if str(item).strip()]


def requirements_incomplete(requirements: Mapping[str, Any]) -> bool:
    """Neither goals nor a duration were collected."""
    goals = split_list(_pick(requirements, "training_goals", "trainingGoals", "goals"))
    duration = _pick(requirements, "program_duration", "programDuration", "duration")
    return not goals and duration in (None, "")


def _pick(bag: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        if key in bag:
            value = bag[key]
            # Collected todo items arrive as {"value": ..., "status": ...}.
            if isinstance(value, Mapping):
                value = value.get("value")
            if value not in (None, "", []):
                return value
    return None


def _as_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, (list, tuple)):
        value = ", ".join(str(item) for item in value)
    text = str(value).strip()
    return text or None


def _parse_start_date(value: Any) -> Optional[date]:
    if not value:
        return None
    try:
        return to_date(value)
    except (TypeError, ValueError):
        logger.warning("Ignoring unparseable start date %r", value)
        return None


def _load_context_excerpt(vector_index: VectorIndex, user_id: str, goals: List[str]) -> str:
    query = f"Program for: {', '.join(goals) or 'general fitness'}"
    try:
        matches = vector_index.query(
            user_id=user_id,
            text=query,
            top_k=settings.context_top_k,
            min_score=settings.context_min_score,
        )
    except Exception:  # pragma: no cover - defensive guard
        logger.exception("Historical context query failed for user %s; continuing without it", user_id)
        return ""
    contents = [match.content for match in matches if match.score >= settings.context_min_score and match.content]
    return "\n\n".join(contents)[:CONTEXT_EXCERPT_MAX_CHARS]
