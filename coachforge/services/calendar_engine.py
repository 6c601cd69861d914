"""Pure calendar arithmetic for program scheduling (no I/O).

Day numbers are 1-indexed: day 1 falls on the program start date. Paused days
shift every scheduled date forward without changing the day structure.
"""
from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone as dt_timezone
from typing import TYPE_CHECKING, Dict, Iterable, List, Optional, Sequence, Union
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

if TYPE_CHECKING:  # pragma: no cover - typing helper
    from coachforge.services.program_models import Phase, Program, WorkoutTemplate

DateLike = Union[date, datetime, str]

_FINISHED_STATUSES = {"completed", "skipped"}


def to_date(value: DateLike) -> date:
    """Coerce a date, datetime or ISO string (YYYY-MM-DD or full timestamp) to a date."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    if len(text) == 10:
        return date.fromisoformat(text)
    return datetime.fromisoformat(text.replace("Z", "+00:00")).date()


def resolve_timezone(name: Optional[str]) -> ZoneInfo:
    try:
        return ZoneInfo(name or "UTC")
    except (ZoneInfoNotFoundError, ValueError):
        return ZoneInfo("UTC")


def today_in_timezone(timezone: Optional[str] = "UTC", now: Optional[datetime] = None) -> date:
    """Return the owner's civil "today". Naive `now` values are treated as UTC."""
    moment = now or datetime.now(dt_timezone.utc)
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=dt_timezone.utc)
    return moment.astimezone(resolve_timezone(timezone)).date()


def _civil_date(value: DateLike, timezone: Optional[str]) -> date:
    if isinstance(value, datetime):
        moment = value if value.tzinfo else value.replace(tzinfo=dt_timezone.utc)
        return moment.astimezone(resolve_timezone(timezone)).date()
    return to_date(value)


def calculate_end_date(start_date: DateLike, total_days: int) -> date:
    return to_date(start_date) + timedelta(days=total_days - 1)


def calculate_scheduled_date(start_date: DateLike, day_number: int, paused_duration: int = 0) -> date:
    """Calendar date for a program day, shifted by cumulative paused days."""
    return to_date(start_date) + timedelta(days=day_number - 1 + paused_duration)


def calculate_current_day(
    start_date: DateLike,
    paused_duration: int,
    total_days: int,
    timezone: Optional[str] = "UTC",
    now: Optional[datetime] = None,
) -> int:
    """clamp(civil days since start - paused days + 1, 1, total_days) using the owner's local today."""
    days_since_start = (today_in_timezone(timezone, now) - to_date(start_date)).days
    current_day = days_since_start - paused_duration + 1
    if total_days < 1:
        return 1
    return max(1, min(total_days, current_day))


def calculate_pause_duration(
    paused_at: DateLike,
    resumed_at: DateLike,
    timezone: Optional[str] = "UTC",
) -> int:
    """Whole civil days between pause and resume in the owner's timezone, never negative."""
    return max(0, (_civil_date(resumed_at, timezone) - _civil_date(paused_at, timezone)).days)


def recalculate_workout_dates(
    templates: Iterable["WorkoutTemplate"],
    start_date: DateLike,
    paused_duration: int,
) -> List["WorkoutTemplate"]:
    """Return copies of the templates with scheduled dates recomputed; inputs are left untouched."""
    return [
        template.model_copy(
            update={
                "scheduled_date": calculate_scheduled_date(start_date, template.day_number, paused_duration)
            }
        )
        for template in templates
    ]


def is_workout_overdue(
    scheduled_date: Optional[DateLike],
    status: str,
    today: Optional[date] = None,
) -> bool:
    if status in _FINISHED_STATUSES or scheduled_date is None:
        return False
    return (today or date.today()) > to_date(scheduled_date)


def get_workouts_for_week(
    templates: Iterable["WorkoutTemplate"],
    week_start: DateLike,
) -> List["WorkoutTemplate"]:
    start = to_date(week_start)
    end = start + timedelta(days=6)
    return [
        template
        for template in templates
        if template.scheduled_date is not None and start <= to_date(template.scheduled_date) <= end
    ]


def get_upcoming_workouts(templates: Iterable["WorkoutTemplate"], count: int) -> List["WorkoutTemplate"]:
    pending = [template for template in templates if template.status == "pending"]
    pending.sort(key=lambda template: (template.day_number, template.template_id))
    return pending[: max(0, count)]


def is_program_active(
    status: str,
    start_date: DateLike,
    end_date: DateLike,
    timezone: Optional[str] = "UTC",
    now: Optional[datetime] = None,
) -> bool:
    if status != "active":
        return False
    today = today_in_timezone(timezone, now)
    return to_date(start_date) <= today <= to_date(end_date)


def get_phase_for_day(program: "Program", day_number: int) -> Optional["Phase"]:
    for phase in program.phases:
        if phase.start_day <= day_number <= phase.end_day:
            return phase
    return None


def get_days_remaining(current_day: int, total_days: int) -> int:
    return max(0, total_days - current_day + 1)


def get_progress_percentage(current_day: int, total_days: int) -> int:
    if total_days <= 0:
        return 0
    # Half-up rounding; round() would bank 12.5 down to 12.
    return min(100, int(math.floor(current_day / total_days * 100 + 0.5)))


@dataclass
class CalendarDay:
    day_number: int
    date: date
    phase_id: Optional[str]
    is_today: bool
    is_past: bool
    is_future: bool
    is_rest_day: bool
    templates: List["WorkoutTemplate"] = field(default_factory=list)

    def to_dict(self) -> Dict[str, object]:
        return {
            "day_number": self.day_number,
            "date": self.date.isoformat(),
            "phase_id": self.phase_id,
            "is_today": self.is_today,
            "is_past": self.is_past,
            "is_future": self.is_future,
            "is_rest_day": self.is_rest_day,
            "templates": [template.model_dump(mode="json") for template in self.templates],
        }


def generate_program_calendar(
    program: "Program",
    templates: Sequence["WorkoutTemplate"],
    timezone: Optional[str] = "UTC",
    now: Optional[datetime] = None,
) -> List[CalendarDay]:
    """Day-by-day calendar covering [1, total_days] with templates grouped per day."""
    today = today_in_timezone(timezone, now)
    by_day: Dict[int, List["WorkoutTemplate"]] = {}
    for template in templates:
        by_day.setdefault(template.day_number, []).append(template)

    calendar: List[CalendarDay] = []
    for day_number in range(1, program.total_days + 1):
        scheduled = calculate_scheduled_date(program.start_date, day_number, program.paused_duration)
        day_templates = by_day.get(day_number, [])
        phase = get_phase_for_day(program, day_number)
        calendar.append(
            CalendarDay(
                day_number=day_number,
                date=scheduled,
                phase_id=phase.phase_id if phase else None,
                is_today=scheduled == today,
                is_past=scheduled < today,
                is_future=scheduled > today,
                is_rest_day=all(template.is_rest for template in day_templates),
                templates=day_templates,
            )
        )
    return calendar
