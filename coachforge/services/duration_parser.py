"""Turn free-form program durations ("8 weeks", "a couple of months", 30) into days."""
from __future__ import annotations

import logging
import re
from typing import Any, Optional

logger = logging.getLogger(__name__)

DEFAULT_PROGRAM_DAYS = 56
MIN_PROGRAM_DAYS = 1
MAX_PROGRAM_DAYS = 180
DAYS_PER_MONTH = 30  # calendar-month approximation

VAGUE_DURATION_TERMS = ("couple", "few", "several", "some", "fortnight")

_DIGITS_RE = re.compile(r"\d+")
_A_UNIT_RE = re.compile(r"\b(a|an)\s+(week|month|day)")
_WEEKS_RE = re.compile(r"\bweeks?\b")
_MONTHS_RE = re.compile(r"\bmonths?\b")
_DAYS_RE = re.compile(r"\bdays?\b")
_FORTNIGHT_RE = re.compile(r"\bfortnights?")
_LEADING_INT_RE = re.compile(r"^\s*[+-]?\d+")


def extract_numeric_value(text: str) -> int:
    """Digits win; otherwise map vague quantities, defaulting to 8."""
    digits = _DIGITS_RE.search(text)
    if digits:
        return int(digits.group(0))
    lowered = text.lower()
    if "couple" in lowered:
        return 2
    if "few" in lowered:
        return 3
    if "several" in lowered or "some" in lowered:
        return 4
    if _A_UNIT_RE.search(lowered):
        return 1
    return 8


def parse_program_duration(value: Any, default_days: int = DEFAULT_PROGRAM_DAYS) -> int:
    """Unclamped conversion: weeks x7, months x30, days or bare integers as-is."""
    if value is None or isinstance(value, bool):
        return default_days
    if isinstance(value, (int, float)):
        return int(value)
    if not isinstance(value, str):
        logger.warning("Invalid duration type %s; using default %s days", type(value).__name__, default_days)
        return default_days

    lowered = value.lower()
    if _FORTNIGHT_RE.search(lowered):
        return 14

    amount = extract_numeric_value(value)
    if _WEEKS_RE.search(lowered):
        return amount * 7
    if _MONTHS_RE.search(lowered):
        return amount * DAYS_PER_MONTH
    if _DAYS_RE.search(lowered):
        return amount

    leading = _LEADING_INT_RE.match(value)
    if leading:
        return int(leading.group(0))

    logger.warning("Could not parse duration %r; using default %s days", value, default_days)
    return default_days


def parse_duration_days(
    value: Any,
    *,
    default_days: int = DEFAULT_PROGRAM_DAYS,
    max_days: int = MAX_PROGRAM_DAYS,
) -> int:
    """Parse and clamp to [1, max_days]."""
    days = parse_program_duration(value, default_days)
    clamped = max(MIN_PROGRAM_DAYS, min(max_days, days))
    if clamped != days:
        logger.info("Clamped program duration %s -> %s days", days, clamped)
    return clamped


def can_parse_duration(value: Any) -> bool:
    if value is None or isinstance(value, (int, float)):
        return True
    if not isinstance(value, str):
        return False
    lowered = value.lower()
    if any(char.isdigit() for char in value):
        return True
    if any(term in lowered for term in VAGUE_DURATION_TERMS):
        return True
    return bool(_A_UNIT_RE.search(lowered))


def parse_training_frequency(value: Any, default: int = 4) -> int:
    """Days per week, clamped to [1, 7]."""
    frequency: Optional[int] = None
    if isinstance(value, bool):
        frequency = None
    elif isinstance(value, (int, float)):
        frequency = int(value)
    elif isinstance(value, str):
        digits = _DIGITS_RE.search(value)
        frequency = int(digits.group(0)) if digits else None
    if frequency is None:
        return default
    return max(1, min(7, frequency))
