from __future__ import annotations

import dataclasses
from datetime import date, datetime, timezone

import pytest

from coachforge.core.errors import ConfigurationMissing
from coachforge.services.requirements_loader import load_requirements, requirements_incomplete, split_list
from coachforge.services.storage.base import VectorMatch
from tests.fakes import REQUIREMENTS_42, MemoryProfileSource, MemoryVectorIndex, default_profile_source


def _load(requirements, profile_source=None, vector_index=None, now=None):
    return load_requirements(
        user_id="user-1",
        coach_id="coach-1",
        conversation_id="conv-1",
        program_id="program-1",
        requirements=requirements,
        profile_source=profile_source or default_profile_source(),
        vector_index=vector_index or MemoryVectorIndex(),
        now=now,
    )


def test_load_requirements_builds_frozen_context() -> None:
    vector_index = MemoryVectorIndex(
        matches=[
            VectorMatch(content="Completed a 5k in 24 minutes", score=0.92),
            VectorMatch(content="Unrelated chatter", score=0.4),
        ]
    )

    context = _load(REQUIREMENTS_42, vector_index=vector_index)

    assert context.total_days == 42
    assert context.training_frequency == 4
    assert context.goals == ("Improve conditioning", "Build strength")
    assert context.equipment == ("barbell", "rower", "wall ball")
    assert context.start_date == date(2026, 1, 5)
    assert context.category == "crossfit"
    assert context.category_label == "crossfit"
    assert context.coach_name == "Coach Riley"
    assert context.context_excerpt == "Completed a 5k in 24 minutes"
    assert vector_index.queries == ["Program for: Improve conditioning, Build strength"]
    with pytest.raises(dataclasses.FrozenInstanceError):
        context.total_days = 10  # type: ignore[misc]


def test_prompt_summary_leaves_out_history() -> None:
    vector_index = MemoryVectorIndex(matches=[VectorMatch(content="Old injury notes", score=0.95)])

    summary = _load(REQUIREMENTS_42, vector_index=vector_index).prompt_summary()

    assert "Old injury notes" not in str(summary)
    assert summary["discipline"] == "crossfit"


def test_defaults_and_fallback_category() -> None:
    now = datetime(2026, 3, 1, 23, 30, tzinfo=timezone.utc)
    profiles = MemoryProfileSource(
        coach_config={"methodology": "underwater basket weaving"},
        profile={"timezone": "Asia/Tokyo"},
    )

    context = _load({"goals": "get fitter", "frequency": "12"}, profile_source=profiles, now=now)

    assert context.total_days == 56
    assert context.training_frequency == 7
    assert context.category_label == "crossfit_fallback"
    assert context.start_date == date(2026, 3, 2)


def test_methodology_requirement_overrides_coach_config() -> None:
    context = _load({**REQUIREMENTS_42, "methodology": "Powerlifting"})

    assert context.category == "powerlifting"


@pytest.mark.parametrize(
    "profiles",
    [
        MemoryProfileSource(coach_config=None, profile={"timezone": "UTC"}),
        MemoryProfileSource(coach_config={"methodology": "running"}, profile=None),
    ],
)
def test_missing_configuration_raises(profiles) -> None:
    with pytest.raises(ConfigurationMissing) as excinfo:
        _load(REQUIREMENTS_42, profile_source=profiles)

    assert excinfo.value.step == "requirements"


def test_requirements_incomplete_and_split_list() -> None:
    assert requirements_incomplete({})
    assert requirements_incomplete({"trainingGoals": {"value": "", "status": "pending"}})
    assert not requirements_incomplete({"programDuration": "8 weeks"})
    assert not requirements_incomplete({"goals": ["strength"]})
    assert split_list(" a, b ,,c ") == ["a", "b", "c"]
    assert split_list(["x", " ", "y"]) == ["x", "y"]
    assert split_list(None) == []


def test_unrecognised_duration_defaults_with_a_warning(caplog) -> None:
    with caplog.at_level("WARNING", logger="coachforge.services.requirements_loader"):
        context = _load({**REQUIREMENTS_42, "programDuration": {"value": "until the season starts", "status": "complete"}})

    assert context.total_days == 56
    assert "Unrecognised program duration" in caplog.text
