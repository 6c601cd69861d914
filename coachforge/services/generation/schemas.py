"""Response schemas sent to the generation service."""
from __future__ import annotations

import copy
from typing import Any, Dict, Type

from pydantic import BaseModel

from coachforge.services.category_fragments import ResolvedFragment
from coachforge.services.program_models import WorkoutTemplateDraft

# Keys an interactive contract would use to ask the user something back.
CLARIFICATION_FIELDS = frozenset(
    {
        "needs_clarification",
        "needsClarification",
        "clarification_questions",
        "clarificationQuestions",
        "questions_for_user",
        "questionsForUser",
    }
)


def model_schema(model: Type[BaseModel]) -> Dict[str, Any]:
    return strip_clarification_fields(model.model_json_schema(by_alias=False))


def strip_clarification_fields(schema: Dict[str, Any]) -> Dict[str, Any]:
    """Remove any clarification branch from a JSON schema, recursively."""
    cleaned = copy.deepcopy(schema)
    _strip_in_place(cleaned)
    return cleaned


def _strip_in_place(node: Any) -> None:
    if isinstance(node, dict):
        properties = node.get("properties")
        if isinstance(properties, dict):
            for key in CLARIFICATION_FIELDS.intersection(properties):
                del properties[key]
        required = node.get("required")
        if isinstance(required, list):
            node["required"] = [key for key in required if key not in CLARIFICATION_FIELDS]
        for value in node.values():
            _strip_in_place(value)
    elif isinstance(node, list):
        for item in node:
            _strip_in_place(item)


def drop_clarification_keys(data: Any) -> Any:
    if isinstance(data, dict):
        return {key: drop_clarification_keys(value) for key, value in data.items() if key not in CLARIFICATION_FIELDS}
    if isinstance(data, list):
        return [drop_clarification_keys(item) for item in data]
    return data


def compose_phase_workouts_schema(resolved: ResolvedFragment) -> Dict[str, Any]:
    """Base template schema plus the discipline fragment under `discipline_specific`."""
    template_schema = WorkoutTemplateDraft.model_json_schema(by_alias=False)
    fragment_schema = resolved.fragment.details_model.model_json_schema(by_alias=False)
    fragment_schema["description"] = resolved.fragment.guidance
    template_schema["properties"]["discipline_specific"] = fragment_schema
    schema = {
        "type": "object",
        "title": "PhaseWorkouts",
        "properties": {
            "workout_templates": {"type": "array", "items": template_schema},
            "rest_days": {
                "type": "array",
                "items": {"type": "integer"},
                "description": "Day numbers inside the phase that are intentional rest days",
            },
        },
        "required": ["workout_templates"],
    }
    return strip_clarification_fields(schema)
