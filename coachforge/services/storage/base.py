"""Storage collaborator interfaces used by the generation pipeline."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from coachforge.services.program_models import Program


@dataclass
class VectorMatch:
    content: str
    score: float
    metadata: Dict[str, Any] = field(default_factory=dict)


class DocumentStore:
    """Program metadata keyed by (owner, program_id); never holds template bodies."""

    def save_program(self, program: Program) -> None:
        raise NotImplementedError

    def get_program(self, user_id: str, program_id: str) -> Optional[Program]:
        raise NotImplementedError

    def list_programs(self, *, status: Optional[str] = None) -> List[Program]:
        raise NotImplementedError


class ObjectStore:
    """Structured blobs keyed by a reference string."""

    def put_json(self, key: str, payload: Dict[str, Any]) -> str:
        """Store `payload` and return the reference it can be read back with."""
        raise NotImplementedError

    def get_json(self, key: str) -> Dict[str, Any]:
        raise NotImplementedError


class VectorIndex:
    def upsert(self, *, user_id: str, record_id: str, text: str, metadata: Dict[str, Any]) -> None:
        raise NotImplementedError

    def query(self, *, user_id: str, text: str, top_k: int, min_score: float) -> List[VectorMatch]:
        raise NotImplementedError


class ProfileSource:
    """Coach configuration and user profile lookups."""

    def get_coach_config(self, user_id: str, coach_id: str) -> Optional[Dict[str, Any]]:
        raise NotImplementedError

    def get_user_profile(self, user_id: str) -> Optional[Dict[str, Any]]:
        raise NotImplementedError
