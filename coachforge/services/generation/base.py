"""Generation service interface."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Union


@dataclass
class GenerationRequest:
    step: str
    system_prompt: str
    user_prompt: str
    schema: Optional[Dict[str, Any]] = None
    schema_name: str = "response"
    metadata: Dict[str, Any] = field(default_factory=dict)


class GenerationService:
    """Base interface for text generation providers.

    Providers return either already-structured data or raw text; callers never
    trust either to match the schema and always go through `generate_structured`.
    """

    async def generate(self, request: GenerationRequest) -> Union[str, Dict[str, Any]]:
        raise NotImplementedError
