"""No-op vector index provider (logs only)."""
from __future__ import annotations

import logging
from typing import Any, Dict, List

from coachforge.services.storage.base import VectorIndex, VectorMatch


logger = logging.getLogger(__name__)


class NoopVectorIndex(VectorIndex):
    def upsert(self, *, user_id: str, record_id: str, text: str, metadata: Dict[str, Any]) -> None:
        logger.info(
            "Vector upsert (noop) user=%s record=%s type=%s chars=%s",
            user_id,
            record_id,
            metadata.get("record_type"),
            len(text),
        )

    def query(self, *, user_id: str, text: str, top_k: int, min_score: float) -> List[VectorMatch]:
        logger.debug("Vector query (noop) user=%s top_k=%s", user_id, top_k)
        return []
