"""Schemas for job operations endpoints."""
from __future__ import annotations

from typing import Literal, Optional

from pydantic import BaseModel


class JobRunRequest(BaseModel):
    job: Literal["progress_sync"] = "progress_sync"
    user_id: Optional[str] = None


class JobRunResponse(BaseModel):
    job: str
    programs_processed: int
    programs_updated: int
    request_id: str
