"""Schemas for program generation and program lifecycle endpoints."""
from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional
from uuid import UUID

from pydantic import BaseModel, Field


class ProgramGenerateRequest(BaseModel):
    user_id: str = Field(..., min_length=1)
    coach_id: str = Field(..., min_length=1)
    conversation_id: str = Field(..., min_length=1)
    program_id: Optional[str] = None
    todo_list: Optional[Dict[str, Any]] = None
    requirements: Dict[str, Any] = Field(default_factory=dict)


class ProgramGenerateResponse(BaseModel):
    run_id: UUID
    program_id: str
    status: Literal["queued"]
    request_id: str


class GenerationRunResponse(BaseModel):
    run_id: UUID
    program_id: Optional[str]
    status: str
    reason: Optional[str] = None
    error: Optional[Dict[str, Any]] = None
    created_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    request_id: str


class ProgramResponse(BaseModel):
    program: Dict[str, Any]
    progress_percentage: int
    days_remaining: int
    current_phase_id: Optional[str] = None
    request_id: str


class CalendarResponse(BaseModel):
    program_id: str
    timezone: str
    days: List[Dict[str, Any]]
    request_id: str


class TemplateStatusRequest(BaseModel):
    status: Literal["completed", "skipped", "regenerated"]
    linked_workout_id: Optional[str] = None


class TemplateStatusResponse(BaseModel):
    program: Dict[str, Any]
    template: Dict[str, Any]
    request_id: str
