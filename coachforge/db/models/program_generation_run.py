"""Audit record for background program generation runs."""
from __future__ import annotations

from uuid import uuid4

from sqlalchemy import Column, DateTime, Index, String, Text, func, text as sa_text
from sqlalchemy.dialects.postgresql import UUID

from coachforge.db.base import Base
from coachforge.db.types import JSONBCompat


class ProgramGenerationRun(Base):
    __tablename__ = "program_generation_runs"
    __table_args__ = (Index("ix_program_generation_runs_user_id", "user_id"),)

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    user_id = Column(Text, nullable=True)
    coach_id = Column(Text, nullable=True)
    conversation_id = Column(Text, nullable=True)
    program_id = Column(Text, nullable=True)
    status = Column(String(length=50), nullable=False, server_default=sa_text("'queued'"))
    reason = Column(Text, nullable=True)
    error = Column(JSONBCompat, nullable=True)
    result = Column(JSONBCompat, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    finished_at = Column(DateTime(timezone=True), nullable=True)
