"""Program metadata ORM model (document store row)."""
from __future__ import annotations

from uuid import uuid4

from sqlalchemy import Column, Date, DateTime, Index, Integer, String, Text, UniqueConstraint, func, text as sa_text
from sqlalchemy.dialects.postgresql import UUID

from coachforge.db.base import Base
from coachforge.db.types import JSONBCompat


class ProgramRecord(Base):
    __tablename__ = "programs"
    __table_args__ = (
        UniqueConstraint("user_id", "program_id", name="uq_programs_user_program"),
        Index("ix_programs_user_id", "user_id"),
        Index("ix_programs_status", "status"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    user_id = Column(Text, nullable=False)
    program_id = Column(Text, nullable=False)
    coach_id = Column(Text, nullable=True)
    name = Column(Text, nullable=False)
    status = Column(String(length=50), nullable=False, server_default=sa_text("'active'"))
    start_date = Column(Date, nullable=False)
    total_days = Column(Integer, nullable=False)
    current_day = Column(Integer, nullable=False, server_default=sa_text("1"))
    # Reference to the full workout-template blob in the object store; templates never live here.
    detail_key = Column(Text, nullable=False)
    payload = Column(JSONBCompat, nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )
