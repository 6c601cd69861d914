"""Coach configuration ORM model."""
from __future__ import annotations

from uuid import uuid4

from sqlalchemy import Column, DateTime, Text, UniqueConstraint, func
from sqlalchemy.dialects.postgresql import UUID

from coachforge.db.base import Base
from coachforge.db.types import JSONBCompat


class CoachConfig(Base):
    __tablename__ = "coach_configs"
    __table_args__ = (UniqueConstraint("user_id", "coach_id", name="uq_coach_configs_user_coach"),)

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    user_id = Column(Text, nullable=False)
    coach_id = Column(Text, nullable=False)
    config = Column(JSONBCompat, nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
