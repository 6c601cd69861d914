"""User profile ORM model."""
from __future__ import annotations

from sqlalchemy import Column, DateTime, String, Text, func, text as sa_text

from coachforge.db.base import Base
from coachforge.db.types import JSONBCompat


class UserProfile(Base):
    __tablename__ = "user_profiles"

    user_id = Column(Text, primary_key=True)
    timezone = Column(String(length=64), nullable=False, server_default=sa_text("'UTC'"))
    profile = Column(JSONBCompat, nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
