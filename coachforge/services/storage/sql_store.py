"""SQLAlchemy-backed document store and profile source."""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from coachforge.db.models.coach_config import CoachConfig
from coachforge.db.models.program import ProgramRecord
from coachforge.db.models.user_profile import UserProfile
from coachforge.services.program_models import Program
from coachforge.services.storage.base import DocumentStore, ProfileSource


logger = logging.getLogger(__name__)


class SqlDocumentStore(DocumentStore):
    def __init__(self, db: Session) -> None:
        self.db = db

    def save_program(self, program: Program) -> None:
        record = (
            self.db.query(ProgramRecord)
            .filter(ProgramRecord.user_id == program.user_id, ProgramRecord.program_id == program.program_id)
            .one_or_none()
        )
        if record is None:
            record = ProgramRecord(user_id=program.user_id, program_id=program.program_id)
        record.coach_id = program.coach_id or None
        record.name = program.name
        record.status = program.status
        record.start_date = program.start_date
        record.total_days = program.total_days
        record.current_day = program.current_day
        record.detail_key = program.detail_key
        record.payload = program.model_dump(mode="json")
        self.db.add(record)
        try:
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        logger.debug("Saved program %s for user %s", program.program_id, program.user_id)

    def get_program(self, user_id: str, program_id: str) -> Optional[Program]:
        record = (
            self.db.query(ProgramRecord)
            .filter(ProgramRecord.user_id == user_id, ProgramRecord.program_id == program_id)
            .one_or_none()
        )
        return Program.model_validate(record.payload) if record else None

    def list_programs(self, *, status: Optional[str] = None) -> List[Program]:
        query = self.db.query(ProgramRecord)
        if status:
            query = query.filter(ProgramRecord.status == status)
        return [Program.model_validate(record.payload) for record in query.order_by(ProgramRecord.created_at).all()]


class SqlProfileSource(ProfileSource):
    def __init__(self, db: Session) -> None:
        self.db = db

    def get_coach_config(self, user_id: str, coach_id: str) -> Optional[Dict[str, Any]]:
        row = (
            self.db.query(CoachConfig)
            .filter(CoachConfig.user_id == user_id, CoachConfig.coach_id == coach_id)
            .one_or_none()
        )
        if row is None:
            return None
        return {"coach_id": row.coach_id, **(row.config or {})}

    def get_user_profile(self, user_id: str) -> Optional[Dict[str, Any]]:
        row = self.db.get(UserProfile, user_id)
        if row is None:
            return None
        return {"user_id": row.user_id, "timezone": row.timezone or "UTC", **(row.profile or {})}
