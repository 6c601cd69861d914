"""ORM models exposed for metadata discovery."""
from coachforge.db.models.coach_config import CoachConfig
from coachforge.db.models.program import ProgramRecord
from coachforge.db.models.program_generation_run import ProgramGenerationRun
from coachforge.db.models.user_profile import UserProfile

__all__ = [
    "CoachConfig",
    "ProgramGenerationRun",
    "ProgramRecord",
    "UserProfile",
]
