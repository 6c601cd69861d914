"""Database utilities and models."""

from coachforge.db.base import Base
from coachforge.db import models  # noqa: F401  (imported for side effects)

__all__ = ["Base"]
