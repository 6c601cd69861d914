"""FastAPI database dependencies."""
from __future__ import annotations

from typing import Callable, Iterator

from sqlalchemy.orm import Session

from coachforge.db.session import SessionLocal


def get_db() -> Iterator[Session]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_session_factory() -> Callable[[], Session]:
    """Session factory for work that outlives the request, such as background generation runs."""
    return SessionLocal
