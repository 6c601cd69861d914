from __future__ import annotations

from datetime import date, timedelta

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from coachforge.core.config import settings
from coachforge.db.deps import get_db
from coachforge.db.models.program import ProgramRecord
from coachforge.db.models.user_profile import UserProfile
from coachforge.main import app
from coachforge.services.program_committer import prepare_for_commit
from coachforge.services.storage.sql_store import SqlDocumentStore
from tests.fakes import build_draft


def _session_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    TestingSessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)
    UserProfile.__table__.create(bind=engine)
    ProgramRecord.__table__.create(bind=engine)
    return TestingSessionLocal


def _seed_program(session_factory, started_days_ago: int) -> None:
    program = prepare_for_commit(build_draft(), "summary").program
    program.start_date = date.today() - timedelta(days=started_days_ago)
    session = session_factory()
    try:
        SqlDocumentStore(session).save_program(program)
    finally:
        session.close()


@pytest.fixture()
def client(monkeypatch):
    TestingSessionLocal = _session_factory()

    def override_get_db():
        db = TestingSessionLocal()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    monkeypatch.setattr(settings, "debug", True)
    with TestClient(app) as test_client:
        yield test_client, TestingSessionLocal
    app.dependency_overrides.clear()


def test_jobs_config_and_run_now(client):
    test_client, session_factory = client
    _seed_program(session_factory, started_days_ago=9)

    resp = test_client.get("/jobs")
    assert resp.status_code == 200
    assert "scheduler_enabled" in resp.json()
    assert resp.json()["schedule"]["progress_sync_time"] == "03:00"

    run_resp = test_client.post("/jobs/run-now", json={"job": "progress_sync"})
    assert run_resp.status_code == 200
    data = run_resp.json()
    assert data["job"] == "progress_sync"
    assert data["programs_processed"] == 1
    assert data["programs_updated"] == 1
    assert data["request_id"]

    session = session_factory()
    try:
        stored = SqlDocumentStore(session).get_program("user-1", "program-1")
    finally:
        session.close()
    assert stored.current_day > 1


def test_run_now_filters_by_user(client):
    test_client, session_factory = client
    _seed_program(session_factory, started_days_ago=9)

    data = test_client.post("/jobs/run-now", json={"job": "progress_sync", "user_id": "someone-else"}).json()

    assert data["programs_processed"] == 0


def test_run_now_rejects_unknown_job(client):
    test_client, _ = client

    assert test_client.post("/jobs/run-now", json={"job": "weekly_plan"}).status_code == 422


def test_jobs_run_now_forbidden_in_prod(monkeypatch):
    TestingSessionLocal = _session_factory()

    def override_get_db():
        db = TestingSessionLocal()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    monkeypatch.setattr(settings, "debug", False)
    with TestClient(app) as test_client:
        resp = test_client.post("/jobs/run-now", json={"job": "progress_sync"})
        assert resp.status_code == 403
    app.dependency_overrides.clear()
