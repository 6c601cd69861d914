"""Tests ensuring observability wiring is safe by default."""
from __future__ import annotations

import importlib

import pytest

from coachforge.core.context import bind_request_id
from coachforge.core.errors import GenerationTimeout
from coachforge.observability import tracing


class _DummyTrace:
    def __init__(self, name, metadata=None):
        self.name = name
        self.metadata = metadata or {}
        self.error_info = None
        self.ended = False

    def update(self, metadata=None, error_info=None, **kwargs):
        if metadata:
            self.metadata = metadata
        if error_info:
            self.error_info = error_info

    def end(self):
        self.ended = True


class _DummyOpik:
    def __init__(self):
        self.traces = []

    def trace(self, name, metadata=None, **kwargs):
        trace = _DummyTrace(name, metadata)
        self.traces.append(trace)
        return trace


def test_app_import_succeeds_when_opik_is_disabled(monkeypatch) -> None:
    monkeypatch.setenv("OPIK_ENABLED", "false")
    monkeypatch.delenv("OPIK_API_KEY", raising=False)

    import coachforge.main as main_module

    reloaded_app = importlib.reload(main_module)

    assert hasattr(reloaded_app, "app")


def test_trace_is_noop_without_client(monkeypatch) -> None:
    monkeypatch.setattr(tracing, "get_opik_client", lambda: None)

    with tracing.trace("program.pipeline", metadata={"program_id": "program-1"}) as opik_trace:
        assert opik_trace is None


def test_trace_tags_run_id_and_error_type(monkeypatch) -> None:
    client = _DummyOpik()
    monkeypatch.setattr(tracing, "get_opik_client", lambda: client)

    with bind_request_id("run-123"):
        with pytest.raises(GenerationTimeout):
            with tracing.trace("generation.phase_structure", metadata={"step": "phase_structure"}, user_id="user-1"):
                raise GenerationTimeout("too slow", step="phase_structure")

    recorded = client.traces[0]
    assert recorded.metadata["request_id"] == "run-123"
    assert recorded.metadata["user_id"] == "user-1"
    assert recorded.error_info["error_type"] == "generation_timeout"
    assert recorded.ended is True
