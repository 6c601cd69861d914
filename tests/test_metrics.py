"""Tests for metrics helpers."""
from __future__ import annotations

from typing import Any, Dict

import pytest

from coachforge.observability import metrics


class _DummyTrace:
    def __init__(self, name: str, metadata: Dict[str, Any]):
        self.name = name
        self.metadata = metadata
        self.ended = False

    def end(self) -> None:
        self.ended = True


class _DummyClient:
    def __init__(self):
        self.traces: list[_DummyTrace] = []

    def trace(self, name: str, metadata: Dict[str, Any] | None = None):
        trace = _DummyTrace(name, metadata or {})
        self.traces.append(trace)
        return trace


def test_log_metric_closes_trace(monkeypatch) -> None:
    dummy_client = _DummyClient()
    monkeypatch.setattr(metrics, "get_opik_client", lambda: dummy_client)

    metrics.log_metric("program.prune.days_removed", 12, metadata={"program_id": "program-1"})

    assert dummy_client.traces, "Metric call should record a trace"
    assert dummy_client.traces[0].name == "metric:program.prune.days_removed"
    assert dummy_client.traces[0].metadata["value"] == 12
    assert dummy_client.traces[0].metadata["program_id"] == "program-1"
    assert dummy_client.traces[0].ended is True


def test_timed_records_latency_even_on_error(monkeypatch) -> None:
    dummy_client = _DummyClient()
    monkeypatch.setattr(metrics, "get_opik_client", lambda: dummy_client)

    with pytest.raises(RuntimeError):
        with metrics.timed("program.commit", metadata={"program_id": "program-1"}):
            raise RuntimeError("blob write failed")

    assert dummy_client.traces[0].name == "metric:program.commit.latency_ms"
    assert dummy_client.traces[0].metadata["value"] >= 0


def test_log_metric_is_noop_without_client(monkeypatch) -> None:
    monkeypatch.setattr(metrics, "get_opik_client", lambda: None)

    metrics.log_metric("program.committed", 1)
