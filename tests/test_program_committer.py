from __future__ import annotations

from datetime import date, datetime, timezone

import pytest

from coachforge.services.program_committer import allocate_detail_key, commit_program, prepare_for_commit
from tests.fakes import MemoryDocumentStore, MemoryObjectStore, MemoryVectorIndex, build_context, build_draft

DETAIL_KEY = "programs/user-1/program-1_1767571200000.json"


def _commit(object_store=None, vector_index=None, debug_payload=None):
    document_store = MemoryDocumentStore()
    object_store = object_store or MemoryObjectStore()
    vector_index = vector_index or MemoryVectorIndex()
    result = commit_program(
        build_draft(),
        build_context(),
        "Six weeks of engine work.",
        document_store=document_store,
        object_store=object_store,
        vector_index=vector_index,
        generation_metadata={"category": "crossfit"},
        debug_payload=debug_payload,
    )
    return result, document_store, object_store, vector_index


def test_allocate_detail_key() -> None:
    now = datetime(2026, 1, 5, tzinfo=timezone.utc)

    assert allocate_detail_key("user-1", "program-1", now) == DETAIL_KEY


def test_prepare_for_commit_fills_defaults() -> None:
    draft = build_draft()
    draft.program.current_day = 9
    draft.program.end_date = None

    prepared = prepare_for_commit(draft, "summary text")

    program = prepared.program
    assert program.status == "active"
    assert program.current_day == 1
    assert program.end_date == date(2026, 2, 15)
    assert program.total_workouts == 24
    assert program.summary == "summary text"
    assert prepared.templates[0].scheduled_date == date(2026, 1, 5)
    assert prepared.templates[-1].scheduled_date == date(2026, 2, 13)
    assert draft.program.current_day == 9
    assert draft.templates[0].scheduled_date is None


def test_commit_writes_blob_document_vector_and_snapshot() -> None:
    result, documents, objects, vectors = _commit(debug_payload={"validation": {"is_valid": True}})

    assert result.detail_key == DETAIL_KEY
    blob = objects.objects[DETAIL_KEY]
    assert blob["program_id"] == "program-1"
    assert len(blob["workout_templates"]) == 24
    assert blob["generation_metadata"] == {"category": "crossfit"}
    assert blob["program_context"]["total_days"] == 42
    stored = documents.get_program("user-1", "program-1")
    assert stored.detail_key == DETAIL_KEY
    assert stored.summary == "Six weeks of engine work."
    assert vectors.upserts[0]["record_id"] == "program_summary_program-1"
    assert vectors.upserts[0]["metadata"]["phase_names"] == ["Block 1", "Block 2", "Block 3"]
    assert result.vector_indexed is True
    assert result.snapshot_key == "debug/programs/user-1/program-1_1767571200000.json"
    assert objects.objects[result.snapshot_key] == {"validation": {"is_valid": True}}
    assert result.side_effect_failures == []


def test_vector_and_snapshot_failures_are_not_fatal() -> None:
    result, documents, objects, _ = _commit(
        object_store=MemoryObjectStore(fail_prefix="debug/"),
        vector_index=MemoryVectorIndex(fail_upsert=True),
        debug_payload={"validation": {}},
    )

    assert documents.get_program("user-1", "program-1") is not None
    assert DETAIL_KEY in objects.objects
    assert result.vector_indexed is False
    assert result.snapshot_key is None
    assert [failure["error_type"] for failure in result.side_effect_failures] == [
        "non_critical_side_effect_failure",
        "non_critical_side_effect_failure",
    ]


def test_blob_failure_prevents_document_write() -> None:
    documents = MemoryDocumentStore()

    with pytest.raises(OSError):
        commit_program(
            build_draft(),
            build_context(),
            "summary",
            document_store=documents,
            object_store=MemoryObjectStore(fail_prefix="programs/"),
            vector_index=MemoryVectorIndex(),
        )

    assert documents.saves == 0
