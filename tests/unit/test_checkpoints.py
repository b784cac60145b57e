"""Unit tests for checkpoint models and stores."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from agent_workflow_orchestrator.orchestrator.workflow import (
    Checkpoint,
    CheckpointError,
    FileSystemCheckpointStore,
    InMemoryCheckpointStore,
    ResumeContext,
    WorkflowDefinition,
)


def _checkpoint(
    definition: WorkflowDefinition,
    execution_id: str = "exec-1",
    state_id: str = "PLAN",
    created_at: datetime | None = None,
) -> Checkpoint:
    context = ResumeContext(
        workflow=definition,
        current_state_id=state_id,
        input="build it",
        execution_id=execution_id,
        started_at=datetime(2025, 1, 1, tzinfo=UTC),
        iteration_count=2,
        output_data={"score": 0.5, "tags": ["a", "b"]},
        working_directory="/work",
    )
    checkpoint = Checkpoint.from_resume_context(context)
    if created_at is not None:
        checkpoint = checkpoint.model_copy(update={"created_at": created_at})
    return checkpoint


def test_resume_context_survives_serialization(branching_workflow: WorkflowDefinition) -> None:
    checkpoint = _checkpoint(branching_workflow, state_id="CHECK")

    restored = checkpoint.resume_context()
    assert restored.workflow == branching_workflow
    assert restored.workflow.get_state("CHECK").conditions[0].if_ == "output.approved == true"
    assert restored.current_state_id == "CHECK"
    assert restored.iteration_count == 2
    assert restored.output_data == {"score": 0.5, "tags": ["a", "b"]}
    assert checkpoint.workflow_name == "branching"


@pytest.mark.parametrize("payload", ["", "   ", "{not json", '{"execution_id": "x"}'])
def test_unusable_payload_raises_checkpoint_error(payload: str) -> None:
    with pytest.raises(CheckpointError):
        ResumeContext.from_json(payload)


@pytest.fixture(params=["filesystem", "memory"])
def store(request: pytest.FixtureRequest, tmp_path: Path):
    if request.param == "filesystem":
        return FileSystemCheckpointStore(tmp_path / "checkpoints")
    return InMemoryCheckpointStore()


def test_store_orders_by_creation_time(store, linear_workflow: WorkflowDefinition) -> None:
    base = datetime(2025, 1, 1, tzinfo=UTC)
    later = _checkpoint(linear_workflow, state_id="CODE", created_at=base + timedelta(minutes=5))
    earlier = _checkpoint(linear_workflow, state_id="PLAN", created_at=base)

    store.save("exec-1", later)
    store.save("exec-1", earlier)

    assert [c.current_state_id for c in store.list_for_execution("exec-1")] == ["PLAN", "CODE"]
    latest = store.get_latest_for_execution("exec-1")
    assert latest is not None and latest.checkpoint_id == later.checkpoint_id
    assert store.load("exec-1") == latest
    assert store.load("exec-1", earlier.checkpoint_id) == earlier
    assert store.load("exec-1", "missing") is None
    assert store.list_executions() == ["exec-1"]


def test_store_breaks_creation_time_ties_by_creation_order(
    store, linear_workflow: WorkflowDefinition
) -> None:
    tick = datetime(2025, 1, 1, tzinfo=UTC)
    first = _checkpoint(linear_workflow, state_id="PLAN", created_at=tick)
    second = _checkpoint(linear_workflow, state_id="CODE", created_at=tick)

    store.save("exec-1", second)
    store.save("exec-1", first)

    assert [c.current_state_id for c in store.list_for_execution("exec-1")] == ["PLAN", "CODE"]
    latest = store.get_latest_for_execution("exec-1")
    assert latest is not None and latest.checkpoint_id == second.checkpoint_id


def test_store_exists_and_delete(store, linear_workflow: WorkflowDefinition) -> None:
    first = _checkpoint(linear_workflow)
    store.save("exec-1", first)

    assert store.exists(first.checkpoint_id)
    assert store.delete(first.checkpoint_id) is True
    assert store.delete(first.checkpoint_id) is False
    assert not store.exists(first.checkpoint_id)
    assert store.list_executions() == []
    assert store.get_latest_for_execution("exec-1") is None


def test_store_delete_all_for_execution(store, linear_workflow: WorkflowDefinition) -> None:
    for _ in range(3):
        store.save("exec-1", _checkpoint(linear_workflow))
    store.save("exec-2", _checkpoint(linear_workflow, execution_id="exec-2"))

    assert store.delete_all_for_execution("exec-1") == 3
    assert store.delete_all_for_execution("exec-1") == 0
    assert store.list_for_execution("exec-1") == []
    assert len(store.list_for_execution("exec-2")) == 1


def test_store_cleanup_older_than(store, linear_workflow: WorkflowDefinition) -> None:
    now = datetime.now(tz=UTC)
    store.save("exec-1", _checkpoint(linear_workflow, created_at=now - timedelta(days=3)))
    keep = _checkpoint(linear_workflow, created_at=now)
    store.save("exec-1", keep)

    assert store.cleanup_older_than(now - timedelta(days=1)) == 1
    assert [c.checkpoint_id for c in store.list_for_execution("exec-1")] == [keep.checkpoint_id]


def test_filesystem_layout(tmp_path: Path, linear_workflow: WorkflowDefinition) -> None:
    store = FileSystemCheckpointStore(tmp_path)
    checkpoint = _checkpoint(linear_workflow)

    store.save("exec-1", checkpoint)

    path = tmp_path / "exec-1" / f"{checkpoint.checkpoint_id}.json"
    assert path.is_file()
    assert path.read_text(encoding="utf-8").endswith("\n")

    # A fresh store over the same directory sees the same data.
    assert FileSystemCheckpointStore(tmp_path).get_latest_for_execution("exec-1") == checkpoint


def test_filesystem_store_skips_corrupt_files(tmp_path: Path, linear_workflow: WorkflowDefinition) -> None:
    store = FileSystemCheckpointStore(tmp_path)
    good = _checkpoint(linear_workflow)
    store.save("exec-1", good)
    (tmp_path / "exec-1" / "garbage.json").write_text("{", encoding="utf-8")

    assert [c.checkpoint_id for c in store.list_for_execution("exec-1")] == [good.checkpoint_id]


def test_filesystem_store_rejects_path_like_ids(tmp_path: Path, linear_workflow: WorkflowDefinition) -> None:
    store = FileSystemCheckpointStore(tmp_path)

    with pytest.raises(ValueError):
        store.save("../escape", _checkpoint(linear_workflow))
    with pytest.raises(ValueError):
        store.list_for_execution("")
