"""Runtime snapshots of a workflow execution.

A `WorkflowRuntimeState` is never mutated: every transition produces a new
snapshot via `evolve`, so a snapshot handed to a caller stays stable.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


def utc_now() -> datetime:
    return datetime.now(tz=UTC)


class ExecutionStatus(str, Enum):
    RUNNING = "running"
    WAITING_FOR_TRIGGER = "waiting_for_trigger"
    WAITING_FOR_APPROVAL = "waiting_for_approval"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_finished(self) -> bool:
        return self in (ExecutionStatus.COMPLETED, ExecutionStatus.FAILED)


class WorkflowRuntimeState(BaseModel):
    model_config = ConfigDict(frozen=True)

    execution_id: str
    workflow_name: str
    current_state_id: str
    status: ExecutionStatus = ExecutionStatus.RUNNING
    input: str = ""
    started_at: datetime = Field(default_factory=utc_now)
    last_updated_at: datetime = Field(default_factory=utc_now)
    completed_at: datetime | None = None
    error_message: str | None = None
    iteration_count: int = 0
    output_data: dict[str, Any] = Field(default_factory=dict)

    def evolve(self, **updates: Any) -> WorkflowRuntimeState:
        """Return a copy with `updates` applied and `last_updated_at` refreshed."""

        return self.model_copy(update={"last_updated_at": utc_now(), **updates})

    def with_output(self, data: dict[str, Any], **updates: Any) -> WorkflowRuntimeState:
        """Return a copy with `data` merged over the current output data."""

        return self.evolve(output_data={**self.output_data, **data}, **updates)

    def failed(self, message: str) -> WorkflowRuntimeState:
        return self.evolve(status=ExecutionStatus.FAILED, error_message=message)


@dataclass(frozen=True, slots=True)
class ApprovalDecision:
    approved: bool
    feedback: str | None = None


@dataclass(frozen=True, slots=True)
class ExecutionContext:
    """Host-supplied context for one execution."""

    working_directory: Path = field(default_factory=Path.cwd)
    metadata: dict[str, object] = field(default_factory=dict)
    parent_execution_id: str | None = None


@dataclass(frozen=True, slots=True)
class ExecutionSummary:
    execution_id: str
    workflow_name: str
    current_state: str
    status: ExecutionStatus
    started_at: datetime
    last_updated_at: datetime

    @staticmethod
    def from_state(state: WorkflowRuntimeState) -> ExecutionSummary:
        return ExecutionSummary(
            execution_id=state.execution_id,
            workflow_name=state.workflow_name,
            current_state=state.current_state_id,
            status=state.status,
            started_at=state.started_at,
            last_updated_at=state.last_updated_at,
        )
