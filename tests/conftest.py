"""Test configuration and fixtures."""

from __future__ import annotations

import asyncio
from collections.abc import Mapping
from pathlib import Path

import pytest

from agent_workflow_orchestrator.orchestrator.workflow import (
    AgentExecutionResult,
    WorkflowDefinition,
    load_workflow_from_string,
)


class RecordingExecutor:
    """Executor double that records calls and returns canned output data.

    `outputs[name]` is the data returned for a step, `errors[name]` is raised
    instead, and `delays[name]` seconds are slept before answering.
    """

    def __init__(
        self,
        outputs: Mapping[str, dict[str, object]] | None = None,
        *,
        errors: Mapping[str, Exception] | None = None,
        delays: Mapping[str, float] | None = None,
    ) -> None:
        self.outputs = dict(outputs or {})
        self.errors = dict(errors or {})
        self.delays = dict(delays or {})
        self.calls: list[str] = []
        self.contexts: list[dict[str, object]] = []

    async def execute(
        self, name: str, input: str, context_data: Mapping[str, object]
    ) -> AgentExecutionResult:
        self.calls.append(name)
        self.contexts.append(dict(context_data))
        if name in self.delays:
            await asyncio.sleep(self.delays[name])
        if name in self.errors:
            raise self.errors[name]
        return AgentExecutionResult(data=dict(self.outputs.get(name, {})))


@pytest.fixture
def executor() -> RecordingExecutor:
    return RecordingExecutor()


@pytest.fixture
def workflow_dir(tmp_path: Path) -> Path:
    """Provide a temporary directory for workflow documents."""
    directory = tmp_path / "workflows"
    directory.mkdir()
    return directory


LINEAR_WORKFLOW = """
name: linear
agents:
  - ref: agents/planner
  - ref: agents/coder
states:
  - id: START
    type: start
    next: PLAN
  - id: PLAN
    type: agent
    executor: planner
    next: CODE
  - id: CODE
    type: agent
    executor: coder
    next: DONE
  - id: DONE
    type: terminal
"""


BRANCHING_WORKFLOW = """
name: branching
agents:
  - ref: agents/checker
states:
  - id: START
    type: start
    next: CHECK
  - id: CHECK
    type: agent
    executor: checker
    conditions:
      - if: output.approved == true
        then: SUCCESS
      - else: true
        then: FAILURE
  - id: SUCCESS
    type: terminal
  - id: FAILURE
    type: terminal
"""


@pytest.fixture
def linear_workflow() -> WorkflowDefinition:
    return load_workflow_from_string(LINEAR_WORKFLOW)


@pytest.fixture
def branching_workflow() -> WorkflowDefinition:
    return load_workflow_from_string(BRANCHING_WORKFLOW)
