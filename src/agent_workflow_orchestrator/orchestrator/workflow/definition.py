"""Workflow document model.

A definition is pure data. It can be constructed in an invalid shape (duplicate
ids, dangling transitions); `validation.validate_workflow` reports those before
anything runs.
"""

from __future__ import annotations

from datetime import timedelta
from enum import Enum
from pathlib import PurePath

from pydantic import BaseModel, ConfigDict, Field

DEFAULT_CHECKPOINT_DIRECTORY = ".orchestrator/checkpoints"


class StateType(str, Enum):
    START = "start"
    AGENT = "agent"
    PARALLEL = "parallel"
    HUMAN_GATE = "human_gate"
    ESCALATION = "escalation"
    TERMINAL = "terminal"


class TriggerType(str, Enum):
    FILE_EXISTS = "file_exists"
    DIRECTORY_NOT_EMPTY = "directory_not_empty"
    IMMEDIATE = "immediate"
    # Reserved: declared in documents but no evaluator ships for it.
    EXPRESSION = "expression"


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")


class AgentReference(_Frozen):
    ref: str
    alias: str | None = None

    @property
    def name(self) -> str:
        """Name a state's `executor` is expected to use for this agent."""

        return self.alias or PurePath(self.ref).name


class TriggerDefinition(_Frozen):
    type: TriggerType = TriggerType.IMMEDIATE
    path: str | None = None
    expression: str | None = None


class ConditionalTransition(_Frozen):
    if_: str | None = Field(default=None, alias="if")
    then: str
    is_default: bool = False


class HumanGateSettings(_Frozen):
    approval_mode: str = "always_require"
    timeout: timedelta = timedelta(hours=24)
    on_approve: str | None = None
    on_reject: str | None = None
    notify_email: str | None = None


class WorkflowSettings(_Frozen):
    default_timeout: timedelta = timedelta(minutes=30)
    default_max_iterations: int = 5
    enable_checkpointing: bool = True
    checkpoint_directory: str = DEFAULT_CHECKPOINT_DIRECTORY


class StateDefinition(_Frozen):
    id: str
    type: StateType = StateType.AGENT
    executor: str | None = None
    executors: list[str] = Field(default_factory=list)
    trigger: TriggerDefinition | None = None
    next: str | None = None
    conditions: list[ConditionalTransition] = Field(default_factory=list)
    human_gate: HumanGateSettings | None = None
    max_iterations: int | None = None
    timeout: timedelta | None = None


class WorkflowDefinition(_Frozen):
    name: str
    version: str = "1.0"
    description: str | None = None
    agents: list[AgentReference] = Field(default_factory=list)
    states: list[StateDefinition] = Field(default_factory=list)
    settings: WorkflowSettings = Field(default_factory=WorkflowSettings)

    def get_state(self, state_id: str) -> StateDefinition | None:
        for state in self.states:
            if state.id == state_id:
                return state
        return None

    def state_ids(self) -> set[str]:
        return {state.id for state in self.states}

    def start_state(self) -> StateDefinition | None:
        """Return the first `start` state, falling back to the first declared state."""

        for state in self.states:
            if state.type is StateType.START:
                return state
        return self.states[0] if self.states else None

    def is_terminal(self, state_id: str) -> bool:
        state = self.get_state(state_id)
        return state is not None and state.type is StateType.TERMINAL

    def agent_names(self) -> set[str]:
        return {agent.name for agent in self.agents}
