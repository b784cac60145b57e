"""Declarative workflow state machines.

This package provides:
- A document model loaded from YAML, plus structural validation
- Transition condition expressions
- Trigger evaluators (readiness checks that never perform work)
- An async execution engine with human gates, fan-out and checkpoint/resume
- A registry of in-flight executions
"""

from .checkpoints import (
    Checkpoint,
    CheckpointStore,
    FileSystemCheckpointStore,
    InMemoryCheckpointStore,
    ResumeContext,
)
from .definition import (
    AgentReference,
    ConditionalTransition,
    HumanGateSettings,
    StateDefinition,
    StateType,
    TriggerDefinition,
    TriggerType,
    WorkflowDefinition,
    WorkflowSettings,
)
from .engine import WorkflowEngine, determine_next_state
from .errors import (
    CheckpointError,
    ExecutionCancelledError,
    ExecutionNotFoundError,
    ExecutorNotFoundError,
    InvalidExecutionStateError,
    OrchestratorError,
    TemplateNotFoundError,
    TemplateResolutionError,
    TriggerNotSupportedError,
    WorkflowParseError,
    WorkflowValidationError,
)
from .executors import AgentExecutionResult, AgentExecutor, ExecutorRegistry
from .expressions import evaluate_expression
from .loader import (
    load_workflow_from_file,
    load_workflow_from_string,
    load_workflows_from_directory,
    parse_duration,
)
from .registry import ExecutionRegistry
from .runtime import (
    ApprovalDecision,
    ExecutionContext,
    ExecutionStatus,
    ExecutionSummary,
    WorkflowRuntimeState,
)
from .templates import WorkflowTemplateResolver
from .triggers import TriggerEvaluationContext, TriggerEvaluator, TriggerEvaluatorRegistry
from .validation import ValidationIssue, ValidationReport, validate_workflow

__all__ = [
    "AgentExecutionResult",
    "AgentExecutor",
    "AgentReference",
    "ApprovalDecision",
    "Checkpoint",
    "CheckpointError",
    "CheckpointStore",
    "ConditionalTransition",
    "ExecutionCancelledError",
    "ExecutionContext",
    "ExecutionNotFoundError",
    "ExecutionRegistry",
    "ExecutionStatus",
    "ExecutionSummary",
    "ExecutorNotFoundError",
    "ExecutorRegistry",
    "FileSystemCheckpointStore",
    "HumanGateSettings",
    "InMemoryCheckpointStore",
    "InvalidExecutionStateError",
    "OrchestratorError",
    "ResumeContext",
    "StateDefinition",
    "StateType",
    "TemplateNotFoundError",
    "TemplateResolutionError",
    "TriggerDefinition",
    "TriggerEvaluationContext",
    "TriggerEvaluator",
    "TriggerEvaluatorRegistry",
    "TriggerNotSupportedError",
    "TriggerType",
    "ValidationIssue",
    "ValidationReport",
    "WorkflowDefinition",
    "WorkflowEngine",
    "WorkflowParseError",
    "WorkflowRuntimeState",
    "WorkflowSettings",
    "WorkflowTemplateResolver",
    "WorkflowValidationError",
    "determine_next_state",
    "evaluate_expression",
    "load_workflow_from_file",
    "load_workflow_from_string",
    "load_workflows_from_directory",
    "parse_duration",
    "validate_workflow",
]
