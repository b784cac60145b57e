"""Exception types raised by the workflow layer.

Failures that happen *inside* an execution (executor errors, missing states,
approval timeouts) never surface as exceptions: the engine records them on a
failed snapshot. The exceptions below are reserved for problems the caller has
to act on before or around an execution.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .validation import ValidationReport


class OrchestratorError(Exception):
    """Base class for all orchestrator errors."""


class WorkflowParseError(OrchestratorError):
    """A workflow document could not be parsed into a definition."""

    def __init__(
        self,
        message: str,
        *,
        file_path: str | None = None,
        line: int | None = None,
        column: int | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.file_path = file_path
        self.line = line
        self.column = column

    def __str__(self) -> str:
        location = f" in '{self.file_path}'" if self.file_path else ""
        if self.line is not None:
            location += f" at line {self.line}"
            if self.column is not None:
                location += f", column {self.column}"
        return f"{self.message}{location}"


class WorkflowValidationError(OrchestratorError):
    """A definition failed validation and cannot be executed."""

    def __init__(self, workflow_name: str, report: ValidationReport) -> None:
        messages = ", ".join(issue.message for issue in report.errors)
        super().__init__(f"Invalid workflow '{workflow_name}': {messages}")
        self.workflow_name = workflow_name
        self.report = report


class ExecutionNotFoundError(OrchestratorError):
    """No active execution is registered under the given id."""

    def __init__(self, execution_id: str) -> None:
        super().__init__(f"Execution '{execution_id}' not found")
        self.execution_id = execution_id


class InvalidExecutionStateError(OrchestratorError):
    """The execution exists but is not in a state that allows the operation."""

    def __init__(self, execution_id: str, current_state_id: str, message: str) -> None:
        super().__init__(message)
        self.execution_id = execution_id
        self.current_state_id = current_state_id


class ExecutionCancelledError(OrchestratorError):
    """Raised from an execution stream once cancellation takes effect."""

    def __init__(self, execution_id: str) -> None:
        super().__init__(f"Execution '{execution_id}' was cancelled")
        self.execution_id = execution_id


class CheckpointError(OrchestratorError):
    """A checkpoint is missing or cannot be used to resume an execution."""


class ExecutorNotFoundError(OrchestratorError):
    """No step executor is registered under the requested name."""

    def __init__(self, name: str) -> None:
        super().__init__(f"Executor '{name}' is not registered")
        self.name = name


class TriggerNotSupportedError(OrchestratorError, NotImplementedError):
    """No evaluator is registered for a trigger type."""


class TemplateNotFoundError(OrchestratorError):
    def __init__(self, template_name: str, searched: list[str]) -> None:
        super().__init__(
            f"Workflow template '{template_name}' not found. Searched: {', '.join(searched)}"
        )
        self.template_name = template_name
        self.searched = searched


class TemplateResolutionError(OrchestratorError):
    def __init__(
        self,
        template_name: str,
        message: str,
        *,
        unresolved: list[str] | None = None,
    ) -> None:
        super().__init__(f"Failed to resolve workflow template '{template_name}': {message}")
        self.template_name = template_name
        self.unresolved = unresolved or []
