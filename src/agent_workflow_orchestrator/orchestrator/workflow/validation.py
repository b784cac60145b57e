"""Structural validation of workflow definitions.

Errors (WF0xx) block execution. Warnings (WF1xx) are reported but never block.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field

from .definition import StateType, WorkflowDefinition


@dataclass(frozen=True, slots=True)
class ValidationIssue:
    code: str
    message: str
    location: str | None = None


@dataclass(frozen=True, slots=True)
class ValidationReport:
    errors: list[ValidationIssue] = field(default_factory=list)
    warnings: list[ValidationIssue] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.errors


def validate_workflow(definition: WorkflowDefinition) -> ValidationReport:
    """Check a definition's structure. Never raises."""

    errors: list[ValidationIssue] = []
    warnings: list[ValidationIssue] = []

    if not definition.name.strip():
        errors.append(ValidationIssue("WF001", "Workflow name is required.", "name"))

    if not definition.states:
        errors.append(
            ValidationIssue("WF002", "Workflow must have at least one state.", "states")
        )

    counts = Counter(state.id for state in definition.states)
    for state_id, count in counts.items():
        if count > 1:
            errors.append(
                ValidationIssue("WF003", f"Duplicate state ID: '{state_id}'", f"states[{state_id}]")
            )

    state_ids = set(counts)
    agent_names = definition.agent_names()
    for state in definition.states:
        if state.next and state.next not in state_ids:
            errors.append(
                ValidationIssue(
                    "WF004",
                    f"State '{state.id}' references non-existent state '{state.next}'",
                    f"states[{state.id}].next",
                )
            )

        for condition in state.conditions:
            if condition.then not in state_ids:
                errors.append(
                    ValidationIssue(
                        "WF004",
                        f"State '{state.id}' condition references non-existent state "
                        f"'{condition.then}'",
                        f"states[{state.id}].conditions",
                    )
                )

        gate = state.human_gate
        if state.type is StateType.HUMAN_GATE and gate is not None:
            for key, target in (("on_approve", gate.on_approve), ("on_reject", gate.on_reject)):
                if target and target not in state_ids:
                    errors.append(
                        ValidationIssue(
                            "WF004",
                            f"HumanGate '{state.id}' {key} references non-existent state "
                            f"'{target}'",
                            f"states[{state.id}].human_gate.{key}",
                        )
                    )

        if state.type is StateType.AGENT and state.executor and state.executor not in agent_names:
            warnings.append(
                ValidationIssue(
                    "WF101",
                    f"State '{state.id}' executor '{state.executor}' not found in agents list. "
                    "It may be resolved at runtime.",
                    f"states[{state.id}].executor",
                )
            )

    if not any(state.type is StateType.TERMINAL for state in definition.states):
        warnings.append(
            ValidationIssue(
                "WF102",
                "Workflow has no terminal state. Ensure transitions lead to completion.",
                "states",
            )
        )

    return ValidationReport(errors=errors, warnings=warnings)
