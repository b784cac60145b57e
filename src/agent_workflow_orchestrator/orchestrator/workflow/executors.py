from __future__ import annotations

import inspect
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from typing import Protocol

from .errors import ExecutorNotFoundError


@dataclass(frozen=True, slots=True)
class AgentExecutionResult:
    """Outcome of one executor call.

    `data` is merged into the execution's output data (last writer wins).
    An unsuccessful result is recorded but does not fail the execution; only a
    raised exception does.
    """

    success: bool = True
    error_message: str | None = None
    data: dict[str, object] = field(default_factory=dict)


class AgentExecutor(Protocol):
    """Runs a named step.

    Executors are passive: they do not decide workflow transitions. The engine
    reads their output data through transition conditions.
    """

    async def execute(
        self, name: str, input: str, context_data: Mapping[str, object]
    ) -> AgentExecutionResult: ...


StepResult = AgentExecutionResult | Mapping[str, object] | None
StepFunction = Callable[[str, Mapping[str, object]], StepResult | Awaitable[StepResult]]


class ExecutorRegistry:
    """An `AgentExecutor` backed by plain functions registered by name.

    Functions receive `(input, context_data)` and may be sync or async. They
    may return an `AgentExecutionResult`, a mapping (treated as successful
    output data) or None.
    """

    def __init__(self, functions: Mapping[str, StepFunction] | None = None) -> None:
        self._functions: dict[str, StepFunction] = dict(functions or {})

    def register(self, name: str, function: StepFunction) -> None:
        self._functions[name] = function

    def step(self, name: str) -> Callable[[StepFunction], StepFunction]:
        """Decorator form of `register`."""

        def decorator(function: StepFunction) -> StepFunction:
            self.register(name, function)
            return function

        return decorator

    def names(self) -> list[str]:
        return sorted(self._functions)

    def __contains__(self, name: object) -> bool:
        return name in self._functions

    async def execute(
        self, name: str, input: str, context_data: Mapping[str, object]
    ) -> AgentExecutionResult:
        try:
            function = self._functions[name]
        except KeyError:
            raise ExecutorNotFoundError(name) from None

        outcome = function(input, context_data)
        if inspect.isawaitable(outcome):
            outcome = await outcome
        return _coerce_result(name, outcome)


def _coerce_result(name: str, outcome: object) -> AgentExecutionResult:
    if isinstance(outcome, AgentExecutionResult):
        return outcome
    if outcome is None:
        return AgentExecutionResult()
    if isinstance(outcome, Mapping):
        return AgentExecutionResult(data=dict(outcome))
    raise TypeError(
        f"Executor '{name}' returned {type(outcome).__name__}; "
        "expected AgentExecutionResult, a mapping or None"
    )
