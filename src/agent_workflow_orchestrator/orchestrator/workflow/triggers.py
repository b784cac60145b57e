from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol

from .definition import TriggerDefinition, TriggerType
from .errors import TriggerNotSupportedError


@dataclass(frozen=True, slots=True)
class TriggerEvaluationContext:
    """What a trigger may look at while deciding whether a state can run.

    Relative trigger paths resolve against `working_directory`.
    """

    working_directory: Path
    state_data: Mapping[str, object] = field(default_factory=dict)


class TriggerEvaluator(Protocol):
    """A readiness check for one trigger type.

    Evaluators only observe. They never perform work or change workflow state.
    """

    @property
    def trigger_type(self) -> TriggerType: ...

    def evaluate(self, trigger: TriggerDefinition, context: TriggerEvaluationContext) -> bool: ...


def _resolve_path(trigger: TriggerDefinition, context: TriggerEvaluationContext) -> Path:
    if trigger.path is None or not trigger.path.strip():
        raise ValueError(f"{trigger.type.value} trigger requires a path.")
    path = Path(trigger.path)
    return path if path.is_absolute() else Path(context.working_directory) / path


class FileExistsTriggerEvaluator:
    trigger_type = TriggerType.FILE_EXISTS

    def evaluate(self, trigger: TriggerDefinition, context: TriggerEvaluationContext) -> bool:
        return _resolve_path(trigger, context).is_file()


class DirectoryNotEmptyTriggerEvaluator:
    trigger_type = TriggerType.DIRECTORY_NOT_EMPTY

    def evaluate(self, trigger: TriggerDefinition, context: TriggerEvaluationContext) -> bool:
        path = _resolve_path(trigger, context)
        if not path.is_dir():
            return False
        return any(path.iterdir())


class ImmediateTriggerEvaluator:
    trigger_type = TriggerType.IMMEDIATE

    def evaluate(self, trigger: TriggerDefinition, context: TriggerEvaluationContext) -> bool:
        return True


def default_evaluators() -> list[TriggerEvaluator]:
    return [
        FileExistsTriggerEvaluator(),
        DirectoryNotEmptyTriggerEvaluator(),
        ImmediateTriggerEvaluator(),
    ]


class TriggerEvaluatorRegistry:
    """Look up the evaluator for a trigger type.

    Built with the file-system and immediate evaluators unless an explicit set
    is passed. `expression` triggers have no built-in evaluator.
    """

    def __init__(self, evaluators: Iterable[TriggerEvaluator] | None = None) -> None:
        self._evaluators: dict[TriggerType, TriggerEvaluator] = {}
        for evaluator in default_evaluators() if evaluators is None else evaluators:
            self.register(evaluator)

    def register(self, evaluator: TriggerEvaluator) -> None:
        """Register `evaluator`, replacing any existing one for its type."""

        self._evaluators[evaluator.trigger_type] = evaluator

    def get_evaluator(self, trigger_type: TriggerType) -> TriggerEvaluator:
        try:
            return self._evaluators[trigger_type]
        except KeyError:
            raise TriggerNotSupportedError(
                f"Trigger type '{trigger_type.value}' is not supported."
            ) from None

    def supported_types(self) -> set[TriggerType]:
        return set(self._evaluators)
