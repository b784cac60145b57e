"""Load workflow definitions from YAML documents.

Document keys are matched case-insensitively (camelCase keys are accepted and
mapped to their snake_case form). Loading only checks shape; cross-references
are checked by `validation.validate_workflow`.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Mapping
from datetime import timedelta
from pathlib import Path
from typing import Any

import yaml
from pydantic import TypeAdapter, ValidationError

from .definition import (
    DEFAULT_CHECKPOINT_DIRECTORY,
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
from .errors import WorkflowParseError

logger = logging.getLogger(__name__)

_SHORTHAND_DURATION = re.compile(r"^(\d+)\s*([smhd])$", re.IGNORECASE)
_CLOCK_DURATION = re.compile(
    r"^(?:(?P<days>\d+)\.)?(?P<hours>\d+):(?P<minutes>\d{1,2})"
    r"(?::(?P<seconds>\d{1,2})(?:\.(?P<fraction>\d{1,7}))?)?$"
)
_SHORTHAND_UNITS = {"s": "seconds", "m": "minutes", "h": "hours", "d": "days"}
_TIMEDELTA = TypeAdapter(timedelta)
_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])(?=[A-Z])")

_STATE_TYPES: dict[str, StateType] = {
    "start": StateType.START,
    "agent": StateType.AGENT,
    "parallel": StateType.PARALLEL,
    "human_gate": StateType.HUMAN_GATE,
    "humangate": StateType.HUMAN_GATE,
    "escalation": StateType.ESCALATION,
    "terminal": StateType.TERMINAL,
    "end": StateType.TERMINAL,
}

_TRIGGER_TYPES: dict[str, TriggerType] = {
    "file_exists": TriggerType.FILE_EXISTS,
    "fileexists": TriggerType.FILE_EXISTS,
    "directory_not_empty": TriggerType.DIRECTORY_NOT_EMPTY,
    "dir_not_empty": TriggerType.DIRECTORY_NOT_EMPTY,
    "directorynotempty": TriggerType.DIRECTORY_NOT_EMPTY,
    "immediate": TriggerType.IMMEDIATE,
    "expression": TriggerType.EXPRESSION,
}


def parse_duration(value: object) -> timedelta:
    """Parse a duration value from a workflow document.

    Accepted forms:
      - `<int><unit>` with unit one of s, m, h, d (`"30m"`, `"2d"`, `"90s"`)
      - clock form `[days.]hours:minutes[:seconds[.fraction]]` (`"00:30:00"`)
      - ISO 8601 durations (`"PT30M"`), as written by checkpoints
      - a plain number of seconds; YAML reads unquoted `01:30:00` this way

    Raises:
        WorkflowParseError: for anything else, or a negative duration.
    """

    if isinstance(value, bool) or not isinstance(value, timedelta | int | float | str):
        raise WorkflowParseError(f"Invalid duration: {value!r}")

    try:
        if isinstance(value, timedelta):
            result = value
        elif isinstance(value, str):
            result = _parse_duration_text(value)
        else:
            result = timedelta(seconds=value)
    except (OverflowError, ValueError):
        raise WorkflowParseError(f"Invalid timespan format: '{value}'") from None

    if result < timedelta(0):
        raise WorkflowParseError(f"Duration must not be negative: {value!r}")
    return result


def _parse_duration_text(value: str) -> timedelta:
    text = value.strip()

    shorthand = _SHORTHAND_DURATION.match(text)
    if shorthand:
        amount, unit = shorthand.groups()
        return timedelta(**{_SHORTHAND_UNITS[unit.lower()]: int(amount)})

    clock = _CLOCK_DURATION.match(text)
    if clock:
        parts = clock.groupdict()
        fraction = parts["fraction"]
        return timedelta(
            days=int(parts["days"] or 0),
            hours=int(parts["hours"]),
            minutes=int(parts["minutes"]),
            seconds=int(parts["seconds"] or 0),
            microseconds=int(fraction.ljust(6, "0")[:6]) if fraction else 0,
        )

    if text.upper().startswith(("P", "-P")):
        try:
            return _TIMEDELTA.validate_python(text)
        except ValidationError:
            pass

    raise WorkflowParseError(f"Invalid timespan format: '{value}'")


def load_workflow_from_file(path: Path | str) -> WorkflowDefinition:
    path = Path(path)
    if not path.is_file():
        raise FileNotFoundError(f"Workflow file not found: {path}")
    return load_workflow_from_string(path.read_text(encoding="utf-8"), source=str(path))


def load_workflows_from_directory(
    directory: Path | str, pattern: str = "*.yaml"
) -> list[WorkflowDefinition]:
    """Load every matching document in `directory` (non-recursive, name order)."""

    directory = Path(directory)
    if not directory.is_dir():
        raise NotADirectoryError(f"Workflow directory not found: {directory}")
    return [load_workflow_from_file(p) for p in sorted(directory.glob(pattern)) if p.is_file()]


def load_workflow_from_string(text: str, *, source: str | None = None) -> WorkflowDefinition:
    """Parse YAML text into a `WorkflowDefinition`.

    Raises:
        WorkflowParseError: on malformed YAML or a missing required field.
    """

    try:
        raw = yaml.safe_load(text)
    except yaml.YAMLError as e:
        mark = getattr(e, "problem_mark", None)
        raise WorkflowParseError(
            f"Failed to parse workflow YAML: {e}",
            file_path=source,
            line=mark.line + 1 if mark is not None else None,
            column=mark.column + 1 if mark is not None else None,
        ) from e

    if raw is None:
        raise WorkflowParseError("Workflow document is empty", file_path=source)
    if not isinstance(raw, Mapping):
        raise WorkflowParseError("Workflow document must be a mapping", file_path=source)

    try:
        definition = _map_definition(_normalize_keys(raw))
    except WorkflowParseError as e:
        if e.file_path is None:
            e.file_path = source
        raise
    except ValidationError as e:
        raise WorkflowParseError(f"Failed to parse workflow: {e}", file_path=source) from e

    logger.debug(
        "Workflow loaded",
        extra={"workflow": definition.name, "states": len(definition.states), "source": source},
    )
    return definition


def _normalize_keys(value: Any) -> Any:
    if isinstance(value, Mapping):
        return {
            _normalize_key(k) if isinstance(k, str) else k: _normalize_keys(v)
            for k, v in value.items()
        }
    if isinstance(value, list):
        return [_normalize_keys(item) for item in value]
    return value


def _normalize_key(key: str) -> str:
    return _CAMEL_BOUNDARY.sub("_", key.strip()).lower()


def _text(value: object) -> str | None:
    if value is None:
        return None
    return str(value)


def _mapping(value: object, what: str) -> Mapping[str, Any]:
    if not isinstance(value, Mapping):
        raise WorkflowParseError(f"{what} must be a mapping")
    return value


def _sequence(value: object, what: str) -> list[Any]:
    if value is None:
        return []
    if not isinstance(value, list):
        raise WorkflowParseError(f"{what} must be a list")
    return value


def _map_definition(raw: Mapping[str, Any]) -> WorkflowDefinition:
    name = _text(raw.get("name"))
    if name is None:
        raise WorkflowParseError("Workflow name is required.")

    settings_raw = raw.get("settings")
    return WorkflowDefinition(
        name=name,
        version=_text(raw.get("version")) or "1.0",
        description=_text(raw.get("description")),
        agents=[_map_agent(a) for a in _sequence(raw.get("agents"), "agents")],
        states=[_map_state(s) for s in _sequence(raw.get("states"), "states")],
        settings=(
            _map_settings(_mapping(settings_raw, "settings"))
            if settings_raw is not None
            else WorkflowSettings()
        ),
    )


def _map_agent(value: object) -> AgentReference:
    raw = _mapping(value, "Agent reference")
    ref = _text(raw.get("ref"))
    if ref is None:
        raise WorkflowParseError("Agent reference 'ref' is required.")
    return AgentReference(ref=ref, alias=_text(raw.get("alias")))


def _map_state(value: object) -> StateDefinition:
    raw = _mapping(value, "State")
    state_id = _text(raw.get("id"))
    if state_id is None:
        raise WorkflowParseError("State 'id' is required.")

    trigger_raw = raw.get("trigger")
    gate_raw = raw.get("human_gate")
    timeout_raw = raw.get("timeout")
    return StateDefinition(
        id=state_id,
        type=_parse_state_type(raw.get("type")),
        executor=_text(raw.get("executor")),
        executors=[str(e) for e in _sequence(raw.get("executors"), f"State '{state_id}' executors")],
        trigger=_map_trigger(_mapping(trigger_raw, "trigger")) if trigger_raw is not None else None,
        next=_text(raw.get("next")),
        conditions=[
            _map_condition(c) for c in _sequence(raw.get("conditions"), "conditions")
        ],
        human_gate=(
            _map_human_gate(_mapping(gate_raw, "human_gate")) if gate_raw is not None else None
        ),
        max_iterations=raw.get("max_iterations"),
        timeout=parse_duration(timeout_raw) if timeout_raw is not None else None,
    )


def _parse_state_type(value: object) -> StateType:
    if value is None:
        return StateType.AGENT
    try:
        return _STATE_TYPES[str(value).strip().lower()]
    except KeyError:
        raise WorkflowParseError(f"Unknown state type: '{value}'") from None


def _map_trigger(raw: Mapping[str, Any]) -> TriggerDefinition:
    return TriggerDefinition(
        type=_parse_trigger_type(raw.get("type")),
        path=_text(raw.get("path")),
        expression=_text(raw.get("expression")),
    )


def _parse_trigger_type(value: object) -> TriggerType:
    if value is None:
        return TriggerType.IMMEDIATE
    try:
        return _TRIGGER_TYPES[str(value).strip().lower()]
    except KeyError:
        raise WorkflowParseError(f"Unknown trigger type: '{value}'") from None


def _map_condition(value: object) -> ConditionalTransition:
    raw = _mapping(value, "Condition")
    target = _text(raw.get("then"))
    if target is None:
        raise WorkflowParseError("Condition 'then' is required.")
    return ConditionalTransition(
        if_=_text(raw.get("if")),
        then=target,
        is_default=bool(raw.get("else") or False),
    )


def _map_human_gate(raw: Mapping[str, Any]) -> HumanGateSettings:
    timeout_raw = raw.get("timeout")
    return HumanGateSettings(
        approval_mode=_text(raw.get("approval_mode")) or "always_require",
        timeout=parse_duration(timeout_raw) if timeout_raw is not None else timedelta(hours=24),
        on_approve=_text(raw.get("on_approve")),
        on_reject=_text(raw.get("on_reject")),
        notify_email=_text(raw.get("notify_email")),
    )


def _map_settings(raw: Mapping[str, Any]) -> WorkflowSettings:
    timeout_raw = raw.get("default_timeout")
    max_iterations = raw.get("default_max_iterations")
    checkpointing = raw.get("enable_checkpointing")
    return WorkflowSettings(
        default_timeout=(
            parse_duration(timeout_raw) if timeout_raw is not None else timedelta(minutes=30)
        ),
        default_max_iterations=max_iterations if max_iterations is not None else 5,
        enable_checkpointing=checkpointing if checkpointing is not None else True,
        checkpoint_directory=(
            _text(raw.get("checkpoint_directory")) or DEFAULT_CHECKPOINT_DIRECTORY
        ),
    )
