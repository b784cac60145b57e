"""Parameterised workflow documents.

A template is a workflow YAML file containing `{{ path.to.value }}`
placeholders. Resolving substitutes parameters as text and then loads the
result like any other document.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from pathlib import Path

from .definition import WorkflowDefinition
from .errors import (
    TemplateNotFoundError,
    TemplateResolutionError,
    WorkflowParseError,
)
from .loader import load_workflow_from_string

logger = logging.getLogger(__name__)

TEMPLATE_EXTENSION = ".yaml"

_PLACEHOLDER = re.compile(r"\{\{\s*([a-zA-Z_][a-zA-Z0-9_.]*)\s*\}\}")
_PATH_SEGMENT = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
_NAME_KEY = re.compile(r"^name\s*:", re.MULTILINE)
_STATES_KEY = re.compile(r"^states\s*:", re.MULTILINE)


@dataclass(frozen=True, slots=True)
class TemplateValidationReport:
    template_name: str
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    parameters: list[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.errors


def format_parameter(value: object) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, timedelta):
        return f"{value.total_seconds() / 60:.2f}"
    if isinstance(value, list | tuple | set | frozenset):
        return ",".join(format_parameter(item) for item in value)
    return str(value)


def lookup_parameter(parameters: Mapping[str, object], path: str) -> tuple[bool, object]:
    """Find `path` in `parameters`, ignoring case.

    A flat key such as `"goal.name"` is tried first, then the path is walked
    through nested mappings.
    """

    lowered = path.lower()
    for key, value in parameters.items():
        if key.lower() == lowered:
            return True, value

    current: object = parameters
    for segment in path.split("."):
        if not isinstance(current, Mapping):
            return False, None
        match = next((k for k in current if str(k).lower() == segment.lower()), None)
        if match is None:
            return False, None
        current = current[match]
    return True, current


def is_valid_parameter_path(path: str) -> bool:
    return all(_PATH_SEGMENT.match(segment) for segment in path.split("."))


class WorkflowTemplateResolver:
    def __init__(
        self,
        templates_directory: Path | str,
        *,
        strict: bool = True,
        default_value: str | None = None,
    ) -> None:
        self.templates_directory = Path(templates_directory)
        self.strict = strict
        self.default_value = default_value

    def template_path(self, template_name: str) -> Path:
        name = template_name
        if not name.lower().endswith(TEMPLATE_EXTENSION):
            name += TEMPLATE_EXTENSION
        return self.templates_directory / name

    def template_exists(self, template_name: str) -> bool:
        return self.template_path(template_name).is_file()

    def available_templates(self) -> list[str]:
        if not self.templates_directory.is_dir():
            return []
        return sorted(p.stem for p in self.templates_directory.glob(f"*{TEMPLATE_EXTENSION}"))

    def substitute(self, template_name: str, content: str, parameters: Mapping[str, object]) -> str:
        unresolved: list[str] = []

        def replace(match: re.Match[str]) -> str:
            found, value = lookup_parameter(parameters, match.group(1))
            if found:
                return format_parameter(value)
            unresolved.append(match.group(1))
            if self.default_value is not None:
                return self.default_value
            return match.group(0)

        result = _PLACEHOLDER.sub(replace, content)
        if unresolved and self.strict:
            raise TemplateResolutionError(
                template_name,
                f"Unresolved parameters: {', '.join(unresolved)}",
                unresolved=unresolved,
            )
        if unresolved:
            logger.warning(
                "Template parameters left unresolved",
                extra={"template": template_name, "parameters": unresolved},
            )
        return result

    def resolve(self, template_name: str, parameters: Mapping[str, object]) -> WorkflowDefinition:
        """Substitute `parameters` into a template and load the result.

        Raises:
            TemplateNotFoundError: no such template file.
            TemplateResolutionError: a placeholder is unresolved in strict mode,
                or the substituted document does not parse.
        """

        path = self.template_path(template_name)
        if not path.is_file():
            raise TemplateNotFoundError(template_name, [str(self.templates_directory)])

        content = self.substitute(template_name, path.read_text(encoding="utf-8"), parameters)
        try:
            definition = load_workflow_from_string(content, source=str(path))
        except WorkflowParseError as e:
            raise TemplateResolutionError(template_name, str(e)) from e

        logger.info(
            "Workflow template resolved",
            extra={"template": template_name, "workflow": definition.name},
        )
        return definition

    def validate_template(self, template_name: str) -> TemplateValidationReport:
        path = self.template_path(template_name)
        if not path.is_file():
            return TemplateValidationReport(
                template_name, errors=[f"Template file not found: {path}"]
            )

        try:
            content = path.read_text(encoding="utf-8")
        except OSError as e:
            return TemplateValidationReport(
                template_name, errors=[f"Failed to read template: {e}"]
            )

        parameters = sorted(set(_PLACEHOLDER.findall(content)))
        errors = [
            f"Invalid parameter path syntax: {name}"
            for name in parameters
            if not is_valid_parameter_path(name)
        ]
        if not _NAME_KEY.search(content):
            errors.append("Template must define 'name' field")
        if not _STATES_KEY.search(content):
            errors.append("Template must define 'states' field")

        warnings = [] if parameters else ["Template has no parameter placeholders"]
        return TemplateValidationReport(
            template_name, errors=errors, warnings=warnings, parameters=parameters
        )
