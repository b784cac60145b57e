"""Unit tests for workflow template resolution."""

from __future__ import annotations

from datetime import timedelta
from pathlib import Path

import pytest

from agent_workflow_orchestrator.orchestrator.workflow import (
    StateType,
    TemplateNotFoundError,
    TemplateResolutionError,
    WorkflowTemplateResolver,
)
from agent_workflow_orchestrator.orchestrator.workflow.templates import (
    format_parameter,
    is_valid_parameter_path,
    lookup_parameter,
)

REVIEW_TEMPLATE = """
name: review-{{ project.name }}
description: Review loop for {{ project.name }}
states:
  - id: START
    type: start
    next: REVIEW
  - id: REVIEW
    executor: {{ reviewer }}
    timeout: {{ review_timeout }}
    next: DONE
  - id: DONE
    type: terminal
"""


@pytest.fixture
def templates_dir(tmp_path: Path) -> Path:
    directory = tmp_path / "templates"
    directory.mkdir()
    (directory / "review.yaml").write_text(REVIEW_TEMPLATE, encoding="utf-8")
    return directory


def test_resolve_substitutes_nested_and_flat_parameters(templates_dir: Path) -> None:
    resolver = WorkflowTemplateResolver(templates_dir)

    definition = resolver.resolve(
        "review",
        {"Project": {"Name": "billing"}, "REVIEWER": "senior-dev", "review_timeout": "15m"},
    )

    assert definition.name == "review-billing"
    assert definition.description == "Review loop for billing"
    review = definition.get_state("REVIEW")
    assert review is not None
    assert review.type is StateType.AGENT
    assert review.executor == "senior-dev"
    assert review.timeout == timedelta(minutes=15)


def test_strict_mode_reports_every_unresolved_parameter(templates_dir: Path) -> None:
    resolver = WorkflowTemplateResolver(templates_dir)

    with pytest.raises(TemplateResolutionError) as exc_info:
        resolver.resolve("review.yaml", {"reviewer": "bob"})

    assert exc_info.value.unresolved == ["project.name", "project.name", "review_timeout"]
    assert "review" in str(exc_info.value)


def test_lenient_mode_uses_default_value(templates_dir: Path) -> None:
    resolver = WorkflowTemplateResolver(templates_dir, strict=False, default_value="1h")

    content = resolver.substitute("review", REVIEW_TEMPLATE, {"reviewer": "bob", "project": {}})

    assert "executor: bob" in content
    assert "timeout: 1h" in content
    assert "{{" not in content


def test_lenient_mode_keeps_placeholders_without_default() -> None:
    resolver = WorkflowTemplateResolver(".", strict=False)

    assert resolver.substitute("t", "a: {{ missing }}", {}) == "a: {{ missing }}"


def test_unparseable_result_is_a_resolution_error(templates_dir: Path) -> None:
    (templates_dir / "broken.yaml").write_text(
        "name: x\nstates:\n  - id: A\n    type: {{ kind }}\n", encoding="utf-8"
    )
    resolver = WorkflowTemplateResolver(templates_dir)

    with pytest.raises(TemplateResolutionError, match="Unknown state type"):
        resolver.resolve("broken", {"kind": "teleport"})


def test_missing_template(templates_dir: Path) -> None:
    resolver = WorkflowTemplateResolver(templates_dir)

    assert resolver.template_exists("review")
    assert not resolver.template_exists("nope")
    with pytest.raises(TemplateNotFoundError) as exc_info:
        resolver.resolve("nope", {})
    assert exc_info.value.searched == [str(templates_dir)]


def test_available_templates(templates_dir: Path, tmp_path: Path) -> None:
    (templates_dir / "alpha.yaml").write_text("name: a\nstates: []\n", encoding="utf-8")
    (templates_dir / "notes.txt").write_text("ignored", encoding="utf-8")

    assert WorkflowTemplateResolver(templates_dir).available_templates() == ["alpha", "review"]
    assert WorkflowTemplateResolver(tmp_path / "absent").available_templates() == []


def test_validate_template(templates_dir: Path) -> None:
    (templates_dir / "plain.yaml").write_text("name: plain\nstates: []\n", encoding="utf-8")
    (templates_dir / "nameless.yaml").write_text("states: []\n", encoding="utf-8")
    (templates_dir / "agent-only.yaml").write_text(
        "agent_name: coder\nstates: []\n", encoding="utf-8"
    )
    (templates_dir / "stateless.yaml").write_text(
        "name: x\nsub_states: []\n", encoding="utf-8"
    )
    resolver = WorkflowTemplateResolver(templates_dir)

    report = resolver.validate_template("review")
    assert report.is_valid
    assert report.parameters == ["project.name", "review_timeout", "reviewer"]
    assert report.warnings == []

    plain = resolver.validate_template("plain")
    assert plain.is_valid
    assert plain.warnings == ["Template has no parameter placeholders"]

    nameless = resolver.validate_template("nameless")
    assert nameless.errors == ["Template must define 'name' field"]
    assert resolver.validate_template("agent-only").errors == [
        "Template must define 'name' field"
    ]
    assert resolver.validate_template("stateless").errors == [
        "Template must define 'states' field"
    ]

    missing = resolver.validate_template("ghost")
    assert not missing.is_valid
    assert missing.errors[0].startswith("Template file not found")


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        (None, ""),
        (True, "true"),
        (False, "false"),
        (timedelta(minutes=90), "90.00"),
        (["a", 1, True], "a,1,true"),
        (3.5, "3.5"),
    ],
)
def test_format_parameter(value: object, expected: str) -> None:
    assert format_parameter(value) == expected


def test_lookup_parameter_prefers_flat_keys() -> None:
    parameters = {"goal.name": "flat", "goal": {"name": "nested"}}

    assert lookup_parameter(parameters, "GOAL.NAME") == (True, "flat")
    assert lookup_parameter({"goal": {"name": "nested"}}, "goal.name") == (True, "nested")
    assert lookup_parameter({"goal": "text"}, "goal.name") == (False, None)


def test_parameter_path_syntax() -> None:
    assert is_valid_parameter_path("project.name")
    assert is_valid_parameter_path("_private")
    assert not is_valid_parameter_path("project..name")
    assert not is_valid_parameter_path("9lives")
