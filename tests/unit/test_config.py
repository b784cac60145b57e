"""Unit tests for orchestrator settings loading."""

from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from agent_workflow_orchestrator.orchestrator.config import OrchestratorSettings

_ENV_VARS = (
    "LOG_LEVEL",
    "ORCHESTRATOR_WORKING_DIRECTORY",
    "ORCHESTRATOR_CHECKPOINT_DIRECTORY",
    "ORCHESTRATOR_TEMPLATES_DIRECTORY",
    "ORCHESTRATOR_TRIGGER_POLL_SECONDS",
    "ORCHESTRATOR_TRIGGER_TIMEOUT_SECONDS",
)


@pytest.fixture(autouse=True)
def clean_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)


def test_settings_defaults() -> None:
    settings = OrchestratorSettings()

    assert settings.log_level == "INFO"
    assert settings.working_directory == Path(".")
    assert settings.checkpoint_directory == Path(".orchestrator/checkpoints")
    assert settings.templates_directory == Path("workflows/templates")
    assert settings.trigger_poll_seconds == 5.0
    assert settings.trigger_timeout is None


def test_settings_loads_from_dotenv(tmp_path: Path) -> None:
    (tmp_path / ".env").write_text(
        "\n".join(
            [
                "LOG_LEVEL=DEBUG",
                "ORCHESTRATOR_CHECKPOINT_DIRECTORY=state/checkpoints",
                "ORCHESTRATOR_TRIGGER_POLL_SECONDS=0.5",
                "ORCHESTRATOR_TRIGGER_TIMEOUT_SECONDS=30",
                "",
            ]
        ),
        encoding="utf-8",
    )

    settings = OrchestratorSettings()

    assert settings.log_level == "DEBUG"
    assert settings.checkpoint_directory == Path("state/checkpoints")
    assert settings.trigger_poll_seconds == 0.5
    assert settings.trigger_timeout == 30.0


def test_environment_overrides_dotenv(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    (tmp_path / ".env").write_text("LOG_LEVEL=DEBUG\n", encoding="utf-8")
    monkeypatch.setenv("LOG_LEVEL", "WARNING")

    assert OrchestratorSettings().log_level == "WARNING"


@pytest.mark.parametrize(
    ("name", "value"),
    [
        ("ORCHESTRATOR_TRIGGER_POLL_SECONDS", "0"),
        ("ORCHESTRATOR_TRIGGER_TIMEOUT_SECONDS", "-1"),
        ("ORCHESTRATOR_TRIGGER_POLL_SECONDS", "soon"),
    ],
)
def test_invalid_trigger_timing_is_rejected(
    monkeypatch: pytest.MonkeyPatch, name: str, value: str
) -> None:
    monkeypatch.setenv(name, value)

    with pytest.raises(ValidationError):
        OrchestratorSettings()
