"""Configuration for the workflow orchestrator.

Configuration is loaded from:
- environment variables
- and a local `.env` file (if present)
"""

from __future__ import annotations

from pathlib import Path

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from agent_workflow_orchestrator.orchestrator.workflow.definition import (
    DEFAULT_CHECKPOINT_DIRECTORY,
)


class OrchestratorSettings(BaseSettings):
    """Settings for the local orchestrator.

    Environment variables:
    - LOG_LEVEL                               (optional)
    - ORCHESTRATOR_WORKING_DIRECTORY          (optional)
    - ORCHESTRATOR_CHECKPOINT_DIRECTORY       (optional)
    - ORCHESTRATOR_TEMPLATES_DIRECTORY        (optional)
    - ORCHESTRATOR_TRIGGER_POLL_SECONDS       (optional)
    - ORCHESTRATOR_TRIGGER_TIMEOUT_SECONDS    (optional, 0 waits forever)

    Notes:
        Pydantic-settings supports overriding the env file in tests via:
        `OrchestratorSettings(_env_file=path_to_env)`.
    """

    log_level: str = Field(
        default="INFO",
        validation_alias="LOG_LEVEL",
        description="Root logging level",
    )

    working_directory: Path = Field(
        default=Path("."),
        validation_alias="ORCHESTRATOR_WORKING_DIRECTORY",
        description="Directory that relative trigger paths resolve against",
    )

    checkpoint_directory: Path = Field(
        default=Path(DEFAULT_CHECKPOINT_DIRECTORY),
        validation_alias="ORCHESTRATOR_CHECKPOINT_DIRECTORY",
        description="Root directory of the file-system checkpoint store",
    )

    templates_directory: Path = Field(
        default=Path("workflows/templates"),
        validation_alias="ORCHESTRATOR_TEMPLATES_DIRECTORY",
        description="Directory holding parameterised workflow templates",
    )

    trigger_poll_seconds: float = Field(
        default=5.0,
        validation_alias="ORCHESTRATOR_TRIGGER_POLL_SECONDS",
        description="Delay between trigger re-evaluations while a state waits",
    )

    trigger_timeout_seconds: float = Field(
        default=0.0,
        validation_alias="ORCHESTRATOR_TRIGGER_TIMEOUT_SECONDS",
        description="Maximum time a state may wait for its trigger (0 means no limit)",
    )

    model_config = SettingsConfigDict(
        env_prefix="",
        env_file=".env",
        extra="ignore",
    )

    @model_validator(mode="after")
    def _check_trigger_timing(self) -> OrchestratorSettings:
        if self.trigger_poll_seconds <= 0:
            raise ValueError("ORCHESTRATOR_TRIGGER_POLL_SECONDS must be greater than 0")
        if self.trigger_timeout_seconds < 0:
            raise ValueError("ORCHESTRATOR_TRIGGER_TIMEOUT_SECONDS must not be negative")
        return self

    @property
    def trigger_timeout(self) -> float | None:
        """Trigger wait limit in seconds, or None to wait forever."""

        return self.trigger_timeout_seconds or None
