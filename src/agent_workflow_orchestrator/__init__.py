"""Agent Workflow Orchestrator.

Provides a local-first way to declare workflows as YAML state machines and
execute them with:
- configuration loaded from `.env`
- structured logging
- human approval gates, parallel fan-out and checkpoint/resume
"""

__version__ = "0.1.0"

from agent_workflow_orchestrator.orchestrator.config import OrchestratorSettings

__all__ = ["__version__", "OrchestratorSettings"]
