#!/usr/bin/env python3
"""Programmatic workflow execution example.

This demonstrates using the orchestrator components directly:

* load settings from `.env`
* register plain functions as workflow steps
* run `examples/workflows/feature.yaml`, answering the human gate from the
  command line and checkpointing to the configured directory

The same `STEPS` registry can be handed to the CLI:
`PYTHONPATH=. orchestrator run examples/workflows/feature.yaml --executors examples.basic_usage:STEPS`
"""

from __future__ import annotations

import argparse
import asyncio
from collections.abc import Mapping
from pathlib import Path
from typing import Sequence

from agent_workflow_orchestrator.orchestrator.config import OrchestratorSettings
from agent_workflow_orchestrator.orchestrator.logging import configure_logging
from agent_workflow_orchestrator.orchestrator.workflow import (
    ApprovalDecision,
    ExecutionContext,
    ExecutionStatus,
    ExecutorRegistry,
    FileSystemCheckpointStore,
    WorkflowEngine,
    load_workflow_from_file,
)

STEPS = ExecutorRegistry()


@STEPS.step("planner")
def plan(input: str, context: Mapping[str, object]) -> dict[str, object]:
    attempt = int(context.get("plan_attempt", 0)) + 1
    return {"plan_attempt": attempt, "plan": f"1. scaffold {input}\n2. write tests"}


@STEPS.step("coder")
async def code(input: str, context: Mapping[str, object]) -> dict[str, object]:
    await asyncio.sleep(0.1)
    return {"files_changed": 3}


@STEPS.step("tester")
async def run_tests(input: str, context: Mapping[str, object]) -> dict[str, object]:
    await asyncio.sleep(0.05)
    return {"tests_passed": True, "test_count": 12}


@STEPS.step("triager")
def triage(input: str, context: Mapping[str, object]) -> dict[str, object]:
    return {"severity": 2}


def _parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run a workflow (programmatic example).")
    parser.add_argument(
        "--workflow",
        default=str(Path(__file__).parent / "workflows" / "feature.yaml"),
        help="Workflow YAML file",
    )
    parser.add_argument("--input", default="a login page", help="Input passed to every step")
    parser.add_argument(
        "--reject-with",
        default=None,
        help="Reject the first approval request with this feedback (optional)",
    )
    return parser.parse_args(argv)


async def _run(args: argparse.Namespace, settings: OrchestratorSettings) -> ExecutionStatus:
    definition = load_workflow_from_file(args.workflow)
    engine = WorkflowEngine(
        STEPS,
        checkpoint_store=FileSystemCheckpointStore(settings.checkpoint_directory),
        trigger_poll_interval=settings.trigger_poll_seconds,
        trigger_timeout=settings.trigger_timeout,
    )
    context = ExecutionContext(working_directory=settings.working_directory.resolve())

    rejected = False
    status = ExecutionStatus.RUNNING
    async for snapshot in engine.execute(definition, args.input, context):
        status = snapshot.status
        print(f"[{snapshot.status.value:>20}] {snapshot.current_state_id}")

        if snapshot.status is ExecutionStatus.WAITING_FOR_APPROVAL:
            if args.reject_with and not rejected:
                rejected = True
                decision = ApprovalDecision(approved=False, feedback=args.reject_with)
            else:
                decision = ApprovalDecision(approved=True)
            engine.approve(snapshot.execution_id, decision)

        if snapshot.status.is_finished:
            print(f"Execution {snapshot.execution_id}: {snapshot.status.value}")
            if snapshot.error_message:
                print(f"Error: {snapshot.error_message}")
            print(f"Output: {snapshot.output_data}")

    return status


def main(argv: Sequence[str] | None = None) -> int:
    args = _parse_args(argv)

    settings = OrchestratorSettings()
    configure_logging(settings.log_level)

    status = asyncio.run(_run(args, settings))
    return 0 if status is ExecutionStatus.COMPLETED else 1


if __name__ == "__main__":
    raise SystemExit(main())
