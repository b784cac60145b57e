"""CLI entrypoint for the workflow orchestrator.

Commands:
- validate: load and validate workflow documents
- run / resume: execute a workflow, printing each snapshot as a JSON line
- checkpoints: inspect or delete stored checkpoints
- templates: list, validate and resolve workflow templates

Exit codes: 0 success, 1 execution failure, 2 configuration or usage error,
3 invalid workflow.
"""

from __future__ import annotations

import argparse
import asyncio
import importlib
import inspect
import json
import logging
import sys
from collections.abc import AsyncIterator, Mapping
from pathlib import Path

from pydantic import ValidationError

from agent_workflow_orchestrator import __version__
from agent_workflow_orchestrator.orchestrator.config import OrchestratorSettings
from agent_workflow_orchestrator.orchestrator.logging import configure_logging
from agent_workflow_orchestrator.orchestrator.workflow import (
    AgentExecutor,
    ApprovalDecision,
    ExecutionContext,
    ExecutionStatus,
    ExecutorRegistry,
    FileSystemCheckpointStore,
    OrchestratorError,
    TemplateNotFoundError,
    TemplateResolutionError,
    WorkflowDefinition,
    WorkflowEngine,
    WorkflowParseError,
    WorkflowRuntimeState,
    WorkflowTemplateResolver,
    WorkflowValidationError,
    load_workflow_from_file,
    validate_workflow,
)

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_USAGE = 2
EXIT_INVALID = 3


class UsageError(Exception):
    pass


def _parse_params(values: list[str] | None) -> dict[str, object]:
    params: dict[str, object] = {}
    for item in values or []:
        key, sep, value = item.partition("=")
        if not sep or not key.strip():
            raise UsageError(f"Invalid parameter '{item}', expected KEY=VALUE")
        params[key.strip()] = value
    return params


def load_executor(target: str) -> AgentExecutor:
    """Import an executor from a `module:attribute` reference.

    The attribute may be an `AgentExecutor`, a mapping of step names to
    functions, or a zero-argument factory (including an executor class)
    returning either.
    """

    module_name, sep, attribute = target.partition(":")
    if not sep or not module_name or not attribute:
        raise UsageError(f"Invalid executor reference '{target}', expected 'module:attribute'")

    try:
        module = importlib.import_module(module_name)
    except ImportError as e:
        raise UsageError(f"Cannot import executor module '{module_name}': {e}") from e
    try:
        obj = getattr(module, attribute)
    except AttributeError:
        raise UsageError(f"Module '{module_name}' has no attribute '{attribute}'") from None

    if inspect.isclass(obj) or (
        not hasattr(obj, "execute") and not isinstance(obj, Mapping) and callable(obj)
    ):
        obj = obj()
    if isinstance(obj, Mapping):
        return ExecutorRegistry(obj)
    if hasattr(obj, "execute"):
        return obj
    raise UsageError(f"'{target}' is not an executor")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="orchestrator",
        description="Declarative workflow state-machine orchestrator",
    )
    parser.add_argument(
        "--version", action="version", version=f"agent-workflow-orchestrator {__version__}"
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    validate = subparsers.add_parser("validate", help="Validate workflow documents")
    validate.add_argument("path", help="Workflow file, or a directory of workflow files")
    validate.add_argument(
        "--pattern",
        default="*.yaml",
        help="Glob used when PATH is a directory",
    )

    def add_execution_args(sub: argparse.ArgumentParser) -> None:
        sub.add_argument(
            "--executors",
            required=True,
            help="Executor to call for agent states, as 'module:attribute'",
        )
        sub.add_argument(
            "--auto-approve",
            action="store_true",
            help="Approve every human gate as soon as it is reached",
        )

    run = subparsers.add_parser("run", help="Execute a workflow")
    run.add_argument("workflow", help="Path to the workflow YAML file")
    run.add_argument("--input", default="", help="Input text passed to every executor")
    run.add_argument(
        "--working-dir",
        default=None,
        help="Directory trigger paths resolve against (defaults to ORCHESTRATOR_WORKING_DIRECTORY)",
    )
    run.add_argument(
        "--no-checkpoint",
        action="store_true",
        help="Do not write checkpoints for this run",
    )
    add_execution_args(run)

    resume = subparsers.add_parser("resume", help="Resume an execution from its latest checkpoint")
    resume.add_argument("execution_id", help="Execution id to resume")
    add_execution_args(resume)

    checkpoints = subparsers.add_parser("checkpoints", help="Inspect stored checkpoints")
    checkpoints.add_argument(
        "execution_id",
        nargs="?",
        default=None,
        help="List checkpoints of this execution (omit to list executions)",
    )
    checkpoints.add_argument(
        "--delete",
        action="store_true",
        help="Delete all checkpoints of EXECUTION_ID",
    )

    templates = subparsers.add_parser("templates", help="Work with workflow templates")
    template_commands = templates.add_subparsers(dest="templates_command", required=True)
    template_commands.add_parser("list", help="List available templates")
    template_validate = template_commands.add_parser("validate", help="Check a template")
    template_validate.add_argument("name", help="Template name")
    template_resolve = template_commands.add_parser(
        "resolve", help="Substitute parameters and print the resulting definition"
    )
    template_resolve.add_argument("name", help="Template name")
    template_resolve.add_argument(
        "--param",
        action="append",
        default=None,
        help="Template parameter as KEY=VALUE (repeatable)",
    )
    template_resolve.add_argument(
        "--lenient",
        action="store_true",
        help="Leave unresolved placeholders in place instead of failing",
    )

    return parser


async def _drive(
    engine: WorkflowEngine,
    stream: AsyncIterator[WorkflowRuntimeState],
    *,
    auto_approve: bool,
) -> WorkflowRuntimeState | None:
    last: WorkflowRuntimeState | None = None
    async for snapshot in stream:
        last = snapshot
        print(snapshot.model_dump_json(), flush=True)
        if auto_approve and snapshot.status is ExecutionStatus.WAITING_FOR_APPROVAL:
            engine.approve(
                snapshot.execution_id, ApprovalDecision(approved=True, feedback="auto-approved")
            )
    return last


def _exit_code(final: WorkflowRuntimeState | None) -> int:
    if final is not None and final.status is ExecutionStatus.COMPLETED:
        return EXIT_OK
    return EXIT_FAILED


def _make_engine(
    settings: OrchestratorSettings, args: argparse.Namespace, *, checkpoints: bool
) -> WorkflowEngine:
    return WorkflowEngine(
        load_executor(args.executors),
        checkpoint_store=(
            FileSystemCheckpointStore(settings.checkpoint_directory) if checkpoints else None
        ),
        trigger_poll_interval=settings.trigger_poll_seconds,
        trigger_timeout=settings.trigger_timeout,
    )


def _validate_command(args: argparse.Namespace) -> int:
    path = Path(args.path)
    files = sorted(path.glob(args.pattern)) if path.is_dir() else [path]
    if not files:
        print(f"No workflow files matching '{args.pattern}' in {path}")
        return EXIT_OK

    exit_code = EXIT_OK
    for file in files:
        try:
            definition = load_workflow_from_file(file)
        except WorkflowParseError as e:
            print(f"{file}: parse error: {e}")
            exit_code = EXIT_INVALID
            continue

        report = validate_workflow(definition)
        status = "ok" if report.is_valid else "invalid"
        print(f"{file}: {status} ({definition.name} v{definition.version})")
        for issue in report.errors:
            print(f"  error {issue.code} [{issue.location}]: {issue.message}")
        for issue in report.warnings:
            print(f"  warning {issue.code} [{issue.location}]: {issue.message}")
        if not report.is_valid:
            exit_code = EXIT_INVALID
    return exit_code


def _run_command(settings: OrchestratorSettings, args: argparse.Namespace) -> int:
    definition: WorkflowDefinition = load_workflow_from_file(args.workflow)
    engine = _make_engine(settings, args, checkpoints=not args.no_checkpoint)
    working_dir = Path(args.working_dir) if args.working_dir else settings.working_directory
    context = ExecutionContext(working_directory=working_dir.resolve())

    final = asyncio.run(
        _drive(engine, engine.execute(definition, args.input, context), auto_approve=args.auto_approve)
    )
    logger.info(
        "Run finished",
        extra={
            "workflow": definition.name,
            "status": final.status.value if final else None,
            "execution_id": final.execution_id if final else None,
        },
    )
    return _exit_code(final)


def _resume_command(settings: OrchestratorSettings, args: argparse.Namespace) -> int:
    engine = _make_engine(settings, args, checkpoints=True)
    final = asyncio.run(
        _drive(engine, engine.resume(args.execution_id), auto_approve=args.auto_approve)
    )
    return _exit_code(final)


def _checkpoints_command(settings: OrchestratorSettings, args: argparse.Namespace) -> int:
    store = FileSystemCheckpointStore(settings.checkpoint_directory)

    if args.execution_id is None:
        if args.delete:
            raise UsageError("--delete requires an execution id")
        for execution_id in store.list_executions():
            latest = store.get_latest_for_execution(execution_id)
            if latest is None:
                continue
            print(
                f"{execution_id}  {latest.workflow_name}  state={latest.current_state_id}  "
                f"saved={latest.created_at.isoformat()}"
            )
        return EXIT_OK

    if args.delete:
        count = store.delete_all_for_execution(args.execution_id)
        print(f"Deleted {count} checkpoint(s) for {args.execution_id}")
        return EXIT_OK

    items = store.list_for_execution(args.execution_id)
    if not items:
        print(f"No checkpoints found for {args.execution_id}")
        return EXIT_FAILED
    for checkpoint in items:
        print(
            f"{checkpoint.checkpoint_id}  state={checkpoint.current_state_id}  "
            f"saved={checkpoint.created_at.isoformat()}"
        )
    return EXIT_OK


def _templates_command(settings: OrchestratorSettings, args: argparse.Namespace) -> int:
    if args.templates_command == "list":
        resolver = WorkflowTemplateResolver(settings.templates_directory)
        for name in resolver.available_templates():
            print(name)
        return EXIT_OK

    if args.templates_command == "validate":
        resolver = WorkflowTemplateResolver(settings.templates_directory)
        report = resolver.validate_template(args.name)
        print(f"{args.name}: {'ok' if report.is_valid else 'invalid'}")
        if report.parameters:
            print(f"  parameters: {', '.join(report.parameters)}")
        for message in report.errors:
            print(f"  error: {message}")
        for message in report.warnings:
            print(f"  warning: {message}")
        return EXIT_OK if report.is_valid else EXIT_INVALID

    resolver = WorkflowTemplateResolver(settings.templates_directory, strict=not args.lenient)
    definition = resolver.resolve(args.name, _parse_params(args.param))
    print(json.dumps(definition.model_dump(mode="json", by_alias=True), indent=2, ensure_ascii=False))
    return EXIT_OK


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        settings = OrchestratorSettings()
    except ValidationError as e:
        # Logging isn't configured yet; keep it simple and actionable.
        print("Configuration error (check your .env):", file=sys.stderr)
        print(e, file=sys.stderr)
        return EXIT_USAGE

    configure_logging(settings.log_level)

    try:
        if args.command == "validate":
            return _validate_command(args)
        if args.command == "run":
            return _run_command(settings, args)
        if args.command == "resume":
            return _resume_command(settings, args)
        if args.command == "checkpoints":
            return _checkpoints_command(settings, args)
        if args.command == "templates":
            return _templates_command(settings, args)

        logger.error("Unknown command", extra={"command": args.command})
        return EXIT_USAGE

    except UsageError as e:
        print(str(e), file=sys.stderr)
        return EXIT_USAGE

    except (WorkflowParseError, WorkflowValidationError, TemplateResolutionError) as e:
        logger.warning("Workflow rejected", extra={"error": str(e)})
        print(str(e), file=sys.stderr)
        return EXIT_INVALID

    except (FileNotFoundError, TemplateNotFoundError) as e:
        print(str(e), file=sys.stderr)
        return EXIT_USAGE

    except OrchestratorError as e:
        logger.error("Command failed", extra={"error": str(e)})
        print(str(e), file=sys.stderr)
        return EXIT_FAILED

    except Exception:
        logger.exception("Command failed")
        return EXIT_FAILED


if __name__ == "__main__":
    raise SystemExit(main())
