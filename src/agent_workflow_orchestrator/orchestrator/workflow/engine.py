"""Execution engine: walks a validated definition one state at a time.

Each execution is a single async generator. It yields a fresh
`WorkflowRuntimeState` on every observable change and suspends only while
waiting on a trigger, an approval, or executor calls. Failures inside an
execution end the stream with a failed snapshot. Cancellation ends it by
raising `ExecutionCancelledError`.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import AsyncIterator, Awaitable
from contextlib import aclosing
from pathlib import Path
from typing import TypeVar

from .checkpoints import Checkpoint, CheckpointStore, ResumeContext
from .definition import (
    HumanGateSettings,
    StateDefinition,
    StateType,
    WorkflowDefinition,
)
from .errors import (
    CheckpointError,
    ExecutionCancelledError,
    InvalidExecutionStateError,
    WorkflowValidationError,
)
from .executors import AgentExecutionResult, AgentExecutor
from .expressions import evaluate_expression
from .registry import ExecutionHandle, ExecutionRegistry
from .runtime import (
    ApprovalDecision,
    ExecutionContext,
    ExecutionStatus,
    ExecutionSummary,
    WorkflowRuntimeState,
    utc_now,
)
from .triggers import TriggerEvaluationContext, TriggerEvaluatorRegistry
from .validation import validate_workflow

logger = logging.getLogger(__name__)

T = TypeVar("T")

APPROVAL_FEEDBACK_KEY = "approval_feedback"


def determine_next_state(state_def: StateDefinition, state: WorkflowRuntimeState) -> str | None:
    """Pick the transition target after `state_def` ran.

    Non-default conditions are tried in order and the first true one wins.
    Otherwise the default condition's target, then `next`.
    """

    for condition in state_def.conditions:
        if not condition.is_default and evaluate_expression(condition.if_, state):
            return condition.then
    for condition in state_def.conditions:
        if condition.is_default:
            return condition.then
    return state_def.next


class WorkflowEngine:
    def __init__(
        self,
        executor: AgentExecutor,
        *,
        trigger_registry: TriggerEvaluatorRegistry | None = None,
        checkpoint_store: CheckpointStore | None = None,
        registry: ExecutionRegistry | None = None,
        trigger_poll_interval: float = 5.0,
        trigger_timeout: float | None = None,
    ) -> None:
        if trigger_poll_interval <= 0:
            raise ValueError("trigger_poll_interval must be positive")
        if trigger_timeout is not None and trigger_timeout <= 0:
            raise ValueError("trigger_timeout must be positive (or None to wait forever)")

        self._executor = executor
        self._triggers = trigger_registry or TriggerEvaluatorRegistry()
        self._checkpoint_store = checkpoint_store
        self._registry = registry or ExecutionRegistry()
        self._trigger_poll_interval = trigger_poll_interval
        self._trigger_timeout = trigger_timeout

    @property
    def registry(self) -> ExecutionRegistry:
        return self._registry

    # Control surface

    def approve(self, execution_id: str, decision: ApprovalDecision) -> None:
        self._registry.approve(execution_id, decision)

    def cancel(self, execution_id: str) -> None:
        self._registry.cancel(execution_id)

    def get_state(self, execution_id: str) -> WorkflowRuntimeState | None:
        return self._registry.get_state(execution_id)

    def list_active(self) -> list[ExecutionSummary]:
        return self._registry.list_active()

    # Execution

    async def execute(
        self,
        definition: WorkflowDefinition,
        input: str,
        context: ExecutionContext | None = None,
    ) -> AsyncIterator[WorkflowRuntimeState]:
        """Run `definition` from its start state.

        Raises:
            WorkflowValidationError: the definition has validation errors;
                nothing is executed.
            ExecutionCancelledError: the execution was cancelled.
        """

        report = validate_workflow(definition)
        if not report.is_valid:
            raise WorkflowValidationError(definition.name, report)
        for warning in report.warnings:
            logger.warning(
                "Workflow validation warning",
                extra={"workflow": definition.name, "code": warning.code, "detail": warning.message},
            )

        start = definition.start_state()
        assert start is not None  # a valid definition has at least one state
        state = WorkflowRuntimeState(
            execution_id=str(uuid.uuid4()),
            workflow_name=definition.name,
            current_state_id=start.id,
            input=input,
        )

        async with aclosing(self._run(definition, context or ExecutionContext(), state)) as stream:
            async for snapshot in stream:
                yield snapshot

    async def resume(self, execution_id: str) -> AsyncIterator[WorkflowRuntimeState]:
        """Continue an execution from its latest checkpoint.

        The checkpointed definition is trusted as-is and states completed
        before the checkpoint are not run again.

        Raises:
            CheckpointError: no store is configured, no checkpoint exists, or
                the checkpoint cannot be read.
            InvalidExecutionStateError: the execution is still active.
        """

        if self._checkpoint_store is None:
            raise CheckpointError("No checkpoint store configured")

        checkpoint = self._checkpoint_store.get_latest_for_execution(execution_id)
        if checkpoint is None:
            raise CheckpointError(f"No checkpoint found for execution '{execution_id}'")
        resume = checkpoint.resume_context()

        if self._registry.get(execution_id) is not None:
            raise InvalidExecutionStateError(
                execution_id,
                resume.current_state_id,
                f"Execution '{execution_id}' is already active",
            )

        logger.info(
            "Resuming workflow execution",
            extra={
                "execution_id": execution_id,
                "workflow": resume.workflow.name,
                "state_id": resume.current_state_id,
                "checkpoint_id": checkpoint.checkpoint_id,
            },
        )
        state = WorkflowRuntimeState(
            execution_id=resume.execution_id,
            workflow_name=resume.workflow.name,
            current_state_id=resume.current_state_id,
            input=resume.input,
            started_at=resume.started_at,
            iteration_count=resume.iteration_count,
            output_data=dict(resume.output_data),
        )
        context = ExecutionContext(working_directory=Path(resume.working_directory))

        async with aclosing(self._run(resume.workflow, context, state)) as stream:
            async for snapshot in stream:
                yield snapshot

    async def _run(
        self,
        definition: WorkflowDefinition,
        context: ExecutionContext,
        state: WorkflowRuntimeState,
    ) -> AsyncIterator[WorkflowRuntimeState]:
        loop = asyncio.get_running_loop()
        handle = ExecutionHandle(definition=definition, context=context, state=state, loop=loop)
        execution_id = state.execution_id
        self._registry.register(handle)
        logger.info(
            "Workflow execution started",
            extra={
                "execution_id": execution_id,
                "workflow": definition.name,
                "state_id": state.current_state_id,
            },
        )

        try:
            yield self._publish(handle, state)

            while True:
                if handle.cancel_requested:
                    raise ExecutionCancelledError(execution_id)
                if state.status is not ExecutionStatus.RUNNING:
                    break
                if definition.is_terminal(state.current_state_id):
                    break

                state_def = definition.get_state(state.current_state_id)
                if state_def is None:
                    state = state.failed(f"State not found: {state.current_state_id}")
                    yield self._publish(handle, state)
                    break

                next_state_id: str | None = None
                try:
                    if state_def.trigger is not None:
                        waited = 0.0
                        while not self._trigger_satisfied(handle, state_def, state):
                            if self._trigger_timeout is not None and waited >= self._trigger_timeout:
                                raise TimeoutError(
                                    f"Trigger wait timeout exceeded at state '{state_def.id}'"
                                )
                            if state.status is not ExecutionStatus.WAITING_FOR_TRIGGER:
                                logger.info(
                                    "Waiting for trigger",
                                    extra={
                                        "execution_id": execution_id,
                                        "state_id": state_def.id,
                                        "trigger": state_def.trigger.type.value,
                                    },
                                )
                            state = state.evolve(status=ExecutionStatus.WAITING_FOR_TRIGGER)
                            yield self._publish(handle, state)
                            await self._race(handle, asyncio.sleep(self._trigger_poll_interval))
                            waited += self._trigger_poll_interval
                        if state.status is ExecutionStatus.WAITING_FOR_TRIGGER:
                            state = state.evolve(status=ExecutionStatus.RUNNING)

                    if state_def.type is StateType.HUMAN_GATE:
                        gate = state_def.human_gate or HumanGateSettings()
                        future: asyncio.Future[ApprovalDecision] = loop.create_future()
                        handle.pending_approval = future
                        state = state.evolve(status=ExecutionStatus.WAITING_FOR_APPROVAL)
                        logger.info(
                            "Waiting for approval",
                            extra={
                                "execution_id": execution_id,
                                "state_id": state_def.id,
                                "notify_email": gate.notify_email,
                            },
                        )
                        yield self._publish(handle, state)
                        try:
                            decision = await self._race(
                                handle, future, gate.timeout.total_seconds()
                            )
                        except TimeoutError:
                            state = state.failed("Approval timeout exceeded")
                        else:
                            state, next_state_id = self._apply_decision(
                                state, state_def, gate, decision
                            )
                        finally:
                            handle.pending_approval = None
                    else:
                        state = await self._run_state(handle, definition, state_def, state)

                    # A gate's decision is its transition; conditions do not apply.
                    if (
                        state.status is ExecutionStatus.RUNNING
                        and next_state_id is None
                        and state_def.type is not StateType.HUMAN_GATE
                    ):
                        next_state_id = determine_next_state(state_def, state)
                except ExecutionCancelledError:
                    raise
                except Exception as e:
                    logger.exception(
                        "State execution failed",
                        extra={"execution_id": execution_id, "state_id": state_def.id},
                    )
                    state = state.failed(str(e) or type(e).__name__)

                if state.status is ExecutionStatus.RUNNING and next_state_id is None:
                    state = state.failed(f"State '{state_def.id}' has no outgoing transition")

                yield self._publish(handle, state)

                if state.status is not ExecutionStatus.RUNNING or next_state_id is None:
                    continue
                if handle.cancel_requested:
                    raise ExecutionCancelledError(execution_id)

                logger.debug(
                    "State transition",
                    extra={
                        "execution_id": execution_id,
                        "from_state": state_def.id,
                        "to_state": next_state_id,
                    },
                )
                advanced = state.evolve(current_state_id=next_state_id)
                try:
                    self._save_checkpoint(definition, handle.context, advanced)
                except Exception as e:
                    logger.exception(
                        "Checkpoint save failed",
                        extra={"execution_id": execution_id, "state_id": next_state_id},
                    )
                    state = state.failed(str(e) or type(e).__name__)
                    yield self._publish(handle, state)
                    continue
                state = advanced

            if state.status is ExecutionStatus.RUNNING and definition.is_terminal(
                state.current_state_id
            ):
                now = utc_now()
                state = state.evolve(
                    status=ExecutionStatus.COMPLETED, completed_at=now, last_updated_at=now
                )
                yield self._publish(handle, state)

            if state.status is ExecutionStatus.COMPLETED:
                logger.info(
                    "Workflow execution completed",
                    extra={
                        "execution_id": execution_id,
                        "workflow": definition.name,
                        "iterations": state.iteration_count,
                    },
                )
            else:
                logger.warning(
                    "Workflow execution failed",
                    extra={
                        "execution_id": execution_id,
                        "workflow": definition.name,
                        "state_id": state.current_state_id,
                        "error": state.error_message,
                    },
                )
        except ExecutionCancelledError:
            logger.info("Workflow execution cancelled", extra={"execution_id": execution_id})
            raise
        finally:
            self._registry.remove(execution_id)

    def _publish(self, handle: ExecutionHandle, state: WorkflowRuntimeState) -> WorkflowRuntimeState:
        handle.state = state
        self._registry.update(state.execution_id, state)
        return state

    def _trigger_satisfied(
        self, handle: ExecutionHandle, state_def: StateDefinition, state: WorkflowRuntimeState
    ) -> bool:
        trigger = state_def.trigger
        assert trigger is not None
        evaluator = self._triggers.get_evaluator(trigger.type)
        context = TriggerEvaluationContext(
            working_directory=handle.context.working_directory,
            state_data=dict(state.output_data),
        )
        return evaluator.evaluate(trigger, context)

    @staticmethod
    def _apply_decision(
        state: WorkflowRuntimeState,
        state_def: StateDefinition,
        gate: HumanGateSettings,
        decision: ApprovalDecision,
    ) -> tuple[WorkflowRuntimeState, str | None]:
        logger.info(
            "Approval decision applied",
            extra={
                "execution_id": state.execution_id,
                "state_id": state_def.id,
                "approved": decision.approved,
            },
        )
        if decision.approved:
            return state.evolve(status=ExecutionStatus.RUNNING), gate.on_approve or state_def.next

        data: dict[str, object] = {}
        if decision.feedback and decision.feedback.strip():
            data[APPROVAL_FEEDBACK_KEY] = decision.feedback
        return (
            state.with_output(data, status=ExecutionStatus.RUNNING),
            gate.on_reject or state_def.next,
        )

    async def _run_state(
        self,
        handle: ExecutionHandle,
        definition: WorkflowDefinition,
        state_def: StateDefinition,
        state: WorkflowRuntimeState,
    ) -> WorkflowRuntimeState:
        if state_def.type is StateType.START:
            return state.evolve()

        if state_def.type is StateType.ESCALATION:
            return state.failed(f"Escalation triggered at state '{state_def.id}'")

        if state_def.type is StateType.TERMINAL:
            return state.evolve(status=ExecutionStatus.COMPLETED, completed_at=utc_now())

        limit = state_def.timeout
        if limit is None:
            limit = definition.settings.default_timeout
        timeout = limit.total_seconds()

        if state_def.type is StateType.AGENT:
            if not state_def.executor:
                raise ValueError(f"Agent state '{state_def.id}' requires an executor.")
            result = await self._race(
                handle, self._call(state_def.executor, state), timeout, state_def.id
            )
            return state.with_output(result.data, iteration_count=state.iteration_count + 1)

        if state_def.type is StateType.PARALLEL:
            if not state_def.executors:
                raise ValueError(f"Parallel state '{state_def.id}' requires executors.")
            tasks = [
                asyncio.ensure_future(self._call(name, state)) for name in state_def.executors
            ]
            try:
                results = await self._race(
                    handle, asyncio.gather(*tasks, return_exceptions=True), timeout, state_def.id
                )
            finally:
                for task in tasks:
                    if not task.done():
                        task.cancel()

            merged: dict[str, object] = {}
            for name, result in zip(state_def.executors, results):
                if isinstance(result, asyncio.CancelledError):
                    raise RuntimeError(f"Executor '{name}' was cancelled")
                if isinstance(result, BaseException):
                    raise result
                merged.update(result.data)
            return state.with_output(merged, iteration_count=state.iteration_count + 1)

        raise ValueError(f"Unknown state type: {state_def.type}")

    async def _call(self, name: str, state: WorkflowRuntimeState) -> AgentExecutionResult:
        result = await self._executor.execute(name, state.input, dict(state.output_data))
        if not result.success:
            logger.warning(
                "Executor reported failure",
                extra={
                    "execution_id": state.execution_id,
                    "executor": name,
                    "error": result.error_message,
                },
            )
        return result

    async def _race(
        self,
        handle: ExecutionHandle,
        awaitable: Awaitable[T],
        timeout: float | None = None,
        state_id: str | None = None,
    ) -> T:
        """Await `awaitable` unless cancellation or `timeout` comes first.

        Raises:
            ExecutionCancelledError: cancellation was requested.
            TimeoutError: `timeout` seconds elapsed first.
        """

        if handle.cancel_requested:
            if asyncio.iscoroutine(awaitable):
                awaitable.close()
            raise ExecutionCancelledError(handle.execution_id)

        work = asyncio.ensure_future(awaitable)
        cancelled = asyncio.ensure_future(handle.cancel_event.wait())
        try:
            done, _ = await asyncio.wait(
                {work, cancelled}, timeout=timeout, return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            cancelled.cancel()
            if not work.done():
                work.cancel()

        if handle.cancel_requested or cancelled in done:
            raise ExecutionCancelledError(handle.execution_id)
        if work in done:
            if work.cancelled():
                where = f" at state '{state_id}'" if state_id else ""
                raise RuntimeError(f"Executor call was cancelled{where}")
            return work.result()

        where = f" at state '{state_id}'" if state_id else ""
        raise TimeoutError(f"Timed out after {timeout:g}s{where}")

    def _save_checkpoint(
        self,
        definition: WorkflowDefinition,
        context: ExecutionContext,
        state: WorkflowRuntimeState,
    ) -> None:
        if self._checkpoint_store is None or not definition.settings.enable_checkpointing:
            return

        resume = ResumeContext(
            workflow=definition,
            current_state_id=state.current_state_id,
            input=state.input,
            execution_id=state.execution_id,
            started_at=state.started_at,
            iteration_count=state.iteration_count,
            output_data=dict(state.output_data),
            working_directory=str(context.working_directory),
        )
        checkpoint = Checkpoint.from_resume_context(resume)
        self._checkpoint_store.save(state.execution_id, checkpoint)
        logger.debug(
            "Checkpoint written",
            extra={
                "execution_id": state.execution_id,
                "checkpoint_id": checkpoint.checkpoint_id,
                "state_id": state.current_state_id,
            },
        )
