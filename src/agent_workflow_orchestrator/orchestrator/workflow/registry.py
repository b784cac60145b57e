"""Bookkeeping for in-flight executions.

The registry is the only structure shared between an execution loop and the
outside world. `approve` and `cancel` may be called from any thread; signals
are handed to the execution's event loop with `call_soon_threadsafe`.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass, field

from .definition import WorkflowDefinition
from .errors import ExecutionNotFoundError, InvalidExecutionStateError
from .runtime import (
    ApprovalDecision,
    ExecutionContext,
    ExecutionStatus,
    ExecutionSummary,
    WorkflowRuntimeState,
)

logger = logging.getLogger(__name__)


@dataclass
class ExecutionHandle:
    """Mutable per-execution record owned by the engine loop."""

    definition: WorkflowDefinition
    context: ExecutionContext
    state: WorkflowRuntimeState
    loop: asyncio.AbstractEventLoop
    cancel_event: asyncio.Event = field(default_factory=asyncio.Event)
    cancel_requested: bool = False
    pending_approval: asyncio.Future[ApprovalDecision] | None = None

    @property
    def execution_id(self) -> str:
        return self.state.execution_id

    def signal(self, callback: Callable[..., object], *args: object) -> None:
        if self.loop.is_closed():
            return
        self.loop.call_soon_threadsafe(callback, *args)


def _resolve(future: asyncio.Future[ApprovalDecision], decision: ApprovalDecision) -> None:
    if not future.done():
        future.set_result(decision)


def _cancel(future: asyncio.Future[ApprovalDecision]) -> None:
    if not future.done():
        future.cancel()


class ExecutionRegistry:
    def __init__(self) -> None:
        self._handles: dict[str, ExecutionHandle] = {}
        self._lock = threading.Lock()

    def register(self, handle: ExecutionHandle) -> None:
        with self._lock:
            self._handles[handle.execution_id] = handle

    def get(self, execution_id: str) -> ExecutionHandle | None:
        with self._lock:
            return self._handles.get(execution_id)

    def update(self, execution_id: str, state: WorkflowRuntimeState) -> None:
        with self._lock:
            handle = self._handles.get(execution_id)
            if handle is not None:
                handle.state = state

    def remove(self, execution_id: str) -> None:
        with self._lock:
            self._handles.pop(execution_id, None)

    def approve(self, execution_id: str, decision: ApprovalDecision) -> None:
        """Resolve the pending approval of an execution waiting at a human gate.

        Raises:
            ExecutionNotFoundError: the execution is not active.
            InvalidExecutionStateError: the execution is not waiting for approval.
        """

        with self._lock:
            handle = self._handles.get(execution_id)
            if handle is None:
                raise ExecutionNotFoundError(execution_id)

            future = handle.pending_approval
            if handle.state.status is not ExecutionStatus.WAITING_FOR_APPROVAL or future is None:
                raise InvalidExecutionStateError(
                    execution_id,
                    handle.state.current_state_id,
                    f"Execution '{execution_id}' is not waiting for approval "
                    f"(status: {handle.state.status.value})",
                )
            handle.pending_approval = None

        handle.signal(_resolve, future, decision)
        logger.info(
            "Approval decision received",
            extra={
                "execution_id": execution_id,
                "state_id": handle.state.current_state_id,
                "approved": decision.approved,
            },
        )

    def cancel(self, execution_id: str) -> None:
        """Request cancellation. The entry is removed immediately.

        Raises:
            ExecutionNotFoundError: the execution is not active.
        """

        with self._lock:
            handle = self._handles.pop(execution_id, None)
            if handle is None:
                raise ExecutionNotFoundError(execution_id)
            handle.cancel_requested = True
            future = handle.pending_approval
            handle.pending_approval = None

        handle.signal(handle.cancel_event.set)
        if future is not None:
            handle.signal(_cancel, future)
        logger.info("Execution cancellation requested", extra={"execution_id": execution_id})

    def get_state(self, execution_id: str) -> WorkflowRuntimeState | None:
        with self._lock:
            handle = self._handles.get(execution_id)
            return handle.state if handle is not None else None

    def list_active(self) -> list[ExecutionSummary]:
        with self._lock:
            states = [handle.state for handle in self._handles.values()]
        return [ExecutionSummary.from_state(state) for state in states]
