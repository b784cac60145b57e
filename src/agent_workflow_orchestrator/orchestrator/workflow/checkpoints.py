"""Checkpoints: persisted resume points of a running workflow.

A checkpoint carries a JSON-serialized `ResumeContext` holding the full
definition, so an execution can be resumed without the original document.
Stores assume a single writer per execution id.
"""

from __future__ import annotations

import itertools
import json
import logging
import shutil
import threading
import uuid
from datetime import datetime
from pathlib import Path
from typing import Any, Protocol

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .definition import WorkflowDefinition
from .errors import CheckpointError
from .runtime import utc_now

logger = logging.getLogger(__name__)

_SEQUENCE = itertools.count()


class ResumeContext(BaseModel):
    """Everything needed to re-enter the execution loop."""

    model_config = ConfigDict(frozen=True)

    workflow: WorkflowDefinition
    current_state_id: str
    input: str = ""
    execution_id: str
    started_at: datetime
    iteration_count: int = 0
    output_data: dict[str, Any] = Field(default_factory=dict)
    working_directory: str

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True)

    @staticmethod
    def from_json(payload: str) -> ResumeContext:
        if not payload or not payload.strip():
            raise CheckpointError("Checkpoint data is empty")
        try:
            return ResumeContext.model_validate_json(payload)
        except ValidationError as e:
            raise CheckpointError(f"Failed to deserialize checkpoint data: {e}") from e


class Checkpoint(BaseModel):
    model_config = ConfigDict(frozen=True)

    checkpoint_id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    execution_id: str
    workflow_name: str
    current_state_id: str
    created_at: datetime = Field(default_factory=utc_now)
    # Breaks ties between checkpoints created within the same clock tick.
    sequence: int = Field(default_factory=lambda: next(_SEQUENCE))
    data: str

    @staticmethod
    def from_resume_context(context: ResumeContext) -> Checkpoint:
        return Checkpoint(
            execution_id=context.execution_id,
            workflow_name=context.workflow.name,
            current_state_id=context.current_state_id,
            data=context.to_json(),
        )

    def resume_context(self) -> ResumeContext:
        return ResumeContext.from_json(self.data)


class CheckpointStore(Protocol):
    def save(self, execution_id: str, checkpoint: Checkpoint) -> None: ...

    def load(self, execution_id: str, checkpoint_id: str | None = None) -> Checkpoint | None:
        """Return the given checkpoint of an execution, or its latest one."""
        ...

    def get_latest_for_execution(self, execution_id: str) -> Checkpoint | None: ...

    def list_for_execution(self, execution_id: str) -> list[Checkpoint]:
        """Return an execution's checkpoints, oldest first."""
        ...

    def list_executions(self) -> list[str]: ...

    def exists(self, checkpoint_id: str) -> bool: ...

    def delete(self, checkpoint_id: str) -> bool: ...

    def delete_all_for_execution(self, execution_id: str) -> int: ...

    def cleanup_older_than(self, cutoff: datetime) -> int: ...


def _creation_order(checkpoint: Checkpoint) -> tuple[datetime, int]:
    return checkpoint.created_at, checkpoint.sequence


def _require_id(value: str, what: str) -> str:
    if not value or not value.strip():
        raise ValueError(f"{what} must not be empty")
    if "/" in value or "\\" in value or value in (".", ".."):
        raise ValueError(f"Invalid {what}: {value!r}")
    return value


class FileSystemCheckpointStore:
    """Store checkpoints as `<root>/<execution_id>/<checkpoint_id>.json`."""

    def __init__(self, root: Path | str) -> None:
        self.root = Path(root)
        self._lock = threading.Lock()

    def _execution_dir(self, execution_id: str) -> Path:
        return self.root / _require_id(execution_id, "execution_id")

    def _find(self, checkpoint_id: str) -> Path | None:
        name = f"{_require_id(checkpoint_id, 'checkpoint_id')}.json"
        if not self.root.is_dir():
            return None
        for execution_dir in sorted(p for p in self.root.iterdir() if p.is_dir()):
            path = execution_dir / name
            if path.is_file():
                return path
        return None

    def _read(self, path: Path) -> Checkpoint | None:
        try:
            return Checkpoint.model_validate_json(path.read_text(encoding="utf-8"))
        except (OSError, ValidationError) as e:
            logger.warning("Skipping unreadable checkpoint", extra={"path": str(path), "error": str(e)})
            return None

    @staticmethod
    def _remove_if_empty(directory: Path) -> None:
        if directory.is_dir() and not any(directory.iterdir()):
            directory.rmdir()

    def save(self, execution_id: str, checkpoint: Checkpoint) -> None:
        path = self._execution_dir(execution_id) / (
            f"{_require_id(checkpoint.checkpoint_id, 'checkpoint_id')}.json"
        )
        payload = checkpoint.model_dump(mode="json")
        with self._lock:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(
                json.dumps(payload, indent=2, ensure_ascii=False) + "\n", encoding="utf-8"
            )
        logger.debug(
            "Checkpoint saved",
            extra={
                "execution_id": execution_id,
                "checkpoint_id": checkpoint.checkpoint_id,
                "path": str(path),
            },
        )

    def load(self, execution_id: str, checkpoint_id: str | None = None) -> Checkpoint | None:
        if checkpoint_id is None:
            return self.get_latest_for_execution(execution_id)
        path = self._execution_dir(execution_id) / f"{_require_id(checkpoint_id, 'checkpoint_id')}.json"
        if not path.is_file():
            return None
        return self._read(path)

    def get_latest_for_execution(self, execution_id: str) -> Checkpoint | None:
        checkpoints = self.list_for_execution(execution_id)
        return checkpoints[-1] if checkpoints else None

    def list_for_execution(self, execution_id: str) -> list[Checkpoint]:
        directory = self._execution_dir(execution_id)
        if not directory.is_dir():
            return []
        checkpoints = [
            checkpoint
            for path in directory.glob("*.json")
            if (checkpoint := self._read(path)) is not None
        ]
        return sorted(checkpoints, key=_creation_order)

    def list_executions(self) -> list[str]:
        if not self.root.is_dir():
            return []
        return sorted(p.name for p in self.root.iterdir() if p.is_dir())

    def exists(self, checkpoint_id: str) -> bool:
        return self._find(checkpoint_id) is not None

    def delete(self, checkpoint_id: str) -> bool:
        with self._lock:
            path = self._find(checkpoint_id)
            if path is None:
                return False
            path.unlink()
            self._remove_if_empty(path.parent)
        logger.debug("Checkpoint deleted", extra={"checkpoint_id": checkpoint_id})
        return True

    def delete_all_for_execution(self, execution_id: str) -> int:
        directory = self._execution_dir(execution_id)
        with self._lock:
            if not directory.is_dir():
                return 0
            count = len(list(directory.glob("*.json")))
            shutil.rmtree(directory)
        logger.debug(
            "Checkpoints deleted", extra={"execution_id": execution_id, "count": count}
        )
        return count

    def cleanup_older_than(self, cutoff: datetime) -> int:
        deleted = 0
        with self._lock:
            for execution_id in self.list_executions():
                directory = self.root / execution_id
                for path in directory.glob("*.json"):
                    checkpoint = self._read(path)
                    if checkpoint is not None and checkpoint.created_at < cutoff:
                        path.unlink()
                        deleted += 1
                self._remove_if_empty(directory)
        logger.info(
            "Old checkpoints cleaned up",
            extra={"count": deleted, "cutoff": cutoff.isoformat()},
        )
        return deleted


class InMemoryCheckpointStore:
    """Keep checkpoints in process memory. Useful for tests and embedding."""

    def __init__(self) -> None:
        self._checkpoints: dict[str, dict[str, Checkpoint]] = {}
        self._lock = threading.Lock()

    def save(self, execution_id: str, checkpoint: Checkpoint) -> None:
        with self._lock:
            self._checkpoints.setdefault(execution_id, {})[checkpoint.checkpoint_id] = checkpoint

    def load(self, execution_id: str, checkpoint_id: str | None = None) -> Checkpoint | None:
        if checkpoint_id is None:
            return self.get_latest_for_execution(execution_id)
        with self._lock:
            return self._checkpoints.get(execution_id, {}).get(checkpoint_id)

    def get_latest_for_execution(self, execution_id: str) -> Checkpoint | None:
        checkpoints = self.list_for_execution(execution_id)
        return checkpoints[-1] if checkpoints else None

    def list_for_execution(self, execution_id: str) -> list[Checkpoint]:
        with self._lock:
            checkpoints = list(self._checkpoints.get(execution_id, {}).values())
        return sorted(checkpoints, key=_creation_order)

    def list_executions(self) -> list[str]:
        with self._lock:
            return sorted(self._checkpoints)

    def exists(self, checkpoint_id: str) -> bool:
        with self._lock:
            return any(checkpoint_id in items for items in self._checkpoints.values())

    def delete(self, checkpoint_id: str) -> bool:
        with self._lock:
            for execution_id, items in self._checkpoints.items():
                if items.pop(checkpoint_id, None) is not None:
                    if not items:
                        del self._checkpoints[execution_id]
                    return True
            return False

    def delete_all_for_execution(self, execution_id: str) -> int:
        with self._lock:
            return len(self._checkpoints.pop(execution_id, {}))

    def cleanup_older_than(self, cutoff: datetime) -> int:
        deleted = 0
        with self._lock:
            for execution_id in list(self._checkpoints):
                items = self._checkpoints[execution_id]
                for checkpoint_id in [k for k, c in items.items() if c.created_at < cutoff]:
                    del items[checkpoint_id]
                    deleted += 1
                if not items:
                    del self._checkpoints[execution_id]
        return deleted
