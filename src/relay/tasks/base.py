"""Task dataclasses used by the scheduler."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, FrozenSet, Iterable, List, Mapping, Optional, Tuple

from ..errors import InvalidTransitionError


class TaskState(str, Enum):
    PENDING = "pending"
    READY = "ready"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATES


TERMINAL_STATES: FrozenSet[TaskState] = frozenset(
    {TaskState.COMPLETED, TaskState.FAILED, TaskState.SKIPPED}
)

_TRANSITIONS: Dict[TaskState, FrozenSet[TaskState]] = {
    TaskState.PENDING: frozenset({TaskState.READY, TaskState.SKIPPED}),
    TaskState.READY: frozenset({TaskState.RUNNING, TaskState.FAILED, TaskState.SKIPPED}),
    TaskState.RUNNING: frozenset({TaskState.COMPLETED, TaskState.FAILED}),
    TaskState.COMPLETED: frozenset(),
    TaskState.FAILED: frozenset(),
    TaskState.SKIPPED: frozenset(),
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_task_id(capability: str) -> str:
    return f"{capability}-{uuid.uuid4().hex[:8]}"


@dataclass
class Task:
    """A single unit of work routed to the worker for ``capability``."""

    id: str
    capability: str
    depends_on: Tuple[str, ...] = ()
    input: Any = None
    timeout_ms: Optional[int] = None
    description: Optional[str] = None
    state: TaskState = TaskState.PENDING
    output: Any = None
    error: Optional[BaseException] = None
    skip_reason: Optional[str] = None
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    def __post_init__(self) -> None:
        if isinstance(self.depends_on, str):
            self.depends_on = (self.depends_on,)
        self.depends_on = tuple(dict.fromkeys(self.depends_on))

    @classmethod
    def create(
        cls,
        capability: str,
        *,
        id: Optional[str] = None,
        depends_on: Iterable[str] = (),
        input: Any = None,
        timeout_ms: Optional[int] = None,
        description: Optional[str] = None,
    ) -> "Task":
        """Build a task, generating an id when the caller has none."""

        return cls(
            id=id or new_task_id(capability),
            capability=capability,
            depends_on=tuple(depends_on),
            input=input,
            timeout_ms=timeout_ms,
            description=description,
        )

    def transition(self, target: TaskState) -> None:
        if target not in _TRANSITIONS[self.state]:
            raise InvalidTransitionError(self.id, self.state.value, target.value)
        self.state = target

    def mark_running(self) -> None:
        self.transition(TaskState.RUNNING)
        self.started_at = _utcnow()

    def complete(self, output: Any) -> None:
        self.transition(TaskState.COMPLETED)
        self.output = output
        self.finished_at = _utcnow()

    def fail(self, error: BaseException) -> None:
        self.transition(TaskState.FAILED)
        self.error = error
        self.finished_at = _utcnow()

    def skip(self, reason: str) -> None:
        self.transition(TaskState.SKIPPED)
        self.skip_reason = reason
        self.finished_at = _utcnow()

    def to_record(self) -> "TaskRecord":
        return TaskRecord(
            id=self.id,
            capability=self.capability,
            final_state=self.state,
            output=self.output,
            error=self.error,
            skip_reason=self.skip_reason,
            started_at=self.started_at,
            finished_at=self.finished_at,
        )


@dataclass(frozen=True)
class TaskRecord:
    """Outcome of one task at the end of a run."""

    id: str
    capability: str
    final_state: TaskState
    output: Any = None
    error: Optional[BaseException] = None
    skip_reason: Optional[str] = None
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    @property
    def duration(self) -> Optional[float]:
        if self.started_at is None or self.finished_at is None:
            return None
        return (self.finished_at - self.started_at).total_seconds()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "capability": self.capability,
            "state": self.final_state.value,
            "output": self.output,
            "error": str(self.error) if self.error is not None else None,
            "error_type": type(self.error).__name__ if self.error is not None else None,
            "skip_reason": self.skip_reason,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "duration": self.duration,
        }


class RunStatus(str, Enum):
    SUCCESS = "success"
    PARTIAL_FAILURE = "partial_failure"


@dataclass
class RunResult:
    """What the scheduler hands back once the graph is terminal."""

    status: RunStatus
    records: List[TaskRecord]
    context: Mapping[str, Any] = field(default_factory=dict)
    cancelled: bool = False
    rounds: int = 0

    def record(self, task_id: str) -> TaskRecord:
        for item in self.records:
            if item.id == task_id:
                return item
        raise KeyError(task_id)

    def states(self) -> Dict[str, TaskState]:
        return {item.id: item.final_state for item in self.records}

    def outputs(self) -> Dict[str, Any]:
        return {
            item.id: item.output
            for item in self.records
            if item.final_state is TaskState.COMPLETED
        }

    @property
    def ok(self) -> bool:
        return self.status is RunStatus.SUCCESS

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "cancelled": self.cancelled,
            "rounds": self.rounds,
            "tasks": [item.to_dict() for item in self.records],
        }
