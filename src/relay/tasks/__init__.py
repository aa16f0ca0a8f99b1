"""Task primitives."""

from .base import RunResult, RunStatus, Task, TaskRecord, TaskState
from .context import HandoffContext
from .graph import TaskGraph

__all__ = [
    "HandoffContext",
    "RunResult",
    "RunStatus",
    "Task",
    "TaskGraph",
    "TaskRecord",
    "TaskState",
]
