"""Exception hierarchy for graph construction, dispatch and handoff."""

from __future__ import annotations

from typing import Iterable, List, Optional


class OrchestrationError(Exception):
    """Base class for every error raised by relay."""


class ConfigError(OrchestrationError):
    """Raised when configuration files or run settings are invalid."""


class GraphError(OrchestrationError):
    """Raised while building a task graph; the run never starts."""


class DuplicateIdError(GraphError):
    def __init__(self, task_id: str) -> None:
        super().__init__(f"Duplicate task id '{task_id}'")
        self.task_id = task_id


class UnknownDependencyError(GraphError):
    def __init__(self, task_id: str, dependency: str) -> None:
        super().__init__(f"Task '{task_id}' depends on unknown task '{dependency}'")
        self.task_id = task_id
        self.dependency = dependency


class CycleError(GraphError):
    def __init__(self, cycle: Iterable[str]) -> None:
        self.cycle: List[str] = list(cycle)
        super().__init__(f"Dependency cycle detected: {' -> '.join(self.cycle)}")


class TaskError(OrchestrationError):
    """Failure local to a single task; recorded on the task, never raised to the caller."""

    def __init__(self, task_id: str, message: str) -> None:
        super().__init__(message)
        self.task_id = task_id


class UnknownCapabilityError(TaskError):
    def __init__(self, capability: str, task_id: str = "") -> None:
        super().__init__(task_id, f"No worker registered for capability '{capability}'")
        self.capability = capability


class TaskTimeoutError(TaskError):
    def __init__(self, task_id: str, timeout_ms: int) -> None:
        super().__init__(task_id, f"Task '{task_id}' exceeded its timeout of {timeout_ms} ms")
        self.timeout_ms = timeout_ms


class HandlerExecutionError(TaskError):
    def __init__(self, task_id: str, cause: BaseException) -> None:
        super().__init__(task_id, f"Worker for task '{task_id}' failed: {cause!r}")
        self.cause = cause


class StalledError(OrchestrationError):
    """Nothing is ready or running but the graph is not terminal."""

    def __init__(self, blocked: Iterable[str]) -> None:
        self.blocked: List[str] = sorted(blocked)
        super().__init__(f"Scheduler stalled; blocked tasks: {', '.join(self.blocked)}")


class InvalidTransitionError(OrchestrationError):
    def __init__(self, task_id: str, current: object, target: object) -> None:
        super().__init__(f"Task '{task_id}' cannot move from {current} to {target}")
        self.task_id = task_id


class HandoffConflictError(OrchestrationError):
    def __init__(self, task_id: str) -> None:
        super().__init__(f"Output for task '{task_id}' was already recorded")
        self.task_id = task_id


class HandoffNotFoundError(OrchestrationError, KeyError):
    def __init__(self, task_id: str) -> None:
        super().__init__(f"No output recorded for task '{task_id}'")
        self.task_id = task_id

    def __str__(self) -> str:
        return self.args[0]


class RegistryFrozenError(OrchestrationError):
    def __init__(self, capability: Optional[str] = None) -> None:
        detail = f" (capability '{capability}')" if capability else ""
        super().__init__(f"Worker registry is frozen during a run{detail}")
