"""Dependency-aware orchestration of specialist workers."""

import logging
from importlib import metadata

from .config import ProjectConfig, RunSettings
from .errors import (
    CycleError,
    DuplicateIdError,
    HandlerExecutionError,
    OrchestrationError,
    StalledError,
    TaskTimeoutError,
    UnknownCapabilityError,
    UnknownDependencyError,
)
from .orchestrator import Orchestrator
from .scheduler import Scheduler, run_tasks
from .tasks import HandoffContext, RunResult, RunStatus, Task, TaskGraph, TaskRecord, TaskState
from .workers import FunctionWorker, Worker, WorkerRegistry

try:
    __version__ = metadata.version("relay-orchestrator")
except metadata.PackageNotFoundError:  # pragma: no cover - fallback for dev
    __version__ = "0.0.0"

logging.getLogger(__name__).addHandler(logging.NullHandler())

__all__ = [
    "CycleError",
    "DuplicateIdError",
    "FunctionWorker",
    "HandlerExecutionError",
    "HandoffContext",
    "OrchestrationError",
    "Orchestrator",
    "ProjectConfig",
    "RunResult",
    "RunSettings",
    "RunStatus",
    "Scheduler",
    "StalledError",
    "Task",
    "TaskGraph",
    "TaskRecord",
    "TaskState",
    "TaskTimeoutError",
    "UnknownCapabilityError",
    "UnknownDependencyError",
    "Worker",
    "WorkerRegistry",
    "__version__",
    "run_tasks",
]
