"""Worker abstractions and registries."""

from .base import FunctionWorker, Worker
from .registry import WorkerRegistry

__all__ = ["FunctionWorker", "Worker", "WorkerRegistry"]
