"""Base classes for workers."""

from __future__ import annotations

from typing import Any, Callable, Mapping

WorkerFunction = Callable[[Any, Mapping[str, Any]], Any]


class Worker:
    """Handler for one capability.

    ``execute`` receives the task input and a read-only snapshot of the
    handoff context. Raising marks the task failed; the scheduler never
    retries.
    """

    name: str
    description: str

    def __init__(self, name: str, description: str | None = None, **kwargs: Any) -> None:
        self.name = name
        self.description = description or self.__class__.__doc__ or ""
        self.config = kwargs

    def execute(self, input: Any, context: Mapping[str, Any]) -> Any:  # pragma: no cover - abstract
        raise NotImplementedError

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(name={self.name!r})"


class FunctionWorker(Worker):
    """Adapts a plain ``fn(input, context)`` callable to the worker contract."""

    def __init__(self, name: str, fn: WorkerFunction, description: str | None = None) -> None:
        super().__init__(name, description or (fn.__doc__ or "").strip())
        self._fn = fn

    def execute(self, input: Any, context: Mapping[str, Any]) -> Any:
        return self._fn(input, context)
