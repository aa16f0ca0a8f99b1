"""Shared test fixtures."""

from __future__ import annotations

import threading
from typing import Any, List, Mapping

import pytest

from relay.workers.builtin import register_builtin_workers
from relay.workers.registry import WorkerRegistry


class CallLog:
    """Thread-safe record of which inputs reached a worker, in call order."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.calls: List[Any] = []

    def __call__(self, input: Any, context: Mapping[str, Any]) -> Any:
        with self._lock:
            self.calls.append(input)
        return {"input": input, "seen": sorted(context)}


@pytest.fixture()
def call_log() -> CallLog:
    return CallLog()


@pytest.fixture()
def registry(call_log: CallLog) -> WorkerRegistry:
    registry = WorkerRegistry()
    registry.register("architect", call_log)
    registry.register("python-developer", call_log)
    register_builtin_workers(registry)
    return registry
