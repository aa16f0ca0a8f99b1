"""Round-based scheduler that drives a task graph to a terminal state."""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import Future, wait
from typing import Any, Callable, List, Optional, Tuple

from .config import RunSettings
from .errors import (
    HandlerExecutionError,
    OrchestrationError,
    StalledError,
    TaskTimeoutError,
    UnknownCapabilityError,
)
from .tasks.base import RunResult, RunStatus, Task, TaskState
from .tasks.context import HandoffContext
from .tasks.graph import TaskGraph
from .workers.base import Worker
from .workers.registry import WorkerRegistry

logger = logging.getLogger(__name__)

Listener = Callable[[Task], None]
_Dispatch = Tuple[Task, Future, float]


class Scheduler:
    """Dispatches ready tasks in bulk-synchronous rounds.

    Each round takes up to ``max_concurrency`` ready tasks (ascending id),
    runs each on its own daemon thread against one context snapshot, and waits for
    all of them before readiness is recomputed. Failures never abort the run;
    they only skip the failed task's dependents.
    """

    def __init__(
        self,
        registry: WorkerRegistry,
        settings: Optional[RunSettings] = None,
        listener: Optional[Listener] = None,
    ) -> None:
        self.registry = registry
        self.settings = settings or RunSettings()
        self.listener = listener
        self._cancel = threading.Event()

    def cancel(self) -> None:
        """Stop before the next round; the round in flight is allowed to finish."""

        logger.info("Cancellation requested")
        self._cancel.set()

    @property
    def cancel_requested(self) -> bool:
        return self._cancel.is_set()

    def run(self, graph: TaskGraph) -> RunResult:
        if any(task.state is not TaskState.PENDING for task in graph):
            raise OrchestrationError("Task graph has already been run")
        graph.validate()
        # A cancel requested while no run was active must not leak into this one.
        self._cancel.clear()
        context = HandoffContext()
        rounds = 0
        cancelled = False
        try:
            with self.registry.freeze():
                while not graph.is_terminal():
                    if self._cancel.is_set():
                        self._cancel_remaining(graph)
                        cancelled = True
                        break
                    ready = self._refresh(graph)
                    if not ready:
                        if graph.is_terminal():
                            break
                        logger.error("No task is ready; blocked: %s", graph.blocked())
                        raise StalledError(graph.blocked())
                    limit = self.settings.max_concurrency
                    batch = ready if limit is None else ready[:limit]
                    rounds += 1
                    logger.info("Round %d: dispatching %s", rounds, ", ".join(batch))
                    self._run_round(graph, batch, context)
        finally:
            self._cancel.clear()

        records = [task.to_record() for task in graph]
        status = (
            RunStatus.SUCCESS
            if all(item.final_state is TaskState.COMPLETED for item in records)
            else RunStatus.PARTIAL_FAILURE
        )
        logger.info("Run finished with %s after %d round(s)", status.value, rounds)
        return RunResult(
            status=status,
            records=records,
            context=context.snapshot(),
            cancelled=cancelled,
            rounds=rounds,
        )

    def _refresh(self, graph: TaskGraph) -> List[str]:
        skipped = graph.propagate_skips()
        pending = {task.id for task in graph if task.state is TaskState.PENDING}
        ready = graph.ready_set()
        for task_id in skipped:
            self._notify(graph[task_id])
        for task_id in ready:
            if task_id in pending:
                self._notify(graph[task_id])
        return ready

    def _run_round(self, graph: TaskGraph, batch: List[str], context: HandoffContext) -> None:
        snapshot = context.snapshot()
        selected: List[Tuple[Task, Worker]] = []
        for task_id in batch:
            task = graph[task_id]
            worker = self._resolve(task)
            if worker is None:
                continue
            task.mark_running()
            self._notify(task)
            selected.append((task, worker))
        if not selected:
            return

        dispatched: List[_Dispatch] = [
            (task, _dispatch(worker, task, snapshot), time.monotonic()) for task, worker in selected
        ]
        for task, future, submitted in dispatched:
            self._collect(task, future, submitted, context)

    def _resolve(self, task: Task) -> Optional[Worker]:
        try:
            return self.registry.resolve(task.capability)
        except UnknownCapabilityError:
            self._fail(task, UnknownCapabilityError(task.capability, task.id))
        except Exception as exc:
            self._fail(task, _wrap(task.id, exc))
        return None

    def _collect(
        self, task: Task, future: Future, submitted: float, context: HandoffContext
    ) -> None:
        timeout_ms = task.timeout_ms or self.settings.per_task_timeout_ms
        remaining = None
        if timeout_ms is not None:
            remaining = max(0.0, submitted + timeout_ms / 1000.0 - time.monotonic())
        done, _ = wait([future], timeout=remaining)
        if future not in done:
            future.cancel()
            self._fail(task, TaskTimeoutError(task.id, timeout_ms))
            return
        try:
            output = future.result()
        except Exception as exc:
            self._fail(task, _wrap(task.id, exc))
            return
        task.complete(output)
        context.record(task.id, output)
        logger.info("Task %s completed", task.id)
        self._notify(task)

    def _fail(self, task: Task, error: BaseException) -> None:
        task.fail(error)
        logger.warning("Task %s failed: %s", task.id, error)
        self._notify(task)

    def _cancel_remaining(self, graph: TaskGraph) -> None:
        for task in graph:
            if task.state in (TaskState.PENDING, TaskState.READY):
                task.skip("cancelled")
                self._notify(task)
        logger.info("Run cancelled; remaining tasks skipped")

    def _notify(self, task: Task) -> None:
        if self.listener is None:
            return
        try:
            self.listener(task)
        except Exception:
            logger.exception("Listener failed for task %s", task.id)


def _dispatch(worker: Worker, task: Task, snapshot: Any) -> Future:
    """Run one handler on a daemon thread and return the future it completes.

    A timed-out handler keeps its thread, but being a daemon it never holds
    the interpreter open; its late result is dropped.
    """

    future: Future = Future()

    def target() -> None:
        if not future.set_running_or_notify_cancel():
            return
        try:
            output = worker.execute(task.input, snapshot)
        except BaseException as exc:
            future.set_exception(exc)
        else:
            future.set_result(output)

    threading.Thread(target=target, name=f"relay-worker-{task.id}", daemon=True).start()
    return future


def _wrap(task_id: str, exc: Exception) -> HandlerExecutionError:
    error = HandlerExecutionError(task_id, exc)
    error.__cause__ = exc
    return error


def run_tasks(
    tasks: Any,
    registry: WorkerRegistry,
    *,
    max_concurrency: Optional[int] = 1,
    per_task_timeout_ms: Optional[int] = None,
    listener: Optional[Listener] = None,
) -> RunResult:
    """Build a graph from ``tasks`` and run it to completion."""

    graph = TaskGraph.build(tasks)
    settings = RunSettings(max_concurrency=max_concurrency, per_task_timeout_ms=per_task_timeout_ms)
    return Scheduler(registry, settings, listener).run(graph)
