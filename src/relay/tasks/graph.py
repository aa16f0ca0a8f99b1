"""Dependency graph of tasks for one orchestration run."""

from __future__ import annotations

import heapq
import logging
from typing import Dict, Iterable, Iterator, List, Set

from ..errors import CycleError, DuplicateIdError, UnknownDependencyError
from .base import Task, TaskState

logger = logging.getLogger(__name__)

_BLOCKING_STATES = (TaskState.FAILED, TaskState.SKIPPED)


class TaskGraph:
    """Directed acyclic graph of tasks keyed by id.

    Edges point from a task to the tasks it depends on. The graph owns the
    tasks for the lifetime of a run; state changes happen in place.
    """

    def __init__(self) -> None:
        self._tasks: Dict[str, Task] = {}
        self._dependents: Dict[str, Set[str]] = {}

    @classmethod
    def build(cls, tasks: Iterable[Task]) -> "TaskGraph":
        graph = cls()
        for task in tasks:
            graph.add(task)
        graph.validate()
        return graph

    def add(self, task: Task) -> None:
        if task.id in self._tasks:
            raise DuplicateIdError(task.id)
        self._tasks[task.id] = task

    def validate(self) -> None:
        """Check that every dependency exists and that the graph has no cycle."""

        for task in self._tasks.values():
            for dep in task.depends_on:
                if dep not in self._tasks:
                    raise UnknownDependencyError(task.id, dep)
        self._check_acyclic()
        self._dependents = {task_id: set() for task_id in self._tasks}
        for task in self._tasks.values():
            for dep in task.depends_on:
                self._dependents[dep].add(task.id)

    def _check_acyclic(self) -> None:
        # Iterative DFS; a node seen again while still on the stack closes a cycle.
        done: Set[str] = set()
        for root in sorted(self._tasks):
            if root in done:
                continue
            path: List[str] = [root]
            on_path: Set[str] = {root}
            iterators = [iter(sorted(self._tasks[root].depends_on))]
            while iterators:
                try:
                    dep = next(iterators[-1])
                except StopIteration:
                    iterators.pop()
                    node = path.pop()
                    on_path.discard(node)
                    done.add(node)
                    continue
                if dep in on_path:
                    start = path.index(dep)
                    raise CycleError(path[start:] + [dep])
                if dep in done:
                    continue
                path.append(dep)
                on_path.add(dep)
                iterators.append(iter(sorted(self._tasks[dep].depends_on)))

    def __getitem__(self, task_id: str) -> Task:
        return self._tasks[task_id]

    def __contains__(self, task_id: object) -> bool:
        return task_id in self._tasks

    def __len__(self) -> int:
        return len(self._tasks)

    def __iter__(self) -> Iterator[Task]:
        for task_id in sorted(self._tasks):
            yield self._tasks[task_id]

    def dependents(self, task_id: str) -> List[str]:
        return sorted(self._dependents.get(task_id, ()))

    def descendants(self, task_id: str) -> List[str]:
        seen: Set[str] = set()
        stack = list(self._dependents.get(task_id, ()))
        while stack:
            current = stack.pop()
            if current in seen:
                continue
            seen.add(current)
            stack.extend(self._dependents.get(current, ()))
        return sorted(seen)

    def propagate_skips(self) -> List[str]:
        """Skip every waiting task downstream of a failed or skipped one.

        Returns the ids skipped by this call.
        """

        skipped: List[str] = []
        for task_id in self.topological_order():
            task = self._tasks[task_id]
            if task.state not in (TaskState.PENDING, TaskState.READY):
                continue
            for dep in sorted(task.depends_on):
                dep_state = self._tasks[dep].state
                if dep_state in _BLOCKING_STATES:
                    task.skip(f"dependency '{dep}' {dep_state.value}")
                    skipped.append(task_id)
                    logger.info("Skipping task %s: %s", task_id, task.skip_reason)
                    break
        return skipped

    def ready_set(self) -> List[str]:
        """Return ids of tasks whose dependencies have all completed, ascending."""

        self.propagate_skips()
        ready: List[str] = []
        for task in self:
            if task.state is TaskState.PENDING and all(
                self._tasks[dep].state is TaskState.COMPLETED for dep in task.depends_on
            ):
                task.transition(TaskState.READY)
            if task.state is TaskState.READY:
                ready.append(task.id)
        return ready

    def is_terminal(self) -> bool:
        return all(task.state.is_terminal for task in self._tasks.values())

    def running(self) -> List[str]:
        return [task.id for task in self if task.state is TaskState.RUNNING]

    def blocked(self) -> List[str]:
        return [
            task.id
            for task in self
            if task.state is TaskState.PENDING
        ]

    def topological_order(self) -> List[str]:
        """Kahn's algorithm with ties broken by ascending id."""

        indegree = {task_id: len(task.depends_on) for task_id, task in self._tasks.items()}
        heap = [task_id for task_id, count in indegree.items() if count == 0]
        heapq.heapify(heap)
        order: List[str] = []
        while heap:
            current = heapq.heappop(heap)
            order.append(current)
            for child in self._dependents.get(current, ()):
                indegree[child] -= 1
                if indegree[child] == 0:
                    heapq.heappush(heap, child)
        return order

    def levels(self) -> List[List[str]]:
        """Group ids into the rounds an unbounded, failure-free run would use."""

        depth: Dict[str, int] = {}
        for task_id in self.topological_order():
            deps = self._tasks[task_id].depends_on
            depth[task_id] = 1 + max((depth[dep] for dep in deps), default=-1)
        levels: List[List[str]] = [[] for _ in range(max(depth.values(), default=-1) + 1)]
        for task_id in sorted(depth):
            levels[depth[task_id]].append(task_id)
        return levels
