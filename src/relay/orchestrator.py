"""High-level orchestration for running config-defined workers and tasks."""

from __future__ import annotations

import logging
from typing import List, Optional

from .config import ProjectConfig, RunSettings
from .scheduler import Listener, Scheduler
from .tasks.base import RunResult, Task, TaskState, new_task_id
from .tasks.graph import TaskGraph
from .workers.builtin import register_builtin_workers
from .workers.registry import WorkerRegistry

logger = logging.getLogger(__name__)


class Orchestrator:
    """Builds the worker registry and task graph from config and runs them."""

    def __init__(
        self,
        project_config: ProjectConfig,
        registry: Optional[WorkerRegistry] = None,
        settings: Optional[RunSettings] = None,
    ) -> None:
        self.config = project_config
        self.settings = settings or project_config.settings
        self.registry = registry or self._build_registry()
        self._task_ids = [spec.id or new_task_id(spec.capability) for spec in self.config.tasks]
        # Build once up front so invalid graphs fail before anything runs.
        self.graph = self._build_graph()
        self.scheduler = Scheduler(self.registry, self.settings)

    def _build_registry(self) -> WorkerRegistry:
        registry = WorkerRegistry()
        registry.configure_from_specs(self.config.worker_specs)
        registry.discover_entrypoints()
        register_builtin_workers(registry)
        return registry

    def _build_tasks(self) -> List[Task]:
        return [
            Task.create(
                spec.capability,
                id=task_id,
                depends_on=spec.depends_on,
                input=spec.input,
                timeout_ms=spec.timeout_ms,
                description=spec.description,
            )
            for task_id, spec in zip(self._task_ids, self.config.tasks)
        ]

    def _build_graph(self) -> TaskGraph:
        return TaskGraph.build(self._build_tasks())

    @property
    def tasks(self) -> List[Task]:
        return list(self.graph)

    def plan(self) -> List[List[str]]:
        """Rounds the project would execute in with unlimited concurrency."""

        return self.graph.levels()

    def run(self, listener: Optional[Listener] = None) -> RunResult:
        if any(task.state is not TaskState.PENDING for task in self.graph):
            self.graph = self._build_graph()
        self.scheduler.listener = listener
        logger.info("Running project %s (%d tasks)", self.config.name, len(self.graph))
        return self.scheduler.run(self.graph)

    def cancel(self) -> None:
        self.scheduler.cancel()
