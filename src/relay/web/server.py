"""FastAPI server for submitting task graphs and following their runs."""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, HTTPException
from fastapi.encoders import jsonable_encoder
from pydantic import BaseModel, Field

from ..config import ProjectConfig, RunSettings, TaskSpec
from ..errors import ConfigError, GraphError
from ..orchestrator import Orchestrator
from ..tasks.base import RunResult, Task
from ..workers.builtin import register_builtin_workers
from ..workers.registry import WorkerRegistry

logger = logging.getLogger(__name__)


class TaskPayload(BaseModel):
    id: Optional[str] = None
    capability: str
    depends_on: List[str] = Field(default_factory=list)
    input: Any = None
    timeout_ms: Optional[int] = Field(default=None, ge=1)
    description: Optional[str] = None


class RunRequest(BaseModel):
    name: str = "api-run"
    tasks: List[TaskPayload] = Field(min_length=1)
    max_concurrency: Optional[int] = Field(default=1, ge=1)
    per_task_timeout_ms: Optional[int] = Field(default=None, ge=1)
    wait: bool = False


@dataclass
class RunState:
    orchestrator: Orchestrator
    history: List[Dict[str, Any]] = field(default_factory=list)
    task: Optional[asyncio.Task] = None
    result: Optional[RunResult] = None
    error: Optional[str] = None

    @property
    def status(self) -> str:
        if self.error is not None:
            return "error"
        if self.result is None:
            return "running"
        return self.result.status.value

    def to_dict(self, run_id: str) -> Dict[str, Any]:
        return jsonable_encoder(
            {
                "run_id": run_id,
                "project": self.orchestrator.config.name,
                "status": self.status,
                "error": self.error,
                "result": self.result.to_dict() if self.result else None,
                "history": list(self.history),
            }
        )


def _to_config(request: RunRequest) -> ProjectConfig:
    return ProjectConfig(
        name=request.name,
        description=None,
        settings=RunSettings(
            max_concurrency=request.max_concurrency,
            per_task_timeout_ms=request.per_task_timeout_ms,
        ),
        tasks=[
            TaskSpec(
                id=item.id,
                capability=item.capability,
                depends_on=list(item.depends_on),
                input=item.input,
                timeout_ms=item.timeout_ms,
                description=item.description,
            )
            for item in request.tasks
        ],
        worker_specs={},
    )


def _execute(state: RunState) -> None:
    def listener(task: Task) -> None:
        state.history.append({"type": "status", "task_id": task.id, "status": task.state.value})

    try:
        state.result = state.orchestrator.run(listener=listener)
    except Exception as exc:
        logger.exception("Run for %s failed", state.orchestrator.config.name)
        state.error = str(exc)
        return
    state.history.append({"type": "complete", "status": state.result.status.value})


def create_app(registry: Optional[WorkerRegistry] = None) -> FastAPI:
    if registry is None:
        registry = WorkerRegistry()
        registry.discover_entrypoints()
        register_builtin_workers(registry)

    app = FastAPI(title="Relay Orchestrator")
    runs: Dict[str, RunState] = {}
    app.state.registry = registry
    app.state.runs = runs

    def _get_run(run_id: str) -> RunState:
        try:
            return runs[run_id]
        except KeyError as exc:
            raise HTTPException(status_code=404, detail=f"Unknown run '{run_id}'") from exc

    @app.get("/api/workers")
    async def list_workers() -> Dict[str, Any]:
        return {"capabilities": registry.capabilities()}

    @app.post("/api/runs")
    async def start_run(request: RunRequest) -> Dict[str, Any]:
        try:
            orchestrator = Orchestrator(_to_config(request), registry=registry)
        except (ConfigError, GraphError) as exc:
            raise HTTPException(status_code=422, detail=str(exc)) from exc
        run_id = uuid.uuid4().hex
        state = RunState(orchestrator=orchestrator)
        runs[run_id] = state
        logger.info("Accepted run %s (%d tasks)", run_id, len(orchestrator.graph))
        if request.wait:
            await asyncio.to_thread(_execute, state)
        else:
            state.task = asyncio.create_task(asyncio.to_thread(_execute, state))
        return state.to_dict(run_id)

    @app.get("/api/runs/{run_id}")
    async def get_run(run_id: str) -> Dict[str, Any]:
        return _get_run(run_id).to_dict(run_id)

    @app.post("/api/runs/{run_id}/cancel")
    async def cancel_run(run_id: str) -> Dict[str, Any]:
        state = _get_run(run_id)
        state.orchestrator.cancel()
        return {"run_id": run_id, "cancel_requested": True}

    return app


app = create_app()
