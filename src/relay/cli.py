"""Command line interface for relay."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Dict, Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.progress import Progress, SpinnerColumn, TaskID, TextColumn
from rich.table import Table

from .config import ProjectConfig, RunSettings
from .errors import ConfigError, GraphError
from .orchestrator import Orchestrator
from .tasks.base import RunResult, Task, TaskState
from .workers.builtin import register_builtin_workers
from .workers.registry import WorkerRegistry

app = typer.Typer(help="Dependency-aware task orchestration")
console = Console()

_STATUS_STYLE = {
    TaskState.PENDING: "[yellow]pending",
    TaskState.READY: "[blue]ready",
    TaskState.RUNNING: "[cyan]running...",
    TaskState.COMPLETED: "[green]completed",
    TaskState.FAILED: "[red]failed",
    TaskState.SKIPPED: "[magenta]skipped",
}


def _configure_logging(verbose: bool) -> None:
    if not verbose:
        return
    logging.basicConfig(
        level=logging.INFO,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_path=False)],
        force=True,
    )


def _load(
    config_path: Path,
    max_concurrency: Optional[int] = None,
    unbounded: bool = False,
    timeout_ms: Optional[int] = None,
) -> Orchestrator:
    try:
        config = ProjectConfig.from_file(config_path)
        settings = RunSettings(
            max_concurrency=None if unbounded else (max_concurrency or config.settings.max_concurrency),
            per_task_timeout_ms=timeout_ms or config.settings.per_task_timeout_ms,
        )
        return Orchestrator(config, settings=settings)
    except (ConfigError, GraphError) as exc:
        console.print(f"[bold red]Error:[/] {escape(str(exc))}")
        raise typer.Exit(code=2) from exc


def _render_plan(orchestrator: Orchestrator) -> None:
    plan = Table(title="Execution Plan", show_lines=True)
    plan.add_column("Round")
    plan.add_column("Task ID")
    plan.add_column("Capability")
    plan.add_column("Depends on")
    for number, level in enumerate(orchestrator.plan(), start=1):
        for task_id in level:
            task = orchestrator.graph[task_id]
            plan.add_row(str(number), task.id, task.capability, ", ".join(task.depends_on) or "-")
    console.print(plan)


def _format_output(value: object) -> str:
    if isinstance(value, str):
        return value
    return json.dumps(value, indent=2, default=str)


def _render_result(result: RunResult) -> None:
    table = Table(title="Task outcomes", show_lines=True)
    table.add_column("Task ID")
    table.add_column("State")
    table.add_column("Output / error")
    for record in result.records:
        if record.final_state is TaskState.COMPLETED:
            detail = _format_output(record.output)
        elif record.final_state is TaskState.FAILED:
            detail = str(record.error)
        else:
            detail = record.skip_reason or ""
        table.add_row(escape(record.id), _STATUS_STYLE[record.final_state], escape(detail))
    console.print(table)
    colour = "green" if result.ok else "red"
    console.print(f"[bold {colour}]{result.status.value}[/] in {result.rounds} round(s)")


@app.command()
def run(
    config_path: Path = typer.Argument(..., help="Path to YAML configuration"),
    max_concurrency: Optional[int] = typer.Option(
        None, "--max-concurrency", "-k", min=1, help="Override settings.max_concurrency"
    ),
    unbounded: bool = typer.Option(False, "--unbounded", help="Dispatch every ready task at once"),
    timeout_ms: Optional[int] = typer.Option(
        None, "--timeout-ms", min=1, help="Override settings.per_task_timeout_ms"
    ),
    as_json: bool = typer.Option(False, "--json", help="Print the run result as JSON"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log scheduler activity"),
) -> None:
    """Execute the task graph described in the given config file."""

    _configure_logging(verbose)
    orchestrator = _load(config_path, max_concurrency, unbounded, timeout_ms)

    if as_json:
        result = orchestrator.run()
        typer.echo(json.dumps(result.to_dict(), indent=2, default=str))
    else:
        console.print(f"[bold green]Running project[/] {orchestrator.config.name}")
        _render_plan(orchestrator)
        progress = Progress(
            SpinnerColumn(style="cyan"),
            TextColumn("[progress.description]{task.description}"),
            TextColumn("{task.fields[status]}"),
            console=console,
            transient=False,
        )
        with progress:
            rows: Dict[str, TaskID] = {
                task.id: progress.add_task(
                    f"{task.id} ({task.capability})", status=_STATUS_STYLE[task.state], start=False
                )
                for task in orchestrator.tasks
            }

            def listener(task: Task) -> None:
                row = rows[task.id]
                if task.state is TaskState.RUNNING:
                    progress.start_task(row)
                progress.update(row, status=_STATUS_STYLE[task.state])

            result = orchestrator.run(listener=listener)
        _render_result(result)

    if not result.ok:
        raise typer.Exit(code=1)


@app.command()
def plan(config_path: Path = typer.Argument(..., help="Config to validate")) -> None:
    """Validate the task graph and show the rounds it would run in."""

    orchestrator = _load(config_path)
    console.print(f"[bold]Project:[/] {orchestrator.config.name}\n{orchestrator.config.description or ''}")
    _render_plan(orchestrator)
    missing = sorted(
        {task.capability for task in orchestrator.tasks if task.capability not in orchestrator.registry}
    )
    if missing:
        console.print(f"[yellow]No worker registered for:[/] {', '.join(missing)}")


@app.command()
def workers(
    config_path: Optional[Path] = typer.Argument(None, help="Config declaring extra workers"),
) -> None:
    """List the capabilities that have a registered worker."""

    if config_path is not None:
        registry = _load(config_path).registry
    else:
        registry = WorkerRegistry()
        registry.discover_entrypoints()
        register_builtin_workers(registry)
    table = Table(title="Workers")
    table.add_column("Capability")
    table.add_column("Worker")
    table.add_column("Description")
    for capability, worker in registry.available().items():
        table.add_row(capability, type(worker).__name__, worker.description.strip())
    console.print(table)


@app.command()
def serve(
    host: str = typer.Option("127.0.0.1", help="Interface to bind"),
    port: int = typer.Option(8000, help="Port to listen on"),
) -> None:
    """Serve the HTTP API for submitting runs."""

    import uvicorn

    uvicorn.run("relay.web.server:app", host=host, port=port)


if __name__ == "__main__":  # pragma: no cover
    app()
