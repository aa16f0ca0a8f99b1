"""Built-in workers for drills, demos and simple handoff pipelines."""

from __future__ import annotations

import json
import time
from typing import Any, Dict, Iterable, List, Mapping

import yaml

from .base import Worker
from .registry import WorkerRegistry


def _load_structured(value: Any) -> Any:
    if not isinstance(value, str):
        return value
    try:
        return json.loads(value)
    except json.JSONDecodeError:
        try:
            return yaml.safe_load(value)
        except yaml.YAMLError:
            return value


def _select_upstream(payload: Any, context: Mapping[str, Any]) -> Dict[str, Any]:
    sources = payload.get("from") if isinstance(payload, Mapping) else None
    if not sources:
        return dict(context)
    if isinstance(sources, str):
        sources = [sources]
    missing = [task_id for task_id in sources if task_id not in context]
    if missing:
        raise ValueError(f"No handoff output for: {', '.join(missing)}")
    return {task_id: context[task_id] for task_id in sources}


class EchoWorker(Worker):
    """Returns its input unchanged."""

    def execute(self, input: Any, context: Mapping[str, Any]) -> Any:
        return input


class StaticWorker(Worker):
    """Returns the ``value`` it was configured with, ignoring input."""

    def execute(self, input: Any, context: Mapping[str, Any]) -> Any:
        return self.config.get("value")


class FailWorker(Worker):
    """Always raises; useful to rehearse failure propagation."""

    def execute(self, input: Any, context: Mapping[str, Any]) -> Any:
        message = self.config.get("message") or (input if isinstance(input, str) else None)
        raise RuntimeError(message or f"{self.name} failed on purpose")


class SleepWorker(Worker):
    """Sleeps ``seconds`` then returns ``value`` (or the input)."""

    def execute(self, input: Any, context: Mapping[str, Any]) -> Any:
        payload = _load_structured(input)
        if isinstance(payload, Mapping):
            seconds = float(payload.get("seconds", self.config.get("seconds", 0)))
            value = payload.get("value", payload)
        else:
            seconds = float(payload if payload is not None else self.config.get("seconds", 0))
            value = input
        time.sleep(seconds)
        return value


class MergeWorker(Worker):
    """Merges mapping outputs of upstream tasks into one mapping.

    Later completions override earlier keys. Non-mapping outputs are kept
    under their task id.
    """

    def execute(self, input: Any, context: Mapping[str, Any]) -> Any:
        merged: Dict[str, Any] = {}
        for task_id, output in _select_upstream(_load_structured(input), context).items():
            if isinstance(output, Mapping):
                merged.update(output)
            else:
                merged[task_id] = output
        return merged


class HandoffWorker(Worker):
    """Produces a structured handoff document for a specialist role.

    Configure with ``role`` and optionally ``format: markdown`` to get the
    document rendered as text instead of a mapping.
    """

    def execute(self, input: Any, context: Mapping[str, Any]) -> Any:
        payload = _load_structured(input)
        upstream = _select_upstream(payload, context)
        summary = payload.get("summary") if isinstance(payload, Mapping) else payload
        document = {
            "role": self.config.get("role", self.name),
            "summary": summary,
            "inputs": payload,
            "upstream": upstream,
        }
        if self.config.get("format") == "markdown":
            return render_handoff_markdown(document)
        return document


def render_handoff_markdown(document: Mapping[str, Any]) -> str:
    lines: List[str] = [f"## Handoff from {document.get('role')}", ""]
    if document.get("summary"):
        lines.extend([str(document["summary"]), ""])
    upstream = document.get("upstream") or {}
    if upstream:
        lines.append("### Upstream context")
        for task_id, output in upstream.items():
            lines.append(f"- **{task_id}**: {_inline(output)}")
    return "\n".join(lines).rstrip() + "\n"


def _inline(value: Any) -> str:
    if isinstance(value, str):
        return value.strip().splitlines()[0] if value.strip() else ""
    return json.dumps(value, default=str, sort_keys=True)


def register_builtin_workers(registry: WorkerRegistry, names: Iterable[str] | None = None) -> None:
    builtin = {
        "echo": lambda: EchoWorker(name="echo"),
        "static": lambda: StaticWorker(name="static"),
        "fail": lambda: FailWorker(name="fail"),
        "sleep": lambda: SleepWorker(name="sleep"),
        "merge": lambda: MergeWorker(name="merge"),
        "handoff": lambda: HandoffWorker(name="handoff"),
    }
    for name, factory in builtin.items():
        if names is not None and name not in names:
            continue
        if name not in registry:
            registry.register_factory(name, factory)
