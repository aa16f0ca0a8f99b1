"""Configuration helpers for relay projects."""

from __future__ import annotations

import importlib
import pathlib
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, MutableMapping, Optional

import yaml

from .errors import ConfigError


def _optional_positive_int(value: Any, key: str) -> Optional[int]:
    if value is None:
        return None
    if isinstance(value, bool):
        raise ConfigError(f"'{key}' must be an integer, got {value!r}")
    try:
        number = int(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"'{key}' must be an integer, got {value!r}") from exc
    if number < 1:
        raise ConfigError(f"'{key}' must be >= 1, got {number}")
    return number


@dataclass
class RunSettings:
    """Scheduler parameters for a run.

    ``max_concurrency`` of ``None`` means every ready task of a round is
    dispatched at once.
    """

    max_concurrency: Optional[int] = 1
    per_task_timeout_ms: Optional[int] = None

    def __post_init__(self) -> None:
        self.max_concurrency = _optional_positive_int(self.max_concurrency, "max_concurrency")
        self.per_task_timeout_ms = _optional_positive_int(
            self.per_task_timeout_ms, "per_task_timeout_ms"
        )

    @classmethod
    def from_mapping(cls, data: Optional[Mapping[str, Any]]) -> "RunSettings":
        if not data:
            return cls(max_concurrency=None)
        return cls(
            max_concurrency=data.get("max_concurrency"),
            per_task_timeout_ms=data.get("per_task_timeout_ms"),
        )


@dataclass
class WorkerSpec:
    """Configuration for a worker bound to a capability."""

    capability: str
    type: str
    args: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_mapping(cls, capability: str, data: Mapping[str, Any]) -> "WorkerSpec":
        if "type" not in data:
            raise ConfigError(f"Worker '{capability}' requires a type path")
        return cls(capability=capability, type=str(data["type"]), args=dict(data.get("args") or {}))


@dataclass
class TaskSpec:
    """Represents a task descriptor as written in the config file."""

    capability: str
    id: Optional[str] = None
    depends_on: List[str] = field(default_factory=list)
    input: Any = None
    timeout_ms: Optional[int] = None
    description: Optional[str] = None

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "TaskSpec":
        if not isinstance(data, Mapping):
            raise ConfigError(f"Task entries must be mappings, got {data!r}")
        if "capability" not in data:
            label = data.get("id", "<unnamed>")
            raise ConfigError(f"Task '{label}' is missing required key: capability")
        return cls(
            id=str(data["id"]) if data.get("id") is not None else None,
            capability=str(data["capability"]),
            depends_on=[str(dep) for dep in ensure_iterable(data.get("depends_on"))],
            input=data.get("input"),
            timeout_ms=_optional_positive_int(data.get("timeout_ms"), "timeout_ms"),
            description=data.get("description"),
        )


@dataclass
class ProjectConfig:
    """Representation of the YAML configuration."""

    name: str
    description: Optional[str]
    settings: RunSettings
    tasks: List[TaskSpec]
    worker_specs: Dict[str, WorkerSpec]

    @classmethod
    def from_file(cls, path: str | pathlib.Path) -> "ProjectConfig":
        path = pathlib.Path(path)
        if not path.exists():
            raise ConfigError(f"Config not found: {path}")
        return cls.from_yaml(path.read_text(), default_name=path.stem)

    @classmethod
    def from_yaml(cls, text: str, default_name: str = "relay-project") -> "ProjectConfig":
        try:
            data = yaml.safe_load(text)
        except yaml.YAMLError as exc:
            raise ConfigError(f"Invalid YAML: {exc}") from exc
        return cls.from_mapping(data, default_name=default_name)

    @classmethod
    def from_mapping(cls, data: Any, default_name: str = "relay-project") -> "ProjectConfig":
        if not isinstance(data, MutableMapping):
            raise ConfigError("Configuration root must be a mapping")
        tasks = [TaskSpec.from_mapping(item) for item in data.get("tasks") or []]
        if not tasks:
            raise ConfigError("At least one task must be defined")
        worker_specs = {
            str(name): WorkerSpec.from_mapping(str(name), info or {})
            for name, info in (data.get("workers") or {}).items()
        }
        return cls(
            name=data.get("name", default_name),
            description=data.get("description"),
            settings=RunSettings.from_mapping(data.get("settings")),
            tasks=tasks,
            worker_specs=worker_specs,
        )


def import_string(path: str) -> Any:
    """Return attribute from module specified by path "module:qualname"."""

    if ":" not in path:
        raise ConfigError(f"Import path '{path}' must use module:qualname format")
    module_path, attr = path.split(":", 1)
    try:
        module = importlib.import_module(module_path)
    except ImportError as exc:
        raise ConfigError(f"Cannot import module '{module_path}': {exc}") from exc
    try:
        return getattr(module, attr)
    except AttributeError as exc:
        raise ConfigError(f"Module '{module_path}' has no attribute '{attr}'") from exc


def instantiate_from_path(path: str, *args: Any, **kwargs: Any) -> Any:
    """Import and instantiate a class given its dotted path."""

    cls = import_string(path)
    return cls(*args, **kwargs)


def ensure_iterable(value: Any) -> Iterable[Any]:
    if value is None:
        return []
    if isinstance(value, (list, tuple, set)):
        return value
    return [value]
