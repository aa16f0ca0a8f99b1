"""Registry that maps capability names to workers."""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from importlib.metadata import entry_points
from typing import Any, Callable, Dict, Iterator, List, Union

from ..config import WorkerSpec, instantiate_from_path
from ..errors import RegistryFrozenError, UnknownCapabilityError
from .base import FunctionWorker, Worker, WorkerFunction

logger = logging.getLogger(__name__)

WorkerFactory = Callable[[], Worker]
Handler = Union[Worker, WorkerFunction]


class WorkerRegistry:
    """Stores worker factories and lazily instantiates them when resolved.

    The scheduler freezes the registry for the duration of a run, so the
    capability table cannot change under an execution.
    """

    def __init__(self) -> None:
        self._factories: Dict[str, WorkerFactory] = {}
        self._instances: Dict[str, Worker] = {}
        self._lock = threading.RLock()
        self._freeze_depth = 0

    @property
    def frozen(self) -> bool:
        return self._freeze_depth > 0

    @contextmanager
    def freeze(self) -> Iterator["WorkerRegistry"]:
        with self._lock:
            self._freeze_depth += 1
        try:
            yield self
        finally:
            with self._lock:
                self._freeze_depth -= 1

    def _check_writable(self, capability: str) -> None:
        if self.frozen:
            raise RegistryFrozenError(capability)

    def register(self, capability: str, handler: Handler, *, overwrite: bool = False) -> None:
        with self._lock:
            self._check_writable(capability)
            if capability in self and not overwrite:
                raise ValueError(f"Worker {capability} already registered")
            if not isinstance(handler, Worker):
                if not callable(handler):
                    raise TypeError(f"Worker '{capability}' must be a Worker or a callable")
                handler = FunctionWorker(capability, handler)
            self._factories.pop(capability, None)
            self._instances[capability] = handler

    def register_factory(
        self, capability: str, factory: WorkerFactory, *, overwrite: bool = False
    ) -> None:
        with self._lock:
            self._check_writable(capability)
            if capability in self and not overwrite:
                raise ValueError(f"Worker factory {capability} already registered")
            self._instances.pop(capability, None)
            self._factories[capability] = factory

    def register_from_spec(self, spec: WorkerSpec) -> None:
        def factory() -> Worker:
            instance = instantiate_from_path(spec.type, name=spec.capability, **spec.args)
            if not isinstance(instance, Worker):
                raise TypeError(f"Worker '{spec.capability}' must inherit Worker")
            return instance

        self.register_factory(spec.capability, factory, overwrite=True)

    def configure_from_specs(self, specs: Dict[str, WorkerSpec]) -> None:
        for spec in specs.values():
            self.register_from_spec(spec)

    def discover_entrypoints(self, group: str = "relay.workers") -> None:
        """Register workers published by installed packages.

        Entry points in the ``relay.workers`` group point to either a Worker
        subclass or a plain ``fn(input, context)`` callable. The entry point
        name becomes the capability. Capabilities already registered win.
        """
        for ep in entry_points(group=group):
            if ep.name in self:
                logger.debug("Entry point %s shadowed by an existing worker", ep.name)
                continue
            self.register_factory(ep.name, _entrypoint_factory(ep))

    def resolve(self, capability: str) -> Worker:
        with self._lock:
            if capability in self._instances:
                return self._instances[capability]
            if capability not in self._factories:
                raise UnknownCapabilityError(capability)
            instance = self._factories[capability]()
            self._instances[capability] = instance
            return instance

    def __contains__(self, capability: object) -> bool:
        return capability in self._instances or capability in self._factories

    def capabilities(self) -> List[str]:
        return sorted(set(self._instances) | set(self._factories))

    def available(self) -> Dict[str, Worker]:
        return {capability: self.resolve(capability) for capability in self.capabilities()}


def _entrypoint_factory(ep: Any) -> WorkerFactory:
    def factory() -> Worker:
        target = ep.load()
        if isinstance(target, type) and issubclass(target, Worker):
            return target(name=ep.name)
        if callable(target):
            return FunctionWorker(ep.name, target)
        raise TypeError(f"Entry point {ep.name} did not produce a Worker")

    return factory
