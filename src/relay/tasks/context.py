"""Write-once store of completed task outputs passed forward to dependents."""

from __future__ import annotations

import threading
from types import MappingProxyType
from typing import Any, Dict, List, Mapping

from ..errors import HandoffConflictError, HandoffNotFoundError


class HandoffContext:
    """Outputs of completed tasks in completion order.

    Workers receive a :meth:`snapshot` taken at dispatch time, so outputs
    recorded later in the same round are invisible to them.
    """

    def __init__(self) -> None:
        self._entries: Dict[str, Any] = {}
        self._lock = threading.Lock()

    def record(self, task_id: str, output: Any) -> None:
        with self._lock:
            if task_id in self._entries:
                raise HandoffConflictError(task_id)
            self._entries[task_id] = output

    def get(self, task_id: str) -> Any:
        try:
            return self._entries[task_id]
        except KeyError as exc:
            raise HandoffNotFoundError(task_id) from exc

    def snapshot(self) -> Mapping[str, Any]:
        with self._lock:
            return MappingProxyType(dict(self._entries))

    def keys(self) -> List[str]:
        return list(self._entries)

    def __contains__(self, task_id: object) -> bool:
        return task_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)
