"""In-memory implementation of the instance store."""

from __future__ import annotations

import threading
from typing import Dict

from ..contracts import WorkflowInstance
from ..errors import InstanceNotFound, VersionConflict
from .repository import InstanceStore


class InMemoryInstanceStore(InstanceStore):
    """Store workflow instances in local memory.

    Useful for tests or when no database is configured. Data is not
    persisted across process restarts.
    """

    def __init__(self) -> None:
        self._instances: Dict[str, WorkflowInstance] = {}
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    async def create(self, instance: WorkflowInstance) -> WorkflowInstance:
        stored = instance.model_copy(deep=True, update={"version": 1})
        with self._lock:
            if stored.id in self._instances:
                raise VersionConflict(stored.id, 0, self._instances[stored.id].version)
            self._instances[stored.id] = stored
        return stored.model_copy(deep=True)

    async def get(self, instance_id: str) -> WorkflowInstance | None:
        with self._lock:
            stored = self._instances.get(instance_id)
            return stored.model_copy(deep=True) if stored else None

    async def put(
        self, instance_id: str, instance: WorkflowInstance, expected_version: int
    ) -> WorkflowInstance:
        with self._lock:
            current = self._instances.get(instance_id)
            if current is None:
                raise InstanceNotFound(instance_id)
            if current.version != expected_version:
                raise VersionConflict(instance_id, expected_version, current.version)
            stored = instance.model_copy(deep=True, update={"version": expected_version + 1})
            self._instances[instance_id] = stored
        return stored.model_copy(deep=True)

    async def list_instances(self) -> list[WorkflowInstance]:
        with self._lock:
            return [wf.model_copy(deep=True) for wf in self._instances.values()]
