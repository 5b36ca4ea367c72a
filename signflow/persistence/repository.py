"""Store abstraction for workflow instance persistence."""

from __future__ import annotations

from typing import Protocol

from ..contracts import WorkflowInstance


class InstanceStore(Protocol):
    """Protocol for workflow instance persistence backends.

    Stores own the ``version`` field. ``create`` persists version 1 and every
    successful ``put`` increments it; writers must pass the version they read.
    """

    async def create(self, instance: WorkflowInstance) -> WorkflowInstance:
        """Persist a new instance and return the stored copy."""

    async def get(self, instance_id: str) -> WorkflowInstance | None:
        """Return a private copy of the instance, or ``None``."""

    async def put(
        self, instance_id: str, instance: WorkflowInstance, expected_version: int
    ) -> WorkflowInstance:
        """Replace the instance if its stored version equals ``expected_version``.

        Raises:
            VersionConflict: another writer updated the instance first.
            InstanceNotFound: no instance with ``instance_id`` exists.
        """

    async def list_instances(self) -> list[WorkflowInstance]:
        """Return all persisted instances."""
