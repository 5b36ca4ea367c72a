"""Read-only lookup of workflow templates."""

from __future__ import annotations

import logging
from pathlib import Path
from types import MappingProxyType
from typing import Iterable, Mapping

import yaml
from pydantic import ValidationError

from ..contracts import WorkflowConfiguration
from ..errors import ConfigurationNotFound, InvalidConfiguration

logger = logging.getLogger(__name__)


def check_configuration(config: WorkflowConfiguration) -> None:
    """Raise :class:`InvalidConfiguration` when ``config`` breaks a template invariant."""
    if not config.steps:
        raise InvalidConfiguration(f"Workflow '{config.id}' defines no steps")

    seen: set[str] = set()
    for step in config.steps:
        if step.id in seen:
            raise InvalidConfiguration(
                f"Workflow '{config.id}' has duplicate step id '{step.id}'"
            )
        seen.add(step.id)
        if step.timeout is not None and step.timeout.total_seconds() <= 0:
            raise InvalidConfiguration(
                f"Step '{step.id}' of workflow '{config.id}' has a non-positive timeout"
            )
        if step.witness_role is not None and not step.witness_required:
            raise InvalidConfiguration(
                f"Step '{step.id}' names a witness role but does not require a witness"
            )

    unknown = set(config.completion_criteria.critical_steps_required) - seen
    if unknown:
        raise InvalidConfiguration(
            f"Workflow '{config.id}' marks unknown steps as critical: {', '.join(sorted(unknown))}"
        )


class WorkflowCatalog:
    """Holds immutable workflow configurations keyed by id."""

    def __init__(self, configurations: Iterable[WorkflowConfiguration] = ()) -> None:
        entries: dict[str, WorkflowConfiguration] = {}
        for config in configurations:
            check_configuration(config)
            if config.id in entries:
                raise InvalidConfiguration(f"Duplicate workflow id '{config.id}'")
            entries[config.id] = config
        self._entries: Mapping[str, WorkflowConfiguration] = MappingProxyType(entries)

    def get(self, workflow_id: str) -> WorkflowConfiguration:
        try:
            return self._entries[workflow_id]
        except KeyError:
            raise ConfigurationNotFound(workflow_id) from None

    def configurations(self) -> list[WorkflowConfiguration]:
        return sorted(self._entries.values(), key=lambda c: c.id)

    def __contains__(self, workflow_id: object) -> bool:
        return workflow_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    @classmethod
    def from_yaml(cls, path: str | Path) -> "WorkflowCatalog":
        """Load templates from a YAML document with a top-level ``workflows`` list."""
        path = Path(path)
        with path.open("r", encoding="utf-8") as f:
            try:
                data = yaml.safe_load(f) or {}
            except yaml.YAMLError as exc:
                raise InvalidConfiguration(f"Malformed workflow catalog {path}: {exc}") from exc
        raw = data.get("workflows", []) if isinstance(data, dict) else data
        if not isinstance(raw, list):
            raise InvalidConfiguration(f"Invalid workflow catalog {path}: expected a list of workflows")
        try:
            configs = [WorkflowConfiguration.model_validate(item) for item in raw]
        except ValidationError as exc:
            raise InvalidConfiguration(f"Invalid workflow catalog {path}: {exc}") from exc
        logger.info(f"Loaded {len(configs)} workflow configurations from {path}")
        return cls(configs)
