"""Workflow template catalog."""

from __future__ import annotations

from typing import Optional

from ..config import SignflowConfig, load_config
from .catalog import WorkflowCatalog, check_configuration
from .templates import BUILTIN_WORKFLOWS


def default_catalog() -> WorkflowCatalog:
    """Catalog holding the built-in clinical workflows."""
    return WorkflowCatalog(BUILTIN_WORKFLOWS)


def load_catalog(config: Optional[SignflowConfig] = None) -> WorkflowCatalog:
    """Load the catalog named by configuration, or the built-in one."""
    config = config or load_config()
    if config.catalog_path:
        return WorkflowCatalog.from_yaml(config.catalog_path)
    return default_catalog()


__all__ = [
    "BUILTIN_WORKFLOWS",
    "WorkflowCatalog",
    "check_configuration",
    "default_catalog",
    "load_catalog",
]
