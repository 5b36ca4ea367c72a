"""signflow: multi-party signature workflows for clinical documents."""

from .catalog import WorkflowCatalog, default_catalog, load_catalog
from .contracts import (
    ActorContext,
    AuditAction,
    CompletionCriteria,
    InstanceMetadata,
    InstanceStatus,
    Priority,
    Role,
    WitnessInput,
    WorkflowConfiguration,
    WorkflowInstance,
    WorkflowStep,
)
from .engine import WorkflowEngine, build_engine
from .monitor import EscalationMonitor
from .persistence import get_store
from .transports import get_transport

__version__ = "0.1.0"
__all__ = [
    "ActorContext",
    "AuditAction",
    "CompletionCriteria",
    "EscalationMonitor",
    "InstanceMetadata",
    "InstanceStatus",
    "Priority",
    "Role",
    "WitnessInput",
    "WorkflowCatalog",
    "WorkflowConfiguration",
    "WorkflowEngine",
    "WorkflowInstance",
    "WorkflowStep",
    "build_engine",
    "default_catalog",
    "get_store",
    "get_transport",
    "load_catalog",
]
