"""Core data contracts for the signflow signature workflow engine."""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


class Role(str, Enum):
    """Platform roles an actor can hold."""

    ADMIN = "admin"
    SUPERVISOR = "supervisor"
    PHYSICIAN = "physician"
    REGISTERED_NURSE = "registered_nurse"
    NURSE = "nurse"
    PHARMACIST = "pharmacist"
    DIETICIAN = "dietician"
    THERAPIST = "therapist"
    COORDINATOR = "coordinator"
    PATIENT = "patient"
    WITNESS = "witness"
    SYSTEM = "system"


class InstanceStatus(str, Enum):
    CREATED = "created"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    ESCALATED = "escalated"

    @property
    def is_terminal(self) -> bool:
        return self in (InstanceStatus.COMPLETED, InstanceStatus.CANCELLED)


class AuditAction(str, Enum):
    STARTED = "started"
    STEP_COMPLETED = "step_completed"
    CANCELLED = "cancelled"
    ESCALATED = "escalated"
    ESCALATION_RESOLVED = "escalation_resolved"


class Priority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


# ----------------------------------------------------------------------
# Templates


class WorkflowStep(BaseModel):
    """One signature step of a workflow template.

    Steps sharing an ``order`` form a wave and may be signed in any relative
    sequence. A step is eligible once every step with a lower order is done.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    name: str = ""
    description: Optional[str] = None
    signer_role: Role
    required: bool = True
    order: int = 1
    witness_required: bool = False
    witness_role: Optional[Role] = None
    timeout: Optional[timedelta] = Field(
        default=None, description="Time after the last instance update before auto escalation"
    )
    escalate_to: Optional[Role] = None


class CompletionCriteria(BaseModel):
    model_config = ConfigDict(frozen=True)

    all_steps_required: bool = True
    critical_steps_required: frozenset[str] = Field(default_factory=frozenset)


class WorkflowConfiguration(BaseModel):
    """Immutable workflow template."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    description: Optional[str] = None
    form_type: Optional[str] = None
    steps: tuple[WorkflowStep, ...] = ()
    completion_criteria: CompletionCriteria = Field(default_factory=CompletionCriteria)
    hard_stop_on_escalation: bool = False

    def step(self, step_id: str) -> Optional[WorkflowStep]:
        """Return the step named ``step_id`` or ``None``."""
        return next((s for s in self.steps if s.id == step_id), None)

    @property
    def step_ids(self) -> list[str]:
        return [s.id for s in self.steps]


# ----------------------------------------------------------------------
# Actors


class ActorContext(BaseModel):
    """Identity of the caller, supplied by the authentication layer."""

    user_id: str
    name: str
    role: Role


class WitnessInput(BaseModel):
    actor: ActorContext
    signature_data: Any = None


# ----------------------------------------------------------------------
# Instance state


class InstanceMetadata(BaseModel):
    patient_id: Optional[str] = None
    episode_id: Optional[str] = None
    priority: Priority = Priority.MEDIUM
    due_date: Optional[datetime] = None
    tags: List[str] = Field(default_factory=list)
    form_type: Optional[str] = None
    form_data: Dict[str, Any] = Field(default_factory=dict)


class WorkflowSignature(BaseModel):
    """Signature recorded against a completed step."""

    step_id: str
    signature_id: str = Field(..., description="Reference returned by the signature adapter")
    algorithm: Optional[str] = None
    payload_digest: Optional[str] = None
    signer_user_id: str
    signer_name: str
    signer_role: Role
    signature_data: Any = None
    timestamp: datetime
    witness_signature: Optional["WorkflowSignature"] = None


class AuditEvent(BaseModel):
    id: str = Field(default_factory=new_id)
    timestamp: datetime = Field(default_factory=utcnow)
    action: AuditAction
    user_id: str
    user_name: str
    user_role: Role
    details: Dict[str, Any] = Field(default_factory=dict)


class WorkflowEscalation(BaseModel):
    id: str = Field(default_factory=new_id)
    step_id: str
    escalated_to: Optional[Role] = None
    escalated_by: str
    reason: str
    timestamp: datetime = Field(default_factory=utcnow)
    resolved: bool = False
    resolved_at: Optional[datetime] = None
    resolved_by: Optional[str] = None


class WorkflowInstance(BaseModel):
    """One running execution of a configuration against a document."""

    id: str = Field(default_factory=new_id)
    workflow_id: str
    document_id: str
    status: InstanceStatus = InstanceStatus.CREATED
    completed_steps: List[str] = Field(default_factory=list)
    pending_steps: List[str] = Field(default_factory=list)
    signatures: List[WorkflowSignature] = Field(default_factory=list)
    audit_trail: List[AuditEvent] = Field(default_factory=list)
    escalations: List[WorkflowEscalation] = Field(default_factory=list)
    metadata: InstanceMetadata = Field(default_factory=InstanceMetadata)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    completed_at: Optional[datetime] = None
    version: int = 0

    def open_escalations(self, step_id: Optional[str] = None) -> list[WorkflowEscalation]:
        """Return unresolved escalations, optionally for a single step."""
        return [
            e
            for e in self.escalations
            if not e.resolved and (step_id is None or e.step_id == step_id)
        ]

    def to_json(self) -> str:
        return self.model_dump_json()

    @classmethod
    def from_json(cls, data: str) -> "WorkflowInstance":
        return cls.model_validate_json(data)


# ----------------------------------------------------------------------
# Derived views


class WorkflowProgress(BaseModel):
    total_steps: int
    completed_count: int
    pending_count: int
    progress_percentage: float
    next_steps: List[WorkflowStep] = Field(default_factory=list)


class CompletionReport(BaseModel):
    is_complete: bool
    missing_steps: List[str] = Field(default_factory=list)
    errors: List[str] = Field(default_factory=list)


class WorkflowNotification(BaseModel):
    """Pushed to subscribers after every applied mutation."""

    message_id: str = Field(default_factory=new_id)
    instance_id: str
    workflow_id: str
    action: AuditAction
    status: InstanceStatus
    pending_steps: List[str] = Field(default_factory=list)
    timestamp: datetime = Field(default_factory=utcnow)

    def to_json(self) -> str:
        return self.model_dump_json()

    @classmethod
    def from_json(cls, data: str) -> "WorkflowNotification":
        return cls.model_validate_json(data)
