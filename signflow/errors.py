"""Error kinds raised by the signflow engine and its collaborators.

Every exception exposes ``kind`` so callers can surface the specific failure
instead of a generic message.
"""

from __future__ import annotations


class SignflowError(Exception):
    """Base exception for signflow."""

    kind = "signflow_error"


# Catalog / template errors: fatal, not retryable.
class CatalogError(SignflowError):
    kind = "catalog_error"


class ConfigurationNotFound(CatalogError):
    kind = "configuration_not_found"

    def __init__(self, workflow_id: str) -> None:
        super().__init__(f"Workflow configuration not found: {workflow_id}")
        self.workflow_id = workflow_id


class InvalidConfiguration(CatalogError):
    kind = "invalid_configuration"


# Precondition violations: reported to the caller, never retried automatically.
class PreconditionError(SignflowError):
    kind = "precondition_error"


class InstanceNotFound(PreconditionError):
    kind = "instance_not_found"

    def __init__(self, instance_id: str) -> None:
        super().__init__(f"Workflow instance not found: {instance_id}")
        self.instance_id = instance_id


class InstanceTerminal(PreconditionError):
    kind = "instance_terminal"


class UnknownStep(PreconditionError):
    kind = "unknown_step"


class StepNotReady(PreconditionError):
    kind = "step_not_ready"


class PermissionDenied(PreconditionError):
    kind = "permission_denied"


class WitnessRequired(PreconditionError):
    kind = "witness_required"


class WitnessNotAllowed(PreconditionError):
    kind = "witness_not_allowed"


class EscalationHold(PreconditionError):
    kind = "escalation_hold"


class EscalationNotFound(PreconditionError):
    kind = "escalation_not_found"


# Transient errors: re-read state and retry a bounded number of times.
class TransientError(SignflowError):
    kind = "transient_error"


class ConcurrentModification(TransientError):
    kind = "concurrent_modification"


class VersionConflict(TransientError):
    """Raised by a store when ``expected_version`` no longer matches."""

    kind = "version_conflict"

    def __init__(self, instance_id: str, expected: int, actual: int | None) -> None:
        super().__init__(
            f"Version conflict on {instance_id}: expected {expected}, found {actual}"
        )
        self.instance_id = instance_id
        self.expected = expected
        self.actual = actual


# Collaborator failures.
class SigningFailed(SignflowError):
    kind = "signing_failed"


class StoreUnavailable(SignflowError):
    kind = "store_unavailable"


class TransportUnavailable(SignflowError):
    kind = "transport_unavailable"
