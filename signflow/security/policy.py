"""Role-based permission evaluation for workflow steps.

The evaluator is pure: it answers from the actor role and the step template
only. Whether a step is currently pending is checked by the engine.
"""

from __future__ import annotations

from enum import Enum
from types import MappingProxyType
from typing import Mapping

from ..contracts import Role, WorkflowStep
from ..errors import InvalidConfiguration


class Capability(str, Enum):
    SIGN_ANY_STEP = "sign_any_step"
    CANCEL_WORKFLOW = "cancel_workflow"
    ESCALATE_WORKFLOW = "escalate_workflow"
    RESOLVE_ESCALATION = "resolve_escalation"


ROLE_CAPABILITIES: Mapping[Role, frozenset[Capability]] = MappingProxyType(
    {
        Role.ADMIN: frozenset(Capability),
        Role.SUPERVISOR: frozenset(
            {
                Capability.CANCEL_WORKFLOW,
                Capability.ESCALATE_WORKFLOW,
                Capability.RESOLVE_ESCALATION,
            }
        ),
        Role.SYSTEM: frozenset({Capability.ESCALATE_WORKFLOW}),
    }
)


def validate_capability_table(table: Mapping[object, object]) -> None:
    """Reject tables with unknown roles/capabilities or orphaned capabilities."""
    granted: set[Capability] = set()
    for role, capabilities in table.items():
        if not isinstance(role, Role):
            raise InvalidConfiguration(f"Unknown role in capability table: {role!r}")
        for capability in capabilities:  # type: ignore[attr-defined]
            if not isinstance(capability, Capability):
                raise InvalidConfiguration(
                    f"Unknown capability {capability!r} granted to {role.value}"
                )
            granted.add(capability)
    orphaned = set(Capability) - granted
    if orphaned:
        names = ", ".join(sorted(c.value for c in orphaned))
        raise InvalidConfiguration(f"Capabilities granted to no role: {names}")


class PermissionEvaluator:
    """Maps an actor role and a step to allowed/denied."""

    def __init__(self, table: Mapping[Role, frozenset[Capability]] = ROLE_CAPABILITIES) -> None:
        validate_capability_table(table)
        self._table = MappingProxyType(dict(table))

    def has(self, role: Role, capability: Capability) -> bool:
        return capability in self._table.get(role, frozenset())

    def can_act_on_step(self, role: Role, step: WorkflowStep) -> bool:
        return role == step.signer_role or self.has(role, Capability.SIGN_ANY_STEP)

    def can_witness(self, role: Role, step: WorkflowStep) -> bool:
        if step.witness_role is None:
            return True
        return role == step.witness_role or self.has(role, Capability.SIGN_ANY_STEP)

    def can_cancel(self, role: Role) -> bool:
        return self.has(role, Capability.CANCEL_WORKFLOW)

    def can_escalate(self, role: Role) -> bool:
        return self.has(role, Capability.ESCALATE_WORKFLOW)

    def can_resolve(self, role: Role) -> bool:
        return self.has(role, Capability.RESOLVE_ESCALATION)
