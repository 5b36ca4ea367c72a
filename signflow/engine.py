"""Multi-party signature workflow engine.

The engine is the only component that mutates workflow instances. Every
mutating operation follows the same shape: check preconditions against the
stored instance, do any slow work (signing), re-read the latest stored
instance, re-check, apply, and write back with the version that was re-read.
A lost race surfaces as :class:`ConcurrentModification` or a precondition
error, never as a silently merged write.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Callable, Optional

from .catalog import WorkflowCatalog, check_configuration, load_catalog
from .config import SignflowConfig, load_config
from .contracts import (
    ActorContext,
    AuditAction,
    AuditEvent,
    CompletionReport,
    InstanceMetadata,
    InstanceStatus,
    Priority,
    Role,
    WitnessInput,
    WorkflowConfiguration,
    WorkflowEscalation,
    WorkflowInstance,
    WorkflowNotification,
    WorkflowProgress,
    WorkflowSignature,
    WorkflowStep,
    utcnow,
)
from .errors import (
    ConcurrentModification,
    EscalationHold,
    EscalationNotFound,
    InstanceNotFound,
    InstanceTerminal,
    PermissionDenied,
    SigningFailed,
    StepNotReady,
    UnknownStep,
    VersionConflict,
    WitnessNotAllowed,
    WitnessRequired,
)
from .persistence import InstanceStore, get_store
from .rules import evaluate_completion, initial_wave, is_overdue, next_wave, progress_for
from .security import (
    Hasher,
    JwsSignatureAdapter,
    PermissionEvaluator,
    Sha256Hasher,
    SignatureAdapter,
    SigningPayload,
    key_provider_from_config,
)
from .transports import BaseTransport, get_transport

logger = logging.getLogger(__name__)

SYSTEM_ACTOR = ActorContext(user_id="system", name="signflow", role=Role.SYSTEM)


class WorkflowEngine:
    """Drives workflow instances through their signature steps."""

    def __init__(
        self,
        catalog: WorkflowCatalog,
        store: InstanceStore,
        signer: SignatureAdapter,
        hasher: Optional[Hasher] = None,
        evaluator: Optional[PermissionEvaluator] = None,
        notifier: Optional[BaseTransport] = None,
        clock: Callable[[], datetime] = utcnow,
        system_actor: ActorContext = SYSTEM_ACTOR,
    ) -> None:
        self.catalog = catalog
        self.store = store
        self.signer = signer
        self.hasher = hasher or Sha256Hasher()
        self.evaluator = evaluator or PermissionEvaluator()
        self.notifier = notifier
        self.clock = clock
        self.system_actor = system_actor

    # ------------------------------------------------------------------
    # Instance lifecycle
    async def create_instance(
        self,
        workflow_id: str,
        document_id: str,
        metadata: Optional[InstanceMetadata] = None,
        actor: Optional[ActorContext] = None,
    ) -> WorkflowInstance:
        """Start a workflow for ``document_id`` from catalog entry ``workflow_id``."""
        config = self.catalog.get(workflow_id)
        check_configuration(config)
        actor = actor or self.system_actor
        metadata = metadata or InstanceMetadata()
        if metadata.form_type is None:
            metadata = metadata.model_copy(update={"form_type": config.form_type})

        now = self.clock()
        pending = initial_wave(config)
        instance = WorkflowInstance(
            workflow_id=workflow_id,
            document_id=document_id,
            status=InstanceStatus.IN_PROGRESS,
            pending_steps=pending,
            metadata=metadata,
            created_at=now,
            updated_at=now,
        )
        instance.audit_trail.append(
            self._audit(
                AuditAction.STARTED,
                actor,
                now,
                workflow_id=workflow_id,
                document_id=document_id,
                pending_steps=list(pending),
            )
        )
        stored = await self.store.create(instance)
        logger.info(
            f"Started workflow {workflow_id} instance={stored.id} document={document_id} pending={pending}"
        )
        await self._notify(stored, AuditAction.STARTED)
        return stored

    async def complete_step(
        self,
        instance_id: str,
        step_id: str,
        actor: ActorContext,
        signature_data: Any = None,
        witness: Optional[WitnessInput] = None,
    ) -> WorkflowInstance:
        """Sign ``step_id`` as ``actor`` and advance the instance.

        Preconditions are checked in a fixed order and each failure has its
        own error kind. All of them are checked again against the latest
        stored state after signing, so a cancellation or a competing signer
        that lands while the signature adapter is busy wins.
        """
        instance = await self._load(instance_id)
        config = self.catalog.get(instance.workflow_id)
        step = self._check_completion(instance, config, step_id, actor, witness)

        signed_at = self.clock()
        signature = await self._sign(instance, step, actor, signature_data, signed_at)
        if witness is not None:
            signature.witness_signature = await self._sign(
                instance, step, witness.actor, witness.signature_data, signed_at, witness=True
            )

        latest = await self._load(instance_id)
        self._check_completion(latest, config, step_id, actor, witness)

        now = self.clock()
        latest.completed_steps.append(step_id)
        latest.signatures.append(signature)
        latest.audit_trail.append(
            self._audit(
                AuditAction.STEP_COMPLETED,
                actor,
                now,
                step_id=step_id,
                signature_id=signature.signature_id,
                witness_user_id=witness.actor.user_id if witness else None,
            )
        )
        latest.pending_steps = next_wave(config, latest.completed_steps)
        if evaluate_completion(config, latest.completed_steps).is_complete:
            latest.status = InstanceStatus.COMPLETED
            latest.completed_at = now
        latest.updated_at = now

        stored = await self._persist(latest)
        logger.info(
            f"Step {step_id} signed by {actor.user_id} on instance={instance_id} "
            f"status={stored.status.value} pending={stored.pending_steps}"
        )
        await self._notify(stored, AuditAction.STEP_COMPLETED)
        return stored

    async def cancel(
        self, instance_id: str, actor: ActorContext, reason: str
    ) -> WorkflowInstance:
        """Cancel the instance. Cancelled instances accept no further mutation."""
        if not self.evaluator.can_cancel(actor.role):
            raise PermissionDenied(f"Role '{actor.role.value}' may not cancel workflows")
        instance = await self._load(instance_id)
        self._ensure_active(instance)

        now = self.clock()
        previous = instance.status
        instance.status = InstanceStatus.CANCELLED
        instance.updated_at = now
        instance.audit_trail.append(
            self._audit(
                AuditAction.CANCELLED,
                actor,
                now,
                reason=reason,
                previous_status=previous.value,
            )
        )
        stored = await self._persist(instance)
        logger.info(f"Cancelled instance={instance_id} by {actor.user_id}: {reason}")
        await self._notify(stored, AuditAction.CANCELLED)
        return stored

    async def escalate(
        self, instance_id: str, step_id: str, actor: ActorContext, reason: str
    ) -> WorkflowInstance:
        """Flag the pending step ``step_id`` as needing attention.

        Pending steps are left as they are; whether they stay signable is
        decided by the configuration's ``hard_stop_on_escalation``.
        """
        self._ensure_can_escalate(actor)
        instance = await self._load(instance_id)
        self._ensure_active(instance)
        config = self.catalog.get(instance.workflow_id)
        step = config.step(step_id)
        if step is None:
            raise UnknownStep(f"Step '{step_id}' is not part of workflow '{config.id}'")
        if step_id not in instance.pending_steps:
            state = "already completed" if step_id in instance.completed_steps else "not ready"
            raise StepNotReady(f"Step '{step_id}' is {state}")

        self._apply_escalation(instance, step, actor, reason, self.clock())
        stored = await self._persist(instance)
        logger.info(f"Escalated step {step_id} on instance={instance_id} by {actor.user_id}: {reason}")
        await self._notify(stored, AuditAction.ESCALATED)
        return stored

    async def escalate_overdue(
        self,
        instance_id: str,
        actor: ActorContext,
        reason: str,
        now: Optional[datetime] = None,
    ) -> tuple[WorkflowInstance, list[str]]:
        """Escalate every step of the stored instance that is overdue at ``now``.

        Overdue steps are decided from the instance as it is stored at call
        time, so a step signed or escalated since a caller's earlier read is
        left alone. All escalations land in one write. Returns the instance
        and the escalated step ids; nothing is written when none are overdue.
        """
        self._ensure_can_escalate(actor)
        now = now or self.clock()
        instance = await self._load(instance_id)
        self._ensure_active(instance)
        config = self.catalog.get(instance.workflow_id)
        steps = (config.step(step_id) for step_id in instance.pending_steps)
        overdue = [s for s in steps if s is not None and is_overdue(instance, s, now)]
        if not overdue:
            return instance, []

        applied_at = self.clock()
        for step in overdue:
            self._apply_escalation(instance, step, actor, reason, applied_at)
        stored = await self._persist(instance)
        step_ids = [s.id for s in overdue]
        logger.info(f"Escalated overdue steps {step_ids} on instance={instance_id}: {reason}")
        await self._notify(stored, AuditAction.ESCALATED)
        return stored, step_ids

    async def resolve_escalation(
        self,
        instance_id: str,
        escalation_id: str,
        actor: ActorContext,
        note: Optional[str] = None,
    ) -> WorkflowInstance:
        """Close an escalation; the instance resumes once none remain open."""
        if not self.evaluator.can_resolve(actor.role):
            raise PermissionDenied(f"Role '{actor.role.value}' may not resolve escalations")
        instance = await self._load(instance_id)
        self._ensure_active(instance)
        escalation = next(
            (e for e in instance.open_escalations() if e.id == escalation_id), None
        )
        if escalation is None:
            raise EscalationNotFound(
                f"No open escalation '{escalation_id}' on instance '{instance_id}'"
            )

        now = self.clock()
        escalation.resolved = True
        escalation.resolved_at = now
        escalation.resolved_by = actor.user_id
        if not instance.open_escalations() and instance.status == InstanceStatus.ESCALATED:
            instance.status = InstanceStatus.IN_PROGRESS
        instance.updated_at = now
        instance.audit_trail.append(
            self._audit(
                AuditAction.ESCALATION_RESOLVED,
                actor,
                now,
                escalation_id=escalation_id,
                step_id=escalation.step_id,
                note=note,
            )
        )
        stored = await self._persist(instance)
        logger.info(f"Resolved escalation {escalation_id} on instance={instance_id}")
        await self._notify(stored, AuditAction.ESCALATION_RESOLVED)
        return stored

    # ------------------------------------------------------------------
    # Queries
    async def get_instance(self, instance_id: str) -> WorkflowInstance:
        return await self._load(instance_id)

    async def list_instances(
        self,
        status: Optional[InstanceStatus] = None,
        priority: Optional[Priority] = None,
        search: Optional[str] = None,
    ) -> list[WorkflowInstance]:
        """Filter instances by status, priority and a free-text search.

        The search matches document id, form type and tags, ignoring case.
        """
        term = (search or "").strip().lower()
        result = []
        for instance in await self.store.list_instances():
            if status is not None and instance.status != status:
                continue
            if priority is not None and instance.metadata.priority != priority:
                continue
            if term and not _matches(instance, term):
                continue
            result.append(instance)
        return sorted(result, key=lambda i: i.created_at)

    async def get_progress(self, instance_id: str) -> WorkflowProgress:
        instance = await self._load(instance_id)
        config = self.catalog.get(instance.workflow_id)
        return progress_for(config, instance.completed_steps, instance.pending_steps)

    async def validate_completion(self, instance_id: str) -> CompletionReport:
        instance = await self._load(instance_id)
        config = self.catalog.get(instance.workflow_id)
        return evaluate_completion(config, instance.completed_steps)

    # ------------------------------------------------------------------
    # Internals
    async def _load(self, instance_id: str) -> WorkflowInstance:
        instance = await self.store.get(instance_id)
        if instance is None:
            raise InstanceNotFound(instance_id)
        return instance

    async def _persist(self, instance: WorkflowInstance) -> WorkflowInstance:
        try:
            return await self.store.put(instance.id, instance, expected_version=instance.version)
        except VersionConflict as exc:
            raise ConcurrentModification(
                f"Instance '{instance.id}' was modified concurrently; re-read and retry"
            ) from exc

    @staticmethod
    def _ensure_active(instance: WorkflowInstance) -> None:
        if instance.status.is_terminal:
            raise InstanceTerminal(
                f"Instance '{instance.id}' is {instance.status.value} and accepts no changes"
            )

    def _ensure_can_escalate(self, actor: ActorContext) -> None:
        if not self.evaluator.can_escalate(actor.role):
            raise PermissionDenied(f"Role '{actor.role.value}' may not escalate workflows")

    def _apply_escalation(
        self,
        instance: WorkflowInstance,
        step: WorkflowStep,
        actor: ActorContext,
        reason: str,
        now: datetime,
    ) -> None:
        escalation = WorkflowEscalation(
            step_id=step.id,
            escalated_to=step.escalate_to,
            escalated_by=actor.user_id,
            reason=reason,
            timestamp=now,
        )
        instance.escalations.append(escalation)
        instance.status = InstanceStatus.ESCALATED
        instance.updated_at = now
        instance.audit_trail.append(
            self._audit(
                AuditAction.ESCALATED,
                actor,
                now,
                step_id=step.id,
                reason=reason,
                escalation_id=escalation.id,
                escalated_to=step.escalate_to.value if step.escalate_to else None,
            )
        )

    def _check_completion(
        self,
        instance: WorkflowInstance,
        config: WorkflowConfiguration,
        step_id: str,
        actor: ActorContext,
        witness: Optional[WitnessInput],
    ) -> WorkflowStep:
        self._ensure_active(instance)
        if config.hard_stop_on_escalation and instance.status == InstanceStatus.ESCALATED:
            raise EscalationHold(
                f"Instance '{instance.id}' is escalated and workflow '{config.id}' halts on escalation"
            )

        step = config.step(step_id)
        if step is None:
            raise UnknownStep(f"Step '{step_id}' is not part of workflow '{config.id}'")
        if not self.evaluator.can_act_on_step(actor.role, step):
            raise PermissionDenied(
                f"Role '{actor.role.value}' may not sign step '{step_id}' "
                f"(requires '{step.signer_role.value}')"
            )
        if step_id not in instance.pending_steps:
            state = "already completed" if step_id in instance.completed_steps else "not ready"
            raise StepNotReady(f"Step '{step_id}' is {state}")

        if step.witness_required and witness is None:
            raise WitnessRequired(f"Step '{step_id}' requires a witness signature")
        if not step.witness_required and witness is not None:
            raise WitnessNotAllowed(f"Step '{step_id}' does not take a witness signature")
        if witness is not None and not self.evaluator.can_witness(witness.actor.role, step):
            raise PermissionDenied(
                f"Role '{witness.actor.role.value}' may not witness step '{step_id}'"
            )
        return step

    async def _sign(
        self,
        instance: WorkflowInstance,
        step: WorkflowStep,
        actor: ActorContext,
        signature_data: Any,
        timestamp: datetime,
        witness: bool = False,
    ) -> WorkflowSignature:
        payload = SigningPayload(
            instance_id=instance.id,
            step_id=step.id,
            document_id=instance.document_id,
            timestamp=timestamp,
            signer_user_id=actor.user_id,
            witness=witness,
        )
        payload.digest = self.hasher.digest(payload.canonical_bytes())
        try:
            record = await self.signer.sign(payload)
        except SigningFailed:
            logger.warning(f"Signing failed for step {step.id} on instance={instance.id}")
            raise
        except Exception as exc:
            logger.warning(f"Signature adapter error for step {step.id} on instance={instance.id}: {exc}")
            raise SigningFailed(f"Signature adapter error: {exc}") from exc

        return WorkflowSignature(
            step_id=step.id,
            signature_id=record.signature_id,
            algorithm=record.algorithm,
            payload_digest=payload.digest,
            signer_user_id=actor.user_id,
            signer_name=actor.name,
            signer_role=actor.role,
            signature_data=signature_data,
            timestamp=timestamp,
        )

    def _audit(
        self, action: AuditAction, actor: ActorContext, timestamp: datetime, **details: Any
    ) -> AuditEvent:
        return AuditEvent(
            timestamp=timestamp,
            action=action,
            user_id=actor.user_id,
            user_name=actor.name,
            user_role=actor.role,
            details=details,
        )

    async def _notify(self, instance: WorkflowInstance, action: AuditAction) -> None:
        if self.notifier is None:
            return
        notification = WorkflowNotification(
            instance_id=instance.id,
            workflow_id=instance.workflow_id,
            action=action,
            status=instance.status,
            pending_steps=list(instance.pending_steps),
        )
        try:
            await self.notifier.notify(notification)
        except Exception as e:
            # The mutation is already persisted; subscribers can re-read.
            logger.error(
                f"Failed to publish {action.value} notification for instance={instance.id}: {e}"
            )


def _matches(instance: WorkflowInstance, term: str) -> bool:
    haystack = [instance.document_id, instance.metadata.form_type or "", *instance.metadata.tags]
    return any(term in value.lower() for value in haystack)


def build_engine(
    config: Optional[SignflowConfig] = None,
    store: Optional[InstanceStore] = None,
    notifier: Optional[BaseTransport] = None,
) -> WorkflowEngine:
    """Assemble an engine from configuration using the bundled collaborators.

    The store and the notification transport default to the configured ones.
    """
    config = config or load_config()
    return WorkflowEngine(
        catalog=load_catalog(config),
        store=store or get_store(config=config),
        signer=JwsSignatureAdapter(key_provider_from_config(config.signing)),
        notifier=notifier if notifier is not None else get_transport(config=config),
    )
