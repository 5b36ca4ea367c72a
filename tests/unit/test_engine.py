"""Workflow engine tests."""

import hashlib

import pytest
from conftest import actor

from signflow.contracts import (
    AuditAction,
    InstanceMetadata,
    InstanceStatus,
    Priority,
    Role,
    WitnessInput,
)
from signflow.config import SignflowConfig, SigningConfig, TransportConfig
from signflow.engine import WorkflowEngine, build_engine
from signflow.errors import (
    ConfigurationNotFound,
    EscalationHold,
    EscalationNotFound,
    InstanceNotFound,
    InstanceTerminal,
    PermissionDenied,
    SigningFailed,
    TransportUnavailable,
    StepNotReady,
    UnknownStep,
    WitnessNotAllowed,
    WitnessRequired,
)
from signflow.security import SignatureAdapter
from signflow.transports import INSTANCE_TOPIC, BaseTransport, InMemoryTransport

NURSE = actor(Role.NURSE)
PHYSICIAN = actor(Role.PHYSICIAN)
SUPERVISOR = actor(Role.SUPERVISOR)
COORDINATOR = actor(Role.COORDINATOR)
RN = actor(Role.REGISTERED_NURSE)
PATIENT = actor(Role.PATIENT)


@pytest.mark.asyncio
async def test_create_instance_starts_first_wave(engine):
    instance = await engine.create_instance("sequential_review", "doc-1")

    assert instance.status == InstanceStatus.IN_PROGRESS
    assert instance.pending_steps == ["nurse_review"]
    assert instance.completed_steps == []
    assert instance.version == 1
    assert instance.metadata.form_type == "clinical_note"
    assert [e.action for e in instance.audit_trail] == [AuditAction.STARTED]
    assert instance.audit_trail[0].user_role == Role.SYSTEM


@pytest.mark.asyncio
async def test_create_instance_unknown_workflow(engine, store):
    with pytest.raises(ConfigurationNotFound):
        await engine.create_instance("nope", "doc-1")
    assert await store.list_instances() == []


@pytest.mark.asyncio
async def test_sequential_workflow_runs_to_completion(engine, clock):
    instance = await engine.create_instance("sequential_review", "doc-1")

    clock.advance(minutes=5)
    instance = await engine.complete_step(instance.id, "nurse_review", NURSE)
    assert instance.pending_steps == ["physician_approval"]
    assert instance.status == InstanceStatus.IN_PROGRESS

    clock.advance(minutes=5)
    instance = await engine.complete_step(
        instance.id, "physician_approval", PHYSICIAN, signature_data={"stroke": "..."}
    )
    assert instance.status == InstanceStatus.COMPLETED
    assert instance.completed_at == clock.now
    assert instance.completed_steps == ["nurse_review", "physician_approval"]
    assert [s.step_id for s in instance.signatures] == instance.completed_steps
    assert instance.signatures[1].signature_data == {"stroke": "..."}
    assert instance.version == 3


@pytest.mark.asyncio
async def test_parallel_wave_blocks_next_order(engine):
    instance = await engine.create_instance("parallel_review", "doc-2")
    assert instance.pending_steps == ["dietician_review", "pharmacist_review"]

    instance = await engine.complete_step(
        instance.id, "pharmacist_review", actor(Role.PHARMACIST)
    )
    assert instance.pending_steps == ["dietician_review"]

    with pytest.raises(StepNotReady):
        await engine.complete_step(instance.id, "physician_approval", PHYSICIAN)

    instance = await engine.complete_step(instance.id, "dietician_review", actor(Role.DIETICIAN))
    assert instance.pending_steps == ["physician_approval"]

    instance = await engine.complete_step(instance.id, "physician_approval", PHYSICIAN)
    assert instance.status == InstanceStatus.COMPLETED


@pytest.mark.asyncio
async def test_wrong_role_is_denied_and_state_unchanged(engine, signer):
    instance = await engine.create_instance("sequential_review", "doc-1")
    instance = await engine.complete_step(instance.id, "nurse_review", NURSE)
    before = await engine.get_instance(instance.id)

    with pytest.raises(PermissionDenied) as exc_info:
        await engine.complete_step(instance.id, "physician_approval", COORDINATOR)
    assert exc_info.value.kind == "permission_denied"

    assert await engine.get_instance(instance.id) == before
    assert len(signer.payloads) == 1


@pytest.mark.asyncio
async def test_admin_can_sign_any_step(engine):
    instance = await engine.create_instance("sequential_review", "doc-1")
    instance = await engine.complete_step(instance.id, "nurse_review", actor(Role.ADMIN))
    assert instance.signatures[0].signer_role == Role.ADMIN


@pytest.mark.asyncio
async def test_precondition_errors_have_distinct_kinds(engine):
    instance = await engine.create_instance("sequential_review", "doc-1")

    with pytest.raises(InstanceNotFound):
        await engine.complete_step("missing", "nurse_review", NURSE)
    with pytest.raises(UnknownStep):
        await engine.complete_step(instance.id, "pharmacy", NURSE)
    with pytest.raises(StepNotReady, match="not ready"):
        await engine.complete_step(instance.id, "physician_approval", PHYSICIAN)

    await engine.complete_step(instance.id, "nurse_review", NURSE)
    with pytest.raises(StepNotReady, match="already completed"):
        await engine.complete_step(instance.id, "nurse_review", NURSE)


@pytest.mark.asyncio
async def test_wrong_role_is_denied_regardless_of_readiness(engine):
    instance = await engine.create_instance("sequential_review", "doc-1")
    with pytest.raises(PermissionDenied):
        await engine.complete_step(instance.id, "physician_approval", COORDINATOR)

    await engine.complete_step(instance.id, "nurse_review", NURSE)
    with pytest.raises(PermissionDenied):
        await engine.complete_step(instance.id, "nurse_review", COORDINATOR)


@pytest.mark.asyncio
async def test_terminal_is_reported_before_unknown_step(engine):
    instance = await engine.create_instance("sequential_review", "doc-1")
    await engine.cancel(instance.id, SUPERVISOR, "duplicate")
    with pytest.raises(InstanceTerminal):
        await engine.complete_step(instance.id, "no_such_step", NURSE)


@pytest.mark.asyncio
async def test_witness_rules(engine):
    instance = await engine.create_instance("witnessed_consent", "consent-1")

    with pytest.raises(WitnessRequired):
        await engine.complete_step(instance.id, "patient_consent", PATIENT)
    with pytest.raises(PermissionDenied):
        await engine.complete_step(
            instance.id,
            "patient_consent",
            PATIENT,
            witness=WitnessInput(actor=actor(Role.PATIENT, "relative-1")),
        )

    instance = await engine.complete_step(
        instance.id,
        "patient_consent",
        PATIENT,
        signature_data="patient-mark",
        witness=WitnessInput(actor=RN, signature_data="rn-mark"),
    )
    assert instance.status == InstanceStatus.COMPLETED
    signature = instance.signatures[0]
    assert signature.witness_signature is not None
    assert signature.witness_signature.signer_user_id == RN.user_id
    assert signature.witness_signature.signature_data == "rn-mark"
    assert instance.audit_trail[-1].details["witness_user_id"] == RN.user_id


@pytest.mark.asyncio
async def test_witness_on_unwitnessed_step_is_rejected(engine):
    instance = await engine.create_instance("sequential_review", "doc-1")
    with pytest.raises(WitnessNotAllowed):
        await engine.complete_step(
            instance.id, "nurse_review", NURSE, witness=WitnessInput(actor=RN)
        )


@pytest.mark.asyncio
async def test_signing_payload_binds_instance_step_and_document(engine, signer, clock):
    instance = await engine.create_instance("sequential_review", "doc-9")
    instance = await engine.complete_step(instance.id, "nurse_review", NURSE)

    payload = signer.payloads[0]
    assert payload.instance_id == instance.id
    assert payload.step_id == "nurse_review"
    assert payload.document_id == "doc-9"
    assert payload.signer_user_id == NURSE.user_id
    assert payload.timestamp == clock.now
    assert payload.digest == hashlib.sha256(payload.canonical_bytes()).hexdigest()
    assert instance.signatures[0].payload_digest == payload.digest


@pytest.mark.asyncio
async def test_signing_failure_leaves_instance_unchanged(engine, signer):
    instance = await engine.create_instance("sequential_review", "doc-1")
    before = await engine.get_instance(instance.id)

    signer.fail = True
    with pytest.raises(SigningFailed):
        await engine.complete_step(instance.id, "nurse_review", NURSE)

    after = await engine.get_instance(instance.id)
    assert after == before
    assert after.completed_steps == []


class BrokenSigner(SignatureAdapter):
    async def sign(self, payload):
        raise RuntimeError("hsm unplugged")


@pytest.mark.asyncio
async def test_unexpected_adapter_error_is_reported_as_signing_failed(catalog, store, clock):
    engine = WorkflowEngine(catalog=catalog, store=store, signer=BrokenSigner(), clock=clock)
    instance = await engine.create_instance("sequential_review", "doc-1")
    with pytest.raises(SigningFailed, match="hsm unplugged"):
        await engine.complete_step(instance.id, "nurse_review", NURSE)


@pytest.mark.asyncio
async def test_cancel_closes_instance(engine):
    instance = await engine.create_instance("sequential_review", "doc-1")
    instance = await engine.cancel(instance.id, SUPERVISOR, "patient transferred")

    assert instance.status == InstanceStatus.CANCELLED
    assert instance.pending_steps == ["nurse_review"]
    event = instance.audit_trail[-1]
    assert event.action == AuditAction.CANCELLED
    assert event.details == {"reason": "patient transferred", "previous_status": "in_progress"}

    with pytest.raises(InstanceTerminal):
        await engine.complete_step(instance.id, "nurse_review", NURSE)
    with pytest.raises(InstanceTerminal):
        await engine.cancel(instance.id, SUPERVISOR, "again")
    with pytest.raises(InstanceTerminal):
        await engine.escalate(instance.id, "nurse_review", SUPERVISOR, "late")


@pytest.mark.asyncio
async def test_cancel_requires_capability(engine):
    instance = await engine.create_instance("sequential_review", "doc-1")
    with pytest.raises(PermissionDenied):
        await engine.cancel(instance.id, NURSE, "no")
    assert (await engine.get_instance(instance.id)).status == InstanceStatus.IN_PROGRESS


@pytest.mark.asyncio
async def test_completed_instance_accepts_no_mutation(engine):
    instance = await engine.create_instance("sequential_review", "doc-1")
    await engine.complete_step(instance.id, "nurse_review", NURSE)
    instance = await engine.complete_step(instance.id, "physician_approval", PHYSICIAN)
    before = await engine.get_instance(instance.id)

    with pytest.raises(InstanceTerminal):
        await engine.cancel(instance.id, SUPERVISOR, "too late")
    with pytest.raises(InstanceTerminal):
        await engine.escalate(instance.id, "physician_approval", SUPERVISOR, "too late")
    assert await engine.get_instance(instance.id) == before


@pytest.mark.asyncio
async def test_critical_only_workflow_completes_without_optional_step(engine):
    instance = await engine.create_instance("critical_only", "doc-1")
    instance = await engine.complete_step(instance.id, "physician_signoff", PHYSICIAN)
    assert instance.status == InstanceStatus.COMPLETED

    with pytest.raises(InstanceTerminal):
        await engine.complete_step(instance.id, "nurse_note", NURSE)


@pytest.mark.asyncio
async def test_escalation_keeps_pending_steps_signable(engine):
    instance = await engine.create_instance("sequential_review", "doc-1")
    instance = await engine.escalate(instance.id, "nurse_review", SUPERVISOR, "no response")

    assert instance.status == InstanceStatus.ESCALATED
    assert instance.pending_steps == ["nurse_review"]
    assert len(instance.open_escalations("nurse_review")) == 1
    assert instance.audit_trail[-1].details["reason"] == "no response"

    instance = await engine.complete_step(instance.id, "nurse_review", NURSE)
    assert instance.status == InstanceStatus.ESCALATED
    assert instance.pending_steps == ["physician_approval"]

    instance = await engine.complete_step(instance.id, "physician_approval", PHYSICIAN)
    assert instance.status == InstanceStatus.COMPLETED


@pytest.mark.asyncio
async def test_escalate_validates_step_and_role(engine):
    instance = await engine.create_instance("sequential_review", "doc-1")
    with pytest.raises(UnknownStep):
        await engine.escalate(instance.id, "ghost", SUPERVISOR, "x")
    with pytest.raises(PermissionDenied):
        await engine.escalate(instance.id, "nurse_review", NURSE, "x")


@pytest.mark.asyncio
async def test_hard_stop_blocks_signing_until_resolved(engine):
    instance = await engine.create_instance("hard_stop", "doc-1")
    instance = await engine.escalate(instance.id, "nurse_review", SUPERVISOR, "overdue")
    escalation = instance.escalations[0]
    assert escalation.escalated_to == Role.SUPERVISOR

    with pytest.raises(EscalationHold):
        await engine.complete_step(instance.id, "nurse_review", NURSE)

    instance = await engine.resolve_escalation(
        instance.id, escalation.id, SUPERVISOR, note="reassigned"
    )
    assert instance.status == InstanceStatus.IN_PROGRESS
    assert instance.escalations[0].resolved
    assert instance.escalations[0].resolved_by == SUPERVISOR.user_id
    assert instance.audit_trail[-1].action == AuditAction.ESCALATION_RESOLVED

    instance = await engine.complete_step(instance.id, "nurse_review", NURSE)
    assert instance.status == InstanceStatus.COMPLETED


@pytest.mark.asyncio
async def test_resolve_unknown_escalation(engine):
    instance = await engine.create_instance("hard_stop", "doc-1")
    with pytest.raises(EscalationNotFound):
        await engine.resolve_escalation(instance.id, "nope", SUPERVISOR)
    with pytest.raises(PermissionDenied):
        await engine.resolve_escalation(instance.id, "nope", NURSE)


@pytest.mark.asyncio
async def test_instance_stays_escalated_while_any_escalation_open(engine):
    instance = await engine.create_instance("parallel_review", "doc-1")
    await engine.escalate(instance.id, "dietician_review", SUPERVISOR, "a")
    instance = await engine.escalate(instance.id, "pharmacist_review", SUPERVISOR, "b")

    first = instance.escalations[0]
    instance = await engine.resolve_escalation(instance.id, first.id, SUPERVISOR)
    assert instance.status == InstanceStatus.ESCALATED
    instance = await engine.resolve_escalation(instance.id, instance.escalations[1].id, SUPERVISOR)
    assert instance.status == InstanceStatus.IN_PROGRESS


@pytest.mark.asyncio
async def test_audit_trail_records_every_mutation_in_order(engine, clock):
    instance = await engine.create_instance("parallel_review", "doc-1")
    clock.advance(minutes=1)
    await engine.escalate(instance.id, "dietician_review", SUPERVISOR, "slow")
    clock.advance(minutes=1)
    await engine.complete_step(instance.id, "dietician_review", actor(Role.DIETICIAN))
    clock.advance(minutes=1)
    instance = await engine.cancel(instance.id, SUPERVISOR, "withdrawn")

    actions = [e.action for e in instance.audit_trail]
    assert actions == [
        AuditAction.STARTED,
        AuditAction.ESCALATED,
        AuditAction.STEP_COMPLETED,
        AuditAction.CANCELLED,
    ]
    timestamps = [e.timestamp for e in instance.audit_trail]
    assert timestamps == sorted(timestamps)
    assert instance.audit_trail[2].details["step_id"] == "dietician_review"
    assert instance.audit_trail[2].user_id == "dietician-1"


@pytest.mark.asyncio
async def test_progress_and_completion_queries(engine):
    instance = await engine.create_instance("parallel_review", "doc-1")
    await engine.complete_step(instance.id, "dietician_review", actor(Role.DIETICIAN))

    progress = await engine.get_progress(instance.id)
    assert progress.completed_count == 1
    assert progress.pending_count == 1
    assert progress.progress_percentage == 33.33
    assert [s.id for s in progress.next_steps] == ["pharmacist_review"]

    report = await engine.validate_completion(instance.id)
    assert not report.is_complete
    assert report.missing_steps == ["pharmacist_review", "physician_approval"]

    with pytest.raises(InstanceNotFound):
        await engine.get_progress("missing")


@pytest.mark.asyncio
async def test_list_instances_filters(engine, clock):
    urgent = await engine.create_instance(
        "sequential_review",
        "DOC-100",
        metadata=InstanceMetadata(priority=Priority.HIGH, tags=["Wound"]),
    )
    clock.advance(minutes=1)
    routine = await engine.create_instance("parallel_review", "doc-200")
    clock.advance(minutes=1)
    cancelled = await engine.create_instance("sequential_review", "doc-300")
    await engine.cancel(cancelled.id, SUPERVISOR, "dup")

    assert [i.id for i in await engine.list_instances()] == [urgent.id, routine.id, cancelled.id]
    assert [i.id for i in await engine.list_instances(status=InstanceStatus.CANCELLED)] == [
        cancelled.id
    ]
    assert [i.id for i in await engine.list_instances(priority=Priority.HIGH)] == [urgent.id]
    assert [i.id for i in await engine.list_instances(search="wound")] == [urgent.id]
    assert [i.id for i in await engine.list_instances(search="doc-2")] == [routine.id]
    clinical = await engine.list_instances(search="CLINICAL_NOTE")
    assert {i.id for i in clinical} == {urgent.id, cancelled.id}


@pytest.mark.asyncio
async def test_mutations_publish_notifications(catalog, store, signer, clock):
    transport = InMemoryTransport()
    engine = WorkflowEngine(
        catalog=catalog, store=store, signer=signer, notifier=transport, clock=clock
    )
    instance = await engine.create_instance("sequential_review", "doc-1")
    await engine.complete_step(instance.id, "nurse_review", NURSE)

    assert transport.pending(INSTANCE_TOPIC) == 2
    received = []
    async for notification in transport.changes(lifespan=1):
        received.append(notification)
        if len(received) == 2:
            break
    assert [n.action for n in received] == [AuditAction.STARTED, AuditAction.STEP_COMPLETED]
    assert received[1].pending_steps == ["physician_approval"]
    assert all(n.instance_id == instance.id for n in received)


class FailingTransport(BaseTransport):
    async def publish(self, topic, message):
        raise ConnectionError("broker down")

    async def subscribe(self, topic, lifespan=None):
        raise NotImplementedError
        yield

    async def ack(self, raw_message):
        pass


@pytest.mark.asyncio
async def test_notification_failure_does_not_fail_mutation(catalog, store, signer, clock):
    engine = WorkflowEngine(
        catalog=catalog, store=store, signer=signer, notifier=FailingTransport(), clock=clock
    )
    instance = await engine.create_instance("sequential_review", "doc-1")
    instance = await engine.complete_step(instance.id, "nurse_review", NURSE)
    assert instance.completed_steps == ["nurse_review"]


@pytest.mark.asyncio
async def test_escalate_rejects_steps_that_are_not_pending(engine):
    instance = await engine.create_instance("sequential_review", "doc-1")
    with pytest.raises(StepNotReady, match="not ready"):
        await engine.escalate(instance.id, "physician_approval", SUPERVISOR, "early")

    await engine.complete_step(instance.id, "nurse_review", NURSE)
    before = await engine.get_instance(instance.id)
    with pytest.raises(StepNotReady, match="already completed"):
        await engine.escalate(instance.id, "nurse_review", SUPERVISOR, "late")

    after = await engine.get_instance(instance.id)
    assert after == before
    assert after.status == InstanceStatus.IN_PROGRESS


@pytest.mark.asyncio
async def test_escalate_overdue_checks_stored_state(engine, clock):
    instance = await engine.create_instance("sequential_review", "doc-1")
    system = actor(Role.SYSTEM, "system")

    stored, step_ids = await engine.escalate_overdue(instance.id, system, "step timeout")
    assert step_ids == []
    assert stored.version == 1

    clock.advance(hours=5)
    await engine.complete_step(instance.id, "nurse_review", NURSE)
    stored, step_ids = await engine.escalate_overdue(
        instance.id, system, "step timeout", now=clock.advance(hours=5)
    )
    assert step_ids == []
    assert stored.escalations == []

    with pytest.raises(PermissionDenied):
        await engine.escalate_overdue(instance.id, NURSE, "step timeout")


@pytest.mark.asyncio
async def test_build_engine_publishes_to_configured_transport(store):
    config = SignflowConfig(signing=SigningConfig(secret="build-secret-build-secret-build!"))
    engine = build_engine(config=config, store=store)

    assert isinstance(engine.notifier, InMemoryTransport)
    instance = await engine.create_instance("care_plan", "plan-1")
    assert engine.notifier.pending(INSTANCE_TOPIC) == 1
    async for notification in engine.notifier.changes(lifespan=1):
        assert notification.instance_id == instance.id
        assert notification.action == AuditAction.STARTED
        break


def test_build_engine_rejects_unknown_transport(store):
    config = SignflowConfig(transport=TransportConfig())
    config.transport.backend = "carrier-pigeon"
    with pytest.raises(TransportUnavailable):
        build_engine(config=config, store=store)
