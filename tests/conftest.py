"""Shared fixtures: deterministic clock, controllable signer, test workflows."""

from __future__ import annotations

import asyncio
import uuid
from datetime import datetime, timedelta, timezone

import pytest

from signflow.catalog import WorkflowCatalog
from signflow.contracts import (
    ActorContext,
    CompletionCriteria,
    Role,
    WorkflowConfiguration,
    WorkflowStep,
)
from signflow.engine import WorkflowEngine
from signflow.errors import SigningFailed
from signflow.persistence import InMemoryInstanceStore
from signflow.security import SignatureAdapter, SignatureRecord, SigningPayload


class FakeClock:
    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2024, 3, 1, 8, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class RecordingSigner(SignatureAdapter):
    """Signature adapter double that records payloads and can fail or block."""

    def __init__(self) -> None:
        self.payloads: list[SigningPayload] = []
        self.fail = False
        self.gate: asyncio.Event | None = None
        self.entered = asyncio.Event()

    async def sign(self, payload: SigningPayload) -> SignatureRecord:
        self.payloads.append(payload)
        self.entered.set()
        if self.gate is not None:
            await self.gate.wait()
        if self.fail:
            raise SigningFailed("adapter offline")
        return SignatureRecord(
            signature_id=f"sig-{uuid.uuid4()}",
            algorithm="test",
            timestamp=payload.timestamp,
        )


SEQUENTIAL = WorkflowConfiguration(
    id="sequential_review",
    name="Sequential review",
    form_type="clinical_note",
    steps=(
        WorkflowStep(id="nurse_review", signer_role=Role.NURSE, order=1, timeout=timedelta(hours=4)),
        WorkflowStep(id="physician_approval", signer_role=Role.PHYSICIAN, order=2),
    ),
    completion_criteria=CompletionCriteria(all_steps_required=True),
)

PARALLEL = WorkflowConfiguration(
    id="parallel_review",
    name="Parallel review",
    steps=(
        WorkflowStep(id="dietician_review", signer_role=Role.DIETICIAN, order=1),
        WorkflowStep(id="pharmacist_review", signer_role=Role.PHARMACIST, order=1),
        WorkflowStep(id="physician_approval", signer_role=Role.PHYSICIAN, order=2),
    ),
)

WITNESSED = WorkflowConfiguration(
    id="witnessed_consent",
    name="Witnessed consent",
    steps=(
        WorkflowStep(
            id="patient_consent",
            signer_role=Role.PATIENT,
            order=1,
            witness_required=True,
            witness_role=Role.REGISTERED_NURSE,
        ),
    ),
)

CRITICAL_ONLY = WorkflowConfiguration(
    id="critical_only",
    name="Critical only",
    steps=(
        WorkflowStep(id="physician_signoff", signer_role=Role.PHYSICIAN, order=1),
        WorkflowStep(id="nurse_note", signer_role=Role.NURSE, order=2, required=False),
    ),
    completion_criteria=CompletionCriteria(
        all_steps_required=False, critical_steps_required=frozenset({"physician_signoff"})
    ),
)

HARD_STOP = WorkflowConfiguration(
    id="hard_stop",
    name="Hard stop",
    hard_stop_on_escalation=True,
    steps=(
        WorkflowStep(
            id="nurse_review",
            signer_role=Role.NURSE,
            order=1,
            timeout=timedelta(hours=1),
            escalate_to=Role.SUPERVISOR,
        ),
    ),
)

TEST_WORKFLOWS = (SEQUENTIAL, PARALLEL, WITNESSED, CRITICAL_ONLY, HARD_STOP)


def actor(role: Role, user_id: str | None = None) -> ActorContext:
    user_id = user_id or f"{role.value}-1"
    return ActorContext(user_id=user_id, name=user_id.replace("-", " ").title(), role=role)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def signer() -> RecordingSigner:
    return RecordingSigner()


@pytest.fixture
def catalog() -> WorkflowCatalog:
    return WorkflowCatalog(TEST_WORKFLOWS)


@pytest.fixture
def store() -> InMemoryInstanceStore:
    return InMemoryInstanceStore()


@pytest.fixture
def engine(catalog, store, signer, clock) -> WorkflowEngine:
    return WorkflowEngine(catalog=catalog, store=store, signer=signer, clock=clock)
