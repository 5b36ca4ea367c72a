"""Built-in clinical signature workflows."""

from __future__ import annotations

from datetime import timedelta

from ..contracts import CompletionCriteria, Role, WorkflowConfiguration, WorkflowStep

CLINICAL_ASSESSMENT = WorkflowConfiguration(
    id="clinical_assessment",
    name="Clinical Assessment",
    description="Nurse assessment acknowledged by the patient, optionally countersigned.",
    form_type="clinical_assessment",
    steps=(
        WorkflowStep(
            id="nurse_assessment",
            name="Nurse assessment",
            signer_role=Role.REGISTERED_NURSE,
            order=1,
            timeout=timedelta(hours=24),
            escalate_to=Role.SUPERVISOR,
        ),
        WorkflowStep(
            id="patient_acknowledgement",
            name="Patient acknowledgement",
            signer_role=Role.PATIENT,
            order=2,
            witness_required=True,
            witness_role=Role.REGISTERED_NURSE,
        ),
        WorkflowStep(
            id="physician_countersign",
            name="Physician countersignature",
            signer_role=Role.PHYSICIAN,
            required=False,
            order=3,
            timeout=timedelta(hours=48),
            escalate_to=Role.SUPERVISOR,
        ),
    ),
    completion_criteria=CompletionCriteria(
        all_steps_required=True,
        critical_steps_required=frozenset({"nurse_assessment"}),
    ),
)

CARE_PLAN = WorkflowConfiguration(
    id="care_plan",
    name="Care Plan",
    description="Physician-authored care plan agreed by the patient before a witness.",
    form_type="care_plan",
    steps=(
        WorkflowStep(
            id="physician_plan",
            name="Physician plan",
            signer_role=Role.PHYSICIAN,
            order=1,
            timeout=timedelta(hours=24),
            escalate_to=Role.SUPERVISOR,
        ),
        WorkflowStep(
            id="patient_consent",
            name="Patient consent",
            signer_role=Role.PATIENT,
            order=2,
            witness_required=True,
            witness_role=Role.REGISTERED_NURSE,
        ),
    ),
    completion_criteria=CompletionCriteria(
        all_steps_required=True,
        critical_steps_required=frozenset({"physician_plan", "patient_consent"}),
    ),
)

MEDICATION_REVIEW = WorkflowConfiguration(
    id="medication_review",
    name="Medication Review",
    description="Parallel pharmacist and dietician review followed by physician approval.",
    form_type="medication_review",
    steps=(
        WorkflowStep(
            id="pharmacist_review",
            name="Pharmacist review",
            signer_role=Role.PHARMACIST,
            order=1,
            timeout=timedelta(hours=12),
        ),
        WorkflowStep(
            id="dietician_review",
            name="Dietician review",
            signer_role=Role.DIETICIAN,
            order=1,
            timeout=timedelta(hours=12),
        ),
        WorkflowStep(
            id="physician_approval",
            name="Physician approval",
            signer_role=Role.PHYSICIAN,
            order=2,
            timeout=timedelta(hours=24),
            escalate_to=Role.SUPERVISOR,
        ),
    ),
)

DISCHARGE_SUMMARY = WorkflowConfiguration(
    id="discharge_summary",
    name="Discharge Summary",
    description="Nurse review and physician approval; escalation halts signing.",
    form_type="discharge_summary",
    hard_stop_on_escalation=True,
    steps=(
        WorkflowStep(
            id="nurse_review",
            name="Nurse review",
            signer_role=Role.NURSE,
            order=1,
            timeout=timedelta(hours=8),
            escalate_to=Role.SUPERVISOR,
        ),
        WorkflowStep(
            id="physician_approval",
            name="Physician approval",
            signer_role=Role.PHYSICIAN,
            order=2,
            timeout=timedelta(hours=8),
            escalate_to=Role.SUPERVISOR,
        ),
    ),
)

BUILTIN_WORKFLOWS = (CLINICAL_ASSESSMENT, CARE_PLAN, MEDICATION_REVIEW, DISCHARGE_SUMMARY)
