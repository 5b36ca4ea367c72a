"""Dashboard metrics over a set of workflow instances."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Iterable, Optional

from pydantic import BaseModel

from .contracts import InstanceStatus, WorkflowInstance, utcnow


class WorkflowSummary(BaseModel):
    total: int = 0
    completed: int = 0
    active: int = 0
    escalated: int = 0
    cancelled: int = 0
    overdue: int = 0
    completion_rate: float = 0.0
    escalation_rate: float = 0.0
    average_completion_hours: float = 0.0


def summarize(
    instances: Iterable[WorkflowInstance], now: Optional[datetime] = None
) -> WorkflowSummary:
    """Aggregate status counts, rates and average completion time.

    Rates are percentages of all instances. An instance is overdue when it is
    not terminal and its ``due_date`` lies before ``now``.
    """
    now = now or utcnow()
    items = list(instances)
    total = len(items)
    counts = {status: 0 for status in InstanceStatus}
    overdue = 0
    durations: list[float] = []

    for instance in items:
        counts[instance.status] += 1
        due = instance.metadata.due_date
        if due is not None and due.tzinfo is None:
            due = due.replace(tzinfo=timezone.utc)
        if due is not None and not instance.status.is_terminal and due < now:
            overdue += 1
        if instance.status == InstanceStatus.COMPLETED and instance.completed_at:
            durations.append((instance.completed_at - instance.created_at).total_seconds())

    def rate(count: int) -> float:
        return round(count / total * 100, 2) if total else 0.0

    return WorkflowSummary(
        total=total,
        completed=counts[InstanceStatus.COMPLETED],
        active=counts[InstanceStatus.IN_PROGRESS] + counts[InstanceStatus.CREATED],
        escalated=counts[InstanceStatus.ESCALATED],
        cancelled=counts[InstanceStatus.CANCELLED],
        overdue=overdue,
        completion_rate=rate(counts[InstanceStatus.COMPLETED]),
        escalation_rate=rate(counts[InstanceStatus.ESCALATED]),
        average_completion_hours=round(sum(durations) / len(durations) / 3600, 2)
        if durations
        else 0.0,
    )
