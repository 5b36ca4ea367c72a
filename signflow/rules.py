"""Pure wave, completion and timeout rules.

Nothing here touches a store; every function derives its answer from a
configuration, the completed step ids or an instance snapshot.
"""

from __future__ import annotations

from datetime import datetime
from typing import Iterable

from .contracts import (
    CompletionReport,
    WorkflowConfiguration,
    WorkflowInstance,
    WorkflowProgress,
    WorkflowStep,
)


def next_wave(config: WorkflowConfiguration, completed: Iterable[str]) -> list[str]:
    """Return the ids of steps sharing the smallest order among open steps."""
    done = set(completed)
    remaining = [s for s in config.steps if s.id not in done]
    if not remaining:
        return []
    lowest = min(s.order for s in remaining)
    return sorted(s.id for s in remaining if s.order == lowest)


def initial_wave(config: WorkflowConfiguration) -> list[str]:
    return next_wave(config, ())


def evaluate_completion(
    config: WorkflowConfiguration, completed: Iterable[str]
) -> CompletionReport:
    """Check the completion criteria against ``completed``.

    Critical steps are mandatory regardless of ``all_steps_required``; the
    ``required`` flag only counts when ``all_steps_required`` is set.
    """
    done = set(completed)
    criteria = config.completion_criteria
    missing_critical = sorted(set(criteria.critical_steps_required) - done)
    missing_required = sorted(s.id for s in config.steps if s.required and s.id not in done)

    errors = [f"Critical step '{sid}' has not been signed" for sid in missing_critical]
    missing = list(missing_critical)
    if criteria.all_steps_required:
        for sid in missing_required:
            if sid not in missing:
                missing.append(sid)
                errors.append(f"Required step '{sid}' has not been signed")

    is_complete = not missing_critical and (
        not criteria.all_steps_required or not missing_required
    )
    return CompletionReport(is_complete=is_complete, missing_steps=sorted(missing), errors=errors)


def progress_for(
    config: WorkflowConfiguration, completed: Iterable[str], pending: Iterable[str]
) -> WorkflowProgress:
    done = set(completed)
    pending_ids = set(pending)
    total = len(config.steps)
    completed_count = sum(1 for s in config.steps if s.id in done)
    percentage = round(completed_count / total * 100, 2) if total else 0.0
    next_steps = sorted(
        (s for s in config.steps if s.id in pending_ids), key=lambda s: (s.order, s.id)
    )
    return WorkflowProgress(
        total_steps=total,
        completed_count=completed_count,
        pending_count=len(next_steps),
        progress_percentage=percentage,
        next_steps=next_steps,
    )


def is_overdue(instance: WorkflowInstance, step: WorkflowStep, now: datetime) -> bool:
    """True when ``step`` is pending, unescalated and idle past its timeout.

    Idle time is measured from the instance's last update.
    """
    if instance.status.is_terminal or step.timeout is None:
        return False
    if step.id not in instance.pending_steps or instance.open_escalations(step.id):
        return False
    return now - instance.updated_at > step.timeout
