"""Command line interface for inspecting workflows and running the monitor."""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

import typer

from signflow.catalog import load_catalog
from signflow.config import load_config
from signflow.contracts import InstanceStatus
from signflow.engine import build_engine
from signflow.errors import ConfigurationNotFound, InstanceNotFound
from signflow.monitor import EscalationMonitor
from signflow.persistence import get_store
from signflow.reporting import summarize

app = typer.Typer(help="CLI for signflow signature workflows")

# Command groups
catalog_app = typer.Typer(help="Commands for workflow templates")
workflow_app = typer.Typer(help="Commands for workflow instances")
monitor_app = typer.Typer(help="Commands for the escalation monitor")

app.add_typer(catalog_app, name="catalog")
app.add_typer(workflow_app, name="workflow")
app.add_typer(monitor_app, name="monitor")


@app.callback()
def main(verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging")) -> None:
    """signflow CLI entry point."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@catalog_app.command("list")
def catalog_list() -> None:
    """List workflow templates with their step count."""
    catalog = load_catalog()
    for config in catalog.configurations():
        typer.echo(f"{config.id}\t{config.name}\t{len(config.steps)} steps")


@catalog_app.command("show")
def catalog_show(workflow_id: str) -> None:
    """
    Show the steps of a workflow template grouped by order.

    Example:
        signflow catalog show medication_review
        # Output: Medication Review (medication_review)
        #         [1] pharmacist_review - pharmacist (required)
        #         [1] dietician_review - dietician (required)
        #         [2] physician_approval - physician (required, timeout 1 day, 0:00:00)
    """
    catalog = load_catalog()
    try:
        config = catalog.get(workflow_id)
    except ConfigurationNotFound:
        typer.echo("Workflow not found")
        raise typer.Exit(code=1)

    typer.echo(f"{config.name} ({config.id})")
    for step in sorted(config.steps, key=lambda s: (s.order, s.id)):
        flags = ["required" if step.required else "optional"]
        if step.id in config.completion_criteria.critical_steps_required:
            flags.append("critical")
        if step.witness_required:
            flags.append("witness")
        if step.timeout is not None:
            flags.append(f"timeout {step.timeout}")
        typer.echo(f"[{step.order}] {step.id} - {step.signer_role.value} ({', '.join(flags)})")


@workflow_app.command("list")
def workflow_list(
    status: Optional[InstanceStatus] = typer.Option(None, help="Only show this status"),
) -> None:
    """
    List workflow instances with their current status.

    Example:
        signflow workflow list --status escalated
        # Output: 1b9d...   care_plan   doc-42   escalated
    """
    store = get_store()
    instances = asyncio.run(store.list_instances())
    if status is not None:
        instances = [i for i in instances if i.status == status]
    if not instances:
        typer.echo("No workflows found")
        return
    for wf in instances:
        typer.echo(f"{wf.id}\t{wf.workflow_id}\t{wf.document_id}\t{wf.status.value}")


@workflow_app.command("show")
def workflow_show(instance_id: str) -> None:
    """Show status, signatures and the audit trail of one instance."""
    store = get_store()
    wf = asyncio.run(store.get(instance_id))
    if wf is None:
        typer.echo("Workflow not found")
        raise typer.Exit(code=1)
    typer.echo(f"Workflow {wf.id}: {wf.status.value}")
    typer.echo(f"Template: {wf.workflow_id}  Document: {wf.document_id}")
    typer.echo(f"Completed: {', '.join(wf.completed_steps) or '-'}")
    typer.echo(f"Pending: {', '.join(wf.pending_steps) or '-'}")
    for sig in wf.signatures:
        witness = f" witnessed by {sig.witness_signature.signer_name}" if sig.witness_signature else ""
        typer.echo(f"- {sig.step_id}: {sig.signer_name} ({sig.signer_role.value}) at {sig.timestamp}{witness}")
    for event in wf.audit_trail:
        typer.echo(f"  {event.timestamp} {event.action.value} by {event.user_name}")


@workflow_app.command("progress")
def workflow_progress(instance_id: str) -> None:
    """Show completion percentage and the steps that can be signed next."""
    engine = build_engine(store=get_store())
    try:
        progress = asyncio.run(engine.get_progress(instance_id))
        report = asyncio.run(engine.validate_completion(instance_id))
    except InstanceNotFound:
        typer.echo("Workflow not found")
        raise typer.Exit(code=1)
    typer.echo(
        f"{progress.completed_count}/{progress.total_steps} steps signed "
        f"({progress.progress_percentage:.0f}%)"
    )
    typer.echo(f"Next: {', '.join(s.id for s in progress.next_steps) or '-'}")
    typer.echo(f"Complete: {'yes' if report.is_complete else 'no'}")
    for error in report.errors:
        typer.echo(f"  {error}")


@workflow_app.command("summary")
def workflow_summary() -> None:
    """Print dashboard metrics across all instances."""
    store = get_store()
    summary = summarize(asyncio.run(store.list_instances()))
    for field, value in summary.model_dump().items():
        typer.echo(f"{field}: {value}")


@monitor_app.command("run")
def monitor_run(
    interval: Optional[float] = typer.Option(None, help="Seconds between scans"),
    lifespan: Optional[float] = typer.Option(None, help="Stop after this many seconds"),
) -> None:
    """Run the escalation monitor against the configured store."""
    config = load_config()
    engine = build_engine(config=config, store=get_store())
    monitor = EscalationMonitor.from_config(engine, config.monitor)
    if interval is not None:
        monitor.interval = interval
    typer.echo(f"Starting escalation monitor (interval {monitor.interval}s)")
    asyncio.run(monitor.run(lifespan=lifespan))


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    app()
