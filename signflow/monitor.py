"""Background escalation of overdue workflow steps."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Callable, Optional

from .config import MonitorConfig
from .contracts import ActorContext, Role, WorkflowInstance, utcnow
from .engine import WorkflowEngine
from .errors import ConfigurationNotFound, PreconditionError, TransientError
from .rules import is_overdue

logger = logging.getLogger(__name__)

TIMEOUT_REASON = "step timeout"


class EscalationMonitor:
    """Periodically escalates pending steps whose timeout has elapsed.

    The clock is measured from the instance's last update. A step that already
    has an open escalation is not escalated again. The monitor only calls
    :meth:`WorkflowEngine.escalate_overdue`; it never cancels work in progress.
    """

    def __init__(
        self,
        engine: WorkflowEngine,
        interval: float = 60.0,
        system_actor: Optional[ActorContext] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.engine = engine
        self.interval = interval
        self.system_actor = system_actor or engine.system_actor
        self.clock = clock or engine.clock or utcnow
        self._stopped = asyncio.Event()

    @classmethod
    def from_config(cls, engine: WorkflowEngine, config: MonitorConfig) -> "EscalationMonitor":
        actor = ActorContext(
            user_id=config.system_user_id, name=config.system_user_name, role=Role.SYSTEM
        )
        return cls(engine, interval=config.interval_seconds, system_actor=actor)

    def overdue_steps(self, instance: WorkflowInstance, now: datetime) -> list[str]:
        """Pending steps of ``instance`` that are past their timeout at ``now``."""
        if instance.status.is_terminal:
            return []
        config = self.engine.catalog.get(instance.workflow_id)
        return [
            step_id
            for step_id in instance.pending_steps
            if (step := config.step(step_id)) is not None and is_overdue(instance, step, now)
        ]

    async def scan_once(self) -> list[tuple[str, str]]:
        """Escalate every overdue step once; return ``(instance_id, step_id)`` pairs.

        The listing only nominates candidates. Each one is re-checked by the
        engine against the stored instance before anything is written.
        """
        now = self.clock()
        escalated: list[tuple[str, str]] = []
        for instance in await self.engine.store.list_instances():
            try:
                candidates = self.overdue_steps(instance, now)
            except ConfigurationNotFound:
                logger.warning(
                    f"Skipping instance={instance.id}: unknown workflow {instance.workflow_id}"
                )
                continue
            if not candidates:
                continue
            try:
                _, step_ids = await self.engine.escalate_overdue(
                    instance.id, self.system_actor, TIMEOUT_REASON, now=now
                )
            except (PreconditionError, TransientError) as e:
                logger.warning(f"Could not escalate instance={instance.id}: {e}")
                continue
            if len(step_ids) < len(candidates):
                logger.debug(
                    f"instance={instance.id} changed since listing; escalated {step_ids} of {candidates}"
                )
            for step_id in step_ids:
                logger.info(f"Auto-escalated step {step_id} on instance={instance.id}")
                escalated.append((instance.id, step_id))
        return escalated

    async def run(self, lifespan: Optional[float] = None) -> None:
        """Scan every ``interval`` seconds until stopped or ``lifespan`` expires."""
        self._stopped.clear()
        loop = asyncio.get_running_loop()
        start_time = loop.time()
        logger.info(f"Escalation monitor started (interval={self.interval}s)")
        while not self._stopped.is_set():
            await self.scan_once()
            if lifespan is not None and loop.time() - start_time >= lifespan:
                break
            timeout = self.interval
            if lifespan is not None:
                timeout = min(timeout, max(0.0, lifespan - (loop.time() - start_time)))
            try:
                await asyncio.wait_for(self._stopped.wait(), timeout=timeout)
            except asyncio.TimeoutError:
                pass
        logger.info("Escalation monitor stopped")

    def stop(self) -> None:
        self._stopped.set()
