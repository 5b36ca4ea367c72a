"""In-memory notification transport."""

from __future__ import annotations

import asyncio
from collections import defaultdict, deque
from typing import AsyncIterator, Deque, Dict, Optional, Tuple

from ..contracts import WorkflowNotification
from .base import BaseTransport


class InMemoryTransport(BaseTransport[Tuple[str, WorkflowNotification]]):
    """Simple in-process queue, one deque per topic."""

    def __init__(self) -> None:
        self._queues: Dict[str, Deque[Tuple[str, WorkflowNotification]]] = defaultdict(deque)
        self._lock = asyncio.Lock()

    async def publish(self, topic: str, message: WorkflowNotification) -> None:
        raw = (message.to_json(), message)
        async with self._lock:
            self._queues[topic].append(raw)

    async def subscribe(
        self, topic: str, lifespan: Optional[float] = None
    ) -> AsyncIterator[Tuple[Tuple[str, WorkflowNotification], WorkflowNotification]]:
        loop = asyncio.get_running_loop()
        start_time = loop.time() if lifespan else None

        while True:
            if lifespan and start_time:
                elapsed = loop.time() - start_time
                if elapsed >= lifespan:
                    break

            raw_message = None
            async with self._lock:
                if self._queues[topic]:
                    raw_message = self._queues[topic].popleft()
            if raw_message is not None:
                yield raw_message, raw_message[1]
                continue

            await asyncio.sleep(0.05)

    async def ack(self, raw_message: Tuple[str, WorkflowNotification]) -> None:
        """No-op acknowledgment for in-memory transport."""
        pass

    def pending(self, topic: str) -> int:
        return len(self._queues[topic])
