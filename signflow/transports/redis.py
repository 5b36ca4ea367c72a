"""Redis transport for cross-process notifications."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, AsyncIterator, Optional, Tuple

from pydantic import ValidationError

try:
    import redis.asyncio as redis
except ImportError:
    redis = None

from ..contracts import WorkflowNotification
from .base import BaseTransport

logger = logging.getLogger(__name__)


class RedisTransport(BaseTransport[str]):
    """Redis list used as a notification queue."""

    def __init__(
        self,
        host: str = "localhost",
        port: int = 6379,
        db: int = 0,
        password: Optional[str] = None,
    ) -> None:
        if redis is None:
            raise ImportError("redis package is required for RedisTransport")

        self.host = host
        self.port = port
        self.db = db
        self.password = password
        self._redis: Optional[Any] = None

    async def connect(self) -> None:
        self._redis = redis.Redis(
            host=self.host,
            port=self.port,
            db=self.db,
            password=self.password,
            decode_responses=True,
        )
        await self._redis.ping()

    async def disconnect(self) -> None:
        if self._redis:
            await self._redis.aclose()
            self._redis = None

    async def publish(self, topic: str, message: WorkflowNotification) -> None:
        if not self._redis:
            await self.connect()
        await self._redis.lpush(f"signflow:{topic}", message.to_json())

    async def subscribe(
        self, topic: str, lifespan: Optional[float] = None
    ) -> AsyncIterator[Tuple[str, WorkflowNotification]]:
        if not self._redis:
            await self.connect()

        queue_name = f"signflow:{topic}"
        loop = asyncio.get_running_loop()
        start_time = loop.time() if lifespan else None

        while True:
            if lifespan and start_time:
                if loop.time() - start_time >= lifespan:
                    break

            result = await self._redis.brpop(queue_name, timeout=1)
            if result:
                _, message_json = result
                try:
                    message = WorkflowNotification.from_json(message_json)
                except ValidationError as e:
                    logger.warning(f"Dropping malformed notification on {queue_name}: {e}")
                    continue
                yield message_json, message

            await asyncio.sleep(0.01)

    async def ack(self, raw_message: str) -> None:
        """No-op acknowledgment (message already consumed)."""
        pass
