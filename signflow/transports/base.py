"""Transport interface for workflow instance change notifications."""

from __future__ import annotations

import abc
from typing import AsyncIterator, Generic, Optional, Tuple, TypeVar

from ..contracts import WorkflowNotification

RawMessageT = TypeVar("RawMessageT")

INSTANCE_TOPIC = "signflow.instances"


class BaseTransport(Generic[RawMessageT], metaclass=abc.ABCMeta):
    """Pushes :class:`WorkflowNotification`s to whoever watches instances.

    Backends implement the topic-level ``publish``/``subscribe``/``ack``
    primitives; the engine and watchers only use :meth:`notify` and
    :meth:`changes`, which are bound to :data:`INSTANCE_TOPIC`.
    """

    async def connect(self) -> None:
        pass

    async def disconnect(self) -> None:
        pass

    async def notify(self, notification: WorkflowNotification) -> None:
        """Announce a persisted instance change."""
        await self.publish(INSTANCE_TOPIC, notification)

    async def changes(
        self, lifespan: Optional[float] = None
    ) -> AsyncIterator[WorkflowNotification]:
        """Yield instance changes, acknowledging each once it is handed out."""
        async for raw, notification in self.subscribe(INSTANCE_TOPIC, lifespan=lifespan):
            await self.ack(raw)
            yield notification

    @abc.abstractmethod
    async def publish(self, topic: str, message: WorkflowNotification) -> None:
        raise NotImplementedError

    @abc.abstractmethod
    async def subscribe(
        self, topic: str, lifespan: Optional[float] = None
    ) -> AsyncIterator[Tuple[RawMessageT, WorkflowNotification]]:
        """Yield raw message and notification pairs from ``topic``.

        Args:
            topic: The topic to read.
            lifespan: Seconds to keep reading. ``None`` reads until cancelled.
        """
        raise NotImplementedError

    @abc.abstractmethod
    async def ack(self, raw_message: RawMessageT) -> None:
        raise NotImplementedError
