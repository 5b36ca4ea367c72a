"""Notification transports for instance changes."""

from __future__ import annotations

import logging
from typing import Optional

from ..config import SignflowConfig, load_config
from ..errors import TransportUnavailable
from .base import INSTANCE_TOPIC, BaseTransport
from .inmemory import InMemoryTransport

logger = logging.getLogger(__name__)


def get_transport(
    backend: Optional[str] = None, config: Optional[SignflowConfig] = None
) -> BaseTransport:
    """Build the notification transport named by ``backend`` or the config.

    Raises:
        TransportUnavailable: the backend is unknown or its client library
            is not installed.
    """

    config = config or load_config()
    name = (backend or config.transport.backend).lower()

    if name == "inmemory":
        return InMemoryTransport()
    if name == "redis":
        from .redis import RedisTransport

        redis_conf = config.transport.redis
        try:
            transport = RedisTransport(
                host=redis_conf.host,
                port=redis_conf.port,
                db=redis_conf.db,
                password=redis_conf.password,
            )
        except ImportError as e:
            raise TransportUnavailable(f"Redis transport unavailable: {e}") from e
        logger.info(f"Publishing instance changes to redis at {redis_conf.host}:{redis_conf.port}")
        return transport
    raise TransportUnavailable(f"Unsupported transport backend: {name}")


__all__ = ["BaseTransport", "INSTANCE_TOPIC", "InMemoryTransport", "get_transport"]
