from __future__ import annotations

import asyncio
import logging
import random
from typing import Awaitable, Callable, TypeVar

from ..errors import ConcurrentModification

logger = logging.getLogger(__name__)

T = TypeVar("T")


def compute_backoff(attempt: int, base: float = 0.05, jitter: float = 0.05) -> float:
    """Compute exponential backoff with jitter."""
    delay = base * (2 ** attempt)
    return delay + random.uniform(0, jitter)


async def schedule_retry(attempt: int) -> None:
    """Sleep for computed backoff delay before retrying."""
    delay = compute_backoff(attempt)
    await asyncio.sleep(delay)


async def with_conflict_retry(
    operation: Callable[[], Awaitable[T]], attempts: int = 3
) -> T:
    """Run ``operation`` again after a concurrent modification.

    ``operation`` must re-read instance state on every call; engine
    operations do. Precondition errors are never retried.
    """
    for attempt in range(attempts):
        try:
            return await operation()
        except ConcurrentModification:
            if attempt == attempts - 1:
                raise
            logger.debug(f"Concurrent modification, retry {attempt + 1}/{attempts - 1}")
            await schedule_retry(attempt)
    raise ValueError("attempts must be at least 1")
