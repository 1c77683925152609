"""Caller-side re-read-and-retry loop for optimistic concurrency conflicts."""

import logging
from typing import Awaitable, Callable, Optional, TypeVar

from refurbline.config import settings
from refurbline.core.errors import StaleState


logger = logging.getLogger(__name__)

T = TypeVar("T")


async def retry_on_stale_state(
    operation: Callable[[], Awaitable[T]],
    max_attempts: Optional[int] = None,
) -> T:
    """
    Run an operation, re-running it when it raises StaleState.

    The operation must re-read the job state on every call and pass it as
    expected_state; retrying with the same stale value would never succeed.

    Args:
        operation: Zero-argument coroutine factory
        max_attempts: Bound on attempts (default STALE_STATE_MAX_RETRIES)

    Raises:
        StaleState: If every attempt conflicted
    """
    attempts = max(1, max_attempts or settings.STALE_STATE_MAX_RETRIES)
    for attempt in range(1, attempts + 1):
        try:
            return await operation()
        except StaleState as exc:
            if attempt == attempts:
                logger.warning("Giving up after %d stale-state conflicts: %s", attempts, exc.message)
                raise
            logger.info("Stale state on attempt %d/%d, re-reading: %s", attempt, attempts, exc.message)
