"""Retry logic with a fixed delay.

This module provides:
- retry_with_delay: Bounded retry with a fixed, interruptible delay
- RetryAborted: Raised when the wait between attempts is interrupted
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import Any

from medsync.client.sync.types import SyncError

logger = logging.getLogger(__name__)

# Default retry configuration
DEFAULT_MAX_RETRIES = 2
DEFAULT_DELAY = 2.0  # seconds


class RetryAborted(SyncError):
    """The wait between two attempts was interrupted (e.g., shutdown)."""


def retry_with_delay(
    func: Callable[[], Any],
    max_retries: int = DEFAULT_MAX_RETRIES,
    delay: float = DEFAULT_DELAY,
    retryable_exceptions: tuple[type[Exception], ...] = (Exception,),
    sleep: Callable[[float], Any] = time.sleep,
) -> Any:
    """Execute a function, retrying with a fixed delay on failure.

    Args:
        func: Function to execute.
        max_retries: Extra attempts after the first one.
        delay: Seconds to wait between attempts.
        retryable_exceptions: Tuple of exception types to retry on.
        sleep: Wait function. If it returns a truthy value the wait was
            interrupted and RetryAborted is raised (``threading.Event.wait``
            can be passed directly).

    Returns:
        Result of the function.

    Raises:
        The last exception if all attempts fail.
        RetryAborted: If the wait was interrupted.
    """
    for attempt in range(max_retries + 1):
        try:
            return func()
        except retryable_exceptions as e:
            if attempt == max_retries:
                logger.error("All %d attempts failed: %s", max_retries + 1, e)
                raise

            logger.warning(
                "Attempt %d/%d failed: %s. Retrying in %.1fs...",
                attempt + 1,
                max_retries + 1,
                e,
                delay,
            )
            if sleep(delay):
                raise RetryAborted("Retry interrupted") from e

    raise RuntimeError("Unexpected retry loop exit")
