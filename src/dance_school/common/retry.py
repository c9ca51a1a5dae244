from __future__ import annotations

import logging
import time
from typing import Callable, TypeVar

from ..core.constants import DEFAULT_RETRY_ATTEMPTS, DEFAULT_RETRY_BASE_DELAY
from ..core.exceptions import TransientError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def retry_transient(
    operation: Callable[[], T],
    *,
    attempts: int = DEFAULT_RETRY_ATTEMPTS,
    base_delay: float = DEFAULT_RETRY_BASE_DELAY,
    description: str = "operation",
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Run ``operation`` retrying TransientError with exponential backoff.

    At most ``attempts`` calls are made; the last TransientError propagates.
    """
    attempts = max(1, int(attempts))
    for attempt in range(1, attempts + 1):
        try:
            return operation()
        except TransientError as e:
            if attempt >= attempts:
                logger.error("%s failed after %d attempts: %s", description, attempt, e)
                raise
            delay = base_delay * (2 ** (attempt - 1))
            logger.warning("%s failed (attempt %d/%d), retrying in %.3fs: %s", description, attempt, attempts, delay, e)
            sleep(delay)
    raise AssertionError("unreachable")
