"""
Retry helper with exponential backoff and jitter.

Used for calls to the hosted services where a transient failure is worth a
second attempt (JWKS fetch). Database queries are not retried.
"""

import random
import time
from typing import Callable, Optional, Tuple, Type, TypeVar

import structlog

logger = structlog.get_logger("retry")

T = TypeVar("T")

DEFAULT_ATTEMPTS = 3
BASE_DELAY_SECONDS = 0.5
MAX_DELAY_SECONDS = 8.0


def backoff_delay(attempt: int, base: float = BASE_DELAY_SECONDS, cap: float = MAX_DELAY_SECONDS) -> float:
    """
    Delay before retry number `attempt` (1-based): base * 2^(attempt-1), capped,
    plus up to 50% random jitter.
    """
    delay = min(cap, base * (2 ** (attempt - 1)))
    return delay + random.uniform(0, delay / 2)


def retry_with_backoff(
    func: Callable[[], T],
    attempts: int = DEFAULT_ATTEMPTS,
    retry_on: Tuple[Type[BaseException], ...] = (Exception,),
    sleep: Optional[Callable[[float], None]] = None,
    operation: str = "call",
) -> T:
    """Call `func` until it succeeds or `attempts` is exhausted; re-raises the last error."""
    for attempt in range(1, attempts + 1):
        try:
            return func()
        except retry_on as e:
            if attempt == attempts:
                logger.error("retry_exhausted", operation=operation, attempts=attempts, error=str(e))
                raise
            delay = backoff_delay(attempt)
            logger.warning(
                "retrying",
                operation=operation,
                attempt=attempt,
                delay_s=round(delay, 2),
                error=str(e),
            )
            (sleep or time.sleep)(delay)
