import asyncio
import logging
import random
from typing import Any, Awaitable, Callable, Optional, Tuple, Type

logger = logging.getLogger(__name__)


def calculate_backoff_delay(attempt: int, base_delay: float = 1.0, multiplier: float = 2.0,
                            jitter: bool = True) -> float:
    """Calculate exponential backoff delay (attempt is zero based) with optional jitter."""
    delay = base_delay * (multiplier ** attempt)
    if jitter:
        return delay + random.uniform(0.1, 0.3) * delay
    return delay


async def retry_async(
    operation: Callable[[], Awaitable[Any]],
    attempts: int = 3,
    base_delay: float = 1.0,
    multiplier: float = 2.0,
    jitter: bool = False,
    retry_on: Tuple[Type[BaseException], ...] = (Exception,),
    description: str = "operation",
    sleep: Optional[Callable[[float], Awaitable[Any]]] = None,
) -> Any:
    """
    Run `operation` until it succeeds or `attempts` are used up.

    The last exception is re-raised once every attempt failed. Only
    exceptions listed in `retry_on` are retried; anything else propagates
    straight away.
    """
    if attempts < 1:
        raise ValueError("attempts must be >= 1")

    sleep = sleep or asyncio.sleep
    for attempt in range(attempts):
        try:
            return await operation()
        except retry_on as e:
            if attempt >= attempts - 1:
                logger.error(f"{description} failed after {attempts} attempts: {e}")
                raise
            delay = calculate_backoff_delay(attempt, base_delay, multiplier, jitter)
            logger.warning(
                f"{description} attempt {attempt + 1}/{attempts} failed: {e}. Retrying in {delay:.2f}s"
            )
            await sleep(delay)
