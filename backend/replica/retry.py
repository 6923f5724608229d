"""
Exponential backoff for flaky external calls (rendering, audits)
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional, Tuple, Type, TypeVar

from .log import get_logger

T = TypeVar("T")

logger = get_logger("replica.retry")


def backoff_delays(max_attempts: int, base_delay: float = 1.0, factor: float = 2.0,
                   max_delay: float = 30.0):
    """Delays slept between attempts: base, base*factor, ... capped at max_delay"""
    return [min(max_delay, base_delay * factor ** i) for i in range(max(0, max_attempts - 1))]


async def retry_with_backoff(
    func: Callable[[], Awaitable[T]],
    *,
    max_attempts: int = 3,
    base_delay: float = 1.0,
    factor: float = 2.0,
    max_delay: float = 30.0,
    retry_on: Tuple[Type[BaseException], ...] = (Exception,),
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    description: str = "call",
    log: Optional[logging.Logger] = None,
) -> T:
    """
    Await func() until it succeeds or max_attempts is reached.

    Args:
        func: Zero-argument coroutine factory; called once per attempt
        max_attempts: Total number of attempts (>= 1)
        retry_on: Exception types that trigger another attempt; others propagate at once
        sleep: Injected for tests

    Returns:
        The first successful result. The last exception is re-raised when every
        attempt fails.
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be >= 1")

    log = log or logger
    delays = backoff_delays(max_attempts, base_delay, factor, max_delay)

    for attempt in range(1, max_attempts + 1):
        try:
            return await func()
        except retry_on as e:
            if attempt == max_attempts:
                log.warning(f"{description} failed after {attempt} attempts: {e}")
                raise
            delay = delays[attempt - 1]
            log.info(f"{description} attempt {attempt}/{max_attempts} failed ({e}); retrying in {delay:.1f}s")
            await sleep(delay)
