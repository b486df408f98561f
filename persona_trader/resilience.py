"""
Per-stage timeouts for external calls.

Every brokerage, market data and narrative call in a cycle goes through
these helpers. A timeout is a failure of that stage only and is never
retried inside the same cycle.
"""
import asyncio
import logging
from typing import Any, Awaitable, Callable, TypeVar

from .errors import StageTimeout

logger = logging.getLogger("persona_trader.resilience")

T = TypeVar("T")


async def with_timeout(stage: str, awaitable: Awaitable[T], timeout: float) -> T:
    """Await with a deadline. Raises StageTimeout when it expires."""
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout)
    except asyncio.TimeoutError:
        logger.warning(f"TIMEOUT: {stage} exceeded {timeout:.1f}s")
        raise StageTimeout(stage, timeout)


async def call_blocking(
    stage: str,
    func: Callable[..., T],
    *args: Any,
    timeout: float,
    **kwargs: Any,
) -> T:
    """
    Run a blocking call in a worker thread with a deadline.

    The worker thread is not interrupted on timeout; its result is simply
    discarded.
    """
    return await with_timeout(stage, asyncio.to_thread(func, *args, **kwargs), timeout)
