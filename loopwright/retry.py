"""Shared retry-with-backoff helper for external transport calls."""

import asyncio
from typing import Awaitable, Callable, TypeVar

from loopwright.logging import get_logger

log = get_logger(__name__)

T = TypeVar("T")


async def retry_async(
    operation: Callable[[], Awaitable[T]],
    *,
    max_attempts: int,
    delay_seconds: float,
    retry_if: Callable[[BaseException], bool],
    label: str = "call",
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """Run ``operation`` until it succeeds or a non-retryable error is raised.

    Only exceptions matching ``retry_if`` are retried, with a fixed delay between
    attempts. The last retryable error is re-raised once ``max_attempts`` is spent.

    Args:
        operation: Zero-argument coroutine factory
        max_attempts: Total attempts including the first one
        delay_seconds: Fixed wait between attempts
        retry_if: Predicate selecting retryable errors
        label: Name used in log events
        sleep: Awaitable sleep function (injectable for tests)

    Returns:
        The operation result
    """
    attempts = max(1, int(max_attempts))
    for attempt in range(1, attempts + 1):
        try:
            return await operation()
        except Exception as e:
            if not retry_if(e) or attempt >= attempts:
                raise
            log.warning(
                "Retrying after transient error",
                call=label,
                attempt=attempt,
                max_attempts=attempts,
                delay_seconds=delay_seconds,
                error=str(e),
            )
            await sleep(delay_seconds)
    raise RuntimeError("unreachable")
