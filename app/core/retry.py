"""PULSE: Retry with bounded exponential backoff.

Worst-case added latency for n attempts is
initial_delay * (factor ** (n - 1) - 1) / (factor - 1), e.g. 1s + 2s = 3s
for the default three attempts.
"""

import asyncio
from typing import Awaitable, Callable, Optional, TypeVar

from app.core.logging import get_logger

logger = get_logger("retry")

T = TypeVar("T")


def _always(_: BaseException) -> bool:
    return True


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    max_attempts: int = 3,
    initial_delay: float = 1.0,
    backoff_factor: float = 2.0,
    retry_if: Callable[[BaseException], bool] = _always,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    label: Optional[str] = None,
) -> T:
    """Await operation() until it succeeds or attempts run out.

    Exceptions for which retry_if() is false are re-raised immediately.
    The last exception is re-raised once max_attempts is reached.
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be >= 1")

    delay = initial_delay
    for attempt in range(1, max_attempts + 1):
        try:
            return await operation()
        except Exception as e:
            if attempt >= max_attempts or not retry_if(e):
                raise
            logger.warning(
                f"{label or 'operation'} attempt {attempt}/{max_attempts} failed: {e}. "
                f"Retrying in {delay:.2f}s"
            )
            await sleep(delay)
            delay *= backoff_factor

    raise RuntimeError("unreachable")  # pragma: no cover
