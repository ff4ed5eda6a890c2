"""
Shared retry policy applied at every external-call boundary.
"""
import asyncio
import logging
import random
from typing import Awaitable, Callable, Optional, Tuple, Type, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RetryPolicy:
    """
    Bounded exponential backoff: delay = min(base_delay * 2**(attempt-1), max_delay),
    plus up to `jitter` seconds of random noise. The last error is re-raised.
    """

    def __init__(
        self,
        max_attempts: int = 3,
        base_delay: float = 1.0,
        max_delay: float = 30.0,
        jitter: float = 0.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.jitter = jitter
        self._sleep = sleep

    def delay_for(self, attempt: int) -> float:
        delay = min(self.base_delay * 2 ** (attempt - 1), self.max_delay)
        if self.jitter:
            delay += random.uniform(0, self.jitter)
        return delay

    async def run(
        self,
        fn: Callable[[], Awaitable[T]],
        *,
        label: str = "operation",
        retry_on: Tuple[Type[BaseException], ...] = (Exception,),
        should_retry: Optional[Callable[[BaseException], bool]] = None,
    ) -> T:
        for attempt in range(1, self.max_attempts + 1):
            try:
                return await fn()
            except retry_on as e:
                if attempt >= self.max_attempts:
                    raise
                if should_retry is not None and not should_retry(e):
                    raise

                delay = self.delay_for(attempt)
                logger.warning(
                    f"Retrying {label} ({attempt}/{self.max_attempts}) in {delay:.1f}s: {e}",
                    extra={"label": label, "attempt": attempt, "delay": delay},
                )
                await self._sleep(delay)

        raise RuntimeError("unreachable")
