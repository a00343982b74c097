"""
Token bucket rate limiter.

Paces the Consul polling loop: tokens accumulate at ``quantum`` per second up
to ``capacity`` and each poll consumes a fixed number of them. Refill is lazy,
computed from the elapsed time whenever ``wait_for`` is called.
"""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable

from .errors import RateLimitExceeded

logger = logging.getLogger(__name__)


class TokenBucket:
    """
    Classic token bucket with a blocking acquire.

    Example usage:
        bucket = TokenBucket(capacity=60, quantum=1)

        while True:
            await bucket.wait_for(60)
            await poll()

    Not fair across concurrent callers; each polling loop owns its bucket.
    """

    def __init__(
        self,
        capacity: int,
        quantum: float,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """
        Args:
            capacity: Max number of tokens, also the number available at startup
            quantum: Number of tokens added every second
            clock: Monotonic time source in seconds
            sleep: Coroutine used to suspend the caller
        """
        if capacity < 0:
            raise ValueError("capacity must be >= 0")
        if quantum <= 0:
            raise ValueError("quantum must be > 0")

        logger.debug("Create token bucket with capacity %s, quantum %s", capacity, quantum)
        self.capacity = capacity
        self.quantum = quantum
        self._clock = clock
        self._sleep = sleep
        self._available = float(capacity)
        self._last = clock()

    @property
    def available(self) -> float:
        """Tokens available at the last refill."""
        return self._available

    def available_token_since(self, elapsed: float) -> float:
        return min(float(self.capacity), self._available + elapsed * self.quantum)

    def compute_wait_duration(self, tokens: int) -> float:
        wait_seconds = (tokens - self._available) / self.quantum
        logger.debug("Wait for %.3fs to get enough token", wait_seconds)
        return wait_seconds

    def _consume(self, tokens: int) -> None:
        self._available -= tokens
        self._last = self._clock()

    async def wait_for(self, tokens: int) -> None:
        """
        Wait until ``tokens`` are available and consume them.

        Returns immediately when the bucket already holds enough tokens.

        Raises:
            RateLimitExceeded: ``tokens`` is larger than the bucket capacity
        """
        if tokens > self.capacity:
            logger.error(
                "Requested token is bigger than max capacity %s < %s", self.capacity, tokens
            )
            raise RateLimitExceeded(tokens, self.capacity)

        if tokens <= 0:
            return

        now = self._clock()
        self._available = self.available_token_since(max(0.0, now - self._last))
        self._last = now

        if self._available >= tokens:
            logger.debug(
                "There are already enough available token %.3f >= %s", self._available, tokens
            )
            self._consume(tokens)
            return

        await self._sleep(self.compute_wait_duration(tokens))

        self._available = 0.0
        self._last = self._clock()
