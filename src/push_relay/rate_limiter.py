"""
Token bucket rate limiter for outbound send attempts.
"""

from __future__ import annotations

import asyncio
import math
import threading
import time
from typing import Callable

from .errors import RateLimitError

POLL_INTERVAL_SEC = 0.1


class TokenBucketRateLimiter:
    """
    Token bucket: ``refill_rate`` tokens per second accumulate up to ``capacity``.

    The bucket starts full and refills lazily on every operation. ``acquire``
    is a cooperative polling wait with no fairness among waiters.

    Usage:

        limiter = TokenBucketRateLimiter(capacity=100, refill_rate=50)
        await limiter.acquire()          # blocks until a token is free
        if limiter.try_acquire(5): ...   # non-blocking
    """

    def __init__(
        self,
        capacity: float,
        refill_rate: float,
        *,
        clock: Callable[[], float] = time.monotonic,
    ):
        if capacity <= 0:
            raise ValueError("capacity must be > 0")
        if refill_rate <= 0:
            raise ValueError("refill_rate must be > 0")
        self.capacity = capacity
        self.refill_rate = refill_rate
        self._clock = clock
        self._tokens = float(capacity)
        self._last_refill = clock()
        # Sync lock: try_acquire/get_available_tokens stay synchronous
        self._lock = threading.Lock()

    async def acquire(self, tokens: int = 1) -> None:
        """Wait until ``tokens`` are available, then consume them."""
        self._check_request(tokens)
        while not self.try_acquire(tokens):
            await asyncio.sleep(POLL_INTERVAL_SEC)

    def try_acquire(self, tokens: int = 1) -> bool:
        """Consume ``tokens`` if available right now."""
        with self._lock:
            self._refill()
            if self._tokens >= tokens:
                self._tokens -= tokens
                return True
            return False

    def get_available_tokens(self) -> int:
        with self._lock:
            self._refill()
            return math.floor(self._tokens)

    # --------------- internals

    def _refill(self) -> None:
        now = self._clock()
        elapsed = max(0.0, now - self._last_refill)
        self._tokens = min(self.capacity, self._tokens + elapsed * self.refill_rate)
        self._last_refill = now

    def _check_request(self, tokens: int) -> None:
        if tokens > self.capacity:
            raise RateLimitError(
                f"Requested {tokens} tokens exceeds bucket capacity {self.capacity}",
                details={"requested": tokens, "capacity": self.capacity},
            )
