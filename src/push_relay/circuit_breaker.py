"""
Circuit breaker protecting the push transport from sustained failure.

closed -> open after ``failure_threshold`` consecutive failures.
open -> half-open once ``reset_timeout_ms`` has elapsed since the last failure.
half-open -> closed after ``half_open_max_attempts`` successes, or straight
back to open on a single failure.
"""

from __future__ import annotations

import asyncio
import time
from enum import Enum
from typing import Awaitable, Callable, Optional, TypeVar

from loguru import logger

from .config import CircuitBreakerConfig
from .errors import CircuitBreakerOpenError

R = TypeVar("R")


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half-open"


class CircuitBreaker:
    """Async circuit breaker.

    State is guarded by an ``asyncio.Lock``; the lock is released while the
    wrapped call runs so concurrent callers are never serialized.

    Example:
        cb = CircuitBreaker(CircuitBreakerConfig(failure_threshold=3))
        result = await cb.execute(lambda: provider.send(sub, payload, opts))
    """

    def __init__(
        self,
        config: Optional[CircuitBreakerConfig] = None,
        *,
        name: str = "provider",
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config or CircuitBreakerConfig()
        self.name = name
        self._clock = clock
        self._state = CircuitState.CLOSED
        self._failures = 0
        self._successes = 0
        self._last_failure: Optional[float] = None
        self._lock = asyncio.Lock()

    @property
    def state(self) -> CircuitState:
        return self._state

    @property
    def failure_count(self) -> int:
        return self._failures

    @property
    def success_count(self) -> int:
        return self._successes

    async def allow(self) -> None:
        """Gate a call. Raises CircuitBreakerOpenError while open and cooling down."""
        async with self._lock:
            if self._state != CircuitState.OPEN:
                return
            if self._reset_due():
                self._state = CircuitState.HALF_OPEN
                self._successes = 0
                logger.info(f"Circuit breaker '{self.name}' half-open, probing transport")
                return
            raise CircuitBreakerOpenError(
                f"Circuit breaker '{self.name}' is open",
                state=self._state.value,
                failure_count=self._failures,
                details={"last_failure_age_sec": self._failure_age()},
            )

    async def on_success(self) -> None:
        async with self._lock:
            if self._state == CircuitState.HALF_OPEN:
                self._successes += 1
                if self._successes >= self.config.half_open_max_attempts:
                    self._close()
                    logger.info(f"Circuit breaker '{self.name}' closed after successful probes")
            elif self._state == CircuitState.CLOSED:
                self._failures = 0

    async def on_failure(self) -> None:
        async with self._lock:
            self._failures += 1
            self._last_failure = self._clock()
            if self._state == CircuitState.HALF_OPEN:
                self._open()
            elif (
                self._state == CircuitState.CLOSED
                and self._failures >= self.config.failure_threshold
            ):
                self._open()

    async def execute(self, fn: Callable[[], Awaitable[R]]) -> R:
        """Run ``fn`` under breaker protection.

        Raises:
            CircuitBreakerOpenError: if open and the reset timeout has not elapsed
                (``fn`` is not invoked)
        """
        await self.allow()
        try:
            result = await fn()
        except Exception:
            await self.on_failure()
            raise
        await self.on_success()
        return result

    def reset(self) -> None:
        """Force closed with all counters zeroed."""
        self._close()

    # --------------- internals

    def _open(self) -> None:
        self._state = CircuitState.OPEN
        self._successes = 0
        logger.warning(f"Circuit breaker '{self.name}' opened after {self._failures} failure(s)")

    def _close(self) -> None:
        self._state = CircuitState.CLOSED
        self._failures = 0
        self._successes = 0
        self._last_failure = None

    def _failure_age(self) -> Optional[float]:
        if self._last_failure is None:
            return None
        return self._clock() - self._last_failure

    def _reset_due(self) -> bool:
        age = self._failure_age()
        if age is None:
            return False
        return age * 1000.0 >= self.config.reset_timeout_ms
