"""
Single provider call shared by the core and the retry worker.

Applies the optional rate limiter, then routes the call through the
optional circuit breaker. Providers report transport failures as results
rather than exceptions, so a retryable failed result is raised inside the
breaker (counted as a failure) and unwrapped again for the caller.
"""

from __future__ import annotations

from typing import Optional

from .circuit_breaker import CircuitBreaker
from .errors import ProviderError
from .models import NotificationPayload, SendOptions, Subscription
from .results import ProviderResult
from .types import ProviderAdapter, RateLimiter


class _TransientFailure(ProviderError):
    def __init__(self, result: ProviderResult):
        super().__init__(
            str(result.error) if result.error else "transient provider failure",
            status_code=result.status_code,
            should_retry=True,
        )
        self.result = result


async def deliver(
    provider: ProviderAdapter,
    subscription: Subscription,
    payload: NotificationPayload,
    options: SendOptions,
    *,
    rate_limiter: Optional[RateLimiter] = None,
    circuit_breaker: Optional[CircuitBreaker] = None,
) -> ProviderResult:
    """Send once through limiter and breaker.

    Raises:
        CircuitBreakerOpenError: breaker open, provider not called
        Exception: anything the provider itself raises
    """
    if rate_limiter is not None:
        await rate_limiter.acquire()

    if circuit_breaker is None:
        return await provider.send(subscription, payload, options)

    async def attempt() -> ProviderResult:
        result = await provider.send(subscription, payload, options)
        if not result.success and result.should_retry:
            raise _TransientFailure(result)
        return result

    try:
        return await circuit_breaker.execute(attempt)
    except _TransientFailure as failure:
        return failure.result
