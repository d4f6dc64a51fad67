"""
Unit tests for the circuit breaker state machine.
"""

import pytest

from push_relay.circuit_breaker import CircuitBreaker, CircuitState
from push_relay.config import CircuitBreakerConfig
from push_relay.errors import CircuitBreakerOpenError


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


async def _ok():
    return "ok"


async def _boom():
    raise TimeoutError("transient")


def _breaker(clock, threshold=3, reset_ms=1000, probes=2):
    return CircuitBreaker(
        CircuitBreakerConfig(
            failure_threshold=threshold, reset_timeout_ms=reset_ms, half_open_max_attempts=probes
        ),
        clock=clock,
    )


async def _fail(cb, times):
    for _ in range(times):
        with pytest.raises(TimeoutError):
            await cb.execute(_boom)


@pytest.mark.asyncio
async def test_opens_after_threshold():
    cb = _breaker(FakeClock(), threshold=3)
    await _fail(cb, 2)
    assert cb.state == CircuitState.CLOSED
    await _fail(cb, 1)
    assert cb.state == CircuitState.OPEN
    assert cb.failure_count == 3


@pytest.mark.asyncio
async def test_open_rejects_without_calling():
    cb = _breaker(FakeClock(), threshold=1)
    await _fail(cb, 1)

    called = []

    async def fn():
        called.append(True)
        return "ok"

    with pytest.raises(CircuitBreakerOpenError) as ei:
        await cb.execute(fn)
    assert called == []
    assert ei.value.state == "open"
    assert ei.value.failure_count == 1


@pytest.mark.asyncio
async def test_success_resets_failures_when_closed():
    cb = _breaker(FakeClock(), threshold=3)
    await _fail(cb, 2)
    assert await cb.execute(_ok) == "ok"
    assert cb.failure_count == 0
    await _fail(cb, 2)
    assert cb.state == CircuitState.CLOSED


@pytest.mark.asyncio
async def test_half_open_after_timeout_then_closes():
    clock = FakeClock()
    cb = _breaker(clock, threshold=1, reset_ms=1000, probes=2)
    await _fail(cb, 1)

    clock.advance(0.5)
    with pytest.raises(CircuitBreakerOpenError):
        await cb.execute(_ok)

    clock.advance(0.5)
    assert await cb.execute(_ok) == "ok"
    assert cb.state == CircuitState.HALF_OPEN
    assert cb.success_count == 1

    assert await cb.execute(_ok) == "ok"
    assert cb.state == CircuitState.CLOSED
    assert cb.failure_count == 0


@pytest.mark.asyncio
async def test_half_open_failure_reopens():
    clock = FakeClock()
    cb = _breaker(clock, threshold=2, reset_ms=1000)
    await _fail(cb, 2)
    clock.advance(1.0)

    await _fail(cb, 1)
    assert cb.state == CircuitState.OPEN

    # cool-down restarts from the latest failure
    clock.advance(0.9)
    with pytest.raises(CircuitBreakerOpenError):
        await cb.execute(_ok)


@pytest.mark.asyncio
async def test_reset_forces_closed():
    cb = _breaker(FakeClock(), threshold=1)
    await _fail(cb, 1)
    cb.reset()
    assert cb.state == CircuitState.CLOSED
    assert cb.failure_count == 0
    assert await cb.execute(_ok) == "ok"


def test_state_values():
    assert CircuitState.CLOSED.value == "closed"
    assert CircuitState.OPEN.value == "open"
    assert CircuitState.HALF_OPEN.value == "half-open"
