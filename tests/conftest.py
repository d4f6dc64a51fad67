"""
Pytest configuration and fixtures for push-relay.

Provides a scriptable provider, in-memory storage and a configured core.
"""

from collections import deque
from typing import Deque, List, Optional, Tuple

import pytest

from push_relay import (
    InMemoryStorageAdapter,
    NotificationPayload,
    ProviderResult,
    PushCore,
    SendOptions,
    Subscription,
    SubscriptionKeys,
    VapidKeys,
)
from push_relay.errors import ProviderError


class FakeProvider:
    """Provider returning scripted results (success once the script runs out)."""

    def __init__(self, results: Optional[List[ProviderResult]] = None):
        self._script: Deque[ProviderResult] = deque(results or [])
        self.calls: List[Tuple[Subscription, NotificationPayload, SendOptions]] = []
        self.raise_error: Optional[Exception] = None

    def queue(self, *results: ProviderResult) -> None:
        self._script.extend(results)

    async def send(self, subscription, payload, options) -> ProviderResult:
        self.calls.append((subscription, payload, options))
        if self.raise_error is not None:
            raise self.raise_error
        if self._script:
            return self._script.popleft()
        return ProviderResult(success=True, status_code=201)

    def get_name(self) -> str:
        return "fake"


class RecordingMetrics:
    """MetricsAdapter capturing every call as (kind, metric, value)."""

    def __init__(self):
        self.calls = []

    def increment(self, metric, tags=None):
        self.calls.append(("increment", metric, None))

    def gauge(self, metric, value, tags=None):
        self.calls.append(("gauge", metric, value))

    def timing(self, metric, duration_ms, tags=None):
        self.calls.append(("timing", metric, duration_ms))

    def histogram(self, metric, value, tags=None):
        self.calls.append(("histogram", metric, value))

    def names(self):
        return [name for _, name, _ in self.calls]


def transient(status: int = 503, retry_after: Optional[float] = None) -> ProviderResult:
    return ProviderResult(
        success=False,
        status_code=status,
        error=ProviderError(f"status {status}", status, True),
        should_retry=True,
        retry_after=retry_after,
    )


def permanent(status: int = 410) -> ProviderResult:
    return ProviderResult(
        success=False,
        status_code=status,
        error=ProviderError(f"status {status}", status, False),
        should_retry=False,
    )


@pytest.fixture
def vapid_keys():
    return VapidKeys(
        public_key="BEl62iUYgUivxIkv69yViEuiBIa-Ib9-SkvMeAtA3LFgDzkrxZJjSgSnfckjBJuBkr3qBUYIHBQFLXYp5Nksh8U",
        private_key="UUxI4O8-FbRouAevSmBQ6o18hgE4nSG3qwvJTfKc-ls",
        subject="mailto:ops@example.com",
    )


@pytest.fixture
def subscription():
    return Subscription(
        endpoint="https://push.example.com/send/abc",
        keys=SubscriptionKeys(p256dh="BNcRdreALRFXTkOOUHK1EtK2wtaz5Ry4YfYCA_0QTpQtUbVlUls0VJXg7A8u-Ts1XbjhazAkj7I99e8QcYP7DkM", auth="tBHItJI5svbpez7KI4CCXg"),
        user_id="user-1",
    )


@pytest.fixture
def payload():
    return NotificationPayload(title="Hello", body="World")


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def storage():
    return InMemoryStorageAdapter()


@pytest.fixture
def metrics():
    return RecordingMetrics()


@pytest.fixture
def core(vapid_keys, storage, provider, metrics):
    return PushCore(
        vapid_keys=vapid_keys,
        storage_adapter=storage,
        provider_adapter=provider,
        metrics_adapter=metrics,
        retry_policy={"jitter": False},
    )
