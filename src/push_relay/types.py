"""
Adapter protocols for pluggable storage, transport, metrics and rate limiting.

Implementations are injected at configuration time; no inheritance is
required (structural typing).
"""

from __future__ import annotations

from typing import Any, Awaitable, Callable, List, Optional, Protocol, Union, runtime_checkable

from .models import (
    CreateSubscriptionData,
    NotificationPayload,
    QueueStats,
    RetryEntry,
    SendOptions,
    Subscription,
    SubscriptionFilter,
)
from .results import ProviderResult

Tags = Optional[dict[str, str]]


@runtime_checkable
class StorageAdapter(Protocol):
    """Persistence for subscriptions and the retry queue."""

    async def create_subscription(self, data: CreateSubscriptionData) -> Subscription: ...

    async def get_subscription_by_id(self, id: str) -> Optional[Subscription]: ...

    async def find_subscriptions(self, filter: SubscriptionFilter) -> List[Subscription]: ...

    async def update_subscription(self, id: str, **fields: Any) -> Subscription:
        """Apply partial field updates; raises StorageError if the id is unknown."""
        ...

    async def delete_subscription(self, id: str) -> None: ...

    async def enqueue_retry(self, entry: RetryEntry) -> None: ...

    async def dequeue_retry(self, limit: int) -> List[RetryEntry]:
        """Entries with next_retry_at <= now, ascending by next_retry_at."""
        ...

    async def ack_retry(self, id: str) -> None:
        """Remove an entry; acking a missing id is not an error."""
        ...

    async def get_queue_stats(self) -> QueueStats: ...

    async def close(self) -> None: ...


@runtime_checkable
class ProviderAdapter(Protocol):
    """Transport that actually delivers a notification."""

    async def send(
        self,
        subscription: Subscription,
        payload: NotificationPayload,
        options: SendOptions,
    ) -> ProviderResult: ...

    def get_name(self) -> str: ...


@runtime_checkable
class MetricsAdapter(Protocol):
    """Sink for operational metrics. Calls must be cheap and synchronous."""

    def increment(self, metric: str, tags: Tags = None) -> None: ...

    def gauge(self, metric: str, value: float, tags: Tags = None) -> None: ...

    def timing(self, metric: str, duration_ms: float, tags: Tags = None) -> None: ...

    def histogram(self, metric: str, value: float, tags: Tags = None) -> None: ...


@runtime_checkable
class RateLimiter(Protocol):
    async def acquire(self, tokens: int = 1) -> None: ...

    def try_acquire(self, tokens: int = 1) -> bool: ...

    def get_available_tokens(self) -> int: ...


# Hooks may be plain functions or coroutines.
HookCallable = Callable[..., Union[None, Awaitable[None]]]
