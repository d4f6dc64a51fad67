from __future__ import annotations

import asyncio
from typing import Any, Dict, List, Optional

from ..errors import StorageError
from ..models import (
    CreateSubscriptionData,
    QueueStats,
    RetryEntry,
    Subscription,
    SubscriptionFilter,
)
from ..utils import utc_now

_MUTABLE_FIELDS = {
    "endpoint",
    "keys",
    "user_id",
    "status",
    "failed_count",
    "last_used_at",
    "expires_at",
    "metadata",
}


class InMemoryStorageAdapter:
    """
    Process-local StorageAdapter.

    Suitable for tests, demos and single-process deployments where losing the
    retry queue on restart is acceptable. Records are copied on the way in and
    out so callers never alias stored state.
    """

    def __init__(self) -> None:
        self._subs: Dict[str, Subscription] = {}
        self._queue: Dict[str, RetryEntry] = {}
        self._lock = asyncio.Lock()
        self._closed = False

    async def __aenter__(self) -> "InMemoryStorageAdapter":
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    # --------------- subscriptions

    async def create_subscription(self, data: CreateSubscriptionData) -> Subscription:
        self._ensure_open()
        sub = Subscription(
            endpoint=data.endpoint,
            keys=data.keys,
            user_id=data.user_id,
            expires_at=data.expires_at,
            metadata=data.metadata,
        )
        async with self._lock:
            self._subs[sub.id] = sub
        return sub.model_copy(deep=True)

    async def add_subscription(self, subscription: Subscription) -> Subscription:
        """Store a fully-formed subscription as is (keeps its id)."""
        self._ensure_open()
        async with self._lock:
            self._subs[subscription.id] = subscription.model_copy(deep=True)
        return subscription

    async def get_subscription_by_id(self, id: str) -> Optional[Subscription]:
        self._ensure_open()
        sub = self._subs.get(id)
        return sub.model_copy(deep=True) if sub else None

    async def find_subscriptions(self, filter: SubscriptionFilter) -> List[Subscription]:
        self._ensure_open()
        return [s.model_copy(deep=True) for s in self._subs.values() if filter.matches(s)]

    async def update_subscription(self, id: str, **fields: Any) -> Subscription:
        self._ensure_open()
        unknown = set(fields) - _MUTABLE_FIELDS
        if unknown:
            raise StorageError(
                f"Cannot update fields: {sorted(unknown)}",
                {"operation": "update_subscription", "subscription_id": id},
            )
        async with self._lock:
            current = self._subs.get(id)
            if current is None:
                raise StorageError(
                    f"Subscription not found: {id}",
                    {"operation": "update_subscription", "subscription_id": id},
                )
            updated = Subscription.model_validate(
                {**current.model_dump(), **fields, "updated_at": utc_now()}
            )
            self._subs[id] = updated
        return updated.model_copy(deep=True)

    async def delete_subscription(self, id: str) -> None:
        self._ensure_open()
        async with self._lock:
            self._subs.pop(id, None)
            # mirror ON DELETE CASCADE
            for rid in [r.id for r in self._queue.values() if r.subscription_id == id]:
                del self._queue[rid]

    # --------------- retry queue

    async def enqueue_retry(self, entry: RetryEntry) -> None:
        self._ensure_open()
        async with self._lock:
            if entry.id in self._queue:
                raise StorageError(
                    f"Retry entry already exists: {entry.id}",
                    {"operation": "enqueue_retry", "retry_id": entry.id},
                )
            self._queue[entry.id] = entry.model_copy(deep=True)

    async def dequeue_retry(self, limit: int) -> List[RetryEntry]:
        self._ensure_open()
        now = utc_now()
        ready = sorted(
            (r for r in self._queue.values() if r.next_retry_at <= now),
            key=lambda r: r.next_retry_at,
        )
        return [r.model_copy(deep=True) for r in ready[: max(0, limit)]]

    async def ack_retry(self, id: str) -> None:
        self._ensure_open()
        async with self._lock:
            self._queue.pop(id, None)

    async def get_queue_stats(self) -> QueueStats:
        self._ensure_open()
        now = utc_now()
        pending = sum(1 for r in self._queue.values() if r.next_retry_at <= now)
        return QueueStats(pending=pending, processing=0, failed=0)

    async def list_retries(self) -> List[RetryEntry]:
        """Every queued entry, ready or not (inspection helper)."""
        return [r.model_copy(deep=True) for r in self._queue.values()]

    async def migrate(self) -> None:
        return None

    async def close(self) -> None:
        self._closed = True

    @property
    def closed(self) -> bool:
        return self._closed

    def _ensure_open(self) -> None:
        if self._closed:
            raise StorageError("Storage adapter is closed", {"operation": "ensure_open"})
