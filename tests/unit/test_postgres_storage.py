"""
Unit tests for PostgresStorageAdapter against a mocked connection pool.
"""

from contextlib import asynccontextmanager
from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest
from psycopg.types.json import Jsonb

from push_relay import (
    CreateSubscriptionData,
    NotificationPayload,
    RetryEntry,
    SubscriptionFilter,
    SubscriptionKeys,
    SubscriptionStatus,
)
from push_relay.errors import StorageError
from push_relay.storage import PostgresStorageAdapter
from push_relay.storage import sql as q
from push_relay.utils import generate_id, utc_now


def _row(**overrides):
    now = utc_now()
    row = {
        "id": generate_id(),
        "endpoint": "https://push.example.com/x",
        "keys": {"p256dh": "p", "auth": "a"},
        "user_id": "u1",
        "created_at": now,
        "updated_at": now,
        "last_used_at": None,
        "failed_count": 0,
        "status": "active",
        "expires_at": None,
        "metadata": None,
    }
    row.update(overrides)
    return row


class FakePool:
    """Minimal AsyncConnectionPool stand-in yielding one mocked connection."""

    def __init__(self, rows=None, error=None):
        self.cursor = MagicMock()
        self.cursor.fetchone = AsyncMock(return_value=(rows or [None])[0])
        self.cursor.fetchall = AsyncMock(return_value=rows or [])
        self.conn = MagicMock()
        self.conn.execute = AsyncMock(side_effect=error, return_value=self.cursor)
        self.closed = False

    @asynccontextmanager
    async def connection(self):
        yield self.conn

    async def close(self):
        self.closed = True


def _adapter(pool):
    return PostgresStorageAdapter({"dsn": "postgresql://test"}, pool=pool)


def test_requires_dsn_without_pool():
    with pytest.raises(ValueError):
        PostgresStorageAdapter({})


@pytest.mark.asyncio
async def test_migrate_runs_schema():
    pool = FakePool()
    await _adapter(pool).migrate()
    assert pool.conn.execute.await_count == len(q.SCHEMA_STATEMENTS)


@pytest.mark.asyncio
async def test_create_subscription_maps_row():
    row = _row()
    pool = FakePool(rows=[row])
    storage = _adapter(pool)

    sub = await storage.create_subscription(
        CreateSubscriptionData(endpoint=row["endpoint"], keys=SubscriptionKeys(p256dh="p", auth="a"))
    )

    assert sub.id == row["id"]
    assert sub.keys.p256dh == "p"
    assert sub.status == SubscriptionStatus.ACTIVE
    params = pool.conn.execute.await_args.args[1]
    assert isinstance(params["keys"], Jsonb)
    assert params["status"] == "active"
    assert params["failed_count"] == 0


@pytest.mark.asyncio
async def test_get_missing_returns_none():
    storage = _adapter(FakePool(rows=[None]))
    assert await storage.get_subscription_by_id(generate_id()) is None


@pytest.mark.asyncio
async def test_find_passes_filter_params():
    pool = FakePool(rows=[_row(), _row()])
    storage = _adapter(pool)

    subs = await storage.find_subscriptions(
        SubscriptionFilter(user_id="u1", status=SubscriptionStatus.ACTIVE)
    )

    assert len(subs) == 2
    params = pool.conn.execute.await_args.args[1]
    assert params["user_id"] == "u1"
    assert params["status"] == "active"


@pytest.mark.asyncio
async def test_update_adapts_values():
    row = _row(status="expired", failed_count=2)
    pool = FakePool(rows=[row])
    storage = _adapter(pool)

    sub = await storage.update_subscription(
        row["id"], status=SubscriptionStatus.EXPIRED, failed_count=2
    )

    assert sub.status == SubscriptionStatus.EXPIRED
    params = pool.conn.execute.await_args.args[1]
    assert params == {"failed_count": 2, "status": "expired", "id": row["id"]}


@pytest.mark.asyncio
async def test_update_unknown_row_raises():
    storage = _adapter(FakePool(rows=[None]))
    with pytest.raises(StorageError):
        await storage.update_subscription(generate_id(), failed_count=1)


@pytest.mark.asyncio
async def test_update_rejects_unknown_columns():
    pool = FakePool()
    with pytest.raises(StorageError):
        await _adapter(pool).update_subscription(generate_id(), created_at=utc_now())
    pool.conn.execute.assert_not_awaited()


@pytest.mark.asyncio
async def test_enqueue_serializes_payload():
    pool = FakePool()
    entry = RetryEntry(
        subscription_id=generate_id(),
        payload=NotificationPayload(title="t", body="b"),
        next_retry_at=utc_now() + timedelta(seconds=5),
    )

    await _adapter(pool).enqueue_retry(entry)

    params = pool.conn.execute.await_args.args[1]
    assert params["id"] == entry.id
    assert isinstance(params["payload"], Jsonb)
    assert params["payload"].obj == {"title": "t", "body": "b"}


@pytest.mark.asyncio
async def test_dequeue_maps_rows():
    now = utc_now()
    row = {
        "id": generate_id(),
        "subscription_id": generate_id(),
        "payload": {"title": "t", "body": "b"},
        "attempt": 2,
        "next_retry_at": now,
        "last_error": "boom",
        "created_at": now,
    }
    pool = FakePool(rows=[row])

    entries = await _adapter(pool).dequeue_retry(10)

    assert len(entries) == 1
    assert entries[0].attempt == 2
    assert entries[0].payload.title == "t"
    assert pool.conn.execute.await_args.args[1]["limit"] == 10


@pytest.mark.asyncio
async def test_queue_stats():
    storage = _adapter(FakePool(rows=[{"count": 7}]))
    stats = await storage.get_queue_stats()
    assert stats.pending == 7
    assert stats.processing == 0


@pytest.mark.asyncio
async def test_backend_errors_become_storage_errors():
    storage = _adapter(FakePool(error=RuntimeError("connection refused")))
    with pytest.raises(StorageError) as ei:
        await storage.ack_retry(generate_id())
    assert ei.value.details["operation"] == "acknowledge retry"


@pytest.mark.asyncio
async def test_close_then_use_raises():
    pool = FakePool()
    storage = _adapter(pool)
    await storage.close()
    await storage.close()
    assert pool.closed
    with pytest.raises(StorageError):
        await storage.get_subscription_by_id(generate_id())
