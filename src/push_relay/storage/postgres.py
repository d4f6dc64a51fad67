from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, List, Optional, TypedDict

import psycopg
from psycopg.rows import dict_row
from psycopg.types.json import Jsonb
from psycopg_pool import AsyncConnectionPool
from loguru import logger

from ..errors import StorageError, map_storage_error
from ..models import (
    CreateSubscriptionData,
    QueueStats,
    RetryEntry,
    Subscription,
    SubscriptionFilter,
    SubscriptionKeys,
)
from ..utils import generate_id, utc_now
from . import sql as q


class PostgresStorageConfig(TypedDict, total=False):
    dsn: str
    pool_min: int
    pool_max: int
    connect_timeout: float
    app_name: str
    auto_migrate: bool


DEFAULTS: PostgresStorageConfig = {
    "pool_min": 1,
    "pool_max": 10,
    "connect_timeout": 10.0,
    "app_name": "push_relay",
    "auto_migrate": False,
}


class PostgresStorageAdapter:
    """
    StorageAdapter on PostgreSQL via psycopg 3 and an async connection pool.

    Usage:

        async with PostgresStorageAdapter({"dsn": "postgresql://..."}) as storage:
            await storage.migrate()
            sub = await storage.create_subscription(data)

    The pool opens lazily on first use. All backend errors surface as StorageError.
    """

    def __init__(self, cfg: PostgresStorageConfig, *, pool: Optional[AsyncConnectionPool] = None):
        self.cfg: PostgresStorageConfig = {**DEFAULTS, **(cfg or {})}
        if "dsn" not in self.cfg and pool is None:
            raise ValueError("dsn required")
        self._pool = pool or AsyncConnectionPool(
            conninfo=self.cfg["dsn"],
            min_size=self.cfg["pool_min"],
            max_size=self.cfg["pool_max"],
            timeout=self.cfg["connect_timeout"],
            kwargs={"row_factory": dict_row, "application_name": self.cfg["app_name"]},
            open=False,
        )
        self._opened = pool is not None
        self._migrated = False
        self._closed = False

    # --------------- context management

    async def __aenter__(self) -> "PostgresStorageAdapter":
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    async def open(self) -> None:
        self._ensure_open()
        if not self._opened:
            await self._pool.open()
            self._opened = True
        if self.cfg.get("auto_migrate") and not self._migrated:
            await self.migrate()

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._opened:
            await self._pool.close()
        logger.debug("Postgres storage pool closed")

    @asynccontextmanager
    async def _conn(self, operation: str) -> AsyncIterator[psycopg.AsyncConnection]:
        self._ensure_open()
        if not self._opened:
            await self.open()
        try:
            async with self._pool.connection() as conn:
                yield conn
        except StorageError:
            raise
        except Exception as e:
            raise map_storage_error(e, operation) from e

    # --------------- schema

    async def migrate(self) -> None:
        async with self._conn("migrate") as conn:
            for stmt in q.SCHEMA_STATEMENTS:
                await conn.execute(stmt)
        self._migrated = True
        logger.info("Push storage schema is up to date")

    # --------------- subscriptions

    async def create_subscription(self, data: CreateSubscriptionData) -> Subscription:
        now = utc_now()
        params = {
            "id": generate_id(),
            "endpoint": data.endpoint,
            "keys": Jsonb(data.keys.model_dump()),
            "user_id": data.user_id,
            "created_at": now,
            "updated_at": now,
            "last_used_at": None,
            "failed_count": 0,
            "status": "active",
            "expires_at": data.expires_at,
            "metadata": Jsonb(data.metadata) if data.metadata is not None else None,
        }
        async with self._conn("create subscription") as conn:
            cur = await conn.execute(
                q.insert_statement("subscriptions", q.SUBSCRIPTION_COLS, returning=True), params
            )
            row = await cur.fetchone()
        return _row_to_subscription(row)

    async def get_subscription_by_id(self, id: str) -> Optional[Subscription]:
        async with self._conn("get subscription") as conn:
            cur = await conn.execute(q.SELECT_SUBSCRIPTION, {"id": id})
            row = await cur.fetchone()
        return _row_to_subscription(row) if row else None

    async def find_subscriptions(self, filter: SubscriptionFilter) -> List[Subscription]:
        stmt = q.find_subscriptions_statement(
            user_id=filter.user_id is not None,
            status=filter.status is not None,
            ids=bool(filter.ids),
        )
        params = {
            "user_id": filter.user_id,
            "status": filter.status.value if filter.status is not None else None,
            "ids": list(filter.ids or []),
        }
        async with self._conn("find subscriptions") as conn:
            cur = await conn.execute(stmt, params)
            rows = await cur.fetchall()
        return [_row_to_subscription(r) for r in rows]

    async def update_subscription(self, id: str, **fields: Any) -> Subscription:
        unknown = set(fields) - q.UPDATABLE_COLS
        if unknown:
            raise StorageError(
                f"Cannot update fields: {sorted(unknown)}",
                {"operation": "update_subscription", "subscription_id": id},
            )
        cols = sorted(fields)
        params = {c: _adapt(c, fields[c]) for c in cols}
        params["id"] = id
        async with self._conn("update subscription") as conn:
            cur = await conn.execute(q.update_statement("subscriptions", cols), params)
            row = await cur.fetchone()
        if row is None:
            raise StorageError(
                f"Subscription not found: {id}",
                {"operation": "update_subscription", "subscription_id": id},
            )
        return _row_to_subscription(row)

    async def delete_subscription(self, id: str) -> None:
        async with self._conn("delete subscription") as conn:
            await conn.execute(q.DELETE_SUBSCRIPTION, {"id": id})

    # --------------- retry queue

    async def enqueue_retry(self, entry: RetryEntry) -> None:
        params = {
            "id": entry.id,
            "subscription_id": entry.subscription_id,
            "payload": Jsonb(entry.payload.model_dump(mode="json", exclude_none=True)),
            "attempt": entry.attempt,
            "next_retry_at": entry.next_retry_at,
            "last_error": entry.last_error,
            "created_at": entry.created_at,
        }
        async with self._conn("enqueue retry") as conn:
            await conn.execute(q.insert_statement("retry_queue", q.RETRY_COLS), params)

    async def dequeue_retry(self, limit: int) -> List[RetryEntry]:
        async with self._conn("dequeue retry") as conn:
            cur = await conn.execute(q.DEQUEUE_READY, {"now": utc_now(), "limit": limit})
            rows = await cur.fetchall()
        return [_row_to_retry(r) for r in rows]

    async def ack_retry(self, id: str) -> None:
        async with self._conn("acknowledge retry") as conn:
            await conn.execute(q.ACK_RETRY, {"id": id})

    async def get_queue_stats(self) -> QueueStats:
        # No processing/failed state is persisted: dequeue does not lease and
        # exhausted entries are deleted.
        async with self._conn("get queue stats") as conn:
            cur = await conn.execute(q.COUNT_READY, {"now": utc_now()})
            row = await cur.fetchone()
        return QueueStats(pending=int(row["count"]) if row else 0, processing=0, failed=0)

    def _ensure_open(self) -> None:
        if self._closed:
            raise StorageError("Database connection is closed", {"operation": "ensure_open"})


# --------------- row mapping


def _adapt(col: str, value: Any) -> Any:
    if col in ("keys", "metadata"):
        if value is None:
            return None
        if isinstance(value, SubscriptionKeys):
            value = value.model_dump()
        return Jsonb(value)
    if col == "status" and value is not None:
        return getattr(value, "value", value)
    return value


def _row_to_subscription(row: dict) -> Subscription:
    return Subscription(
        id=str(row["id"]),
        endpoint=row["endpoint"],
        keys=SubscriptionKeys(**row["keys"]) if row.get("keys") else None,
        user_id=row.get("user_id"),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
        last_used_at=row.get("last_used_at"),
        failed_count=row.get("failed_count") or 0,
        status=row["status"],
        expires_at=row.get("expires_at"),
        metadata=row.get("metadata"),
    )


def _row_to_retry(row: dict) -> RetryEntry:
    return RetryEntry(
        id=str(row["id"]),
        subscription_id=str(row["subscription_id"]),
        payload=row["payload"],
        attempt=row["attempt"],
        next_retry_at=row["next_retry_at"],
        last_error=row.get("last_error"),
        created_at=row["created_at"],
    )
