from __future__ import annotations

from typing import Sequence

from psycopg import sql as psql

# Schema applied by PostgresStorageAdapter.migrate(); every statement is idempotent.
SCHEMA_STATEMENTS: tuple[str, ...] = (
    """
    CREATE TABLE IF NOT EXISTS subscriptions (
        id UUID PRIMARY KEY,
        endpoint TEXT NOT NULL,
        keys JSONB NOT NULL,
        user_id TEXT,
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        last_used_at TIMESTAMPTZ,
        failed_count INTEGER NOT NULL DEFAULT 0,
        status TEXT NOT NULL CHECK (status IN ('active', 'blocked', 'expired')),
        expires_at TIMESTAMPTZ,
        metadata JSONB
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_subscriptions_user_id ON subscriptions (user_id)",
    "CREATE INDEX IF NOT EXISTS idx_subscriptions_status ON subscriptions (status)",
    """
    CREATE TABLE IF NOT EXISTS retry_queue (
        id UUID PRIMARY KEY,
        subscription_id UUID NOT NULL REFERENCES subscriptions (id) ON DELETE CASCADE,
        payload JSONB NOT NULL,
        attempt INTEGER NOT NULL,
        next_retry_at TIMESTAMPTZ NOT NULL,
        last_error TEXT,
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_retry_queue_next_retry ON retry_queue (next_retry_at)",
)

SUBSCRIPTION_COLS: tuple[str, ...] = (
    "id",
    "endpoint",
    "keys",
    "user_id",
    "created_at",
    "updated_at",
    "last_used_at",
    "failed_count",
    "status",
    "expires_at",
    "metadata",
)

# Columns update_subscription may touch (updated_at is always set)
UPDATABLE_COLS: frozenset[str] = frozenset(
    {"endpoint", "keys", "user_id", "last_used_at", "failed_count", "status", "expires_at", "metadata"}
)

RETRY_COLS: tuple[str, ...] = (
    "id",
    "subscription_id",
    "payload",
    "attempt",
    "next_retry_at",
    "last_error",
    "created_at",
)


def insert_statement(table: str, cols: Sequence[str], returning: bool = False) -> psql.Composed:
    """INSERT with named parameters (%(name)s)."""
    stmt = psql.SQL("INSERT INTO {} ({}) VALUES ({})").format(
        psql.Identifier(table),
        psql.SQL(", ").join(psql.Identifier(c) for c in cols),
        psql.SQL(", ").join(psql.Placeholder(c) for c in cols),
    )
    if returning:
        stmt = stmt + psql.SQL(" RETURNING *")
    return stmt


def update_statement(table: str, cols: Sequence[str]) -> psql.Composed:
    """UPDATE ... SET col = %(col)s, updated_at = NOW() WHERE id = %(id)s RETURNING *."""
    setlist = psql.SQL(", ").join(
        [psql.SQL("{} = {}").format(psql.Identifier(c), psql.Placeholder(c)) for c in cols]
        + [psql.SQL("updated_at = NOW()")]
    )
    return psql.SQL("UPDATE {} SET {} WHERE id = {} RETURNING *").format(
        psql.Identifier(table), setlist, psql.Placeholder("id")
    )


def find_subscriptions_statement(
    user_id: bool, status: bool, ids: bool
) -> psql.Composed:
    """SELECT with an AND-ed WHERE clause for each filter flag set."""
    conds = []
    if user_id:
        conds.append(psql.SQL("user_id = {}").format(psql.Placeholder("user_id")))
    if status:
        conds.append(psql.SQL("status = {}").format(psql.Placeholder("status")))
    if ids:
        conds.append(psql.SQL("id = ANY({}::uuid[])").format(psql.Placeholder("ids")))
    stmt = psql.SQL("SELECT * FROM subscriptions")
    if conds:
        stmt = stmt + psql.SQL(" WHERE ") + psql.SQL(" AND ").join(conds)
    return stmt + psql.SQL(" ORDER BY created_at")


DEQUEUE_READY = (
    "SELECT * FROM retry_queue WHERE next_retry_at <= %(now)s "
    "ORDER BY next_retry_at ASC LIMIT %(limit)s"
)
ACK_RETRY = "DELETE FROM retry_queue WHERE id = %(id)s"
COUNT_READY = "SELECT COUNT(*) AS count FROM retry_queue WHERE next_retry_at <= %(now)s"
SELECT_SUBSCRIPTION = "SELECT * FROM subscriptions WHERE id = %(id)s"
DELETE_SUBSCRIPTION = "DELETE FROM subscriptions WHERE id = %(id)s"
