"""Storage adapters for subscriptions and the retry queue."""

from .memory import InMemoryStorageAdapter
from .postgres import PostgresStorageAdapter, PostgresStorageConfig

__all__ = ["InMemoryStorageAdapter", "PostgresStorageAdapter", "PostgresStorageConfig"]
