"""Shared ephemeral store adapters (Redis and in-process)."""

from anonchat.adapters.store.base import (
    AbstractKeyValueStore,
    IncrementOutcome,
    WindowOutcome,
)
from anonchat.adapters.store.factory import create_store
from anonchat.adapters.store.in_memory import InMemoryStore
from anonchat.adapters.store.redis_store import RedisStore

__all__ = [
    "AbstractKeyValueStore",
    "InMemoryStore",
    "IncrementOutcome",
    "RedisStore",
    "WindowOutcome",
    "create_store",
]
