"""Factory for the shared store backend."""

from anonchat.adapters.store.base import AbstractKeyValueStore
from anonchat.adapters.store.in_memory import InMemoryStore
from anonchat.adapters.store.redis_store import RedisStore
from anonchat.core.config import StoreSettings, settings
from anonchat.core.errors import ValidationAppError


def create_store(store_settings: StoreSettings | None = None) -> AbstractKeyValueStore:
    """Instantiate the store backend selected by ``STORE_BACKEND``.

    Returns:
        AbstractKeyValueStore: Configured store instance.

    Raises:
        ValidationAppError: If the backend name is unknown.
    """
    cfg = store_settings or settings.store
    backend = cfg.backend.lower()

    if backend == "redis":
        return RedisStore(
            cfg.redis_url,
            socket_timeout=cfg.socket_timeout_seconds,
            merge_max_retries=cfg.merge_max_retries,
        )

    if backend == "memory":
        return InMemoryStore()

    raise ValidationAppError(
        code="store_unknown_backend",
        message=f"Unknown store backend: '{backend}'. Supported backends: memory, redis",
    )
