"""Dependency wiring for the HTTP layer.

Store, limiter and services are process-wide: the store connection pool and
(for the memory backend) the counters themselves must survive across
requests. Instances are cached in-module and rebuilt when the relevant
configuration changes, which mostly matters for tests.
"""

from __future__ import annotations

import time
from typing import Callable

from fastapi import Request

from anonchat.adapters.rate_limit.base import WindowPolicy
from anonchat.adapters.rate_limit.sliding_window import SlidingWindowLimiter
from anonchat.adapters.store.base import AbstractKeyValueStore
from anonchat.adapters.store.factory import create_store
from anonchat.core.config import Settings, settings
from anonchat.core.identity import ClientIdentity, resolve_client_identity
from anonchat.services.request_gate import RequestGate
from anonchat.services.session_manager import SessionLifecycleManager
from anonchat.services.session_store import AnonymousSessionStore
from anonchat.services.trust import TrustEvaluator, TrustPolicyTable

_store: AbstractKeyValueStore | None = None
_store_config: tuple | None = None
_gate: RequestGate | None = None
_gate_config: tuple | None = None


def build_request_gate(
    store: AbstractKeyValueStore,
    cfg: Settings | None = None,
    *,
    clock: Callable[[], float] = time.time,
) -> RequestGate:
    """Compose limiter, session store, trust and manager over ``store``."""
    cfg = cfg or settings
    windows = {
        name: WindowPolicy(limit=int(w["limit"]), window_ms=int(w["window_ms"]))
        for name, w in cfg.rate_limit.windows.items()
    }
    limiter = SlidingWindowLimiter(
        store,
        windows,
        fail_open=cfg.rate_limit.fail_open,
        key_prefix=cfg.store.key_prefix,
        clock=clock,
    )
    sessions = AnonymousSessionStore(
        store,
        ttl_seconds=cfg.session.ttl_seconds,
        key_prefix=cfg.store.key_prefix,
        clock=clock,
    )
    manager = SessionLifecycleManager(
        sessions,
        TrustEvaluator.from_settings(cfg.rate_limit),
        TrustPolicyTable.from_config(cfg.rate_limit.trust_policies),
    )
    return RequestGate(
        manager,
        limiter,
        enabled=cfg.rate_limit.enabled,
        quota_fail_open=cfg.rate_limit.quota_fail_open,
    )


def get_store() -> AbstractKeyValueStore:
    """Return the process-wide store, rebuilding it if its settings changed."""
    global _store, _store_config

    config = (settings.store.backend, settings.store.redis_url, settings.store.key_prefix)
    if _store is None or _store_config != config:
        _store = create_store(settings.store)
        _store_config = config
    return _store


def get_request_gate() -> RequestGate:
    global _gate, _gate_config

    store = get_store()
    config = (
        id(store),
        settings.rate_limit.model_dump_json(),
        settings.session.ttl_seconds,
    )
    if _gate is None or _gate_config != config:
        _gate = build_request_gate(store, settings)
        _gate_config = config
    return _gate


def get_client_identity(request: Request) -> ClientIdentity:
    """Identity resolved by the middleware, or computed on demand."""
    identity = getattr(request.state, "client_identity", None)
    if identity is None:
        identity = resolve_client_identity(request)
    return identity


async def close_store() -> None:
    global _store, _store_config, _gate, _gate_config

    if _store is not None:
        await _store.close()
    _store = _store_config = _gate = _gate_config = None
