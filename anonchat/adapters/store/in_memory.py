"""In-process store backend.

Notes:
- Per-process only: running multiple workers gives each worker its own
  counters, so quotas are multiplied. Use the Redis backend for deployments.
- Thread-safe: every primitive runs under one lock, which also makes each
  primitive atomic with respect to concurrent coroutines.
- Expiry is lazy: expired keys are dropped when next touched, plus an
  opportunistic sweep on writes.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Mapping

from anonchat.adapters.store.base import (
    AbstractKeyValueStore,
    IncrementOutcome,
    Record,
    RecordCombiner,
    WindowOutcome,
)


@dataclass
class _Entry:
    expires_at: float
    value: str | None = None
    record: Record | None = None
    events: dict[str, int] = field(default_factory=dict)


class InMemoryStore(AbstractKeyValueStore):
    """Dictionary-backed implementation of the shared store interface."""

    def __init__(
        self,
        *,
        clock: Callable[[], float] = time.time,
        sweep_every: int = 256,
    ) -> None:
        """Initialize the store.

        Args:
            clock: Time source returning UNIX time in seconds; drives key expiry.
            sweep_every: Number of writes between full expiry sweeps.
        """
        self._clock = clock
        self._lock = threading.RLock()
        self._entries: dict[str, _Entry] = {}
        self._sweep_every = max(1, sweep_every)
        self._writes = 0

    def __repr__(self) -> str:  # pragma: no cover - representation only
        return f"InMemoryStore(keys={len(self._entries)})"

    # -- internals (caller holds the lock) --------------------------------

    def _live(self, key: str) -> _Entry | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self._clock() >= entry.expires_at:
            del self._entries[key]
            return None
        return entry

    def _expiry(self, ttl_seconds: float) -> float:
        return self._clock() + ttl_seconds

    def _after_write(self) -> None:
        self._writes += 1
        if self._writes % self._sweep_every:
            return
        now = self._clock()
        for key in [k for k, e in self._entries.items() if now >= e.expires_at]:
            del self._entries[key]

    # -- plain values -----------------------------------------------------

    async def ping(self) -> bool:
        return True

    async def get_value(self, key: str) -> str | None:
        with self._lock:
            entry = self._live(key)
            return entry.value if entry else None

    async def set_value(
        self,
        key: str,
        value: str,
        *,
        ttl_seconds: int,
        only_if_absent: bool = False,
    ) -> bool:
        with self._lock:
            if only_if_absent and self._live(key) is not None:
                return False
            self._entries[key] = _Entry(expires_at=self._expiry(ttl_seconds), value=value)
            self._after_write()
            return True

    async def delete(self, *keys: str) -> int:
        with self._lock:
            removed = 0
            for key in keys:
                if self._live(key) is not None:
                    del self._entries[key]
                    removed += 1
            return removed

    # -- records ----------------------------------------------------------

    async def get_record(self, key: str) -> Record | None:
        with self._lock:
            entry = self._live(key)
            if entry is None or entry.record is None:
                return None
            return dict(entry.record)

    async def put_record(self, key: str, record: Mapping[str, str], *, ttl_seconds: int) -> None:
        with self._lock:
            self._entries[key] = _Entry(
                expires_at=self._expiry(ttl_seconds),
                record={k: str(v) for k, v in record.items()},
            )
            self._after_write()

    async def update_fields(
        self, key: str, fields: Mapping[str, str], *, ttl_seconds: int
    ) -> bool:
        with self._lock:
            entry = self._live(key)
            if entry is None or entry.record is None:
                return False
            for k, v in fields.items():
                entry.record[k] = str(v)
            entry.expires_at = self._expiry(ttl_seconds)
            self._after_write()
            return True

    async def increment_bounded(
        self,
        key: str,
        field: str,
        *,
        ceiling_field: str,
        ttl_seconds: int,
        touch: Mapping[str, str] | None = None,
    ) -> IncrementOutcome:
        with self._lock:
            entry = self._live(key)
            if entry is None or entry.record is None:
                return IncrementOutcome(found=False, applied=False, value=0)

            current = int(entry.record.get(field, "0"))
            ceiling = int(entry.record.get(ceiling_field, "0"))
            if current + 1 > ceiling:
                return IncrementOutcome(found=True, applied=False, value=current)

            entry.record[field] = str(current + 1)
            for k, v in (touch or {}).items():
                entry.record[k] = str(v)
            entry.expires_at = self._expiry(ttl_seconds)
            self._after_write()
            return IncrementOutcome(found=True, applied=True, value=current + 1)

    async def merge_records(
        self,
        from_key: str,
        to_key: str,
        combine: RecordCombiner,
        *,
        ttl_seconds: int,
    ) -> Record | None:
        with self._lock:
            source = self._live(from_key)
            target = self._live(to_key)
            if source is None or target is None or source.record is None or target.record is None:
                return None

            merged = {k: str(v) for k, v in combine(dict(source.record), dict(target.record)).items()}
            self._entries[to_key] = _Entry(expires_at=self._expiry(ttl_seconds), record=merged)
            del self._entries[from_key]
            self._after_write()
            return dict(merged)

    # -- sliding windows --------------------------------------------------

    def _trim(self, key: str, now_ms: int, window_ms: int) -> _Entry | None:
        entry = self._live(key)
        if entry is None:
            return None
        window_start = now_ms - window_ms
        entry.events = {m: s for m, s in entry.events.items() if s >= window_start}
        return entry

    async def sliding_window_attempt(
        self,
        key: str,
        *,
        now_ms: int,
        window_ms: int,
        limit: int,
        member: str,
    ) -> WindowOutcome:
        with self._lock:
            entry = self._trim(key, now_ms, window_ms)
            if entry is None:
                entry = _Entry(expires_at=0.0)
                self._entries[key] = entry

            allowed = len(entry.events) < limit
            if allowed:
                entry.events[member] = now_ms
            entry.expires_at = self._expiry(window_ms / 1000)
            self._after_write()

            oldest = min(entry.events.values()) if entry.events else now_ms
            return WindowOutcome(allowed=allowed, count=len(entry.events), oldest_ms=oldest)

    async def sliding_window_count(self, key: str, *, now_ms: int, window_ms: int) -> WindowOutcome:
        with self._lock:
            entry = self._trim(key, now_ms, window_ms)
            if entry is None or not entry.events:
                return WindowOutcome(allowed=False, count=0, oldest_ms=now_ms)
            return WindowOutcome(
                allowed=False,
                count=len(entry.events),
                oldest_ms=min(entry.events.values()),
            )
