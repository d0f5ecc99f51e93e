"""Shared ephemeral store interfaces.

Services depend on this abstraction (not a concrete backend) so the same
session and rate-limit logic runs against Redis in production and against the
in-process store in development and tests.

Every primitive is atomic with respect to the keys it touches, and every
write carries a TTL so abandoned keys are reclaimed by the store itself.
Backend failures surface as ``StoreUnavailableError``.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Mapping

Record = dict[str, str]
RecordCombiner = Callable[[Record, Record], Record]


@dataclass(frozen=True)
class IncrementOutcome:
    """Result of a bounded increment.

    Attributes:
        found: False when the record does not exist.
        applied: True when the counter was incremented.
        value: Counter value after the operation (unchanged when rejected).
    """

    found: bool
    applied: bool
    value: int


@dataclass(frozen=True)
class WindowOutcome:
    """Result of a sliding-window attempt.

    Attributes:
        allowed: Whether an event was recorded.
        count: Events in the window after the operation.
        oldest_ms: Timestamp of the oldest event still in the window.
    """

    allowed: bool
    count: int
    oldest_ms: int


class AbstractKeyValueStore(ABC):
    """Async interface over the shared store."""

    @abstractmethod
    async def ping(self) -> bool:
        raise NotImplementedError

    @abstractmethod
    async def get_value(self, key: str) -> str | None:
        raise NotImplementedError

    @abstractmethod
    async def set_value(
        self,
        key: str,
        value: str,
        *,
        ttl_seconds: int,
        only_if_absent: bool = False,
    ) -> bool:
        """Set a plain value with TTL.

        Returns:
            False only when ``only_if_absent`` is set and the key exists.
        """
        raise NotImplementedError

    @abstractmethod
    async def delete(self, *keys: str) -> int:
        """Delete keys, returning how many existed."""
        raise NotImplementedError

    @abstractmethod
    async def get_record(self, key: str) -> Record | None:
        raise NotImplementedError

    @abstractmethod
    async def put_record(self, key: str, record: Mapping[str, str], *, ttl_seconds: int) -> None:
        """Overwrite a whole record and refresh its TTL."""
        raise NotImplementedError

    @abstractmethod
    async def update_fields(
        self, key: str, fields: Mapping[str, str], *, ttl_seconds: int
    ) -> bool:
        """Patch fields of an existing record and refresh its TTL.

        Returns:
            False when the record does not exist (nothing is created).
        """
        raise NotImplementedError

    @abstractmethod
    async def increment_bounded(
        self,
        key: str,
        field: str,
        *,
        ceiling_field: str,
        ttl_seconds: int,
        touch: Mapping[str, str] | None = None,
    ) -> IncrementOutcome:
        """Increment ``field`` by one unless that would exceed ``ceiling_field``.

        Read, compare and write happen as one atomic unit. When applied, the
        ``touch`` fields are written and the TTL is refreshed; when rejected
        nothing is mutated.
        """
        raise NotImplementedError

    @abstractmethod
    async def merge_records(
        self,
        from_key: str,
        to_key: str,
        combine: RecordCombiner,
        *,
        ttl_seconds: int,
    ) -> Record | None:
        """Atomically fold ``from_key`` into ``to_key`` and delete ``from_key``.

        Returns:
            The record written to ``to_key``, or None when either key is missing.
        """
        raise NotImplementedError

    @abstractmethod
    async def sliding_window_attempt(
        self,
        key: str,
        *,
        now_ms: int,
        window_ms: int,
        limit: int,
        member: str,
    ) -> WindowOutcome:
        """Trim, count and conditionally record one event as one atomic unit.

        Events older than ``now_ms - window_ms`` are dropped. ``member`` is
        recorded with score ``now_ms`` only if fewer than ``limit`` events
        remain. The key expiry is refreshed to ``window_ms`` either way.
        """
        raise NotImplementedError

    @abstractmethod
    async def sliding_window_count(self, key: str, *, now_ms: int, window_ms: int) -> WindowOutcome:
        """Trim and count without recording (``allowed`` is always False)."""
        raise NotImplementedError

    async def close(self) -> None:
        """Release backend resources."""
        return None
