"""Sliding-window rate limiter over the shared store.

Each ``(scope, window)`` pair is a sorted set of event timestamps under
``ratelimit:{scope}:{window}``. An attempt trims events older than the
window, counts what is left and records a new event only when the count is
under the limit, all inside one store primitive. Rejected attempts never
record, so hammering a closed window does not push its reset further out.

When the store is unreachable the limiter fails open by default: the request
is allowed, the result is flagged ``degraded`` and a warning is logged.
"""

from __future__ import annotations

import logging
import math
import time
import uuid
from typing import Callable, Mapping

from anonchat.adapters.rate_limit.base import AbstractRateLimiter, RateLimitResult, WindowPolicy
from anonchat.adapters.store.base import AbstractKeyValueStore, WindowOutcome
from anonchat.core.errors import StoreUnavailableError
from anonchat.core.logging import fingerprint

logger = logging.getLogger(__name__)


class SlidingWindowLimiter(AbstractRateLimiter):
    """Rate limiter counting events in trailing windows."""

    def __init__(
        self,
        store: AbstractKeyValueStore,
        windows: Mapping[str, WindowPolicy],
        *,
        fail_open: bool = True,
        key_prefix: str = "",
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the limiter.

        Args:
            store: Shared store providing the atomic window primitives.
            windows: Registered window policies by name.
            fail_open: Allow requests when the store is unavailable.
            key_prefix: Prefix prepended to every limiter key.
            clock: Time source returning UNIX time in seconds.

        Raises:
            ValueError: If no windows are registered.
        """
        if not windows:
            raise ValueError("at least one window must be registered")

        self._store = store
        self._windows = dict(windows)
        self._fail_open = fail_open
        self._key_prefix = key_prefix
        self._clock = clock

    @property
    def windows(self) -> dict[str, WindowPolicy]:
        return dict(self._windows)

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    def _key(self, scope_id: str, window_name: str) -> str:
        return f"{self._key_prefix}ratelimit:{scope_id}:{window_name}"

    def _policy(self, window_name: str, override: WindowPolicy | None) -> WindowPolicy:
        if override is not None:
            return override
        try:
            return self._windows[window_name]
        except KeyError:
            raise ValueError(f"unknown rate limit window: {window_name!r}") from None

    def _build_result(
        self,
        outcome: WindowOutcome,
        policy: WindowPolicy,
        *,
        now_ms: int,
        scope_id: str,
        window_name: str,
        recorded: bool,
    ) -> RateLimitResult:
        reset_at = outcome.oldest_ms + policy.window_ms
        if outcome.allowed or (not recorded and outcome.count < policy.limit):
            return RateLimitResult(
                allowed=True,
                limit=policy.limit,
                remaining=max(0, policy.limit - outcome.count),
                reset_at=reset_at,
                retry_after_seconds=None,
                scope=scope_id,
                window=window_name,
            )

        return RateLimitResult(
            allowed=False,
            limit=policy.limit,
            remaining=0,
            reset_at=reset_at,
            retry_after_seconds=max(1, math.ceil((reset_at - now_ms) / 1000)),
            scope=scope_id,
            window=window_name,
        )

    def _degraded_result(
        self,
        policy: WindowPolicy,
        *,
        now_ms: int,
        scope_id: str,
        window_name: str,
        operation: str,
    ) -> RateLimitResult:
        logger.warning(
            "rate_limit.degraded",
            extra={
                "operation": operation,
                "scope_hash": fingerprint(scope_id),
                "window": window_name,
                "fail_open": self._fail_open,
            },
        )
        return RateLimitResult(
            allowed=self._fail_open,
            limit=policy.limit,
            remaining=policy.limit - 1 if self._fail_open else 0,
            reset_at=now_ms + policy.window_ms,
            retry_after_seconds=None if self._fail_open else math.ceil(policy.window_ms / 1000),
            scope=scope_id,
            window=window_name,
            degraded=True,
        )

    async def attempt(
        self,
        scope_id: str,
        window_name: str,
        *,
        policy: WindowPolicy | None = None,
    ) -> RateLimitResult:
        """Consume one event from ``scope_id``'s budget in ``window_name``.

        Raises:
            ValueError: If scope_id is empty or the window is not registered.
        """
        if not scope_id:
            raise ValueError("scope_id must be a non-empty string")

        resolved = self._policy(window_name, policy)
        now_ms = self._now_ms()
        # Random tiebreak keeps events in the same millisecond distinct
        member = f"{now_ms}-{uuid.uuid4().hex}"

        try:
            outcome = await self._store.sliding_window_attempt(
                self._key(scope_id, window_name),
                now_ms=now_ms,
                window_ms=resolved.window_ms,
                limit=resolved.limit,
                member=member,
            )
        except StoreUnavailableError:
            return self._degraded_result(
                resolved,
                now_ms=now_ms,
                scope_id=scope_id,
                window_name=window_name,
                operation="attempt",
            )

        result = self._build_result(
            outcome,
            resolved,
            now_ms=now_ms,
            scope_id=scope_id,
            window_name=window_name,
            recorded=True,
        )
        logger.debug(
            "rate_limit.attempt",
            extra={
                "scope_hash": fingerprint(scope_id),
                "window": window_name,
                "allowed": result.allowed,
                "limit": result.limit,
                "remaining": result.remaining,
            },
        )
        return result

    async def peek(
        self,
        scope_id: str,
        window_name: str,
        *,
        policy: WindowPolicy | None = None,
    ) -> RateLimitResult:
        resolved = self._policy(window_name, policy)
        now_ms = self._now_ms()
        try:
            outcome = await self._store.sliding_window_count(
                self._key(scope_id, window_name),
                now_ms=now_ms,
                window_ms=resolved.window_ms,
            )
        except StoreUnavailableError:
            return self._degraded_result(
                resolved,
                now_ms=now_ms,
                scope_id=scope_id,
                window_name=window_name,
                operation="peek",
            )

        return self._build_result(
            outcome,
            resolved,
            now_ms=now_ms,
            scope_id=scope_id,
            window_name=window_name,
            recorded=False,
        )

    async def reset(self, scope_id: str, window_name: str | None = None) -> int:
        """Clear limiter state for a scope (administrative override).

        Raises:
            StoreUnavailableError: If the store cannot be reached.
        """
        names = [window_name] if window_name else sorted(self._windows)
        for name in names:
            self._policy(name, None)

        removed = await self._store.delete(*(self._key(scope_id, name) for name in names))
        logger.info(
            "rate_limit.reset",
            extra={
                "scope_hash": fingerprint(scope_id),
                "windows": names,
                "removed": removed,
            },
        )
        return removed
