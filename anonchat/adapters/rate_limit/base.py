"""Rate limiter interfaces.

The request gate depends on this abstraction (not the concrete
implementation) so limiter storage and algorithm can change without touching
the HTTP layer.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass(frozen=True)
class WindowPolicy:
    """Threshold for one named window.

    Attributes:
        limit: Maximum events allowed inside the trailing window.
        window_ms: Trailing window length in milliseconds.
    """

    limit: int
    window_ms: int

    def __post_init__(self) -> None:
        if self.limit < 1:
            raise ValueError("limit must be >= 1")
        if self.window_ms < 1:
            raise ValueError("window_ms must be >= 1")


@dataclass(frozen=True)
class RateLimitResult:
    """Result of a rate limit attempt.

    Attributes:
        allowed: Whether the request is allowed to proceed.
        limit: Max events per window.
        remaining: Remaining events in the current window (0 when blocked).
        reset_at: Epoch milliseconds when the oldest event leaves the window.
        retry_after_seconds: Suggested wait time in seconds when blocked.
        scope: Scope identifier the window is keyed by.
        window: Window name.
        degraded: True when the decision was not backed by the shared store.
    """

    allowed: bool
    limit: int
    remaining: int
    reset_at: int
    retry_after_seconds: int | None
    scope: str = ""
    window: str = ""
    degraded: bool = False


class AbstractRateLimiter(ABC):
    """Interface for rate limiters."""

    @abstractmethod
    async def attempt(
        self,
        scope_id: str,
        window_name: str,
        *,
        policy: WindowPolicy | None = None,
    ) -> RateLimitResult:
        """Record one event for ``scope_id`` in ``window_name`` if allowed.

        Args:
            scope_id: Identity the window is keyed by (session id, IP hash).
            window_name: Registered window name.
            policy: Optional threshold overriding the registered one.

        Returns:
            RateLimitResult describing whether it was allowed.
        """
        raise NotImplementedError

    @abstractmethod
    async def peek(
        self,
        scope_id: str,
        window_name: str,
        *,
        policy: WindowPolicy | None = None,
    ) -> RateLimitResult:
        """Report whether an attempt would be allowed, without recording one."""
        raise NotImplementedError

    @abstractmethod
    async def reset(self, scope_id: str, window_name: str | None = None) -> int:
        """Clear one window, or every registered window, for ``scope_id``."""
        raise NotImplementedError
