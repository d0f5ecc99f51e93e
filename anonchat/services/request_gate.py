"""HTTP-boundary orchestration for anonymous sessions.

Each public method backs one session endpoint: it checks the relevant
sliding windows, calls the lifecycle manager and shapes the response. Domain
failures propagate as ``AppError`` subclasses for the global exception
handlers to render.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

from anonchat.adapters.rate_limit.base import AbstractRateLimiter, RateLimitResult, WindowPolicy
from anonchat.core.errors import (
    RateLimitExceededError,
    StoreUnavailableError,
    ValidationAppError,
)
from anonchat.core.identity import ClientIdentity
from anonchat.core.logging import fingerprint
from anonchat.schemas.session import DeleteSessionResponse, RateLimitResetResponse, SessionResponse
from anonchat.services.session_manager import SessionLifecycleManager
from anonchat.services.trust import TrustPolicy, VelocitySignals

logger = logging.getLogger(__name__)

SESSION_WINDOWS = ("anti_spam", "burst", "quota")
IP_WINDOWS = ("anti_spam", "burst")
BOOTSTRAP_WINDOW = "bootstrap"


@dataclass(frozen=True)
class WindowCheck:
    scope_id: str
    window: str
    policy: WindowPolicy | None = None


def _require(value: str | None, field_name: str) -> str:
    if not value or not value.strip():
        raise ValidationAppError(
            code="missing_field",
            message=f"{field_name} is required",
            details={"context": {"field": field_name}},
        )
    return value.strip()


class RequestGate:
    """Rate-limit and route session operations for one request."""

    def __init__(
        self,
        manager: SessionLifecycleManager,
        limiter: AbstractRateLimiter,
        *,
        enabled: bool = True,
        quota_fail_open: bool = True,
    ) -> None:
        self._manager = manager
        self._limiter = limiter
        self._enabled = enabled
        self._quota_fail_open = quota_fail_open

    @property
    def manager(self) -> SessionLifecycleManager:
        return self._manager

    @property
    def limiter(self) -> AbstractRateLimiter:
        return self._limiter

    async def _enforce(self, checks: list[WindowCheck]) -> bool:
        """Admit the request only if every window has room, then record it in all.

        Windows are checked first and written second: a request rejected by
        one window records nothing in the others.

        Returns:
            True when at least one decision was made without the store.

        Raises:
            RateLimitExceededError: If any window rejects. The rejection with
                the longest wait is reported.
            StoreUnavailableError: If the store is down and the limiter is
                configured to fail closed.
        """
        if not self._enabled or not checks:
            return False

        previews: list[RateLimitResult] = await asyncio.gather(
            *(self._limiter.peek(c.scope_id, c.window, policy=c.policy) for c in checks)
        )
        self._reject_if_closed(previews, phase="check")

        results: list[RateLimitResult] = await asyncio.gather(
            *(self._limiter.attempt(c.scope_id, c.window, policy=c.policy) for c in checks)
        )
        # A concurrent request can fill a window between check and record
        self._reject_if_closed(results, phase="record")

        return any(r.degraded for r in previews) or any(r.degraded for r in results)

    def _reject_if_closed(self, results: list[RateLimitResult], *, phase: str) -> None:
        rejected = [r for r in results if not r.allowed]
        if not rejected:
            return

        if any(r.degraded for r in rejected):
            raise StoreUnavailableError(
                code="store_unavailable",
                message="Rate limits cannot be verified right now. Please try again shortly.",
            )

        worst = max(rejected, key=lambda r: r.retry_after_seconds or 0)
        retry_after = worst.retry_after_seconds or 1
        logger.warning(
            "rate_limit.exceeded",
            extra={
                "scope_hash": fingerprint(worst.scope),
                "window": worst.window,
                "limit": worst.limit,
                "retry_after_s": retry_after,
                "rejected_windows": [r.window for r in rejected],
                "phase": phase,
            },
        )
        raise RateLimitExceededError(
            code="rate_limit_exceeded",
            message="Rate limit exceeded. Please slow down.",
            details={
                "hint": f"Please wait {retry_after} seconds before trying again.",
                "limit": worst.limit,
                "remaining": worst.remaining,
                "reset_at": worst.reset_at,
                "retry_after": retry_after,
                "window": worst.window,
            },
        )

    def _policy_checks(
        self, policy: TrustPolicy, scope_id: str, windows: tuple[str, ...]
    ) -> list[WindowCheck]:
        return [WindowCheck(scope_id, name, policy.windows.get(name)) for name in windows]

    async def _velocity(self, identity: ClientIdentity) -> VelocitySignals:
        recent = 0
        if identity.ip_hash:
            usage = await self._limiter.peek(identity.ip_hash, BOOTSTRAP_WINDOW)
            if not usage.degraded:
                recent = usage.limit - usage.remaining
        return VelocitySignals(
            authenticated=identity.authenticated,
            recent_sessions_from_ip=recent,
        )

    async def fetch(self, session_id: str | None) -> SessionResponse:
        """Return a live session by id.

        Raises:
            ValidationAppError: If no id is given.
            SessionNotFoundError: If the session is missing or expired.
        """
        session = await self._manager.get(_require(session_id, "sessionId"))
        return SessionResponse(session_data=session)

    async def bootstrap(
        self, identity: ClientIdentity, explicit_session_id: str | None = None
    ) -> SessionResponse:
        """Get-or-create the caller's session, rate-limited per IP.

        Raises:
            ValidationAppError: If the caller has no usable identity.
            RateLimitExceededError: If the IP is bootstrapping too fast.
        """
        if not identity.ip_hash:
            logger.warning("session.identity_missing", extra={"operation": "bootstrap"})
            raise ValidationAppError(
                code="missing_identity",
                message="Client identity could not be determined",
                details={"hint": "Requests must originate from an identifiable client address."},
            )

        ip_checks = [WindowCheck(identity.ip_hash, name) for name in IP_WINDOWS]
        degraded = await self._enforce(ip_checks)

        resolution = await self._manager.resolve(
            identity.ip_hash,
            identity.user_agent_hash,
            explicit_session_id or identity.session_id,
            signals=await self._velocity(identity),
        )
        if resolution.created:
            await self._limiter.attempt(identity.ip_hash, BOOTSTRAP_WINDOW)

        return SessionResponse(session_data=resolution.session, degraded=degraded)

    async def record_message(
        self, identity: ClientIdentity, session_id: str | None
    ) -> SessionResponse:
        """Consume one message for ``session_id`` after all window checks pass.

        Session-scoped windows use the session's trust thresholds; the IP
        windows act as a backstop against session churn.

        Raises:
            ValidationAppError: If no id is given.
            SessionNotFoundError: If the session is missing or expired.
            RateLimitExceededError: If any window rejects.
            QuotaExceededError: If the daily allowance is used up.
            StoreUnavailableError: If the store is down and quota checks
                are configured to fail closed.
        """
        session_id = _require(session_id, "sessionId")
        try:
            session = await self._manager.get(session_id)
            policy = self._manager.policy_for(session.trust_level)
            if policy.denied:
                raise ValidationAppError(
                    code="missing_identity",
                    message="This session is not permitted to send messages",
                )

            checks = self._policy_checks(policy, session_id, SESSION_WINDOWS)
            if identity.ip_hash:
                checks += self._policy_checks(policy, identity.ip_hash, IP_WINDOWS)
            degraded = await self._enforce(checks)

            updated = await self._manager.increment_message_count(session_id)
        except StoreUnavailableError:
            if not self._quota_fail_open:
                raise
            logger.warning(
                "session.quota_unverified",
                extra={"session_hash": fingerprint(session_id)},
            )
            return SessionResponse(session_data=None, degraded=True)

        return SessionResponse(session_data=updated, degraded=degraded)

    async def update_message_count(
        self, session_id: str | None, message_count: int | None
    ) -> SessionResponse:
        session_id = _require(session_id, "sessionId")
        if message_count is None:
            raise ValidationAppError(
                code="missing_field",
                message="messageCount is required",
                details={"context": {"field": "messageCount"}},
            )
        session = await self._manager.set_message_count(session_id, message_count)
        return SessionResponse(session_data=session)

    async def merge(
        self, from_session_id: str | None, to_session_id: str | None
    ) -> SessionResponse:
        """Fold ``from`` into ``to``; ``from`` no longer exists afterwards."""
        merged = await self._manager.merge(
            _require(from_session_id, "fromSessionId"),
            _require(to_session_id, "toSessionId"),
        )
        return SessionResponse(session_data=merged)

    async def delete(self, session_id: str | None) -> DeleteSessionResponse:
        await self._manager.delete(_require(session_id, "sessionId"))
        return DeleteSessionResponse()

    async def reset_rate_limits(
        self, scope_id: str, window: str | None = None
    ) -> RateLimitResetResponse:
        """Administrative override clearing limiter windows for a scope.

        Raises:
            ValidationAppError: If the window name is not registered.
        """
        try:
            removed = await self._limiter.reset(_require(scope_id, "scopeId"), window)
        except ValueError as exc:
            raise ValidationAppError(
                code="unknown_window",
                message=str(exc),
                details={"window": window or ""},
            ) from exc
        return RateLimitResetResponse(removed=removed)

