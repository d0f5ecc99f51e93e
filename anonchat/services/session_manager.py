"""Session lifecycle: bootstrap, quota enforcement and merge."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from anonchat.core.errors import QuotaExceededError, SessionNotFoundError, ValidationAppError
from anonchat.core.logging import fingerprint
from anonchat.schemas.session import AnonymousSession, TrustLevel
from anonchat.services.session_store import AnonymousSessionStore, generate_session_id
from anonchat.services.trust import TrustEvaluator, TrustPolicy, TrustPolicyTable, VelocitySignals

logger = logging.getLogger(__name__)


SIGN_UP_HINT = "Sign up for unlimited messaging, or wait for your daily allowance to reset."


@dataclass(frozen=True)
class SessionResolution:
    """A resolved session and whether this call minted it."""

    session: AnonymousSession
    created: bool


def _not_found() -> SessionNotFoundError:
    return SessionNotFoundError(
        code="session_not_found",
        message="Session not found or expired",
        details={"hint": "Request a new anonymous session."},
    )


class SessionLifecycleManager:
    """Compose the session store, trust evaluator and trust policies.

    All cross-request coordination happens through the store's atomic
    primitives; this class keeps no per-session state of its own.
    """

    def __init__(
        self,
        sessions: AnonymousSessionStore,
        evaluator: TrustEvaluator,
        policies: TrustPolicyTable,
    ) -> None:
        self._sessions = sessions
        self._evaluator = evaluator
        self._policies = policies

    @property
    def sessions(self) -> AnonymousSessionStore:
        return self._sessions

    async def get(self, session_id: str) -> AnonymousSession:
        """Fetch a live session.

        Raises:
            SessionNotFoundError: If missing or expired.
        """
        session = await self._sessions.get(session_id)
        if session is None:
            raise _not_found()
        return session

    async def resolve(
        self,
        ip_hash: str,
        user_agent_hash: str | None = None,
        explicit_session_id: str | None = None,
        *,
        signals: VelocitySignals | None = None,
    ) -> SessionResolution:
        """Get-or-create, reporting whether a new session was minted.

        Lookup order: explicit session id, then the IP pointer, then create.
        A session found by id has its ``last_active_at`` refreshed.
        """
        if explicit_session_id:
            session = await self._sessions.get(explicit_session_id)
            if session is not None:
                touched = await self._sessions.patch(
                    explicit_session_id, lastActiveAt=self._sessions.now_ms()
                )
                return SessionResolution(touched or session, created=False)
            logger.info(
                "session.explicit_id_unresolved",
                extra={"session_hash": fingerprint(explicit_session_id)},
            )

        session = await self._sessions.get_by_ip(ip_hash)
        if session is not None:
            return SessionResolution(session, created=False)

        trust = self._evaluator.evaluate(ip_hash, user_agent_hash, signals)
        policy = self._policies[trust]
        if policy.denied:
            logger.warning("session.create_denied", extra={"trust_level": trust.value})
            raise ValidationAppError(
                code="missing_identity",
                message="Client identity could not be determined",
                details={"context": {"trust_level": trust.value}},
            )
        minted_id = generate_session_id()
        session = await self._sessions.create(
            ip_hash,
            user_agent_hash,
            trust_level=trust,
            daily_message_limit=policy.daily_message_limit,
            session_id=minted_id,
        )
        # A concurrent bootstrap may have won the IP pointer
        return SessionResolution(session, created=session.session_id == minted_id)

    async def get_or_create(
        self,
        ip_hash: str,
        user_agent_hash: str | None = None,
        explicit_session_id: str | None = None,
        *,
        signals: VelocitySignals | None = None,
    ) -> AnonymousSession:
        resolution = await self.resolve(
            ip_hash, user_agent_hash, explicit_session_id, signals=signals
        )
        return resolution.session

    async def increment_message_count(self, session_id: str) -> AnonymousSession:
        """Consume one message from the session's daily allowance.

        The ceiling check and the increment are one atomic store operation,
        so concurrent requests cannot both pass against the same count.

        Raises:
            SessionNotFoundError: If the session is missing or expired.
            QuotaExceededError: If the allowance is used up (nothing is written).
        """
        # Expired records must not accept increments; get() also evicts them
        await self.get(session_id)

        outcome = await self._sessions.increment(session_id)
        if not outcome.found:
            raise _not_found()

        if not outcome.applied:
            session = await self.get(session_id)
            logger.warning(
                "session.quota_exceeded",
                extra={
                    "session_hash": fingerprint(session_id),
                    "message_count": session.message_count,
                    "daily_message_limit": session.daily_message_limit,
                },
            )
            raise QuotaExceededError(
                code="quota_exceeded",
                message="Daily message limit reached. Please sign up for unlimited messaging.",
                details={
                    "hint": SIGN_UP_HINT,
                    "message_count": session.message_count,
                    "daily_message_limit": session.daily_message_limit,
                    "reset_at": session.expires_at,
                },
            )

        session = await self.get(session_id)
        logger.info(
            "session.message_counted",
            extra={
                "session_hash": fingerprint(session_id),
                "message_count": outcome.value,
                "remaining": session.remaining_messages,
            },
        )
        return session

    async def set_message_count(self, session_id: str, message_count: int) -> AnonymousSession:
        """Overwrite the message count (client resynchronisation).

        Raises:
            ValidationAppError: If the count is negative or above the ceiling.
            SessionNotFoundError: If the session is missing or expired.
        """
        session = await self.get(session_id)
        if message_count < 0 or message_count > session.daily_message_limit:
            raise ValidationAppError(
                code="invalid_message_count",
                message=(
                    f"messageCount must be between 0 and {session.daily_message_limit}"
                ),
                details={"daily_message_limit": session.daily_message_limit},
            )
        updated = await self._sessions.patch(
            session_id, messageCount=message_count, lastActiveAt=self._sessions.now_ms()
        )
        if updated is None:
            raise _not_found()
        logger.info(
            "session.message_count_set",
            extra={"session_hash": fingerprint(session_id), "message_count": message_count},
        )
        return updated

    async def merge(self, from_session_id: str, to_session_id: str) -> AnonymousSession:
        """Fold one session into another; ``from`` is deleted.

        Raises:
            ValidationAppError: If both ids are the same.
            SessionNotFoundError: If either session does not exist. Not retried.
        """
        if from_session_id == to_session_id:
            raise ValidationAppError(
                code="invalid_merge",
                message="fromSessionId and toSessionId must differ",
            )

        merged = await self._sessions.merge(from_session_id, to_session_id)
        if merged is None:
            raise SessionNotFoundError(
                code="session_not_found",
                message="Session merge failed. One of the sessions may not exist.",
                details={"hint": "Request a new anonymous session."},
            )
        return merged

    async def delete(self, session_id: str) -> bool:
        return await self._sessions.delete(session_id)

    def policy_for(self, trust: TrustLevel) -> TrustPolicy:
        return self._policies[trust]
