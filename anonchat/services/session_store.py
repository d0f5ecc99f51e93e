"""Anonymous session persistence in the shared store.

Keys owned here:
- ``session:{session_id}``: the session record, TTL = quota period.
- ``session:ip:{ip_hash}``: id of the session bootstrapped for an IP.

Expiry is a fixed window from ``created_at``. Store TTLs reclaim abandoned
keys; the read path additionally checks ``expires_at`` so a record whose TTL
was refreshed past the end of its period is never served as live.
"""

from __future__ import annotations

import logging
import time
import uuid
from typing import Callable

from anonchat.adapters.store.base import AbstractKeyValueStore, IncrementOutcome
from anonchat.core.logging import fingerprint
from anonchat.schemas.session import AnonymousSession, TrustLevel
from anonchat.services.trust import higher_trust

logger = logging.getLogger(__name__)


def generate_session_id() -> str:
    return f"anon_{uuid.uuid4()}"


class AnonymousSessionStore:
    """CRUD + TTL management for anonymous sessions."""

    def __init__(
        self,
        store: AbstractKeyValueStore,
        *,
        ttl_seconds: int = 86_400,
        key_prefix: str = "",
        clock: Callable[[], float] = time.time,
    ) -> None:
        if ttl_seconds < 1:
            raise ValueError("ttl_seconds must be >= 1")
        self._store = store
        self._ttl_seconds = ttl_seconds
        self._key_prefix = key_prefix
        self._clock = clock

    @property
    def ttl_seconds(self) -> int:
        return self._ttl_seconds

    def now_ms(self) -> int:
        return int(self._clock() * 1000)

    def _session_key(self, session_id: str) -> str:
        return f"{self._key_prefix}session:{session_id}"

    def _ip_key(self, ip_hash: str) -> str:
        return f"{self._key_prefix}session:ip:{ip_hash}"

    async def get(self, session_id: str) -> AnonymousSession | None:
        """Return the live session, or None if missing or past its period."""
        record = await self._store.get_record(self._session_key(session_id))
        if record is None:
            return None

        session = AnonymousSession.from_record(record)
        if session.is_expired(self.now_ms()):
            logger.info(
                "session.expired",
                extra={"session_hash": fingerprint(session_id), "created_at": session.created_at},
            )
            await self._store.delete(self._session_key(session_id))
            return None
        return session

    async def get_by_ip(self, ip_hash: str) -> AnonymousSession | None:
        """Resolve the session last bootstrapped for ``ip_hash``."""
        ip_key = self._ip_key(ip_hash)
        session_id = await self._store.get_value(ip_key)
        if session_id is None:
            return None

        session = await self.get(session_id)
        if session is None:
            # Dangling pointer: the session expired, merged away or was deleted
            await self._store.delete(ip_key)
        return session

    async def create(
        self,
        ip_hash: str,
        user_agent_hash: str | None = None,
        *,
        trust_level: TrustLevel = TrustLevel.NEW,
        daily_message_limit: int = 10,
        session_id: str | None = None,
    ) -> AnonymousSession:
        """Create a fresh session and claim the IP pointer for it.

        The record is written before the pointer, so a pointer seen by a
        concurrent reader always names a readable session. The pointer is
        claimed with set-if-absent: if another request already holds it for
        a live session, that session is returned and the record written here
        is removed. A pointer to a dead session is released and re-claimed.
        """
        now = self.now_ms()
        session = AnonymousSession(
            session_id=session_id or generate_session_id(),
            ip_hash=ip_hash,
            user_agent_hash=user_agent_hash,
            created_at=now,
            last_active_at=now,
            expires_at=now + self._ttl_seconds * 1000,
            message_count=0,
            daily_message_limit=daily_message_limit,
            trust_level=trust_level,
        )
        session_key = self._session_key(session.session_id)
        await self._store.put_record(session_key, session.to_record(), ttl_seconds=self._ttl_seconds)

        ip_key = self._ip_key(ip_hash)
        existing: AnonymousSession | None = None
        for _ in range(2):
            if await self._store.set_value(
                ip_key, session.session_id, ttl_seconds=self._ttl_seconds, only_if_absent=True
            ):
                break
            # get_by_ip drops a pointer to a dead session
            existing = await self.get_by_ip(ip_hash)
            if existing is not None:
                break
        else:
            await self._store.set_value(ip_key, session.session_id, ttl_seconds=self._ttl_seconds)

        if existing is not None and existing.session_id != session.session_id:
            await self._store.delete(session_key)
            logger.info(
                "session.create_raced",
                extra={"session_hash": fingerprint(existing.session_id)},
            )
            return existing

        logger.info(
            "session.created",
            extra={
                "session_hash": fingerprint(session.session_id),
                "trust_level": session.trust_level.value,
                "daily_message_limit": session.daily_message_limit,
            },
        )
        return session

    async def save(self, session: AnonymousSession) -> AnonymousSession:
        """Overwrite the stored record and refresh its TTL."""
        await self._store.put_record(
            self._session_key(session.session_id),
            session.to_record(),
            ttl_seconds=self._ttl_seconds,
        )
        return session

    async def patch(self, session_id: str, **fields: int) -> AnonymousSession | None:
        """Write the given camelCase fields in place without replacing the record.

        Counters not named in ``fields`` are left as concurrent writers set them.
        """
        updated = await self._store.update_fields(
            self._session_key(session_id),
            {name: str(value) for name, value in fields.items()},
            ttl_seconds=self._ttl_seconds,
        )
        if not updated:
            return None
        return await self.get(session_id)

    async def delete(self, session_id: str) -> bool:
        """Delete a session and its IP pointer when the pointer still names it."""
        session = await self.get(session_id)
        keys = [self._session_key(session_id)]
        if session is not None:
            ip_key = self._ip_key(session.ip_hash)
            if await self._store.get_value(ip_key) == session_id:
                keys.append(ip_key)
        removed = await self._store.delete(*keys)
        logger.info(
            "session.deleted",
            extra={"session_hash": fingerprint(session_id), "existed": bool(removed)},
        )
        return bool(removed)

    async def increment(self, session_id: str) -> IncrementOutcome:
        """Atomically bump ``messageCount`` unless it would pass the ceiling."""
        return await self._store.increment_bounded(
            self._session_key(session_id),
            "messageCount",
            ceiling_field="dailyMessageLimit",
            ttl_seconds=self._ttl_seconds,
            touch={"lastActiveAt": str(self.now_ms())},
        )

    async def merge(self, from_session_id: str, to_session_id: str) -> AnonymousSession | None:
        """Fold ``from`` into ``to`` and delete ``from``, atomically.

        Policy: message counts add up but never past ``to``'s ceiling; the
        older ``created_at`` (and so the earlier period end) and the later
        ``last_active_at`` survive; trust takes the higher of the two.
        """

        def combine(source: dict[str, str], target: dict[str, str]) -> dict[str, str]:
            src = AnonymousSession.from_record(source)
            dst = AnonymousSession.from_record(target)
            created_at = min(src.created_at, dst.created_at)
            merged = dst.model_copy(
                update={
                    "message_count": min(
                        dst.daily_message_limit, src.message_count + dst.message_count
                    ),
                    "created_at": created_at,
                    "expires_at": created_at + self._ttl_seconds * 1000,
                    "last_active_at": max(src.last_active_at, dst.last_active_at),
                    "trust_level": higher_trust(src.trust_level, dst.trust_level),
                }
            )
            return merged.to_record()

        if from_session_id == to_session_id:
            return None

        for session_id in (from_session_id, to_session_id):
            if await self.get(session_id) is None:
                return None

        record = await self._store.merge_records(
            self._session_key(from_session_id),
            self._session_key(to_session_id),
            combine,
            ttl_seconds=self._ttl_seconds,
        )
        if record is None:
            return None

        merged = AnonymousSession.from_record(record)
        logger.info(
            "session.merged",
            extra={
                "from_hash": fingerprint(from_session_id),
                "to_hash": fingerprint(to_session_id),
                "message_count": merged.message_count,
                "trust_level": merged.trust_level.value,
            },
        )
        return merged
