"""Unit tests for SessionLifecycleManager.

Covers bootstrap idempotency, fixed-window expiry, the atomic quota guard
under concurrency and the merge policy.
"""

import asyncio

import pytest

from anonchat.core.config import DEFAULT_TRUST_POLICIES
from anonchat.core.errors import QuotaExceededError, SessionNotFoundError, ValidationAppError
from anonchat.schemas.session import TrustLevel
from anonchat.services.session_manager import SessionLifecycleManager
from anonchat.services.session_store import AnonymousSessionStore
from anonchat.services.trust import TrustEvaluator, TrustPolicyTable, VelocitySignals

TTL = 86_400


@pytest.fixture
def manager(store, clock) -> SessionLifecycleManager:
    return SessionLifecycleManager(
        AnonymousSessionStore(store, ttl_seconds=TTL, clock=clock),
        TrustEvaluator(max_sessions_per_ip=5),
        TrustPolicyTable.from_config(DEFAULT_TRUST_POLICIES),
    )


class TestGetOrCreate:

    @pytest.mark.asyncio
    async def test_same_ip_returns_same_session(self, manager) -> None:
        first = await manager.get_or_create("ip-1")
        second = await manager.get_or_create("ip-1")

        assert first.session_id == second.session_id

    @pytest.mark.asyncio
    async def test_concurrent_first_contact_yields_one_session(self, manager) -> None:
        sessions = await asyncio.gather(*(manager.get_or_create("ip-1") for _ in range(10)))

        assert len({s.session_id for s in sessions}) == 1

    @pytest.mark.asyncio
    async def test_explicit_id_wins_and_refreshes_activity(self, manager, clock) -> None:
        mine = await manager.get_or_create("ip-1")
        await manager.increment_message_count(mine.session_id)
        clock.advance(30)

        resolved = await manager.get_or_create("ip-2", explicit_session_id=mine.session_id)

        assert resolved.session_id == mine.session_id
        assert resolved.message_count == 1
        assert resolved.last_active_at == mine.last_active_at + 30_000

    @pytest.mark.asyncio
    async def test_unknown_explicit_id_falls_back_to_ip(self, manager) -> None:
        by_ip = await manager.get_or_create("ip-1")

        resolved = await manager.get_or_create("ip-1", explicit_session_id="anon_gone")

        assert resolved.session_id == by_ip.session_id

    @pytest.mark.asyncio
    async def test_expired_session_is_replaced(self, manager, clock) -> None:
        old = await manager.get_or_create("ip-1")
        await manager.increment_message_count(old.session_id)

        clock.advance_ms(TTL * 1000 + 1)

        with pytest.raises(SessionNotFoundError):
            await manager.get(old.session_id)
        fresh = await manager.get_or_create("ip-1")
        assert fresh.session_id != old.session_id
        assert fresh.message_count == 0

    @pytest.mark.asyncio
    async def test_resolve_reports_creation(self, manager) -> None:
        created = await manager.resolve("ip-1")
        reused = await manager.resolve("ip-1")

        assert created.created is True
        assert reused.created is False

    @pytest.mark.asyncio
    async def test_trust_level_sets_daily_limit(self, manager) -> None:
        low = await manager.get_or_create(
            "ip-busy", signals=VelocitySignals(recent_sessions_from_ip=5)
        )
        authed = await manager.get_or_create(
            "ip-user", signals=VelocitySignals(authenticated=True)
        )

        assert low.trust_level is TrustLevel.LOW
        assert low.daily_message_limit == 5
        assert authed.trust_level is TrustLevel.AUTHENTICATED
        assert authed.daily_message_limit == 1000

    @pytest.mark.asyncio
    async def test_missing_identity_is_denied(self, manager) -> None:
        with pytest.raises(ValidationAppError) as exc_info:
            await manager.get_or_create("")

        assert exc_info.value.code == "missing_identity"


class TestIncrement:

    @pytest.mark.asyncio
    async def test_concurrent_increments_never_pass_the_ceiling(self, manager) -> None:
        session = await manager.get_or_create("ip-1")

        results = await asyncio.gather(
            *(manager.increment_message_count(session.session_id) for _ in range(20)),
            return_exceptions=True,
        )

        accepted = [r for r in results if not isinstance(r, Exception)]
        rejected = [r for r in results if isinstance(r, QuotaExceededError)]
        assert len(accepted) == 10
        assert len(rejected) == 10
        assert (await manager.get(session.session_id)).message_count == 10

    @pytest.mark.asyncio
    async def test_quota_error_carries_hint_and_counts(self, manager) -> None:
        session = await manager.get_or_create("ip-1")
        await manager.set_message_count(session.session_id, 10)

        with pytest.raises(QuotaExceededError) as exc_info:
            await manager.increment_message_count(session.session_id)

        details = exc_info.value.details
        assert details["message_count"] == 10
        assert details["daily_message_limit"] == 10
        assert details["reset_at"] == session.expires_at
        assert "Sign up" in details["hint"]

    @pytest.mark.asyncio
    async def test_unknown_session(self, manager) -> None:
        with pytest.raises(SessionNotFoundError):
            await manager.increment_message_count("anon_missing")

    @pytest.mark.asyncio
    async def test_expired_session_rejects_increment(self, manager, clock) -> None:
        session = await manager.get_or_create("ip-1")
        clock.advance_ms(TTL * 1000 + 1)

        with pytest.raises(SessionNotFoundError):
            await manager.increment_message_count(session.session_id)


class TestSetMessageCount:

    @pytest.mark.asyncio
    async def test_sets_within_bounds(self, manager) -> None:
        session = await manager.get_or_create("ip-1")

        updated = await manager.set_message_count(session.session_id, 7)

        assert updated.message_count == 7
        assert updated.remaining_messages == 3

    @pytest.mark.asyncio
    @pytest.mark.parametrize("value", [-1, 11])
    async def test_rejects_out_of_range(self, manager, value: int) -> None:
        session = await manager.get_or_create("ip-1")

        with pytest.raises(ValidationAppError) as exc_info:
            await manager.set_message_count(session.session_id, value)

        assert exc_info.value.code == "invalid_message_count"


class TestMerge:

    @pytest.mark.asyncio
    async def test_counts_add_up_to_the_ceiling(self, manager, clock) -> None:
        a = await manager.get_or_create("ip-a")
        clock.advance(60)
        b = await manager.get_or_create("ip-b")
        await manager.set_message_count(a.session_id, 7)
        await manager.set_message_count(b.session_id, 5)

        merged = await manager.merge(a.session_id, b.session_id)

        assert merged.session_id == b.session_id
        assert merged.message_count == 10
        assert merged.created_at == a.created_at
        assert merged.expires_at == a.expires_at
        with pytest.raises(SessionNotFoundError):
            await manager.get(a.session_id)

    @pytest.mark.asyncio
    async def test_repeat_merge_is_not_found(self, manager) -> None:
        a = await manager.get_or_create("ip-a")
        b = await manager.get_or_create("ip-b")
        await manager.merge(a.session_id, b.session_id)

        with pytest.raises(SessionNotFoundError):
            await manager.merge(a.session_id, b.session_id)

    @pytest.mark.asyncio
    async def test_keeps_latest_activity_and_higher_trust(self, manager, clock) -> None:
        low = await manager.get_or_create(
            "ip-a", signals=VelocitySignals(recent_sessions_from_ip=9)
        )
        new = await manager.get_or_create("ip-b")
        clock.advance(10)
        touched = await manager.get_or_create("ip-a", explicit_session_id=low.session_id)

        merged = await manager.merge(new.session_id, low.session_id)

        assert merged.trust_level is TrustLevel.LOW
        assert merged.last_active_at == touched.last_active_at

    @pytest.mark.asyncio
    async def test_same_session_is_invalid(self, manager) -> None:
        a = await manager.get_or_create("ip-a")

        with pytest.raises(ValidationAppError):
            await manager.merge(a.session_id, a.session_id)
