"""Unit tests for AnonymousSessionStore."""

import pytest

from anonchat.schemas.session import TrustLevel
from anonchat.services.session_store import AnonymousSessionStore, generate_session_id

TTL = 3_600


class ClaimWatchingStore:
    """Delegating store that notes whether a session exists when its IP pointer is set."""

    def __init__(self, inner) -> None:
        self._inner = inner
        self.claims: list[tuple[str, bool]] = []

    def __getattr__(self, name):
        return getattr(self._inner, name)

    async def set_value(self, key, value, **kwargs):
        if ":ip:" in key:
            readable = await self._inner.get_record(f"session:{value}") is not None
            self.claims.append((value, readable))
        return await self._inner.set_value(key, value, **kwargs)


@pytest.fixture
def sessions(store, clock) -> AnonymousSessionStore:
    return AnonymousSessionStore(store, ttl_seconds=TTL, clock=clock)


def test_generated_ids_are_prefixed_and_unique() -> None:
    ids = {generate_session_id() for _ in range(50)}

    assert len(ids) == 50
    assert all(i.startswith("anon_") for i in ids)


def test_rejects_non_positive_ttl(store) -> None:
    with pytest.raises(ValueError):
        AnonymousSessionStore(store, ttl_seconds=0)


@pytest.mark.asyncio
async def test_create_sets_fresh_counters_and_fixed_expiry(sessions, clock) -> None:
    session = await sessions.create("ip-1", "ua-1", trust_level=TrustLevel.LOW, daily_message_limit=5)
    now_ms = int(clock.now * 1000)

    assert session.message_count == 0
    assert session.daily_message_limit == 5
    assert session.trust_level is TrustLevel.LOW
    assert session.created_at == session.last_active_at == now_ms
    assert session.expires_at == now_ms + TTL * 1000
    assert await sessions.get(session.session_id) == session


@pytest.mark.asyncio
async def test_get_by_ip_follows_pointer(sessions) -> None:
    session = await sessions.create("ip-1")

    found = await sessions.get_by_ip("ip-1")

    assert found is not None
    assert found.session_id == session.session_id
    assert await sessions.get_by_ip("ip-2") is None


@pytest.mark.asyncio
async def test_create_returns_live_session_holding_the_ip_pointer(sessions) -> None:
    first = await sessions.create("ip-1")
    second = await sessions.create("ip-1")

    assert second.session_id == first.session_id


@pytest.mark.asyncio
async def test_losing_the_ip_claim_removes_the_new_record(sessions) -> None:
    winner = await sessions.create("ip-1")

    result = await sessions.create("ip-1", session_id="anon_late")

    assert result.session_id == winner.session_id
    assert await sessions.get("anon_late") is None
    assert (await sessions.get_by_ip("ip-1")).session_id == winner.session_id


@pytest.mark.asyncio
async def test_record_is_readable_before_ip_pointer_is_claimed(store, clock) -> None:
    watched = ClaimWatchingStore(store)
    sessions = AnonymousSessionStore(watched, ttl_seconds=TTL, clock=clock)

    session = await sessions.create("ip-1")

    assert watched.claims == [(session.session_id, True)]


@pytest.mark.asyncio
async def test_create_replaces_dangling_ip_pointer(sessions, store) -> None:
    first = await sessions.create("ip-1")
    await store.delete(f"session:{first.session_id}")

    second = await sessions.create("ip-1")

    assert second.session_id != first.session_id
    assert (await sessions.get_by_ip("ip-1")).session_id == second.session_id


@pytest.mark.asyncio
async def test_expired_session_is_not_found(sessions, clock) -> None:
    session = await sessions.create("ip-1")

    clock.advance_ms(TTL * 1000 + 1)

    assert await sessions.get(session.session_id) is None
    assert await sessions.get_by_ip("ip-1") is None


@pytest.mark.asyncio
async def test_patch_updates_fields_in_place(sessions, clock) -> None:
    session = await sessions.create("ip-1")
    await sessions.increment(session.session_id)
    clock.advance(5)

    patched = await sessions.patch(session.session_id, lastActiveAt=int(clock.now * 1000))

    assert patched.message_count == 1
    assert patched.last_active_at == session.last_active_at + 5_000
    assert await sessions.patch("anon_missing", messageCount=1) is None


@pytest.mark.asyncio
async def test_save_overwrites_record(sessions) -> None:
    session = await sessions.create("ip-1")

    await sessions.save(session.model_copy(update={"message_count": 4}))

    assert (await sessions.get(session.session_id)).message_count == 4


@pytest.mark.asyncio
async def test_delete_removes_record_and_pointer(sessions, store) -> None:
    session = await sessions.create("ip-1")

    assert await sessions.delete(session.session_id) is True
    assert await sessions.get(session.session_id) is None
    assert await store.get_value("session:ip:ip-1") is None
    assert await sessions.delete(session.session_id) is False


@pytest.mark.asyncio
async def test_key_prefix_namespaces_records(store, clock) -> None:
    sessions = AnonymousSessionStore(store, ttl_seconds=TTL, key_prefix="chat:", clock=clock)

    session = await sessions.create("ip-1")

    assert await store.get_record(f"chat:session:{session.session_id}") is not None
    assert await store.get_value("chat:session:ip:ip-1") == session.session_id
