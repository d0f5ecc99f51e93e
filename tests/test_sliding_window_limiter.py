"""Unit tests for the sliding-window rate limiter."""

import logging
from unittest.mock import AsyncMock

import pytest

from anonchat.adapters.rate_limit.base import WindowPolicy
from anonchat.adapters.rate_limit.sliding_window import SlidingWindowLimiter
from anonchat.adapters.store.in_memory import InMemoryStore
from anonchat.core.errors import StoreUnavailableError


@pytest.fixture
def limiter(store, clock) -> SlidingWindowLimiter:
    return SlidingWindowLimiter(
        store,
        {
            "anti_spam": WindowPolicy(limit=1, window_ms=2_000),
            "burst": WindowPolicy(limit=3, window_ms=60_000),
        },
        clock=clock,
    )


@pytest.mark.asyncio
async def test_allows_up_to_limit_and_counts_down(limiter) -> None:
    results = [await limiter.attempt("scope", "burst") for _ in range(3)]

    assert [r.allowed for r in results] == [True, True, True]
    assert [r.remaining for r in results] == [2, 1, 0]


@pytest.mark.asyncio
async def test_rejections_do_not_inflate_the_window(limiter, clock) -> None:
    for _ in range(3):
        await limiter.attempt("scope", "burst")

    rejected = [await limiter.attempt("scope", "burst") for _ in range(20)]

    assert all(r.allowed is False for r in rejected)
    assert {r.remaining for r in rejected} == {0}
    # Reset time is anchored on the first recorded event, not the latest attempt
    assert {r.reset_at for r in rejected} == {int(clock.now * 1000) + 60_000}

    usage = await limiter.peek("scope", "burst")
    assert usage.remaining == 0
    assert usage.limit - usage.remaining == 3


@pytest.mark.asyncio
async def test_one_per_two_seconds(limiter, clock) -> None:
    first = await limiter.attempt("scope", "anti_spam")
    clock.advance_ms(500)
    second = await limiter.attempt("scope", "anti_spam")
    clock.advance_ms(1_600)
    third = await limiter.attempt("scope", "anti_spam")

    assert first.allowed is True
    assert second.allowed is False
    assert second.retry_after_seconds == 2
    assert third.allowed is True


@pytest.mark.asyncio
async def test_scopes_and_windows_are_isolated(limiter) -> None:
    assert (await limiter.attempt("a", "anti_spam")).allowed is True
    assert (await limiter.attempt("a", "anti_spam")).allowed is False

    assert (await limiter.attempt("b", "anti_spam")).allowed is True
    assert (await limiter.attempt("a", "burst")).allowed is True


@pytest.mark.asyncio
async def test_policy_override_replaces_registered_threshold(limiter) -> None:
    generous = WindowPolicy(limit=10, window_ms=2_000)

    results = [await limiter.attempt("scope", "anti_spam", policy=generous) for _ in range(10)]

    assert all(r.allowed for r in results)
    assert results[-1].limit == 10
    assert results[-1].remaining == 0


@pytest.mark.asyncio
async def test_same_millisecond_events_are_distinct(limiter) -> None:
    # The clock never moves, so every member shares one timestamp
    for _ in range(3):
        assert (await limiter.attempt("scope", "burst")).allowed is True

    assert (await limiter.attempt("scope", "burst")).allowed is False


@pytest.mark.asyncio
async def test_fails_open_and_logs_when_store_is_down(clock, caplog) -> None:
    store = AsyncMock(spec=InMemoryStore)
    store.sliding_window_attempt.side_effect = StoreUnavailableError(
        code="store_unavailable", message="down"
    )
    limiter = SlidingWindowLimiter(
        store, {"burst": WindowPolicy(limit=3, window_ms=60_000)}, clock=clock
    )

    with caplog.at_level(logging.WARNING):
        result = await limiter.attempt("scope", "burst")

    assert result.allowed is True
    assert result.degraded is True
    assert any(r.getMessage() == "rate_limit.degraded" for r in caplog.records)


@pytest.mark.asyncio
async def test_normal_allow_is_not_degraded(limiter, caplog) -> None:
    with caplog.at_level(logging.WARNING):
        result = await limiter.attempt("scope", "burst")

    assert result.allowed is True
    assert result.degraded is False
    assert not any(r.getMessage() == "rate_limit.degraded" for r in caplog.records)


@pytest.mark.asyncio
async def test_fail_closed_rejects_when_store_is_down(clock) -> None:
    store = AsyncMock(spec=InMemoryStore)
    store.sliding_window_attempt.side_effect = StoreUnavailableError(
        code="store_unavailable", message="down"
    )
    limiter = SlidingWindowLimiter(
        store,
        {"burst": WindowPolicy(limit=3, window_ms=60_000)},
        fail_open=False,
        clock=clock,
    )

    result = await limiter.attempt("scope", "burst")

    assert result.allowed is False
    assert result.degraded is True


@pytest.mark.asyncio
async def test_reset_clears_one_or_all_windows(limiter) -> None:
    await limiter.attempt("scope", "anti_spam")
    await limiter.attempt("scope", "burst")

    assert await limiter.reset("scope", "anti_spam") == 1
    assert (await limiter.attempt("scope", "anti_spam")).allowed is True

    assert await limiter.reset("scope") == 2
    assert (await limiter.peek("scope", "burst")).remaining == 3


@pytest.mark.asyncio
async def test_window_key_expires_with_the_window(limiter, store, clock) -> None:
    await limiter.attempt("scope", "anti_spam")
    clock.advance_ms(2_000)

    assert await store.delete("ratelimit:scope:anti_spam") == 0


@pytest.mark.asyncio
async def test_invalid_attempt_args(limiter) -> None:
    with pytest.raises(ValueError):
        await limiter.attempt("", "burst")

    with pytest.raises(ValueError):
        await limiter.attempt("scope", "no_such_window")

    with pytest.raises(ValueError):
        await limiter.reset("scope", "no_such_window")


@pytest.mark.parametrize(
    "kwargs",
    [
        {"limit": 0, "window_ms": 1_000},
        {"limit": 1, "window_ms": 0},
    ],
)
def test_invalid_window_policy(kwargs: dict) -> None:
    with pytest.raises(ValueError):
        WindowPolicy(**kwargs)


def test_requires_at_least_one_window(store) -> None:
    with pytest.raises(ValueError):
        SlidingWindowLimiter(store, {})
