"""Redis store backend.

Atomicity comes from the server: the sliding-window and bounded-increment
primitives are Lua scripts (a script runs to completion before any other
command), and the two-key merge is an optimistic WATCH/MULTI transaction
retried on conflict. All commands use explicit socket timeouts; any Redis
error is re-raised as ``StoreUnavailableError`` so callers can apply their
fail-open policy.
"""

from __future__ import annotations

import logging
from typing import Any, Mapping

import redis.asyncio as aioredis
from redis.exceptions import RedisError, WatchError

from anonchat.adapters.store.base import (
    AbstractKeyValueStore,
    IncrementOutcome,
    Record,
    RecordCombiner,
    WindowOutcome,
)
from anonchat.core.errors import StoreUnavailableError

logger = logging.getLogger(__name__)


class RedisStore(AbstractKeyValueStore):
    """Shared store backed by Redis."""

    # Trim + count + conditional add + expiry refresh. A rejected attempt
    # leaves the set untouched apart from the trim.
    _SLIDING_WINDOW_SCRIPT = """
local key = KEYS[1]
local now = tonumber(ARGV[1])
local window = tonumber(ARGV[2])
local limit = tonumber(ARGV[3])
local member = ARGV[4]

redis.call('ZREMRANGEBYSCORE', key, '-inf', '(' .. (now - window))
local count = redis.call('ZCARD', key)
local allowed = 0
if count < limit then
  redis.call('ZADD', key, now, member)
  count = count + 1
  allowed = 1
end

local oldest = now
local head = redis.call('ZRANGE', key, 0, 0, 'WITHSCORES')
if head[2] then
  oldest = tonumber(head[2])
end
if count > 0 then
  redis.call('PEXPIRE', key, window)
end
return {allowed, count, oldest}
"""

    # Increment with ceiling guard. Returns {-1, 0} when the record is missing,
    # {0, current} when rejected, {1, updated} when applied.
    _BOUNDED_INCREMENT_SCRIPT = """
local key = KEYS[1]
if redis.call('EXISTS', key) == 0 then
  return {-1, 0}
end
local current = tonumber(redis.call('HGET', key, ARGV[1]) or '0')
local ceiling = tonumber(redis.call('HGET', key, ARGV[2]) or '0')
if current + 1 > ceiling then
  return {0, current}
end
local updated = redis.call('HINCRBY', key, ARGV[1], 1)
for i = 4, #ARGV, 2 do
  redis.call('HSET', key, ARGV[i], ARGV[i + 1])
end
redis.call('EXPIRE', key, tonumber(ARGV[3]))
return {1, updated}
"""

    # HSET on a missing key would create a partial record
    _UPDATE_FIELDS_SCRIPT = """
local key = KEYS[1]
if redis.call('EXISTS', key) == 0 then
  return 0
end
for i = 2, #ARGV, 2 do
  redis.call('HSET', key, ARGV[i], ARGV[i + 1])
end
redis.call('EXPIRE', key, tonumber(ARGV[1]))
return 1
"""

    def __init__(
        self,
        redis_url: str,
        *,
        socket_timeout: float = 2.0,
        merge_max_retries: int = 5,
        client: Any | None = None,
    ) -> None:
        self.redis_url = redis_url
        self.client = client or aioredis.from_url(
            redis_url,
            decode_responses=True,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
        )
        self._merge_max_retries = merge_max_retries
        self._sliding_window = self.client.register_script(self._SLIDING_WINDOW_SCRIPT)
        self._bounded_increment = self.client.register_script(self._BOUNDED_INCREMENT_SCRIPT)
        self._update_fields = self.client.register_script(self._UPDATE_FIELDS_SCRIPT)

    @staticmethod
    def _unavailable(operation: str, exc: Exception) -> StoreUnavailableError:
        logger.warning(
            "store.redis_error",
            extra={
                "operation": operation,
                "error_type": type(exc).__name__,
                "error_msg": str(exc),
            },
        )
        return StoreUnavailableError(
            code="store_unavailable",
            message="Shared store is unavailable",
            details={"context": {"operation": operation}},
        )

    async def ping(self) -> bool:
        try:
            return bool(await self.client.ping())
        except (RedisError, OSError) as exc:
            raise self._unavailable("ping", exc) from exc

    async def get_value(self, key: str) -> str | None:
        try:
            return await self.client.get(key)
        except (RedisError, OSError) as exc:
            raise self._unavailable("get_value", exc) from exc

    async def set_value(
        self,
        key: str,
        value: str,
        *,
        ttl_seconds: int,
        only_if_absent: bool = False,
    ) -> bool:
        try:
            result = await self.client.set(key, value, ex=max(1, ttl_seconds), nx=only_if_absent)
        except (RedisError, OSError) as exc:
            raise self._unavailable("set_value", exc) from exc
        return bool(result)

    async def delete(self, *keys: str) -> int:
        if not keys:
            return 0
        try:
            return int(await self.client.delete(*keys))
        except (RedisError, OSError) as exc:
            raise self._unavailable("delete", exc) from exc

    async def get_record(self, key: str) -> Record | None:
        try:
            record = await self.client.hgetall(key)
        except (RedisError, OSError) as exc:
            raise self._unavailable("get_record", exc) from exc
        return dict(record) if record else None

    async def put_record(self, key: str, record: Mapping[str, str], *, ttl_seconds: int) -> None:
        mapping = {k: str(v) for k, v in record.items()}
        try:
            # Replace, don't patch: drop fields absent from the new record
            async with self.client.pipeline(transaction=True) as pipe:
                pipe.delete(key)
                pipe.hset(key, mapping=mapping)
                pipe.expire(key, max(1, ttl_seconds))
                await pipe.execute()
        except (RedisError, OSError) as exc:
            raise self._unavailable("put_record", exc) from exc

    async def update_fields(
        self, key: str, fields: Mapping[str, str], *, ttl_seconds: int
    ) -> bool:
        args: list[Any] = [max(1, ttl_seconds)]
        for k, v in fields.items():
            args.extend([k, str(v)])
        try:
            updated = await self._update_fields(keys=[key], args=args)
        except (RedisError, OSError) as exc:
            raise self._unavailable("update_fields", exc) from exc
        return bool(int(updated))

    async def increment_bounded(
        self,
        key: str,
        field: str,
        *,
        ceiling_field: str,
        ttl_seconds: int,
        touch: Mapping[str, str] | None = None,
    ) -> IncrementOutcome:
        args: list[Any] = [field, ceiling_field, max(1, ttl_seconds)]
        for k, v in (touch or {}).items():
            args.extend([k, str(v)])
        try:
            status, value = await self._bounded_increment(keys=[key], args=args)
        except (RedisError, OSError) as exc:
            raise self._unavailable("increment_bounded", exc) from exc

        status = int(status)
        if status < 0:
            return IncrementOutcome(found=False, applied=False, value=0)
        return IncrementOutcome(found=True, applied=status == 1, value=int(value))

    async def merge_records(
        self,
        from_key: str,
        to_key: str,
        combine: RecordCombiner,
        *,
        ttl_seconds: int,
    ) -> Record | None:
        try:
            async with self.client.pipeline(transaction=True) as pipe:
                for attempt in range(1, self._merge_max_retries + 1):
                    try:
                        await pipe.watch(from_key, to_key)
                        source = await pipe.hgetall(from_key)
                        target = await pipe.hgetall(to_key)
                        if not source or not target:
                            await pipe.unwatch()
                            return None

                        merged = {k: str(v) for k, v in combine(dict(source), dict(target)).items()}
                        pipe.multi()
                        pipe.delete(to_key)
                        pipe.hset(to_key, mapping=merged)
                        pipe.expire(to_key, max(1, ttl_seconds))
                        pipe.delete(from_key)
                        await pipe.execute()
                        return merged
                    except WatchError:
                        logger.info(
                            "store.merge_conflict",
                            extra={"attempt": attempt, "max_retries": self._merge_max_retries},
                        )
                        continue
        except (RedisError, OSError) as exc:
            raise self._unavailable("merge_records", exc) from exc

        raise StoreUnavailableError(
            code="store_contention",
            message="Session merge could not complete due to concurrent updates",
            details={"context": {"retries": self._merge_max_retries}},
        )

    async def sliding_window_attempt(
        self,
        key: str,
        *,
        now_ms: int,
        window_ms: int,
        limit: int,
        member: str,
    ) -> WindowOutcome:
        try:
            allowed, count, oldest = await self._sliding_window(
                keys=[key],
                args=[now_ms, window_ms, limit, member],
            )
        except (RedisError, OSError) as exc:
            raise self._unavailable("sliding_window_attempt", exc) from exc
        return WindowOutcome(allowed=bool(int(allowed)), count=int(count), oldest_ms=int(oldest))

    async def sliding_window_count(self, key: str, *, now_ms: int, window_ms: int) -> WindowOutcome:
        try:
            async with self.client.pipeline(transaction=True) as pipe:
                pipe.zremrangebyscore(key, "-inf", f"({now_ms - window_ms}")
                pipe.zcard(key)
                pipe.zrange(key, 0, 0, withscores=True)
                _, count, head = await pipe.execute()
        except (RedisError, OSError) as exc:
            raise self._unavailable("sliding_window_count", exc) from exc

        oldest = int(head[0][1]) if head else now_ms
        return WindowOutcome(allowed=False, count=int(count), oldest_ms=oldest)

    async def close(self) -> None:
        try:
            await self.client.aclose()
        except (RedisError, OSError) as exc:
            logger.warning("store.close_failed", extra={"error_type": type(exc).__name__})
