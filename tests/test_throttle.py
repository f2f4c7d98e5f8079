"""Tests for the Redis-backed login throttle."""

from __future__ import annotations

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from src.venuin.core.errors import TooManyLoginAttempts
from src.venuin.core.redis import LoginThrottle


class CountingRedis:
    def __init__(self) -> None:
        self.values: dict[str, int] = {}
        self.ttls: dict[str, int] = {}

    async def get(self, key):
        value = self.values.get(key)
        return None if value is None else str(value)

    async def incr(self, key):
        self.values[key] = self.values.get(key, 0) + 1
        return self.values[key]

    async def expire(self, key, seconds):
        self.ttls[key] = seconds

    async def ttl(self, key):
        return self.ttls.get(key, -1)

    async def delete(self, key):
        self.values.pop(key, None)


class BrokenRedis:
    async def get(self, key):
        raise RedisConnectionError("connection refused")

    async def incr(self, key):
        raise RedisConnectionError("connection refused")

    async def delete(self, key):
        raise RedisConnectionError("connection refused")


async def test_window_is_set_on_first_failure_only():
    redis = CountingRedis()
    throttle = LoginThrottle(redis, max_attempts=5, window_seconds=900)

    await throttle.record_failure("tenant_user:alpha-events", "pat@events.com")
    redis.ttls.clear()
    await throttle.record_failure("tenant_user:alpha-events", "pat@events.com")

    assert redis.values == {"login:tenant_user:alpha-events:pat@events.com": 2}
    assert redis.ttls == {}


async def test_scopes_are_counted_separately():
    redis = CountingRedis()
    throttle = LoginThrottle(redis, max_attempts=1, window_seconds=900)

    await throttle.record_failure("tenant_user:alpha-events", "pat@events.com")

    with pytest.raises(TooManyLoginAttempts):
        await throttle.check("tenant_user:alpha-events", "pat@events.com")
    await throttle.check("tenant_user:beta-venues", "pat@events.com")


async def test_retry_after_uses_remaining_ttl():
    redis = CountingRedis()
    throttle = LoginThrottle(redis, max_attempts=1, window_seconds=900)
    await throttle.record_failure("super_admin", "root@venuin.io")
    redis.ttls["login:super_admin:root@venuin.io"] = 42

    with pytest.raises(TooManyLoginAttempts) as exc_info:
        await throttle.check("super_admin", "ROOT@venuin.io")

    assert exc_info.value.retry_after == 42
    assert exc_info.value.status_code == 429


async def test_redis_outage_lets_attempts_through():
    throttle = LoginThrottle(BrokenRedis(), max_attempts=1, window_seconds=900)

    await throttle.check("super_admin", "root@venuin.io")
    await throttle.record_failure("super_admin", "root@venuin.io")
    await throttle.reset("super_admin", "root@venuin.io")
