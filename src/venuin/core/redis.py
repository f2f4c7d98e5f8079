"""Redis connection pool and the login-attempt throttle.

Redis holds nothing that an authorization decision depends on: sessions,
roles and plans are always read from the database. The only state kept here
is a short-lived failed-login counter per (subject kind, tenant, email).
"""

from __future__ import annotations

import redis.asyncio as aioredis
import structlog
from redis.exceptions import RedisError

from src.venuin.config import get_settings
from src.venuin.core.errors import TooManyLoginAttempts

logger = structlog.get_logger(__name__)

# ── Module-level Redis pool (lazy init) ─────────────────────────────────────

_redis_pool: aioredis.Redis | None = None


def get_redis_pool() -> aioredis.Redis:
    """Get or create the Redis connection pool singleton."""
    global _redis_pool
    if _redis_pool is None:
        settings = get_settings()
        _redis_pool = aioredis.from_url(
            settings.REDIS_URL,
            decode_responses=True,
        )
    return _redis_pool


async def close_redis() -> None:
    """Close the Redis connection pool."""
    global _redis_pool
    if _redis_pool:
        await _redis_pool.aclose()
        _redis_pool = None


# ── Login Throttle ──────────────────────────────────────────────────────────


class LoginThrottle:
    """Fixed-window counter of failed logins.

    Keys look like ``login:{scope}:{email}`` where scope is the subject kind
    plus the tenant slug for tenant-bound logins. A Redis outage is logged
    and the attempt is let through; password verification still applies.
    """

    def __init__(self, redis_client: aioredis.Redis, max_attempts: int, window_seconds: int):
        self._redis = redis_client
        self._max_attempts = max_attempts
        self._window_seconds = window_seconds

    def _key(self, scope: str, email: str) -> str:
        return f"login:{scope}:{email.strip().lower()}"

    async def check(self, scope: str, email: str) -> None:
        """Raise TooManyLoginAttempts if the window is already exhausted."""
        key = self._key(scope, email)
        try:
            raw = await self._redis.get(key)
            if raw is None or int(raw) < self._max_attempts:
                return
            ttl = await self._redis.ttl(key)
        except RedisError as e:
            logger.warning("auth.throttle_unavailable", scope=scope, error=str(e))
            return
        logger.warning("auth.login_throttled", scope=scope, attempts=int(raw))
        raise TooManyLoginAttempts(retry_after=ttl if ttl and ttl > 0 else self._window_seconds)

    async def record_failure(self, scope: str, email: str) -> None:
        key = self._key(scope, email)
        try:
            count = await self._redis.incr(key)
            if count == 1:
                await self._redis.expire(key, self._window_seconds)
        except RedisError as e:
            logger.warning("auth.throttle_unavailable", scope=scope, error=str(e))

    async def reset(self, scope: str, email: str) -> None:
        try:
            await self._redis.delete(self._key(scope, email))
        except RedisError as e:
            logger.warning("auth.throttle_unavailable", scope=scope, error=str(e))


def get_login_throttle() -> LoginThrottle:
    """Build a LoginThrottle on the global Redis pool."""
    settings = get_settings()
    return LoginThrottle(
        get_redis_pool(),
        max_attempts=settings.LOGIN_MAX_ATTEMPTS,
        window_seconds=settings.LOGIN_WINDOW_SECONDS,
    )
