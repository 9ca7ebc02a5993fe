"""Redis client for idempotency keys and rate limiting.

Every service instance shares the same Redis, so both the idempotency
claims and the rate-limit counters hold across a multi-instance deployment.

Usage:
    from resale_escrow.infrastructure.redis_client import get_redis, close_redis

    redis = get_redis()
    await redis.set("key", "value", ex=3600)
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import TYPE_CHECKING

import redis.asyncio as aioredis

from resale_escrow.config import get_settings
from resale_escrow.domain.exceptions import DuplicateOperationError, RateLimitExceededError
from resale_escrow.logging_config import get_logger

if TYPE_CHECKING:
    from collections.abc import Callable

logger = get_logger(__name__)

_redis_client: aioredis.Redis | None = None


async def init_redis() -> aioredis.Redis:
    """Initialize and return the Redis client. Called during app startup."""
    global _redis_client
    settings = get_settings()
    _redis_client = aioredis.from_url(
        settings.redis_url,
        decode_responses=True,
    )
    # Verify connectivity
    await _redis_client.ping()
    logger.info("redis.connected", url=settings.redis_url)
    return _redis_client


def get_redis() -> aioredis.Redis:
    """Return the Redis client singleton. Must call init_redis() first."""
    if _redis_client is None:
        raise RuntimeError("Redis not initialized. Call init_redis() first.")
    return _redis_client


async def close_redis() -> None:
    """Close the Redis connection. Called during app shutdown."""
    global _redis_client
    if _redis_client is not None:
        await _redis_client.aclose()
        logger.info("redis.disconnected")
        _redis_client = None


# --- Idempotency Helpers ---


class IdempotencyStore:
    """Claims idempotency keys with SET NX so two racing requests cannot both win."""

    def __init__(self, redis: aioredis.Redis, ttl_seconds: int | None = None) -> None:
        self._redis = redis
        self._ttl = ttl_seconds or get_settings().redis_idempotency_ttl_seconds

    @staticmethod
    def _key(scope: str, key: str) -> str:
        return f"idempotency:{scope}:{key}"

    async def claim(self, scope: str, key: str, value: str = "1") -> None:
        """Reserve a key or raise DuplicateOperationError if already used."""
        claimed = await self._redis.set(self._key(scope, key), value, ex=self._ttl, nx=True)
        if not claimed:
            logger.info("idempotency.duplicate", scope=scope, key=key)
            raise DuplicateOperationError(key)

    async def release(self, scope: str, key: str) -> None:
        """Give a key back after the guarded operation failed."""
        await self._redis.delete(self._key(scope, key))

    async def remember(self, scope: str, key: str, value: str) -> None:
        """Overwrite the claim with the operation's result (e.g. the order id)."""
        await self._redis.set(self._key(scope, key), value, ex=self._ttl)


# --- Rate Limiting ---


@dataclass(frozen=True)
class RateLimitRule:
    max_requests: int
    window_seconds: int


def default_rules() -> dict[str, RateLimitRule]:
    """Per-action limits from settings. Unknown actions use the default rule."""
    settings = get_settings()
    window = settings.rate_limit_window_seconds
    return {
        "default": RateLimitRule(settings.rate_limit_default_max, window),
        "create_listing": RateLimitRule(settings.rate_limit_create_max, window),
        "purchase": RateLimitRule(settings.rate_limit_purchase_max, window),
        "upload_proof": RateLimitRule(settings.rate_limit_upload_max, window),
    }


class RateLimiter:
    """Fixed-window counter keyed by actor + action.

    The first hit in a window sets the key's TTL; later hits only INCR.
    """

    def __init__(
        self,
        redis: aioredis.Redis,
        rules: dict[str, RateLimitRule] | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._redis = redis
        self._rules = rules or default_rules()
        self._clock = clock

    def rule_for(self, action: str) -> RateLimitRule:
        return self._rules.get(action, self._rules["default"])

    async def hit(self, actor_id: str, action: str) -> int:
        """Count one request; raise RateLimitExceededError once over the limit.

        Returns:
            Requests remaining in the current window.
        """
        rule = self.rule_for(action)
        window_start = int(self._clock()) // rule.window_seconds * rule.window_seconds
        key = f"ratelimit:{action}:{actor_id}:{window_start}"

        count = await self._redis.incr(key)
        if count == 1:
            await self._redis.expire(key, rule.window_seconds)

        if count > rule.max_requests:
            retry_after = max(1, window_start + rule.window_seconds - int(self._clock()))
            logger.warning(
                "ratelimit.exceeded",
                actor_id=actor_id,
                action=action,
                count=count,
                retry_after=retry_after,
            )
            raise RateLimitExceededError(action, retry_after)
        return rule.max_requests - count
