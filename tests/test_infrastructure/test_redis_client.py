"""Tests for the Redis-backed idempotency store and rate limiter.

Both run against the in-memory FakeRedis from conftest.
"""

from __future__ import annotations

import pytest

from resale_escrow.domain.exceptions import DuplicateOperationError, RateLimitExceededError
from resale_escrow.infrastructure.redis_client import (
    IdempotencyStore,
    RateLimiter,
    RateLimitRule,
    get_redis,
)


class TestIdempotencyStore:
    @pytest.mark.asyncio
    async def test_second_claim_is_duplicate(self, fake_redis) -> None:
        store = IdempotencyStore(fake_redis, ttl_seconds=60)
        await store.claim("purchase", "buyer-1:abc")
        with pytest.raises(DuplicateOperationError):
            await store.claim("purchase", "buyer-1:abc")
        assert fake_redis.ttls["idempotency:purchase:buyer-1:abc"] == 60

    @pytest.mark.asyncio
    async def test_scopes_are_independent(self, fake_redis) -> None:
        store = IdempotencyStore(fake_redis, ttl_seconds=60)
        await store.claim("purchase", "k")
        await store.claim("capture", "k")

    @pytest.mark.asyncio
    async def test_release_frees_the_key(self, fake_redis) -> None:
        store = IdempotencyStore(fake_redis, ttl_seconds=60)
        await store.claim("purchase", "k")
        await store.release("purchase", "k")
        await store.claim("purchase", "k")

    @pytest.mark.asyncio
    async def test_remember_stores_result(self, fake_redis) -> None:
        store = IdempotencyStore(fake_redis, ttl_seconds=60)
        await store.claim("purchase", "k")
        await store.remember("purchase", "k", "order-42")
        assert await fake_redis.get("idempotency:purchase:k") == "order-42"


class TestRateLimiter:
    @staticmethod
    def _limiter(fake_redis, now: list[float]) -> RateLimiter:
        rules = {
            "default": RateLimitRule(max_requests=5, window_seconds=60),
            "purchase": RateLimitRule(max_requests=2, window_seconds=60),
        }
        return RateLimiter(fake_redis, rules=rules, clock=lambda: now[0])

    @pytest.mark.asyncio
    async def test_counts_down_then_blocks(self, fake_redis) -> None:
        now = [1_000_020.0]
        limiter = self._limiter(fake_redis, now)

        assert await limiter.hit("buyer-1", "purchase") == 1
        assert await limiter.hit("buyer-1", "purchase") == 0
        with pytest.raises(RateLimitExceededError) as exc_info:
            await limiter.hit("buyer-1", "purchase")
        # window started at 1_000_020 // 60 * 60 = 999_960
        assert exc_info.value.retry_after == 999_960 + 60 - 1_000_020

    @pytest.mark.asyncio
    async def test_new_window_resets(self, fake_redis) -> None:
        now = [1_000_020.0]
        limiter = self._limiter(fake_redis, now)
        await limiter.hit("buyer-1", "purchase")
        await limiter.hit("buyer-1", "purchase")

        now[0] += 60
        assert await limiter.hit("buyer-1", "purchase") == 1

    @pytest.mark.asyncio
    async def test_actors_counted_separately(self, fake_redis) -> None:
        now = [1_000_020.0]
        limiter = self._limiter(fake_redis, now)
        await limiter.hit("buyer-1", "purchase")
        await limiter.hit("buyer-1", "purchase")
        assert await limiter.hit("buyer-2", "purchase") == 1

    @pytest.mark.asyncio
    async def test_unknown_action_uses_default(self, fake_redis) -> None:
        limiter = self._limiter(fake_redis, [0.0])
        assert limiter.rule_for("search").max_requests == 5
        assert await limiter.hit("buyer-1", "search") == 4

    @pytest.mark.asyncio
    async def test_first_hit_sets_ttl(self, fake_redis) -> None:
        limiter = self._limiter(fake_redis, [120.0])
        await limiter.hit("buyer-1", "purchase")
        assert fake_redis.ttls["ratelimit:purchase:buyer-1:120"] == 60


class TestClientSingleton:
    def test_get_redis_before_init(self) -> None:
        with pytest.raises(RuntimeError, match="not initialized"):
            get_redis()
