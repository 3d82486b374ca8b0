"""
Unit tests for batch_engine.rate_limiter module.

Tests RateLimitConfig, TokenBucketRateLimiter and create_rate_limiter.
"""

import asyncio
import pytest

from batch_engine.exceptions import RateLimiterStoppedError
from batch_engine.rate_limiter import (
    RATE_LIMIT_TIERS,
    RateLimitConfig,
    TokenBucketRateLimiter,
    create_rate_limiter,
)


def make_limiter(capacity=2, tokens_per_refill=1, refill_interval_ms=1000):
    return TokenBucketRateLimiter(
        RateLimitConfig(
            capacity=capacity,
            refill_interval_ms=refill_interval_ms,
            tokens_per_refill=tokens_per_refill,
        ),
        auto_refill=False,
    )


async def settle():
    """Let queued tasks run until they block."""
    for _ in range(5):
        await asyncio.sleep(0)


class TestRateLimitConfig:
    """Tests for RateLimitConfig dataclass."""

    def test_tier_presets(self):
        """Free and paid presets have the expected burst size."""
        assert RATE_LIMIT_TIERS["free"].capacity == 5
        assert RATE_LIMIT_TIERS["paid"].capacity == 50

    def test_requests_per_minute(self):
        """Sustained rate matches the tier's nominal limit."""
        assert RATE_LIMIT_TIERS["free"].requests_per_minute == 10
        assert RATE_LIMIT_TIERS["paid"].requests_per_minute == 480

    @pytest.mark.parametrize("kwargs", [
        {"capacity": 0, "refill_interval_ms": 1000},
        {"capacity": 1, "refill_interval_ms": 0},
        {"capacity": 1, "refill_interval_ms": 1000, "tokens_per_refill": 0},
    ])
    def test_invalid_config(self, kwargs):
        with pytest.raises(ValueError):
            RateLimitConfig(**kwargs)


class TestTokenBucket:
    """Tests for token accounting."""

    def test_starts_full(self):
        limiter = make_limiter(capacity=3)
        assert limiter.get_available_tokens() == 3

    @pytest.mark.asyncio
    async def test_wait_consumes_token(self):
        limiter = make_limiter(capacity=3)
        await limiter.wait_for_token()
        assert limiter.get_available_tokens() == 2

    def test_try_acquire(self):
        limiter = make_limiter(capacity=1)
        assert limiter.try_acquire() is True
        assert limiter.try_acquire() is False
        assert limiter.get_available_tokens() == 0

    def test_refill_capped_at_capacity(self):
        limiter = make_limiter(capacity=3, tokens_per_refill=2)
        limiter.try_acquire()
        limiter.refill()
        assert limiter.get_available_tokens() == 3

    def test_reset(self):
        limiter = make_limiter(capacity=2)
        limiter.try_acquire()
        limiter.try_acquire()
        limiter.reset()
        assert limiter.get_available_tokens() == 2

    def test_estimated_wait_time(self):
        limiter = make_limiter(capacity=1, refill_interval_ms=1000)
        assert limiter.get_estimated_wait_time() == 0

        limiter.try_acquire()
        wait_ms = limiter.get_estimated_wait_time()
        assert 0 < wait_ms <= 1000

    def test_get_state(self):
        limiter = make_limiter(capacity=4)
        state = limiter.get_state()
        assert state["capacity"] == 4
        assert state["available_tokens"] == 4
        assert state["queue_size"] == 0
        assert state["stopped"] is False


class TestWaiters:
    """Tests for queued callers."""

    @pytest.mark.asyncio
    async def test_waiters_served_in_order(self):
        """Tokens go to callers in the order they started waiting."""
        limiter = make_limiter(capacity=1)
        await limiter.wait_for_token()

        served = []

        async def worker(name):
            await limiter.wait_for_token()
            served.append(name)

        tasks = [asyncio.create_task(worker(n)) for n in ("a", "b", "c")]
        await settle()
        assert served == []
        assert limiter.get_queue_size() == 3

        limiter.refill()
        await settle()
        assert served == ["a"]

        limiter.refill()
        limiter.refill()
        await settle()
        assert served == ["a", "b", "c"]

        await asyncio.gather(*tasks)

    @pytest.mark.asyncio
    async def test_refill_tokens_not_stolen_by_newcomer(self):
        """A new caller cannot take a token while others are queued."""
        limiter = make_limiter(capacity=1)
        await limiter.wait_for_token()

        waiter = asyncio.create_task(limiter.wait_for_token())
        await settle()

        limiter._tokens = 1  # token appears without a wake-up
        assert limiter.try_acquire() is False

        limiter.refill()
        await asyncio.wait_for(waiter, timeout=1)

    @pytest.mark.asyncio
    async def test_cancelled_waiter_leaves_queue(self):
        limiter = make_limiter(capacity=1)
        await limiter.wait_for_token()

        waiter = asyncio.create_task(limiter.wait_for_token())
        await settle()
        assert limiter.get_queue_size() == 1

        waiter.cancel()
        with pytest.raises(asyncio.CancelledError):
            await waiter
        assert limiter.get_queue_size() == 0

        limiter.refill()
        assert limiter.get_available_tokens() == 1

    @pytest.mark.asyncio
    async def test_stop_releases_waiters(self):
        """stop() fails every waiter instead of leaving it suspended."""
        limiter = make_limiter(capacity=1)
        await limiter.wait_for_token()

        waiters = [asyncio.create_task(limiter.wait_for_token()) for _ in range(3)]
        await settle()

        limiter.stop()
        results = await asyncio.gather(*waiters, return_exceptions=True)

        assert all(isinstance(r, RateLimiterStoppedError) for r in results)
        assert limiter.stopped
        assert limiter.get_queue_size() == 0

    @pytest.mark.asyncio
    async def test_wait_after_stop_raises(self):
        limiter = make_limiter()
        limiter.stop()
        with pytest.raises(RateLimiterStoppedError):
            await limiter.wait_for_token()
        assert limiter.try_acquire() is False


class TestAutoRefill:
    """Tests for the background refill task."""

    @pytest.mark.asyncio
    async def test_background_refill_serves_waiter(self):
        limiter = TokenBucketRateLimiter(
            RateLimitConfig(capacity=1, refill_interval_ms=10),
        )
        try:
            await limiter.wait_for_token()
            await asyncio.wait_for(limiter.wait_for_token(), timeout=1)
        finally:
            limiter.stop()

    def test_created_outside_loop(self):
        """Constructing without a running loop defers the refill task."""
        limiter = TokenBucketRateLimiter(RateLimitConfig(capacity=1, refill_interval_ms=10))
        assert limiter._refill_task is None
        limiter.stop()


class TestCreateRateLimiter:
    """Tests for create_rate_limiter factory."""

    def test_paid_tier(self):
        limiter = create_rate_limiter("paid", auto_refill=False)
        assert limiter.config.tier == "paid"
        assert limiter.get_available_tokens() == 50

    def test_free_tier(self):
        limiter = create_rate_limiter("free", auto_refill=False)
        assert limiter.get_available_tokens() == 5
        assert limiter.config.refill_interval_ms == 6000

    def test_overrides(self):
        limiter = create_rate_limiter(
            "free",
            auto_refill=False,
            overrides={"capacity": 7, "unknown": 1},
        )
        assert limiter.config.capacity == 7
        assert limiter.config.tokens_per_refill == 1

    def test_unknown_tier(self):
        with pytest.raises(ValueError):
            create_rate_limiter("enterprise")
