#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
Token Bucket Rate Limiter

Bounds the rate of calls into the external work unit. Each call consumes one
token; a background task adds tokens at a fixed interval up to capacity.
Callers that find the bucket empty queue up and are handed tokens in the
order they started waiting.
"""

import asyncio
import math
import time
from collections import deque
from dataclasses import dataclass
from typing import Optional, Dict, Any, Deque

from config.constants import (
    FREE_TIER_CAPACITY,
    FREE_TIER_REFILL_MS,
    FREE_TIER_TOKENS_PER_REFILL,
    PAID_TIER_CAPACITY,
    PAID_TIER_REFILL_MS,
    PAID_TIER_TOKENS_PER_REFILL,
)
from config.logging_config import get_logger

from .exceptions import RateLimiterStoppedError

logger = get_logger(__name__)


@dataclass
class RateLimitConfig:
    """Token bucket parameters for one tier"""
    capacity: int
    refill_interval_ms: int
    tokens_per_refill: int = 1
    tier: str = "custom"

    def __post_init__(self):
        if self.capacity < 1:
            raise ValueError("capacity must be >= 1")
        if self.refill_interval_ms <= 0:
            raise ValueError("refill_interval_ms must be > 0")
        if self.tokens_per_refill < 1:
            raise ValueError("tokens_per_refill must be >= 1")

    @property
    def requests_per_minute(self) -> float:
        """Sustained rate once the burst is spent"""
        return self.tokens_per_refill * 60_000 / self.refill_interval_ms


RATE_LIMIT_TIERS: Dict[str, RateLimitConfig] = {
    "free": RateLimitConfig(
        capacity=FREE_TIER_CAPACITY,
        refill_interval_ms=FREE_TIER_REFILL_MS,
        tokens_per_refill=FREE_TIER_TOKENS_PER_REFILL,
        tier="free",
    ),
    "paid": RateLimitConfig(
        capacity=PAID_TIER_CAPACITY,
        refill_interval_ms=PAID_TIER_REFILL_MS,
        tokens_per_refill=PAID_TIER_TOKENS_PER_REFILL,
        tier="paid",
    ),
}


class TokenBucketRateLimiter:
    """
    Token bucket shared by every in-flight item of every job in a tier.

    Usage:
        limiter = create_rate_limiter("paid")
        await limiter.wait_for_token()
        # ... call the external service ...
        limiter.stop()
    """

    def __init__(self, config: RateLimitConfig, auto_refill: bool = True):
        """
        Initialize rate limiter.

        Args:
            config: Bucket parameters
            auto_refill: Run the background refill task. When False, tokens
                are only added by calling refill().
        """
        self.config = config
        self.auto_refill = auto_refill

        self._tokens = config.capacity
        self._waiters: Deque[asyncio.Future] = deque()
        self._refill_task: Optional[asyncio.Task] = None
        self._last_refill = time.monotonic()
        self._stopped = False

        if auto_refill:
            # Started lazily on first wait when constructed outside a running loop
            try:
                self.start()
            except RuntimeError:
                pass

        logger.debug(
            f"RateLimiter created: tier={config.tier}, capacity={config.capacity}, "
            f"refill={config.tokens_per_refill}/{config.refill_interval_ms}ms"
        )

    @property
    def stopped(self) -> bool:
        return self._stopped

    def start(self):
        """Start the background refill task (requires a running event loop)."""
        if self._stopped:
            raise RateLimiterStoppedError("Rate limiter has been stopped")
        if self._refill_task is None or self._refill_task.done():
            loop = asyncio.get_running_loop()
            self._last_refill = time.monotonic()
            self._refill_task = loop.create_task(self._refill_loop())

    async def _refill_loop(self):
        interval = self.config.refill_interval_ms / 1000
        while True:
            await asyncio.sleep(interval)
            self.refill()

    def refill(self):
        """Add one interval's worth of tokens and hand them to queued waiters."""
        before = self._tokens
        self._tokens = min(self._tokens + self.config.tokens_per_refill, self.config.capacity)
        self._last_refill = time.monotonic()

        if self._tokens > before:
            logger.debug(f"Tokens refilled: {self._tokens}/{self.config.capacity}")

        self._wake_waiters()

    def _wake_waiters(self):
        while self._tokens > 0 and self._waiters:
            waiter = self._waiters.popleft()
            if waiter.done():
                continue
            self._tokens -= 1
            waiter.set_result(None)

    async def wait_for_token(self):
        """
        Suspend until a token is available, then consume it.

        Raises:
            RateLimiterStoppedError: If the limiter is stopped before or while waiting
        """
        if self._stopped:
            raise RateLimiterStoppedError("Rate limiter has been stopped")

        if self.auto_refill and (self._refill_task is None or self._refill_task.done()):
            self.start()

        # Fast path only when nobody is queued ahead of us
        if self._tokens > 0 and not self._waiters:
            self._tokens -= 1
            return

        waiter = asyncio.get_running_loop().create_future()
        self._waiters.append(waiter)
        logger.debug(f"Waiting for token (queue={len(self._waiters)})")

        try:
            await waiter
        except asyncio.CancelledError:
            if waiter.done() and not waiter.cancelled() and waiter.exception() is None:
                # Token was handed over just before the cancellation landed
                self._tokens += 1
                self._wake_waiters()
            else:
                try:
                    self._waiters.remove(waiter)
                except ValueError:
                    pass
            raise

    def try_acquire(self) -> bool:
        """Consume a token without waiting. Returns False if none is free."""
        if self._stopped:
            return False
        if self._tokens > 0 and not self._waiters:
            self._tokens -= 1
            return True

        logger.debug(f"No tokens available (queue={len(self._waiters)})")
        return False

    def get_available_tokens(self) -> int:
        """Current token count (does not consume)."""
        return self._tokens

    def get_queue_size(self) -> int:
        """Number of callers waiting for a token."""
        return sum(1 for w in self._waiters if not w.done())

    def get_estimated_wait_time(self) -> int:
        """
        Estimate how long a new caller would wait for a token.

        Returns:
            Milliseconds; 0 when a token is free right now
        """
        if self._tokens > 0 and not self._waiters:
            return 0

        interval_ms = self.config.refill_interval_ms
        position = self.get_queue_size() + 1
        ticks = math.ceil(max(position - self._tokens, 1) / self.config.tokens_per_refill)

        since_refill_ms = (time.monotonic() - self._last_refill) * 1000
        until_next_ms = max(interval_ms - since_refill_ms, 0)
        return math.ceil(until_next_ms + (ticks - 1) * interval_ms)

    def reset(self):
        """Restore a full bucket and serve any queued waiters."""
        self._tokens = self.config.capacity
        self._last_refill = time.monotonic()
        self._wake_waiters()

    def stop(self):
        """Stop refilling and release every waiter with RateLimiterStoppedError."""
        if self._stopped:
            return
        self._stopped = True

        if self._refill_task is not None:
            self._refill_task.cancel()
            self._refill_task = None

        released = 0
        while self._waiters:
            waiter = self._waiters.popleft()
            if not waiter.done():
                waiter.set_exception(RateLimiterStoppedError("Rate limiter stopped while waiting"))
                released += 1

        logger.info(f"Rate limiter stopped: tier={self.config.tier}, released {released} waiter(s)")

    def get_state(self) -> Dict[str, Any]:
        """Get current state as dictionary."""
        return {
            "tier": self.config.tier,
            "capacity": self.config.capacity,
            "available_tokens": self._tokens,
            "refill_interval_ms": self.config.refill_interval_ms,
            "tokens_per_refill": self.config.tokens_per_refill,
            "queue_size": self.get_queue_size(),
            "stopped": self._stopped,
        }


def create_rate_limiter(
    tier: str = "paid",
    auto_refill: bool = True,
    overrides: Optional[Dict[str, Any]] = None,
) -> TokenBucketRateLimiter:
    """
    Create a rate limiter for an API tier.

    Args:
        tier: Preset name ("free" or "paid")
        auto_refill: Run the background refill task
        overrides: capacity / refill_interval_ms / tokens_per_refill to replace
            the preset values (e.g. from Settings.get_tier_config())

    Returns:
        TokenBucketRateLimiter
    """
    if tier not in RATE_LIMIT_TIERS:
        raise ValueError(f"Unknown rate limit tier: {tier}")

    preset = RATE_LIMIT_TIERS[tier]
    params = {
        "capacity": preset.capacity,
        "refill_interval_ms": preset.refill_interval_ms,
        "tokens_per_refill": preset.tokens_per_refill,
    }
    if overrides:
        params.update({k: v for k, v in overrides.items() if k in params})

    return TokenBucketRateLimiter(RateLimitConfig(tier=tier, **params), auto_refill=auto_refill)
