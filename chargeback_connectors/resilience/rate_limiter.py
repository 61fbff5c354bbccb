"""
In-process token bucket rate limiter

One bucket per adapter instance. Tokens refill continuously from the time
elapsed since the last check, capped at ``max_tokens``.
"""

import asyncio
import time
from dataclasses import dataclass
from typing import Callable, Optional

from pydantic import BaseModel

from ..errors import RateLimiterTimeoutError
from ..utils.logging import get_safe_logger

logger = get_safe_logger("chargeback_connectors.rate_limiter")


@dataclass
class RateLimitConfig:
    """Rate limiting configuration"""
    max_tokens: int = 60
    refill_rate: float = 60.0  # tokens per interval
    interval_seconds: float = 60.0
    max_wait: Optional[float] = 30.0  # None waits indefinitely, 0 fails fast
    name: Optional[str] = None

    @property
    def tokens_per_second(self) -> float:
        return self.refill_rate / self.interval_seconds


class RateLimiterStats(BaseModel):
    """Rate limiter statistics"""
    name: str
    available_tokens: float
    max_tokens: int
    refill_rate: float
    interval_seconds: float
    total_acquired: int
    total_delayed: int
    total_rejected: int


class TokenBucketRateLimiter:
    """
    Token bucket with FIFO queuing

    Waiters hold the bucket lock while sleeping for their deficit, so they are
    admitted in arrival order and decrement/refill never interleave.
    """

    def __init__(
        self,
        config: Optional[RateLimitConfig] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], "asyncio.Future"] = asyncio.sleep,
    ):
        self.config = config or RateLimitConfig()
        self.name = self.config.name or f"bucket_{id(self)}"
        self._clock = clock
        self._sleep = sleep
        self._lock = asyncio.Lock()
        self._tokens = float(self.config.max_tokens)
        self._last_refill = clock()

        self._total_acquired = 0
        self._total_delayed = 0
        self._total_rejected = 0

    def _refill(self):
        now = self._clock()
        elapsed = max(0.0, now - self._last_refill)
        if elapsed:
            self._tokens = min(
                float(self.config.max_tokens),
                self._tokens + elapsed * self.config.tokens_per_second,
            )
        self._last_refill = now

    @property
    def available_tokens(self) -> float:
        self._refill()
        return self._tokens

    def try_acquire(self, tokens: int = 1) -> bool:
        """Take tokens without waiting. Returns False when the bucket is short."""
        if self._lock.locked():
            return False
        self._refill()
        if self._tokens >= tokens:
            self._tokens -= tokens
            self._total_acquired += 1
            return True
        return False

    async def acquire(self, tokens: int = 1) -> float:
        """
        Wait until ``tokens`` are available and take them.

        Returns the seconds spent waiting. Raises RateLimiterTimeoutError when
        the wait would exceed ``max_wait``.
        """
        if tokens > self.config.max_tokens:
            raise ValueError(f"Cannot acquire {tokens} tokens from a bucket of {self.config.max_tokens}")

        max_wait = self.config.max_wait
        started = self._clock()

        if max_wait is None:
            await self._lock.acquire()
        elif max_wait == 0:
            if self._lock.locked():
                self._reject(started)
            await self._lock.acquire()
        else:
            try:
                await asyncio.wait_for(self._lock.acquire(), timeout=max_wait)
            except asyncio.TimeoutError:
                self._reject(started)

        try:
            self._refill()
            if self._tokens < tokens:
                deficit = tokens - self._tokens
                delay = deficit / self.config.tokens_per_second
                waited = self._clock() - started
                if max_wait is not None and waited + delay > max_wait:
                    self._reject(started)

                self._total_delayed += 1
                logger.debug("rate_limiter_delayed", name=self.name, delay=round(delay, 3))
                await self._sleep(delay)
                self._refill()

            self._tokens = max(0.0, self._tokens - tokens)
            self._total_acquired += 1
            return self._clock() - started
        finally:
            self._lock.release()

    def _reject(self, started: float):
        self._total_rejected += 1
        waited = self._clock() - started
        logger.warning("rate_limiter_rejected", name=self.name, waited=round(waited, 3))
        raise RateLimiterTimeoutError(
            f"Rate limiter '{self.name}' could not admit request within {self.config.max_wait}s",
            details={"limiter": self.name, "waited_seconds": round(waited, 3)},
        )

    def get_stats(self) -> RateLimiterStats:
        return RateLimiterStats(
            name=self.name,
            available_tokens=round(self.available_tokens, 3),
            max_tokens=self.config.max_tokens,
            refill_rate=self.config.refill_rate,
            interval_seconds=self.config.interval_seconds,
            total_acquired=self._total_acquired,
            total_delayed=self._total_delayed,
            total_rejected=self._total_rejected,
        )
