"""
Sliding-window rate limiter over a shared counter store.
Works across pipeline instances as long as they share the CounterStore.
"""

import logging
import math
import time
from dataclasses import dataclass
from typing import Callable

from chatmod.lib.errors import RateLimitExceeded
from chatmod.lib.metrics import MetricsExporter
from chatmod.lib.record_store import CounterStore

logger = logging.getLogger(__name__)


@dataclass
class RateLimitDecision:
    allowed: bool
    estimated_count: float
    retry_after_seconds: int = 0


class SlidingWindowRateLimiter:
    """
    Two fixed buckets per user approximate a rolling window:
    estimate = current bucket + previous bucket * (unelapsed share of the window).
    Denied attempts are not counted.
    """

    KEY_PREFIX = "ratelimit"

    def __init__(
        self,
        counters: CounterStore,
        max_requests: int = 10,
        window_seconds: int = 60,
        clock: Callable[[], float] = time.time,
    ):
        self.counters = counters
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.clock = clock

    async def check(self, user_id: str) -> RateLimitDecision:
        """Admit and count one send, or deny without counting."""
        now = self.clock()
        bucket = int(now // self.window_seconds)
        elapsed = (now % self.window_seconds) / self.window_seconds

        key = self._key(user_id, bucket)
        # The previous bucket is closed, so only the current one is contended
        previous = await self.counters.get(self._key(user_id, bucket - 1))
        carried = previous * (1 - elapsed)
        capacity = math.floor(self.max_requests - carried)

        # Buckets live for two windows so the next window can still read this one
        count = await self.counters.incr_if_below(key, capacity, ttl_seconds=2 * self.window_seconds)
        if count is None:
            current = await self.counters.get(key)
            retry_after = self._retry_after(current, previous, elapsed)
            return RateLimitDecision(
                allowed=False, estimated_count=current + carried, retry_after_seconds=retry_after
            )
        return RateLimitDecision(allowed=True, estimated_count=count + carried)

    async def enforce(self, user_id: str) -> None:
        """Raise RateLimitExceeded when user_id may not send now."""
        decision = await self.check(user_id)
        if not decision.allowed:
            MetricsExporter.record_rate_limited()
            logger.info(f"Rate limit hit for {user_id}, retry in {decision.retry_after_seconds}s")
            raise RateLimitExceeded(
                "You are sending messages too quickly. Please wait a moment.",
                retry_after_seconds=decision.retry_after_seconds,
            )

    def _retry_after(self, current: int, previous: int, elapsed: float) -> int:
        remaining = (1 - elapsed) * self.window_seconds
        if current + 1 > self.max_requests or previous == 0:
            # Only the next window frees capacity
            return max(1, math.ceil(remaining))
        # Wait until the previous bucket's weight drops enough
        needed_share = (self.max_requests - 1 - current) / previous
        wait = remaining - max(needed_share, 0) * self.window_seconds
        return max(1, math.ceil(wait))

    def _key(self, user_id: str, bucket: int) -> str:
        return f"{self.KEY_PREFIX}:{user_id}:{bucket}"
