"""Token-bucket limiter shared by every model call to one provider."""

import asyncio
import logging
import time
from typing import Dict

logger = logging.getLogger(__name__)


class RateLimiter:
    """
    Async token bucket.

    ``acquire()`` waits until a request token is available instead of
    rejecting, since model calls are background work.
    """

    def __init__(self, requests_per_minute: int = 60, burst_size: int = None):
        if requests_per_minute <= 0:
            raise ValueError("requests_per_minute must be positive")
        self.requests_per_minute = requests_per_minute
        self.burst_size = burst_size or requests_per_minute
        self.refill_rate = requests_per_minute / 60.0  # tokens per second

        self._tokens = float(self.burst_size)
        self._last_refill = time.monotonic()
        self._lock = asyncio.Lock()

    def _refill(self) -> None:
        now = time.monotonic()
        elapsed = now - self._last_refill
        self._tokens = min(self.burst_size, self._tokens + elapsed * self.refill_rate)
        self._last_refill = now

    async def acquire(self, cost: float = 1.0) -> None:
        async with self._lock:
            while True:
                self._refill()
                if self._tokens >= cost:
                    self._tokens -= cost
                    return
                wait = (cost - self._tokens) / self.refill_rate
                logger.debug(f"Rate limit reached, waiting {wait:.2f}s")
                await asyncio.sleep(wait)


_limiters: Dict[str, RateLimiter] = {}


def get_rate_limiter(key: str, requests_per_minute: int) -> RateLimiter:
    """One limiter per provider, created on first use."""
    limiter = _limiters.get(key)
    if limiter is None or limiter.requests_per_minute != requests_per_minute:
        limiter = RateLimiter(requests_per_minute=requests_per_minute)
        _limiters[key] = limiter
    return limiter
