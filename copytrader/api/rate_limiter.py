"""Async token-bucket limiter shared by the API clients."""

from __future__ import annotations

import asyncio
import time

from copytrader.config import API_RATE_BURST, API_RATE_PER_SECOND


class TokenBucket:
    """Refills ``rate`` tokens per second up to ``capacity``."""

    def __init__(
        self,
        rate: float = API_RATE_PER_SECOND,
        capacity: float = API_RATE_BURST,
    ) -> None:
        self.rate = rate
        self.capacity = capacity
        self._tokens = capacity
        self._updated = time.monotonic()
        self._lock = asyncio.Lock()

    def _refill(self) -> None:
        now = time.monotonic()
        self._tokens = min(self.capacity, self._tokens + (now - self._updated) * self.rate)
        self._updated = now

    async def acquire(self) -> None:
        """Wait until a token is available, then take it."""
        async with self._lock:
            while True:
                self._refill()
                if self._tokens >= 1:
                    self._tokens -= 1
                    return
                await asyncio.sleep((1 - self._tokens) / self.rate)
