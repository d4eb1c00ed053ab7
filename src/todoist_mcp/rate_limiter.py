import asyncio
import datetime
import logging
import math
import random
import time
from typing import Any, Awaitable, Callable, Dict, Optional

from .errors import RateLimitError

# Todoist allows 1000 partial and 100 full sync requests per 15 minutes.
REST_CAPACITY = 1000
SYNC_CAPACITY = 100
DEFAULT_WINDOW_SECONDS = 15 * 60

BACKOFF_BASE_SECONDS = 1.0
BACKOFF_MAX_SECONDS = 30.0


class TokenBucketRateLimiter:
    """
    Fixed-window token bucket for one class of Todoist endpoints.

    The bucket starts full. Every `acquire` spends one token, and once the
    window has elapsed since the last refill the bucket is reset to full
    capacity (the upstream API counts requests per window rather than leaking
    them continuously).

    Args:
        name: Label used in log lines ("rest" or "sync").
        capacity: Maximum tokens per window.
        window_seconds: Length of the refill window.
        clock: Monotonic clock returning seconds.
        sleep: Coroutine used to suspend during backoff.
    """

    def __init__(
        self,
        name: str,
        capacity: int,
        window_seconds: float = DEFAULT_WINDOW_SECONDS,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        self.name = name
        self.capacity = capacity
        self.window_seconds = window_seconds
        self._clock = clock
        self._sleep = sleep
        self._tokens = capacity
        self._last_refill = clock()
        self._backoff_until: Optional[float] = None
        self._lock = asyncio.Lock()

    @property
    def tokens(self) -> int:
        return self._tokens

    async def acquire(self, endpoint: str = "") -> None:
        await self._wait_for_backoff()

        async with self._lock:
            # No await between the check and the decrement.
            self._refill()
            if self._tokens <= 0:
                remaining = self.window_seconds - (self._clock() - self._last_refill)
                retry_after = max(1, math.ceil(remaining))
                logging.warning(f"Rate limiter '{self.name}' exhausted on {endpoint or 'request'}; retry in {retry_after}s")
                raise RateLimitError(
                    "Rate limit exceeded",
                    retry_after,
                    {"limiter": self.name, "endpoint": endpoint},
                )
            self._tokens -= 1

    async def backoff(self) -> None:
        """Suspend the caller and hold back other callers for a jittered delay."""
        delay = self._backoff_delay()
        until = self._clock() + delay
        if self._backoff_until is None or until > self._backoff_until:
            self._backoff_until = until
        logging.info(f"Rate limiter '{self.name}' backing off for {delay:.2f}s")
        await self._sleep(delay)
        if self._backoff_until == until:
            self._backoff_until = None

    def get_status(self) -> Dict[str, Any]:
        self._refill()
        now = self._clock()
        in_backoff = self._backoff_until is not None and self._backoff_until > now
        seconds_to_reset = max(0.0, self.window_seconds - (now - self._last_refill))
        reset_time = datetime.datetime.now(datetime.timezone.utc) + datetime.timedelta(seconds=seconds_to_reset)
        return {
            "remaining": self._tokens,
            "reset_time": reset_time,
            "is_limited": self._tokens <= 0 or in_backoff,
        }

    def _refill(self) -> None:
        now = self._clock()
        if now - self._last_refill >= self.window_seconds:
            self._tokens = self.capacity
            self._last_refill = now

    def _backoff_delay(self) -> float:
        attempt = random.randint(0, 5)
        ceiling = min(BACKOFF_BASE_SECONDS * (2 ** attempt), BACKOFF_MAX_SECONDS)
        # Full jitter in the upper half keeps callers out of lockstep.
        return random.uniform(ceiling / 2, ceiling)

    async def _wait_for_backoff(self) -> None:
        until = self._backoff_until
        if until is None:
            return
        wait = until - self._clock()
        if wait > 0:
            await self._sleep(wait)
        if self._backoff_until == until:
            self._backoff_until = None
