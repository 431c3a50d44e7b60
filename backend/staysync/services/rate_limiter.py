"""Shared upstream rate limiter: minimum spacing plus a sliding per-minute ceiling."""

import asyncio
import logging
import time
from collections import deque
from collections.abc import Awaitable, Callable, Mapping

from staysync.models import RateLimitBudget

logger = logging.getLogger(__name__)

WINDOW_SECONDS = 60.0
LOW_REMAINING_WARNING = 10

# Beds24 response headers -> status keys
RATE_HEADERS = {
    "X-RateLimit-5min-Limit": "five_min_limit",
    "X-RateLimit-5min-Remaining": "five_min_remaining",
    "X-RateLimit-5min-Resets-In": "five_min_resets_in",
    "X-RateLimit-Request-Cost": "request_cost",
}


class RateLimiter:
    """One instance per upstream account; every upstream call awaits ``acquire()``.

    Callers are served one at a time, so concurrent requests for different
    properties queue behind the same budget.
    """

    def __init__(
        self,
        min_delay: float = 2.0,
        max_per_minute: int = 30,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.min_delay = min_delay
        self.max_per_minute = max_per_minute
        self._clock = clock
        self._sleep = sleep
        self._calls: deque[float] = deque()
        self._last_call: float | None = None
        self._not_before = 0.0
        self._lock = asyncio.Lock()
        self._info: dict[str, int] = {}

    async def acquire(self) -> None:
        """Block until both the spacing and the per-minute ceiling allow a call."""
        async with self._lock:
            while True:
                wait = self._required_wait(self._clock())
                if wait <= 0:
                    break
                if wait >= 1:
                    logger.info(f"Rate limit reached, waiting {wait:.1f}s")
                await self._sleep(wait)
            now = self._clock()
            self._last_call = now
            self._calls.append(now)

    def _required_wait(self, now: float) -> float:
        while self._calls and now - self._calls[0] >= WINDOW_SECONDS:
            self._calls.popleft()

        wait = self._not_before - now
        if self._last_call is not None:
            wait = max(wait, self._last_call + self.min_delay - now)
        if len(self._calls) >= self.max_per_minute:
            wait = max(wait, self._calls[0] + WINDOW_SECONDS - now)
        return wait

    def defer(self, seconds: float) -> None:
        """Hold back every caller for ``seconds`` (server-provided reset hint)."""
        if seconds <= 0:
            return
        self._not_before = max(self._not_before, self._clock() + seconds)
        logger.warning(f"Upstream throttled, deferring calls for {seconds:.1f}s")

    def update_from_headers(self, headers: Mapping[str, str]) -> None:
        for header, key in RATE_HEADERS.items():
            raw = headers.get(header)
            if raw is None:
                continue
            try:
                self._info[key] = int(float(raw))
            except ValueError:
                continue

        remaining = self._info.get("five_min_remaining")
        if remaining is not None and remaining < LOW_REMAINING_WARNING:
            logger.warning(f"Beds24 rate limit warning: {remaining} requests remaining")

    def status(self) -> dict[str, int]:
        return dict(self._info)

    def budget(self) -> RateLimitBudget:
        now = self._clock()
        self._required_wait(now)  # evicts stale timestamps
        return RateLimitBudget(
            window_start=self._calls[0] if self._calls else now,
            request_count=len(self._calls),
            max_per_window=self.max_per_minute,
            last_call_at=self._last_call,
            min_delay=self.min_delay,
        )
