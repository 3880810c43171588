"""Sliding-window admission control shared by embedding and generation calls."""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from collections import deque
from typing import Awaitable, Callable, Deque, Dict

from ..config import get_settings

LOGGER = logging.getLogger(__name__)


class RateLimiter:
    """Admit at most ``max_requests`` calls per ``window`` seconds.

    Admission is reserved under a lock, so callers from several pipelines,
    tasks, or threads never overrun the window; the wait itself happens
    outside the lock.
    """

    def __init__(
        self,
        max_requests: int = 60,
        window: float = 60.0,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if max_requests <= 0:
            raise ValueError("max_requests must be positive")
        if window <= 0:
            raise ValueError("window must be positive")
        self.max_requests = max_requests
        self.window = window
        self._clock = clock
        self._sleep = sleep
        self._requests: Deque[float] = deque()
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    def reserve(self) -> float:
        """Record an admission and return how long the caller must wait first."""

        with self._lock:
            now = self._clock()
            self._prune(now)
            if len(self._requests) < self.max_requests:
                admitted_at = now
            else:
                # the slot frees once the entry max_requests back leaves the window
                admitted_at = self._requests[-self.max_requests] + self.window
            self._requests.append(admitted_at)
            return max(0.0, admitted_at - now)

    async def acquire(self) -> None:
        wait = self.reserve()
        if wait > 0:
            LOGGER.info("Rate limit reached; waiting %.2fs for admission", wait)
            await self._sleep(wait)

    def in_window(self) -> int:
        """Number of admissions currently counted against the window."""

        with self._lock:
            self._prune(self._clock())
            return len(self._requests)

    # ------------------------------------------------------------------
    def _prune(self, now: float) -> None:
        while self._requests and now - self._requests[0] >= self.window:
            self._requests.popleft()


_LIMITERS: Dict[str, RateLimiter] = {}
_LIMITERS_LOCK = threading.Lock()


def get_rate_limiter(provider: str) -> RateLimiter:
    """Return the process-wide limiter for ``provider``."""

    key = provider.lower()
    with _LIMITERS_LOCK:
        limiter = _LIMITERS.get(key)
        if limiter is None:
            settings = get_settings()
            limiter = RateLimiter(settings.provider_rate_limit, settings.provider_rate_window)
            _LIMITERS[key] = limiter
        return limiter


def reset_rate_limiters() -> None:
    with _LIMITERS_LOCK:
        _LIMITERS.clear()


__all__ = ["RateLimiter", "get_rate_limiter", "reset_rate_limiters"]
