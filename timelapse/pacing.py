"""
Request pacing for the upstream archive mirror.

Two independent throttles:
- a hard ceiling on requests per rolling window
- a fixed courtesy delay after every rendered point
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from typing import Awaitable, Callable


logger = logging.getLogger(__name__)


class RequestPacer:
    """Rolling-window request ceiling plus a fixed inter-request delay."""

    def __init__(
        self,
        max_requests: int = 15,
        window_seconds: float = 60.0,
        inter_request_delay: float = 1.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.inter_request_delay = inter_request_delay
        self._clock = clock
        self._sleep = sleep
        self._sent: deque[float] = deque()

    def _expire(self, now: float) -> None:
        while self._sent and now - self._sent[0] >= self.window_seconds:
            self._sent.popleft()

    async def acquire(self) -> None:
        """Block until a request may be issued, then count it."""
        now = self._clock()
        self._expire(now)
        if len(self._sent) >= self.max_requests:
            wait = self._sent[0] + self.window_seconds - now
            if wait > 0:
                logger.info("Rate limit reached (%d/%.0fs); waiting %.1fs",
                            self.max_requests, self.window_seconds, wait)
                await self._sleep(wait)
            now = self._clock()
            self._expire(now)
        self._sent.append(now)

    async def courtesy_delay(self) -> None:
        if self.inter_request_delay > 0:
            await self._sleep(self.inter_request_delay)

    @property
    def in_window(self) -> int:
        """Requests counted in the current window."""
        self._expire(self._clock())
        return len(self._sent)
