"""Per-source request pacing."""

import asyncio
import logging
import time
from collections import deque

from biblink.core.settings import RateLimitConfig

logger = logging.getLogger(__name__)


class RateLimiter:
    """Sliding-window limiter: at most N requests in any interval of T seconds.

    Callers are served in arrival order. The limiter only throttles; it never
    retries and knows nothing about HTTP 429. Each source owns its own
    instance.
    """

    def __init__(self, requests_per_interval: int, interval_seconds: float, name: str = ""):
        if requests_per_interval < 1:
            raise ValueError("requests_per_interval must be >= 1")
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be > 0")
        self.requests_per_interval = requests_per_interval
        self.interval_seconds = interval_seconds
        self.name = name
        self._sent: deque[float] = deque()
        self._lock: asyncio.Lock | None = None
        self._loop: asyncio.AbstractEventLoop | None = None

    @classmethod
    def from_config(cls, config: RateLimitConfig, name: str = "") -> "RateLimiter":
        return cls(config.requests_per_interval, config.interval_seconds, name=name)

    async def wait_if_needed(self) -> None:
        """Suspend until one more request fits in the window, then claim it."""
        # asyncio.Lock wakes waiters in FIFO order
        async with self._loop_lock():
            while True:
                now = time.monotonic()
                while self._sent and now - self._sent[0] >= self.interval_seconds:
                    self._sent.popleft()
                if len(self._sent) < self.requests_per_interval:
                    self._sent.append(now)
                    return
                delay = self.interval_seconds - (now - self._sent[0])
                logger.debug("Rate limit reached for %s, waiting %.2fs", self.name or "source", delay)
                await asyncio.sleep(delay)

    def _loop_lock(self) -> asyncio.Lock:
        """The lock for the running loop; a limiter may outlive one asyncio.run."""
        loop = asyncio.get_running_loop()
        if self._lock is None or self._loop is not loop:
            self._lock = asyncio.Lock()
            self._loop = loop
        return self._lock

    @property
    def available_slots(self) -> int:
        """Requests that could be sent right now without waiting."""
        now = time.monotonic()
        recent = sum(1 for t in self._sent if now - t < self.interval_seconds)
        return max(0, self.requests_per_interval - recent)
