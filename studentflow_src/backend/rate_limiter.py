import math
import time
import asyncio
import logging
from typing import Callable, Dict, Optional, Tuple

logger = logging.getLogger(__name__)


class RateLimiter:
    """Fixed-window request counter per key (user + route).

    ``hit`` is synchronous and needs no lock on a single event loop. Expired
    windows are dropped by a sweep task started with ``start()``.
    """

    def __init__(self, max_requests: int = 10, window_seconds: float = 60.0,
                 sweep_interval: float = 60.0, clock: Callable[[], float] = time.monotonic):
        if max_requests <= 0 or window_seconds <= 0:
            raise ValueError("max_requests and window_seconds must be positive")
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.sweep_interval = sweep_interval
        self.clock = clock
        self._windows: Dict[str, Tuple[int, float]] = {}  # key -> (count, reset_at)
        self._sweeper: Optional[asyncio.Task] = None

    def hit(self, key: str) -> Optional[int]:
        """Count a request. Returns None if admitted, else seconds until the window resets."""
        now = self.clock()
        record = self._windows.get(key)
        if record is None or now > record[1]:
            self._windows[key] = (1, now + self.window_seconds)
            return None
        count, reset_at = record
        if count >= self.max_requests:
            return max(1, math.ceil(reset_at - now))
        self._windows[key] = (count + 1, reset_at)
        return None

    def sweep(self) -> int:
        now = self.clock()
        expired = [key for key, (_, reset_at) in self._windows.items() if now > reset_at]
        for key in expired:
            del self._windows[key]
        return len(expired)

    def start(self):
        if self._sweeper is None or self._sweeper.done():
            self._sweeper = asyncio.create_task(self._sweep_forever())

    async def stop(self):
        if self._sweeper is None:
            return
        self._sweeper.cancel()
        try:
            await self._sweeper
        except asyncio.CancelledError:
            pass
        self._sweeper = None

    async def _sweep_forever(self):
        while True:
            await asyncio.sleep(self.sweep_interval)
            removed = self.sweep()
            if removed:
                logger.debug("Rate limiter dropped %d expired windows", removed)
