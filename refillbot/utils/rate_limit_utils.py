"""
Rate Limiting Utilities

A process-wide limiter that spaces out calls to the quote endpoint.
"""

import asyncio
import time
from typing import Callable, Optional

from loguru import logger

from refillbot.config import QUOTE_REQUESTS_PER_SECOND
from refillbot.errors import RateLimitedError


class RateLimiter:
    """
    Hands out evenly spaced call slots.

    Each caller reserves the next free slot and sleeps until it arrives, so
    waiters are released in arrival order without holding a lock across the
    sleep. Works from any event loop.
    """

    def __init__(self, rate: float, clock: Callable[[], float] = time.monotonic):
        """
        Initialize the limiter.

        Args:
            rate: Allowed calls per second; 0 or less disables limiting
            clock: Monotonic time source
        """
        self.interval = 1.0 / rate if rate > 0 else 0.0
        self._clock = clock
        self._next_slot = 0.0

    async def wait(self, timeout: Optional[float] = None) -> None:
        """
        Wait for the next slot.

        Args:
            timeout: Give up if the slot is further away than this many seconds

        Raises:
            RateLimitedError: If the slot is beyond the timeout. No slot is consumed.
        """
        if self.interval <= 0:
            return

        now = self._clock()
        slot = max(now, self._next_slot)
        delay = slot - now
        if timeout is not None and delay > timeout:
            raise RateLimitedError(f"rate limiter wait of {delay:.2f}s exceeds timeout {timeout:.2f}s")

        self._next_slot = slot + self.interval
        if delay > 0:
            logger.debug(f"Rate limited, waiting {delay:.2f}s")
            await asyncio.sleep(delay)


# Shared by every quote client in the process
quote_rate_limiter = RateLimiter(QUOTE_REQUESTS_PER_SECOND)
