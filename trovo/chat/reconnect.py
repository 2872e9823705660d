"""
Exponential backoff between chat reconnection attempts.
"""

import asyncio
import logging

logger = logging.getLogger(__name__)


class ReconnectionManager:
    """
    Tracks consecutive failed connections and how long to wait before the next.

    The delay doubles from ``initial_backoff`` on every attempt until it hits
    ``max_backoff``. There is no attempt limit; the owner decides when to stop.

    Args:
        initial_backoff: Delay before the first retry, in seconds
        max_backoff: Upper bound on the delay, in seconds
    """

    def __init__(self, initial_backoff: float = 1.0, max_backoff: float = 60.0):
        self._initial_backoff = initial_backoff
        self._max_backoff = max_backoff
        self._attempts = 0

    def _delay_for(self, attempt: int) -> float:
        # attempt is 1-based; the exponent is clamped so float math can't overflow
        exponent = min(attempt - 1, 32)
        return min(self._initial_backoff * 2 ** exponent, self._max_backoff)

    def next_delay(self) -> float:
        """Record one more attempt and return the delay that precedes it."""
        self._attempts += 1
        return self._delay_for(self._attempts)

    async def wait_before_reconnect(self) -> None:
        delay = self.next_delay()
        logger.info(f"Reconnection attempt {self._attempts} in {delay:.1f}s")
        await asyncio.sleep(delay)

    def reset(self) -> None:
        """Forget past failures once a connection has been established."""
        if self._attempts:
            logger.info(f"Chat reconnected after {self._attempts} attempt(s)")
        self._attempts = 0

    @property
    def attempts(self) -> int:
        """Get the number of attempts since the last successful connection."""
        return self._attempts

    @property
    def current_backoff(self) -> float:
        """Get the delay the next attempt will wait for."""
        return self._delay_for(self._attempts + 1)
