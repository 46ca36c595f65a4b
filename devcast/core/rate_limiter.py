"""Rate limiting utilities."""
import asyncio
import time
from threading import Lock
from typing import Awaitable, Callable, Optional


class Throttle:
    """
    Minimum spacing between outbound requests.

    Callers share a last-request watermark. The throttle is advisory: it
    smooths bursts but gives no guarantee about upstream quotas.
    """

    def __init__(
        self,
        min_interval: float = 1.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ):
        self.min_interval = min_interval
        self._clock = clock
        self._sleep = sleep or asyncio.sleep
        self._last_request: Optional[float] = None
        self.lock = Lock()

    def _reserve(self) -> float:
        """Claim the next slot and return how long to wait for it."""
        with self.lock:
            now = self._clock()
            if self._last_request is None:
                self._last_request = now
                return 0.0
            next_slot = max(now, self._last_request + self.min_interval)
            self._last_request = next_slot
            return next_slot - now

    def get_wait_time(self) -> float:
        """Estimated seconds until the next request may go out."""
        with self.lock:
            if self._last_request is None:
                return 0.0
            return max(0.0, self._last_request + self.min_interval - self._clock())

    async def async_wait(self) -> None:
        """Async wait until this caller's slot comes up."""
        delay = self._reserve()
        if delay > 0:
            await self._sleep(delay)
