"""Tick sources that drive the turn timer.

The timer knows nothing about wall clocks. A tick source calls a handler
once per second; tests use :class:`ManualTicker` to inject ticks
synthetically.
"""

import logging
import time
from typing import Any, Callable, Optional

_LOGGER = logging.getLogger(__name__)

TickHandler = Callable[[], Any]


class ManualTicker:
    """Tick source fired explicitly by the caller."""

    def __init__(self, handler: TickHandler) -> None:
        self.handler = handler
        self.count = 0

    def fire(self, ticks: int = 1) -> list[Any]:
        """Deliver ``ticks`` ticks and collect the handler results."""
        results = []
        for _ in range(ticks):
            self.count += 1
            results.append(self.handler())
        return results


class SleepTicker:
    """Blocking one-second loop for a single-threaded host.

    Args:
        handler: Called once per tick.
        interval: Seconds between ticks.
        sleep: Sleep function, injectable for tests.
    """

    def __init__(
        self,
        handler: TickHandler,
        interval: float = 1.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.handler = handler
        self.interval = interval
        self.sleep = sleep
        self.count = 0
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    def run(self, max_ticks: Optional[int] = None) -> int:
        """Tick until :meth:`stop` is called or ``max_ticks`` is reached.

        Returns:
            Number of ticks delivered by this call.
        """
        self._running = True
        delivered = 0
        _LOGGER.info(f"Tick loop started (interval={self.interval}s)")
        try:
            while self._running and (max_ticks is None or delivered < max_ticks):
                self.sleep(self.interval)
                if not self._running:
                    break
                self.count += 1
                delivered += 1
                self.handler()
        finally:
            self._running = False
            _LOGGER.info(f"Tick loop stopped after {delivered} ticks")
        return delivered

    def stop(self) -> None:
        self._running = False
