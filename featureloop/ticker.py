"""
Tick sources for the polling loops.

The router, the supervisor and the dashboard all poll on a fixed interval.
They wait on a Ticker instead of calling time.sleep directly so tests can
advance virtual time.
"""

import threading
from abc import ABC, abstractmethod
from typing import List, Optional


class Ticker(ABC):
    """Something a polling loop can wait on between ticks."""

    @abstractmethod
    def wait(self, interval: float) -> bool:
        """
        Block until the next tick.

        Returns:
            True to keep polling, False once the ticker has been stopped.
        """

    @abstractmethod
    def stop(self) -> None:
        """Stop the ticker; pending and future waits return False."""

    @property
    @abstractmethod
    def stopped(self) -> bool:
        ...


class RealTicker(Ticker):
    """Wall-clock ticker. stop() wakes a waiting loop immediately."""

    def __init__(self):
        self._stop = threading.Event()

    def wait(self, interval: float) -> bool:
        return not self._stop.wait(interval)

    def stop(self) -> None:
        self._stop.set()

    @property
    def stopped(self) -> bool:
        return self._stop.is_set()


class VirtualTicker(Ticker):
    """
    Ticker that never sleeps.

    Each wait advances `now` by the requested interval. With `max_ticks`
    set, the ticker stops itself after that many waits.
    """

    def __init__(self, max_ticks: Optional[int] = None):
        self.max_ticks = max_ticks
        self.now = 0.0
        self.waits: List[float] = []
        self._stopped = False

    def wait(self, interval: float) -> bool:
        if self._stopped:
            return False
        self.waits.append(interval)
        self.now += interval
        if self.max_ticks is not None and len(self.waits) >= self.max_ticks:
            self._stopped = True
            return False
        return True

    def stop(self) -> None:
        self._stopped = True

    @property
    def stopped(self) -> bool:
        return self._stopped
