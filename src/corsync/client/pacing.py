"""
Outbound request pacing.

The client acquires a token from a pacer before every platform request, so
upload loops never sleep on their own. TokenBucket refills continuously at
a fixed rate up to a burst capacity; NoPacing never waits and is used by
tests and the simulated transport.
"""

from __future__ import annotations

import logging
import threading
import time
from abc import ABC, abstractmethod
from collections.abc import Callable

logger = logging.getLogger(__name__)


class Pacer(ABC):
    """Interface for request pacing."""

    @abstractmethod
    def acquire(self) -> None:
        """Block until a request may be sent."""


class NoPacing(Pacer):
    """Pacer that never waits."""

    def acquire(self) -> None:
        return None


class TokenBucket(Pacer):
    """
    Token bucket rate limiter.

    Attributes:
        rate: Tokens added per second.
        capacity: Maximum tokens held (burst size).

    Example:
        pacer = TokenBucket(rate=10.0, capacity=1)
        pacer.acquire()  # returns immediately
        pacer.acquire()  # waits about 100ms
    """

    def __init__(
        self,
        rate: float,
        capacity: int = 1,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if rate <= 0:
            raise ValueError("rate must be positive")
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self.rate = rate
        self.capacity = capacity
        self._clock = clock
        self._sleep = sleep
        self._tokens = float(capacity)
        self._updated = clock()
        self._lock = threading.Lock()

    def _refill(self) -> None:
        now = self._clock()
        elapsed = max(0.0, now - self._updated)
        self._tokens = min(float(self.capacity), self._tokens + elapsed * self.rate)
        self._updated = now

    def acquire(self) -> None:
        with self._lock:
            self._refill()
            if self._tokens < 1.0:
                wait = (1.0 - self._tokens) / self.rate
                logger.debug(f"Pacing: sleeping {wait:.3f}s")
                self._sleep(wait)
                self._refill()
                # Clocks that do not advance during sleep (tests) still get a token
                self._tokens = max(self._tokens, 1.0)
            self._tokens -= 1.0
