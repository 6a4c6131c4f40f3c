"""
Token Bucket Rate Limiter

Bounds how often a servo stepper advances and how often the dispatcher
samples the fleet. Tokens refill at one per ``interval`` seconds up to
``burst``; taking a token that is not there yet puts the bucket in debt
and the caller sleeps until the debt is repaid.
"""

import threading
import time
from typing import Callable, Optional


class RateLimiter:
    """Thread-safe token bucket"""

    def __init__(self, interval: float, burst: int = 1,
                 clock: Callable[[], float] = time.monotonic):
        if interval < 0:
            raise ValueError(f"interval must be >= 0, got {interval}")
        if burst < 1:
            raise ValueError(f"burst must be >= 1, got {burst}")

        self._interval = float(interval)
        self._burst = burst
        self._clock = clock
        self._lock = threading.Lock()
        self._tokens = float(burst)
        self._last = clock()

    @property
    def interval(self) -> float:
        return self._interval

    @property
    def burst(self) -> int:
        return self._burst

    def set_interval(self, interval: float):
        """Change the refill period; tokens earned so far are kept"""
        if interval < 0:
            raise ValueError(f"interval must be >= 0, got {interval}")
        with self._lock:
            self._advance(self._clock())
            self._interval = float(interval)

    def _advance(self, now: float):
        # caller holds self._lock
        elapsed = max(0.0, now - self._last)
        self._last = now
        if self._interval == 0:
            self._tokens = float(self._burst)
        else:
            self._tokens = min(float(self._burst), self._tokens + elapsed / self._interval)

    def delay(self) -> float:
        """Seconds until a token is available, without taking it"""
        with self._lock:
            self._advance(self._clock())
            if self._tokens >= 1:
                return 0.0
            return (1 - self._tokens) * self._interval

    def allow(self) -> bool:
        """Take a token if one is available now"""
        with self._lock:
            self._advance(self._clock())
            if self._tokens >= 1:
                self._tokens -= 1
                return True
            return False

    def reserve(self) -> float:
        """Take a token unconditionally and return how long to wait for it"""
        with self._lock:
            self._advance(self._clock())
            self._tokens -= 1
            if self._tokens >= 0:
                return 0.0
            return -self._tokens * self._interval

    def wait(self, cancel: Optional[threading.Event] = None) -> bool:
        """
        Block until a token is available

        Args:
            cancel: Optional event that interrupts the wait when set

        Returns:
            False if the wait was cancelled, True otherwise
        """
        delay = self.reserve()
        if cancel is not None:
            if delay > 0:
                return not cancel.wait(delay)
            return not cancel.is_set()
        if delay > 0:
            time.sleep(delay)
        return True
