"""
Shared rate limiter for outbound SEC requests.

A counting permit pool sized to the requests-per-second ceiling. One
background thread, owned by the limiter's start()/stop() lifecycle, puts a
single permit back every ``1 / rate`` seconds without ever exceeding the
pool size. Safe for concurrent acquire() calls from several jobs.
"""

import logging
import threading
import time
from typing import Optional


logger = logging.getLogger(__name__)

# Longest single wait inside acquire() so cancellation is noticed promptly
_WAIT_SLICE_SECONDS = 0.1


class RateLimiterError(Exception):
    """Raised when a permit cannot be handed out."""
    pass


class RateLimiterCancelled(RateLimiterError):
    """Raised when a caller's cancel event fires while waiting for a permit."""
    pass


class RateLimiter:
    """
    Token-bucket style limiter with O(1) acquisition.

    Usage:
        with RateLimiter(requests_per_second=8) as limiter:
            limiter.acquire()
            ...
    """

    def __init__(self, requests_per_second: int, name: str = 'sec-rate-limiter') -> None:
        if requests_per_second <= 0:
            raise ValueError(f"requests_per_second must be positive, got {requests_per_second}")

        self.requests_per_second = requests_per_second
        self.interval = 1.0 / requests_per_second
        self.name = name

        self._permits = requests_per_second
        self._condition = threading.Condition()
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def __enter__(self) -> 'RateLimiter':
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.stop()

    @property
    def capacity(self) -> int:
        return self.requests_per_second

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        """Start the replenishment thread. Calling twice is a no-op."""
        if self.is_running:
            return

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._replenish_loop,
            name=f"{self.name}-replenish",
            daemon=True,
        )
        self._thread.start()
        logger.info(f"Rate limiter started: {self.requests_per_second} requests/second")

    def stop(self, timeout: float = 2.0) -> None:
        """Stop the replenishment thread and wake any waiters."""
        if self._thread is None:
            return

        self._stop_event.set()
        self._thread.join(timeout)
        self._thread = None

        with self._condition:
            self._condition.notify_all()

        logger.info("Rate limiter stopped")

    def acquire(self, cancel_event: Optional[threading.Event] = None) -> None:
        """
        Block until a permit is available.

        Args:
            cancel_event: Optional event; when set, waiting stops

        Raises:
            RateLimiterCancelled: If cancel_event is set while waiting
            RateLimiterError: If the limiter is stopped and the pool is empty
        """
        with self._condition:
            while self._permits <= 0:
                if cancel_event is not None and cancel_event.is_set():
                    raise RateLimiterCancelled("Cancelled while waiting for a rate limit permit")
                if not self.is_running:
                    raise RateLimiterError("Rate limiter is not running and no permits are left")
                self._condition.wait(_WAIT_SLICE_SECONDS)

            self._permits -= 1
            logger.debug(f"Rate limit permit acquired (available: {self._permits})")

    def try_acquire(self, timeout_ms: float) -> bool:
        """
        Try to take a permit, waiting at most timeout_ms.

        Returns:
            True if a permit was taken, False on timeout
        """
        deadline = time.monotonic() + max(timeout_ms, 0) / 1000.0

        with self._condition:
            while self._permits <= 0:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    logger.warning(f"Failed to acquire rate limit permit within {timeout_ms}ms")
                    return False
                self._condition.wait(min(remaining, _WAIT_SLICE_SECONDS))

            self._permits -= 1
            return True

    def available_permits(self) -> int:
        with self._condition:
            return self._permits

    def reset(self) -> None:
        """Refill the pool to capacity."""
        with self._condition:
            self._permits = self.requests_per_second
            self._condition.notify_all()
        logger.debug(f"Rate limiter reset to {self.requests_per_second} permits")

    def _release_one(self) -> bool:
        """Return one permit to the pool unless it is already full."""
        with self._condition:
            if self._permits >= self.requests_per_second:
                return False
            self._permits += 1
            self._condition.notify()
            return True

    def _replenish_loop(self) -> None:
        next_tick = time.monotonic() + self.interval
        while not self._stop_event.wait(max(next_tick - time.monotonic(), 0)):
            self._release_one()
            next_tick += self.interval
