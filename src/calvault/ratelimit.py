"""
Token bucket rate limiter for outbound Calendar API calls.
"""

import logging
import threading
import time

from calvault.models import SyncCancelledError

logger = logging.getLogger(__name__)


class RateLimiter:
    """Token bucket holding at most one second's worth of calls.

    Tokens refill continuously from the wall time elapsed since the last
    call. ``wait()`` blocks while the bucket is empty; the wait can be cut
    short with a ``threading.Event``, which raises ``SyncCancelledError``.
    """

    def __init__(self, qps: float, clock=time.monotonic):
        if qps <= 0:
            raise ValueError(f"qps must be positive, got {qps}")
        self.qps = float(qps)
        self._clock = clock
        self._tokens = self.qps  # start with a full bucket
        self._last = clock()
        self._lock = threading.Lock()
        self.throttled_count = 0

    def _refill(self, now: float):
        elapsed = max(0.0, now - self._last)
        self._tokens = min(self._tokens + elapsed * self.qps, self.qps)
        self._last = now

    def wait(self, cancel_event: threading.Event | None = None):
        """Take one token, blocking until one is available."""
        with self._lock:
            if cancel_event is not None and cancel_event.is_set():
                raise SyncCancelledError()
            self._refill(self._clock())
            if self._tokens >= 1.0:
                self._tokens -= 1.0
                return
            delay = (1.0 - self._tokens) / self.qps
            self.throttled_count += 1

        logger.debug("Rate limited, waiting %.3fs", delay)
        if cancel_event is not None:
            if cancel_event.wait(delay):
                raise SyncCancelledError()
        else:
            time.sleep(delay)

        with self._lock:
            self._tokens = 0.0
            self._last = self._clock()


class NoopRateLimiter:
    """Limiter that never waits; only honours cancellation."""

    throttled_count = 0

    def wait(self, cancel_event: threading.Event | None = None):
        if cancel_event is not None and cancel_event.is_set():
            raise SyncCancelledError()
