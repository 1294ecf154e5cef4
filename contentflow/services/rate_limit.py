"""
Fixed-window request counter keyed by caller.

Each key gets ``max_requests`` calls per ``window_seconds``. The window for
a key starts at its first request and is reset lazily: the first call
after expiry opens a new window. Expired windows of other keys are dropped
by ``allow`` at most once per window length, so idle callers do not
accumulate.

Counters live in process memory. Several workers (or several hosts) each
keep their own counters, so the effective budget scales with the number
of processes. This is a known scaling limitation; Flask-Limiter with a
shared Redis storage covers the per-route limits across processes.

Usage:
    limiter = FixedWindowRateLimiter(max_requests=100, window_seconds=900)
    if not limiter.allow(f"user:{ctx.user_id}"):
        raise RateLimitExceeded(...)
"""

import logging
import time
from dataclasses import dataclass
from threading import Lock

logger = logging.getLogger(__name__)

DEFAULT_MAX_REQUESTS = 100
DEFAULT_WINDOW_SECONDS = 900  # 15 minutes


@dataclass
class _Window:
    count: int
    reset_at: float


class FixedWindowRateLimiter:
    """Per-key fixed-window counter, serialised by a lock."""

    def __init__(
        self,
        max_requests: int = DEFAULT_MAX_REQUESTS,
        window_seconds: float = DEFAULT_WINDOW_SECONDS,
        clock=time.monotonic,
    ):
        if max_requests < 1:
            raise ValueError("max_requests must be >= 1")
        if window_seconds <= 0:
            raise ValueError("window_seconds must be > 0")
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock
        self._windows: dict[str, _Window] = {}
        self._next_sweep = clock() + window_seconds
        self._lock = Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._windows)

    def allow(self, key: str) -> bool:
        """Count one request for *key*; False once the window is exhausted."""
        now = self._clock()
        with self._lock:
            if now >= self._next_sweep:
                self._sweep(now)
            window = self._windows.get(key)
            if window is None or now >= window.reset_at:
                self._windows[key] = _Window(count=1, reset_at=now + self.window_seconds)
                return True
            if window.count >= self.max_requests:
                logger.info("Rate limit hit for %s (%d/%d)", key, window.count, self.max_requests)
                return False
            window.count += 1
            return True

    def _sweep(self, now: float) -> None:
        expired = [k for k, w in self._windows.items() if now >= w.reset_at]
        for k in expired:
            del self._windows[k]
        self._next_sweep = now + self.window_seconds
        if expired:
            logger.debug("Dropped %d expired rate-limit windows", len(expired))

    def remaining(self, key: str) -> int:
        now = self._clock()
        with self._lock:
            window = self._windows.get(key)
            if window is None or now >= window.reset_at:
                return self.max_requests
            return max(self.max_requests - window.count, 0)

    def retry_after(self, key: str) -> float:
        """Seconds until the current window for *key* closes (0 if open)."""
        now = self._clock()
        with self._lock:
            window = self._windows.get(key)
            if window is None or now >= window.reset_at:
                return 0.0
            return window.reset_at - now

    def reset(self, key: str | None = None) -> None:
        """Forget one key, or every key when *key* is None."""
        with self._lock:
            if key is None:
                self._windows.clear()
            else:
                self._windows.pop(key, None)
