"""Rate Limiting — per-item sliding-window throughput control.

Manifesto:
monday.com throttles per account and punishes bursts with complexity-budget
errors.  Each item being drained gets its own sliding window so one large
item cannot spend the whole budget, and the drain loop backs off *before*
the platform starts refusing calls.

ARCHITECTURE
────────────
::

    SlidingWindow   ─ exact count of admissions in a rolling window
    RateLimiter     ─ one SlidingWindow per item key

    No locks: windows are only touched from the event loop.

BEST PRACTICES
──────────────
- Call ``try_acquire`` right before the guarded call; a rejection means
  "sleep and check again", never "fail".
- ``discard`` the key when the item is torn down.

Related modules:
    circuit_breaker.py — fail-fast on sustained failures
    retry.py           — backoff on transient failures

Example::

    limiter = RateLimiter(max_requests=20, window_seconds=60)
    while not limiter.try_acquire(item_key):
        await asyncio.sleep(2)

Tags:
    execution, rate-limit, throttle, sliding-window
"""

import time
from collections.abc import Callable
from dataclasses import dataclass, field


@dataclass
class SlidingWindow:
    """Sliding window of admission timestamps.

    Attributes:
        max_requests: Maximum admissions per window
        window_seconds: Window size in seconds
    """

    max_requests: int
    window_seconds: float

    _timestamps: list[float] = field(default_factory=list, init=False)

    def _cleanup(self, now: float) -> None:
        """Remove timestamps outside the window."""
        cutoff = now - self.window_seconds
        self._timestamps = [ts for ts in self._timestamps if ts > cutoff]

    def acquire(self, now: float) -> bool:
        """Record an admission at *now* if the window has room."""
        self._cleanup(now)
        if len(self._timestamps) >= self.max_requests:
            return False
        self._timestamps.append(now)
        return True

    def get_wait_time(self, now: float) -> float:
        """Seconds until the window has room."""
        self._cleanup(now)
        if len(self._timestamps) < self.max_requests:
            return 0.0
        oldest = self._timestamps[0]
        return max(0.0, (oldest + self.window_seconds) - now)

    def count(self, now: float) -> int:
        """Admissions currently inside the window."""
        self._cleanup(now)
        return len(self._timestamps)


@dataclass
class RateLimiter:
    """Rate limiter with one sliding window per key.

    Example:
        >>> limiter = RateLimiter(max_requests=2, window_seconds=60)
        >>> limiter.try_acquire("item-1"), limiter.try_acquire("item-1")
        (True, True)
        >>> limiter.try_acquire("item-1")
        False
    """

    max_requests: int = 20
    window_seconds: float = 60.0
    clock: Callable[[], float] = time.monotonic

    _windows: dict[str, SlidingWindow] = field(default_factory=dict, init=False)

    def _get_window(self, key: str) -> SlidingWindow:
        """Get or create the window for key."""
        if key not in self._windows:
            self._windows[key] = SlidingWindow(
                max_requests=self.max_requests,
                window_seconds=self.window_seconds,
            )
        return self._windows[key]

    def try_acquire(self, key: str) -> bool:
        """Admit one request for *key*, or return False if the window is full."""
        return self._get_window(key).acquire(self.clock())

    def get_wait_time(self, key: str) -> float:
        """Seconds until *key* can be admitted again."""
        window = self._windows.get(key)
        return window.get_wait_time(self.clock()) if window else 0.0

    def count(self, key: str) -> int:
        """Admissions for *key* inside the current window."""
        window = self._windows.get(key)
        return window.count(self.clock()) if window else 0

    def discard(self, key: str) -> None:
        """Forget the window for *key*."""
        self._windows.pop(key, None)

    def __contains__(self, key: str) -> bool:
        return key in self._windows


__all__ = ["RateLimiter", "SlidingWindow"]
