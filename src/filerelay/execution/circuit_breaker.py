"""Keyed circuit breaker for fault tolerance.

Fails fast when a destination keeps failing, so one broken item cannot keep
hammering the platform API.  Each key (usually ``file:<destination id>``)
gets an independent :class:`CircuitMonitor`.

States:
    CLOSED: Normal operation, calls pass through
    OPEN: Failing fast, calls rejected immediately
    HALF_OPEN: Testing if the destination recovered

Transitions:
    - CLOSED: a success decays the failure count by one; reaching
      ``failure_threshold`` opens the circuit unless a cooldown started less
      than ``cooldown_period`` ago.
    - OPEN: once ``reset_timeout`` has passed since the last failure, the next
      call half-opens the circuit and goes through.
    - HALF_OPEN: ``success_threshold`` successes close it; a failure resets the
      success count and goes through the CLOSED failure path.

Example:
    >>> from filerelay.execution.circuit_breaker import CircuitBreaker
    >>>
    >>> breaker = CircuitBreaker(failure_threshold=8, reset_timeout=120.0)
    >>> result = await breaker.execute("file:42", lambda: upload(...))
"""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, TypeVar

from filerelay.core.errors import CircuitOpenError
from filerelay.core.logging import get_logger

T = TypeVar("T")

logger = get_logger(__name__)


class CircuitState(str, Enum):
    """Circuit breaker states."""

    CLOSED = "closed"      # Normal operation
    OPEN = "open"          # Rejecting calls
    HALF_OPEN = "half_open"  # Testing recovery


@dataclass
class CircuitMonitor:
    """Failure tracking for one circuit key."""

    failures: int = 0
    successes: int = 0
    last_failure: float | None = None
    last_success: float | None = None
    status: CircuitState = CircuitState.CLOSED
    cooldown_start: float | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "failures": self.failures,
            "successes": self.successes,
            "last_failure": self.last_failure,
            "last_success": self.last_success,
            "cooldown_start": self.cooldown_start,
        }


@dataclass
class CircuitBreaker:
    """Circuit breaker holding one monitor per key.

    Attributes:
        failure_threshold: Failures before opening
        reset_timeout: Seconds after the last failure before half-opening
        cooldown_period: Minimum seconds between two openings
        success_threshold: Half-open successes needed to close
        clock: Monotonic time source, injectable for tests
    """

    failure_threshold: int = 8
    reset_timeout: float = 120.0
    cooldown_period: float = 180.0
    success_threshold: int = 2
    clock: Callable[[], float] = time.monotonic

    _monitors: dict[str, CircuitMonitor] = field(default_factory=dict, init=False)

    def get_monitor(self, key: str) -> CircuitMonitor:
        """Get the monitor for *key*, creating a closed one on first use."""
        monitor = self._monitors.get(key)
        if monitor is None:
            monitor = CircuitMonitor()
            self._monitors[key] = monitor
        return monitor

    def state(self, key: str) -> CircuitState:
        """Current state of *key* without creating a monitor."""
        monitor = self._monitors.get(key)
        return monitor.status if monitor else CircuitState.CLOSED

    def snapshot(self) -> dict[str, dict[str, Any]]:
        """All monitors, for the metrics endpoint."""
        return {key: monitor.to_dict() for key, monitor in self._monitors.items()}

    def reset(self, key: str) -> None:
        """Discard the monitor for *key*."""
        logger.info("circuit.reset", key=key)
        self._monitors.pop(key, None)

    async def execute(self, key: str, operation: Callable[[], Awaitable[T]]) -> T:
        """Run *operation* through the circuit for *key*.

        Raises:
            CircuitOpenError: If the circuit is open; the operation is not run.
        """
        monitor = self.get_monitor(key)

        if monitor.status == CircuitState.OPEN:
            elapsed = self.clock() - (monitor.last_failure or 0.0)
            if elapsed >= self.reset_timeout:
                logger.info("circuit.half_open", key=key)
                monitor.status = CircuitState.HALF_OPEN
                monitor.successes = 0
            else:
                raise CircuitOpenError(key, self.reset_timeout - elapsed)

        try:
            result = await operation()
        except Exception:
            self._record_failure(key, monitor)
            raise

        self._record_success(key, monitor)
        return result

    def _record_success(self, key: str, monitor: CircuitMonitor) -> None:
        monitor.last_success = self.clock()
        monitor.successes += 1

        if monitor.status == CircuitState.HALF_OPEN:
            if monitor.successes >= self.success_threshold:
                logger.info("circuit.closed", key=key, successes=monitor.successes)
                monitor.status = CircuitState.CLOSED
                monitor.failures = 0
                monitor.cooldown_start = None
        else:
            monitor.failures = max(0, monitor.failures - 1)

    def _record_failure(self, key: str, monitor: CircuitMonitor) -> None:
        now = self.clock()
        monitor.failures += 1
        monitor.last_failure = now
        monitor.successes = 0

        if monitor.failures < self.failure_threshold:
            return
        if monitor.cooldown_start is None or now - monitor.cooldown_start >= self.cooldown_period:
            logger.warning("circuit.opened", key=key, failures=monitor.failures)
            monitor.status = CircuitState.OPEN
            monitor.cooldown_start = now


__all__ = ["CircuitBreaker", "CircuitMonitor", "CircuitState", "CircuitOpenError"]
