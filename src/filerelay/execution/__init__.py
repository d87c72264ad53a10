"""
Execution resilience: retry with backoff, per-key circuit breaking and
sliding-window rate limiting.

These wrap a single awaited operation; queueing and scheduling live in
:mod:`filerelay.transfer.pipeline`.
"""

from filerelay.execution.circuit_breaker import CircuitBreaker, CircuitMonitor, CircuitState
from filerelay.execution.rate_limit import RateLimiter, SlidingWindow
from filerelay.execution.retry import RetryContext, RetryStrategy

__all__ = [
    "CircuitBreaker",
    "CircuitMonitor",
    "CircuitState",
    "RateLimiter",
    "SlidingWindow",
    "RetryContext",
    "RetryStrategy",
]
