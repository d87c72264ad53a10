"""Bounded retry with exponential/linear backoff and jitter.

``RetryStrategy.execute`` runs a zero-argument coroutine function until it
succeeds or ``max_retries`` retries have been spent, then re-raises the last
error.  Terminal failures (auth, validation, unsupported file, business rule,
open circuit) are re-raised on the first attempt.  Complexity-budget
failures back off linearly, everything else exponentially, and every delay
is perturbed by symmetric jitter.

Example:
    >>> from filerelay.execution.retry import RetryStrategy, RetryContext
    >>>
    >>> strategy = RetryStrategy(max_retries=2, base_delay=1.0)
    >>> for attempt in range(1, 4):
    ...     print(f"Retry {attempt}: wait {strategy.calculate_delay(attempt):.2f}s")
    >>>
    >>> result = await strategy.execute(
    ...     lambda: client.get_asset(asset_id),
    ...     RetryContext(label="asset", check_public_url=True),
    ... )
"""

import asyncio
import random
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, TypeVar

from filerelay.core.errors import ErrorKind, MissingPublicUrlError, classify_error, is_terminal
from filerelay.core.logging import get_logger

T = TypeVar("T")

logger = get_logger(__name__)


def utcnow() -> datetime:
    """Return timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def has_public_url(result: Any) -> bool:
    """True when a GraphQL asset response carries ``data.assets[0].public_url``."""
    try:
        return bool(result["data"]["assets"][0]["public_url"])
    except (KeyError, IndexError, TypeError):
        return False


@dataclass
class RetryContext:
    """Per-call retry options and the state of one ``execute`` run.

    Attributes:
        label: Name used in log events
        check_public_url: Treat a result without a public URL as a failure
        on_retry: Callback called before each retry (attempt, error, delay)
    """

    label: str = "operation"
    check_public_url: bool = False
    on_retry: Callable[[int, Exception, float], None] | None = None
    attempt: int = field(default=0, init=False)
    last_error: Exception | None = field(default=None, init=False)
    started_at: datetime = field(default_factory=utcnow, init=False)
    errors: list[tuple[int, Exception, datetime]] = field(default_factory=list, init=False)

    def record_failure(self, error: Exception) -> None:
        """Record a failed attempt."""
        self.errors.append((self.attempt, error, utcnow()))
        self.last_error = error

    @property
    def elapsed_seconds(self) -> float:
        """Total elapsed time since first attempt."""
        return (utcnow() - self.started_at).total_seconds()


@dataclass
class RetryStrategy:
    """Retry executor for flaky platform calls.

    Delay for retry ``n`` (1-based):

    - generic errors: ``min(2**n * base_delay, max_delay)``
    - complexity-budget errors: ``min(base_delay * 2 * n, max_delay)``

    each moved by up to ``±jitter_factor * delay`` and floored at zero.

    Attributes:
        max_retries: Retries after the first attempt
        base_delay: Delay unit in seconds
        max_delay: Maximum delay cap in seconds
        jitter_factor: Range of jitter as fraction of delay (0.0-1.0)
        sleep: Awaitable sleep, injectable for tests
    """

    max_retries: int = 5
    base_delay: float = 2.0
    max_delay: float = 30.0
    jitter_factor: float = 0.2
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep

    def calculate_delay(self, attempt: int, error: BaseException | None = None) -> float:
        """Delay before retry *attempt* (1-based)."""
        if error is not None and classify_error(error) is ErrorKind.COMPLEXITY_BUDGET:
            delay = min(self.base_delay * 2 * attempt, self.max_delay)
        else:
            delay = min((2 ** attempt) * self.base_delay, self.max_delay)

        jitter_amount = delay * self.jitter_factor
        delay += random.uniform(-jitter_amount, jitter_amount)
        return max(0.0, delay)

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        context: RetryContext | None = None,
    ) -> T:
        """Run *operation* until it succeeds or retries are exhausted.

        Raises:
            A terminal error immediately, otherwise the last exception once
            ``max_retries`` retries have failed.
        """
        ctx = context or RetryContext()

        while True:
            ctx.attempt += 1
            try:
                result = await operation()
                if ctx.check_public_url and not has_public_url(result):
                    raise MissingPublicUrlError()
                return result
            except Exception as e:
                ctx.record_failure(e)
                if is_terminal(e):
                    raise
                if ctx.attempt > self.max_retries:
                    logger.warning(
                        "retry.exhausted",
                        label=ctx.label,
                        attempts=ctx.attempt,
                        error=str(e),
                    )
                    raise

                delay = self.calculate_delay(ctx.attempt, e)
                logger.info(
                    "retry.scheduled",
                    label=ctx.label,
                    attempt=ctx.attempt,
                    delay=round(delay, 2),
                    error=str(e),
                )
                if ctx.on_retry:
                    ctx.on_retry(ctx.attempt, e, delay)
                await self.sleep(delay)


__all__ = ["RetryStrategy", "RetryContext", "has_public_url"]
