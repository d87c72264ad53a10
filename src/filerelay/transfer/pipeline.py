"""
File-transfer pipeline — the per-item drain loop.

Manifesto:
    A request only *queues* work; the pipeline finishes it.  Each item key
    gets at most one drain loop, which pulls tasks off the head of the item's
    queue, throttles itself (concurrency ceiling, per-item rate window), and
    pushes each file through CircuitBreaker → RetryStrategy → operation.
    Failures are classified by :class:`ErrorKind`, never by message.

ARCHITECTURE
────────────
::

    start(key) ──► _begin(key)            single-flight: draining flag
                      │
                      ▼
    _drain(key) ── while queue:
                      ├─ in_flight >= max_concurrent → sleep, re-check
                      ├─ rate limiter rejects         → sleep, re-check
                      ├─ head already processed       → drop, continue
                      ├─ inter-task delay
                      ├─ breaker(circuit_key) ▸ retry ▸ operation.run(task)
                      │     success         → pop, processed += 1
                      │     CIRCUIT_OPEN    → wait remaining open time
                      │     transient kinds → retry_count += 1, back off
                      │     anything else   → pop, dropped
                      └─ finally: summary metrics, token release, registry release

One ``FileTransferPipeline`` per scenario, all sharing the registry,
breaker, metrics and token cache.  Scenario differences are a
:class:`PipelineProfile`.

Tags:
    pipeline, queue, asyncio, single-flight, backoff, circuit-breaker
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable

from filerelay.core.errors import ErrorKind, classify_error, get_retry_after, is_retryable
from filerelay.core.logging import LogContext, get_logger
from filerelay.core.settings import PipelineProfile
from filerelay.execution.circuit_breaker import CircuitBreaker
from filerelay.execution.retry import RetryContext, RetryStrategy
from filerelay.observability.metrics import MetricsTracker
from filerelay.platform.tokens import TokenCache
from filerelay.transfer.models import DrainSummary, TransferTask
from filerelay.transfer.operation import TransferOperation
from filerelay.transfer.registry import ItemRegistry, ProcessingState

logger = get_logger(__name__)


class FileTransferPipeline:
    """Drains item queues for one scenario.

    Args:
        scenario: Name used in logs and metrics
        profile: Concurrency, delay and backoff constants
        registry: Shared per-item state
        operation: Performs one transfer attempt
        breaker: Shared circuit breaker
        retry: Retry policy wrapped by the breaker
        metrics: Shared metrics tracker
        tokens: Per-item credentials, released at teardown
        sleep: Awaitable sleep, injectable for tests
    """

    def __init__(
        self,
        scenario: str,
        profile: PipelineProfile,
        *,
        registry: ItemRegistry,
        operation: TransferOperation,
        breaker: CircuitBreaker,
        retry: RetryStrategy,
        metrics: MetricsTracker,
        tokens: TokenCache,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.scenario = scenario
        self.profile = profile
        self.registry = registry
        self.operation = operation
        self.breaker = breaker
        self.retry = retry
        self.metrics = metrics
        self.tokens = tokens
        self.sleep = sleep
        self._in_flight = 0
        self._tasks: set[asyncio.Task] = set()

    @property
    def in_flight(self) -> int:
        return self._in_flight

    # ── Entry points ─────────────────────────────────────────────

    def start(self, key: str) -> asyncio.Task | None:
        """Kick off the drain loop for *key* in the background.

        Returns ``None`` when there is nothing to drain or a loop is already
        running for *key*.
        """
        state = self._begin(key)
        if state is None:
            return None
        task = asyncio.create_task(self._drain(key, state), name=f"drain:{self.scenario}:{key}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def drain(self, key: str) -> DrainSummary | None:
        """Drain *key* in the current task."""
        state = self._begin(key)
        if state is None:
            return None
        return await self._drain(key, state)

    async def wait_idle(self) -> None:
        """Wait for every background drain loop started here."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def cancel_all(self) -> None:
        """Cancel background drain loops (shutdown)."""
        for task in list(self._tasks):
            task.cancel()
        await self.wait_idle()

    def _begin(self, key: str) -> ProcessingState | None:
        queue = self.registry.queue(key)
        state = self.registry.state(key)

        if not queue:
            if state is not None and not state.draining:
                self.registry.release(key, state)
            return None

        if state is None:
            state = self.registry.claim(key)
        if state is None or state.draining:
            return None
        state.draining = True
        return state

    # ── Backoff ──────────────────────────────────────────────────

    def backoff_delay(self, retry_count: int, kind: ErrorKind) -> float:
        """Delay before retrying a task that has failed *retry_count* times."""
        p = self.profile
        if kind is ErrorKind.COMPLEXITY_BUDGET:
            return min(p.complexity_backoff_base + (retry_count - 1) * p.complexity_backoff_step,
                       p.complexity_backoff_cap)
        return min(p.backoff_base * (2 ** (retry_count - 1)), p.backoff_cap)

    # ── Loop ─────────────────────────────────────────────────────

    async def _transfer(self, task: TransferTask) -> None:
        await self.breaker.execute(
            task.circuit_key,
            lambda: self.retry.execute(
                lambda: self.operation.run(task),
                RetryContext(label=f"{self.scenario}:{task.file.asset_id}"),
            ),
        )

    def _failure_delay(self, task: TransferTask, error: Exception) -> float | None:
        """Delay before retrying the head, or ``None`` to drop it."""
        kind = classify_error(error)

        if kind is ErrorKind.CIRCUIT_OPEN:
            wait = get_retry_after(error) or self.profile.backoff_base
            logger.warning("pipeline.circuit_open", asset_id=task.file.asset_id, wait=round(wait, 2))
            return wait

        task.retry_count += 1
        if is_retryable(error) and task.retry_count < self.profile.max_task_retries:
            delay = self.backoff_delay(task.retry_count, kind)
            logger.info(
                "pipeline.task_retry",
                asset_id=task.file.asset_id,
                kind=kind.value,
                retry_count=task.retry_count,
                delay=delay,
            )
            self.metrics.track("task", "retry", kind=kind.value)
            return delay

        logger.error(
            "pipeline.task_dropped",
            asset_id=task.file.asset_id,
            name=task.file.name,
            kind=kind.value,
            retry_count=task.retry_count,
            error=str(error),
        )
        self.metrics.track("task", "dropped", failure=True, kind=kind.value)
        return None

    async def _drain(self, key: str, state: ProcessingState) -> DrainSummary:
        profile = self.profile
        queue = self.registry.queue(key)
        summary = DrainSummary(item_key=key, scenario=self.scenario)
        processed_assets: set[str] = set()

        async with LogContext(item_key=key, scenario=self.scenario):
            logger.info("pipeline.drain_started", queued=len(queue) if queue else 0)
            try:
                while queue and self.registry.queue(key) is queue:
                    if self._in_flight >= profile.max_concurrent:
                        await self.sleep(profile.concurrency_poll_interval)
                        continue

                    if not self.registry.rate_limiter.try_acquire(key):
                        logger.info("pipeline.rate_limited")
                        await self.sleep(profile.rate_limit_poll_interval)
                        continue

                    task = queue[0]
                    if task.file.asset_id in processed_assets:
                        queue.popleft()
                        continue

                    succeeded = False
                    delay: float | None = None
                    self._in_flight += 1
                    try:
                        await self.sleep(profile.inter_task_delay)
                        await self._transfer(task)
                        succeeded = True
                    except Exception as e:
                        delay = self._failure_delay(task, e)
                    finally:
                        self._in_flight -= 1

                    if self.registry.queue(key) is not queue:
                        logger.warning("pipeline.item_released_during_transfer")
                        break

                    if succeeded:
                        queue.popleft()
                        processed_assets.add(task.file.asset_id)
                        state.processed_count += 1
                    elif delay is None:
                        queue.popleft()
                        processed_assets.add(task.file.asset_id)
                        summary.dropped += 1
                        summary.dropped_assets.append(task.file.asset_id)
                    elif delay > 0:
                        await self.sleep(delay)
            finally:
                summary.processed = state.processed_count
                summary.elapsed = self.registry.clock() - state.started_at
                self._teardown(key, state, summary)

        return summary

    def _teardown(self, key: str, state: ProcessingState, summary: DrainSummary) -> None:
        try:
            self.metrics.track(
                "item_processing",
                self.scenario,
                success=True,
                duration=summary.elapsed,
                processed=summary.processed,
                dropped=summary.dropped,
            )
            logger.info(
                "pipeline.drain_finished",
                processed=summary.processed,
                dropped=summary.dropped,
                elapsed=round(summary.elapsed, 2),
            )
            # a forced release may already have handed the item to a newer claim
            current = self.registry.state(key)
            if current is None or current is state:
                self.tokens.clear(key)
        except Exception:
            logger.exception("pipeline.teardown_failed")
        finally:
            self.registry.release(key, state)


__all__ = ["FileTransferPipeline"]
