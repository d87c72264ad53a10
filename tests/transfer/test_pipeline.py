"""Tests for the per-item drain loop."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from filerelay.core.errors import (
    AuthenticationError,
    CircuitOpenError,
    ComplexityBudgetError,
    ErrorKind,
    TimeoutError,
)
from filerelay.execution.circuit_breaker import CircuitBreaker
from filerelay.execution.rate_limit import RateLimiter
from filerelay.execution.retry import RetryStrategy
from filerelay.observability.metrics import MetricsTracker
from filerelay.platform.tokens import TokenCache
from filerelay.transfer.pipeline import FileTransferPipeline
from filerelay.transfer.registry import ItemRegistry


class RecordingSleep:
    """Records requested delays and yields to the loop without waiting."""

    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)
        await asyncio.sleep(0)

    @property
    def waits(self) -> list[float]:
        return [d for d in self.delays if d > 0]


class Harness:
    """A pipeline wired with fakes around a scripted operation."""

    def __init__(self, profile, *, outcomes=None, breaker=None, limiter=None, retry=None):
        self.registry = ItemRegistry(rate_limiter=limiter or RateLimiter())
        self.metrics = MetricsTracker()
        self.tokens = TokenCache(oauth=MagicMock())
        self.sleep = RecordingSleep()
        self.calls: list[str] = []
        self._outcomes = dict(outcomes or {})

        self.operation = MagicMock()
        self.operation.run = AsyncMock(side_effect=self._run)

        self.pipeline = FileTransferPipeline(
            "column",
            profile,
            registry=self.registry,
            operation=self.operation,
            breaker=breaker or CircuitBreaker(),
            retry=retry or RetryStrategy(max_retries=0),
            metrics=self.metrics,
            tokens=self.tokens,
            sleep=self.sleep,
        )

    async def _run(self, task):
        asset_id = task.file.asset_id
        self.calls.append(asset_id)
        scripted = self._outcomes.get(asset_id)
        if isinstance(scripted, list):
            outcome = scripted.pop(0) if scripted else None
        else:
            outcome = scripted
        if isinstance(outcome, Exception):
            raise outcome
        return {"ok": asset_id}

    def queue(self, key, tasks):
        self.registry.claim(key)
        self.registry.enqueue(key, tasks)


class TestDrain:
    @pytest.mark.asyncio
    async def test_drains_in_order(self, profile_factory, task_factory):
        h = Harness(profile_factory())
        h.queue("item-1", [task_factory(a) for a in ("a1", "a2", "a3")])

        summary = await h.pipeline.drain("item-1")

        assert h.calls == ["a1", "a2", "a3"]
        assert summary.processed == 3
        assert summary.dropped == 0
        assert not h.registry.is_active("item-1")
        assert h.registry.queue("item-1") is None
        assert h.pipeline.in_flight == 0

    @pytest.mark.asyncio
    async def test_auth_failure_dropped_without_backoff(self, profile_factory, task_factory):
        h = Harness(profile_factory(backoff_base=2.0, backoff_cap=10.0),
                    outcomes={"a2": AuthenticationError("User not authenticated")})
        h.queue("item-1", [task_factory(a) for a in ("a1", "a2", "a3")])

        summary = await h.pipeline.drain("item-1")

        assert h.calls == ["a1", "a2", "a3"]
        assert summary.processed == 2
        assert summary.dropped == 1
        assert summary.dropped_assets == ["a2"]
        assert h.sleep.waits == []
        assert h.metrics.get_metrics("task")["task:dropped"].count == 1

    @pytest.mark.asyncio
    async def test_auth_failure_skips_inner_retries(self, profile_factory, task_factory):
        retry_sleep = RecordingSleep()
        h = Harness(
            profile_factory(backoff_base=2.0, backoff_cap=10.0),
            outcomes={"a2": AuthenticationError("User not authenticated")},
            retry=RetryStrategy(max_retries=5, base_delay=2.0, sleep=retry_sleep),
        )
        h.queue("item-1", [task_factory(a) for a in ("a1", "a2", "a3")])

        summary = await h.pipeline.drain("item-1")

        assert h.calls == ["a1", "a2", "a3"]
        assert summary.processed == 2
        assert summary.dropped_assets == ["a2"]
        assert retry_sleep.delays == []
        assert h.sleep.waits == []

    @pytest.mark.asyncio
    async def test_transient_failure_retried_with_backoff(self, profile_factory, task_factory):
        h = Harness(profile_factory(backoff_base=2.0, backoff_cap=10.0),
                    outcomes={"a1": [TimeoutError("slow"), TimeoutError("slow")]})
        h.queue("item-1", [task_factory("a1"), task_factory("a2")])

        summary = await h.pipeline.drain("item-1")

        assert h.calls == ["a1", "a1", "a1", "a2"]
        assert summary.processed == 2
        assert h.sleep.waits == [2.0, 4.0]
        assert h.metrics.get_metrics("task")["task:retry"].count == 2

    @pytest.mark.asyncio
    async def test_transient_failure_dropped_after_max_retries(self, profile_factory, task_factory):
        h = Harness(profile_factory(max_task_retries=3),
                    outcomes={"a1": TimeoutError("slow")})
        h.queue("item-1", [task_factory("a1"), task_factory("a2")])

        summary = await h.pipeline.drain("item-1")

        assert h.calls == ["a1", "a1", "a1", "a2"]
        assert summary.dropped_assets == ["a1"]
        assert summary.processed == 1

    @pytest.mark.asyncio
    async def test_duplicate_asset_skipped(self, profile_factory, task_factory):
        h = Harness(profile_factory())
        h.queue("item-1", [task_factory("a1"), task_factory("a1"), task_factory("a2")])

        summary = await h.pipeline.drain("item-1")

        assert h.calls == ["a1", "a2"]
        assert summary.processed == 2

    @pytest.mark.asyncio
    async def test_circuit_open_waits_without_spending_retries(self, profile_factory, task_factory, clock):
        breaker = CircuitBreaker(failure_threshold=1, reset_timeout=30.0, clock=clock)
        h = Harness(profile_factory(), breaker=breaker,
                    outcomes={"a1": [AuthenticationError("expired")]})
        h.queue("item-1", [task_factory("a1"), task_factory("a2")])

        async def advancing_sleep(seconds):
            h.sleep.delays.append(seconds)
            clock.advance(seconds)
            await asyncio.sleep(0)

        h.pipeline.sleep = advancing_sleep

        summary = await h.pipeline.drain("item-1")

        # a1 dropped and opened the circuit; a2 waited out the open window
        assert summary.dropped_assets == ["a1"]
        assert summary.processed == 1
        assert 30.0 in h.sleep.delays
        assert h.calls == ["a1", "a2"]

    @pytest.mark.asyncio
    async def test_releases_tokens_and_tracks_item(self, profile_factory, task_factory):
        h = Harness(profile_factory())
        h.tokens.set("item-1", "at")
        h.queue("item-1", [task_factory("a1")])

        await h.pipeline.drain("item-1")

        assert "item-1" not in h.tokens
        bucket = h.metrics.get_metrics("item_processing")["item_processing:column"]
        assert bucket.count == 1

    @pytest.mark.asyncio
    async def test_keeps_tokens_of_newer_claim(self, profile_factory, task_factory):
        h = Harness(profile_factory())
        h.queue("item-1", [task_factory("a1")])

        async def reclaimed_during_transfer(task):
            h.calls.append(task.file.asset_id)
            h.registry.release("item-1")
            h.registry.claim("item-1")
            h.tokens.set("item-1", "fresh")
            return {}

        h.operation.run = AsyncMock(side_effect=reclaimed_during_transfer)

        await h.pipeline.drain("item-1")

        assert "item-1" in h.tokens
        assert h.registry.is_active("item-1")

    @pytest.mark.asyncio
    async def test_rate_limited_item_waits(self, profile_factory, task_factory, clock):
        limiter = RateLimiter(max_requests=1, window_seconds=60, clock=clock)
        h = Harness(profile_factory(rate_limit_poll_interval=2.0), limiter=limiter)
        h.queue("item-1", [task_factory("a1"), task_factory("a2")])

        async def advancing_sleep(seconds):
            h.sleep.delays.append(seconds)
            clock.advance(seconds)
            await asyncio.sleep(0)

        h.pipeline.sleep = advancing_sleep

        summary = await h.pipeline.drain("item-1")

        assert summary.processed == 2
        assert h.sleep.delays.count(2.0) == 30


class TestSingleFlight:
    @pytest.mark.asyncio
    async def test_two_rapid_starts_run_one_loop(self, profile_factory, task_factory):
        h = Harness(profile_factory())
        h.queue("item-1", [task_factory("a1"), task_factory("a2")])

        first = h.pipeline.start("item-1")
        second = h.pipeline.start("item-1")
        await h.pipeline.wait_idle()

        assert first is not None
        assert second is None
        assert h.calls == ["a1", "a2"]

    @pytest.mark.asyncio
    async def test_start_with_empty_queue_releases_claim(self, profile_factory):
        h = Harness(profile_factory())
        h.registry.claim("item-1")

        assert h.pipeline.start("item-1") is None
        assert not h.registry.is_active("item-1")

    @pytest.mark.asyncio
    async def test_start_claims_unclaimed_item(self, profile_factory, task_factory):
        h = Harness(profile_factory())
        h.registry.enqueue("item-1", [task_factory("a1")])

        await h.pipeline.drain("item-1")

        assert h.calls == ["a1"]
        assert not h.registry.is_active("item-1")

    @pytest.mark.asyncio
    async def test_release_during_transfer_stops_loop(self, profile_factory, task_factory):
        h = Harness(profile_factory())
        h.queue("item-1", [task_factory("a1"), task_factory("a2")])

        async def release_then_succeed(task):
            h.calls.append(task.file.asset_id)
            h.registry.release("item-1")
            return {}

        h.operation.run = AsyncMock(side_effect=release_then_succeed)

        summary = await h.pipeline.drain("item-1")

        assert h.calls == ["a1"]
        assert summary.processed == 0

    @pytest.mark.asyncio
    async def test_cancel_all(self, profile_factory, task_factory):
        h = Harness(profile_factory())
        h.queue("item-1", [task_factory("a1")])
        blocker = asyncio.Event()

        async def block(task):
            await blocker.wait()

        h.operation.run = AsyncMock(side_effect=block)
        h.pipeline.start("item-1")
        await asyncio.sleep(0)

        await h.pipeline.cancel_all()

        assert not h.registry.is_active("item-1")
        assert h.pipeline.in_flight == 0


class TestConcurrency:
    @pytest.mark.asyncio
    async def test_in_flight_capped_across_items(self, profile_factory, task_factory):
        h = Harness(profile_factory(max_concurrent=1))
        gate = asyncio.Event()
        peak = 0

        async def slow(task):
            nonlocal peak
            peak = max(peak, h.pipeline.in_flight)
            await gate.wait()
            return {}

        h.operation.run = AsyncMock(side_effect=slow)
        h.queue("item-1", [task_factory("a1", "item-1")])
        h.queue("item-2", [task_factory("b1", "item-2")])

        h.pipeline.start("item-1")
        h.pipeline.start("item-2")
        for _ in range(5):
            await asyncio.sleep(0)
        gate.set()
        await h.pipeline.wait_idle()

        assert peak == 1
        assert h.operation.run.await_count == 2


class TestBackoffDelay:
    def test_standard(self, profile_factory):
        pipeline = Harness(profile_factory(backoff_base=2.0, backoff_cap=10.0)).pipeline
        assert [pipeline.backoff_delay(n, ErrorKind.TIMEOUT) for n in (1, 2, 3, 4, 5)] == [2, 4, 8, 10, 10]

    def test_complexity(self, profile_factory):
        pipeline = Harness(profile_factory(
            complexity_backoff_base=8.0, complexity_backoff_step=4.0, complexity_backoff_cap=15.0
        )).pipeline
        kind = ErrorKind.COMPLEXITY_BUDGET
        assert [pipeline.backoff_delay(n, kind) for n in (1, 2, 3)] == [8, 12, 15]

    @pytest.mark.asyncio
    async def test_complexity_failure_uses_linear_backoff(self, profile_factory, task_factory):
        h = Harness(
            profile_factory(complexity_backoff_base=8.0, complexity_backoff_step=4.0,
                            complexity_backoff_cap=15.0),
            outcomes={"a1": [ComplexityBudgetError("Complexity budget exhausted")]},
        )
        h.queue("item-1", [task_factory("a1")])

        await h.pipeline.drain("item-1")

        assert h.sleep.waits == [8.0]

    def test_circuit_open_delay_does_not_count(self, profile_factory, task_factory):
        pipeline = Harness(profile_factory()).pipeline
        task = task_factory("a1")

        assert pipeline._failure_delay(task, CircuitOpenError("file:item-2", 42.0)) == 42.0
        assert task.retry_count == 0
