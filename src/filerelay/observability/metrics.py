"""In-memory event metrics for the transfer service.

Metrics are buckets keyed by ``category:event``.  Each bucket counts
events, successes and failures and accumulates a duration.  Buckets are
reset (not deleted) on a fixed interval so the snapshot always reflects
recent activity.

Example:
    >>> from filerelay.observability.metrics import MetricsTracker
    >>>
    >>> tracker = MetricsTracker()
    >>> tracker.track("file_processing", "success", success=True, duration=1.2)
    >>> tracker.get_metrics("file_processing")["file_processing:success"].count
    1
"""

import asyncio
import time
from dataclasses import asdict, dataclass, replace
from typing import Any

from filerelay.core.logging import get_logger

logger = get_logger(__name__)


@dataclass
class MetricBucket:
    """Counters for one ``category:event`` pair."""

    count: int = 0
    failures: int = 0
    success: int = 0
    total_time: float = 0.0
    last_update: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class MetricsTracker:
    """Counts events per ``category:event``.

    Use for:
    - Per-file transfer outcomes and durations
    - Per-item drain summaries
    """

    def __init__(self, reset_interval: float = 3600.0):
        self.reset_interval = reset_interval
        self._metrics: dict[str, MetricBucket] = {}
        self._reset_task: asyncio.Task | None = None

    def track(
        self,
        category: str,
        event: str,
        *,
        success: bool = False,
        failure: bool = False,
        duration: float | None = None,
        **metadata: Any,
    ) -> None:
        """Record one event.

        Extra keyword arguments are accepted as event metadata and ignored by
        the counters.
        """
        key = f"{category}:{event}"
        bucket = self._metrics.get(key)
        if bucket is None:
            bucket = MetricBucket()
            self._metrics[key] = bucket

        bucket.count += 1
        if success:
            bucket.success += 1
        if failure:
            bucket.failures += 1
        if duration:
            bucket.total_time += duration
        bucket.last_update = time.time()

    def get_metrics(self, category: str) -> dict[str, MetricBucket]:
        """Copies of every bucket in *category*."""
        prefix = f"{category}:"
        return {
            key: replace(bucket)
            for key, bucket in self._metrics.items()
            if key.startswith(prefix)
        }

    def snapshot(self) -> dict[str, dict[str, Any]]:
        """Every bucket as plain dicts."""
        return {key: bucket.to_dict() for key, bucket in self._metrics.items()}

    def reset_counters(self) -> None:
        """Zero every bucket, keeping the keys."""
        for bucket in self._metrics.values():
            bucket.count = 0
            bucket.failures = 0
            bucket.success = 0
            bucket.total_time = 0.0

    # ── Periodic reset ───────────────────────────────────────────

    def start(self) -> None:
        """Start the periodic reset task on the running loop."""
        if self._reset_task is None or self._reset_task.done():
            self._reset_task = asyncio.create_task(self._reset_loop())

    async def stop(self) -> None:
        """Cancel the periodic reset task."""
        task, self._reset_task = self._reset_task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _reset_loop(self) -> None:
        while True:
            await asyncio.sleep(self.reset_interval)
            self.reset_counters()
            logger.debug("metrics.reset", buckets=len(self._metrics))


__all__ = ["MetricsTracker", "MetricBucket"]
