"""
Registry of in-flight items.

The registry owns every per-item map of the service: the FIFO queue of
tasks, the processing record (claim, busy flag, processed count, auto-release
timer) and the rate-limit window.  Handlers claim an item before reading its
source value; the drain loop releases it when the queue is exhausted.

A claim auto-releases after ``item_timeout`` seconds no matter what, so a
stuck head cannot hold an item forever.  Releases are identity-checked: a
drain loop whose item was force-released cannot tear down a newer claim of
the same key.

Example:
    >>> registry = ItemRegistry(item_timeout=3000)
    >>> state = registry.claim("42")
    >>> registry.claim("42") is None          # already processing
    True
    >>> registry.release("42", state)
"""

from __future__ import annotations

import asyncio
import time
from collections import deque
from collections.abc import Callable, Iterable
from dataclasses import dataclass

from filerelay.core.logging import get_logger
from filerelay.execution.rate_limit import RateLimiter
from filerelay.transfer.models import TransferTask

logger = get_logger(__name__)


@dataclass
class ProcessingState:
    """Processing record of one claimed item."""

    started_at: float
    processed_count: int = 0
    draining: bool = False
    timer: asyncio.TimerHandle | None = None


class ItemRegistry:
    """Owner of all per-item state."""

    def __init__(
        self,
        *,
        item_timeout: float = 3000.0,
        rate_limiter: RateLimiter | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.item_timeout = item_timeout
        self.rate_limiter = rate_limiter or RateLimiter()
        self.clock = clock
        self._queues: dict[str, deque[TransferTask]] = {}
        self._states: dict[str, ProcessingState] = {}

    # ── Claims ───────────────────────────────────────────────────

    def is_active(self, key: str) -> bool:
        return key in self._states

    def state(self, key: str) -> ProcessingState | None:
        return self._states.get(key)

    def active_keys(self) -> list[str]:
        return list(self._states)

    def __len__(self) -> int:
        return len(self._states)

    def claim(self, key: str) -> ProcessingState | None:
        """Claim *key*; ``None`` if it is already being processed."""
        if key in self._states:
            return None

        state = ProcessingState(started_at=self.clock())
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            loop = None
        if loop is not None:
            state.timer = loop.call_later(self.item_timeout, self._expire, key, state)
        self._states[key] = state
        return state

    def _expire(self, key: str, state: ProcessingState) -> None:
        if self._states.get(key) is state:
            logger.warning("registry.auto_release", item_key=key, timeout=self.item_timeout)
            self.release(key, state)

    def release(self, key: str, state: ProcessingState | None = None) -> bool:
        """Drop every piece of state for *key*.

        With *state* given, only releases if that record is still current.
        Returns whether anything was released.
        """
        current = self._states.get(key)
        if state is not None and current is not state:
            return False

        if current is not None and current.timer is not None:
            current.timer.cancel()
        self._states.pop(key, None)
        self._queues.pop(key, None)
        self.rate_limiter.discard(key)
        return current is not None

    # ── Queues ───────────────────────────────────────────────────

    def enqueue(self, key: str, tasks: Iterable[TransferTask]) -> deque[TransferTask]:
        """Append *tasks* to the queue of *key*, creating it if needed."""
        queue = self._queues.setdefault(key, deque())
        queue.extend(tasks)
        return queue

    def queue(self, key: str) -> deque[TransferTask] | None:
        return self._queues.get(key)

    def queued(self, key: str) -> int:
        queue = self._queues.get(key)
        return len(queue) if queue else 0

    def clear(self) -> None:
        """Release every item (shutdown)."""
        for key in list(self._states):
            self.release(key)
        self._queues.clear()


__all__ = ["ItemRegistry", "ProcessingState"]
