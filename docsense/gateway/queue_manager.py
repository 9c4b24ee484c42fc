"""Request Queue — admission control for upstream work.

Runs submitted async tasks in FIFO order subject to two limits at once:
  - concurrency: tasks currently executing
  - interval cap: tasks *started* within the last ``interval_ms``

Start timestamps are kept in a sliding window (same approach as a per-vendor
RPM bucket), so no ``interval_ms`` span ever contains more than
``interval_cap`` starts. The window count is independent of how many tasks
are still running.

All state is mutated from the event loop thread only; one queue instance
must not be shared between event loops.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, TypeVar

from docsense.gateway.types import QueueConfig

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class _PendingTask:
    """A submitted task waiting for admission."""

    sequence: int
    task: Callable[[], Awaitable[Any]]
    future: asyncio.Future
    request_id: str = ""
    enqueued_at: float = 0.0  # time.monotonic()


class RequestQueue:
    """FIFO queue bounded by concurrency and start rate.

    Usage:
        queue = RequestQueue(QueueConfig(concurrency=2, interval_cap=5, interval_ms=1000))
        result = await queue.submit(lambda: do_call(), request_id="abc")

    Once admitted, a task runs to completion even if the submitter is
    cancelled. A submitter cancelled before admission is dropped from the
    pending list.
    """

    def __init__(self, config: QueueConfig | None = None):
        self.config = config or QueueConfig()
        if self.config.concurrency < 1 or self.config.interval_cap < 1:
            raise ValueError("concurrency and interval_cap must be at least 1")
        self._pending: deque[_PendingTask] = deque()
        self._starts: deque[float] = deque()
        self._running = 0
        self._sequence = 0
        self._tasks: set[asyncio.Task] = set()
        self._wakeup: asyncio.TimerHandle | None = None
        self._idle_waiters: list[asyncio.Future] = []

    @property
    def _interval_s(self) -> float:
        return self.config.interval_ms / 1000.0

    @property
    def size(self) -> int:
        """Tasks waiting for admission."""
        return sum(1 for item in self._pending if not item.future.done())

    @property
    def running(self) -> int:
        """Tasks currently executing."""
        return self._running

    async def submit(self, task: Callable[[], Awaitable[T]], request_id: str = "") -> T:
        """Queue ``task`` and wait for its result (or exception)."""
        loop = asyncio.get_running_loop()
        self._sequence += 1
        item = _PendingTask(
            sequence=self._sequence,
            task=task,
            future=loop.create_future(),
            request_id=request_id,
            enqueued_at=time.monotonic(),
        )
        self._pending.append(item)

        logger.info(
            "Enqueued request %s (pending=%d, running=%d)",
            request_id or f"#{item.sequence}",
            self.size,
            self._running,
            extra={"event": "enqueue", "request_id": request_id, "pending": self.size, "running": self._running},
        )

        self._drain()
        return await item.future

    async def on_idle(self) -> None:
        """Wait until nothing is pending or running."""
        if self._is_idle():
            return
        waiter = asyncio.get_running_loop().create_future()
        self._idle_waiters.append(waiter)
        await waiter

    def get_stats(self) -> dict:
        """Get queue statistics."""
        self._prune(time.monotonic())
        return {
            "pending": self.size,
            "running": self._running,
            "started_in_window": len(self._starts),
            "concurrency": self.config.concurrency,
            "interval_cap": self.config.interval_cap,
            "interval_ms": self.config.interval_ms,
        }

    # ------------------------------------------------------------------
    # Admission
    # ------------------------------------------------------------------

    def _prune(self, now: float) -> None:
        """Drop start timestamps that have left the window."""
        cutoff = now - self._interval_s
        while self._starts and self._starts[0] <= cutoff:
            self._starts.popleft()

    def _drain(self) -> None:
        """Admit as many head-of-line tasks as both limits allow."""
        while self._pending:
            head = self._pending[0]
            if head.future.done():
                # Submitter gave up before admission
                self._pending.popleft()
                continue

            if self._running >= self.config.concurrency:
                break  # a completion will call _drain again

            now = time.monotonic()
            self._prune(now)
            if len(self._starts) >= self.config.interval_cap:
                self._schedule_wakeup(self._starts[0] + self._interval_s - now)
                break

            self._pending.popleft()
            self._start(head, now)

        self._notify_idle()

    def _schedule_wakeup(self, delay: float) -> None:
        if self._wakeup is not None:
            return
        loop = asyncio.get_running_loop()
        self._wakeup = loop.call_later(max(delay, 0.001), self._on_wakeup)

    def _on_wakeup(self) -> None:
        self._wakeup = None
        self._drain()

    def _start(self, item: _PendingTask, now: float) -> None:
        self._running += 1
        self._starts.append(now)

        logger.debug(
            "Admitted request %s after %.0fms (running=%d, started_in_window=%d)",
            item.request_id or f"#{item.sequence}",
            (now - item.enqueued_at) * 1000,
            self._running,
            len(self._starts),
            extra={"event": "admit", "request_id": item.request_id},
        )

        task = asyncio.get_running_loop().create_task(self._run(item))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _run(self, item: _PendingTask) -> None:
        try:
            result = await item.task()
        except asyncio.CancelledError:
            if not item.future.done():
                item.future.cancel()
            raise
        except Exception as exc:
            if not item.future.done():
                item.future.set_exception(exc)
        else:
            if not item.future.done():
                item.future.set_result(result)
        finally:
            self._running -= 1
            self._drain()

    def _is_idle(self) -> bool:
        return self._running == 0 and self.size == 0

    def _notify_idle(self) -> None:
        if not self._idle_waiters or not self._is_idle():
            return
        waiters, self._idle_waiters = self._idle_waiters, []
        for waiter in waiters:
            if not waiter.done():
                waiter.set_result(None)
