"""
Work queue feeding reconciliation keys to a pool of workers.

The queue follows the client-go work-queue contract:

- a key already waiting is not queued twice;
- a key being processed is never handed to a second worker; adding it again
  marks it dirty and it is queued exactly once when processing finishes;
- failed keys are re-queued with per-key exponential backoff, and the
  backoff is forgotten after a success.

The buffer between producers (watch handlers) and workers is bounded:
``add`` waits while it is full.
"""

import asyncio
import logging
import time
from collections.abc import Callable, Hashable
from typing import Any, TypeAlias

from externaldns_operator.observability.metrics import MetricsCollector

logger = logging.getLogger(__name__)

SyncHandler: TypeAlias = Callable[[Any], Any]


class WorkQueue:
    """Bounded, de-duplicating, rate-limited queue of hashable keys."""

    def __init__(
        self,
        maxsize: int = 256,
        base_delay: float = 0.5,
        max_delay: float = 300.0,
        metrics: MetricsCollector | None = None,
    ):
        """
        Initialize the queue.

        Args:
            maxsize: Capacity of the buffer between producers and workers
            base_delay: First retry delay in seconds
            max_delay: Cap on the retry delay in seconds
            metrics: Optional metrics collector
        """
        if maxsize < 1:
            raise ValueError("maxsize must be positive")
        if max_delay < base_delay:
            raise ValueError("max_delay must not be smaller than base_delay")

        self.base_delay = base_delay
        self.max_delay = max_delay
        self.metrics = metrics

        self._queue: asyncio.Queue[Hashable] = asyncio.Queue(maxsize=maxsize)
        self._waiting: set[Hashable] = set()
        self._processing: set[Hashable] = set()
        self._dirty: set[Hashable] = set()
        self._failures: dict[Hashable, int] = {}
        self._delayed: dict[Hashable, tuple[float, asyncio.Task]] = {}
        self._requeues: set[asyncio.Task] = set()
        self._workers: list[asyncio.Task] = []
        self._idle = asyncio.Event()
        self._idle.set()
        self._shutting_down = False

    def __len__(self) -> int:
        return self._queue.qsize()

    @property
    def running(self) -> bool:
        return bool(self._workers) and not self._shutting_down

    @property
    def shutting_down(self) -> bool:
        return self._shutting_down

    def is_processing(self, key: Hashable) -> bool:
        return key in self._processing

    def _update_state(self) -> None:
        if self._waiting or self._processing:
            self._idle.clear()
        else:
            self._idle.set()
        if self.metrics:
            self.metrics.set_queue_depth(self._queue.qsize())

    async def add(self, key: Hashable) -> None:
        """
        Queue a key for processing.

        Waits while the buffer is full. Keys already waiting are coalesced;
        keys currently being processed are queued again once they are done.
        """
        if self._shutting_down:
            logger.debug(f"Queue is shutting down, dropping {key}")
            return
        if key in self._waiting:
            return
        if key in self._processing:
            self._dirty.add(key)
            return

        self._waiting.add(key)
        await self._put(key)

    async def _put(self, key: Hashable) -> None:
        self._update_state()
        try:
            await self._queue.put(key)
        except asyncio.CancelledError:
            self._waiting.discard(key)
            self._update_state()
            raise
        self._update_state()

    def add_after(self, key: Hashable, delay: float) -> None:
        """
        Queue a key once ``delay`` seconds have passed.

        If the key already has an earlier delayed add pending, that one wins.
        """
        if self._shutting_down:
            return
        if delay <= 0:
            self._spawn(self.add(key))
            return

        ready_at = time.monotonic() + delay
        pending = self._delayed.get(key)
        if pending is not None:
            if pending[0] <= ready_at:
                return
            pending[1].cancel()

        task = asyncio.create_task(self._add_later(key, delay))
        self._delayed[key] = (ready_at, task)

    async def _add_later(self, key: Hashable, delay: float) -> None:
        await asyncio.sleep(delay)
        pending = self._delayed.get(key)
        if pending is not None and pending[1] is asyncio.current_task():
            del self._delayed[key]
        await self.add(key)

    def _spawn(self, coro) -> None:
        # Workers must never block on a full buffer, so re-adds run as tasks
        task = asyncio.create_task(coro)
        self._requeues.add(task)
        task.add_done_callback(self._requeues.discard)

    def backoff(self, key: Hashable) -> float:
        """Delay the next rate-limited add of ``key`` would use."""
        failures = self._failures.get(key, 0)
        return min(self.base_delay * 2**failures, self.max_delay)

    def add_rate_limited(self, key: Hashable) -> float:
        """
        Re-queue a key after its current backoff and grow the backoff.

        Returns:
            The delay used
        """
        delay = self.backoff(key)
        self._failures[key] = self._failures.get(key, 0) + 1
        if self.metrics:
            self.metrics.record_retry()
        self.add_after(key, delay)
        return delay

    def num_requeues(self, key: Hashable) -> int:
        return self._failures.get(key, 0)

    def forget(self, key: Hashable) -> None:
        """Reset the backoff of a key."""
        self._failures.pop(key, None)

    async def get(self) -> Hashable:
        """Take the next key and mark it as being processed."""
        key = await self._queue.get()
        self._waiting.discard(key)
        self._processing.add(key)
        self._update_state()
        return key

    def done(self, key: Hashable) -> None:
        """Mark a key as processed, queueing it again if it turned dirty."""
        self._processing.discard(key)
        self._queue.task_done()
        if key in self._dirty and not self._shutting_down:
            # Counted as waiting right away so the key never looks idle
            self._waiting.add(key)
            self._spawn(self._put(key))
        self._dirty.discard(key)
        self._update_state()

    def run(
        self,
        handler: SyncHandler,
        workers: int = 1,
        is_retryable: Callable[[Exception], bool] | None = None,
    ) -> None:
        """
        Start worker tasks.

        Each worker takes a key and runs the blocking ``handler`` on it in a
        thread. A failing key is re-queued with backoff; errors that
        ``is_retryable`` rejects are re-queued at the maximum delay.

        Args:
            handler: Blocking callable taking one key
            workers: Number of concurrent workers
            is_retryable: Classifies handler errors; every error is retryable
                when omitted
        """
        if self._workers:
            raise RuntimeError("Work queue workers are already running")
        if workers < 1:
            raise ValueError("workers must be positive")

        for index in range(workers):
            task = asyncio.create_task(
                self._worker(handler, is_retryable), name=f"mirror-worker-{index}"
            )
            self._workers.append(task)
        logger.info(f"Started {workers} reconciliation workers")

    async def _worker(
        self,
        handler: SyncHandler,
        is_retryable: Callable[[Exception], bool] | None,
    ) -> None:
        while True:
            key = await self.get()
            try:
                await asyncio.to_thread(handler, key)
            except asyncio.CancelledError:
                self.done(key)
                raise
            except Exception as e:
                retryable = is_retryable is None or is_retryable(e)
                if retryable:
                    delay = self.add_rate_limited(key)
                else:
                    self._failures[key] = self._failures.get(key, 0) + 1
                    delay = self.max_delay
                    self.add_after(key, delay)
                attempt = self.num_requeues(key)
                logger.warning(
                    f"Reconciliation of {key} failed (attempt {attempt}), "
                    f"retrying in {delay:.1f}s: {e}",
                    extra={
                        "error_type": type(e).__name__,
                        "retryable": retryable,
                        "attempt": attempt,
                    },
                )
            else:
                self.forget(key)
            self.done(key)

    async def wait_idle(self) -> None:
        """Wait until no key is waiting or being processed."""
        await self._idle.wait()

    async def shutdown(self) -> None:
        """Stop accepting keys, cancel workers and pending delayed adds."""
        self._shutting_down = True

        tasks = list(self._workers) + list(self._requeues)
        tasks.extend(task for _, task in self._delayed.values())
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

        self._workers.clear()
        self._requeues.clear()
        self._delayed.clear()
        logger.info("Work queue shut down")
