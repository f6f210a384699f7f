"""Unit tests for the reconciliation work queue."""

import asyncio
import threading
import time

import pytest

from externaldns_operator.errors import KubernetesAPIError
from externaldns_operator.observability.metrics import MetricsCollector
from externaldns_operator.services.work_queue import WorkQueue


async def wait_for(predicate, timeout=2.0):
    """Poll until ``predicate`` holds."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)


class TestQueueing:
    """Buffer, de-duplication and dirty re-queue."""

    @pytest.mark.asyncio
    async def test_waiting_key_is_coalesced(self):
        queue = WorkQueue()
        await queue.add("a")
        await queue.add("a")
        await queue.add("b")

        assert len(queue) == 2
        assert await queue.get() == "a"
        assert await queue.get() == "b"

    @pytest.mark.asyncio
    async def test_key_added_while_processing_is_requeued_once(self):
        queue = WorkQueue()
        await queue.add("a")
        key = await queue.get()

        await queue.add("a")
        await queue.add("a")
        assert len(queue) == 0

        queue.done(key)
        await wait_for(lambda: len(queue) == 1)
        assert await queue.get() == "a"
        queue.done("a")
        await asyncio.sleep(0.05)
        assert len(queue) == 0

    @pytest.mark.asyncio
    async def test_add_blocks_while_buffer_is_full(self):
        queue = WorkQueue(maxsize=1)
        await queue.add("a")

        blocked = asyncio.create_task(queue.add("b"))
        await asyncio.sleep(0.05)
        assert not blocked.done()

        assert await queue.get() == "a"
        await asyncio.wait_for(blocked, timeout=1)
        assert await queue.get() == "b"

    @pytest.mark.asyncio
    async def test_add_after_delays_key(self):
        queue = WorkQueue()
        queue.add_after("a", 0.05)
        assert len(queue) == 0

        await wait_for(lambda: len(queue) == 1)
        await queue.shutdown()

    @pytest.mark.asyncio
    async def test_add_after_keeps_earliest_deadline(self):
        queue = WorkQueue()
        queue.add_after("a", 0.05)
        queue.add_after("a", 10)

        await wait_for(lambda: len(queue) == 1, timeout=1)
        await queue.shutdown()

    @pytest.mark.asyncio
    async def test_invalid_bounds(self):
        with pytest.raises(ValueError):
            WorkQueue(maxsize=0)
        with pytest.raises(ValueError):
            WorkQueue(base_delay=2, max_delay=1)


class TestBackoff:
    """Per-key exponential backoff."""

    @pytest.mark.asyncio
    async def test_backoff_grows_and_caps(self):
        queue = WorkQueue(base_delay=0.5, max_delay=3)

        delays = [queue.add_rate_limited("a") for _ in range(5)]

        assert delays == [0.5, 1.0, 2.0, 3, 3]
        assert queue.num_requeues("a") == 5
        assert queue.backoff("b") == 0.5
        await queue.shutdown()

    @pytest.mark.asyncio
    async def test_forget_resets_backoff(self):
        queue = WorkQueue(base_delay=0.5, max_delay=3)
        queue.add_rate_limited("a")
        queue.add_rate_limited("a")

        queue.forget("a")

        assert queue.num_requeues("a") == 0
        assert queue.backoff("a") == 0.5
        await queue.shutdown()


class TestWorkers:
    """Worker pool behaviour."""

    @pytest.mark.asyncio
    async def test_processes_keys_and_forgets_on_success(self):
        seen = []
        queue = WorkQueue()
        queue.run(seen.append, workers=2)

        await queue.add("a")
        await queue.add("b")
        await wait_for(lambda: sorted(seen) == ["a", "b"])
        await queue.wait_idle()

        assert queue.num_requeues("a") == 0
        await queue.shutdown()

    @pytest.mark.asyncio
    async def test_failed_key_is_retried_until_success(self):
        attempts = []

        def handler(key):
            attempts.append(key)
            if len(attempts) < 3:
                raise KubernetesAPIError("unavailable", status=503)

        metrics = MetricsCollector()
        queue = WorkQueue(base_delay=0.01, max_delay=0.05, metrics=metrics)
        queue.run(handler, workers=1)

        await queue.add("a")
        await wait_for(lambda: len(attempts) == 3)
        await queue.wait_idle()

        assert queue.num_requeues("a") == 0
        assert (
            metrics.registry.get_sample_value(
                "externaldns_operator_mirror_queue_retries_total"
            )
            == 2.0
        )
        await queue.shutdown()

    @pytest.mark.asyncio
    async def test_non_retryable_error_waits_max_delay(self):
        def handler(key):
            raise KubernetesAPIError("denied", reason="Forbidden", status=403)

        queue = WorkQueue(base_delay=0.01, max_delay=30)
        queue.run(
            handler, workers=1, is_retryable=lambda e: getattr(e, "retryable", True)
        )

        await queue.add("a")
        await wait_for(lambda: queue.num_requeues("a") == 1)

        assert "a" in queue._delayed
        ready_at, _ = queue._delayed["a"]
        assert ready_at - time.monotonic() > 20
        await queue.shutdown()

    @pytest.mark.asyncio
    async def test_same_key_never_runs_concurrently(self):
        active = set()
        overlaps = []
        runs = []
        lock = threading.Lock()
        release = threading.Event()

        def handler(key):
            with lock:
                if key in active:
                    overlaps.append(key)
                active.add(key)
            release.wait(timeout=1)
            with lock:
                active.discard(key)
                runs.append(key)

        queue = WorkQueue()
        queue.run(handler, workers=4)

        await queue.add("a")
        await wait_for(lambda: queue.is_processing("a"))
        for _ in range(5):
            await queue.add("a")
        release.set()

        await wait_for(lambda: len(runs) == 2)
        await queue.wait_idle()
        await asyncio.sleep(0.05)

        assert overlaps == []
        assert runs == ["a", "a"]
        await queue.shutdown()

    @pytest.mark.asyncio
    async def test_distinct_keys_run_concurrently(self):
        barrier = threading.Barrier(2, timeout=1)
        done = []

        def handler(key):
            barrier.wait()
            done.append(key)

        queue = WorkQueue()
        queue.run(handler, workers=2)
        await queue.add("a")
        await queue.add("b")

        await wait_for(lambda: sorted(done) == ["a", "b"])
        await queue.shutdown()

    @pytest.mark.asyncio
    async def test_run_twice_is_rejected(self):
        queue = WorkQueue()
        queue.run(lambda key: None)
        with pytest.raises(RuntimeError):
            queue.run(lambda key: None)
        await queue.shutdown()


class TestShutdown:
    @pytest.mark.asyncio
    async def test_shutdown_drops_new_keys_and_pending_adds(self):
        queue = WorkQueue()
        queue.run(lambda key: None)
        queue.add_after("later", 10)
        assert queue.running

        await queue.shutdown()
        await queue.add("a")

        assert not queue.running
        assert queue.shutting_down
        assert len(queue) == 0
        assert queue._delayed == {}
