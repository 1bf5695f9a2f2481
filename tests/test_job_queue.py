"""Unit tests for JobQueue scheduling, retry and observer behavior.

The queue's sleep is replaced by a recorder so backoff and inter-job delays
can be asserted without waiting for them.
"""

import asyncio

import pytest

from jobpipe.core.config import JobQueueConfig
from jobpipe.core.exceptions import (
    JobExecutionTimeoutError,
    PaymentTimeoutError,
)
from jobpipe.core.failures import FailureKind
from jobpipe.core.managers.job_queue import JobQueue
from jobpipe.core.models.job import MarketplaceJob


# --- Helpers & Fixtures ---

class RecordingSleep:
    """Stand-in for asyncio.sleep that records requested delays."""

    def __init__(self, on_sleep=None):
        self.calls = []
        self._on_sleep = on_sleep

    async def __call__(self, seconds):
        self.calls.append(seconds)
        if self._on_sleep is not None:
            self._on_sleep(seconds)
        await asyncio.sleep(0)


class RecordingObserver:
    def __init__(self):
        self.attempt_failures = []
        self.retries = []
        self.processed = []
        self.failed = []

    async def on_attempt_failed(self, queued, failure):
        self.attempt_failures.append((queued.job_id, failure))

    async def on_retry_scheduled(self, queued, delay):
        self.retries.append((queued.job_id, queued.retry_count, delay))

    async def on_job_processed(self, queued):
        self.processed.append(queued.job_id)

    async def on_job_failed(self, queued, failure):
        self.failed.append((queued.job_id, failure))


def make_job(job_id, phase="request"):
    return MarketplaceJob(id=job_id, phase=phase)


@pytest.fixture
def fast_config():
    """No inter-job delay, generous retry budget."""
    return JobQueueConfig(processing_delay=0, max_retries=3, retry_base_delay=1.0, retry_max_delay=30.0)


@pytest.fixture
def sleeper():
    return RecordingSleep()


@pytest.fixture
def observer():
    return RecordingObserver()


# --- Ordering ---

class TestPriorityOrdering:
    """Jobs are dequeued by priority, ties by arrival."""

    @pytest.mark.asyncio
    async def test_higher_priority_runs_first(self, fast_config, sleeper):
        order = []

        async def processor(job):
            order.append(job.id)

        queue = JobQueue(processor, fast_config, sleep=sleeper)
        queue.enqueue(make_job("a"), priority=10)
        queue.enqueue(make_job("b"), priority=20)
        queue.enqueue(make_job("c"), priority=5)
        await queue.wait_until_idle()

        assert order == ["b", "a", "c"]
        assert queue.processed == 3

    @pytest.mark.asyncio
    async def test_equal_priority_keeps_arrival_order(self, fast_config, sleeper):
        order = []

        async def processor(job):
            order.append(job.id)

        queue = JobQueue(processor, fast_config, sleep=sleeper)
        for job_id in ("1", "2", "3"):
            queue.enqueue(make_job(job_id), priority=10)
        await queue.wait_until_idle()

        assert order == ["1", "2", "3"]

    @pytest.mark.asyncio
    async def test_status_lists_pending_jobs_in_order(self, fast_config, sleeper):
        async def processor(job):
            return None

        queue = JobQueue(processor, fast_config, sleep=sleeper)
        queue.enqueue(make_job(7, "negotiation"), priority=10)
        queue.enqueue(make_job(8, "evaluation"), priority=20)

        status = queue.get_queue_status()
        assert status.queue_length == 2
        assert status.is_processing is True
        assert status.jobs == ["#8 (evaluation)", "#7 (negotiation)"]

        await queue.wait_until_idle()
        assert queue.get_status().is_processing is False


class TestSequentialProcessing:
    """Exactly one processor runs at a time."""

    @pytest.mark.asyncio
    async def test_reentrant_enqueue_does_not_start_second_loop(self, fast_config, sleeper):
        running = 0
        max_running = 0
        tasks = set()
        order = []
        queue = None

        async def processor(job):
            nonlocal running, max_running
            running += 1
            max_running = max(max_running, running)
            tasks.add(asyncio.current_task())
            order.append(job.id)
            if job.id == "first":
                queue.enqueue(make_job("second"), priority=1)
            await asyncio.sleep(0)
            running -= 1

        queue = JobQueue(processor, fast_config, sleep=sleeper)
        queue.enqueue(make_job("first"), priority=1)
        await queue.wait_until_idle()

        assert order == ["first", "second"]
        assert max_running == 1
        assert len(tasks) == 1

    @pytest.mark.asyncio
    async def test_inter_job_delay_only_between_jobs(self, sleeper):
        async def processor(job):
            return None

        config = JobQueueConfig(processing_delay=3.0)
        queue = JobQueue(processor, config, sleep=sleeper)
        queue.enqueue(make_job("a"))
        queue.enqueue(make_job("b"))
        await queue.wait_until_idle()

        assert sleeper.calls == [3.0]

    @pytest.mark.asyncio
    async def test_stop_finishes_in_flight_job_and_keeps_pending(self, fast_config, sleeper):
        gate = asyncio.Event()
        done = []

        async def processor(job):
            await gate.wait()
            done.append(job.id)

        queue = JobQueue(processor, fast_config, sleep=sleeper)
        queue.enqueue(make_job("a"))
        queue.enqueue(make_job("b"))
        await asyncio.sleep(0)
        assert queue.get_status().in_flight == "a"

        stopper = asyncio.create_task(queue.stop())
        await asyncio.sleep(0)
        gate.set()
        await stopper

        assert done == ["a"]
        assert queue.get_status().queue_length == 1
        assert queue.contains("b")


# --- Retry policy ---

class TestRetryPolicy:
    @pytest.mark.asyncio
    async def test_backoff_then_success(self, fast_config, sleeper, observer):
        attempts = 0

        async def processor(job):
            nonlocal attempts
            attempts += 1
            if attempts < 3:
                raise RuntimeError("replacement underpriced")

        queue = JobQueue(processor, fast_config, observers=[observer], sleep=sleeper)
        queue.enqueue(make_job("j1"), priority=10)
        await queue.wait_until_idle()

        assert attempts == 3
        assert queue.processed == 1
        assert queue.failed == 0
        assert queue.retried == 2
        assert observer.processed == ["j1"]
        # delays grow between attempts
        assert sleeper.calls == [2.0, 4.0]
        assert [retry[1] for retry in observer.retries] == [1, 2]

    @pytest.mark.asyncio
    async def test_retry_exhaustion_reports_failure(self, sleeper, observer):
        calls = 0

        async def processor(job):
            nonlocal calls
            calls += 1
            raise RuntimeError("nonce too low")

        config = JobQueueConfig(processing_delay=0, max_retries=2)
        queue = JobQueue(processor, config, observers=[observer], sleep=sleeper)
        queue.enqueue(make_job("j1"))
        await queue.wait_until_idle()

        assert calls == 3  # first attempt + 2 retries
        assert queue.retried == 2
        assert queue.failed == 1
        assert len(observer.failed) == 1
        job_id, failure = observer.failed[0]
        assert job_id == "j1"
        assert failure.kind == FailureKind.transient
        assert "nonce too low" in failure.reason
        assert len(observer.attempt_failures) == 3

    @pytest.mark.asyncio
    async def test_terminal_error_is_not_retried(self, fast_config, sleeper, observer):
        calls = 0

        async def processor(job):
            nonlocal calls
            calls += 1
            raise ValueError("unsupported category")

        queue = JobQueue(processor, fast_config, observers=[observer], sleep=sleeper)
        queue.enqueue(make_job("j1"))
        await queue.wait_until_idle()

        assert calls == 1
        assert queue.retried == 0
        assert queue.failed == 1
        assert sleeper.calls == []
        assert observer.failed[0][1].kind == FailureKind.terminal

    @pytest.mark.asyncio
    async def test_payment_timeout_is_terminal_despite_message(self, fast_config, sleeper, observer):
        async def processor(job):
            raise PaymentTimeoutError(
                sender="0x" + "1" * 40,
                expected_amount="50",
                elapsed_seconds=300.0,
                timeout_seconds=300.0,
            )

        queue = JobQueue(processor, fast_config, observers=[observer], sleep=sleeper)
        queue.enqueue(make_job("j1"))
        await queue.wait_until_idle()

        assert queue.retried == 0
        assert isinstance(observer.failed[0][1].error, PaymentTimeoutError)

    @pytest.mark.asyncio
    async def test_retry_gets_priority_bump(self, fast_config, sleeper):
        order = []
        failed_once = False

        async def processor(job):
            nonlocal failed_once
            order.append(job.id)
            if job.id == "flaky" and not failed_once:
                failed_once = True
                raise TimeoutError("rpc timeout")

        queue = JobQueue(processor, fast_config, sleep=sleeper)
        queue.enqueue(make_job("flaky"), priority=10)
        queue.enqueue(make_job("other"), priority=10)
        await queue.wait_until_idle()

        # the retried job (priority 11) overtakes the equal-priority job queued behind it
        assert order == ["flaky", "flaky", "other"]

    def test_backoff_delay_is_capped(self):
        async def processor(job):
            return None

        config = JobQueueConfig(retry_base_delay=1.0, retry_max_delay=5.0)
        queue = JobQueue(processor, config)
        assert queue.backoff_delay(1) == 2.0
        assert queue.backoff_delay(2) == 4.0
        assert queue.backoff_delay(3) == 5.0

    @pytest.mark.asyncio
    async def test_execution_timeout_fails_slow_processor(self, sleeper, observer):
        async def processor(job):
            await asyncio.sleep(5)

        config = JobQueueConfig(processing_delay=0, max_retries=0, execution_timeout=0.05)
        queue = JobQueue(processor, config, observers=[observer], sleep=sleeper)
        queue.enqueue(make_job("slow"))
        await queue.wait_until_idle()

        failure = observer.failed[0][1]
        assert isinstance(failure.error, JobExecutionTimeoutError)
        assert failure.kind == FailureKind.transient


# --- Removal ---

class TestRemoval:
    @pytest.mark.asyncio
    async def test_remove_pending_job(self, fast_config, sleeper):
        seen = []

        async def processor(job):
            seen.append(job.id)

        queue = JobQueue(processor, fast_config, sleep=sleeper)
        queue.enqueue(make_job("a"))
        queue.enqueue(make_job("b"))

        assert queue.remove("b") is True
        assert queue.remove("missing") is False
        await queue.wait_until_idle()
        assert seen == ["a"]

    @pytest.mark.asyncio
    async def test_job_removed_during_backoff_is_not_reinserted(self, fast_config, observer):
        calls = 0
        removed = []
        queue = None

        async def processor(job):
            nonlocal calls
            calls += 1
            raise RuntimeError("transaction underpriced")

        def remove_while_sleeping(seconds):
            assert queue.contains("j1")
            removed.append(queue.remove("j1"))

        queue = JobQueue(
            processor,
            fast_config,
            observers=[observer],
            sleep=RecordingSleep(on_sleep=remove_while_sleeping),
        )
        queue.enqueue(make_job("j1"))
        await queue.wait_until_idle()

        assert removed == [True]
        assert calls == 1
        assert queue.get_status().queue_length == 0
        assert queue.contains("j1") is False
        assert observer.failed == []

    @pytest.mark.asyncio
    async def test_clear_drops_pending_jobs(self, fast_config, sleeper):
        async def processor(job):
            return None

        queue = JobQueue(processor, fast_config, sleep=sleeper)
        queue.enqueue(make_job("a"))
        queue.enqueue(make_job("b"))

        assert queue.clear() == 2
        await queue.wait_until_idle()
        assert queue.processed == 0


class TestObserverIsolation:
    @pytest.mark.asyncio
    async def test_failing_observer_does_not_break_loop(self, fast_config, sleeper, observer):
        class BrokenObserver:
            async def on_job_processed(self, queued):
                raise RuntimeError("observer exploded")

        async def processor(job):
            return None

        queue = JobQueue(processor, fast_config, observers=[BrokenObserver(), observer], sleep=sleeper)
        queue.enqueue(make_job("a"))
        queue.enqueue(make_job("b"))
        await queue.wait_until_idle()

        assert observer.processed == ["a", "b"]
