"""JobQueue: priority queue that runs one job at a time.

Responsibilities:
1. Order pending jobs by priority (higher first, ties by arrival).
2. Run the injected processor for exactly one job at a time.
3. Pause between jobs so consecutive transactions from the same signing
   identity do not collide.
4. Retry transient failures with exponential backoff and a priority bump.
5. Report every attempt, retry, success and final failure to observers.
"""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set

from jobpipe.core.config import JobQueueConfig
from jobpipe.core.exceptions import JobExecutionTimeoutError
from jobpipe.core.failures import Failure, classify_failure
from jobpipe.core.interfaces.observers import JobQueueObserver
from jobpipe.core.logging_config import job_id_var
from jobpipe.core.models.job import QueuedJob, QueueStatus, job_id_of
from jobpipe.core.settings import logger

JobProcessor = Callable[[Any], Awaitable[Any]]


class JobQueue:
    """Serializes execution of `processor` over prioritized jobs.

    Attributes:
        config: Immutable queue configuration (delays, retry budget, deadline)
        processed: Jobs whose processor completed
        failed: Jobs dropped with a failure outcome
        retried: Retries scheduled
    """

    def __init__(
        self,
        processor: JobProcessor,
        config: Optional[JobQueueConfig] = None,
        observers: Optional[List[JobQueueObserver]] = None,
        classifier: Callable[[BaseException], Failure] = classify_failure,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._processor = processor
        self.config = config or JobQueueConfig()
        self._observers: List[JobQueueObserver] = list(observers or [])
        self._classify = classifier
        self._sleep = sleep

        self._queue: List[QueuedJob] = []
        self._task: Optional[asyncio.Task] = None
        self._processing = False
        self._stopped = False
        self._in_flight: Optional[QueuedJob] = None
        self._backing_off: Dict[str, QueuedJob] = {}
        self._dropped: Set[str] = set()

        self.processed = 0
        self.failed = 0
        self.retried = 0

    def add_observer(self, observer: JobQueueObserver) -> None:
        self._observers.append(observer)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def enqueue(self, job: Any, priority: int = 0) -> QueuedJob:
        """Insert a job and make sure the processing loop is running.

        Must be called from inside a running event loop. Calling it while a
        job is being processed only inserts; the active loop picks it up.
        """
        queued = QueuedJob(job=job, priority=priority)
        self._insert(queued)
        logger.info(
            f"[queue:enqueue] job_id={queued.job_id} phase={queued.phase} "
            f"priority={priority} queue_length={len(self._queue)}"
        )
        self._ensure_processing()
        return queued

    def get_status(self) -> QueueStatus:
        return QueueStatus(
            queue_length=len(self._queue),
            is_processing=self._processing,
            in_flight=self._in_flight.job_id if self._in_flight else None,
            processed=self.processed,
            failed=self.failed,
            retried=self.retried,
            jobs=[queued.label() for queued in self._queue],
        )

    get_queue_status = get_status

    def contains(self, job_id: str) -> bool:
        """True when the job is pending, sleeping in retry backoff, or in flight."""
        job_id = str(job_id)
        if self._in_flight is not None and self._in_flight.job_id == job_id:
            return True
        if job_id in self._backing_off and job_id not in self._dropped:
            return True
        return any(queued.job_id == job_id for queued in self._queue)

    def remove(self, job_id: str) -> bool:
        """Remove a job from the queue.

        A pending entry is dropped right away. A job sleeping in retry backoff
        or currently in flight is marked so it is never re-inserted; the
        running processor itself is not interrupted.
        """
        job_id = str(job_id)
        before = len(self._queue)
        self._queue = [queued for queued in self._queue if queued.job_id != job_id]
        removed = len(self._queue) != before

        in_flight = self._in_flight is not None and self._in_flight.job_id == job_id
        if job_id in self._backing_off or in_flight:
            self._dropped.add(job_id)
            removed = True

        if removed:
            logger.info(f"[queue:remove] job_id={job_id} queue_length={len(self._queue)}")
        return removed

    def clear(self) -> int:
        """Drop every pending job and every job waiting for a retry. Returns how many."""
        count = len(self._queue) + len(self._backing_off)
        self._queue.clear()
        self._dropped.update(self._backing_off)
        if count:
            logger.warning(f"[queue:clear] dropped={count}")
        return count

    async def stop(self) -> None:
        """Let the in-flight job finish, then stop popping. Pending jobs stay queued."""
        self._stopped = True
        await self.wait_until_idle()
        logger.info(f"[queue:stopped] pending={len(self._queue)}")

    async def wait_until_idle(self) -> None:
        """Wait until the processing loop has drained (or stopped)."""
        while self._task is not None and not self._task.done():
            await asyncio.wait({self._task})

    def backoff_delay(self, retry_count: int) -> float:
        """Seconds to wait before attempt `retry_count + 1`."""
        delay = self.config.retry_base_delay * (2 ** retry_count)
        return min(delay, self.config.retry_max_delay)

    # ------------------------------------------------------------------
    # Processing loop
    # ------------------------------------------------------------------
    def _insert(self, queued: QueuedJob) -> None:
        index = next(
            (i for i, item in enumerate(self._queue) if item.priority < queued.priority),
            len(self._queue),
        )
        self._queue.insert(index, queued)

    def _ensure_processing(self) -> None:
        if self._processing or self._stopped:
            return
        self._processing = True
        loop = asyncio.get_running_loop()
        self._task = loop.create_task(self._run(), name="jobpipe-queue")

    async def _run(self) -> None:
        try:
            while self._queue and not self._stopped:
                queued = self._queue.pop(0)
                token = job_id_var.set(queued.job_id)
                try:
                    await self._process_one(queued)
                finally:
                    job_id_var.reset(token)

                if self._queue and not self._stopped and self.config.processing_delay > 0:
                    logger.debug(
                        f"[queue:delay] seconds={self.config.processing_delay} "
                        f"queue_length={len(self._queue)}"
                    )
                    await self._sleep(self.config.processing_delay)
        finally:
            self._processing = False
            self._in_flight = None

    async def _process_one(self, queued: QueuedJob) -> None:
        self._in_flight = queued
        logger.info(
            f"[queue:start] job_id={queued.job_id} phase={queued.phase} "
            f"priority={queued.priority} attempt={queued.retry_count + 1}"
        )
        error: Optional[Exception] = None
        try:
            await self._execute(queued)
        except Exception as exc:
            error = exc
        finally:
            self._in_flight = None

        if error is None:
            self._dropped.discard(queued.job_id)
            self.processed += 1
            logger.info(f"[queue:done] job_id={queued.job_id} processed={self.processed}")
            await self._notify("on_job_processed", queued)
            return

        await self._handle_failure(queued, error)

    async def _execute(self, queued: QueuedJob) -> None:
        timeout = self.config.execution_timeout
        if timeout is None:
            await self._processor(queued.job)
            return
        try:
            async with asyncio.timeout(timeout) as deadline:
                await self._processor(queued.job)
        except TimeoutError:
            if deadline.expired():
                raise JobExecutionTimeoutError(queued.job_id, timeout) from None
            raise

    async def _handle_failure(self, queued: QueuedJob, error: Exception) -> None:
        failure = self._classify(error)
        logger.warning(
            f"[queue:attempt_failed] job_id={queued.job_id} attempt={queued.retry_count + 1} "
            f"kind={failure.kind} reason={failure.reason}"
        )
        await self._notify("on_attempt_failed", queued, failure)

        if queued.job_id in self._dropped:
            self._dropped.discard(queued.job_id)
            logger.info(f"[queue:drop] job_id={queued.job_id} removed while in flight")
            return

        if failure.retryable and queued.retry_count < self.config.max_retries:
            await self._retry_later(queued)
            return

        self.failed += 1
        if failure.retryable:
            logger.error(
                f"[queue:failed] job_id={queued.job_id} retries exhausted "
                f"max_retries={self.config.max_retries} reason={failure.reason}"
            )
        else:
            logger.error(f"[queue:failed] job_id={queued.job_id} terminal reason={failure.reason}")
        await self._notify("on_job_failed", queued, failure)

    async def _retry_later(self, queued: QueuedJob) -> None:
        queued.retry_count += 1
        self.retried += 1
        delay = self.backoff_delay(queued.retry_count)
        logger.info(
            f"[queue:retry] job_id={queued.job_id} retry={queued.retry_count}/"
            f"{self.config.max_retries} delay={delay:.2f}s"
        )
        await self._notify("on_retry_scheduled", queued, delay)

        self._backing_off[queued.job_id] = queued
        try:
            await self._sleep(delay)
        finally:
            self._backing_off.pop(queued.job_id, None)

        if queued.job_id in self._dropped:
            self._dropped.discard(queued.job_id)
            logger.info(f"[queue:drop] job_id={queued.job_id} removed during backoff")
            return

        queued.priority += 1
        self._insert(queued)

    async def _notify(self, event: str, queued: QueuedJob, *args: Any) -> None:
        """Await `event` on every observer implementing it; observer errors are logged."""
        for observer in self._observers:
            handler = getattr(observer, event, None)
            if handler is None:
                continue
            try:
                await handler(queued, *args)
            except Exception as exc:
                logger.error(
                    f"[observer:error] {event} failed observer={type(observer).__name__} "
                    f"job_id={job_id_of(queued.job)} error={exc}"
                )
