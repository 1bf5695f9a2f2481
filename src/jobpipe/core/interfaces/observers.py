"""Observer protocols for job queue events.

Observers decouple side effects (SLA bookkeeping, error history, metrics)
from the queue's scheduling loop. The queue awaits every observer in turn;
an observer raising is logged and never affects scheduling.
"""

from typing import Protocol

from jobpipe.core.failures import Failure
from jobpipe.core.models.job import QueuedJob


class JobQueueObserver(Protocol):
    """Observer protocol for the life of a queued job.

    - on_attempt_failed: After any failed processor run (retried or not)
    - on_retry_scheduled: After a transient failure was granted another attempt
    - on_job_processed: After the processor completed successfully
    - on_job_failed: After the job was dropped for good (terminal or out of retries)
    """

    async def on_attempt_failed(self, queued: QueuedJob, failure: Failure) -> None:
        """Called after every failed attempt.

        Args:
            queued: The envelope of the failed job (retry_count not yet incremented)
            failure: Classified failure
        """
        ...

    async def on_retry_scheduled(self, queued: QueuedJob, delay: float) -> None:
        """Called before the backoff sleep; retry_count is already incremented."""
        ...

    async def on_job_processed(self, queued: QueuedJob) -> None:
        ...

    async def on_job_failed(self, queued: QueuedJob, failure: Failure) -> None:
        """Called once when a job leaves the queue without success."""
        ...
