"""Concrete JobQueue observers.

- TransactionErrorObserver: records every failed attempt in the error log
- SlaLifecycleObserver: keeps the SLA tracker in step with queue outcomes
"""

import logging
from typing import Iterable

from jobpipe.core.failures import Failure
from jobpipe.core.managers.sla_tracker import SlaTracker
from jobpipe.core.managers.transaction_errors import TransactionErrorLog
from jobpipe.core.models.job import QueuedJob

logger = logging.getLogger(__name__)


class TransactionErrorObserver:
    """Feeds failed attempts (retried or not) into a TransactionErrorLog."""

    def __init__(self, error_log: TransactionErrorLog):
        self._log = error_log

    async def on_attempt_failed(self, queued: QueuedJob, failure: Failure) -> None:
        self._log.record(queued.job_id, failure.error)


class SlaLifecycleObserver:
    """Moves SLA-tracked jobs to their final lifecycle state.

    Success of a final phase keeps the job Green and advances graduation
    progress; success of an earlier phase leaves its clock running. A final
    failure in any phase turns it Red with the failure reason; a scheduled
    retry bumps its retry count.
    """

    def __init__(self, sla_tracker: SlaTracker, final_phases: Iterable[str] = ("transaction", "evaluation")):
        self._sla = sla_tracker
        self._final_phases = {phase.lower() for phase in final_phases}

    async def on_retry_scheduled(self, queued: QueuedJob, delay: float) -> None:
        self._sla.increment_retry(queued.job_id)

    async def on_job_processed(self, queued: QueuedJob) -> None:
        if queued.phase not in self._final_phases:
            logger.debug(f"[observer:sla] job_id={queued.job_id} phase={queued.phase} done, clock keeps running")
            return
        if self._sla.get_job_state(queued.job_id) is None:
            logger.debug(f"[observer:sla] job_id={queued.job_id} no longer tracked, skip completion")
            return
        self._sla.mark_completed(queued.job_id)

    async def on_job_failed(self, queued: QueuedJob, failure: Failure) -> None:
        if self._sla.get_job_state(queued.job_id) is None:
            logger.debug(f"[observer:sla] job_id={queued.job_id} no longer tracked, skip rejection")
            return
        self._sla.mark_rejected(queued.job_id, failure.reason)
