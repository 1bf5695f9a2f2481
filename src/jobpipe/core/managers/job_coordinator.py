"""JobCoordinator: wires the job queue, SLA tracker and history together.

Responsibilities:
1. Admit marketplace jobs with a phase-derived priority, ignoring duplicates.
2. Start the SLA clock of every admitted job.
3. Refuse to run a job whose SLA window closed while it was waiting.
4. Keep SLA states and bounded outcome histories in step with the queue.
5. Remove expired jobs from the queue (periodic sweep or on demand).
"""

from __future__ import annotations

import asyncio
from collections import deque
from typing import Any, Awaitable, Callable, Deque, Dict, Iterable, List, Optional, Set, Tuple

from jobpipe.core.config import CoordinatorConfig, JobQueueConfig
from jobpipe.core.exceptions import JobExpiredError
from jobpipe.core.failures import Failure
from jobpipe.core.managers.job_queue import JobProcessor, JobQueue
from jobpipe.core.managers.observers import SlaLifecycleObserver, TransactionErrorObserver
from jobpipe.core.managers.sla_tracker import SlaTracker
from jobpipe.core.managers.state_reducer import Snapshot, StateReducer
from jobpipe.core.managers.transaction_errors import TransactionErrorLog
from jobpipe.core.models.job import (
    JobOutcome,
    OutcomeStatus,
    QueuedJob,
    job_id_of,
    job_phase_of,
)
from jobpipe.core.settings import logger


class JobCoordinator:
    """Front door of the pipeline.

    Attributes:
        config: Admission and history settings
        queue: The sequential job queue running the wrapped processor
        sla: SLA tracker fed by admissions and queue outcomes
        reducer: State reducer for marketplace snapshots
        error_log: History of failed attempts
    """

    def __init__(
        self,
        processor: JobProcessor,
        queue_config: Optional[JobQueueConfig] = None,
        sla_tracker: Optional[SlaTracker] = None,
        config: Optional[CoordinatorConfig] = None,
        reducer: Optional[StateReducer] = None,
        error_log: Optional[TransactionErrorLog] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.config = config or CoordinatorConfig()
        self.sla = sla_tracker or SlaTracker()
        self.reducer = reducer or StateReducer()
        self.error_log = error_log or TransactionErrorLog()
        self._processor = processor

        self._completed: Deque[JobOutcome] = deque(maxlen=self.config.completed_history_size)
        self._failed: Deque[JobOutcome] = deque(maxlen=self.config.failed_history_size)
        self._expired: Deque[JobOutcome] = deque(maxlen=self.config.expired_history_size)

        self.queue = JobQueue(
            self._run_job,
            queue_config,
            observers=[
                TransactionErrorObserver(self.error_log),
                SlaLifecycleObserver(self.sla, self.config.final_phases),
                self,
            ],
            sleep=sleep,
        )

    # ------------------------------------------------------------------
    # Admission
    # ------------------------------------------------------------------
    def priority_for(self, phase: str) -> int:
        return self.config.phase_priorities.get(str(phase).lower(), 0)

    def is_known(self, job_id: str, phase: Optional[str] = None) -> bool:
        """True when the job is queued, or this phase of it already finished.

        A failed or expired job stays known in every phase.
        """
        job_id = str(job_id)
        if self.queue.contains(job_id):
            return True
        if any(outcome.job_id == job_id for outcome in self._failed):
            return True
        if any(outcome.job_id == job_id for outcome in self._expired):
            return True
        return (job_id, phase) in self._completed_keys()

    def admit(self, job: Any) -> bool:
        """Queue a job unless its phase needs no work or it is already known."""
        job_id = job_id_of(job)
        phase = job_phase_of(job)
        priority = self.priority_for(phase)
        if priority <= 0:
            logger.debug(f"[coordinator:skip] job_id={job_id} phase={phase} no work for phase")
            return False
        if self.is_known(job_id, phase):
            logger.debug(f"[coordinator:skip] job_id={job_id} phase={phase} already known")
            return False

        if self.sla.get_job_state(job_id) is None:
            self.sla.add_job(job_id)
        self.queue.enqueue(job, priority)
        logger.info(f"[coordinator:admit] job_id={job_id} phase={phase} priority={priority}")
        return True

    def admit_many(self, jobs: Iterable[Any]) -> int:
        return sum(1 for job in jobs if self.admit(job))

    def reject(self, job_id: Any, reason: str, phase: Optional[str] = None) -> bool:
        """Record a job that cannot be admitted at all as failed, once."""
        job_id = str(job_id)
        if self.is_known(job_id, phase):
            return False
        self._failed.append(
            JobOutcome(job_id=job_id, phase=phase, status=OutcomeStatus.failed, reason=reason)
        )
        logger.error(f"[coordinator:reject] job_id={job_id} phase={phase} reason={reason}")
        return True

    async def _run_job(self, job: Any) -> Any:
        job_id = job_id_of(job)
        if self.sla.is_overdue(job_id):
            # deadline passed before the periodic sweep noticed
            self.sweep_expired()
        if self.sla.get_job_state(job_id) is None:
            # expired (or resolved) while waiting in the queue
            raise JobExpiredError(job_id)
        return await self._processor(job)

    # ------------------------------------------------------------------
    # Queue observer: history
    # ------------------------------------------------------------------
    async def on_job_processed(self, queued: QueuedJob) -> None:
        self._completed.append(
            JobOutcome(job_id=queued.job_id, phase=queued.phase, status=OutcomeStatus.completed)
        )

    async def on_job_failed(self, queued: QueuedJob, failure: Failure) -> None:
        if isinstance(failure.error, JobExpiredError):
            # already recorded by the sweep, unless the job was resolved some other way
            if any(outcome.job_id == queued.job_id for outcome in self._expired):
                return
        self._failed.append(
            JobOutcome(
                job_id=queued.job_id,
                phase=queued.phase,
                status=OutcomeStatus.failed,
                reason=failure.reason,
            )
        )

    # ------------------------------------------------------------------
    # Expiration
    # ------------------------------------------------------------------
    def sweep_expired(self) -> List[str]:
        """Expire overdue jobs now and drop them from the queue."""
        expired = self.sla.check_expired_jobs()
        self._handle_expired(expired)
        return expired

    def _handle_expired(self, job_ids: List[str]) -> None:
        for job_id in job_ids:
            self.queue.remove(job_id)
            self._expired.append(JobOutcome(job_id=job_id, status=OutcomeStatus.expired))
            logger.warning(f"[coordinator:expired] job_id={job_id} removed from queue")

    def start(self) -> None:
        self.sla.start(on_expired=self._handle_expired)
        logger.info("[coordinator:start] sla sweep running")

    async def shutdown(self) -> None:
        await self.sla.shutdown()
        await self.queue.stop()
        logger.info("[coordinator:shutdown] done")

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------
    def recent_outcomes(self) -> Dict[str, List[JobOutcome]]:
        return {
            "completed": list(self._completed),
            "failed": list(self._failed),
            "expired": list(self._expired),
        }

    def status(self) -> Dict[str, Any]:
        return {
            "queue": self.queue.get_status().model_dump(),
            "sla": self.sla.get_statistics().model_dump(),
            "errors": self.error_log.get_error_summary().model_dump(),
            "history": {
                "completed": len(self._completed),
                "failed": len(self._failed),
                "expired": len(self._expired),
            },
        }

    def reduced_view(self, snapshot: Snapshot) -> Snapshot:
        return self.reducer.reduce(snapshot)

    def _completed_keys(self) -> Set[Tuple[str, Optional[str]]]:
        return {(outcome.job_id, outcome.phase) for outcome in self._completed}
