"""SlaTracker: expiration clocks and Green/Red/Brown lifecycle of jobs.

A tracked job is Green until it completes (stays Green, evicted), is rejected
(Red, evicted) or outlives its SLA window (Brown, evicted by the sweep).
Expiring a job is advisory: the tracker only reports ids; whoever owns the
queue decides what to do with them.
"""

from __future__ import annotations

import asyncio
import inspect
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional

from jobpipe.core.config import SlaConfig
from jobpipe.core.interfaces.counter_store import CounterStorePort
from jobpipe.core.models.sla import LifecycleState, SlaJob, SlaStatistics
from jobpipe.core.settings import logger

ExpiredCallback = Callable[[List[str]], Any]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SlaTracker:
    def __init__(
        self,
        config: Optional[SlaConfig] = None,
        counter_store: Optional[CounterStorePort] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.config = config or SlaConfig()
        self._store = counter_store
        self._clock = clock or _utcnow
        self._jobs: Dict[str, SlaJob] = {}
        self._sweep_task: Optional[asyncio.Task] = None
        logger.info(
            f"[sla:init] expiration_hours={self.config.expiration_hours} "
            f"enabled={self.config.enabled} environment={self.config.environment}"
        )

    @property
    def window(self) -> timedelta:
        return timedelta(hours=self.config.expiration_hours)

    def add_job(self, job_id: str, created_at: Optional[datetime] = None) -> SlaJob:
        """Start the SLA clock of a job (Green). Re-adding an id restarts its clock."""
        job_id = str(job_id)
        created = created_at or self._clock()
        job = SlaJob(id=job_id, created_at=created, expires_at=created + self.window)
        self._jobs[job_id] = job
        logger.debug(f"[sla:add] job_id={job_id} expires_at={job.expires_at.isoformat()}")
        return job

    def mark_completed(self, job_id: str) -> bool:
        job = self._jobs.pop(str(job_id), None)
        if job is None:
            logger.warning(f"[sla:complete] job_id={job_id} not tracked")
            return False
        job.state = LifecycleState.green
        logger.info(f"[sla:complete] job_id={job_id} state={job.state}")
        self._advance_graduation()
        return True

    def mark_rejected(self, job_id: str, reason: Optional[str] = None) -> bool:
        job = self._jobs.pop(str(job_id), None)
        if job is None:
            logger.warning(f"[sla:reject] job_id={job_id} not tracked")
            return False
        job.state = LifecycleState.red
        job.rejection_reason = reason
        logger.info(f"[sla:reject] job_id={job_id} state={job.state} reason={reason}")
        return True

    def increment_retry(self, job_id: str) -> Optional[int]:
        """Bump the retry count of a tracked job. Returns None for unknown ids."""
        job = self._jobs.get(str(job_id))
        if job is None:
            logger.warning(f"[sla:retry] job_id={job_id} not tracked")
            return None
        job.retry_count += 1
        logger.debug(f"[sla:retry] job_id={job_id} retry_count={job.retry_count}")
        return job.retry_count

    def get_job_state(self, job_id: str) -> Optional[SlaJob]:
        return self._jobs.get(str(job_id))

    def get_all_jobs(self) -> List[SlaJob]:
        return list(self._jobs.values())

    def is_overdue(self, job_id: str) -> bool:
        """True when a tracked Green job is past its deadline but not swept yet."""
        if not self.config.enabled:
            return False
        job = self._jobs.get(str(job_id))
        return job is not None and job.state == LifecycleState.green and job.is_expired(self._clock())

    def check_expired_jobs(self) -> List[str]:
        """Move every Green job past its deadline to Brown and stop tracking it."""
        if not self.config.enabled:
            return []

        now = self._clock()
        expired: List[str] = []
        for job_id, job in list(self._jobs.items()):
            if job.state == LifecycleState.green and job.is_expired(now):
                job.state = LifecycleState.brown
                del self._jobs[job_id]
                expired.append(job_id)
                logger.warning(
                    f"[sla:expired] job_id={job_id} after {self.config.expiration_hours}h "
                    f"state={job.state}"
                )
        return expired

    def get_statistics(self) -> SlaStatistics:
        now = self._clock()
        jobs = list(self._jobs.values())
        nearing_window = self.window * self.config.nearing_expiration_fraction
        nearing = sum(1 for job in jobs if job.expires_at - now < nearing_window)

        if jobs:
            total_age = sum(((now - job.created_at) for job in jobs), timedelta())
            average_minutes = round(total_age.total_seconds() / len(jobs) / 60)
        else:
            average_minutes = 0

        progress = self._read_progress()
        return SlaStatistics(
            active_jobs=len(jobs),
            average_job_age_minutes=average_minutes,
            jobs_nearing_expiration=nearing,
            graduation_progress=progress,
            graduation_threshold=self.config.graduation_threshold,
            environment=self.config.environment,
            graduation_ready=(
                self.config.environment == "sandbox"
                and progress >= self.config.graduation_threshold
            ),
        )

    # ------------------------------------------------------------------
    # Background sweep
    # ------------------------------------------------------------------
    def start(self, on_expired: Optional[ExpiredCallback] = None) -> None:
        """Run `check_expired_jobs` every `sweep_interval` seconds in the background.

        `on_expired` (sync or async) receives the ids of each non-empty sweep.
        Does nothing when expiration is disabled or the sweep already runs.
        """
        if not self.config.enabled:
            logger.info("[sla:sweep] expiration disabled, sweep not started")
            return
        if self._sweep_task is not None and not self._sweep_task.done():
            return
        loop = asyncio.get_running_loop()
        self._sweep_task = loop.create_task(self._sweep_forever(on_expired), name="jobpipe-sla-sweep")
        logger.debug(f"[sla:sweep] started interval={self.config.sweep_interval}s")

    async def shutdown(self) -> None:
        task, self._sweep_task = self._sweep_task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.debug("[sla:sweep] stopped")

    async def _sweep_forever(self, on_expired: Optional[ExpiredCallback]) -> None:
        while True:
            await asyncio.sleep(self.config.sweep_interval)
            await self.sweep_once(on_expired)

    async def sweep_once(self, on_expired: Optional[ExpiredCallback] = None) -> List[str]:
        """One sweep iteration; errors are logged so the periodic sweep keeps going."""
        try:
            expired = self.check_expired_jobs()
            if expired:
                logger.warning(f"[sla:sweep] expired={len(expired)} ids={expired}")
                if on_expired is not None:
                    result = on_expired(expired)
                    if inspect.isawaitable(result):
                        await result
            stats = self.get_statistics()
            if stats.active_jobs:
                logger.debug(
                    f"[sla:sweep] active={stats.active_jobs} "
                    f"nearing_expiration={stats.jobs_nearing_expiration}"
                )
            return expired
        except Exception as exc:
            logger.error(f"[sla:sweep] failed error={exc}")
            return []

    # ------------------------------------------------------------------
    # Graduation progress
    # ------------------------------------------------------------------
    def _read_progress(self) -> int:
        if self._store is None:
            return 0
        try:
            return self._store.get_counter(self.config.graduation_counter_key)
        except Exception as exc:
            logger.error(f"[sla:graduation] failed to read progress error={exc}")
            return 0

    def _advance_graduation(self) -> None:
        if self.config.environment != "sandbox" or self._store is None:
            return
        threshold = self.config.graduation_threshold
        try:
            count = self._store.increment_counter(self.config.graduation_counter_key)
        except Exception as exc:
            logger.error(f"[sla:graduation] failed to update progress error={exc}")
            return

        logger.info(f"[sla:graduation] progress={count}/{threshold} successful transactions")
        if count >= threshold:
            logger.info("[sla:graduation] milestone reached, ready for graduation review")
        elif count >= threshold / 2:
            logger.info(f"[sla:graduation] halfway there, {threshold - count} more needed")
