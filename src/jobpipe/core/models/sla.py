from datetime import datetime
from enum import StrEnum
from typing import Optional

from pydantic import BaseModel, Field


class LifecycleState(StrEnum):
    green = "green"  # active, or completed successfully
    red = "red"  # rejected after a failure
    brown = "brown"  # expired by the SLA sweep


class SlaJob(BaseModel):
    """Expiration clock of one job id.

    Only green jobs live in the tracker; a job turning red or brown is evicted
    in the same step and only reported to the caller.
    """

    id: str
    created_at: datetime
    expires_at: datetime
    state: LifecycleState = LifecycleState.green
    retry_count: int = Field(default=0, ge=0)
    rejection_reason: Optional[str] = None

    def is_expired(self, now: datetime) -> bool:
        return now > self.expires_at


class SlaStatistics(BaseModel):
    active_jobs: int
    average_job_age_minutes: int
    jobs_nearing_expiration: int
    graduation_progress: int
    graduation_threshold: int
    environment: str
    graduation_ready: bool
