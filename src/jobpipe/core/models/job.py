from pydantic import BaseModel, ConfigDict, Field, field_validator
from typing import Any, Dict, List, Optional
from datetime import datetime, timezone
from enum import StrEnum


def job_id_of(job: Any) -> str:
    """Stable string id of an opaque job object."""
    return str(getattr(job, "id"))


def job_phase_of(job: Any) -> str:
    phase = getattr(job, "phase", None)
    return str(phase).lower() if phase is not None else "unknown"


class MarketplaceJob(BaseModel):
    """A marketplace job as the pipeline sees it.

    Notes:
    - The marketplace protocol owns the real job object; only `id` and `phase`
      are interpreted here. Everything else travels in `payload` untouched.
    - Numeric ids (the marketplace uses integer job ids) are stored as strings
      so every component keys its maps the same way.
    """

    id: str
    phase: str
    counterpart_address: Optional[str] = None
    payload: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("id", mode="before")
    @classmethod
    def coerce_id(cls, value: Any) -> str:
        return str(value)

    @field_validator("phase", mode="before")
    @classmethod
    def normalize_phase(cls, value: Any) -> str:
        return str(value).lower()


class QueuedJob(BaseModel):
    """Scheduling envelope around an opaque job. Owned by the job queue."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    job: Any
    priority: int = 0
    enqueued_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    retry_count: int = Field(default=0, ge=0)

    @property
    def job_id(self) -> str:
        return job_id_of(self.job)

    @property
    def phase(self) -> str:
        return job_phase_of(self.job)

    def label(self) -> str:
        return f"#{self.job_id} ({self.phase})"


class QueueStatus(BaseModel):
    queue_length: int
    is_processing: bool
    in_flight: Optional[str] = None
    processed: int = 0
    failed: int = 0
    retried: int = 0
    jobs: List[str] = Field(default_factory=list)


class OutcomeStatus(StrEnum):
    completed = "completed"
    failed = "failed"
    expired = "expired"


class JobOutcome(BaseModel):
    """Terminal result of a job, kept in the coordinator's bounded history."""

    job_id: str
    phase: Optional[str] = None
    status: OutcomeStatus
    reason: Optional[str] = None
    finished_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
