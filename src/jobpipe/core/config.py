"""Configuration models for core domain components.

Pydantic-based configuration classes that consolidate the settings of the
queue, transfer monitor, SLA tracker, state reducer and coordinator, so the
composition root can inject them and tests can build custom ones.

All durations are seconds.
"""

from typing import Dict, List, Literal, Optional
from pydantic import BaseModel, Field, field_validator


class JobQueueConfig(BaseModel):
    """Configuration for JobQueue behavior.

    Attributes:
        processing_delay: Pause between two jobs so consecutive transactions from the
            same signing identity do not collide (nonce reuse)
        max_retries: Retry budget for transient failures
        retry_base_delay: Base of the exponential backoff
        retry_max_delay: Upper bound of a single backoff delay
        execution_timeout: Optional per-job deadline (None = a processor may run forever)
    """

    processing_delay: float = Field(
        default=3.0,
        ge=0,
        description="Seconds to wait between two processed jobs"
    )

    max_retries: int = Field(
        default=3,
        ge=0,
        le=10,
        description="Maximum retry attempts for transient failures"
    )

    retry_base_delay: float = Field(
        default=1.0,
        ge=0,
        description="Base wait time in seconds for exponential backoff between retries"
    )

    retry_max_delay: float = Field(
        default=30.0,
        ge=0,
        description="Maximum wait time in seconds between retry attempts"
    )

    execution_timeout: Optional[float] = Field(
        default=None,
        gt=0,
        description="Per-job execution deadline in seconds (None for no deadline)"
    )

    model_config = {
        "frozen": True,
        "extra": "forbid",
    }

    @classmethod
    def from_app_settings(cls, settings) -> "JobQueueConfig":
        return cls(
            processing_delay=settings.JOBPIPE_PROCESSING_DELAY,
            max_retries=settings.JOBPIPE_MAX_RETRIES,
            retry_base_delay=settings.JOBPIPE_RETRY_BASE_DELAY,
            retry_max_delay=settings.JOBPIPE_RETRY_MAX_DELAY,
            execution_timeout=settings.JOBPIPE_JOB_EXECUTION_TIMEOUT,
        )


class PaymentMonitorConfig(BaseModel):
    """Default polling contract of TransferMonitor.monitor_payment."""

    timeout: float = Field(
        default=300.0,
        gt=0,
        description="Maximum time in seconds to wait for a matching transfer"
    )

    poll_interval: float = Field(
        default=3.0,
        gt=0,
        description="Seconds between two chain queries"
    )

    confirmations: int = Field(
        default=1,
        ge=0,
        description="Blocks required on top of the transfer's block before it is accepted"
    )

    model_config = {
        "frozen": True,
        "extra": "forbid",
    }

    @classmethod
    def from_app_settings(cls, settings) -> "PaymentMonitorConfig":
        return cls(
            timeout=settings.JOBPIPE_PAYMENT_TIMEOUT,
            poll_interval=settings.JOBPIPE_PAYMENT_POLL_INTERVAL,
            confirmations=settings.JOBPIPE_PAYMENT_CONFIRMATIONS,
        )


class SlaConfig(BaseModel):
    """Configuration for SlaTracker.

    Attributes:
        expiration_hours: SLA window of a job
        enabled: When False, the sweep never expires anything
        sweep_interval: Seconds between two background sweeps
        nearing_expiration_fraction: Share of the window below which a job counts as nearing expiration
        environment: Deployment environment; graduation progress only advances in sandbox
        graduation_threshold: Successful completions needed to graduate from sandbox
        graduation_counter_key: Key of the progress counter in the durable counter store
    """

    expiration_hours: float = Field(default=24, gt=0)
    enabled: bool = True
    sweep_interval: float = Field(default=300.0, gt=0)
    nearing_expiration_fraction: float = Field(default=1 / 12, gt=0, le=1)
    environment: Literal["sandbox", "production"] = "sandbox"
    graduation_threshold: int = Field(default=10, ge=1)
    graduation_counter_key: str = "sandbox_transaction_count"

    model_config = {
        "frozen": True,
        "extra": "forbid",
    }

    @classmethod
    def from_app_settings(cls, settings) -> "SlaConfig":
        return cls(
            expiration_hours=settings.JOBPIPE_JOB_EXPIRATION_HOURS,
            enabled=settings.JOBPIPE_ENABLE_JOB_EXPIRATION,
            environment=settings.JOBPIPE_ENVIRONMENT,
        )


class StateReductionConfig(BaseModel):
    """Retention counts and ignore lists applied by the state reducer."""

    keep_completed_jobs: int = Field(default=5, ge=0)
    keep_cancelled_jobs: int = Field(default=5, ge=0)
    keep_acquired_inventory: int = Field(default=5, ge=0)
    keep_produced_inventory: int = Field(default=5, ge=0)
    job_ids_to_ignore: List[int] = Field(default_factory=list)
    agent_addresses_to_ignore: List[str] = Field(default_factory=list)

    model_config = {
        "frozen": True,
        "extra": "forbid",
    }

    @classmethod
    def from_app_settings(cls, settings) -> "StateReductionConfig":
        return cls(
            keep_completed_jobs=settings.JOBPIPE_KEEP_COMPLETED_JOBS,
            keep_cancelled_jobs=settings.JOBPIPE_KEEP_CANCELLED_JOBS,
            keep_acquired_inventory=settings.JOBPIPE_KEEP_ACQUIRED_INVENTORY,
            keep_produced_inventory=settings.JOBPIPE_KEEP_PRODUCED_INVENTORY,
            job_ids_to_ignore=settings.JOBPIPE_IGNORED_JOB_IDS,
            agent_addresses_to_ignore=settings.JOBPIPE_IGNORED_AGENT_ADDRESSES,
        )


DEFAULT_PHASE_PRIORITIES: Dict[str, int] = {
    "evaluation": 20,
    "transaction": 15,
    "negotiation": 10,
    "request": 5,
    "completed": 0,
    "rejected": 0,
    "expired": 0,
}


class CoordinatorConfig(BaseModel):
    """Admission and bookkeeping settings of the JobCoordinator."""

    phase_priorities: Dict[str, int] = Field(default_factory=lambda: dict(DEFAULT_PHASE_PRIORITIES))
    # Phases whose success completes the job for SLA purposes; earlier phases keep its clock running
    final_phases: List[str] = Field(default_factory=lambda: ["transaction", "evaluation"])
    completed_history_size: int = Field(default=100, ge=1)
    failed_history_size: int = Field(default=50, ge=1)
    expired_history_size: int = Field(default=50, ge=1)

    model_config = {
        "frozen": True,
        "extra": "forbid",
    }

    @field_validator("phase_priorities")
    @classmethod
    def lowercase_phases(cls, value: Dict[str, int]) -> Dict[str, int]:
        return {phase.lower(): priority for phase, priority in value.items()}

    @field_validator("final_phases")
    @classmethod
    def lowercase_final_phases(cls, value: List[str]) -> List[str]:
        return [phase.lower() for phase in value]
