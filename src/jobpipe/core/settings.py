# Logging adapter for application-wide logging
from jobpipe.adapters.logging_adapter import LoggingAdapter

from pathlib import Path
from typing import Literal, Optional

from pydantic import HttpUrl, field_validator
from pydantic_settings import BaseSettings
from rich import print

from jobpipe.core.interfaces.logging import LoggingPort

# USDC on Base
DEFAULT_TOKEN_ADDRESS = "0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913"


# using pydantic_settings to manage environment variables
# and do automatic type casting in a central place
class PipelineSettings(BaseSettings):
    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": True,
        "extra": "ignore"
    }
    JOBPIPE_LOG_LEVEL: str = "INFO"
    JOBPIPE_ENVIRONMENT: Literal["sandbox", "production"] = "sandbox"

    # Chain access
    JOBPIPE_RPC_URL: HttpUrl = HttpUrl("https://base.llamarpc.com")
    JOBPIPE_RPC_TIMEOUT: int = 30  # seconds
    JOBPIPE_TOKEN_ADDRESS: str = DEFAULT_TOKEN_ADDRESS
    JOBPIPE_TOKEN_DECIMALS: int = 6
    JOBPIPE_RECIPIENT_ADDRESS: str = "0x0000000000000000000000000000000000000000"
    JOBPIPE_SERVICE_PRICE: str = "50"

    # Job queue
    JOBPIPE_PROCESSING_DELAY: float = 3.0
    JOBPIPE_MAX_RETRIES: int = 3
    JOBPIPE_RETRY_BASE_DELAY: float = 1.0
    JOBPIPE_RETRY_MAX_DELAY: float = 30.0
    JOBPIPE_JOB_EXECUTION_TIMEOUT: Optional[float] = None

    # Transfer monitor
    JOBPIPE_PAYMENT_TIMEOUT: float = 300.0
    JOBPIPE_PAYMENT_POLL_INTERVAL: float = 3.0
    JOBPIPE_PAYMENT_CONFIRMATIONS: int = 1

    # SLA
    JOBPIPE_JOB_EXPIRATION_HOURS: float = 24
    JOBPIPE_ENABLE_JOB_EXPIRATION: bool = True
    JOBPIPE_COUNTER_STORE_FILE: Path = Path("counters.json")

    # State reduction
    JOBPIPE_KEEP_COMPLETED_JOBS: int = 5
    JOBPIPE_KEEP_CANCELLED_JOBS: int = 5
    JOBPIPE_KEEP_ACQUIRED_INVENTORY: int = 5
    JOBPIPE_KEEP_PRODUCED_INVENTORY: int = 5
    JOBPIPE_IGNORED_JOB_IDS: list[int] = []
    JOBPIPE_IGNORED_AGENT_ADDRESSES: list[str] = []

    # Plugins loaded by the composition root ("package.module:attribute")
    JOBPIPE_ACTION: Optional[str] = None
    JOBPIPE_JOB_SOURCE: Optional[str] = None
    JOBPIPE_SOURCE_POLL_INTERVAL: float = 10.0  # seconds

    def print_settings(self, logger: LoggingPort):
        """Prints the settings for debugging purposes"""
        logger.info("jobpipe settings:")
        print(self)

    @field_validator("JOBPIPE_ACTION", "JOBPIPE_JOB_SOURCE")
    @classmethod
    def ensure_dotted_path(cls, value: Optional[str]) -> Optional[str]:
        """Plugin paths must look like 'package.module:attribute'."""
        if value is not None and value.count(":") != 1:
            raise ValueError(f"expected 'package.module:attribute', got {value!r}")
        return value


app_settings = PipelineSettings()

logger = LoggingAdapter("jobpipe", app_settings.JOBPIPE_LOG_LEVEL)
