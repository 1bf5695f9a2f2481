from typing import Optional


class PipelineError(Exception):
    """Base exception for job pipeline failures.

    Attributes:
        message: Human-readable error description
        diagnostic: Technical diagnostic information for debugging
        job_id: Optional job identifier
    """
    def __init__(
        self,
        message: str,
        diagnostic: Optional[str] = None,
        job_id: Optional[str] = None
    ):
        self.message = message
        self.diagnostic = diagnostic
        self.job_id = job_id
        super().__init__(message)


# Failure kinds. The job queue retries the first and never the second.

class TransientJobError(PipelineError):
    """A failure that is expected to clear up on its own (nonce clash, fee bump, RPC hiccup)."""


class TerminalJobError(PipelineError):
    """A failure that retrying cannot fix."""


class ChainQueryError(TransientJobError):
    """Raised when the blockchain RPC endpoint fails to answer a query.

    Attributes:
        operation: RPC operation that failed (e.g. ``eth_getLogs``)
    """
    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        diagnostic: Optional[str] = None,
        job_id: Optional[str] = None
    ):
        self.operation = operation
        super().__init__(message=message, diagnostic=diagnostic, job_id=job_id)


class JobExecutionTimeoutError(TransientJobError):
    """Raised when a processor exceeds the queue's per-job execution deadline."""
    def __init__(self, job_id: str, timeout_seconds: float):
        self.timeout_seconds = timeout_seconds
        message = f"Job {job_id} did not finish within {timeout_seconds}s execution timeout"
        super().__init__(message=message, job_id=job_id)


class JobValidationError(TerminalJobError):
    """Raised for malformed job payloads or unsupported job categories.

    Attributes:
        field: Name of the offending payload field (if any)
        value: Offending value (if any)
    """
    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        value: Optional[object] = None,
        job_id: Optional[str] = None
    ):
        self.field = field
        self.value = value
        super().__init__(message=message, job_id=job_id)


class PaymentTimeoutError(TerminalJobError):
    """Raised when no matching, sufficiently confirmed transfer appeared in time.

    Attributes:
        elapsed_seconds: Time spent polling before giving up
        timeout_seconds: Configured timeout value
        sender: Expected payer address
        expected_amount: Expected amount as a decimal string
    """
    def __init__(
        self,
        sender: str,
        expected_amount: str,
        elapsed_seconds: float,
        timeout_seconds: float,
        job_id: Optional[str] = None
    ):
        self.sender = sender
        self.expected_amount = expected_amount
        self.elapsed_seconds = elapsed_seconds
        self.timeout_seconds = timeout_seconds
        message = (
            f"Payment of {expected_amount} from {sender} not received "
            f"within {timeout_seconds}s timeout"
        )
        super().__init__(message=message, job_id=job_id)


class PaymentVerificationError(TerminalJobError):
    """Raised when a known payment transaction hash does not prove the expected transfer."""
    def __init__(
        self,
        tx_hash: str,
        expected_amount: str,
        job_id: Optional[str] = None,
        reason: Optional[str] = None,
    ):
        self.tx_hash = tx_hash
        self.expected_amount = expected_amount
        self.reason = reason
        message = f"Transaction {tx_hash} is not a valid payment of {expected_amount}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message=message, job_id=job_id)


class JobExpiredError(TerminalJobError):
    """Raised when a job reaches the front of the queue after its SLA window closed."""
    def __init__(self, job_id: str):
        super().__init__(message=f"Job {job_id} expired before processing", job_id=job_id)
