"""Bounded history of transaction errors, for operators debugging stuck jobs."""

from __future__ import annotations

import re
from collections import Counter, deque
from datetime import datetime, timezone
from typing import Deque, List, Optional

from pydantic import BaseModel, Field

from jobpipe.core.failures import describe_error
from jobpipe.core.settings import logger

NONCE_PATTERN = re.compile(r"nonce[:\s]+(\w+)", re.IGNORECASE)


class TransactionErrorEntry(BaseModel):
    job_id: str
    error: str
    details: Optional[str] = None
    nonce: Optional[str] = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class ErrorSummary(BaseModel):
    total: int
    unique_jobs: int
    common_error: Optional[str] = None


def extract_nonce(message: str) -> Optional[str]:
    match = NONCE_PATTERN.search(message)
    return match.group(1) if match else None


def _error_details(error: BaseException) -> Optional[str]:
    # PipelineError carries `diagnostic`; some RPC client errors carry `details`
    for attribute in ("diagnostic", "details", "short_message"):
        value = getattr(error, attribute, None)
        if value:
            return str(value)
    return None


class TransactionErrorLog:
    def __init__(self, max_entries: int = 100) -> None:
        self._entries: Deque[TransactionErrorEntry] = deque(maxlen=max_entries)

    def __len__(self) -> int:
        return len(self._entries)

    def record(self, job_id: str, error: BaseException | str) -> TransactionErrorEntry:
        if isinstance(error, BaseException):
            message = describe_error(error)
            details = _error_details(error)
        else:
            message = str(error)
            details = None

        entry = TransactionErrorEntry(
            job_id=str(job_id),
            error=message,
            details=details,
            nonce=extract_nonce(message),
        )
        self._entries.append(entry)

        logger.error(
            f"[tx:error] job_id={entry.job_id} error={entry.error} "
            f"details={entry.details} nonce={entry.nonce}"
        )
        if "replacement underpriced" in message.lower():
            logger.warning(
                "[tx:advice] transaction stuck on gas price: wait for the pending "
                "transaction, restart the agent to reset its nonce, or check network congestion"
            )
        return entry

    def get_recent_errors(self, count: int = 10) -> List[TransactionErrorEntry]:
        if count <= 0:
            return []
        return list(self._entries)[-count:]

    def get_error_summary(self) -> ErrorSummary:
        counts = Counter(entry.error for entry in self._entries)
        common = counts.most_common(1)
        return ErrorSummary(
            total=len(self._entries),
            unique_jobs=len({entry.job_id for entry in self._entries}),
            common_error=common[0][0] if common else None,
        )
