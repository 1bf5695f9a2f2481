"""Failure classification for the job queue's retry policy.

Errors raised inside the pipeline carry their kind in their type
(`TransientJobError` / `TerminalJobError`). Errors coming out of opaque
third-party calls (signing clients, marketplace SDKs) only carry free text,
so they go through `_classify_by_message`, a compatibility shim over a fixed
list of known-transient fragments.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum

from jobpipe.core.exceptions import TerminalJobError, TransientJobError

RETRYABLE_MESSAGE_FRAGMENTS = (
    "replacement underpriced",
    "nonce too low",
    "transaction underpriced",
    "insufficient funds for gas",
    "timeout",
)


class FailureKind(StrEnum):
    transient = "transient"
    terminal = "terminal"


@dataclass(frozen=True)
class Failure:
    kind: FailureKind
    reason: str
    error: BaseException

    @property
    def retryable(self) -> bool:
        return self.kind == FailureKind.transient


def describe_error(error: BaseException) -> str:
    text = str(error).strip()
    return text or type(error).__name__


def classify_failure(error: BaseException) -> Failure:
    """Map an exception raised by a job processor to a `Failure`."""
    reason = describe_error(error)
    if isinstance(error, TransientJobError):
        return Failure(FailureKind.transient, reason, error)
    if isinstance(error, TerminalJobError):
        return Failure(FailureKind.terminal, reason, error)
    if isinstance(error, TimeoutError):
        return Failure(FailureKind.transient, reason, error)
    return Failure(_classify_by_message(reason), reason, error)


def _classify_by_message(text: str) -> FailureKind:
    lowered = text.lower()
    if any(fragment in lowered for fragment in RETRYABLE_MESSAGE_FRAGMENTS):
        return FailureKind.transient
    return FailureKind.terminal
