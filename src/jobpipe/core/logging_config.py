"""Central logging configuration utilities.

The composition root calls `configure_logging` once; it wires separate
stdout/stderr sinks and injects the id of the job currently in flight into
every log record. Adapters and domain code never mutate global logging; they
only emit via `LoggingPort` or standard module loggers.

The job id lives in a context variable. The job queue sets it around each
processor call, so everything logged while a job is being processed (payment
polling, downstream action, observers) carries the job id without threading
it through every call.
"""

from __future__ import annotations

import logging
import sys
from typing import Optional
import contextvars

# Id of the job whose processor is currently running ("-" outside of a job)
job_id_var: contextvars.ContextVar[str] = contextvars.ContextVar(
    "job_id", default="-"
)

DEFAULT_FORMAT = (
    "[%(asctime)s] %(levelname)s %(name)s job=%(job_id)s: %(message)s"
)


def coerce_level(level: int | str | None) -> int:
    if level is None:
        return logging.INFO
    if isinstance(level, int):
        return level
    key = str(level).upper().strip()
    return logging.getLevelNamesMapping().get(key, logging.INFO)


class _JobIdFilter(logging.Filter):
    """Inject the in-flight job id from the contextvar into every log record."""

    def filter(self, record: logging.LogRecord) -> bool:  # pragma: no cover - simple
        record.job_id = job_id_var.get()
        return True


class _MaxLevelFilter(logging.Filter):
    def __init__(self, max_level: int):
        super().__init__()
        self.max_level = max_level

    def filter(self, record: logging.LogRecord) -> bool:  # pragma: no cover
        return record.levelno <= self.max_level


def configure_logging(
    level: int | str | None = None,
    fmt: Optional[str] = None,
    quiet_loggers: tuple[str, ...] = ("web3", "urllib3", "aiohttp"),
) -> None:
    """Configure root logger with separate stdout/stderr sinks & job id.

    Notes
    -----
    * Chatty third-party loggers listed in `quiet_loggers` are raised to WARNING.
    * Calling it twice replaces the handlers instead of duplicating them.
    """
    numeric_level = coerce_level(level)
    fmt = fmt or DEFAULT_FORMAT

    root = logging.getLogger()
    root.setLevel(numeric_level)

    for h in list(root.handlers):
        root.removeHandler(h)

    formatter = logging.Formatter(fmt)
    job_filter = _JobIdFilter()

    # stdout handler for DEBUG/INFO
    stdout_handler = logging.StreamHandler(stream=sys.stdout)
    stdout_handler.setLevel(logging.DEBUG)
    stdout_handler.addFilter(_MaxLevelFilter(logging.INFO))
    stdout_handler.addFilter(job_filter)
    stdout_handler.setFormatter(formatter)

    # stderr handler for WARNING+
    stderr_handler = logging.StreamHandler(stream=sys.stderr)
    stderr_handler.setLevel(logging.WARNING)
    stderr_handler.addFilter(job_filter)
    stderr_handler.setFormatter(formatter)

    root.addHandler(stdout_handler)
    root.addHandler(stderr_handler)

    for name in quiet_loggers:
        logging.getLogger(name).setLevel(logging.WARNING)

    logging.getLogger("jobpipe").debug(
        "Logging configured level=%s quiet_loggers=%s", numeric_level, quiet_loggers
    )
