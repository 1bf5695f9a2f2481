import logging
from jobpipe.core.interfaces.logging import LoggingPort
from jobpipe.core.logging_config import coerce_level


class LoggingAdapter(LoggingPort):
    """Concrete logging adapter.

    Delegates to Python's logging. It does NOT add its own handlers so that
    `configure_logging` in the composition root controls sinks; the in-flight
    job id is injected by the root handlers' filter.
    """

    def __init__(self, name: str = "jobpipe", log_level: int | str = logging.INFO):
        self.logger = logging.getLogger(name)
        self.logger.setLevel(coerce_level(log_level))
        # Let records reach the root handlers (and pytest's caplog)
        self.logger.propagate = True

    @property
    def name(self) -> str:
        return self.logger.name

    def set_level(self, log_level: int | str) -> None:
        self.logger.setLevel(coerce_level(log_level))

    def debug(self, msg: str, *args):
        self.logger.debug(msg, *args)

    def info(self, msg: str, *args):
        self.logger.info(msg, *args)

    def warning(self, msg: str, *args):
        self.logger.warning(msg, *args)

    def error(self, msg: str, *args):
        self.logger.error(msg, *args)

    def exception(self, msg: str, *args):
        self.logger.exception(msg, *args)
