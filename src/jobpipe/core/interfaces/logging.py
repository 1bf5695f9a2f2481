from abc import ABC, abstractmethod


class LoggingPort(ABC):
    """Logging facade used by the core managers.

    Messages follow the `[component:event] key=value` convention so log lines
    of one job can be grepped across components.
    """

    @abstractmethod
    def debug(self, msg: str, *args):
        pass

    @abstractmethod
    def info(self, msg: str, *args):
        pass

    @abstractmethod
    def warning(self, msg: str, *args):
        pass

    @abstractmethod
    def error(self, msg: str, *args):
        pass

    @abstractmethod
    def exception(self, msg: str, *args):
        """Log at ERROR level including the active exception's traceback."""
        pass
