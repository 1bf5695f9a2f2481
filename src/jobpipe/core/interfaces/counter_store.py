from abc import ABC, abstractmethod


class CounterStorePort(ABC):
    """Durable named integer counters that survive process restarts."""

    @abstractmethod
    def get_counter(self, key: str) -> int:
        """Current value of `key` (0 when never written)."""
        pass

    @abstractmethod
    def increment_counter(self, key: str, amount: int = 1) -> int:
        """Add `amount` to `key`, persist it, and return the new value."""
        pass
