"""In-memory implementation of CounterStorePort.

Suitable for tests and for deployments that do not care about graduation
progress surviving a restart.
"""
from __future__ import annotations

import threading
from typing import Dict, Optional

from jobpipe.core.interfaces.counter_store import CounterStorePort


class InMemoryCounterStore(CounterStorePort):
    def __init__(self, initial: Optional[Dict[str, int]] = None) -> None:
        self._counters: Dict[str, int] = dict(initial or {})
        self._lock = threading.Lock()

    def get_counter(self, key: str) -> int:
        with self._lock:
            return self._counters.get(key, 0)

    def increment_counter(self, key: str, amount: int = 1) -> int:
        with self._lock:
            self._counters[key] = self._counters.get(key, 0) + amount
            return self._counters[key]
