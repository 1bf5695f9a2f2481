"""JSON-file implementation of CounterStorePort.

Counters live in one small JSON object (`{"key": int}`). Every increment is a
read-modify-write under a `threading.Lock`, written to a temporary sibling
file and moved into place with `os.replace` so a crash never leaves a torn
file behind.
"""
from __future__ import annotations

import json
import os
import threading
from pathlib import Path
from typing import Dict

from jobpipe.core.interfaces.counter_store import CounterStorePort
from jobpipe.core.settings import logger


class FileCounterStore(CounterStorePort):
    def __init__(self, path: str | os.PathLike) -> None:
        self._path = Path(path)
        self._lock = threading.Lock()

    @property
    def path(self) -> Path:
        return self._path

    def get_counter(self, key: str) -> int:
        with self._lock:
            return int(self._read().get(key, 0))

    def increment_counter(self, key: str, amount: int = 1) -> int:
        with self._lock:
            counters = self._read()
            counters[key] = int(counters.get(key, 0)) + amount
            self._write(counters)
            return counters[key]

    def _read(self) -> Dict[str, int]:
        if not self._path.exists():
            return {}
        with open(self._path, "r", encoding="utf-8") as f:
            data = json.load(f)
        if not isinstance(data, dict):
            raise ValueError(f"Counter file {self._path} does not hold a JSON object")
        return data

    def _write(self, counters: Dict[str, int]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._path.with_name(f".{self._path.name}.tmp")
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(counters, f, indent=2, sort_keys=True)
        os.replace(tmp_path, self._path)
        logger.debug(f"[counters:write] path={self._path} counters={counters}")
